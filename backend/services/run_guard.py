"""Single-flight guard for scheduled jobs and their manual triggers."""

import threading
from contextlib import contextmanager


class SingleFlight:
    """Atomic in-flight flag: at most one holder at a time.

    ``try_acquire`` is a non-blocking check-and-set, so an APScheduler job
    and a manual trigger racing for the same run cannot both get in.
    """

    def __init__(self, name: str):
        self.name = name
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def in_flight(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def hold(self):
        """Yield True when the guard was taken (and release it after), else False."""
        acquired = self.try_acquire()
        try:
            yield acquired
        finally:
            if acquired:
                self.release()
