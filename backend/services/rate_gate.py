"""Fixed-interval gate bounding the outbound request rate of a batch run."""

import asyncio
import time
from collections.abc import Awaitable, Callable


class FixedIntervalGate:
    """Lets one caller through at most every ``interval`` seconds.

    The first ``wait()`` of a run returns immediately; each later one sleeps
    for whatever remains of the interval since the previous pass. Clock and
    sleep are injectable so the policy can be tested without real waits.
    """

    def __init__(
        self,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        if interval < 0:
            raise ValueError("interval must be >= 0")
        self.interval = interval
        self._clock = clock
        self._sleep = sleep
        self._last_pass: float | None = None

    def reset(self) -> None:
        self._last_pass = None

    async def wait(self) -> float:
        """Block until the next slot; returns the seconds actually slept."""
        slept = 0.0
        if self._last_pass is not None:
            remaining = self.interval - (self._clock() - self._last_pass)
            if remaining > 0:
                await self._sleep(remaining)
                slept = remaining
        self._last_pass = self._clock()
        return slept
