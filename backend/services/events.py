"""Outbound sync events and their delivery to a notification sink.

The core only ever calls ``EventChannel.publish``, which never blocks. A
separate dispatcher task drains the channel into a NotificationSink.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class EventType(str, enum.Enum):
    SYNC_COMPLETED = "sync.completed"
    ACCOUNT_DEACTIVATED = "account.deactivated"
    CREDENTIALS_REFRESHED = "credentials.refreshed"


@dataclass(frozen=True)
class SyncEvent:
    type: EventType
    payload: dict[str, Any] = field(default_factory=dict)
    account_id: str | None = None
    owner_id: str | None = None
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventChannel:
    """Bounded in-process queue of SyncEvents."""

    def __init__(self, maxsize: int = 1000):
        self._queue: asyncio.Queue[SyncEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def publish(self, event: SyncEvent) -> bool:
        """Enqueue without waiting. A full queue drops the event."""
        try:
            self._queue.put_nowait(event)
            return True
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(f"Event queue full, dropping {event.type.value} event")
            return False

    async def next_event(self) -> SyncEvent:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    def drain(self) -> list[SyncEvent]:
        """Remove and return everything currently queued."""
        events = []
        while True:
            try:
                events.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return events
            self._queue.task_done()

    def __len__(self) -> int:
        return self._queue.qsize()


class NotificationSink(Protocol):
    async def deliver(self, event: SyncEvent) -> None: ...


class LoggingNotificationSink:
    """Default sink: records events in the log."""

    async def deliver(self, event: SyncEvent) -> None:
        logger.info(f"Event {event.type.value} account={event.account_id} payload={event.payload}")


async def dispatch_events(channel: EventChannel, sink: NotificationSink) -> None:
    """Deliver events until cancelled. Sink failures are logged and skipped."""
    while True:
        event = await channel.next_event()
        try:
            await sink.deliver(event)
        except Exception:
            logger.exception(f"Notification sink failed for {event.type.value} event")
        finally:
            channel.task_done()
