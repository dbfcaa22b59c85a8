"""
Progress events for sync campaigns.

Every (entity type, operation, status) transition is published on an
EventChannel. Each subscriber owns a bounded asyncio.Queue; when a
subscriber falls behind, its oldest event is dropped so publishing
never blocks the engine.

Example:
    >>> channel = EventChannel(buffer_size=100)
    >>> subscription = channel.subscribe()
    >>> async for event in subscription:
    ...     print(event.entity_type, event.operation.value, event.status.value)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..models import utc_now

logger = logging.getLogger(__name__)

ALL_ENTITIES = "All"
SYSTEM = "System"


class SyncOperation(Enum):
    UPLOAD = "Upload"
    DOWNLOAD = "Download"
    REFRESH = "Refresh"
    CONFLICT_RESOLUTION = "ConflictResolution"
    CONNECTIVITY_CHECK = "ConnectivityCheck"


class SyncEventStatus(Enum):
    STARTED = "Started"
    COMPLETED = "Completed"
    FAILED = "Failed"
    SKIPPED = "Skipped"
    IN_PROGRESS = "InProgress"
    CONFLICT_DETECTED = "ConflictDetected"


@dataclass(frozen=True)
class SyncStatusEvent:
    """A single progress notification."""

    entity_type: str
    operation: SyncOperation
    status: SyncEventStatus
    message: str | None = None
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "entity_type": self.entity_type,
            "operation": self.operation.value,
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }


_CLOSED = object()


class EventSubscription:
    """One consumer's view of the channel; iterate it with ``async for``."""

    def __init__(self, channel: EventChannel, buffer_size: int):
        self._channel = channel
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=buffer_size)
        self._closed = False
        self.dropped = 0

    def _offer(self, item: Any) -> None:
        while True:
            try:
                self._queue.put_nowait(item)
                return
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1

    def __aiter__(self) -> EventSubscription:
        return self

    async def __anext__(self) -> SyncStatusEvent:
        if self._closed and self._queue.empty():
            raise StopAsyncIteration
        item = await self._queue.get()
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    async def get(self, timeout: float | None = None) -> SyncStatusEvent:
        """Wait for the next event.

        Raises:
            asyncio.TimeoutError: If no event arrives within timeout
        """
        item = await asyncio.wait_for(self._queue.get(), timeout)
        if item is _CLOSED:
            raise StopAsyncIteration
        return item

    def drain(self) -> list[SyncStatusEvent]:
        """Return every buffered event without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is not _CLOSED:
                events.append(item)
        return events

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._channel._remove(self)
        self._offer(_CLOSED)


class EventChannel:
    """Fan-out of SyncStatusEvents to bounded per-subscriber queues."""

    def __init__(self, buffer_size: int = 256):
        if buffer_size < 1:
            raise ValueError("buffer_size must be at least 1")
        self.buffer_size = buffer_size
        self._subscriptions: list[EventSubscription] = []
        self._published = 0

    def subscribe(self, buffer_size: int | None = None) -> EventSubscription:
        subscription = EventSubscription(self, buffer_size or self.buffer_size)
        self._subscriptions.append(subscription)
        return subscription

    def _remove(self, subscription: EventSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: SyncStatusEvent) -> None:
        """Deliver to every subscriber without blocking."""
        self._published += 1
        for subscription in list(self._subscriptions):
            before = subscription.dropped
            subscription._offer(event)
            if subscription.dropped > before:
                logger.debug("Event subscriber lagging, dropped oldest event")

    def emit(
        self,
        entity_type: str,
        operation: SyncOperation,
        status: SyncEventStatus,
        message: str | None = None,
    ) -> SyncStatusEvent:
        event = SyncStatusEvent(entity_type, operation, status, message)
        self.publish(event)
        return event

    @property
    def published_count(self) -> int:
        return self._published

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def close(self) -> None:
        for subscription in list(self._subscriptions):
            subscription.close()
