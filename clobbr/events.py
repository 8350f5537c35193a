"""Run events and the bus that delivers them.

Observers either subscribe a callable (called synchronously, in publish
order) or consume stream(), an asyncio.Queue-backed channel that decouples
a slow consumer (e.g. a terminal dashboard) from the run producing events.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .logging_config import get_logger
from .models import LogItem

logger = get_logger("events")


class EventKind(str, Enum):
    RUN_STARTED = "RUN_STARTED"
    RESPONSE_OK = "RESPONSE_OK"
    RESPONSE_FAILED = "RESPONSE_FAILED"
    RUN_FINISHED = "RUN_FINISHED"
    RUN_CANCELLED = "RUN_CANCELLED"

    @property
    def terminal(self) -> bool:
        return self in (EventKind.RUN_FINISHED, EventKind.RUN_CANCELLED)


@dataclass(slots=True, frozen=True)
class RunEvent:
    """One published event. logs is the snapshot of completed attempts at publish time."""

    kind: EventKind
    item: LogItem | None = None
    logs: tuple[LogItem, ...] = ()
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


# on_event(kind, item, logs_so_far): plain callback form
EventCallback = Callable[[EventKind, "LogItem | None", "tuple[LogItem, ...]"], None]
EventSubscriber = Callable[[RunEvent], None]


class EventBus:
    """Fan-out of RunEvents to callbacks and queue-backed streams."""

    def __init__(self) -> None:
        self._subscribers: list[EventSubscriber] = []
        self._queues: list[asyncio.Queue[RunEvent]] = []
        self._published = 0

    @property
    def published(self) -> int:
        return self._published

    def subscribe(self, subscriber: EventSubscriber) -> Callable[[], None]:
        """Register subscriber; returns a function that unregisters it."""
        self._subscribers.append(subscriber)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return unsubscribe

    def subscribe_callback(self, on_event: EventCallback) -> Callable[[], None]:
        """Adapt an on_event(kind, item, logs) callback onto the bus."""
        return self.subscribe(lambda event: on_event(event.kind, event.item, event.logs))

    def publish(self, event: RunEvent) -> None:
        """Deliver event to every subscriber, then to every open stream.

        A failing subscriber is logged and skipped; it never stops delivery
        to the others nor the run that published the event.
        """
        self._published += 1
        for subscriber in list(self._subscribers):
            try:
                subscriber(event)
            except Exception:  # noqa: BLE001 - subscriber isolation boundary
                logger.exception("Event subscriber failed on %s", event.kind.value)
        for queue in list(self._queues):
            queue.put_nowait(event)

    def stream(self) -> "EventStream":
        """Open a channel receiving every event published from now on.

        The queue is registered immediately, not on first iteration, so no
        event published between stream() and the first await is lost. The
        stream ends after a terminal event (RUN_FINISHED / RUN_CANCELLED);
        a consumer that stops early must close() it.
        """
        queue: asyncio.Queue[RunEvent] = asyncio.Queue()
        self._queues.append(queue)
        return EventStream(self, queue)

    def _discard(self, queue: asyncio.Queue[RunEvent]) -> None:
        if queue in self._queues:
            self._queues.remove(queue)


class EventStream:
    """Async iterator over one bus queue. Unregisters itself when it ends, is cancelled or closed."""

    def __init__(self, bus: EventBus, queue: asyncio.Queue[RunEvent]) -> None:
        self._bus = bus
        self._queue = queue
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        """Stop receiving events. Safe to call more than once."""
        self._closed = True
        self._bus._discard(self._queue)

    def __aiter__(self) -> "EventStream":
        return self

    async def __anext__(self) -> RunEvent:
        if self._closed:
            raise StopAsyncIteration
        try:
            event = await self._queue.get()
        except asyncio.CancelledError:
            self.close()
            raise
        if event.kind.terminal:
            self.close()
        return event
