"""EventQueue: hand-off channel between the ingestion listener and the Journaler.

Not thread-safe. Every call must happen on the event loop thread; producers
living in other threads go through ``loop.call_soon_threadsafe(queue.append, ev)``.
"""

from __future__ import annotations

import logging
from collections import deque
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Iterable, Iterator

    from genie_journal.models import Event

logger = logging.getLogger("genie_journal.event_queue")


class EventQueue:
    """Unbounded FIFO of ingested events with append listeners."""

    def __init__(self) -> None:
        self._events: deque[Event] = deque()
        self._listeners: list[Callable[[], None]] = []

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(list(self._events))

    def subscribe(self, callback: Callable[[], None]) -> None:
        """Call ``callback()`` after every append."""
        self._listeners.append(callback)

    def append(self, event: Event) -> None:
        self._events.append(event)
        logger.debug("event queued: %s (%d pending)", event.type, len(self._events))
        for cb in self._listeners:
            cb()

    def drain_all(self) -> list[Event]:
        """Return every queued event in FIFO order and empty the queue."""
        drained = list(self._events)
        self._events.clear()
        return drained

    def requeue(self, events: Iterable[Event]) -> None:
        """Put previously drained events back in front of anything newer."""
        self._events.extendleft(reversed(list(events)))
