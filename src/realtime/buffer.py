"""Bounded notification buffers.

Each stream keeps its recent events in a NotificationBuffer: newest first,
never longer than its capacity. Readers get immutable snapshots; every
mutation swaps in a new tuple, so a reader never sees a half-applied insert.
"""

import logging
from collections.abc import Callable, Mapping
from types import MappingProxyType
from typing import Generic, TypeVar

from src.realtime.models import PushEvent

logger = logging.getLogger(__name__)

E = TypeVar("E", bound=PushEvent)

BufferListener = Callable[[tuple], None]


class NotificationBuffer(Generic[E]):
    """Newest-first, capacity-bounded store of recent events.

    With ``replace_by_key`` an insert first removes any entry sharing the
    event's dedup key, so the buffer holds at most one entry per key (used
    for per-code statistics).
    """

    def __init__(self, capacity: int, replace_by_key: bool = False):
        """Initialize buffer.

        Args:
            capacity: Maximum number of events kept
            replace_by_key: Upsert by dedup key instead of appending duplicates

        Raises:
            ValueError: If capacity is not positive
        """
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._replace_by_key = replace_by_key
        self._events: tuple[E, ...] = ()
        self._listeners: list[BufferListener] = []

    @property
    def capacity(self) -> int:
        return self._capacity

    def __len__(self) -> int:
        return len(self._events)

    def insert(self, event: E) -> None:
        """Prepend an event, evicting from the tail when over capacity."""
        current = self._events
        if self._replace_by_key:
            key = event.dedup_key
            current = tuple(e for e in current if e.dedup_key != key)
        self._events = ((event,) + current)[: self._capacity]
        self._notify()

    def insert_many(self, events: list[E]) -> None:
        """Insert events in order; the last one ends up at index 0."""
        if not events:
            return
        current = self._events
        for event in events:
            if self._replace_by_key:
                key = event.dedup_key
                current = tuple(e for e in current if e.dedup_key != key)
            current = ((event,) + current)[: self._capacity]
        self._events = current
        self._notify()

    def clear(self) -> None:
        """Empty the buffer. Clearing an empty buffer is a no-op."""
        if not self._events:
            return
        dropped = len(self._events)
        self._events = ()
        logger.debug("Buffer cleared", extra={"dropped": dropped})
        self._notify()

    def snapshot(self) -> tuple[E, ...]:
        """Current events, newest first. The tuple is never mutated."""
        return self._events

    def as_mapping(self) -> Mapping[str, E]:
        """Read-only view of the current events keyed by dedup key.

        Meaningful for keyed buffers; for others the newest event per key wins.
        """
        by_key: dict[str, E] = {}
        for event in self._events:
            by_key.setdefault(event.dedup_key, event)
        return MappingProxyType(by_key)

    def add_listener(self, listener: BufferListener) -> Callable[[], None]:
        """Register a callback receiving each new snapshot.

        Returns:
            A function that removes the listener
        """
        self._listeners.append(listener)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        snapshot = self._events
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                # rendering-layer bugs must not break dispatch
                logger.exception("Buffer listener failed")
