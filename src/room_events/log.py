"""Id-keyed in-memory event log for one room.

Every mutation is keyed by event id, never by position or arrival order,
so optimistic patches and push notifications can race freely.
"""
from datetime import datetime
from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set, Tuple

from room_events.models import Event


def event_sort_key(event: Event) -> Tuple[datetime, str]:
    """Chronological sort key: (created_at, id)."""
    return (event.created_at, event.id)


def dedup_events(events: Sequence[Event]) -> List[Event]:
    """Drop repeated ids, keeping the first occurrence."""
    seen: Set[str] = set()
    unique: List[Event] = []
    for event in events:
        if event.id in seen:
            continue
        seen.add(event.id)
        unique.append(event)
    return unique


def visible(events: Iterable[Event]) -> List[Event]:
    """Events that are not soft-deleted."""
    return [e for e in events if not e.is_deleted]


class EventLog:
    """Mutable collection of the visible events of a room.

    Soft-deleted entities are never held: inserting or resetting with one
    is ignored, and replacing an entity with a soft-deleted version removes
    it.
    """

    def __init__(self, events: Iterable[Event] = ()) -> None:
        self._events: Dict[str, Event] = {}
        self.reset(events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events

    def __len__(self) -> int:
        return len(self._events)

    def __iter__(self) -> Iterator[Event]:
        return iter(self.snapshot())

    def get(self, event_id: str) -> Optional[Event]:
        return self._events.get(event_id)

    def snapshot(self) -> Tuple[Event, ...]:
        """Return the events ordered by created_at ascending."""
        return tuple(sorted(self._events.values(), key=event_sort_key))

    def insert(self, event: Event) -> bool:
        """Add an event unless its id is already present.

        Returns:
            True if the log changed.
        """
        if event.is_deleted or event.id in self._events:
            return False
        self._events[event.id] = event
        return True

    def replace(self, event: Event) -> bool:
        """Replace the entity with the same id, in full.

        Absent ids are left absent. A soft-deleted replacement removes the
        entity.

        Returns:
            True if the log changed.
        """
        current = self._events.get(event.id)
        if current is None:
            return False
        if event.is_deleted:
            del self._events[event.id]
            return True
        if current == event:
            return False
        self._events[event.id] = event
        return True

    def remove(self, event_id: str) -> Optional[Event]:
        """Remove and return the event with this id, if present."""
        return self._events.pop(event_id, None)

    def promote(self, provisional_id: str, confirmed: Event) -> bool:
        """Swap a provisional entity for its authoritative version.

        When the authoritative id is already present (the push echo won the
        race) the existing entity is kept, since it may already carry later
        updates.

        Returns:
            True if the log changed.
        """
        removed = self._events.pop(provisional_id, None) is not None
        inserted = self.insert(confirmed)
        return removed or inserted

    def reset(self, events: Iterable[Event]) -> None:
        """Replace the whole content, e.g. after a snapshot reload."""
        ordered = sorted(visible(events), key=event_sort_key)
        self._events = {e.id: e for e in dedup_events(ordered)}
