"""Remote system of record: abstract contract and in-memory implementation.

The store never talks to a concrete backend directly. Everything it needs
from the remote side goes through ``RemoteAuthority``; failures surface as
``RemoteAuthorityError``.

``InMemoryRoomAuthority`` is a complete implementation for tests and local
development. It keeps soft-deleted rows, leaves them out of snapshots,
broadcasts change notifications to subscribers and can be told to fail a
given operation.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from ulid import ULID

from room_events.log import event_sort_key
from room_events.models import (
    AuraType,
    Event,
    EventFields,
    Member,
    RemoteAuthorityError,
    Room,
    UnknownRoomError,
)

logger = logging.getLogger("room_events.authority")

# ── Section 1: Change notifications ──────────────────────────────────────────


class ChangeType(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


class ChangeNotification(BaseModel):
    """One entry of the room's push stream.

    Insert and update carry the full entity. A delete may carry only the id.
    """

    model_config = ConfigDict(frozen=True)

    change_type: ChangeType
    event_id: str = Field("", description="Id of the affected event")
    entity: Optional[Event] = None

    @model_validator(mode="before")
    @classmethod
    def _fill_event_id(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("event_id"):
            return data
        entity = data.get("entity")
        if isinstance(entity, Event):
            return {**data, "event_id": entity.id}
        if isinstance(entity, dict) and entity.get("id"):
            return {**data, "event_id": entity["id"]}
        return data

    @model_validator(mode="after")
    def _check_entity(self) -> "ChangeNotification":
        if self.change_type is not ChangeType.DELETE and self.entity is None:
            raise ValueError(f"{self.change_type.value} notification requires an entity")
        if not self.event_id:
            raise ValueError("notification requires an event_id")
        if self.entity is not None and self.event_id != self.entity.id:
            raise ValueError(
                f"event_id {self.event_id!r} does not match entity id {self.entity.id!r}"
            )
        return self

    @property
    def room_id(self) -> Optional[str]:
        return self.entity.room_id if self.entity is not None else None


ChangeListener = Callable[[ChangeNotification], None]


class RoomSnapshot(BaseModel):
    """Full authoritative state of one room."""

    model_config = ConfigDict(frozen=True)

    room: Room
    members: Tuple[Member, ...] = ()
    events: Tuple[Event, ...] = ()


class Subscription(ABC):
    """Handle of a push subscription."""

    @abstractmethod
    def close(self) -> None:
        """Stop delivering notifications. Idempotent."""

    @property
    @abstractmethod
    def closed(self) -> bool:
        ...


# ── Section 2: Contract ──────────────────────────────────────────────────────


class RemoteAuthority(ABC):
    """Operations the store requires from the system of record.

    Every coroutine raises ``RemoteAuthorityError`` on failure.
    """

    @abstractmethod
    async def insert_event(self, room_id: str, member_id: str) -> Event:
        """Create an event and return the authoritative entity."""

    @abstractmethod
    async def update_event(self, event_id: str, fields: Mapping[str, Any]) -> None:
        """Apply a partial update."""

    @abstractmethod
    async def soft_delete_event(self, event_id: str, room_id: str) -> None:
        """Privileged: flag an event as deleted."""

    @abstractmethod
    async def restore_event(self, event_id: str, room_id: str) -> None:
        """Privileged: clear the deleted flag of an event."""

    @abstractmethod
    async def delete_event(self, event_id: str) -> None:
        """Hard-delete an event (undo of a fresh create)."""

    @abstractmethod
    async def load_room_snapshot(self, room_id: str) -> RoomSnapshot:
        """Return room, members and visible events."""

    @abstractmethod
    def subscribe_to_room_changes(
        self, room_id: str, on_change: ChangeListener
    ) -> Subscription:
        """Register a listener for the room's push stream."""

    @abstractmethod
    async def set_member_aura(
        self, member_id: str, aura_type: Optional[AuraType], expires_at: Optional[datetime]
    ) -> None:
        """Persist a member's aura."""


# ── Section 3: In-memory implementation ──────────────────────────────────────


class _InMemorySubscription(Subscription):
    def __init__(self, authority: "InMemoryRoomAuthority", room_id: str,
                 listener: ChangeListener) -> None:
        self._authority = authority
        self.room_id = room_id
        self.listener = listener
        self._closed = False

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._authority._detach(self)

    @property
    def closed(self) -> bool:
        return self._closed


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryRoomAuthority(RemoteAuthority):
    """Dictionary-backed authority.

    Attributes:
        auto_deliver: When True notifications reach subscribers before the
            mutating call returns. When False they queue until ``flush()``,
            which lets tests interleave echoes with pending mutations.
        calls: Names of the operations invoked, in order.

    Example:
        >>> authority = InMemoryRoomAuthority()
        >>> room = authority.create_room("Flat 4", owner_id="user-1")
        >>> member = authority.add_member(room.id, "Alice", user_id="user-1")
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        auto_deliver: bool = True,
    ) -> None:
        self._clock = clock
        self.auto_deliver = auto_deliver
        self._rooms: Dict[str, Room] = {}
        self._members: Dict[str, Member] = {}
        self._events: Dict[str, Event] = {}
        self._subscriptions: List[_InMemorySubscription] = []
        self._pending: List[ChangeNotification] = []
        self._failures: Dict[str, int] = {}
        self.calls: List[str] = []

    # -- seeding ----------------------------------------------------------

    def create_room(self, name: str, owner_id: str, invite_code: Optional[str] = None) -> Room:
        room_id = str(ULID())
        room = Room(
            id=room_id,
            name=name,
            invite_code=invite_code or room_id[-6:].lower(),
            created_at=self._clock(),
            owner_id=owner_id,
        )
        self._rooms[room.id] = room
        return room

    def add_member(
        self,
        room_id: str,
        display_name: str,
        user_id: Optional[str] = None,
        avatar_glyph: str = "",
        color_tag: str = "",
    ) -> Member:
        self._require_room(room_id)
        member = Member(
            id=str(ULID()),
            display_name=display_name,
            avatar_glyph=avatar_glyph,
            color_tag=color_tag,
            room_id=room_id,
            user_id=user_id,
        )
        self._members[member.id] = member
        return member

    def seed_event(self, event: Event) -> None:
        """Store an event as-is, without broadcasting."""
        self._require_room(event.room_id)
        self._events[event.id] = event

    def get_event(self, event_id: str) -> Optional[Event]:
        """Authoritative row, soft-deleted or not."""
        return self._events.get(event_id)

    def get_member(self, member_id: str) -> Optional[Member]:
        return self._members.get(member_id)

    # -- failure injection -------------------------------------------------

    def fail_next(self, operation: str, times: int = 1) -> None:
        """Make the next ``times`` calls of ``operation`` raise."""
        self._failures[operation] = self._failures.get(operation, 0) + times

    def _enter(self, operation: str) -> None:
        self.calls.append(operation)
        remaining = self._failures.get(operation, 0)
        if remaining > 0:
            self._failures[operation] = remaining - 1
            logger.debug("Injected failure for %s", operation)
            raise RemoteAuthorityError(operation, "injected failure")

    # -- notifications -----------------------------------------------------

    def publish(self, notification: ChangeNotification) -> None:
        """Send a notification through the push stream."""
        self._pending.append(notification)
        if self.auto_deliver:
            self.flush()

    def flush(self) -> int:
        """Deliver queued notifications. Returns how many were delivered."""
        delivered = 0
        while self._pending:
            notification = self._pending.pop(0)
            room_id = notification.room_id or self._room_of(notification.event_id)
            for subscription in list(self._subscriptions):
                if subscription.closed:
                    continue
                if room_id is not None and subscription.room_id != room_id:
                    continue
                subscription.listener(notification)
            delivered += 1
        return delivered

    @property
    def pending(self) -> Tuple[ChangeNotification, ...]:
        return tuple(self._pending)

    def _room_of(self, event_id: str) -> Optional[str]:
        event = self._events.get(event_id)
        return event.room_id if event is not None else None

    def _detach(self, subscription: _InMemorySubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    # -- RemoteAuthority ---------------------------------------------------

    async def insert_event(self, room_id: str, member_id: str) -> Event:
        self._enter("insert_event")
        if room_id not in self._rooms:
            raise RemoteAuthorityError("insert_event", f"unknown room {room_id!r}")
        member = self._members.get(member_id)
        if member is None or member.room_id != room_id:
            raise RemoteAuthorityError("insert_event", f"unknown member {member_id!r}")

        event = Event(
            id=str(ULID()),
            room_id=room_id,
            member_id=member_id,
            created_at=self._clock(),
        )
        self._events[event.id] = event
        self.publish(ChangeNotification(change_type=ChangeType.INSERT, entity=event))
        return event

    async def update_event(self, event_id: str, fields: Mapping[str, Any]) -> None:
        self._enter("update_event")
        current = self._existing("update_event", event_id)
        changes = EventFields.model_validate(dict(fields)).changes()
        updated = current.with_fields(changes)
        self._events[event_id] = updated
        self.publish(ChangeNotification(change_type=ChangeType.UPDATE, entity=updated))

    async def soft_delete_event(self, event_id: str, room_id: str) -> None:
        self._enter("soft_delete_event")
        current = self._existing("soft_delete_event", event_id)
        if current.room_id != room_id:
            raise RemoteAuthorityError("soft_delete_event", "event not in room")
        updated = current.model_copy(update={"is_deleted": True})
        self._events[event_id] = updated
        self.publish(ChangeNotification(change_type=ChangeType.UPDATE, entity=updated))

    async def restore_event(self, event_id: str, room_id: str) -> None:
        self._enter("restore_event")
        current = self._existing("restore_event", event_id)
        if current.room_id != room_id:
            raise RemoteAuthorityError("restore_event", "event not in room")
        updated = current.model_copy(update={"is_deleted": False})
        self._events[event_id] = updated
        self.publish(ChangeNotification(change_type=ChangeType.UPDATE, entity=updated))

    async def delete_event(self, event_id: str) -> None:
        self._enter("delete_event")
        current = self._existing("delete_event", event_id)
        # Broadcast before dropping the row so the room can still be resolved.
        self.publish(ChangeNotification(
            change_type=ChangeType.DELETE, event_id=event_id, entity=current
        ))
        del self._events[event_id]

    async def load_room_snapshot(self, room_id: str) -> RoomSnapshot:
        self._enter("load_room_snapshot")
        room = self._require_room(room_id)
        members = tuple(m for m in self._members.values() if m.room_id == room_id)
        events = sorted(
            (e for e in self._events.values() if e.room_id == room_id and not e.is_deleted),
            key=event_sort_key,
        )
        return RoomSnapshot(room=room, members=members, events=tuple(events))

    def subscribe_to_room_changes(
        self, room_id: str, on_change: ChangeListener
    ) -> Subscription:
        subscription = _InMemorySubscription(self, room_id, on_change)
        self._subscriptions.append(subscription)
        return subscription

    async def set_member_aura(
        self, member_id: str, aura_type: Optional[AuraType], expires_at: Optional[datetime]
    ) -> None:
        self._enter("set_member_aura")
        member = self._members.get(member_id)
        if member is None:
            raise RemoteAuthorityError("set_member_aura", f"unknown member {member_id!r}")
        self._members[member_id] = member.model_copy(
            update={"aura_type": aura_type, "aura_expires_at": expires_at}
        )

    # -- helpers -------------------------------------------------------------

    def _require_room(self, room_id: str) -> Room:
        room = self._rooms.get(room_id)
        if room is None:
            raise UnknownRoomError(room_id)
        return room

    def _existing(self, operation: str, event_id: str) -> Event:
        event = self._events.get(event_id)
        if event is None:
            raise RemoteAuthorityError(operation, f"unknown event {event_id!r}")
        return event

    @property
    def subscriber_count(self) -> int:
        return sum(1 for s in self._subscriptions if not s.closed)
