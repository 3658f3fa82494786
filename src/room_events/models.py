"""Core data models for the room-events library."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from ulid import ULID

RATING_MIN: int = -3
RATING_MAX: int = 3
RATING_FIELDS: Tuple[str, ...] = ("consistency", "smell", "size", "effort")

PROVISIONAL_ID_PREFIX: str = "provisional:"


def new_provisional_id() -> str:
    """Return a fresh id for an optimistic, not yet confirmed event.

    The prefix keeps provisional ids disjoint from anything the remote
    authority assigns.
    """
    return f"{PROVISIONAL_ID_PREFIX}{ULID()}"


def is_provisional_id(event_id: str) -> bool:
    return event_id.startswith(PROVISIONAL_ID_PREFIX)


class SpecialType(str, Enum):
    """Rare classification attached to an event (and mirrored as an aura)."""

    ANGELIC = "angelic"
    DEMONIC = "demonic"


AuraType = SpecialType


class EventState(str, Enum):
    """Whether an event has been confirmed by the remote authority."""

    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"


class Ratings(BaseModel):
    """The four attribute ratings of one event."""

    model_config = ConfigDict(frozen=True)

    consistency: int = Field(0, ge=RATING_MIN, le=RATING_MAX)
    smell: int = Field(0, ge=RATING_MIN, le=RATING_MAX)
    size: int = Field(0, ge=RATING_MIN, le=RATING_MAX)
    effort: int = Field(0, ge=RATING_MIN, le=RATING_MAX)

    def as_tuple(self) -> Tuple[int, int, int, int]:
        return (self.consistency, self.smell, self.size, self.effort)


class Member(BaseModel):
    """A participant of a room."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Stable member identifier")
    display_name: str = Field(..., description="Name shown to other members")
    avatar_glyph: str = Field("", description="Emoji or glyph used as avatar")
    color_tag: str = Field("", description="Display colour")
    room_id: Optional[str] = Field(None, description="Room the member belongs to")
    user_id: Optional[str] = Field(
        None, description="Authenticated principal bound to this member"
    )
    aura_type: Optional[AuraType] = Field(
        None, description="Transient visual status, see active_aura()"
    )
    aura_expires_at: Optional[AwareDatetime] = Field(
        None, description="Instant after which the aura no longer applies"
    )

    def active_aura(self, now: datetime) -> Optional[AuraType]:
        """Return the aura if it is still valid at ``now``, else None.

        The stored fields are never trusted on their own: an aura whose
        expiry has passed reads as None even if no sweep cleared it.
        """
        if self.aura_type is None or self.aura_expires_at is None:
            return None
        if self.aura_expires_at <= now:
            return None
        return self.aura_type

    def with_aura(self, aura_type: AuraType, expires_at: datetime) -> "Member":
        return self.model_copy(
            update={"aura_type": aura_type, "aura_expires_at": expires_at}
        )

    def without_expired_aura(self, now: datetime) -> "Member":
        """Return a copy with the aura cleared when it has expired."""
        if self.aura_type is not None and self.active_aura(now) is None:
            return self.model_copy(
                update={"aura_type": None, "aura_expires_at": None}
            )
        return self


class Room(BaseModel):
    """Isolation boundary holding members and their events."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str = Field(..., description="Human-readable room name")
    invite_code: str = Field(..., description="Code used to join the room")
    created_at: AwareDatetime
    owner_id: str = Field(..., description="User id of the room owner")


class EventFields(BaseModel):
    """Partial update of the mutable fields of an event.

    Only fields that were explicitly set are sent to the remote authority.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    consistency: Optional[int] = Field(None, ge=RATING_MIN, le=RATING_MAX)
    smell: Optional[int] = Field(None, ge=RATING_MIN, le=RATING_MAX)
    size: Optional[int] = Field(None, ge=RATING_MIN, le=RATING_MAX)
    effort: Optional[int] = Field(None, ge=RATING_MIN, le=RATING_MAX)
    notary_present: Optional[bool] = None
    special_type: Optional[SpecialType] = None
    neptunes_touch: Optional[bool] = None
    phantom_cone: Optional[bool] = None

    def changes(self) -> Dict[str, Any]:
        """Return only the explicitly set fields, JSON-compatible."""
        return self.model_dump(mode="json", exclude_unset=True)


class Event(BaseModel):
    """One recorded occurrence in a room."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1, description="Globally unique event id")
    room_id: str = Field(..., min_length=1)
    member_id: str = Field(..., min_length=1)
    created_at: AwareDatetime = Field(
        ...,
        description="Authoritative timestamp (local clock while provisional)",
    )
    consistency: int = Field(0, ge=RATING_MIN, le=RATING_MAX)
    smell: int = Field(0, ge=RATING_MIN, le=RATING_MAX)
    size: int = Field(0, ge=RATING_MIN, le=RATING_MAX)
    effort: int = Field(0, ge=RATING_MIN, le=RATING_MAX)
    notary_present: bool = False
    special_type: Optional[SpecialType] = None
    neptunes_touch: bool = False
    phantom_cone: bool = False
    is_deleted: bool = Field(False, description="Soft-delete marker")
    state: EventState = EventState.CONFIRMED

    @property
    def is_provisional(self) -> bool:
        return self.state is EventState.PROVISIONAL

    @property
    def ratings(self) -> Ratings:
        return Ratings(
            consistency=self.consistency,
            smell=self.smell,
            size=self.size,
            effort=self.effort,
        )

    def with_fields(self, fields: Union[EventFields, Mapping[str, Any]]) -> "Event":
        """Return a validated copy with a partial update applied.

        Raises:
            ValidationError: If the resulting event is invalid.
        """
        changes = fields.changes() if isinstance(fields, EventFields) else dict(fields)
        data = self.model_dump()
        data.update(changes)
        try:
            return Event.model_validate(data)
        except PydanticValidationError as exc:
            raise ValidationError(f"Invalid update for event {self.id}: {exc}") from exc

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"Event(id={self.id[:12]}..., "
            f"member={self.member_id}, "
            f"created_at={self.created_at.isoformat()}, "
            f"state={self.state.value}, "
            f"deleted={self.is_deleted})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize event to dictionary (for the wire)."""
        return self.model_dump(mode="json", exclude={"state"})

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Event":
        """Deserialize an authoritative event row."""
        return cls(**data)


# Custom Exceptions
class RoomEventsError(Exception):
    """Base exception for all library errors."""
    pass


class ValidationError(RoomEventsError):
    """Entity data failed validation."""
    pass


class RemoteAuthorityError(RoomEventsError):
    """A call to the remote system of record failed."""

    def __init__(self, operation: str, reason: str) -> None:
        self.operation = operation
        self.reason = reason
        super().__init__(f"Remote operation {operation!r} failed: {reason}")


class UnknownRoomError(RoomEventsError):
    """Raised when a room id is not known to the authority."""

    def __init__(self, room_id: str) -> None:
        self.room_id = room_id
        super().__init__(f"Unknown room: {room_id!r}")


class StoreNotOpenError(RoomEventsError):
    """Raised when a command is issued before RoomStore.open()."""
    pass
