"""Shared pytest fixtures for all tests."""
import pytest
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

from ulid import ULID

from room_events import (
    Event,
    InMemoryRoomAuthority,
    Member,
    Room,
    RoomStore,
    StoreSettings,
)

# Wednesday 2026-03-18, 15:00 at UTC+2.
LOCAL_TZ = timezone(timedelta(hours=2))
NOW = datetime(2026, 3, 18, 15, 0, tzinfo=LOCAL_TZ)

ROOM_ID = "room-1"


def at(days_ago: int = 0, hour: int = 12, minute: int = 0) -> datetime:
    """Local instant ``days_ago`` days before NOW's date, at the given time."""
    day = NOW.date() - timedelta(days=days_ago)
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=LOCAL_TZ)


def make_event(**overrides: Any) -> Event:
    """Build an Event with defaults for all required fields.

    Callers override specific fields as needed.
    """
    defaults: Dict[str, Any] = {
        "id": str(ULID()),
        "room_id": ROOM_ID,
        "member_id": "m-alice",
        "created_at": NOW - timedelta(hours=1),
    }
    defaults.update(overrides)
    return Event(**defaults)


def make_member(**overrides: Any) -> Member:
    defaults: Dict[str, Any] = {
        "id": "m-" + str(ULID()).lower(),
        "display_name": "Member",
        "room_id": ROOM_ID,
    }
    defaults.update(overrides)
    return Member(**defaults)


def fast_settings(**overrides: Any) -> StoreSettings:
    """Settings with windows short enough to expire inside a test."""
    values: Dict[str, Any] = {
        "undo_window_seconds": 0.05,
        "restore_window_seconds": 0.05,
    }
    values.update(overrides)
    return StoreSettings(**values)


class SequenceRandom:
    """Deterministic stand-in for ``random.Random`` returning queued rolls."""

    def __init__(self, *rolls: float) -> None:
        self.rolls = list(rolls)
        self.calls = 0

    def random(self) -> float:
        self.calls += 1
        return self.rolls.pop(0)


@dataclass
class RoomFixture:
    authority: InMemoryRoomAuthority
    room: Room
    alice: Member
    bob: Member

    def store(self, **kwargs: Any) -> RoomStore:
        kwargs.setdefault("settings", fast_settings())
        kwargs.setdefault("clock", lambda: NOW)
        return RoomStore(self.authority, self.room.id, **kwargs)

    def seed(self, member: Member, **overrides: Any) -> Event:
        overrides.setdefault("room_id", self.room.id)
        event = make_event(member_id=member.id, **overrides)
        self.authority.seed_event(event)
        return event


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def authority() -> InMemoryRoomAuthority:
    return InMemoryRoomAuthority(clock=lambda: NOW)


@pytest.fixture
def room(authority: InMemoryRoomAuthority) -> RoomFixture:
    """A room owned by Alice, with Alice and Bob as members."""
    created = authority.create_room("Flat 4", owner_id="user-alice")
    alice = authority.add_member(created.id, "Alice", user_id="user-alice", avatar_glyph="A")
    bob = authority.add_member(created.id, "Bob", user_id="user-bob", avatar_glyph="B")
    return RoomFixture(authority=authority, room=created, alice=alice, bob=bob)
