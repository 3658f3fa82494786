"""
room-events: client-resident event store for shared rooms.

This library keeps the event log of one room in memory, applies user
actions optimistically, reconciles them with a remote system of record and
with the room's push stream, and derives streaks, rankings and calendars
from the result.

Example:
    >>> from room_events import InMemoryRoomAuthority, RoomStore
    >>> authority = InMemoryRoomAuthority()
    >>> room = authority.create_room("Flat 4", owner_id="user-1")
    >>> alice = authority.add_member(room.id, "Alice", user_id="user-1")
    >>> store = RoomStore(authority, room.id)
    >>> await store.open()
    >>> await store.create_event(alice.id)
    >>> store.today_count(alice.id)
    1
"""

__version__ = "1.0.0"

# Core data models
from room_events.models import (
    RATING_MIN,
    RATING_MAX,
    RATING_FIELDS,
    PROVISIONAL_ID_PREFIX,
    SpecialType,
    AuraType,
    EventState,
    Ratings,
    Member,
    Room,
    Event,
    EventFields,
    RoomEventsError,
    ValidationError,
    RemoteAuthorityError,
    UnknownRoomError,
    StoreNotOpenError,
    new_provisional_id,
    is_provisional_id,
)

# Configuration
from room_events.config import StoreSettings

# Event log
from room_events.log import (
    EventLog,
    dedup_events,
    event_sort_key,
)

# Special-event classification
from room_events.special import (
    DEFAULT_SPECIAL_PROBABILITY,
    special_candidate,
    classify_special,
)

# Analytics
from room_events.analytics import (
    local_now,
    zone_clock,
    start_of_day,
    count_in_range,
    calendar_week_count,
    day_count,
    today_count,
    all_time_count,
    events_for_day,
    last_n_days,
    week_dots,
    streak,
    HeatmapCell,
    heatmap,
    CalendarCell,
    MonthLabel,
    CalendarGrid,
    calendar_grid,
    LeaderboardPeriod,
    LeaderboardEntry,
    leaderboard,
    MemberProfileStats,
    member_profile,
    ActivityFilter,
    ActivityEntry,
    ActivityDay,
    activity_log,
    recent_activity,
)

# Remote authority
from room_events.authority import (
    ChangeType,
    ChangeNotification,
    ChangeListener,
    RoomSnapshot,
    Subscription,
    RemoteAuthority,
    InMemoryRoomAuthority,
)

# Timers
from room_events.timers import ExpiringSlot

# Reconciliation
from room_events.reconcile import (
    ReconcileOutcome,
    apply_change,
    Reconciler,
)

# Mutation pipeline and store
from room_events.pipeline import MutationPipeline
from room_events.store import (
    StoreChange,
    StoreListener,
    RoomStore,
)

__all__ = [
    # Models
    "RATING_MIN",
    "RATING_MAX",
    "RATING_FIELDS",
    "PROVISIONAL_ID_PREFIX",
    "SpecialType",
    "AuraType",
    "EventState",
    "Ratings",
    "Member",
    "Room",
    "Event",
    "EventFields",
    "new_provisional_id",
    "is_provisional_id",
    # Exceptions
    "RoomEventsError",
    "ValidationError",
    "RemoteAuthorityError",
    "UnknownRoomError",
    "StoreNotOpenError",
    # Configuration
    "StoreSettings",
    # Event log
    "EventLog",
    "dedup_events",
    "event_sort_key",
    # Special events
    "DEFAULT_SPECIAL_PROBABILITY",
    "special_candidate",
    "classify_special",
    # Analytics
    "local_now",
    "zone_clock",
    "start_of_day",
    "count_in_range",
    "calendar_week_count",
    "day_count",
    "today_count",
    "all_time_count",
    "events_for_day",
    "last_n_days",
    "week_dots",
    "streak",
    "HeatmapCell",
    "heatmap",
    "CalendarCell",
    "MonthLabel",
    "CalendarGrid",
    "calendar_grid",
    "LeaderboardPeriod",
    "LeaderboardEntry",
    "leaderboard",
    "MemberProfileStats",
    "member_profile",
    "ActivityFilter",
    "ActivityEntry",
    "ActivityDay",
    "activity_log",
    "recent_activity",
    # Remote authority
    "ChangeType",
    "ChangeNotification",
    "ChangeListener",
    "RoomSnapshot",
    "Subscription",
    "RemoteAuthority",
    "InMemoryRoomAuthority",
    # Timers
    "ExpiringSlot",
    # Reconciliation
    "ReconcileOutcome",
    "apply_change",
    "Reconciler",
    # Pipeline and store
    "MutationPipeline",
    "StoreChange",
    "StoreListener",
    "RoomStore",
]
