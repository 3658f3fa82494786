"""RoomStore: the single stateful object the application consumes.

Owns the room's event log, members and room record; dispatches commands to
the mutation pipeline, feeds the push stream through the reconciler, and
exposes analytics over the current snapshot. Consumers observe changes by
registering listeners instead of polling.
"""

import logging
from datetime import date, datetime, timedelta
from enum import Enum
from random import Random
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from room_events import analytics
from room_events.authority import RemoteAuthority, RoomSnapshot, Subscription
from room_events.config import StoreSettings
from room_events.log import EventLog
from room_events.models import (
    AuraType,
    Event,
    EventFields,
    Member,
    Ratings,
    RemoteAuthorityError,
    Room,
    SpecialType,
    StoreNotOpenError,
)
from room_events.pipeline import MutationPipeline
from room_events.reconcile import Reconciler, ReconcileOutcome
from room_events.special import classify_special

logger = logging.getLogger("room_events.store")


class StoreChange(str, Enum):
    """What a listener is being told about."""

    EVENTS = "events"
    MEMBERS = "members"
    ROOM = "room"
    OFFERS = "offers"


StoreListener = Callable[[StoreChange], None]


class RoomStore:
    """Client-resident state of one room.

    Example:
        >>> store = RoomStore(authority, room_id)
        >>> await store.open()
        >>> event = await store.create_event(member_id)
        >>> store.streak(member_id)
        1
    """

    def __init__(
        self,
        authority: RemoteAuthority,
        room_id: str,
        settings: Optional[StoreSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
        rng: Optional[Random] = None,
    ) -> None:
        self.room_id = room_id
        self.settings = settings or StoreSettings()
        if clock is None:
            if self.settings.timezone:
                clock = analytics.zone_clock(self.settings.timezone)
            else:
                clock = analytics.local_now
        self._authority = authority
        self._clock = clock
        self._rng = rng
        self._log = EventLog()
        self._members: Dict[str, Member] = {}
        self._room: Optional[Room] = None
        self._listeners: List[StoreListener] = []
        self._subscription: Optional[Subscription] = None
        self.loading = False
        self.reconciler = Reconciler(self._log, room_id, on_applied=self._on_reconciled)
        self.pipeline = MutationPipeline(
            authority=authority,
            log=self._log,
            room_id=room_id,
            reload=self._recover,
            settings=self.settings,
            clock=clock,
            on_change=self._on_pipeline_change,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def open(self) -> None:
        """Load the snapshot, sweep expired auras and subscribe to changes."""
        await self.reload()
        if self._subscription is None:
            self._subscription = self._authority.subscribe_to_room_changes(
                self.room_id, self.reconciler
            )

    async def close(self) -> None:
        """Stop the push stream and timers. Commands raise until reopened."""
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None
        self.pipeline.cancel_timers()
        self._room = None

    @property
    def is_open(self) -> bool:
        return self._room is not None

    async def reload(self) -> None:
        """Replace log, members and room with a fresh snapshot."""
        self.loading = True
        try:
            snapshot = await self._authority.load_room_snapshot(self.room_id)
        finally:
            self.loading = False
        self._apply_snapshot(snapshot)

    async def _recover(self) -> None:
        """Reload after a failed mutation; a failing reload is only logged."""
        try:
            await self.reload()
        except RemoteAuthorityError as exc:
            logger.warning("Recovery reload of room %s failed: %s", self.room_id, exc)

    def _apply_snapshot(self, snapshot: RoomSnapshot) -> None:
        self._room = snapshot.room
        self._members = {m.id: m for m in snapshot.members}
        self._log.reset(e for e in snapshot.events if e.room_id == self.room_id)
        logger.info(
            "Loaded room %s: %d members, %d events",
            self.room_id, len(self._members), len(self._log),
        )
        self.clear_expired_auras()
        self._notify(StoreChange.ROOM)
        self._notify(StoreChange.MEMBERS)
        self._notify(StoreChange.EVENTS)

    def _require_open(self) -> None:
        if self._room is None:
            raise StoreNotOpenError(f"RoomStore for {self.room_id!r} is not open")

    # ── observers ──────────────────────────────────────────────────────────

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Register a listener. Returns a function that unregisters it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _notify(self, change: StoreChange) -> None:
        for listener in list(self._listeners):
            listener(change)

    def _on_reconciled(self, outcome: ReconcileOutcome) -> None:
        self._notify(StoreChange.EVENTS)

    def _on_pipeline_change(self) -> None:
        self._notify(StoreChange.EVENTS)
        self._notify(StoreChange.OFFERS)

    # ── state ──────────────────────────────────────────────────────────────

    @property
    def room(self) -> Optional[Room]:
        return self._room

    @property
    def events(self) -> Tuple[Event, ...]:
        """Visible events, oldest first."""
        return self._log.snapshot()

    @property
    def members(self) -> Tuple[Member, ...]:
        return tuple(self._members.values())

    def get_event(self, event_id: str) -> Optional[Event]:
        return self._log.get(event_id)

    def get_member(self, member_id: str) -> Optional[Member]:
        return self._members.get(member_id)

    def member_for_user(self, user_id: str) -> Optional[Member]:
        """The member bound to an authenticated user, if any."""
        for member in self._members.values():
            if member.user_id == user_id:
                return member
        return None

    def can_moderate(self, event: Event, user_id: str) -> bool:
        """Whether ``user_id`` may soft-delete or restore ``event``.

        Allowed for the room owner and for the user bound to the event's
        member.
        """
        if self._room is not None and self._room.owner_id == user_id:
            return True
        author = self._members.get(event.member_id)
        return author is not None and author.user_id == user_id

    @property
    def undo_event(self) -> Optional[Event]:
        return self.pipeline.undo_event

    @property
    def restorable_event_id(self) -> Optional[str]:
        return self.pipeline.restorable_event_id

    # ── commands ───────────────────────────────────────────────────────────

    async def create_event(self, member_id: str) -> Optional[Event]:
        self._require_open()
        return await self.pipeline.create_event(member_id)

    async def update_event_ratings(
        self, event_id: str, fields: Union[EventFields, Mapping[str, Any]]
    ) -> bool:
        self._require_open()
        return await self.pipeline.update_event_ratings(event_id, fields)

    async def undo(self) -> bool:
        self._require_open()
        return await self.pipeline.undo()

    def dismiss_undo(self) -> None:
        self.pipeline.dismiss_undo()

    async def soft_delete(self, event_id: str, room_id: Optional[str] = None) -> bool:
        self._require_open()
        return await self.pipeline.soft_delete(event_id, room_id)

    async def restore(self, event_id: str, room_id: Optional[str] = None) -> bool:
        self._require_open()
        return await self.pipeline.restore(event_id, room_id)

    def dismiss_restore(self) -> None:
        self.pipeline.dismiss_restore()

    async def rate_event(
        self,
        event_id: str,
        ratings: Ratings,
        notary_present: bool = False,
        neptunes_touch: bool = False,
        phantom_cone: bool = False,
    ) -> Optional[SpecialType]:
        """Save the ratings of an event and roll for a special type.

        A drawn special type is stored on the event and given to its author
        as an aura.

        Returns:
            The drawn special type, or None.
        """
        self._require_open()
        special = classify_special(
            ratings, rng=self._rng, probability=self.settings.special_event_probability
        )
        fields = EventFields(
            consistency=ratings.consistency,
            smell=ratings.smell,
            size=ratings.size,
            effort=ratings.effort,
            notary_present=notary_present,
            special_type=special,
            neptunes_touch=neptunes_touch,
            phantom_cone=phantom_cone,
        )
        saved = await self.pipeline.update_event_ratings(event_id, fields)
        if not saved:
            return None

        event = self._log.get(event_id)
        if special is not None and event is not None:
            await self.set_member_aura(event.member_id, special)
        return special

    # ── auras ──────────────────────────────────────────────────────────────

    async def set_member_aura(self, member_id: str, aura_type: AuraType) -> bool:
        """Give a member an aura for the configured lifetime."""
        expires_at = self._clock() + timedelta(hours=self.settings.aura_ttl_hours)
        try:
            await self._authority.set_member_aura(member_id, aura_type, expires_at)
        except RemoteAuthorityError as exc:
            logger.warning("Setting aura of member %s failed: %s", member_id, exc)
            return False

        member = self._members.get(member_id)
        if member is not None:
            self._members[member_id] = member.with_aura(aura_type, expires_at)
            self._notify(StoreChange.MEMBERS)
        return True

    def clear_expired_auras(self) -> int:
        """Sweep expired auras from local members. Returns how many."""
        now = self._clock()
        cleared = 0
        for member_id, member in list(self._members.items()):
            swept = member.without_expired_aura(now)
            if swept is not member:
                self._members[member_id] = swept
                cleared += 1
        if cleared:
            self._notify(StoreChange.MEMBERS)
        return cleared

    def active_aura(self, member_id: str) -> Optional[AuraType]:
        member = self._members.get(member_id)
        return member.active_aura(self._clock()) if member is not None else None

    # ── analytics over the current snapshot ────────────────────────────────

    def count_in_range(self, member_id: str, days: int) -> int:
        return analytics.count_in_range(self.events, member_id, days, self._clock())

    def calendar_week_count(self, member_id: str) -> int:
        return analytics.calendar_week_count(self.events, member_id, self._clock())

    def day_count(self, member_id: str, day: analytics.DayLike) -> int:
        return analytics.day_count(self.events, member_id, day, self._clock())

    def today_count(self, member_id: str) -> int:
        return analytics.today_count(self.events, member_id, self._clock())

    def all_time_count(self, member_id: str) -> int:
        return analytics.all_time_count(self.events, member_id)

    def events_for_day(self, member_id: str, day: analytics.DayLike) -> List[Event]:
        return analytics.events_for_day(self.events, member_id, day, self._clock())

    def week_dots(self, member_id: str) -> List[bool]:
        return analytics.week_dots(self.events, member_id, self._clock())

    def streak(self, member_id: str) -> int:
        return analytics.streak(
            self.events, member_id, self._clock(), self.settings.streak_horizon_days
        )

    def heatmap(
        self, member_id: Optional[str] = None, days: Optional[int] = None
    ) -> List[analytics.HeatmapCell]:
        return analytics.heatmap(
            self.events, member_id, days or self.settings.heatmap_days, self._clock()
        )

    def calendar_grid(
        self,
        start: analytics.DayLike,
        end: analytics.DayLike,
        member_id: Optional[str] = None,
    ) -> analytics.CalendarGrid:
        return analytics.calendar_grid(self.events, member_id, start, end, self._clock())

    def leaderboard(
        self, period: analytics.LeaderboardPeriod = analytics.LeaderboardPeriod.LAST_7_DAYS
    ) -> List[analytics.LeaderboardEntry]:
        return analytics.leaderboard(self.events, self.members, period, self._clock())

    def member_profile(self, member_id: str) -> analytics.MemberProfileStats:
        return analytics.member_profile(
            self.events, member_id, self._clock(), self.settings.profile_window_days
        )

    def activity_log(
        self, activity_filter: analytics.ActivityFilter = analytics.ActivityFilter.TODAY
    ) -> List[analytics.ActivityDay]:
        return analytics.activity_log(
            self.events,
            self.members,
            activity_filter,
            self._clock(),
            self.settings.activity_log_limit,
        )

    def recent_activity(self, limit: int = analytics.DEFAULT_RECENT_LIMIT) -> List[analytics.ActivityEntry]:
        return analytics.recent_activity(self.events, self.members, limit)

    def last_n_days(self, n: int) -> List[date]:
        return analytics.last_n_days(n, self._clock())
