"""Derived analytics over a room's event log.

Every function here is pure: it takes a snapshot of events (soft-deleted
ones are excluded internally), optionally the members, and an explicit
``now``. Day boundaries are local midnights in ``now``'s timezone. Nothing
here performs I/O or mutates its inputs.
"""
import math
import time as _time
from collections import Counter
from datetime import date, datetime, timedelta, timezone, tzinfo
from datetime import time as _time_of_day
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import pytz
from pydantic import BaseModel, ConfigDict

from room_events.log import event_sort_key, visible
from room_events.models import Event, Member, SpecialType, ValidationError

DayLike = Union[date, datetime]
Zone = Optional[tzinfo]

DEFAULT_STREAK_HORIZON_DAYS: int = 365
DEFAULT_HEATMAP_DAYS: int = 90
DEFAULT_PROFILE_WINDOW_DAYS: int = 30
DEFAULT_ACTIVITY_LIMIT: int = 50
DEFAULT_RECENT_LIMIT: int = 2

# ── Section 1: Time helpers ──────────────────────────────────────────────────


def local_now() -> datetime:
    """Current instant as a timezone-aware local datetime."""
    return datetime.now().astimezone()


def zone_clock(name: str) -> Callable[[], datetime]:
    """Clock reading the current instant in the named IANA zone.

    Raises:
        ValidationError: If ``name`` is not a known zone.
    """
    try:
        tz = pytz.timezone(name)
    except pytz.UnknownTimeZoneError as exc:
        raise ValidationError(f"Unknown timezone: {name}") from exc
    return lambda: datetime.now(tz)


def _resolve_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return local_now()
    if now.tzinfo is None:
        return now.astimezone()
    return now


def _follows_system_rules(now: datetime) -> bool:
    """True when ``now`` carries the fixed offset ``astimezone()`` produces.

    Such an offset is only valid for the current instant; day boundaries of
    other dates must be taken from the system's rules instead.
    """
    tz = now.tzinfo
    if not isinstance(tz, timezone):
        return False
    local = _time.localtime(now.timestamp())
    return (
        tz.utcoffset(None) == timedelta(seconds=local.tm_gmtoff)
        and tz.tzname(None) == local.tm_zone
    )


def _zone(now: datetime) -> Zone:
    """Zone defining local days for ``now``; None means system local time."""
    if now.tzinfo is None or _follows_system_rules(now):
        return None
    return now.tzinfo


def _local_date(moment: datetime, tz: Zone) -> date:
    if tz is None:
        return moment.astimezone().date()
    return moment.astimezone(tz).date()


def _as_date(day: DayLike, tz: Zone) -> date:
    if isinstance(day, datetime):
        if day.tzinfo is None:
            return day.date()
        return _local_date(day, tz)
    return day


def start_of_day(day: DayLike, tz: Zone = None) -> datetime:
    """Local midnight opening the given day.

    The offset is the one in force on that day, so midnights on either side
    of a daylight-saving change are both correct.
    """
    midnight = datetime.combine(_as_date(day, tz), _time_of_day.min)
    if tz is None:
        return midnight.astimezone()
    if hasattr(tz, "localize"):
        # pytz zones must attach their offset through localize().
        return tz.localize(midnight)
    return midnight.replace(tzinfo=tz)


def _member_events(
    events: Iterable[Event], member_id: Optional[str]
) -> List[Event]:
    live = visible(events)
    if member_id is None:
        return live
    return [e for e in live if e.member_id == member_id]


def _counts_by_day(events: Iterable[Event], tz: Zone) -> Counter[date]:
    return Counter(_local_date(e.created_at, tz) for e in events)


# ── Section 2: Counts ────────────────────────────────────────────────────────


def count_in_range(
    events: Sequence[Event],
    member_id: str,
    days: int,
    now: Optional[datetime] = None,
) -> int:
    """Events of a member in the trailing ``days * 24h`` (rolling window)."""
    current = _resolve_now(now)
    cutoff = current - timedelta(days=days)
    return sum(1 for e in _member_events(events, member_id) if e.created_at >= cutoff)


def calendar_week_count(
    events: Sequence[Event],
    member_id: str,
    now: Optional[datetime] = None,
) -> int:
    """Events of a member since Monday 00:00 of the current ISO week."""
    current = _resolve_now(now)
    tz = _zone(current)
    today = current.date()
    monday = start_of_day(today - timedelta(days=today.weekday()), tz)
    return sum(1 for e in _member_events(events, member_id) if e.created_at >= monday)


def day_count(
    events: Sequence[Event],
    member_id: str,
    day: DayLike,
    now: Optional[datetime] = None,
) -> int:
    """Events of a member within ``[start_of_day(day), +1 day)``."""
    return len(events_for_day(events, member_id, day, now))


def today_count(
    events: Sequence[Event],
    member_id: str,
    now: Optional[datetime] = None,
) -> int:
    current = _resolve_now(now)
    return day_count(events, member_id, current.date(), current)


def all_time_count(events: Sequence[Event], member_id: str) -> int:
    return len(_member_events(events, member_id))


def events_for_day(
    events: Sequence[Event],
    member_id: str,
    day: DayLike,
    now: Optional[datetime] = None,
) -> List[Event]:
    """Events of a member on one local day, oldest first."""
    tz = _zone(_resolve_now(now))
    start = start_of_day(day, tz)
    end = start_of_day(start.date() + timedelta(days=1), tz)
    selected = [
        e for e in _member_events(events, member_id)
        if start <= e.created_at < end
    ]
    return sorted(selected, key=event_sort_key)


def last_n_days(n: int, now: Optional[datetime] = None) -> List[date]:
    """The last ``n`` local dates, oldest first, ending today."""
    today = _resolve_now(now).date()
    return [today - timedelta(days=offset) for offset in range(n - 1, -1, -1)]


def week_dots(
    events: Sequence[Event],
    member_id: str,
    now: Optional[datetime] = None,
) -> List[bool]:
    """One flag per day of the trailing week (oldest first): any events?"""
    current = _resolve_now(now)
    per_day = _counts_by_day(_member_events(events, member_id), _zone(current))
    return [per_day[d] > 0 for d in last_n_days(7, current)]


# ── Section 3: Streak ────────────────────────────────────────────────────────


def streak(
    events: Sequence[Event],
    member_id: str,
    now: Optional[datetime] = None,
    horizon_days: int = DEFAULT_STREAK_HORIZON_DAYS,
) -> int:
    """Consecutive days with events, walking back from today.

    The walk starts at today (offset 0), so a member with no events today
    has a streak of 0 regardless of yesterday.
    """
    current = _resolve_now(now)
    per_day = _counts_by_day(_member_events(events, member_id), _zone(current))
    today = current.date()

    count = 0
    for offset in range(horizon_days):
        if per_day[today - timedelta(days=offset)] > 0:
            count += 1
        else:
            break
    return count


# ── Section 4: Heatmaps ──────────────────────────────────────────────────────


class HeatmapCell(BaseModel):
    """Event count of one local day."""

    model_config = ConfigDict(frozen=True)

    date: date
    count: int


def heatmap(
    events: Sequence[Event],
    member_id: Optional[str],
    days: int = DEFAULT_HEATMAP_DAYS,
    now: Optional[datetime] = None,
) -> List[HeatmapCell]:
    """Daily counts for the trailing ``days`` calendar days, oldest first.

    Counts cover all members when ``member_id`` is None.
    """
    current = _resolve_now(now)
    per_day = _counts_by_day(_member_events(events, member_id), _zone(current))
    return [HeatmapCell(date=d, count=per_day[d]) for d in last_n_days(days, current)]


class CalendarCell(BaseModel):
    """One cell of the week-aligned calendar grid."""

    model_config = ConfigDict(frozen=True)

    date: date
    count: int
    in_range: bool
    is_today: bool
    row: int
    column: int


class MonthLabel(BaseModel):
    """Month caption placed above a grid column."""

    model_config = ConfigDict(frozen=True)

    column: int
    year: int
    month: int


class CalendarGrid(BaseModel):
    """7 x W matrix: ``rows[weekday][week]``, Monday first."""

    model_config = ConfigDict(frozen=True)

    start: date
    end: date
    rows: Tuple[Tuple[CalendarCell, ...], ...]
    month_labels: Tuple[MonthLabel, ...]
    max_count: int

    @property
    def week_count(self) -> int:
        return len(self.rows[0]) if self.rows else 0

    def cells(self) -> List[CalendarCell]:
        return [cell for row in self.rows for cell in row]

    def intensity(self, cell: CalendarCell) -> float:
        """Share of ``max_count`` in [0, 1]; out-of-range cells are 0."""
        if not cell.in_range or self.max_count == 0:
            return 0.0
        return cell.count / self.max_count


def calendar_grid(
    events: Sequence[Event],
    member_id: Optional[str],
    start: DayLike,
    end: DayLike,
    now: Optional[datetime] = None,
) -> CalendarGrid:
    """Pad ``[start, end]`` out to whole Monday..Sunday weeks.

    Cells outside the requested window are ``in_range=False`` with a count
    of 0, so they never feed ``max_count``. Month labels come from scanning
    the first row (Mondays) left to right and emitting a label whenever the
    month differs from the last emitted one.

    Raises:
        ValidationError: If ``start`` is after ``end``.
    """
    current = _resolve_now(now)
    tz = _zone(current)
    first = _as_date(start, tz)
    last = _as_date(end, tz)
    if first > last:
        raise ValidationError(f"Calendar window start {first} is after end {last}")

    grid_start = first - timedelta(days=first.weekday())
    grid_end = last + timedelta(days=6 - last.weekday())
    weeks = ((grid_end - grid_start).days + 1) // 7
    today = current.date()
    per_day = _counts_by_day(_member_events(events, member_id), tz)

    rows: List[Tuple[CalendarCell, ...]] = []
    for weekday in range(7):
        row: List[CalendarCell] = []
        for week in range(weeks):
            day = grid_start + timedelta(days=week * 7 + weekday)
            in_range = first <= day <= last
            row.append(CalendarCell(
                date=day,
                count=per_day[day] if in_range else 0,
                in_range=in_range,
                is_today=day == today,
                row=weekday,
                column=week,
            ))
        rows.append(tuple(row))

    labels: List[MonthLabel] = []
    for cell in rows[0]:
        if not labels or (labels[-1].year, labels[-1].month) != (cell.date.year, cell.date.month):
            labels.append(MonthLabel(
                column=cell.column, year=cell.date.year, month=cell.date.month
            ))

    max_count = max((c.count for row in rows for c in row if c.in_range), default=0)

    return CalendarGrid(
        start=first,
        end=last,
        rows=tuple(rows),
        month_labels=tuple(labels),
        max_count=max_count,
    )


# ── Section 5: Leaderboard ───────────────────────────────────────────────────


class LeaderboardPeriod(str, Enum):
    TODAY = "today"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    ALL_TIME = "all"


def period_start(period: LeaderboardPeriod, now: datetime) -> Optional[datetime]:
    """First instant counted by a period; None means unbounded."""
    if period is LeaderboardPeriod.TODAY:
        return start_of_day(now.date(), _zone(now))
    if period is LeaderboardPeriod.LAST_7_DAYS:
        return now - timedelta(days=7)
    if period is LeaderboardPeriod.LAST_30_DAYS:
        return now - timedelta(days=30)
    return None


class LeaderboardEntry(BaseModel):
    """A member's standing for one period."""

    model_config = ConfigDict(frozen=True)

    rank: int
    member: Member
    count: int
    angelic_count: int
    notary_fraction: float


def leaderboard(
    events: Sequence[Event],
    members: Sequence[Member],
    period: LeaderboardPeriod = LeaderboardPeriod.LAST_7_DAYS,
    now: Optional[datetime] = None,
) -> List[LeaderboardEntry]:
    """Rank members for a period.

    Ordering: event count desc, angelic count desc, share of events with a
    notary present desc, member id asc. The id tie-break makes the result a
    total order.
    """
    current = _resolve_now(now)
    cutoff = period_start(period, current)

    per_member: Dict[str, List[Event]] = {m.id: [] for m in members}
    for event in visible(events):
        if event.member_id not in per_member:
            continue
        if cutoff is not None and event.created_at < cutoff:
            continue
        per_member[event.member_id].append(event)

    rows: List[Tuple[Member, int, int, float]] = []
    for member in members:
        period_events = per_member[member.id]
        count = len(period_events)
        angelic = sum(1 for e in period_events if e.special_type is SpecialType.ANGELIC)
        notary = sum(1 for e in period_events if e.notary_present)
        fraction = notary / count if count else 0.0
        rows.append((member, count, angelic, fraction))

    rows.sort(key=lambda r: (-r[1], -r[2], -r[3], r[0].id))

    return [
        LeaderboardEntry(
            rank=position,
            member=member,
            count=count,
            angelic_count=angelic,
            notary_fraction=fraction,
        )
        for position, (member, count, angelic, fraction) in enumerate(rows, start=1)
    ]


# ── Section 6: Member profile ────────────────────────────────────────────────


def _percent(part: int, total: int) -> int:
    if total == 0:
        return 0
    return int(math.floor(part * 100 / total + 0.5))


class MemberProfileStats(BaseModel):
    """Per-member statistics over a trailing window."""

    model_config = ConfigDict(frozen=True)

    member_id: str
    window_days: int
    total: int
    avg_per_day: float
    best_day: int
    notary_rate: int
    angelic_count: int
    demonic_count: int
    special_rate: int
    neptunes_count: int
    neptunes_pct: int
    phantom_count: int
    phantom_pct: int
    last_special_at: Optional[datetime] = None


def member_profile(
    events: Sequence[Event],
    member_id: str,
    now: Optional[datetime] = None,
    window_days: int = DEFAULT_PROFILE_WINDOW_DAYS,
) -> MemberProfileStats:
    """Profile statistics for one member.

    The window opens at local midnight ``window_days`` ago. Percentages are
    rounded half up; ``last_special_at`` looks at all time.
    """
    current = _resolve_now(now)
    tz = _zone(current)
    cutoff = start_of_day(current.date() - timedelta(days=window_days), tz)

    mine = _member_events(events, member_id)
    recent = [e for e in mine if e.created_at >= cutoff]
    total = len(recent)

    per_day = _counts_by_day(recent, tz)
    angelic = sum(1 for e in recent if e.special_type is SpecialType.ANGELIC)
    demonic = sum(1 for e in recent if e.special_type is SpecialType.DEMONIC)
    notary = sum(1 for e in recent if e.notary_present)
    neptunes = sum(1 for e in recent if e.neptunes_touch)
    phantom = sum(1 for e in recent if e.phantom_cone)

    specials = [e.created_at for e in mine if e.special_type is not None]

    return MemberProfileStats(
        member_id=member_id,
        window_days=window_days,
        total=total,
        avg_per_day=round(total / window_days, 1),
        best_day=max(per_day.values(), default=0),
        notary_rate=_percent(notary, total),
        angelic_count=angelic,
        demonic_count=demonic,
        special_rate=_percent(angelic + demonic, total),
        neptunes_count=neptunes,
        neptunes_pct=_percent(neptunes, total),
        phantom_count=phantom,
        phantom_pct=_percent(phantom, total),
        last_special_at=max(specials, default=None),
    )


# ── Section 7: Activity log ──────────────────────────────────────────────────


class ActivityFilter(str, Enum):
    TODAY = "today"
    LAST_7_DAYS = "7d"
    ALL = "all"


class ActivityEntry(BaseModel):
    """An event paired with its author (None if the member is unknown)."""

    model_config = ConfigDict(frozen=True)

    event: Event
    member: Optional[Member] = None


class ActivityDay(BaseModel):
    """Activity entries of one local day, newest first."""

    model_config = ConfigDict(frozen=True)

    day: date
    label: Optional[str] = None
    entries: Tuple[ActivityEntry, ...] = ()


def _newest_first(events: Iterable[Event]) -> List[Event]:
    return sorted(events, key=event_sort_key, reverse=True)


def activity_log(
    events: Sequence[Event],
    members: Sequence[Member],
    activity_filter: ActivityFilter = ActivityFilter.TODAY,
    now: Optional[datetime] = None,
    limit: int = DEFAULT_ACTIVITY_LIMIT,
) -> List[ActivityDay]:
    """Newest events grouped by local day.

    Day labels are "today", "yesterday" or None. Events stamped after
    ``now`` are left out.
    """
    current = _resolve_now(now)
    tz = _zone(current)
    today = current.date()

    cutoff: Optional[datetime] = None
    if activity_filter is ActivityFilter.TODAY:
        cutoff = start_of_day(today, tz)
    elif activity_filter is ActivityFilter.LAST_7_DAYS:
        cutoff = start_of_day(today - timedelta(days=7), tz)

    selected = [
        e for e in visible(events)
        if e.created_at <= current and (cutoff is None or e.created_at >= cutoff)
    ]
    selected = _newest_first(selected)[:limit]

    by_id = {m.id: m for m in members}
    groups: List[ActivityDay] = []
    pending: List[ActivityEntry] = []
    pending_day: Optional[date] = None

    def _flush() -> None:
        if pending_day is None:
            return
        label: Optional[str] = None
        if pending_day == today:
            label = "today"
        elif pending_day == today - timedelta(days=1):
            label = "yesterday"
        groups.append(ActivityDay(day=pending_day, label=label, entries=tuple(pending)))

    for event in selected:
        day = _local_date(event.created_at, tz)
        if day != pending_day:
            _flush()
            pending = []
            pending_day = day
        pending.append(ActivityEntry(event=event, member=by_id.get(event.member_id)))
    _flush()

    return groups


def recent_activity(
    events: Sequence[Event],
    members: Sequence[Member],
    limit: int = DEFAULT_RECENT_LIMIT,
) -> List[ActivityEntry]:
    """The newest ``limit`` events with their authors."""
    by_id = {m.id: m for m in members}
    return [
        ActivityEntry(event=e, member=by_id.get(e.member_id))
        for e in _newest_first(visible(events))[:limit]
    ]
