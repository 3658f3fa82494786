"""Unit tests for local day boundaries across daylight-saving changes.

Europe/Berlin switches from CET (UTC+1) to CEST (UTC+2) on 2026-03-29.
"""
import os
import time
from datetime import date, datetime, timedelta

import pytest
import pytz

from room_events.analytics import (
    calendar_grid,
    day_count,
    events_for_day,
    heatmap,
    start_of_day,
    streak,
    zone_clock,
)
from room_events.models import ValidationError

from conftest import make_event

ALICE = "m-alice"
BERLIN = pytz.timezone("Europe/Berlin")


def berlin(*args: int) -> datetime:
    return BERLIN.localize(datetime(*args))


@pytest.fixture
def system_berlin():
    """Switch the process's local time to Europe/Berlin for one test."""
    if not hasattr(time, "tzset"):
        pytest.skip("time.tzset is unavailable on this platform")
    previous = os.environ.get("TZ")
    os.environ["TZ"] = "Europe/Berlin"
    time.tzset()
    try:
        if time.localtime(datetime(2026, 1, 10).timestamp()).tm_zone != "CET":
            pytest.skip("Europe/Berlin zone data is not installed")
        yield
    finally:
        if previous is None:
            del os.environ["TZ"]
        else:
            os.environ["TZ"] = previous
        time.tzset()


class TestNamedZone:
    """Day boundaries follow the zone's rules on each day, not now's offset."""

    def test_winter_event_counted_from_summer(self):
        now = berlin(2026, 7, 1, 12)
        events = [make_event(created_at=berlin(2026, 1, 10, 23, 30))]
        assert day_count(events, ALICE, date(2026, 1, 10), now) == 1
        assert day_count(events, ALICE, date(2026, 1, 11), now) == 0

    def test_start_of_day_uses_offset_of_that_day(self):
        tz = berlin(2026, 7, 1, 12).tzinfo
        assert start_of_day(date(2026, 1, 10), tz).utcoffset() == timedelta(hours=1)
        assert start_of_day(date(2026, 7, 10), tz).utcoffset() == timedelta(hours=2)

    def test_events_for_day_spans_switch(self):
        now = berlin(2026, 3, 30, 12)
        early = make_event(created_at=berlin(2026, 3, 29, 0, 30))
        late = make_event(created_at=berlin(2026, 3, 29, 23, 30))
        outside = make_event(created_at=berlin(2026, 3, 30, 0, 10))
        selected = events_for_day([outside, late, early], ALICE, date(2026, 3, 29), now)
        assert [e.id for e in selected] == [early.id, late.id]

    def test_heatmap_across_switch(self):
        now = berlin(2026, 3, 30, 12)
        events = [
            make_event(created_at=berlin(2026, 3, 27, 23, 30)),
            make_event(created_at=berlin(2026, 3, 28, 12, 0)),
            make_event(created_at=berlin(2026, 3, 29, 23, 30)),
            make_event(created_at=berlin(2026, 3, 30, 0, 30)),
        ]
        cells = heatmap(events, ALICE, days=4, now=now)
        assert [(c.date, c.count) for c in cells] == [
            (date(2026, 3, 27), 1),
            (date(2026, 3, 28), 1),
            (date(2026, 3, 29), 1),
            (date(2026, 3, 30), 1),
        ]

    def test_streak_across_switch(self):
        now = berlin(2026, 3, 30, 9)
        events = [
            make_event(created_at=berlin(2026, 3, 28, 23, 45)),
            make_event(created_at=berlin(2026, 3, 29, 8, 0)),
            make_event(created_at=berlin(2026, 3, 30, 0, 15)),
        ]
        assert streak(events, ALICE, now) == 3

    def test_calendar_grid_counts_winter_days(self):
        now = berlin(2026, 7, 1, 12)
        events = [make_event(created_at=berlin(2026, 1, 10, 23, 30))]
        grid = calendar_grid(events, ALICE, date(2026, 1, 5), date(2026, 1, 11), now)
        counts = {c.date: c.count for row in grid.rows for c in row}
        assert counts[date(2026, 1, 10)] == 1
        assert counts[date(2026, 1, 11)] == 0


class TestSystemLocalTime:
    """A ``now`` taken from the system clock follows the system's zone rules."""

    def test_winter_event_counted_from_summer(self, system_berlin):
        now = datetime(2026, 7, 1, 12).astimezone()
        events = [make_event(created_at=datetime(2026, 1, 10, 23, 30).astimezone())]
        assert day_count(events, ALICE, date(2026, 1, 10), now) == 1
        assert day_count(events, ALICE, date(2026, 1, 11), now) == 0

    def test_naive_now_is_system_local(self, system_berlin):
        events = [make_event(created_at=datetime(2026, 1, 10, 23, 30).astimezone())]
        assert day_count(events, ALICE, date(2026, 1, 10), datetime(2026, 7, 1, 12)) == 1

    def test_start_of_day_without_zone(self, system_berlin):
        assert start_of_day(date(2026, 1, 10)).utcoffset() == timedelta(hours=1)
        assert start_of_day(date(2026, 7, 10)).utcoffset() == timedelta(hours=2)


class TestZoneClock:
    """Tests for clocks reading a named zone."""

    def test_reads_named_zone(self):
        current = zone_clock("Europe/Berlin")()
        assert current.tzinfo.zone == "Europe/Berlin"

    def test_unknown_zone(self):
        with pytest.raises(ValidationError, match="Mars/Olympus"):
            zone_clock("Mars/Olympus")
