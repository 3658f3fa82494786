"""Property tests for leaderboard ordering, streaks and classification."""
import random
from datetime import timedelta

from hypothesis import given, settings
from hypothesis import strategies as st

from room_events.analytics import LeaderboardPeriod, leaderboard, streak, today_count
from room_events.models import Event, Member, Ratings, SpecialType
from room_events.special import classify_special, special_candidate

from conftest import NOW, ROOM_ID

_MEMBER_IDS = ["m-ann", "m-ben", "m-cat", "m-dan", "m-eve"]

_members = st.lists(
    st.sampled_from(_MEMBER_IDS), min_size=1, max_size=5, unique=True
).map(lambda ids: [Member(id=i, display_name=i, room_id=ROOM_ID) for i in ids])


@st.composite
def _events(draw: st.DrawFn) -> list:
    count = draw(st.integers(0, 40))
    return [
        Event(
            id=f"evt-{index}",
            room_id=ROOM_ID,
            member_id=draw(st.sampled_from(_MEMBER_IDS)),
            created_at=NOW - timedelta(hours=draw(st.integers(0, 24 * 40))),
            notary_present=draw(st.booleans()),
            special_type=draw(st.sampled_from([None, SpecialType.ANGELIC, SpecialType.DEMONIC])),
            is_deleted=draw(st.booleans()),
        )
        for index in range(count)
    ]


_ratings = st.builds(
    Ratings,
    consistency=st.integers(-3, 3),
    smell=st.integers(-3, 3),
    size=st.integers(-3, 3),
    effort=st.integers(-3, 3),
)


@given(events=_events(), members=_members, period=st.sampled_from(list(LeaderboardPeriod)))
@settings(deadline=None)
def test_leaderboard_is_total_order(events, members, period):
    entries = leaderboard(events, members, period, NOW)
    assert [e.rank for e in entries] == list(range(1, len(members) + 1))
    keys = [(-e.count, -e.angelic_count, -e.notary_fraction, e.member.id) for e in entries]
    assert keys == sorted(keys)
    assert len(set(keys)) == len(keys)


@given(events=_events(), members=_members, seed=st.integers())
@settings(deadline=None)
def test_leaderboard_independent_of_input_order(events, members, seed):
    rng = random.Random(seed)
    shuffled_events = list(events)
    shuffled_members = list(members)
    rng.shuffle(shuffled_events)
    rng.shuffle(shuffled_members)
    assert leaderboard(events, members, now=NOW) == leaderboard(
        shuffled_events, shuffled_members, now=NOW
    )


@given(events=_events(), member_id=st.sampled_from(_MEMBER_IDS))
@settings(deadline=None)
def test_streak_zero_iff_no_event_today(events, member_id):
    assert (streak(events, member_id, NOW) == 0) == (today_count(events, member_id, NOW) == 0)


@given(ratings=_ratings, roll=st.floats(0.0, 1.0, exclude_max=True))
@settings(deadline=None)
def test_classification_respects_gate(ratings, roll):
    consulted = []

    class Recorder:
        def random(self) -> float:
            consulted.append(roll)
            return roll

    candidate = special_candidate(ratings)
    result = classify_special(ratings, rng=Recorder())
    if candidate is None:
        assert result is None
        assert consulted == []
    else:
        assert consulted == [roll]
        assert result == (candidate if roll < 0.25 else None)


@given(ratings=_ratings)
@settings(deadline=None)
def test_candidate_is_symmetric_under_negation(ratings):
    negated = Ratings(**{k: -v for k, v in ratings.model_dump().items()})
    flipped = {SpecialType.ANGELIC: SpecialType.DEMONIC, SpecialType.DEMONIC: SpecialType.ANGELIC, None: None}
    assert special_candidate(negated) == flipped[special_candidate(ratings)]
