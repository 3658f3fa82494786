"""Special-event classification.

Two gates decide whether an event turns out angelic or demonic: a
deterministic rule over its ratings, then a single draw from a
cryptographically strong random source.
"""

import logging
import secrets
from random import Random
from typing import Mapping, Optional, Tuple, Union

from room_events.models import RATING_FIELDS, Event, Ratings, SpecialType

logger = logging.getLogger("room_events.special")

DEFAULT_SPECIAL_PROBABILITY: float = 0.25

RatingsLike = Union[Ratings, Event, Mapping[str, int]]

_system_random = secrets.SystemRandom()


def _rating_values(ratings: RatingsLike) -> Tuple[int, ...]:
    if isinstance(ratings, Ratings):
        return ratings.as_tuple()
    if isinstance(ratings, Event):
        return ratings.ratings.as_tuple()
    return tuple(int(ratings.get(name, 0)) for name in RATING_FIELDS)


def special_candidate(ratings: RatingsLike) -> Optional[SpecialType]:
    """Apply the deterministic gate.

    Let P be the number of ratings strictly above zero and N the number
    strictly below. Angelic when P > N and P >= 2, demonic when N > P and
    N >= 2, otherwise None.
    """
    values = _rating_values(ratings)
    positive = sum(1 for v in values if v > 0)
    negative = sum(1 for v in values if v < 0)

    if positive > negative and positive >= 2:
        return SpecialType.ANGELIC
    if negative > positive and negative >= 2:
        return SpecialType.DEMONIC
    return None


def classify_special(
    ratings: RatingsLike,
    rng: Optional[Random] = None,
    probability: float = DEFAULT_SPECIAL_PROBABILITY,
) -> Optional[SpecialType]:
    """Classify one event as angelic, demonic or ordinary.

    Args:
        ratings: The four attribute ratings.
        rng: Source of the draw. Defaults to ``secrets.SystemRandom``.
            Never consulted when the deterministic gate yields nothing.
        probability: Acceptance rate of the random gate.

    Returns:
        The candidate type when the draw in [0, 1) falls below
        ``probability``, else None.
    """
    candidate = special_candidate(ratings)
    if candidate is None:
        return None

    source = rng if rng is not None else _system_random
    roll = source.random()
    if roll < probability:
        logger.debug("Special event drawn: %s (roll=%.4f)", candidate.value, roll)
        return candidate
    return None
