import math
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, TypeVar

# ---------------------------------------------------------------------------
# Hot score: signed log-scaled net votes minus an age penalty
#   net     = positive - negative
#   order   = log10(max(|net|, 1))
#   penalty = age_hours / (age_hours + offset) ** exponent
#   score   = sign(net) * order - penalty
# ---------------------------------------------------------------------------

HOT_DECAY_OFFSET = 2.0
HOT_DECAY_EXPONENT = 1.5

T = TypeVar("T")


def age_in_hours(created_at: datetime, now: Optional[datetime] = None) -> float:
    """
    Hours elapsed since `created_at`, never negative.
    Naive datetimes are treated as UTC (SQLite drops tzinfo on read).
    """
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    hours = (now - created_at).total_seconds() / 3600
    return max(0.0, hours)  # guard against future-dated posts


def hot_score_for_age(
    positive: int,
    negative: int,
    age_hours: float,
    offset: float = HOT_DECAY_OFFSET,
    exponent: float = HOT_DECAY_EXPONENT,
) -> float:
    """Hot score for counters at a known age. Pure: same inputs, same output."""
    net = positive - negative
    sign = 1 if net > 0 else -1 if net < 0 else 0
    order = math.log10(max(abs(net), 1))
    decay = (age_hours + offset) ** exponent
    return sign * order - age_hours / decay


def compute_hot_score(
    positive: int,
    negative: int,
    created_at: datetime,
    now: Optional[datetime] = None,
    offset: float = HOT_DECAY_OFFSET,
    exponent: float = HOT_DECAY_EXPONENT,
) -> float:
    """
    Score an item from its vote counters and creation time.

    Args:
        positive: count of positive interactions (insights / upvotes)
        negative: count of negative interactions (challenges / downvotes)
        created_at: when the item was created
        now: reference time, defaults to the current UTC time

    Returns:
        a real-valued score, higher = hotter
    """
    return hot_score_for_age(positive, negative, age_in_hours(created_at, now), offset, exponent)


def rank_by_hot_score(
    items: Iterable[T],
    score: Callable[[T], float],
) -> List[T]:
    """Sort items by `score(item)` descending. Ties keep their incoming order."""
    return sorted(items, key=score, reverse=True)
