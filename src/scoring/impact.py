"""
Impact and priority scoring.

Pure functions with no I/O. Per-item scores use the two-tier recency
multiplier; group metrics use the three-tier recency weights. Roadmap items
and tickets each have their own priority tiers.
"""

from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence, Tuple

# Per-item recency: feedback newer than this many days gets the boost.
RECENT_WINDOW_DAYS = 30
RECENT_MULTIPLIER = 1.5

# Aggregate recency (summed per item inside the metrics query).
TIERED_RECENCY_WEIGHTS: Tuple[Tuple[int, float], ...] = ((30, 2.0), (90, 1.5))
TIERED_RECENCY_BASELINE = 1.0

# Rating substituted for unrated feedback in aggregate averages.
NEUTRAL_RATING = 3.0

# Roadmap items: three tiers.
ROADMAP_PRIORITY_TIERS: Tuple[Tuple[float, str], ...] = ((100, "P0"), (50, "P1"))
ROADMAP_DEFAULT_PRIORITY = "P2"

# Ticket escalation: five levels.
TICKET_ESCALATION_TIERS: Tuple[Tuple[float, int, str], ...] = (
    (150, 0, "URGENT"),
    (100, 1, "CRITICAL"),
    (40, 2, "HIGH"),
    (15, 3, "MEDIUM"),
)
TICKET_DEFAULT_ESCALATION = (4, "LOW")


def days_since(posted_at: datetime, now: Optional[datetime] = None) -> float:
    """Days elapsed between posted_at and now (naive datetimes are treated as UTC)."""
    if now is None:
        now = datetime.now(timezone.utc)
    if posted_at.tzinfo is None:
        posted_at = posted_at.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    return (now - posted_at).total_seconds() / 86400


def rating_impact(rating: Optional[float]) -> Optional[float]:
    """
    Impact of a star rating: (6 - rating) / 5.

    Lower ratings yield higher impact. Returns None for missing or
    non-positive ratings so callers can exclude them.
    """
    if rating is None or rating <= 0:
        return None
    return (6 - rating) / 5


def recency_multiplier(days: float) -> float:
    """Per-item recency boost."""
    return RECENT_MULTIPLIER if days <= RECENT_WINDOW_DAYS else 1.0


def tiered_recency_weight(days: float) -> float:
    """Aggregate recency weight: 2 within 30 days, 1.5 within 90, else 1."""
    for window, weight in TIERED_RECENCY_WEIGHTS:
        if days <= window:
            return weight
    return TIERED_RECENCY_BASELINE


def item_impact(rating: Optional[float], days: float) -> float:
    """Impact of a single feedback item."""
    score = 1.0
    impact = rating_impact(rating)
    if impact is not None:
        score *= impact
    return score * recency_multiplier(days)


def batch_impact_score(items: Sequence[Tuple[Optional[float], float]]) -> float:
    """
    Average item impact for (rating, days_since_posted) pairs, scaled by the
    share of items that carried a rating.
    """
    if not items:
        return 0.0

    total_score = 0.0
    rated = 0
    for rating, days in items:
        total_score += item_impact(rating, days)
        if rating_impact(rating) is not None:
            rated += 1

    normalized = total_score / len(items)
    if rated > 0:
        normalized *= rated / len(items)
    return normalized


def group_impact_score(count: int, avg_rating: float, recency_score: float) -> float:
    """Composite ranking score for an insight group: count x avg_rating x summed recency."""
    return count * avg_rating * recency_score


def aggregate_recency_score(ages_in_days: Iterable[float]) -> float:
    """Sum of tiered recency weights, the in-memory counterpart of the metrics query."""
    return sum(tiered_recency_weight(days) for days in ages_in_days)


def trending_score(count: int, avg_rating: float, recent_count: int) -> float:
    """Score for a LOB > Category key within a scoped report."""
    return count * avg_rating * (1 + recent_count)


def weighted_feedback_score(count: int, avg_rating: float) -> float:
    """Score for a distinct feedback text: count x average rating."""
    return count * avg_rating


def composite_score(user_count: int, frequency: int, importance: float) -> float:
    """(user_count * 3 + frequency) * importance."""
    return (user_count * 3 + frequency) * importance


def roadmap_priority(user_count: int, frequency: int, importance: float) -> str:
    """Three-tier roadmap priority: P0 / P1 / P2."""
    score = composite_score(user_count, frequency, importance)
    for threshold, label in ROADMAP_PRIORITY_TIERS:
        if score > threshold:
            return label
    return ROADMAP_DEFAULT_PRIORITY


def ticket_escalation(user_count: int, frequency: int, severity: float) -> Tuple[int, str]:
    """Five-level ticket escalation: (level, name), level 0 (URGENT) to 4 (LOW)."""
    score = composite_score(user_count, frequency, severity)
    for threshold, level, name in TICKET_ESCALATION_TIERS:
        if score > threshold:
            return level, name
    return TICKET_DEFAULT_ESCALATION


def ticket_priority_label(level: int) -> str:
    return f"P{level}"


def ticket_severity(affected_users: int, mentions: int) -> float:
    """Severity derived from reach and volume, never below 1."""
    return max(1.0, (affected_users * 2 + mentions) / 10.0)


def rank_by_score(items: List, score_of) -> List:
    """Sort descending by score; ties keep insertion order."""
    return sorted(items, key=lambda item: -score_of(item))
