"""Unit tests for the impact and priority scoring functions."""
from datetime import datetime, timedelta, timezone

import pytest

from src.scoring.impact import (
    aggregate_recency_score, batch_impact_score, composite_score, days_since,
    group_impact_score, item_impact, rank_by_score, rating_impact, recency_multiplier,
    roadmap_priority, ticket_escalation, ticket_priority_label, ticket_severity,
    tiered_recency_weight, trending_score, weighted_feedback_score,
)


class TestRatingAndRecency:
    """Per-item scoring."""

    @pytest.mark.parametrize("rating,expected", [(1, 1.0), (3, 0.6), (5, 0.2)])
    def test_rating_impact(self, rating, expected):
        assert rating_impact(rating) == pytest.approx(expected)

    @pytest.mark.parametrize("rating", [None, 0, -1])
    def test_rating_impact_missing(self, rating):
        assert rating_impact(rating) is None

    def test_recency_multiplier_boundary(self):
        assert recency_multiplier(0) == 1.5
        assert recency_multiplier(30) == 1.5
        assert recency_multiplier(30.5) == 1.0

    def test_tiered_recency_weight(self):
        assert tiered_recency_weight(10) == 2.0
        assert tiered_recency_weight(60) == 1.5
        assert tiered_recency_weight(365) == 1.0

    def test_days_since_accepts_naive_datetimes(self):
        now = datetime(2024, 3, 11, tzinfo=timezone.utc)
        assert days_since(datetime(2024, 3, 1), now) == pytest.approx(10)

    def test_item_impact(self):
        assert item_impact(1, 5) == pytest.approx(1.5)
        assert item_impact(5, 100) == pytest.approx(0.2)
        assert item_impact(None, 100) == pytest.approx(1.0)


class TestBatchImpact:
    """Averaged impact over a batch."""

    def test_empty_batch(self):
        assert batch_impact_score([]) == 0.0

    def test_all_rated(self):
        # (1.0 * 1.5 + 0.2 * 1.0) / 2
        assert batch_impact_score([(1, 5), (5, 100)]) == pytest.approx(0.85)

    def test_scaled_by_rated_share(self):
        # (1.0 * 1.5 + 1.0) / 2 * (1 / 2)
        assert batch_impact_score([(1, 5), (None, 100)]) == pytest.approx(0.625)

    def test_unrated_only(self):
        assert batch_impact_score([(None, 100), (None, 100)]) == pytest.approx(1.0)


class TestGroupScores:
    """Composite scores used for ranking."""

    def test_group_impact_score(self):
        assert group_impact_score(10, 2.5, 14.0) == pytest.approx(350.0)

    def test_aggregate_recency_score(self):
        assert aggregate_recency_score([1, 45, 200]) == pytest.approx(4.5)

    def test_trending_score(self):
        assert trending_score(4, 2.0, 3) == pytest.approx(32.0)

    def test_weighted_feedback_score(self):
        assert weighted_feedback_score(3, 4.0) == pytest.approx(12.0)

    def test_rank_by_score_keeps_insertion_order_for_ties(self):
        items = [("a", 10), ("b", 30), ("c", 30), ("d", 5)]
        ranked = rank_by_score(items, lambda item: item[1])
        assert [name for name, _ in ranked] == ["b", "c", "a", "d"]


class TestPriorityPolicies:
    """Roadmap and ticket tiers."""

    def test_composite_score(self):
        assert composite_score(10, 5, 2.0) == pytest.approx(70.0)

    @pytest.mark.parametrize("users,frequency,importance,expected", [
        (30, 20, 1.0, "P0"),   # 110
        (15, 10, 1.0, "P1"),   # 55
        (10, 20, 1.0, "P2"),   # 50, not above the P1 threshold
    ])
    def test_roadmap_priority(self, users, frequency, importance, expected):
        assert roadmap_priority(users, frequency, importance) == expected

    @pytest.mark.parametrize("users,mentions,severity,expected", [
        (50, 10, 1.0, (0, "URGENT")),    # 160
        (30, 20, 1.0, (1, "CRITICAL")),  # 110
        (10, 20, 1.0, (2, "HIGH")),      # 50
        (5, 5, 1.0, (3, "MEDIUM")),      # 20
        (5, 0, 1.0, (4, "LOW")),         # 15
    ])
    def test_ticket_escalation(self, users, mentions, severity, expected):
        assert ticket_escalation(users, mentions, severity) == expected

    def test_ticket_priority_label(self):
        assert ticket_priority_label(2) == "P2"

    def test_ticket_severity(self):
        assert ticket_severity(1, 1) == 1.0
        assert ticket_severity(20, 10) == pytest.approx(5.0)
