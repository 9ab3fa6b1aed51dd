"""Shared fixtures and in-memory fakes for the unit tests."""
import threading
from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional
from unittest.mock import Mock

import pytest

from src.config.settings import Settings
from src.models.schemas import (
    ClassificationRecord, ClassifiedFeedbackRecord, FeedbackRecord, GroupMetrics,
)
from src.scoring.impact import NEUTRAL_RATING, aggregate_recency_score, days_since


@pytest.fixture
def mock_config():
    """Create a mock configuration with small delays and a 4-dimensional embedding space."""
    config = Mock(spec=Settings)
    config.openai_api_key = "test-api-key"
    config.openai_base_url = None
    config.openai_embedding_model = "text-embedding-3-small"
    config.openai_llm_model = "gpt-4o-mini"
    config.embedding_dimension = 4
    config.embedding_timeout = 1.0

    config.llm_max_retries = 3
    config.llm_retry_delay = 0.01
    config.llm_backoff_multiplier = 2.0
    config.llm_timeout = 0.5
    config.llm_temperature = 0.7
    config.llm_max_tokens = 1000
    config.max_concurrent_llm_calls = 5

    config.sql_server_host = "sqlserver.test"
    config.sql_server_port = 1433
    config.sql_server_database = "insights"
    config.sql_server_username = "user"
    config.sql_server_password = "secret"

    config.postgres_host = "postgres.test"
    config.postgres_port = 5432
    config.postgres_database = "taxonomy"
    config.postgres_username = "user"
    config.postgres_password = "secret"
    config.postgres_sslmode = "disable"

    config.match_threshold = 0.8

    config.batch_size = 10
    config.worker_count = 3
    config.max_item_retries = 3
    config.item_retry_delay = 0.0

    config.top_insights_limit = 15
    config.lob_min_support = 5
    config.category_min_support = 3
    config.max_feedbacks_per_summary = 10
    config.top_feedback_limit = 5
    config.insight_batch_size = 10

    config.linear_api_key = "lin_test_key"
    config.linear_team_id = "team-1"
    config.linear_api_url = "https://linear.test/graphql"
    config.linear_page_size = 2
    config.linear_timeout = 1.0
    config.ticket_cache_ttl = 300.0
    return config


def make_feedback(feedback_id: str, text: str = "feedback", rating: Optional[float] = None,
                  days_ago: float = 1.0, author: Optional[str] = None) -> FeedbackRecord:
    return FeedbackRecord(
        feedback_id=feedback_id,
        text=text,
        source="app-store",
        posted_at=datetime.now(timezone.utc) - timedelta(days=days_ago),
        author=author or f"user-{feedback_id}",
        rating=rating,
    )


def completion_response(content: Optional[str]):
    """Shape of an OpenAI chat completion with a single choice."""
    message = Mock()
    message.content = content
    choice = Mock()
    choice.message = message
    response = Mock()
    response.choices = [choice]
    return response


class FakeFeedbackStore:
    """In-memory stand-in for SQLClient covering prediction and aggregation queries."""

    def __init__(self, feedback: Optional[List[FeedbackRecord]] = None):
        self.feedback: Dict[str, FeedbackRecord] = {}
        self.classifications: Dict[str, List[ClassificationRecord]] = defaultdict(list)
        self.replace_calls = 0
        self.closed = False
        self._lock = threading.Lock()
        for f in feedback or []:
            self.feedback[f.feedback_id] = f

    def close(self):
        self.closed = True

    def count_unclassified(self) -> int:
        return sum(1 for f in self.feedback.values() if not f.has_classification)

    def get_unclassified_feedback(self, after_id=None, limit=100) -> List[FeedbackRecord]:
        with self._lock:
            rows = sorted(
                (f for f in self.feedback.values()
                 if not f.has_classification and (after_id is None or f.feedback_id > after_id)),
                key=lambda f: f.feedback_id,
            )
        return rows[:limit]

    def replace_classification(self, record: ClassificationRecord) -> None:
        with self._lock:
            self.replace_calls += 1
            self.classifications[record.feedback_id] = [record]
            feedback = self.feedback[record.feedback_id]
            self.feedback[record.feedback_id] = feedback.model_copy(update={"has_classification": True})

    def _joined(self) -> List[ClassifiedFeedbackRecord]:
        joined = []
        for feedback_id in sorted(self.classifications):
            for c in self.classifications[feedback_id]:
                joined.append(ClassifiedFeedbackRecord(
                    **self.feedback[feedback_id].model_dump(),
                    feedback_type=c.feedback_type, lob=c.lob, category=c.category, folder=c.folder,
                ))
        return joined

    def get_group_metrics(self, dimension, min_support, insight_types) -> List[GroupMetrics]:
        types = set(insight_types)
        groups: Dict[tuple, List[ClassifiedFeedbackRecord]] = defaultdict(list)
        for row in self._joined():
            name = getattr(row, dimension)
            if name and row.feedback_type in types:
                groups[(name, row.feedback_type)].append(row)

        metrics = []
        for (name, insight_type), rows in sorted(groups.items()):
            if len(rows) < min_support:
                continue
            ratings = [r.rating if r.rating else NEUTRAL_RATING for r in rows]
            metrics.append(GroupMetrics(
                name=name,
                insight_type=insight_type,
                count=len(rows),
                user_count=len({r.author or r.feedback_id for r in rows}),
                avg_rating=sum(ratings) / len(ratings),
                recency_score=aggregate_recency_score(days_since(r.posted_at) for r in rows),
            ))
        return metrics

    def get_representative_feedback(self, dimension, name, insight_type, limit) -> List[str]:
        rows = [r for r in self._joined() if getattr(r, dimension) == name and r.feedback_type == insight_type]
        return [r.text for r in rows[:limit]]

    def get_classified_feedback(self, lob=None, category=None, folder=None) -> List[ClassifiedFeedbackRecord]:
        return [
            r for r in self._joined()
            if (not lob or r.lob == lob) and (not category or r.category == category)
            and (not folder or r.folder == folder)
        ]


@pytest.fixture
def fake_store():
    return FakeFeedbackStore()
