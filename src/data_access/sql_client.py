import pymssql
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Sequence
import threading
import logging

from src.config.settings import Settings
from src.models.errors import FeedbackStoreError
from src.models.schemas import (
    FeedbackRecord, ClassifiedFeedbackRecord, ClassificationRecord, GroupMetrics,
)
from src.scoring.impact import TIERED_RECENCY_WEIGHTS, TIERED_RECENCY_BASELINE, NEUTRAL_RATING

logger = logging.getLogger(__name__)

# Grouping dimensions accepted by the metrics queries
GROUP_COLUMNS = {
    "lob": "c.lob",
    "category": "c.category",
}

FEEDBACK_COLUMNS = """
    f.feedback_id, f.feedback_text, f.feedback_source, f.author_name, f.title,
    f.source_url, f.rating, f.posted_at, f.has_classification
"""


def _recency_case() -> str:
    """Tiered recency weight per row, as a T-SQL CASE expression."""
    clauses = " ".join(
        f"WHEN f.posted_at >= DATEADD(day, -{days}, SYSUTCDATETIME()) THEN {weight}"
        for days, weight in TIERED_RECENCY_WEIGHTS
    )
    return f"CASE {clauses} ELSE {TIERED_RECENCY_BASELINE} END"


def _group_column(dimension: str) -> str:
    try:
        return GROUP_COLUMNS[dimension]
    except KeyError:
        raise ValueError(f"Unsupported grouping dimension '{dimension}'. Supported: {list(GROUP_COLUMNS)}")


def _feedback_from_row(row: dict) -> FeedbackRecord:
    return FeedbackRecord(
        feedback_id=str(row['feedback_id']),
        text=row['feedback_text'],
        source=row.get('feedback_source') or "other",
        author=row.get('author_name'),
        title=row.get('title'),
        source_url=row.get('source_url'),
        rating=row.get('rating') or None,
        posted_at=row['posted_at'],
        has_classification=bool(row.get('has_classification')),
    )


class SQLClient:
    """SQL Server client for feedback and classifications."""

    def __init__(self, config: Settings):
        self.config = config
        self.conn = None
        # pymssql connections are not thread-safe; workers share this client
        self._lock = threading.RLock()

    def connect(self) -> None:
        """Establish database connection."""
        self.conn = pymssql.connect(
            server=self.config.sql_server_host,
            port=self.config.sql_server_port,
            user=self.config.sql_server_username,
            password=self.config.sql_server_password,
            database=self.config.sql_server_database
        )

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.conn:
                self.conn.close()
                self.conn = None

    @contextmanager
    def _cursor(self, as_dict: bool = True) -> Iterator:
        with self._lock:
            if not self.conn:
                self.connect()
            with self.conn.cursor(as_dict=as_dict) as cursor:
                yield cursor

    def count_unclassified(self) -> int:
        query = "SELECT COUNT(*) AS total FROM customer_insights.feedback WHERE has_classification = 0"
        try:
            with self._cursor() as cursor:
                cursor.execute(query)
                return cursor.fetchone()['total']
        except pymssql.Error as e:
            raise FeedbackStoreError(f"failed to count unclassified feedback: {e}") from e

    def get_unclassified_feedback(self, after_id: Optional[str] = None, limit: int = 100) -> List[FeedbackRecord]:
        """
        Fetch one page of feedback without a classification, ordered by id.

        Args:
            after_id: Only return feedback with an id greater than this (keyset pagination)
            limit: Page size
        """
        query = f"""
            SELECT TOP (%s) {FEEDBACK_COLUMNS}
            FROM customer_insights.feedback AS f
            WHERE f.has_classification = 0
        """
        params: list = [limit]
        if after_id is not None:
            query += " AND f.feedback_id > %s"
            params.append(after_id)
        query += " ORDER BY f.feedback_id"

        try:
            with self._cursor() as cursor:
                cursor.execute(query, tuple(params))
                rows = cursor.fetchall()
        except pymssql.Error as e:
            raise FeedbackStoreError(f"failed to fetch unclassified feedback: {e}") from e

        return [_feedback_from_row(row) for row in rows]

    def replace_classification(self, record: ClassificationRecord) -> None:
        """
        Atomically replace the classification of one feedback item.

        Deletes any existing classification, inserts the new one and flags the
        feedback as classified in a single transaction.
        """
        try:
            with self._cursor(as_dict=False) as cursor:
                try:
                    cursor.execute(
                        "DELETE FROM customer_insights.classifications WHERE feedback_id = %s",
                        (record.feedback_id,)
                    )
                    cursor.execute(
                        """
                        INSERT INTO customer_insights.classifications
                            (feedback_id, feedback_type, lob, category, folder, title, confidence_score, created_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                        """,
                        (record.feedback_id, record.feedback_type, record.lob, record.category,
                         record.folder, record.title, record.confidence_score, record.created_at)
                    )
                    cursor.execute(
                        "UPDATE customer_insights.feedback SET has_classification = 1 WHERE feedback_id = %s",
                        (record.feedback_id,)
                    )
                    self.conn.commit()
                except pymssql.Error:
                    self.conn.rollback()
                    raise
        except pymssql.Error as e:
            raise FeedbackStoreError(f"failed to save classification for feedback {record.feedback_id}: {e}") from e

    def get_group_metrics(self, dimension: str, min_support: int, insight_types: Sequence[str]) -> List[GroupMetrics]:
        """
        Aggregate classified feedback per (group, insight type).

        Args:
            dimension: "lob" or "category"
            min_support: Minimum number of feedback items for a group to be returned
            insight_types: Insight types to include

        Returns:
            GroupMetrics rows (impact_score left at 0 for the caller to rank)
        """
        column = _group_column(dimension)
        type_placeholders = ','.join(['%s'] * len(insight_types))
        query = f"""
            SELECT
                {column} AS name,
                c.feedback_type,
                COUNT(*) AS feedback_count,
                COUNT(DISTINCT COALESCE(f.author_name, f.feedback_id)) AS user_count,
                AVG(CAST(COALESCE(f.rating, {NEUTRAL_RATING}) AS FLOAT)) AS avg_rating,
                SUM({_recency_case()}) AS recency_score
            FROM customer_insights.feedback AS f
            JOIN customer_insights.classifications AS c ON f.feedback_id = c.feedback_id
            WHERE {column} <> ''
                AND c.feedback_type IN ({type_placeholders})
            GROUP BY {column}, c.feedback_type
            HAVING COUNT(*) >= %s
            ORDER BY {column}, c.feedback_type
        """
        params = tuple(getattr(t, "value", t) for t in insight_types) + (min_support,)

        try:
            with self._cursor() as cursor:
                cursor.execute(query, params)
                rows = cursor.fetchall()
        except pymssql.Error as e:
            raise FeedbackStoreError(f"failed to query {dimension} metrics: {e}") from e

        return [
            GroupMetrics(
                name=row['name'],
                insight_type=row['feedback_type'],
                count=row['feedback_count'],
                user_count=row['user_count'],
                avg_rating=float(row['avg_rating']),
                recency_score=float(row['recency_score']),
            )
            for row in rows
        ]

    def get_representative_feedback(self, dimension: str, name: str, insight_type: str, limit: int) -> List[str]:
        """Highest-rated, most recent feedback texts for one group."""
        column = _group_column(dimension)
        query = f"""
            SELECT TOP (%s) f.feedback_text
            FROM customer_insights.feedback AS f
            JOIN customer_insights.classifications AS c ON f.feedback_id = c.feedback_id
            WHERE {column} = %s
                AND c.feedback_type = %s
            ORDER BY CASE WHEN f.rating IS NULL THEN 1 ELSE 0 END, f.rating DESC, f.posted_at DESC
        """
        try:
            with self._cursor() as cursor:
                cursor.execute(query, (limit, name, getattr(insight_type, "value", insight_type)))
                return [row['feedback_text'] for row in cursor.fetchall()]
        except pymssql.Error as e:
            raise FeedbackStoreError(f"failed to query feedback for {dimension} '{name}': {e}") from e

    def get_feedback_scores(self, lob: str, category: Optional[str] = None,
                            folder: Optional[str] = None) -> List[Dict]:
        """
        Per distinct feedback text and insight type: count and average rating.

        Returns:
            Dicts with keys feedback, insight_type, feedback_count, avg_rating
        """
        query = f"""
            SELECT
                f.feedback_text AS feedback,
                c.feedback_type AS insight_type,
                COUNT(*) AS feedback_count,
                AVG(CAST(COALESCE(f.rating, {NEUTRAL_RATING}) AS FLOAT)) AS avg_rating
            FROM customer_insights.feedback AS f
            JOIN customer_insights.classifications AS c ON f.feedback_id = c.feedback_id
            WHERE c.lob = %s
        """
        params: list = [lob]
        if category:
            query += " AND c.category = %s"
            params.append(category)
        if folder:
            query += " AND c.folder = %s"
            params.append(folder)
        query += """
            GROUP BY f.feedback_text, c.feedback_type
            ORDER BY MIN(f.feedback_id)
        """

        try:
            with self._cursor() as cursor:
                cursor.execute(query, tuple(params))
                return cursor.fetchall()
        except pymssql.Error as e:
            raise FeedbackStoreError(f"failed to query feedback: {e}") from e

    def get_classified_feedback(self, lob: Optional[str] = None, category: Optional[str] = None,
                                folder: Optional[str] = None) -> List[ClassifiedFeedbackRecord]:
        """Feedback joined with its classification, optionally filtered by taxonomy."""
        query = f"""
            SELECT {FEEDBACK_COLUMNS}, c.feedback_type, c.lob, c.category, c.folder
            FROM customer_insights.feedback AS f
            JOIN customer_insights.classifications AS c ON f.feedback_id = c.feedback_id
            WHERE 1=1
        """
        params = []
        if lob:
            query += " AND c.lob = %s"
            params.append(lob)
        if category:
            query += " AND c.category = %s"
            params.append(category)
        if folder:
            query += " AND c.folder = %s"
            params.append(folder)
        query += " ORDER BY f.feedback_id"

        try:
            with self._cursor() as cursor:
                cursor.execute(query, tuple(params))
                rows = cursor.fetchall()
        except pymssql.Error as e:
            raise FeedbackStoreError(f"failed to query classified feedback: {e}") from e

        return [
            ClassifiedFeedbackRecord(
                **_feedback_from_row(row).model_dump(),
                feedback_type=row['feedback_type'],
                lob=row['lob'],
                category=row['category'],
                folder=row.get('folder') or "",
            )
            for row in rows
        ]
