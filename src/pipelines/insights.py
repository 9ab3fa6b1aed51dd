"""
Insight aggregation over classified feedback.

Groups classified feedback by LOB and by Category, ranks the groups by
impact and enriches the top groups with a narrative summary from the chat
model. The two grouping dimensions run concurrently; inside each dimension
summaries are produced by a bounded pool of workers and reconciled back to
their group by (name, insight type).
"""

from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple
import argparse
import threading
import logging

from src.config.settings import Settings
from src.config.logging_config import configure_logging
from src.concurrency.task_pool import TaskPool
from src.data_access.sql_client import SQLClient
from src.agents.llm_agent import ChatAgent
from src.agents.summarizer import InsightSummarizer
from src.models.errors import AggregationError, FeedbackStoreError
from src.models.schemas import (
    CategoryInsight, ClassifiedFeedbackRecord, FeedbackScore, GroupMetrics, Insight,
    InsightResponse, InsightSummary, InsightsResponse, InsightType, MetricsSummary,
    REPORTED_INSIGHT_TYPES, TopFeedbackResponse,
)
from src.scoring.impact import (
    NEUTRAL_RATING, batch_impact_score, days_since, group_impact_score, item_impact,
    rank_by_score, recency_multiplier, trending_score, weighted_feedback_score,
)

logger = logging.getLogger(__name__)

TOP_METRIC_KEYS = 5


@dataclass(frozen=True)
class Grouping:
    """One grouping dimension of the insights report."""
    dimension: str
    min_support: int
    target: str


@dataclass
class SummaryTask:
    """Feedback texts to summarize for one ranked group."""
    key: Tuple[str, str]
    insight_type: str
    feedbacks: List[str] = field(default_factory=list)


def rank_groups(groups: List[GroupMetrics], limit: int) -> List[GroupMetrics]:
    """Top `limit` groups by impact score, ties kept in insertion order."""
    return rank_by_score(groups, lambda g: g.impact_score)[:limit]


def select_representative_examples(feedbacks: List[ClassifiedFeedbackRecord],
                                   now: Optional[datetime] = None) -> List[str]:
    """Highest, median and lowest impact feedback texts (all of them when there are three or fewer)."""
    if len(feedbacks) <= 3:
        return [f.text for f in feedbacks]

    ranked = rank_by_score(list(feedbacks), lambda f: item_impact(f.rating, days_since(f.posted_at, now)))
    return [ranked[0].text, ranked[len(ranked) // 2].text, ranked[-1].text]


class InsightAggregator:
    """Builds ranked insight reports from classified feedback."""

    def __init__(
        self,
        config: Settings,
        sql_client: Optional[SQLClient] = None,
        summarizer: Optional[InsightSummarizer] = None,
    ):
        self.config = config
        self.sql_client = sql_client or SQLClient(config)
        self.summarizer = summarizer or InsightSummarizer(ChatAgent(config))
        self.max_workers = config.max_concurrent_llm_calls
        self.groupings = (
            Grouping("lob", config.lob_min_support, "top_lobs"),
            Grouping("category", config.category_min_support, "top_categories"),
        )

    def get_top_insights(self, cancel_event: Optional[threading.Event] = None,
                         strict: bool = False) -> InsightsResponse:
        """
        Top LOB and Category groups for every reported insight type.

        A grouping dimension whose metrics query fails is left empty and its
        error recorded in `response.errors`; the other dimension is still
        returned. With strict=True the first such error is raised instead.

        Raises:
            AggregationError: every dimension failed, or strict and any failed
        """
        response = InsightsResponse()
        failures: List[AggregationError] = []

        with ThreadPoolExecutor(max_workers=len(self.groupings)) as executor:
            future_to_grouping = {
                executor.submit(self.aggregate_dimension, g.dimension, g.min_support, cancel_event): g
                for g in self.groupings
            }

            for future in as_completed(future_to_grouping):
                grouping = future_to_grouping[future]
                try:
                    by_type = future.result()
                except AggregationError as e:
                    logger.error(str(e))
                    failures.append(e)
                    response.errors[grouping.dimension] = str(e)
                    continue

                for insight_type, items in by_type.items():
                    setattr(response.groups_for(insight_type), grouping.target, items)

        if failures and (strict or len(failures) == len(self.groupings)):
            raise failures[0]

        return response

    def aggregate_dimension(self, dimension: str, min_support: int,
                            cancel_event: Optional[threading.Event] = None) -> Dict[str, List[CategoryInsight]]:
        """
        Ranked, summarized groups for one grouping dimension.

        Returns:
            Mapping of insight type to its ranked CategoryInsight list

        Raises:
            AggregationError: the metrics query failed
        """
        try:
            rows = self.sql_client.get_group_metrics(dimension, min_support, REPORTED_INSIGHT_TYPES)
        except FeedbackStoreError as e:
            raise AggregationError(dimension, e) from e

        scored = [
            row.model_copy(update={"impact_score": group_impact_score(row.count, row.avg_rating, row.recency_score)})
            for row in rows
        ]

        ranked: Dict[str, List[GroupMetrics]] = {}
        for insight_type in REPORTED_INSIGHT_TYPES:
            candidates = [g for g in scored if g.insight_type == insight_type.value]
            ranked[insight_type.value] = rank_groups(candidates, self.config.top_insights_limit)

        total_groups = sum(len(groups) for groups in ranked.values())
        logger.info(f"Aggregating {total_groups} {dimension} groups from {len(rows)} metric rows")

        summaries = self._summarize_groups(dimension, ranked, cancel_event)

        result: Dict[str, List[CategoryInsight]] = {}
        for insight_type, groups in ranked.items():
            result[insight_type] = [
                CategoryInsight(
                    name=g.name,
                    count=g.count,
                    user_count=g.user_count,
                    avg_rating=g.avg_rating,
                    impact_score=g.impact_score,
                    summary=summaries.get((g.name, insight_type), InsightSummary()),
                )
                for g in groups
            ]
        return result

    def _summarize_groups(self, dimension: str, ranked: Dict[str, List[GroupMetrics]],
                          cancel_event: Optional[threading.Event]) -> Dict[Tuple[str, str], InsightSummary]:
        pool = TaskPool(
            lambda task: self.summarizer.summarize(task.feedbacks, task.insight_type, cancel_event=cancel_event),
            worker_count=self.max_workers,
            queue_size=self.max_workers,
            name=f"{dimension}-summary",
            cancel_event=cancel_event,
        )
        pool.start()

        try:
            for insight_type, groups in ranked.items():
                if pool.cancelled:
                    break
                for group in groups:
                    if pool.cancelled:
                        break
                    try:
                        feedbacks = self.sql_client.get_representative_feedback(
                            dimension, group.name, insight_type, self.config.max_feedbacks_per_summary
                        )
                    except FeedbackStoreError as e:
                        logger.error(f"Error getting feedback for {dimension} {group.name}: {e}")
                        continue

                    if not feedbacks:
                        continue
                    task = SummaryTask(key=(group.name, insight_type), insight_type=insight_type, feedbacks=feedbacks)
                    if not pool.submit(task):
                        break
        finally:
            results = pool.join()

        summaries = {}
        for result in results:
            if result.ok:
                summaries[result.task.key] = result.value
            else:
                logger.error(f"Error processing insights for {dimension} {result.task.key[0]} "
                             f"({result.task.insight_type}): {result.error}")
        return summaries

    def get_top_feedback(self, lob: str, category: Optional[str] = None,
                         sub_category: Optional[str] = None) -> TopFeedbackResponse:
        """
        Highest-scoring distinct feedback per insight type within a LOB.

        Raises:
            ValueError: lob is empty
            FeedbackStoreError: the feedback query failed
        """
        if not lob:
            raise ValueError("lob is required")

        rows = self.sql_client.get_feedback_scores(lob, category=category, folder=sub_category)

        buckets: Dict[str, List[FeedbackScore]] = defaultdict(list)
        for row in rows:
            avg_rating = float(row['avg_rating'])
            buckets[row['insight_type']].append(FeedbackScore(
                feedback=row['feedback'],
                user_count=row['feedback_count'],
                score=weighted_feedback_score(row['feedback_count'], avg_rating),
                affinity_avg=avg_rating,
            ))

        limit = self.config.top_feedback_limit

        def top(insight_type: InsightType) -> List[FeedbackScore]:
            return rank_by_score(buckets.get(insight_type.value, []), lambda item: item.score)[:limit]

        return TopFeedbackResponse(
            lob=lob,
            category=category,
            sub_category=sub_category,
            feature_requests=top(InsightType.FEATURE_REQUEST),
            improvements=top(InsightType.IMPROVEMENT),
            complaints=top(InsightType.COMPLAINT),
        )

    def generate_insights(self, lob: Optional[str] = None, category: Optional[str] = None,
                          folder: Optional[str] = None,
                          cancel_event: Optional[threading.Event] = None) -> InsightResponse:
        """
        Batch summaries and metrics for one slice of the taxonomy.

        Feedback of each reported insight type is summarized in batches of
        `insight_batch_size`; every batch carries its own impact score and
        representative examples.
        """
        feedbacks = self.sql_client.get_classified_feedback(lob=lob, category=category, folder=folder)
        now = datetime.now(timezone.utc)

        groups: Dict[str, List[ClassifiedFeedbackRecord]] = defaultdict(list)
        for f in feedbacks:
            groups[f.feedback_type].append(f)

        batch_size = self.config.insight_batch_size
        batches: List[Tuple[str, int, List[ClassifiedFeedbackRecord]]] = []
        for insight_type in REPORTED_INSIGHT_TYPES:
            items = groups.get(insight_type.value, [])
            for i in range(0, len(items), batch_size):
                batches.append((insight_type.value, i // batch_size, items[i:i + batch_size]))

        pool = TaskPool(
            lambda task: self.summarizer.summarize(task.feedbacks, task.insight_type, cancel_event=cancel_event),
            worker_count=self.max_workers,
            queue_size=self.max_workers,
            name="scoped-summary",
            cancel_event=cancel_event,
        )
        pool.start()
        try:
            for insight_type, index, batch in batches:
                task = SummaryTask(key=(insight_type, str(index)), insight_type=insight_type,
                                   feedbacks=[f.text for f in batch])
                if not pool.submit(task):
                    break
        finally:
            results = pool.join()

        summaries = {}
        for result in results:
            if result.ok:
                summaries[result.task.key] = result.value
            else:
                logger.error(f"Error summarizing {result.task.insight_type} batch {result.task.key[1]}: {result.error}")

        insights: Dict[str, List[Insight]] = {}
        for insight_type, index, batch in batches:
            summary = summaries.get((insight_type, str(index)), InsightSummary())
            narrative = summary.complaint_summary if insight_type == InsightType.COMPLAINT else summary.improvement_summary
            insights.setdefault(insight_type, []).append(Insight(
                summary=narrative,
                action_items=summary.requested_features,
                impact_score=batch_impact_score([(f.rating, days_since(f.posted_at, now)) for f in batch]),
                feedback_count=len(batch),
                examples=select_representative_examples(batch, now),
            ))

        return InsightResponse(
            lob=lob,
            category=category,
            folder=folder,
            insights=insights,
            metrics=calculate_metrics(groups, now),
        )


def calculate_metrics(groups: Dict[str, List[ClassifiedFeedbackRecord]],
                      now: Optional[datetime] = None) -> MetricsSummary:
    """Totals, average rating, per-type impact and the leading LOB > Category keys."""
    metrics = MetricsSummary()

    ratings = []
    category_impact: Dict[str, float] = defaultdict(float)
    key_counts: Dict[str, int] = defaultdict(int)
    key_ratings: Dict[str, List[float]] = defaultdict(list)
    key_recent: Dict[str, int] = defaultdict(int)

    for insight_type, feedbacks in groups.items():
        metrics.total_feedback += len(feedbacks)
        metrics.impact_breakdown[insight_type] = batch_impact_score(
            [(f.rating, days_since(f.posted_at, now)) for f in feedbacks]
        )

        for f in feedbacks:
            key = f"{f.lob} > {f.category}"
            days = days_since(f.posted_at, now)
            category_impact[key] += item_impact(f.rating, days)
            key_counts[key] += 1
            if f.rating:
                ratings.append(f.rating)
                key_ratings[key].append(f.rating)
            if recency_multiplier(days) > 1.0:
                key_recent[key] += 1

    if ratings:
        metrics.avg_rating = sum(ratings) / len(ratings)

    top = rank_by_score(list(category_impact), lambda key: category_impact[key])
    metrics.top_categories = top[:TOP_METRIC_KEYS]

    def key_trend(key: str) -> float:
        rated = key_ratings[key]
        avg = sum(rated) / len(rated) if rated else NEUTRAL_RATING
        return trending_score(key_counts[key], avg, key_recent[key])

    metrics.trending_issues = rank_by_score(list(key_counts), key_trend)[:TOP_METRIC_KEYS]
    return metrics


def main():
    """Print the insights report (or top feedback for a LOB) as JSON."""
    configure_logging()

    parser = argparse.ArgumentParser(description="Aggregate classified feedback into ranked insights.")
    parser.add_argument("--lob", type=str, help="Restrict to a line of business.")
    parser.add_argument("--category", type=str, help="Restrict to a category.")
    parser.add_argument("--folder", type=str, help="Restrict to a folder / sub-category.")
    parser.add_argument("--top-feedback", action="store_true", help="Show top feedback for --lob instead of insights.")
    args = parser.parse_args()

    if args.top_feedback and not args.lob:
        parser.error("--top-feedback requires --lob")

    config = Settings()
    aggregator = InsightAggregator(config)

    try:
        if args.top_feedback:
            result = aggregator.get_top_feedback(args.lob, args.category, args.folder)
        elif args.lob or args.category or args.folder:
            result = aggregator.generate_insights(args.lob, args.category, args.folder)
        else:
            result = aggregator.get_top_insights()
    finally:
        aggregator.sql_client.close()

    print(result.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
