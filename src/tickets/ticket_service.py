"""
Turn ranked insight groups into prioritised Linear issues.

Complaint and improvement groups are scored for escalation from their reach
(distinct users) and volume (mentions). An issue with the same title is
re-prioritised and annotated with a comment when its priority changed;
otherwise a new issue is created. The issue list is read through a
time-windowed cache so a sync touches the tracker's list endpoint once.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional
import argparse
import logging

from src.config.settings import Settings
from src.config.logging_config import configure_logging
from src.concurrency.timed_cache import TimedCache
from src.pipelines.insights import InsightAggregator
from src.tickets.linear_client import LinearClient
from src.models.errors import IssueTrackerError
from src.models.schemas import CategoryInsight, InsightType, InsightsResponse, IssueRecord
from src.scoring.impact import (
    roadmap_priority, ticket_escalation, ticket_priority_label, ticket_severity,
)

logger = logging.getLogger(__name__)

# Escalation level -> Linear priority (1 urgent .. 4 low)
LINEAR_PRIORITY_BY_LEVEL = {0: 1, 1: 1, 2: 2, 3: 3, 4: 4}

TICKETED_INSIGHT_TYPES = (InsightType.COMPLAINT, InsightType.IMPROVEMENT)


@dataclass
class TicketPlan:
    """Escalation decided for one insight group."""
    title: str
    description: str
    user_count: int
    mentions: int
    severity: float
    level: int
    escalation: str
    roadmap_priority: str

    @property
    def linear_priority(self) -> int:
        return LINEAR_PRIORITY_BY_LEVEL[self.level]


def ticket_title(insight_type: str, dimension: str, name: str) -> str:
    return f"[{insight_type}] {dimension.upper()}: {name}"


def plan_ticket(insight: CategoryInsight, insight_type: str, dimension: str) -> TicketPlan:
    """Compute severity, escalation and roadmap priority for an insight group."""
    severity = ticket_severity(insight.user_count, insight.count)
    level, escalation = ticket_escalation(insight.user_count, insight.count, severity)
    roadmap = roadmap_priority(insight.user_count, insight.count, severity)

    summary = insight.summary.complaint_summary or insight.summary.improvement_summary
    description = (
        f"{insight.count} mentions from {insight.user_count} users in '{insight.name}'.\n\n"
        f"{summary or 'No summary available.'}\n\n"
        f"Escalation: {escalation} ({ticket_priority_label(level)}), "
        f"roadmap priority: {roadmap}"
    )

    return TicketPlan(
        title=ticket_title(insight_type, dimension, insight.name),
        description=description,
        user_count=insight.user_count,
        mentions=insight.count,
        severity=severity,
        level=level,
        escalation=escalation,
        roadmap_priority=roadmap,
    )


def insight_comment(plan: TicketPlan) -> str:
    return (
        "Feedback analysis update:\n\n"
        f"- User impact: {plan.user_count} affected users\n"
        f"- Mention count: {plan.mentions} mentions\n"
        f"- Weighted severity: {plan.severity:.2f}\n"
        f"- Suggested priority: {ticket_priority_label(plan.level)}\n"
        f"- Escalation level: {plan.escalation}\n"
    )


class TicketService:
    """Creates or re-prioritises issues for insight groups."""

    def __init__(self, config: Settings, linear_client: Optional[LinearClient] = None):
        self.config = config
        self.linear_client = linear_client or LinearClient(config)
        self.issue_cache: TimedCache[Dict[str, IssueRecord]] = TimedCache(
            self._load_issues, ttl=config.ticket_cache_ttl
        )

    def _load_issues(self) -> Dict[str, IssueRecord]:
        return {issue.title: issue for issue in self.linear_client.list_issues()}

    def find_issue(self, title: str) -> Optional[IssueRecord]:
        return self.issue_cache.get().get(title)

    def sync_insight(self, insight: CategoryInsight, insight_type: str, dimension: str) -> str:
        """
        Create or update the issue for one insight group.

        Returns:
            "created", "updated" or "unchanged"
        """
        plan = plan_ticket(insight, insight_type, dimension)
        existing = self.find_issue(plan.title)

        if existing is None:
            self.linear_client.create_issue(plan.title, plan.description, priority=plan.linear_priority)
            self.issue_cache.invalidate()
            return "created"

        if existing.priority == plan.linear_priority:
            return "unchanged"

        logger.info(f"Escalating issue {existing.issue_id} to {plan.escalation}")
        self.linear_client.update_issue(existing.issue_id, priority=plan.linear_priority)
        self.linear_client.add_comment(existing.issue_id, insight_comment(plan))
        self.issue_cache.invalidate()
        return "updated"

    def sync(self, response: InsightsResponse, dimension: str = "lob") -> dict:
        """
        Sync every complaint and improvement group of one dimension.

        Args:
            response: Aggregated insights
            dimension: "lob" or "category"

        Returns:
            Dictionary with created / updated / unchanged / errors counts
        """
        stats = {"created": 0, "updated": 0, "unchanged": 0, "errors": 0}
        target = "top_lobs" if dimension == "lob" else "top_categories"

        for insight_type in TICKETED_INSIGHT_TYPES:
            groups: List[CategoryInsight] = getattr(response.groups_for(insight_type.value), target)
            for insight in groups:
                try:
                    outcome = self.sync_insight(insight, insight_type.value, dimension)
                    stats[outcome] += 1
                except IssueTrackerError as e:
                    logger.error(f"Failed to sync ticket for {dimension} {insight.name}: {e}")
                    stats["errors"] += 1

        return stats


def main():
    """Aggregate insights and sync complaint / improvement groups to Linear."""
    configure_logging()

    parser = argparse.ArgumentParser(description="Create or escalate Linear issues from feedback insights.")
    parser.add_argument("--dimension", choices=["lob", "category"], default="lob",
                        help="Grouping dimension to ticket.")
    args = parser.parse_args()

    config = Settings()
    aggregator = InsightAggregator(config)
    try:
        response = aggregator.get_top_insights()
    finally:
        aggregator.sql_client.close()

    service = TicketService(config)
    try:
        stats = service.sync(response, dimension=args.dimension)
    finally:
        service.linear_client.close()

    print("\n" + "="*50)
    print("TICKET SYNC RESULTS")
    print("="*50)
    print(f"Created: {stats['created']}")
    print(f"Updated: {stats['updated']}")
    print(f"Unchanged: {stats['unchanged']}")
    print(f"Errors: {stats['errors']}")
    print("="*50)


if __name__ == "__main__":
    main()
