from pydantic import BaseModel, Field, ConfigDict
from datetime import datetime
from typing import Optional, List, Dict
from enum import Enum


class FeedbackSource(str, Enum):
    """Where a piece of feedback was collected."""
    APP_STORE = "app-store"
    PLAY_STORE = "play-store"
    REDDIT = "reddit"
    TWITTER = "twitter"
    CONVERSATION = "conversation"
    OTHER = "other"


class InsightType(str, Enum):
    """Closed set of labels assigned by the classifier."""
    COMPLAINT = "complaint"
    IMPROVEMENT = "improvement"
    FEATURE_REQUEST = "feature-request"
    OTHER = "other"


# Insight types that are aggregated into reports (OTHER is never reported)
REPORTED_INSIGHT_TYPES = (
    InsightType.FEATURE_REQUEST,
    InsightType.IMPROVEMENT,
    InsightType.COMPLAINT,
)


class FeedbackRecord(BaseModel):
    """Raw user feedback record."""
    model_config = ConfigDict(use_enum_values=True, frozen=True)

    feedback_id: str
    text: str
    source: FeedbackSource = FeedbackSource.OTHER
    posted_at: datetime
    author: Optional[str] = None
    title: Optional[str] = None
    source_url: Optional[str] = None
    rating: Optional[float] = Field(default=None, ge=1, le=5)
    has_classification: bool = False


class ClassifiedFeedbackRecord(FeedbackRecord):
    """Feedback joined with its classification."""
    feedback_type: InsightType
    lob: str
    category: str
    folder: str = ""


class TaxonomyNode(BaseModel):
    """A taxonomy leaf used as a classification target."""
    node_id: Optional[int] = None
    lob: str
    category: str
    folder: str = ""
    title: str = ""
    embedding: Optional[List[float]] = None

    @property
    def is_valid(self) -> bool:
        """LOB and Category are required for a node to be a match target."""
        return bool(self.lob and self.lob.strip() and self.category and self.category.strip())

    @property
    def path(self) -> str:
        return f"{self.lob} > {self.category}"


class MatchResult(BaseModel):
    """Outcome of matching a feedback text against the taxonomy."""
    node: TaxonomyNode
    distance: Optional[float] = None
    confident: bool = False
    embedding_failed: bool = False

    @property
    def is_sentinel(self) -> bool:
        return self.distance is None


class ClassificationRecord(BaseModel):
    """Insight type and taxonomy node assigned to one feedback item."""
    model_config = ConfigDict(use_enum_values=True)

    feedback_id: str
    feedback_type: InsightType
    lob: str
    category: str
    folder: str = ""
    title: str = ""
    confidence_score: float = Field(..., ge=0.0, le=1.0)
    created_at: datetime


class GroupMetrics(BaseModel):
    """Aggregate metrics for one (group key, insight type) pair."""
    model_config = ConfigDict(use_enum_values=True)

    name: str
    insight_type: InsightType
    count: int
    user_count: int
    avg_rating: float
    recency_score: float
    impact_score: float = 0.0


class InsightSummary(BaseModel):
    """Narrative produced for one insight group."""
    requested_features: List[str] = Field(default_factory=list)
    improvement_summary: str = ""
    complaint_summary: str = ""


class CategoryInsight(BaseModel):
    """A ranked insight group with its narrative summary."""
    name: str
    count: int
    user_count: int = 0
    avg_rating: float = 0.0
    impact_score: float
    trending_issues: List[str] = Field(default_factory=list)
    summary: InsightSummary = Field(default_factory=InsightSummary)


class InsightGroups(BaseModel):
    """Top groups for one insight type, by LOB and by Category."""
    top_lobs: List[CategoryInsight] = Field(default_factory=list)
    top_categories: List[CategoryInsight] = Field(default_factory=list)


class InsightsResponse(BaseModel):
    """Ranked insight groups for every reported insight type."""
    feature_requests: InsightGroups = Field(default_factory=InsightGroups)
    improvements: InsightGroups = Field(default_factory=InsightGroups)
    complaints: InsightGroups = Field(default_factory=InsightGroups)
    # Grouping dimensions that failed, with the reason
    errors: Dict[str, str] = Field(default_factory=dict)

    def groups_for(self, insight_type: str) -> InsightGroups:
        """Return the InsightGroups bucket for an insight type."""
        buckets = {
            InsightType.FEATURE_REQUEST.value: self.feature_requests,
            InsightType.IMPROVEMENT.value: self.improvements,
            InsightType.COMPLAINT.value: self.complaints,
        }
        try:
            return buckets[InsightType(insight_type).value]
        except KeyError:
            raise ValueError(f"'{insight_type}' is not a reported insight type")


class FeedbackScore(BaseModel):
    """A distinct feedback text with its weighted score."""
    feedback: str
    user_count: int
    score: float
    affinity_avg: float


class TopFeedbackResponse(BaseModel):
    """Top feedback per insight type for a slice of the taxonomy."""
    lob: str
    category: Optional[str] = None
    sub_category: Optional[str] = None
    feature_requests: List[FeedbackScore] = Field(default_factory=list)
    improvements: List[FeedbackScore] = Field(default_factory=list)
    complaints: List[FeedbackScore] = Field(default_factory=list)


class Insight(BaseModel):
    """Summary of one batch of feedback within a scoped insight report."""
    summary: str = ""
    action_items: List[str] = Field(default_factory=list)
    impact_score: float
    feedback_count: int
    examples: List[str] = Field(default_factory=list)


class MetricsSummary(BaseModel):
    total_feedback: int = 0
    avg_rating: float = 0.0
    trending_issues: List[str] = Field(default_factory=list)
    top_categories: List[str] = Field(default_factory=list)
    impact_breakdown: Dict[str, float] = Field(default_factory=dict)


class InsightResponse(BaseModel):
    """Insights for a specific LOB / category / folder."""
    lob: Optional[str] = None
    category: Optional[str] = None
    folder: Optional[str] = None
    insights: Dict[str, List[Insight]] = Field(default_factory=dict)
    metrics: MetricsSummary = Field(default_factory=MetricsSummary)


class IssueRecord(BaseModel):
    """An issue in the external tracker."""
    issue_id: str
    title: str
    description: Optional[str] = None
    state: Optional[str] = None
    priority: Optional[int] = None
    url: Optional[str] = None
