"""
Pydantic models for the Revenue Agent backend.

Covers the metric aggregates read by detectors, opportunities and their
suggested actions, impact measurements and learning statistics, Agent Run audit
records, and the job/report payloads returned by the orchestrator.

Suggested action parameters are a closed tagged union keyed by `action_type`,
so each remediation category has a statically checkable shape.

All models use Pydantic v2 syntax.
"""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, ConfigDict

from revenue_agent.models.enums import (
    ActionStatus,
    ActionType,
    InsightSeverity,
    InsightType,
    JobType,
    MeasurementStatus,
    OpportunityStatus,
    OpportunityType,
    PageType,
    RunStatus,
    TrafficSource,
    Trend,
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Metric Aggregates
# =============================================================================


class MetricWindow(BaseModel):
    """Half-open time window [start, end) for aggregate queries."""

    start: datetime
    end: datetime

    @classmethod
    def trailing(cls, days: int, now: Optional[datetime] = None) -> "MetricWindow":
        end = now or utcnow()
        return cls(start=end - timedelta(days=days), end=end)

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400


class PageMetrics(BaseModel):
    """
    Aggregated traffic and revenue facts for one page over a window.

    Bounce rate is a percentage (0-100); time on page is in seconds.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "page_url": "/mods/abc123",
                "page_type": "content",
                "pageviews": 500,
                "ad_revenue": 4.25,
                "affiliate_clicks": 2,
                "bounce_rate": 62.5,
                "avg_time_on_page": 48.0,
                "traffic_by_source": {"google": 300, "pinterest": 150, "direct": 50},
            }
        }
    )

    page_url: str = Field(..., description="Page URL path")
    page_type: PageType = Field(default=PageType.OTHER, description="Page classification")
    pageviews: int = Field(default=0, ge=0, description="Total pageviews in window")
    ad_revenue: float = Field(default=0.0, ge=0.0, description="Ad revenue in window")
    affiliate_clicks: int = Field(default=0, ge=0, description="Outbound affiliate clicks")
    bounce_rate: Optional[float] = Field(default=None, description="Average bounce rate (%)")
    avg_time_on_page: Optional[float] = Field(default=None, description="Average seconds on page")
    traffic_by_source: Dict[TrafficSource, int] = Field(
        default_factory=dict,
        description="Pageviews broken down by inbound channel",
    )

    @property
    def rpm(self) -> float:
        if self.pageviews <= 0:
            return 0.0
        return self.ad_revenue / self.pageviews * 1000

    @property
    def affiliate_click_rate(self) -> float:
        if self.pageviews <= 0:
            return 0.0
        return self.affiliate_clicks / self.pageviews


class SiteMetrics(BaseModel):
    """Site-wide aggregate with no page grouping."""

    pageviews: int = Field(default=0, ge=0)
    ad_revenue: float = Field(default=0.0, ge=0.0)
    affiliate_clicks: int = Field(default=0, ge=0)
    traffic_by_source: Dict[TrafficSource, int] = Field(default_factory=dict)

    @property
    def average_rpm(self) -> float:
        if self.pageviews <= 0:
            return 0.0
        return self.ad_revenue / self.pageviews * 1000

    def source_share(self, source: TrafficSource) -> float:
        """Share of all site pageviews that came from `source`."""
        return self.traffic_by_source.get(source, 0) / max(1, self.pageviews)


class ContentItem(BaseModel):
    """Catalog entry scanned for buyer-intent wording."""

    id: str
    title: str
    page_url: str
    description: Optional[str] = None
    source: Optional[str] = None
    source_url: Optional[str] = None
    author: Optional[str] = None

    @property
    def searchable_text(self) -> str:
        parts = [self.title, self.description, self.source, self.author]
        return " ".join(p for p in parts if p).lower()


# =============================================================================
# Suggested Action Parameters (tagged union on action_type)
# =============================================================================


class AddAffiliateLinkParams(BaseModel):
    action_type: Literal[ActionType.ADD_AFFILIATE_LINK] = ActionType.ADD_AFFILIATE_LINK
    target_programs: List[str] = Field(..., description="Affiliate programmes to link")
    placement_type: str = Field(..., description="inline | prominent")
    reason: str
    intent_indicators: List[str] = Field(default_factory=list)


class UpdateAdPlacementParams(BaseModel):
    action_type: Literal[ActionType.UPDATE_AD_PLACEMENT] = ActionType.UPDATE_AD_PLACEMENT
    current_rpm: float
    target_rpm: float
    suggestions: List[str] = Field(default_factory=list)


class ExpandContentParams(BaseModel):
    action_type: Literal[ActionType.EXPAND_CONTENT] = ActionType.EXPAND_CONTENT
    current_bounce_rate: Optional[float] = None
    target_bounce_rate: Optional[float] = None
    current_time_on_page: Optional[float] = None
    target_time_on_page: Optional[float] = None
    suggestions: List[str] = Field(default_factory=list)


class OptimizeSeoParams(BaseModel):
    action_type: Literal[ActionType.OPTIMIZE_SEO] = ActionType.OPTIMIZE_SEO
    optimization_type: str = Field(..., description="Channel or intent being optimized")
    suggestions: List[str] = Field(default_factory=list)


class CreateCollectionParams(BaseModel):
    action_type: Literal[ActionType.CREATE_COLLECTION] = ActionType.CREATE_COLLECTION
    collection_type: str
    placement: str
    reason: str


class RunAbTestParams(BaseModel):
    action_type: Literal[ActionType.RUN_AB_TEST] = ActionType.RUN_AB_TEST
    test_type: str
    hypothesis: str
    suggestions: List[str] = Field(default_factory=list)


ActionParameters = Annotated[
    Union[
        AddAffiliateLinkParams,
        UpdateAdPlacementParams,
        ExpandContentParams,
        OptimizeSeoParams,
        CreateCollectionParams,
        RunAbTestParams,
    ],
    Field(discriminator='action_type'),
]


class SuggestedAction(BaseModel):
    """Remediation proposed by a detector, before it is persisted."""

    parameters: ActionParameters
    learning_applied: bool = False
    adjustment_factor: float = 1.0

    @property
    def action_type(self) -> ActionType:
        return self.parameters.action_type


# =============================================================================
# Opportunities
# =============================================================================


class OpportunityCandidate(BaseModel):
    """
    Detector output for one page (or the sitewide sentinel URL).

    Estimated impact is monthly revenue in USD and is never negative.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "opportunity_type": "affiliate_placement",
                "page_url": "/mods/abc123",
                "content_id": "abc123",
                "title": "Add affiliate links to \"Cozy Kitchen Set\"",
                "description": "500 views but only 2 affiliate clicks.",
                "confidence": 0.55,
                "estimated_impact": 1.05,
                "priority": 5,
                "suggested_action": {
                    "parameters": {
                        "action_type": "add_affiliate_link",
                        "target_programs": ["patreon", "curseforge"],
                        "placement_type": "inline",
                        "reason": "High traffic, low affiliate engagement",
                    },
                    "learning_applied": False,
                    "adjustment_factor": 1.0,
                },
            }
        }
    )

    opportunity_type: OpportunityType
    page_url: str
    content_id: Optional[str] = None
    title: str
    description: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    estimated_impact: float = Field(..., ge=0.0, description="Monthly revenue impact")
    priority: int = Field(default=5, ge=1, le=10)
    estimated_rpm_increase: Optional[float] = None
    suggested_action: SuggestedAction


class MonetizationAction(BaseModel):
    """A persisted suggested action owned by an opportunity."""

    id: str
    opportunity_id: str
    action_type: ActionType
    parameters: ActionParameters
    status: ActionStatus = ActionStatus.PENDING
    estimated_impact: Optional[float] = None
    execution_attempts: int = 0
    executed_at: Optional[datetime] = None
    error: Optional[str] = None


class Opportunity(BaseModel):
    """A persisted opportunity with its actions."""

    id: str
    opportunity_type: OpportunityType
    page_url: str
    content_id: Optional[str] = None
    title: str
    description: str
    confidence: float = Field(..., ge=0.0, le=1.0)
    estimated_impact: float = Field(..., ge=0.0)
    priority: int = Field(default=5, ge=1, le=10)
    estimated_rpm_increase: Optional[float] = None
    status: OpportunityStatus = OpportunityStatus.PENDING
    created_at: datetime
    expires_at: Optional[datetime] = None
    actions: List[MonetizationAction] = Field(default_factory=list)


class QueueStats(BaseModel):
    """Opportunity counts by status plus the pending impact total."""

    pending: int = 0
    approved: int = 0
    rejected: int = 0
    implemented: int = 0
    expired: int = 0
    total_estimated_impact: float = 0.0


class DetectionSummary(BaseModel):
    """Result of one detector pass."""

    candidates_scanned: int = 0
    opportunities_created: int = 0
    opportunity_ids: List[str] = Field(default_factory=list)


# =============================================================================
# Impact Measurements and Learning
# =============================================================================


class ImpactMeasurement(BaseModel):
    """
    Estimated vs. observed outcome of one executed action.

    measured_impact, prediction_accuracy and prediction_error stay None while the
    measurement window is open.
    """

    id: str
    action_id: str
    action_type: ActionType
    page_url: str
    status: MeasurementStatus = MeasurementStatus.PENDING
    estimated_impact: float = 0.0
    measured_impact: Optional[float] = None
    baseline_value: Optional[float] = None
    measured_value: Optional[float] = None
    prediction_accuracy: Optional[float] = None
    prediction_error: Optional[float] = None
    baseline_start: Optional[datetime] = None
    start_date: datetime
    end_date: datetime
    completed_at: Optional[datetime] = None


class EstimateAdjustment(BaseModel):
    """Adjustment factor learned for one action type."""

    action_type: ActionType
    adjustment_factor: float = 1.0
    confidence: float = 0.0
    sample_size: int = 0


class AdjustedEstimate(BaseModel):
    base_estimate: float
    adjusted_estimate: float
    adjustment_factor: float = 1.0
    confidence: float = 0.0
    sample_size: int = 0
    learning_applied: bool = False


class LearningMetric(BaseModel):
    """Persisted per-action-type snapshot over a rolling period."""

    action_type: ActionType
    sample_size: int
    mean_accuracy: Optional[float] = None
    adjustment_factor: float = 1.0
    confidence: float = 0.0
    trend: Trend = Trend.STABLE
    period_start: datetime
    period_end: datetime


class ActionTypeAccuracy(BaseModel):
    action_type: ActionType
    measurement_count: int
    mean_accuracy: float
    mean_error: float
    total_estimated: float
    total_actual: float


class LearningInsight(BaseModel):
    insight_type: InsightType
    severity: InsightSeverity
    title: str
    description: str
    action_type: Optional[ActionType] = None
    metric: Optional[float] = None


class ActionTypeLearningStats(BaseModel):
    action_type: ActionType
    measurement_count: int
    mean_accuracy: float
    adjustment_factor: float
    confidence: float
    trend: Trend


class LearningDashboard(BaseModel):
    """Aggregated learning view for the reporting surface."""

    overall_accuracy: float = 0.0
    total_measurements: int = 0
    recent_trend: Trend = Trend.STABLE
    action_type_stats: List[ActionTypeLearningStats] = Field(default_factory=list)
    insights: List[LearningInsight] = Field(default_factory=list)
    top_performing: List[ActionType] = Field(default_factory=list)
    needs_attention: List[ActionType] = Field(default_factory=list)


class ExecutionSummary(BaseModel):
    executed: int = 0
    failed: int = 0
    skipped: int = 0


# =============================================================================
# Agent Runs and Jobs
# =============================================================================


class InvalidRunTransition(ValueError):
    """Raised when an Agent Run is moved out of a terminal or wrong state."""


_ALLOWED_RUN_TRANSITIONS = {
    RunStatus.PENDING: {RunStatus.RUNNING},
    RunStatus.RUNNING: {RunStatus.COMPLETED, RunStatus.FAILED},
    RunStatus.COMPLETED: set(),
    RunStatus.FAILED: set(),
}


class AgentRun(BaseModel):
    """
    Audit record of one orchestrated job.

    Transitions: pending -> running -> completed | failed. Once completed_at is
    set the record is final and further transitions raise InvalidRunTransition.
    """
    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": "run_01",
                "run_type": "full",
                "status": "completed",
                "started_at": "2026-10-18T06:00:00Z",
                "completed_at": "2026-10-18T06:01:12Z",
                "duration_ms": 72000,
                "items_processed": 412,
                "opportunities_found": 17,
                "errors_encountered": 0,
                "error_details": None,
            }
        }
    )

    id: str
    run_type: JobType
    status: RunStatus = RunStatus.PENDING
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    items_processed: int = 0
    opportunities_found: int = 0
    errors_encountered: int = 0
    error_details: Optional[Dict[str, Any]] = None

    @property
    def is_final(self) -> bool:
        return self.completed_at is not None

    def _transition(self, target: RunStatus) -> None:
        if self.is_final or target not in _ALLOWED_RUN_TRANSITIONS[self.status]:
            raise InvalidRunTransition(
                f"Agent run {self.id} cannot move from {self.status.value} to {target.value}"
            )
        self.status = target

    def mark_running(self, now: Optional[datetime] = None) -> None:
        self._transition(RunStatus.RUNNING)
        self.started_at = now or utcnow()

    def finalize(
        self,
        status: RunStatus,
        items_processed: int = 0,
        opportunities_found: int = 0,
        errors_encountered: int = 0,
        error_details: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> None:
        if status not in (RunStatus.COMPLETED, RunStatus.FAILED):
            raise InvalidRunTransition(f"{status.value} is not a terminal run status")
        self._transition(status)
        self.completed_at = now or utcnow()
        started = self.started_at or self.completed_at
        self.duration_ms = int((self.completed_at - started).total_seconds() * 1000)
        self.items_processed = items_processed
        self.opportunities_found = opportunities_found
        self.errors_encountered = errors_encountered
        self.error_details = error_details


class JobResult(BaseModel):
    """
    Return value of Orchestrator.run_job.

    A soft-skipped job is successful with zero items and an informational note.
    """

    job: str
    success: bool
    duration_ms: int = 0
    items_processed: int = 0
    opportunities_found: int = 0
    error: Optional[str] = None
    note: Optional[str] = None
    sub_jobs: List["JobResult"] = Field(default_factory=list)


class AgentReport(BaseModel):
    """Observability snapshot assembled by the report job."""

    generated_at: datetime
    window_hours: int
    queue_stats: QueueStats
    last_run_times: Dict[JobType, Optional[datetime]] = Field(default_factory=dict)
    recent_runs: List[AgentRun] = Field(default_factory=list)


JobResult.model_rebuild()
