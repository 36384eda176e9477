"""
Package initialization file for revenue_agent models.

Re-exports the enumerations and Pydantic schemas so other modules can write:

    from revenue_agent.models import OpportunityCandidate, ActionType
"""

# =============================================================================
# Enums
# =============================================================================

from revenue_agent.models.enums import (
    ActionStatus,
    ActionType,
    InsightSeverity,
    InsightType,
    JobType,
    LIVE_OPPORTUNITY_STATUSES,
    MeasurementStatus,
    OpportunityStatus,
    OpportunityType,
    PageType,
    RunStatus,
    SEARCH_TRAFFIC_SOURCES,
    TrafficSource,
    Trend,
    VISUAL_TRAFFIC_SOURCES,
)

# =============================================================================
# Schemas
# =============================================================================

from revenue_agent.models.schemas import (
    ActionParameters,
    ActionTypeAccuracy,
    ActionTypeLearningStats,
    AddAffiliateLinkParams,
    AdjustedEstimate,
    AgentReport,
    AgentRun,
    ContentItem,
    CreateCollectionParams,
    DetectionSummary,
    EstimateAdjustment,
    ExecutionSummary,
    ExpandContentParams,
    ImpactMeasurement,
    InvalidRunTransition,
    JobResult,
    LearningDashboard,
    LearningInsight,
    LearningMetric,
    MetricWindow,
    MonetizationAction,
    Opportunity,
    OpportunityCandidate,
    OptimizeSeoParams,
    PageMetrics,
    QueueStats,
    RunAbTestParams,
    SiteMetrics,
    SuggestedAction,
    UpdateAdPlacementParams,
    utcnow,
)

__all__ = [
    # Enums
    "ActionStatus",
    "ActionType",
    "InsightSeverity",
    "InsightType",
    "JobType",
    "LIVE_OPPORTUNITY_STATUSES",
    "MeasurementStatus",
    "OpportunityStatus",
    "OpportunityType",
    "PageType",
    "RunStatus",
    "SEARCH_TRAFFIC_SOURCES",
    "TrafficSource",
    "Trend",
    "VISUAL_TRAFFIC_SOURCES",
    # Schemas
    "ActionParameters",
    "ActionTypeAccuracy",
    "ActionTypeLearningStats",
    "AddAffiliateLinkParams",
    "AdjustedEstimate",
    "AgentReport",
    "AgentRun",
    "ContentItem",
    "CreateCollectionParams",
    "DetectionSummary",
    "EstimateAdjustment",
    "ExecutionSummary",
    "ExpandContentParams",
    "ImpactMeasurement",
    "InvalidRunTransition",
    "JobResult",
    "LearningDashboard",
    "LearningInsight",
    "LearningMetric",
    "MetricWindow",
    "MonetizationAction",
    "Opportunity",
    "OpportunityCandidate",
    "OptimizeSeoParams",
    "PageMetrics",
    "QueueStats",
    "RunAbTestParams",
    "SiteMetrics",
    "SuggestedAction",
    "UpdateAdPlacementParams",
    "utcnow",
]
