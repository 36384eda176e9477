"""
Revenue Agent services.

Business logic for the detection, estimation and learning loop. Every service
receives its collaborators (metric aggregator, stores, learning engine) through
its constructor, so tests can pass in-memory fakes.

Services:
- metric_aggregator: windowed page/site aggregates and the content catalog
- opportunity_store: idempotent opportunity queue with approval transitions
- measurement_store: impact measurements and learning snapshots
- run_store: Agent Run audit trail
- detection: shared fan-out / dedupe / persist pass for detectors
- affiliate_detector: affiliate placement opportunities
- rpm_detector: ad-efficiency opportunities
- learning_engine: estimate calibration from measured outcomes
- impact_tracking: baselines and measurement of executed actions
- auto_execution: gated execution of approved actions
"""

# =============================================================================
# Collaborators
# =============================================================================

from revenue_agent.services.metric_aggregator import (
    ContentCatalog,
    MetricAggregator,
    PostgresContentCatalog,
    PostgresMetricAggregator,
)
from revenue_agent.services.opportunity_store import (
    OpportunityStore,
    PostgresOpportunityStore,
    should_replace_live,
)
from revenue_agent.services.measurement_store import (
    LearningMetricStore,
    MeasurementSource,
    MeasurementStore,
    PostgresLearningMetricStore,
    PostgresMeasurementStore,
)
from revenue_agent.services.run_store import (
    PostgresRunStore,
    RunRecorder,
    RunStore,
    RunTracker,
)

# =============================================================================
# Detection and Learning
# =============================================================================

from revenue_agent.services.detection import (
    BaseDetector,
    base_affiliate_estimate,
    dedupe_by_page,
)
from revenue_agent.services.affiliate_detector import AffiliateDetector
from revenue_agent.services.rpm_detector import RpmDetector
from revenue_agent.services.learning_engine import (
    LearningEngine,
    calculate_adjustment_factor,
    calculate_confidence,
    classify_trend,
)
from revenue_agent.services.impact_tracking import (
    ImpactTracker,
    calculate_prediction_accuracy,
    calculate_prediction_error,
)
from revenue_agent.services.auto_execution import ActionHandler, AutoExecutor

__all__ = [
    "ContentCatalog",
    "MetricAggregator",
    "PostgresContentCatalog",
    "PostgresMetricAggregator",
    "OpportunityStore",
    "PostgresOpportunityStore",
    "should_replace_live",
    "LearningMetricStore",
    "MeasurementSource",
    "MeasurementStore",
    "PostgresLearningMetricStore",
    "PostgresMeasurementStore",
    "PostgresRunStore",
    "RunRecorder",
    "RunStore",
    "RunTracker",
    "BaseDetector",
    "base_affiliate_estimate",
    "dedupe_by_page",
    "AffiliateDetector",
    "RpmDetector",
    "LearningEngine",
    "calculate_adjustment_factor",
    "calculate_confidence",
    "classify_trend",
    "ImpactTracker",
    "calculate_prediction_accuracy",
    "calculate_prediction_error",
    "ActionHandler",
    "AutoExecutor",
]
