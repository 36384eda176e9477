"""
Enumeration definitions for the Revenue Agent backend.

All enums inherit from both `str` and `Enum` so they serialize as plain strings
in Pydantic models, API responses and SQL parameters.
"""

from enum import Enum


class OpportunityType(str, Enum):
    """
    Category of a detected monetization opportunity.

    - AFFILIATE_PLACEMENT: Add or improve affiliate links on a page
    - AD_LAYOUT_OPTIMIZATION: Ad placement changes for low-RPM pages
    - CONTENT_EXPANSION: Longer/richer content for bouncing or thin pages
    - TRAFFIC_SOURCE_OPTIMIZATION: Channel-specific layout or SEO treatment
    - COLLECTION_CREATION: Affiliate collections on listing pages
    - AB_TEST: Sitewide experiment suggested by the channel mix
    """
    AFFILIATE_PLACEMENT = "affiliate_placement"
    AD_LAYOUT_OPTIMIZATION = "ad_layout_optimization"
    CONTENT_EXPANSION = "content_expansion"
    TRAFFIC_SOURCE_OPTIMIZATION = "traffic_source_optimization"
    COLLECTION_CREATION = "collection_creation"
    AB_TEST = "ab_test"


class OpportunityStatus(str, Enum):
    """
    Lifecycle status of an opportunity.

    pending -> approved/rejected -> implemented/expired. Only pending
    opportunities age out through the cleanup job.
    """
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IMPLEMENTED = "implemented"
    EXPIRED = "expired"


# Statuses that count as a live opportunity for the (type, page_url) key
LIVE_OPPORTUNITY_STATUSES = (
    OpportunityStatus.PENDING,
    OpportunityStatus.APPROVED,
    OpportunityStatus.IMPLEMENTED,
)


class ActionType(str, Enum):
    """
    Remediation category of a suggested action.

    Learning Engine statistics and adjustment factors are kept per action type.
    """
    ADD_AFFILIATE_LINK = "add_affiliate_link"
    UPDATE_AD_PLACEMENT = "update_ad_placement"
    EXPAND_CONTENT = "expand_content"
    OPTIMIZE_SEO = "optimize_seo"
    CREATE_COLLECTION = "create_collection"
    RUN_AB_TEST = "run_ab_test"


class ActionStatus(str, Enum):
    """Execution status of a suggested action."""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXECUTED = "executed"
    FAILED = "failed"


class MeasurementStatus(str, Enum):
    """Status of an impact measurement window."""
    PENDING = "pending"
    COMPLETE = "complete"


class Trend(str, Enum):
    """Direction of prediction accuracy over the trend window."""
    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"


class InsightType(str, Enum):
    """Kind of learning insight shown on the reporting surface."""
    ACCURACY = "accuracy"
    TREND = "trend"
    CALIBRATION = "calibration"
    RECOMMENDATION = "recommendation"


class InsightSeverity(str, Enum):
    """Display severity of a learning insight."""
    SUCCESS = "success"
    INFO = "info"
    WARNING = "warning"


class RunStatus(str, Enum):
    """
    Status of an Agent Run record.

    pending -> running -> completed | failed. Completed and failed are terminal.
    """
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class JobType(str, Enum):
    """
    Job identifiers accepted by the orchestrator.

    FULL runs the ordered pipeline of the other sub-jobs (REPORT excluded).
    """
    FULL = "full"
    GA4_SYNC = "ga4_sync"
    MEDIAVINE_SYNC = "mediavine_sync"
    IMPACT_MEASUREMENT = "impact_measurement"
    AFFILIATE_SCAN = "affiliate_scan"
    RPM_ANALYSIS = "rpm_analysis"
    AUTO_EXECUTE = "auto_execute"
    CLEANUP = "cleanup"
    REPORT = "report"


class PageType(str, Enum):
    """Page classification used by the metric facts."""
    CONTENT = "content"
    CATEGORY = "category"
    SEARCH = "search"
    HOME = "home"
    OTHER = "other"


class TrafficSource(str, Enum):
    """Inbound traffic channel for the per-source pageview breakdown."""
    GOOGLE = "google"
    PINTEREST = "pinterest"
    DIRECT = "direct"
    SOCIAL = "social"
    OTHER = "other"


# Visually-driven referrers; high shares call for image-forward layouts
VISUAL_TRAFFIC_SOURCES = (TrafficSource.PINTEREST,)

# Search engines; high shares call for search-intent optimization
SEARCH_TRAFFIC_SOURCES = (TrafficSource.GOOGLE,)
