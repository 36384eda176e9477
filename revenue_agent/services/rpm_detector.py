"""
RPM Detector: pages whose ad-revenue efficiency lags the rest of the site.

RPM (revenue per thousand pageviews) = ad_revenue / pageviews x 1000.

Sub-analyses:
1. Underperforming RPM: >= 100 pageviews and RPM below 70% of the site average,
   ranked by pageviews x RPM gap, top 20
2. High bounce: >= 100 pageviews and bounce rate above 70%, top 15 by traffic
3. Thin content: content pages with >= 50 pageviews and under 30s on page, top 15
4. Traffic-source skew: sitewide opportunities for a dominant visual channel
   (> 30% and larger than every other channel) or a search-heavy mix (> 50%)

Deduplication keeps the candidate with the highest estimated impact per page.

Dependencies:
- pandas for the page-level filtering and ranking
- revenue_agent.services.detection: BaseDetector
"""

import logging
from typing import List

import pandas as pd

from revenue_agent.models import (
    ActionType,
    ExpandContentParams,
    MetricWindow,
    OpportunityCandidate,
    OpportunityType,
    OptimizeSeoParams,
    PageMetrics,
    PageType,
    RunAbTestParams,
    SEARCH_TRAFFIC_SOURCES,
    SiteMetrics,
    SuggestedAction,
    UpdateAdPlacementParams,
    VISUAL_TRAFFIC_SOURCES,
)
from revenue_agent.services.detection import (
    DEFAULT_MAX_WORKERS,
    SITEWIDE_PAGE_URL,
    BaseDetector,
    EstimateAdjuster,
    SubAnalysis,
    clamp_priority,
    learning_note,
)
from revenue_agent.services.metric_aggregator import MetricAggregator
from revenue_agent.services.opportunity_store import OpportunityStore


# =============================================================================
# Thresholds
# =============================================================================

MIN_PAGEVIEWS: int = 100
UNDERPERFORMING_RPM_RATIO: float = 0.7
UNDERPERFORMING_LIMIT: int = 20

HIGH_BOUNCE_THRESHOLD: float = 70.0
HIGH_BOUNCE_LIMIT: int = 15
HIGH_BOUNCE_RECOVERABLE: float = 0.2
TARGET_BOUNCE_RATE: float = 50.0

THIN_CONTENT_MIN_PAGEVIEWS: int = 50
THIN_CONTENT_MAX_SECONDS: float = 30.0
THIN_CONTENT_LIMIT: int = 15
THIN_CONTENT_RECOVERABLE: float = 0.3
TARGET_TIME_ON_PAGE: float = 60.0

VISUAL_SKEW_SHARE: float = 0.30
VISUAL_SKEW_IMPACT_SHARE: float = 0.1
SEARCH_DOMINANT_SHARE: float = 0.5
SEARCH_DOMINANT_IMPACT_SHARE: float = 0.05

RPM_INCREASE_PER_IMPACT: float = 0.1

logger = logging.getLogger(__name__)


def pages_frame(pages: List[PageMetrics]) -> pd.DataFrame:
    """Page metrics as a DataFrame indexed by position in `pages`."""
    columns = ['pageviews', 'ad_revenue', 'rpm', 'bounce_rate', 'avg_time_on_page', 'page_type']
    if not pages:
        return pd.DataFrame(columns=columns)
    frame = pd.DataFrame([
        {
            'pageviews': p.pageviews,
            'ad_revenue': p.ad_revenue,
            'rpm': p.rpm,
            'bounce_rate': p.bounce_rate,
            'avg_time_on_page': p.avg_time_on_page,
            'page_type': p.page_type.value,
        }
        for p in pages
    ])
    frame['bounce_rate'] = pd.to_numeric(frame['bounce_rate'], errors='coerce')
    frame['avg_time_on_page'] = pd.to_numeric(frame['avg_time_on_page'], errors='coerce')
    return frame


def _rpm_increase(impact: float) -> float:
    return impact * RPM_INCREASE_PER_IMPACT


class RpmDetector(BaseDetector):
    """Finds ad layout, content expansion and traffic-mix opportunities."""

    name = 'rpm_detector'

    def __init__(
        self,
        aggregator: MetricAggregator,
        learning: EstimateAdjuster,
        store: OpportunityStore,
        window_days: int = 30,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        super().__init__(learning, store, window_days=window_days, max_workers=max_workers)
        self._aggregator = aggregator

    @staticmethod
    def _rank(candidate: OpportunityCandidate) -> float:
        return candidate.estimated_impact

    def _sub_analyses(self, window: MetricWindow) -> List[SubAnalysis]:
        return [
            lambda: self.find_underperforming_pages(window),
            lambda: self.find_high_bounce_pages(window),
            lambda: self.find_thin_content(window),
            lambda: self.find_traffic_source_skew(window),
        ]

    # -------------------------------------------------------------------------
    # 1. Underperforming RPM
    # -------------------------------------------------------------------------

    async def find_underperforming_pages(self, window: MetricWindow) -> List[OpportunityCandidate]:
        site = await self._aggregator.aggregate_site(window)
        site_rpm = site.average_rpm
        if site_rpm <= 0:
            return []

        pages = await self._aggregator.aggregate_pages(window)
        frame = pages_frame(pages)
        if frame.empty:
            return []

        flagged = frame[
            (frame['pageviews'] >= MIN_PAGEVIEWS)
            & (frame['rpm'] < site_rpm * UNDERPERFORMING_RPM_RATIO)
        ].copy()
        flagged['rpm_gap'] = site_rpm - flagged['rpm']
        flagged['score'] = flagged['pageviews'] * flagged['rpm_gap']
        flagged = flagged.sort_values('score', ascending=False, kind='stable').head(UNDERPERFORMING_LIMIT)

        candidates = []
        for index, row in flagged.iterrows():
            page = pages[index]
            rpm_gap = float(row['rpm_gap'])
            estimate = await self._adjust(
                ActionType.UPDATE_AD_PLACEMENT, page.pageviews * rpm_gap / 1000
            )
            impact = max(0.0, estimate.adjusted_estimate)
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.AD_LAYOUT_OPTIMIZATION,
                page_url=page.page_url,
                title=f"Improve ad layout on {page.page_url}",
                description=(
                    f"RPM ${page.rpm:.2f} vs. site average ${site_rpm:.2f} "
                    f"across {page.pageviews:,} views."
                    + learning_note(estimate)
                ),
                confidence=0.75,
                estimated_impact=impact,
                priority=clamp_priority(impact / 10, ceiling=9),
                estimated_rpm_increase=_rpm_increase(impact),
                suggested_action=SuggestedAction(
                    parameters=UpdateAdPlacementParams(
                        current_rpm=page.rpm,
                        target_rpm=site_rpm,
                        suggestions=[
                            'Add an in-content ad unit after the first section',
                            'Enable a sticky sidebar unit',
                            'Check ad density against similar pages',
                        ],
                    ),
                    learning_applied=estimate.learning_applied,
                    adjustment_factor=estimate.adjustment_factor,
                ),
            ))

        logger.debug(f"Underperforming-RPM analysis: {len(candidates)} candidates")
        return candidates

    # -------------------------------------------------------------------------
    # 2. High bounce
    # -------------------------------------------------------------------------

    async def find_high_bounce_pages(self, window: MetricWindow) -> List[OpportunityCandidate]:
        pages = await self._aggregator.aggregate_pages(window)
        frame = pages_frame(pages)
        if frame.empty:
            return []

        flagged = frame[
            (frame['pageviews'] >= MIN_PAGEVIEWS)
            & (frame['bounce_rate'] > HIGH_BOUNCE_THRESHOLD)
        ].sort_values('pageviews', ascending=False, kind='stable').head(HIGH_BOUNCE_LIMIT)

        candidates = []
        for index in flagged.index:
            page = pages[index]
            estimate = await self._adjust(
                ActionType.EXPAND_CONTENT, page.ad_revenue * HIGH_BOUNCE_RECOVERABLE
            )
            impact = max(0.0, estimate.adjusted_estimate)
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.CONTENT_EXPANSION,
                page_url=page.page_url,
                title=f"Reduce bounce on {page.page_url}",
                description=(
                    f"{page.bounce_rate:.0f}% of {page.pageviews:,} visitors leave "
                    f"without a second pageview."
                    + learning_note(estimate)
                ),
                confidence=0.65,
                estimated_impact=impact,
                priority=clamp_priority(page.bounce_rate / 15, ceiling=7),
                estimated_rpm_increase=_rpm_increase(impact),
                suggested_action=SuggestedAction(
                    parameters=ExpandContentParams(
                        current_bounce_rate=page.bounce_rate,
                        target_bounce_rate=TARGET_BOUNCE_RATE,
                        suggestions=[
                            'Add related-content links above the fold',
                            'Expand the description with install notes',
                        ],
                    ),
                    learning_applied=estimate.learning_applied,
                    adjustment_factor=estimate.adjustment_factor,
                ),
            ))

        logger.debug(f"High-bounce analysis: {len(candidates)} candidates")
        return candidates

    # -------------------------------------------------------------------------
    # 3. Thin content
    # -------------------------------------------------------------------------

    async def find_thin_content(self, window: MetricWindow) -> List[OpportunityCandidate]:
        pages = await self._aggregator.aggregate_pages(window, page_types=[PageType.CONTENT])
        frame = pages_frame(pages)
        if frame.empty:
            return []

        flagged = frame[
            (frame['page_type'] == PageType.CONTENT.value)
            & (frame['pageviews'] >= THIN_CONTENT_MIN_PAGEVIEWS)
            & (frame['avg_time_on_page'] < THIN_CONTENT_MAX_SECONDS)
        ].sort_values('pageviews', ascending=False, kind='stable').head(THIN_CONTENT_LIMIT)

        candidates = []
        for index in flagged.index:
            page = pages[index]
            estimate = await self._adjust(
                ActionType.EXPAND_CONTENT, page.ad_revenue * THIN_CONTENT_RECOVERABLE
            )
            impact = max(0.0, estimate.adjusted_estimate)
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.CONTENT_EXPANSION,
                page_url=page.page_url,
                title=f"Expand thin content on {page.page_url}",
                description=(
                    f"Visitors spend {page.avg_time_on_page:.0f}s on average, "
                    f"too short for ads below the fold to load."
                    + learning_note(estimate)
                ),
                confidence=0.6,
                estimated_impact=impact,
                priority=5,
                estimated_rpm_increase=_rpm_increase(impact),
                suggested_action=SuggestedAction(
                    parameters=ExpandContentParams(
                        current_time_on_page=page.avg_time_on_page,
                        target_time_on_page=TARGET_TIME_ON_PAGE,
                        suggestions=[
                            'Add screenshots and a feature list',
                            'Add compatibility and install sections',
                        ],
                    ),
                    learning_applied=estimate.learning_applied,
                    adjustment_factor=estimate.adjustment_factor,
                ),
            ))

        logger.debug(f"Thin-content analysis: {len(candidates)} candidates")
        return candidates

    # -------------------------------------------------------------------------
    # 4. Sitewide traffic-source skew
    # -------------------------------------------------------------------------

    async def find_traffic_source_skew(self, window: MetricWindow) -> List[OpportunityCandidate]:
        site = await self._aggregator.aggregate_site(window)
        return sitewide_skew_candidates(site)


def sitewide_skew_candidates(site: SiteMetrics) -> List[OpportunityCandidate]:
    """
    Sitewide opportunities from the channel mix, keyed by SITEWIDE_PAGE_URL.

    Estimates here are not adjusted by the Learning Engine.
    """
    candidates: List[OpportunityCandidate] = []
    traffic = site.traffic_by_source

    for source in VISUAL_TRAFFIC_SOURCES:
        share = site.source_share(source)
        views = traffic.get(source, 0)
        others = [v for s, v in traffic.items() if s != source]
        if share > VISUAL_SKEW_SHARE and all(views > v for v in others):
            impact = max(0.0, site.ad_revenue * VISUAL_SKEW_IMPACT_SHARE)
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.AB_TEST,
                page_url=SITEWIDE_PAGE_URL,
                title=f"Test a {source.value}-first layout",
                description=(
                    f"{source.value.capitalize()} drives {share:.0%} of traffic. "
                    f"Visual visitors may respond to image-led ad placements."
                ),
                confidence=0.7,
                estimated_impact=impact,
                priority=6,
                estimated_rpm_increase=_rpm_increase(impact),
                suggested_action=SuggestedAction(
                    parameters=RunAbTestParams(
                        test_type='layout',
                        hypothesis=(
                            f"An image-led layout raises RPM for {source.value} visitors"
                        ),
                        suggestions=[
                            'Larger hero images with an ad unit below',
                            'Gallery layout with interstitial ad units',
                        ],
                    ),
                ),
            ))
            break

    for source in SEARCH_TRAFFIC_SOURCES:
        share = site.source_share(source)
        if share > SEARCH_DOMINANT_SHARE:
            impact = max(0.0, site.ad_revenue * SEARCH_DOMINANT_IMPACT_SHARE)
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.TRAFFIC_SOURCE_OPTIMIZATION,
                page_url=SITEWIDE_PAGE_URL,
                title="Optimize for search intent",
                description=(
                    f"Search drives {share:.0%} of traffic. Matching page structure "
                    f"to query intent should lift engagement and RPM."
                ),
                confidence=0.65,
                estimated_impact=impact,
                priority=5,
                estimated_rpm_increase=_rpm_increase(impact),
                suggested_action=SuggestedAction(
                    parameters=OptimizeSeoParams(
                        optimization_type='search_intent',
                        suggestions=[
                            'Answer the query in the first paragraph',
                            'Add structured data for downloads',
                        ],
                    ),
                ),
            ))
            break

    return candidates
