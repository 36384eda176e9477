"""
Affiliate Detector: pages that should carry (more) affiliate monetization.

Runs four independent sub-analyses over the trailing metric window and merges
them, keeping the highest-confidence candidate per page URL.

Sub-analyses:
1. High-traffic content pages (>= 100 pageviews) with fewer than 5 affiliate clicks
2. Buyer-intent content: catalog items whose text matches >= 2 buyer-intent
   keywords and whose affiliate click-through rate is below 5%
3. Traffic-source mismatch: a visual channel brings more than 40% of a page's views
4. Listing pages (category/search, >= 200 pageviews) with affiliate click rate < 2%

Estimates:
Every sub-analysis starts from the fixed affiliate funnel
(pageviews x 0.03 x 0.05 x 20 x 0.07) and asks the Learning Engine to adjust
it for the action type it proposes.

Dependencies:
- revenue_agent.services.metric_aggregator: MetricAggregator, ContentCatalog
- revenue_agent.services.detection: BaseDetector and funnel constants
"""

import logging
import re
from typing import Dict, List, Optional

from revenue_agent.models import (
    ActionType,
    AddAffiliateLinkParams,
    ContentItem,
    CreateCollectionParams,
    MetricWindow,
    OpportunityCandidate,
    OpportunityType,
    OptimizeSeoParams,
    PageMetrics,
    PageType,
    SuggestedAction,
    VISUAL_TRAFFIC_SOURCES,
)
from revenue_agent.services.detection import (
    DEFAULT_MAX_WORKERS,
    BaseDetector,
    EstimateAdjuster,
    SubAnalysis,
    base_affiliate_estimate,
    clamp_priority,
    learning_note,
)
from revenue_agent.services.metric_aggregator import ContentCatalog, MetricAggregator
from revenue_agent.services.opportunity_store import OpportunityStore


# =============================================================================
# Thresholds
# =============================================================================

HIGH_TRAFFIC_MIN_PAGEVIEWS: int = 100
HIGH_TRAFFIC_MAX_CLICKS: int = 5

BUYER_INTENT_MIN_SCORE: int = 2
BUYER_INTENT_MAX_CTR: float = 0.05
BUYER_INTENT_SCAN_LIMIT: int = 100

# Assumed pageviews for catalog items with no traffic in the window
BUYER_INTENT_FALLBACK_PAGEVIEWS: int = 50

TRAFFIC_MISMATCH_MIN_SHARE: float = 0.40
TRAFFIC_MISMATCH_MIN_VIEWS: int = 50
TRAFFIC_MISMATCH_ESTIMATE_SHARE: float = 0.3

LISTING_MIN_PAGEVIEWS: int = 200
LISTING_MAX_CLICK_RATE: float = 0.02
LISTING_ESTIMATE_SHARE: float = 0.5

LISTING_PAGE_TYPES = (PageType.CATEGORY, PageType.SEARCH)

BUYER_INTENT_KEYWORDS: List[str] = [
    'patreon',
    'exclusive',
    'premium',
    'early access',
    'supporter',
    'download',
    'get it',
    'grab it',
    'snag it',
    'available now',
    'maxis match',
    'alpha cc',
    'high quality',
    'hq',
    'detailed',
    'collection',
    'bundle',
    'pack',
    'set',
    'complete',
    'support',
    'tip jar',
    'ko-fi',
    'buy me a coffee',
]

_KEYWORD_PATTERNS = [
    (keyword, re.compile(r'\b' + re.escape(keyword) + r'\b'))
    for keyword in BUYER_INTENT_KEYWORDS
]

# Programme -> commission rate and payout model
AFFILIATE_PROGRAMS: Dict[str, Dict[str, object]] = {
    'patreon': {'commission': 0.08, 'recurring': True},
    'curseforge': {'commission': 0.05, 'recurring': False},
    'amazon': {'commission': 0.04, 'recurring': False},
    'tsr': {'commission': 0.10, 'recurring': False},
}

DEFAULT_PROGRAMS: List[str] = ['patreon', 'curseforge']

logger = logging.getLogger(__name__)


# =============================================================================
# Helpers
# =============================================================================


def find_intent_keywords(text: str) -> List[str]:
    """Buyer-intent keywords present in `text` as whole words."""
    lowered = text.lower()
    return [keyword for keyword, pattern in _KEYWORD_PATTERNS if pattern.search(lowered)]


def suggest_programs(item: Optional[ContentItem]) -> List[str]:
    """
    Affiliate programmes hinted at by a content item's source fields.

    Falls back to patreon and curseforge when nothing matches.
    """
    if item is None:
        return list(DEFAULT_PROGRAMS)
    hints = " ".join(p for p in (item.source, item.source_url, item.description) if p).lower()
    matched = [name for name in AFFILIATE_PROGRAMS if name in hints]
    return matched or list(DEFAULT_PROGRAMS)


def content_id_from_url(page_url: str, prefix: str) -> Optional[str]:
    if not page_url.startswith(prefix):
        return None
    remainder = page_url[len(prefix):].strip('/')
    if not remainder:
        return None
    return remainder.split('/')[0]


# =============================================================================
# Detector
# =============================================================================


class AffiliateDetector(BaseDetector):
    """Finds affiliate placement, traffic-source and collection opportunities."""

    name = 'affiliate_detector'

    def __init__(
        self,
        aggregator: MetricAggregator,
        catalog: ContentCatalog,
        learning: EstimateAdjuster,
        store: OpportunityStore,
        window_days: int = 30,
        max_workers: int = DEFAULT_MAX_WORKERS,
        content_url_prefix: str = '/mods/',
    ):
        super().__init__(learning, store, window_days=window_days, max_workers=max_workers)
        self._aggregator = aggregator
        self._catalog = catalog
        self._content_url_prefix = content_url_prefix

    @staticmethod
    def _rank(candidate: OpportunityCandidate) -> float:
        return candidate.confidence

    def _sub_analyses(self, window: MetricWindow) -> List[SubAnalysis]:
        return [
            lambda: self.find_high_traffic_pages(window),
            lambda: self.find_buyer_intent_content(window),
            lambda: self.find_traffic_mismatch(window),
            lambda: self.find_unmonetized_listings(window),
        ]

    # -------------------------------------------------------------------------
    # 1. High traffic, low affiliate engagement
    # -------------------------------------------------------------------------

    async def find_high_traffic_pages(self, window: MetricWindow) -> List[OpportunityCandidate]:
        pages = await self._aggregator.aggregate_pages(window, page_types=[PageType.CONTENT])
        targets = [
            p for p in pages
            if p.pageviews >= HIGH_TRAFFIC_MIN_PAGEVIEWS
            and p.affiliate_clicks < HIGH_TRAFFIC_MAX_CLICKS
        ]
        if not targets:
            return []

        content_ids = {
            p.page_url: content_id_from_url(p.page_url, self._content_url_prefix)
            for p in targets
        }
        items = await self._catalog.get_items([cid for cid in content_ids.values() if cid])

        candidates = []
        for page in targets:
            content_id = content_ids[page.page_url]
            item = items.get(content_id) if content_id else None
            name = item.title if item else page.page_url

            estimate = await self._adjust(
                ActionType.ADD_AFFILIATE_LINK, base_affiliate_estimate(page.pageviews)
            )
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.AFFILIATE_PLACEMENT,
                page_url=page.page_url,
                content_id=content_id,
                title=f'Add affiliate links to "{name}"',
                description=(
                    f"{page.pageviews:,} views but only {page.affiliate_clicks} affiliate "
                    f"clicks in the last {self._window_days} days."
                    + learning_note(estimate)
                ),
                confidence=min(0.9, 0.5 + 0.1 * page.pageviews / 1000),
                estimated_impact=max(0.0, estimate.adjusted_estimate),
                priority=clamp_priority(page.pageviews / 100),
                suggested_action=SuggestedAction(
                    parameters=AddAffiliateLinkParams(
                        target_programs=suggest_programs(item),
                        placement_type='inline',
                        reason='High traffic, low affiliate engagement',
                    ),
                    learning_applied=estimate.learning_applied,
                    adjustment_factor=estimate.adjustment_factor,
                ),
            ))

        logger.debug(f"High-traffic analysis: {len(candidates)} candidates")
        return candidates

    # -------------------------------------------------------------------------
    # 2. Buyer intent
    # -------------------------------------------------------------------------

    async def find_buyer_intent_content(self, window: MetricWindow) -> List[OpportunityCandidate]:
        items = await self._catalog.list_recent_items(BUYER_INTENT_SCAN_LIMIT)
        if not items:
            return []

        pages = await self._aggregator.aggregate_pages(window, page_types=[PageType.CONTENT])
        by_url: Dict[str, PageMetrics] = {p.page_url: p for p in pages}

        candidates = []
        for item in items:
            indicators = find_intent_keywords(item.searchable_text)
            score = len(indicators)
            if score < BUYER_INTENT_MIN_SCORE:
                continue

            metrics = by_url.get(item.page_url)
            views = metrics.pageviews if metrics else 0
            if views > 0 and metrics.affiliate_click_rate >= BUYER_INTENT_MAX_CTR:
                continue

            estimate = await self._adjust(
                ActionType.ADD_AFFILIATE_LINK,
                base_affiliate_estimate(views or BUYER_INTENT_FALLBACK_PAGEVIEWS),
            )
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.AFFILIATE_PLACEMENT,
                page_url=item.page_url,
                content_id=item.id,
                title=f'Buyer intent detected on "{item.title}"',
                description=(
                    f"Content matches {score} buyer-intent signals "
                    f"({', '.join(indicators[:5])})."
                    + learning_note(estimate)
                ),
                confidence=min(0.85, 0.4 + 0.1 * score),
                estimated_impact=max(0.0, estimate.adjusted_estimate),
                priority=clamp_priority(score + 3, ceiling=8),
                suggested_action=SuggestedAction(
                    parameters=AddAffiliateLinkParams(
                        target_programs=suggest_programs(item),
                        placement_type='prominent',
                        reason='Buyer intent keywords in content',
                        intent_indicators=indicators,
                    ),
                    learning_applied=estimate.learning_applied,
                    adjustment_factor=estimate.adjustment_factor,
                ),
            ))

        logger.debug(f"Buyer-intent analysis: {len(candidates)} of {len(items)} items flagged")
        return candidates

    # -------------------------------------------------------------------------
    # 3. Traffic-source mismatch
    # -------------------------------------------------------------------------

    async def find_traffic_mismatch(self, window: MetricWindow) -> List[OpportunityCandidate]:
        pages = await self._aggregator.aggregate_pages(window)

        candidates = []
        for page in pages:
            if page.pageviews <= 0:
                continue
            for source in VISUAL_TRAFFIC_SOURCES:
                views = page.traffic_by_source.get(source, 0)
                share = views / page.pageviews
                if views <= TRAFFIC_MISMATCH_MIN_VIEWS or share <= TRAFFIC_MISMATCH_MIN_SHARE:
                    continue

                estimate = await self._adjust(
                    ActionType.OPTIMIZE_SEO,
                    base_affiliate_estimate(page.pageviews) * TRAFFIC_MISMATCH_ESTIMATE_SHARE,
                )
                candidates.append(OpportunityCandidate(
                    opportunity_type=OpportunityType.TRAFFIC_SOURCE_OPTIMIZATION,
                    page_url=page.page_url,
                    title=f"Optimize {page.page_url} for {source.value} traffic",
                    description=(
                        f"{share:.0%} of views come from {source.value}. "
                        f"A visual-first layout should convert this audience better."
                        + learning_note(estimate)
                    ),
                    confidence=0.7,
                    estimated_impact=max(0.0, estimate.adjusted_estimate),
                    priority=6,
                    suggested_action=SuggestedAction(
                        parameters=OptimizeSeoParams(
                            optimization_type=source.value,
                            suggestions=[
                                'Lead with a large preview image',
                                'Add pinnable images with descriptive alt text',
                                'Place affiliate links next to the gallery',
                            ],
                        ),
                        learning_applied=estimate.learning_applied,
                        adjustment_factor=estimate.adjustment_factor,
                    ),
                ))
                break

        logger.debug(f"Traffic-mismatch analysis: {len(candidates)} candidates")
        return candidates

    # -------------------------------------------------------------------------
    # 4. Unmonetized listings
    # -------------------------------------------------------------------------

    async def find_unmonetized_listings(self, window: MetricWindow) -> List[OpportunityCandidate]:
        pages = await self._aggregator.aggregate_pages(window, page_types=list(LISTING_PAGE_TYPES))

        candidates = []
        for page in pages:
            if page.page_type not in LISTING_PAGE_TYPES:
                continue
            if page.pageviews < LISTING_MIN_PAGEVIEWS:
                continue
            if page.affiliate_click_rate >= LISTING_MAX_CLICK_RATE:
                continue

            estimate = await self._adjust(
                ActionType.CREATE_COLLECTION,
                base_affiliate_estimate(page.pageviews) * LISTING_ESTIMATE_SHARE,
            )
            candidates.append(OpportunityCandidate(
                opportunity_type=OpportunityType.COLLECTION_CREATION,
                page_url=page.page_url,
                title=f"Feature affiliate picks on {page.page_url}",
                description=(
                    f"{page.page_type.value.capitalize()} page with {page.pageviews:,} views "
                    f"and a {page.affiliate_click_rate:.1%} affiliate click rate."
                    + learning_note(estimate)
                ),
                confidence=0.65,
                estimated_impact=max(0.0, estimate.adjusted_estimate),
                priority=5,
                suggested_action=SuggestedAction(
                    parameters=CreateCollectionParams(
                        collection_type='affiliate_featured',
                        placement='sidebar_or_banner',
                        reason='High-traffic listing page without affiliate placements',
                    ),
                    learning_applied=estimate.learning_applied,
                    adjustment_factor=estimate.adjustment_factor,
                ),
            ))

        logger.debug(f"Listing analysis: {len(candidates)} candidates")
        return candidates

