"""
Shared machinery for the opportunity detectors.

Both detectors follow the same pass:

1. Fan out their independent sub-analyses on a bounded worker pool. Each
   sub-analysis reads aggregates and returns its own candidate list; nothing
   is shared between them while they run.
2. Fan in: merge the lists and deduplicate by page URL in memory, using the
   detector's own ranking key.
3. Write the survivors to the Opportunity Store one at a time, so the store
   sees at most one write per page per pass.

Also holds the affiliate conversion funnel used for base revenue estimates.
"""

import asyncio
import logging
import math
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, TypeVar

from revenue_agent.models import (
    ActionType,
    AdjustedEstimate,
    DetectionSummary,
    MetricWindow,
    OpportunityCandidate,
)
from revenue_agent.services.opportunity_store import OpportunityStore


# =============================================================================
# Affiliate Funnel Model
# =============================================================================

# Share of pageviews that click an affiliate link
AFFILIATE_CLICK_THROUGH_RATE: float = 0.03

# Share of affiliate clicks that convert to a purchase
AFFILIATE_CONVERSION_RATE: float = 0.05

# Average order value (USD)
AVERAGE_ORDER_VALUE: float = 20.0

# Commission earned on an order
AVERAGE_COMMISSION_RATE: float = 0.07

# Expected revenue per affiliate click
AFFILIATE_CLICK_VALUE: float = (
    AFFILIATE_CONVERSION_RATE * AVERAGE_ORDER_VALUE * AVERAGE_COMMISSION_RATE
)

# Page URL used for opportunities that apply to the whole site
SITEWIDE_PAGE_URL: str = '/_site_total'

DEFAULT_MAX_WORKERS: int = 4

T = TypeVar('T')

logger = logging.getLogger(__name__)


def base_affiliate_estimate(pageviews: int) -> float:
    """
    Monthly affiliate revenue for a page under the fixed funnel model.

    pageviews x CTR x conversion x order value x commission.
    500 pageviews -> 1.05.
    """
    return (
        pageviews
        * AFFILIATE_CLICK_THROUGH_RATE
        * AFFILIATE_CONVERSION_RATE
        * AVERAGE_ORDER_VALUE
        * AVERAGE_COMMISSION_RATE
    )


def clamp_priority(value: float, ceiling: int = 10) -> int:
    """Round a raw priority up and bound it to [1, ceiling]."""
    return max(1, min(ceiling, int(math.ceil(value))))


def dedupe_by_page(
    candidates: Sequence[OpportunityCandidate],
    key: Callable[[OpportunityCandidate], float],
) -> List[OpportunityCandidate]:
    """
    Keep one candidate per page URL.

    A later candidate replaces an earlier one only when its key is strictly
    greater, so ties keep the first candidate seen. Output keeps first-seen
    page order.
    """
    best: Dict[str, OpportunityCandidate] = {}
    for candidate in candidates:
        current = best.get(candidate.page_url)
        if current is None or key(candidate) > key(current):
            best[candidate.page_url] = candidate
    return list(best.values())


async def gather_bounded(
    tasks: Sequence[Callable[[], Awaitable[T]]],
    max_workers: int = DEFAULT_MAX_WORKERS,
) -> List[T]:
    """
    Run task factories with at most `max_workers` in flight.

    Results come back in task order. The first exception propagates and the
    remaining tasks are cancelled.
    """
    semaphore = asyncio.Semaphore(max(1, max_workers))

    async def _run(task: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await task()

    pending = [asyncio.ensure_future(_run(task)) for task in tasks]
    try:
        return list(await asyncio.gather(*pending))
    except Exception:
        for future in pending:
            future.cancel()
        raise


# =============================================================================
# Detector Base
# =============================================================================


class EstimateAdjuster(Protocol):
    async def adjust_estimate(self, action_type: ActionType, base_estimate: float) -> AdjustedEstimate:
        ...


SubAnalysis = Callable[[], Awaitable[List[OpportunityCandidate]]]


class BaseDetector:
    """
    Common fan-out / dedupe / persist pass.

    Subclasses provide `_sub_analyses(window)` and `_rank(candidate)`.
    """

    name: str = 'detector'

    def __init__(
        self,
        learning: EstimateAdjuster,
        store: OpportunityStore,
        window_days: int = 30,
        max_workers: int = DEFAULT_MAX_WORKERS,
    ):
        self._learning = learning
        self._store = store
        self._window_days = window_days
        self._max_workers = max_workers

    def _sub_analyses(self, window: MetricWindow) -> List[SubAnalysis]:
        raise NotImplementedError

    @staticmethod
    def _rank(candidate: OpportunityCandidate) -> float:
        raise NotImplementedError

    async def _adjust(self, action_type: ActionType, base_estimate: float) -> AdjustedEstimate:
        return await self._learning.adjust_estimate(action_type, base_estimate)

    async def detect(self, now: Optional[datetime] = None) -> List[OpportunityCandidate]:
        """Run every sub-analysis and return the deduplicated candidates (no writes)."""
        candidates, _ = await self._collect(now)
        return candidates

    async def _collect(self, now: Optional[datetime]):
        window = MetricWindow.trailing(self._window_days, now)
        results = await gather_bounded(self._sub_analyses(window), self._max_workers)

        merged = [candidate for result in results for candidate in result]
        deduped = dedupe_by_page(merged, self._rank)
        logger.info(
            f"{self.name}: {len(merged)} candidates from {len(results)} sub-analyses, "
            f"{len(deduped)} after dedupe"
        )
        return deduped, len(merged)

    async def run(self, now: Optional[datetime] = None) -> DetectionSummary:
        """Detect and upsert every surviving candidate into the Opportunity Store."""
        candidates, scanned = await self._collect(now)

        opportunity_ids: List[str] = []
        for candidate in candidates:
            opportunity_ids.append(await self._store.upsert_opportunity(candidate))

        return DetectionSummary(
            candidates_scanned=scanned,
            opportunities_created=len(opportunity_ids),
            opportunity_ids=opportunity_ids,
        )


def learning_note(estimate: AdjustedEstimate) -> str:
    """Suffix for descriptions when a learned adjustment changed the estimate."""
    if not estimate.learning_applied:
        return ""
    percent = (estimate.adjustment_factor - 1.0) * 100
    direction = "raised" if percent >= 0 else "lowered"
    return (
        f" Estimate {direction} {abs(percent):.0f}% from {estimate.sample_size} "
        f"past measurements."
    )
