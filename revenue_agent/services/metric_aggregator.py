"""
Metric Aggregator and content catalog collaborators.

Detectors never issue SQL themselves. They read windowed aggregates through
the narrow MetricAggregator interface and content details through
ContentCatalog, so any implementation (Postgres, an in-memory fake in tests)
can be substituted at construction time.

Key Features:
- Per-page aggregates: pageviews, ad revenue, affiliate clicks, bounce rate,
  time on page and a traffic-source breakdown
- Site-wide aggregate over the same facts without grouping
- Content catalog lookups for buyer-intent scanning and page titles

Dependencies:
- asyncpg pool (revenue_agent.core.database)
- revenue_agent.sql.metric_queries
"""

import logging
from typing import Dict, List, Mapping, Optional, Protocol, Sequence

from asyncpg import Pool

from revenue_agent.models import (
    ContentItem,
    MetricWindow,
    PageMetrics,
    PageType,
    SiteMetrics,
    TrafficSource,
)
from revenue_agent.sql.metric_queries import (
    CONTENT_ITEMS_BY_ID_QUERY,
    RECENT_CONTENT_ITEMS_QUERY,
    SITE_AGGREGATE_QUERY,
    TRAFFIC_SOURCE_COLUMNS,
    get_page_aggregate_query,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Interfaces
# =============================================================================


class MetricAggregator(Protocol):
    """Read-only, time-windowed aggregate queries over page facts."""

    async def aggregate_pages(
        self,
        window: MetricWindow,
        page_types: Optional[Sequence[PageType]] = None,
    ) -> List[PageMetrics]:
        ...

    async def aggregate_page(self, page_url: str, window: MetricWindow) -> Optional[PageMetrics]:
        ...

    async def aggregate_site(self, window: MetricWindow) -> SiteMetrics:
        ...


class ContentCatalog(Protocol):
    """Read-only access to content items."""

    async def list_recent_items(self, limit: int) -> List[ContentItem]:
        ...

    async def get_items(self, item_ids: Sequence[str]) -> Dict[str, ContentItem]:
        ...


# =============================================================================
# Row Mapping
# =============================================================================


def _traffic_from_row(row: Mapping) -> Dict[TrafficSource, int]:
    traffic: Dict[TrafficSource, int] = {}
    for source, column in zip(TrafficSource, TRAFFIC_SOURCE_COLUMNS):
        value = row[column]
        if value:
            traffic[source] = int(value)
    return traffic


def _page_type(value: Optional[str]) -> PageType:
    try:
        return PageType(value)
    except ValueError:
        return PageType.OTHER


def row_to_page_metrics(row: Mapping) -> PageMetrics:
    return PageMetrics(
        page_url=row['page_url'],
        page_type=_page_type(row['page_type']),
        pageviews=int(row['pageviews'] or 0),
        ad_revenue=float(row['ad_revenue'] or 0),
        affiliate_clicks=int(row['affiliate_clicks'] or 0),
        bounce_rate=float(row['bounce_rate']) if row['bounce_rate'] is not None else None,
        avg_time_on_page=(
            float(row['avg_time_on_page']) if row['avg_time_on_page'] is not None else None
        ),
        traffic_by_source=_traffic_from_row(row),
    )


def _row_to_content_item(row: Mapping) -> ContentItem:
    return ContentItem(
        id=str(row['id']),
        title=row['title'],
        page_url=row['page_url'],
        description=row['description'],
        source=row['source'],
        source_url=row['source_url'],
        author=row['author'],
    )


# =============================================================================
# Postgres Implementations
# =============================================================================


class PostgresMetricAggregator:
    """MetricAggregator backed by the page_metric_day table."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def aggregate_pages(
        self,
        window: MetricWindow,
        page_types: Optional[Sequence[PageType]] = None,
    ) -> List[PageMetrics]:
        args: list = [window.start, window.end]
        if page_types:
            args.append([p.value for p in page_types])
        query = get_page_aggregate_query(filter_page_types=bool(page_types))

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *args)

        logger.debug(f"Aggregated {len(rows)} pages for {window.start} - {window.end}")
        return [row_to_page_metrics(row) for row in rows]

    async def aggregate_page(self, page_url: str, window: MetricWindow) -> Optional[PageMetrics]:
        query = get_page_aggregate_query(filter_page_url=True)

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, window.start, window.end, page_url)

        if not rows:
            return None

        # A page can change type inside a window; fold the groups together
        pages = [row_to_page_metrics(row) for row in rows]
        if len(pages) == 1:
            return pages[0]
        return merge_page_metrics(pages)

    async def aggregate_site(self, window: MetricWindow) -> SiteMetrics:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(SITE_AGGREGATE_QUERY, window.start, window.end)

        if row is None:
            return SiteMetrics()

        return SiteMetrics(
            pageviews=int(row['pageviews'] or 0),
            ad_revenue=float(row['ad_revenue'] or 0),
            affiliate_clicks=int(row['affiliate_clicks'] or 0),
            traffic_by_source=_traffic_from_row(row),
        )


class PostgresContentCatalog:
    """ContentCatalog backed by the content_item table."""

    def __init__(self, pool: Pool, url_prefix: str = '/mods/'):
        self._pool = pool
        self._url_prefix = url_prefix

    async def list_recent_items(self, limit: int) -> List[ContentItem]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(RECENT_CONTENT_ITEMS_QUERY, self._url_prefix, limit)
        return [_row_to_content_item(row) for row in rows]

    async def get_items(self, item_ids: Sequence[str]) -> Dict[str, ContentItem]:
        if not item_ids:
            return {}
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(CONTENT_ITEMS_BY_ID_QUERY, self._url_prefix, list(item_ids))
        items = [_row_to_content_item(row) for row in rows]
        return {item.id: item for item in items}


def merge_page_metrics(pages: Sequence[PageMetrics]) -> PageMetrics:
    """
    Combine several aggregates of the same page into one.

    Sums counts and revenue; bounce rate and time on page are pageview-weighted.
    """
    total_views = sum(p.pageviews for p in pages)

    def weighted(attr: str) -> Optional[float]:
        values = [(getattr(p, attr), p.pageviews) for p in pages if getattr(p, attr) is not None]
        if not values:
            return None
        weight = sum(w for _, w in values)
        if weight <= 0:
            return sum(v for v, _ in values) / len(values)
        return sum(v * w for v, w in values) / weight

    traffic: Dict[TrafficSource, int] = {}
    for page in pages:
        for source, views in page.traffic_by_source.items():
            traffic[source] = traffic.get(source, 0) + views

    busiest = max(pages, key=lambda p: p.pageviews)
    return PageMetrics(
        page_url=busiest.page_url,
        page_type=busiest.page_type,
        pageviews=total_views,
        ad_revenue=sum(p.ad_revenue for p in pages),
        affiliate_clicks=sum(p.affiliate_clicks for p in pages),
        bounce_rate=weighted('bounce_rate'),
        avg_time_on_page=weighted('avg_time_on_page'),
        traffic_by_source=traffic,
    )
