"""
Metric Queries Module for the Revenue Agent.

Windowed aggregate queries over the per-page daily facts in page_metric_day
and lookups against the content_item catalog. These back the Metric Aggregator
and content catalog collaborators used by both detectors and by impact
tracking.

page_metric_day grain: one row per (metric_date, page_url). Traffic-source
pageviews are stored as one column per channel (pv_google, pv_pinterest, ...).
"""

from typing import List


# =============================================================================
# CONSTANTS
# =============================================================================

# Channel columns in page_metric_day, in TrafficSource order
TRAFFIC_SOURCE_COLUMNS: List[str] = [
    'pv_google',
    'pv_pinterest',
    'pv_direct',
    'pv_social',
    'pv_other',
]

_TRAFFIC_SUMS = ",\n        ".join(
    f"COALESCE(SUM({col}), 0) AS {col}" for col in TRAFFIC_SOURCE_COLUMNS
)


# =============================================================================
# AGGREGATE QUERIES
# =============================================================================


def get_page_aggregate_query(
    filter_page_types: bool = False,
    filter_page_url: bool = False,
) -> str:
    """
    Generate the per-page aggregate query for a time window.

    Args:
        filter_page_types: Add a `page_type = ANY($3)` predicate.
        filter_page_url: Add a `page_url = $3` predicate (single-page lookup).

    Returns:
        Parameterized query. $1 = window start, $2 = window end (exclusive),
        $3 = page types array or page URL when a filter is requested.
    """
    predicates = ["metric_date >= $1", "metric_date < $2"]
    if filter_page_types:
        predicates.append("page_type = ANY($3::text[])")
    elif filter_page_url:
        predicates.append("page_url = $3")

    where_clause = "\n      AND ".join(predicates)

    return f"""
    SELECT
        page_url,
        page_type,
        COALESCE(SUM(pageviews), 0) AS pageviews,
        COALESCE(SUM(ad_revenue), 0) AS ad_revenue,
        COALESCE(SUM(affiliate_clicks), 0) AS affiliate_clicks,
        AVG(bounce_rate) AS bounce_rate,
        AVG(avg_time_on_page) AS avg_time_on_page,
        {_TRAFFIC_SUMS}
    FROM page_metric_day
    WHERE {where_clause}
    GROUP BY page_url, page_type
    """


SITE_AGGREGATE_QUERY = f"""
    SELECT
        COALESCE(SUM(pageviews), 0) AS pageviews,
        COALESCE(SUM(ad_revenue), 0) AS ad_revenue,
        COALESCE(SUM(affiliate_clicks), 0) AS affiliate_clicks,
        {_TRAFFIC_SUMS}
    FROM page_metric_day
    WHERE metric_date >= $1
      AND metric_date < $2
"""


# =============================================================================
# CONTENT CATALOG QUERIES
# =============================================================================

# $1 = URL prefix, $2 = limit
RECENT_CONTENT_ITEMS_QUERY = """
    SELECT id, title, description, source, source_url, author,
           $1 || id AS page_url
    FROM content_item
    WHERE is_published = TRUE
    ORDER BY created_at DESC
    LIMIT $2
"""

# $1 = URL prefix, $2 = id array
CONTENT_ITEMS_BY_ID_QUERY = """
    SELECT id, title, description, source, source_url, author,
           $1 || id AS page_url
    FROM content_item
    WHERE id = ANY($2::text[])
"""
