"""
SQL Query Module for the Revenue Agent.

Parameterized PostgreSQL statements used by the Postgres-backed collaborators.
Keeps SQL text out of the service modules.

Submodules:
    metric_queries: Windowed page/site aggregates over page_metric_day and
                    content_item catalog lookups.
    opportunity_queries: Opportunity queue upsert, listing, state transitions
                         and the expiry sweep.
    learning_queries: impact_measurement and agent_learning_metric access.
    run_queries: agent_run audit trail.
"""

from revenue_agent.sql.metric_queries import (
    CONTENT_ITEMS_BY_ID_QUERY,
    RECENT_CONTENT_ITEMS_QUERY,
    SITE_AGGREGATE_QUERY,
    TRAFFIC_SOURCE_COLUMNS,
    get_page_aggregate_query,
)
from revenue_agent.sql.learning_queries import get_completed_measurements_query

__all__ = [
    "CONTENT_ITEMS_BY_ID_QUERY",
    "RECENT_CONTENT_ITEMS_QUERY",
    "SITE_AGGREGATE_QUERY",
    "TRAFFIC_SOURCE_COLUMNS",
    "get_page_aggregate_query",
    "get_completed_measurements_query",
]
