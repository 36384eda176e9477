"""
Core infrastructure package for the Revenue Agent.

Provides:
- Configuration management via pydantic-settings
- Async PostgreSQL connection pool via asyncpg

FastAPI dependencies live in revenue_agent.core.dependencies and are imported
from there directly, since they reference the job and service layers.

Usage:
    from revenue_agent.core import get_settings, init_db, close_db
"""

from revenue_agent.core.config import Settings, get_settings
from revenue_agent.core.database import close_db, init_db

__all__ = [
    "Settings",
    "get_settings",
    "init_db",
    "close_db",
]
