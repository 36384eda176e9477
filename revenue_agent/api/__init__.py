"""
HTTP routers for the Revenue Agent.
"""

from revenue_agent.api.jobs import router as jobs_router

__all__ = ["jobs_router"]
