"""
FastAPI application entry point for the Revenue Agent.

Opens the asyncpg pool at startup, wires the orchestrator and its
collaborators onto app.state, and registers the job/report routes.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI

from revenue_agent import __version__
from revenue_agent.api.jobs import router as jobs_router
from revenue_agent.core.config import get_settings
from revenue_agent.core.database import close_db, init_db
from revenue_agent.jobs.orchestrator import build_orchestrator
from revenue_agent.services.opportunity_store import PostgresOpportunityStore

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Startup: open the pool and build the orchestrator.
    Shutdown: close the pool.

    The live-key index on the opportunity table is created if missing. A failed
    database connection leaves app.state.orchestrator unset; agent
    endpoints then answer 503 while /health stays up.
    """
    logger.info("Revenue Agent starting")
    app.state.orchestrator = None
    try:
        pool = await init_db()
        await PostgresOpportunityStore(pool).ensure_live_key_index()
        app.state.orchestrator = build_orchestrator(pool, get_settings())
        logger.info("Database pool initialized and orchestrator wired")
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")

    yield

    logger.info("Revenue Agent shutting down")
    try:
        await close_db()
    except Exception as e:
        logger.error(f"Error closing database pool: {e}")


app = FastAPI(
    title="Revenue Agent API",
    version=__version__,
    description=(
        "Detects monetization opportunities, calibrates revenue estimates "
        "against measured outcomes and runs the agent batch jobs."
    ),
    lifespan=lifespan,
)

app.include_router(jobs_router)


@app.get("/health")
async def health_check():
    return {"status": "healthy"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "revenue_agent.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
