"""
FastAPI dependency injection for the Revenue Agent API.

The orchestrator and learning engine are built once in the application
lifespan and stored on app.state; these dependencies hand them to endpoint
handlers. Tests override them through app.dependency_overrides.

Usage:
    @router.post("/jobs/{job_type}")
    async def trigger_job(job_type: str, orchestrator: OrchestratorDep) -> JobResult:
        return await orchestrator.run_job(job_type)
"""

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from revenue_agent.jobs.orchestrator import AgentOrchestrator
from revenue_agent.services.learning_engine import LearningEngine


# =============================================================================
# Service Dependencies
# =============================================================================

def get_orchestrator(request: Request) -> AgentOrchestrator:
    """
    Return the orchestrator wired at startup.

    Raises:
        HTTPException: 503 when the application started without a database.
    """
    orchestrator = getattr(request.app.state, 'orchestrator', None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Agent not initialized")
    return orchestrator


def get_learning_engine(orchestrator: Annotated[AgentOrchestrator, Depends(get_orchestrator)]) -> LearningEngine:
    if orchestrator.learning is None:
        raise HTTPException(status_code=503, detail="Learning engine not configured")
    return orchestrator.learning


# =============================================================================
# Type Aliases for Dependency Injection
# =============================================================================

OrchestratorDep = Annotated[AgentOrchestrator, Depends(get_orchestrator)]

LearningDep = Annotated[LearningEngine, Depends(get_learning_engine)]
