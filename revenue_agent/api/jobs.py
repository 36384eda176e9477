"""
FastAPI router for the Revenue Agent job trigger and reporting surface.

Endpoints:
- POST /jobs/{job_type}: run one job and return its JobResult
- GET /jobs/report: queue stats, last run per job type, recent runs
- GET /learning/dashboard: learning statistics and insights
- GET /opportunities?status=pending: opportunity queue by status
- POST /opportunities/{id}/approve and /reject: approval transitions
"""

import logging
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Query

from revenue_agent.core.dependencies import LearningDep, OrchestratorDep
from revenue_agent.models import (
    AgentReport,
    JobResult,
    JobType,
    LearningDashboard,
    Opportunity,
    OpportunityStatus,
)


logger = logging.getLogger(__name__)

router = APIRouter()


# =============================================================================
# Jobs
# =============================================================================

@router.get("/jobs/report", response_model=AgentReport, tags=["jobs"])
async def get_report(
    orchestrator: OrchestratorDep,
    hours: Optional[int] = Query(default=None, ge=1, le=24 * 30),
) -> AgentReport:
    """Observability snapshot over the last `hours` (defaults to REPORT_HOURS)."""
    try:
        return await orchestrator.generate_report(hours)
    except Exception as e:
        logger.exception("Error generating agent report")
        raise HTTPException(status_code=500, detail=f"Failed to generate report: {e}")


@router.post("/jobs/{job_type}", response_model=JobResult, tags=["jobs"])
async def trigger_job(job_type: str, orchestrator: OrchestratorDep) -> JobResult:
    """
    Run a job synchronously and return its result.

    Job failures are reported in the body (success=false), not as HTTP errors.

    Raises:
        HTTPException(404) for an unknown job type
    """
    if job_type not in {j.value for j in JobType}:
        raise HTTPException(status_code=404, detail=f"Unknown job type: {job_type}")

    return await orchestrator.run_job(job_type)


# =============================================================================
# Learning
# =============================================================================

@router.get("/learning/dashboard", response_model=LearningDashboard, tags=["learning"])
async def get_learning_dashboard(learning: LearningDep) -> LearningDashboard:
    try:
        return await learning.get_dashboard()
    except Exception as e:
        logger.exception("Error building learning dashboard")
        raise HTTPException(status_code=500, detail=f"Failed to build learning dashboard: {e}")


# =============================================================================
# Opportunities
# =============================================================================

@router.get("/opportunities", response_model=List[Opportunity], tags=["opportunities"])
async def list_opportunities(
    orchestrator: OrchestratorDep,
    status: OpportunityStatus = Query(default=OpportunityStatus.PENDING),
    limit: int = Query(default=100, ge=1, le=500),
) -> List[Opportunity]:
    try:
        return await orchestrator.store.list_by_status(status, limit)
    except Exception as e:
        logger.exception(f"Error listing {status.value} opportunities")
        raise HTTPException(status_code=500, detail=f"Failed to list opportunities: {e}")


async def _transition(orchestrator, opportunity_id: str, approve: bool) -> Opportunity:
    store = orchestrator.store
    try:
        changed = await (store.approve(opportunity_id) if approve else store.reject(opportunity_id))
        opportunity = await store.get(opportunity_id)
    except Exception as e:
        logger.exception(f"Error updating opportunity {opportunity_id}")
        raise HTTPException(status_code=500, detail=f"Failed to update opportunity: {e}")

    if opportunity is None:
        raise HTTPException(status_code=404, detail=f"Opportunity {opportunity_id} not found")
    if not changed:
        raise HTTPException(
            status_code=409,
            detail=f"Opportunity {opportunity_id} is {opportunity.status.value}, not pending",
        )
    return opportunity


@router.post("/opportunities/{opportunity_id}/approve", response_model=Opportunity, tags=["opportunities"])
async def approve_opportunity(opportunity_id: str, orchestrator: OrchestratorDep) -> Opportunity:
    return await _transition(orchestrator, opportunity_id, approve=True)


@router.post("/opportunities/{opportunity_id}/reject", response_model=Opportunity, tags=["opportunities"])
async def reject_opportunity(opportunity_id: str, orchestrator: OrchestratorDep) -> Opportunity:
    return await _transition(orchestrator, opportunity_id, approve=False)
