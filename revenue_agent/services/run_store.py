"""
Agent Run audit trail.

RunRecorder wraps a job in an Agent Run record: the record is persisted as
running when the job starts and finalized exactly once when it ends. The
status transitions themselves are enforced by AgentRun; this module only
persists them.

Usage:
    async with recorder.track(JobType.CLEANUP) as tracker:
        expired = await store.expire_older_than(30)
        tracker.items_processed = expired
"""

import json
import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional, Protocol

from asyncpg import Pool

from revenue_agent.models import AgentRun, JobType, RunStatus
from revenue_agent.sql.run_queries import (
    FINALIZE_AGENT_RUN_QUERY,
    INSERT_AGENT_RUN_QUERY,
    LAST_COMPLETED_RUN_TIMES_QUERY,
    RECENT_RUNS_QUERY,
)


logger = logging.getLogger(__name__)


# =============================================================================
# Interface
# =============================================================================


class RunStore(Protocol):
    async def insert_run(self, run: AgentRun) -> None:
        ...

    async def finalize_run(self, run: AgentRun) -> None:
        ...

    async def last_completed_run_times(self) -> Dict[JobType, datetime]:
        ...

    async def recent_runs(self, since: datetime, limit: int) -> List[AgentRun]:
        ...


# =============================================================================
# Recorder
# =============================================================================


@dataclass
class RunTracker:
    """Mutable counters filled in by the job while its run is open."""

    run: AgentRun
    items_processed: int = 0
    opportunities_found: int = 0
    errors: List[str] = field(default_factory=list)
    error_details: Optional[Dict[str, Any]] = None


class RunRecorder:
    """Creates and finalizes Agent Run records around a unit of work."""

    def __init__(self, store: RunStore):
        self._store = store

    async def start(self, run_type: JobType) -> AgentRun:
        run = AgentRun(id=uuid.uuid4().hex, run_type=run_type)
        run.mark_running()
        await self._store.insert_run(run)
        return run

    async def finish(self, tracker: RunTracker, failure: Optional[str] = None) -> AgentRun:
        run = tracker.run
        errors = list(tracker.errors)
        if failure:
            errors.append(failure)

        details = tracker.error_details
        if errors:
            details = {**(details or {}), 'errors': errors}

        run.finalize(
            RunStatus.FAILED if errors else RunStatus.COMPLETED,
            items_processed=tracker.items_processed,
            opportunities_found=tracker.opportunities_found,
            errors_encountered=len(errors),
            error_details=details,
        )
        await self._store.finalize_run(run)
        return run

    @asynccontextmanager
    async def track(self, run_type: JobType) -> AsyncIterator[RunTracker]:
        """
        Record the enclosed block as one Agent Run.

        An exception escaping the block finalizes the run as failed and is
        re-raised to the caller.
        """
        run = await self.start(run_type)
        tracker = RunTracker(run=run)
        try:
            yield tracker
        except Exception as e:
            await self.finish(tracker, failure=str(e) or type(e).__name__)
            raise
        await self.finish(tracker)


# =============================================================================
# Postgres Implementation
# =============================================================================


def _row_to_run(row: Mapping) -> AgentRun:
    details = row['error_details']
    if isinstance(details, str):
        details = json.loads(details)
    return AgentRun(
        id=row['id'],
        run_type=JobType(row['run_type']),
        status=RunStatus(row['status']),
        started_at=row['started_at'],
        completed_at=row['completed_at'],
        duration_ms=row['duration_ms'],
        items_processed=int(row['items_processed'] or 0),
        opportunities_found=int(row['opportunities_found'] or 0),
        errors_encountered=int(row['errors_encountered'] or 0),
        error_details=details,
    )


class PostgresRunStore:
    """RunStore backed by the agent_run table."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def insert_run(self, run: AgentRun) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                INSERT_AGENT_RUN_QUERY,
                run.id,
                run.run_type.value,
                run.status.value,
                run.started_at,
            )

    async def finalize_run(self, run: AgentRun) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                FINALIZE_AGENT_RUN_QUERY,
                run.id,
                run.status.value,
                run.completed_at,
                run.duration_ms,
                run.items_processed,
                run.opportunities_found,
                run.errors_encountered,
                json.dumps(run.error_details) if run.error_details is not None else None,
            )
        logger.info(
            f"Agent run {run.id} ({run.run_type.value}) {run.status.value} "
            f"in {run.duration_ms}ms: {run.items_processed} items, "
            f"{run.opportunities_found} opportunities"
        )

    async def last_completed_run_times(self) -> Dict[JobType, datetime]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(LAST_COMPLETED_RUN_TIMES_QUERY)

        times: Dict[JobType, datetime] = {}
        for row in rows:
            try:
                times[JobType(row['run_type'])] = row['last_completed_at']
            except ValueError:
                logger.warning(f"Ignoring agent_run rows with unknown run_type {row['run_type']}")
        return times

    async def recent_runs(self, since: datetime, limit: int) -> List[AgentRun]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(RECENT_RUNS_QUERY, since, limit)
        return [_row_to_run(row) for row in rows]
