"""
Opportunity Store: durable queue of detected opportunities and their actions.

Key Features:
- Idempotent upsert keyed by (opportunity_type, page_url)
- Listing by status in triage order (priority, impact, age)
- Approve/reject transitions cascading to the opportunity's actions
- Action execution bookkeeping (opportunity becomes implemented once every
  action has executed)
- Pure expiry sweep for stale pending opportunities
- Queue statistics for reporting

Upsert Contract:
At most one live (pending, approved or implemented) opportunity exists per
key. A new candidate overwrites the live row only when that row is still
pending and the candidate's confidence is strictly higher; otherwise the live
row is left untouched. Either way the live row's id is returned. Replaying the
same candidates in any order converges on the same state.

Dependencies:
- asyncpg pool (revenue_agent.core.database)
- revenue_agent.sql.opportunity_queries
"""

import json
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Mapping, Optional, Protocol

from asyncpg import Pool

from revenue_agent.models import (
    ActionStatus,
    ActionType,
    LIVE_OPPORTUNITY_STATUSES,
    MonetizationAction,
    Opportunity,
    OpportunityCandidate,
    OpportunityStatus,
    OpportunityType,
    QueueStats,
    utcnow,
)
from revenue_agent.sql.opportunity_queries import (
    COUNT_UNEXECUTED_ACTIONS_QUERY,
    DELETE_PENDING_ACTIONS_QUERY,
    EXPIRE_PENDING_QUERY,
    FIND_LIVE_OPPORTUNITY_QUERY,
    GET_OPPORTUNITY_QUERY,
    INSERT_ACTION_QUERY,
    INSERT_OPPORTUNITY_QUERY,
    LIST_ACTIONS_QUERY,
    LIST_BY_STATUS_QUERY,
    LIVE_KEY_INDEX_DDL,
    MARK_ACTION_EXECUTED_QUERY,
    QUEUE_STATS_QUERY,
    SET_ACTION_STATUS_QUERY,
    SET_OPPORTUNITY_STATUS_QUERY,
    UPDATE_OPPORTUNITY_QUERY,
)


# =============================================================================
# Module Constants
# =============================================================================

DEFAULT_EXPIRY_DAYS: int = 30

DEFAULT_LIST_LIMIT: int = 100

logger = logging.getLogger(__name__)


# =============================================================================
# Interface
# =============================================================================


class OpportunityStore(Protocol):
    async def upsert_opportunity(self, candidate: OpportunityCandidate) -> str:
        ...

    async def list_by_status(
        self, status: OpportunityStatus, limit: int = DEFAULT_LIST_LIMIT
    ) -> List[Opportunity]:
        ...

    async def get(self, opportunity_id: str) -> Optional[Opportunity]:
        ...

    async def approve(self, opportunity_id: str) -> bool:
        ...

    async def reject(self, opportunity_id: str) -> bool:
        ...

    async def mark_action_executed(
        self, action_id: str, success: bool, error: Optional[str] = None
    ) -> None:
        ...

    async def expire_older_than(self, days: int) -> int:
        ...

    async def queue_stats(self) -> QueueStats:
        ...


# =============================================================================
# Upsert Rule
# =============================================================================


def should_replace_live(
    live_status: OpportunityStatus,
    live_confidence: float,
    candidate_confidence: float,
) -> bool:
    """
    Decide whether a candidate overwrites the live opportunity for its key.

    Only pending rows are rewritten; approved and implemented rows belong to the
    approval workflow. Ties keep the existing row.
    """
    return live_status == OpportunityStatus.PENDING and candidate_confidence > live_confidence


def _affected_rows(status: str) -> int:
    """Parse the row count from an asyncpg status string such as 'UPDATE 3'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def _load_parameters(value: Any) -> Dict[str, Any]:
    if isinstance(value, str):
        return json.loads(value)
    return dict(value)


def _row_to_action(row: Mapping) -> MonetizationAction:
    return MonetizationAction(
        id=row['id'],
        opportunity_id=row['opportunity_id'],
        action_type=ActionType(row['action_type']),
        parameters=_load_parameters(row['parameters']),
        status=ActionStatus(row['status']),
        estimated_impact=(
            float(row['estimated_impact']) if row['estimated_impact'] is not None else None
        ),
        execution_attempts=int(row['execution_attempts'] or 0),
        executed_at=row['executed_at'],
        error=row['error'],
    )


def _row_to_opportunity(row: Mapping, actions: List[MonetizationAction]) -> Opportunity:
    return Opportunity(
        id=row['id'],
        opportunity_type=OpportunityType(row['opportunity_type']),
        page_url=row['page_url'],
        content_id=row['content_id'],
        title=row['title'],
        description=row['description'],
        confidence=float(row['confidence']),
        estimated_impact=float(row['estimated_impact']),
        priority=int(row['priority']),
        estimated_rpm_increase=(
            float(row['estimated_rpm_increase'])
            if row['estimated_rpm_increase'] is not None
            else None
        ),
        status=OpportunityStatus(row['status']),
        created_at=row['created_at'],
        expires_at=row['expires_at'],
        actions=actions,
    )


# =============================================================================
# Postgres Implementation
# =============================================================================


class PostgresOpportunityStore:
    """OpportunityStore backed by monetization_opportunity / monetization_action."""

    def __init__(self, pool: Pool, expiry_days: int = DEFAULT_EXPIRY_DAYS):
        self._pool = pool
        self._expiry_days = expiry_days

    async def ensure_live_key_index(self) -> None:
        """Create the one-live-row-per-key unique index the upsert relies on."""
        async with self._pool.acquire() as conn:
            await conn.execute(LIVE_KEY_INDEX_DDL)

    async def upsert_opportunity(
        self,
        candidate: OpportunityCandidate,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Insert a candidate or fold it into the live row for its key.

        A concurrent run may insert the same key between our read and our
        insert. The insert then conflicts on the live-key index and returns
        nothing; the committed row is re-read and compared like any other
        live row.

        Args:
            candidate: Detector output to persist.
            now: Creation timestamp override (tests).

        Returns:
            Id of the live opportunity for (opportunity_type, page_url).
        """
        now = now or utcnow()
        parameters_json = json.dumps(candidate.suggested_action.parameters.model_dump(mode='json'))

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                live = await self._find_live(conn, candidate)

                if live is None:
                    opportunity_id = await conn.fetchval(
                        INSERT_OPPORTUNITY_QUERY,
                        uuid.uuid4().hex,
                        candidate.opportunity_type.value,
                        candidate.page_url,
                        candidate.content_id,
                        candidate.title,
                        candidate.description,
                        candidate.confidence,
                        candidate.estimated_impact,
                        candidate.priority,
                        candidate.estimated_rpm_increase,
                        now,
                        now + timedelta(days=self._expiry_days),
                    )
                    if opportunity_id is not None:
                        await self._insert_action(conn, opportunity_id, candidate, parameters_json, now)
                        return opportunity_id

                    logger.debug(
                        f"Concurrent insert for {candidate.opportunity_type.value} "
                        f"{candidate.page_url}, re-reading live row"
                    )
                    live = await self._find_live(conn, candidate)
                    if live is None:
                        raise RuntimeError(
                            f"Live opportunity for {candidate.opportunity_type.value} "
                            f"{candidate.page_url} disappeared during upsert"
                        )

                opportunity_id = live['id']
                if should_replace_live(
                    OpportunityStatus(live['status']),
                    float(live['confidence']),
                    candidate.confidence,
                ):
                    await conn.execute(
                        UPDATE_OPPORTUNITY_QUERY,
                        opportunity_id,
                        candidate.title,
                        candidate.description,
                        candidate.confidence,
                        candidate.estimated_impact,
                        candidate.priority,
                        candidate.estimated_rpm_increase,
                        candidate.content_id,
                    )
                    await conn.execute(DELETE_PENDING_ACTIONS_QUERY, opportunity_id)
                    await self._insert_action(conn, opportunity_id, candidate, parameters_json, now)
                    logger.debug(
                        f"Raised confidence of {opportunity_id} to {candidate.confidence:.2f}"
                    )
                return opportunity_id

    async def _find_live(self, conn, candidate: OpportunityCandidate) -> Optional[Mapping]:
        return await conn.fetchrow(
            FIND_LIVE_OPPORTUNITY_QUERY,
            candidate.opportunity_type.value,
            candidate.page_url,
            [s.value for s in LIVE_OPPORTUNITY_STATUSES],
        )

    async def _insert_action(
        self,
        conn,
        opportunity_id: str,
        candidate: OpportunityCandidate,
        parameters_json: str,
        now: datetime,
    ) -> None:
        await conn.execute(
            INSERT_ACTION_QUERY,
            uuid.uuid4().hex,
            opportunity_id,
            candidate.suggested_action.action_type.value,
            parameters_json,
            candidate.estimated_impact,
            now,
        )

    async def _with_actions(self, conn, rows: List[Mapping]) -> List[Opportunity]:
        if not rows:
            return []
        action_rows = await conn.fetch(LIST_ACTIONS_QUERY, [row['id'] for row in rows])
        actions_by_opportunity: Dict[str, List[MonetizationAction]] = {}
        for action_row in action_rows:
            action = _row_to_action(action_row)
            actions_by_opportunity.setdefault(action.opportunity_id, []).append(action)
        return [
            _row_to_opportunity(row, actions_by_opportunity.get(row['id'], []))
            for row in rows
        ]

    async def list_by_status(
        self,
        status: OpportunityStatus,
        limit: int = DEFAULT_LIST_LIMIT,
    ) -> List[Opportunity]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(LIST_BY_STATUS_QUERY, status.value, limit)
            return await self._with_actions(conn, rows)

    async def get(self, opportunity_id: str) -> Optional[Opportunity]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(GET_OPPORTUNITY_QUERY, opportunity_id)
            if row is None:
                return None
            opportunities = await self._with_actions(conn, [row])
        return opportunities[0]

    async def _transition(
        self,
        opportunity_id: str,
        target: OpportunityStatus,
        action_target: ActionStatus,
    ) -> bool:
        async with self._pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    SET_OPPORTUNITY_STATUS_QUERY,
                    opportunity_id,
                    target.value,
                    OpportunityStatus.PENDING.value,
                )
                if _affected_rows(status) == 0:
                    return False
                await conn.execute(
                    SET_ACTION_STATUS_QUERY,
                    opportunity_id,
                    action_target.value,
                    ActionStatus.PENDING.value,
                )
        logger.info(f"Opportunity {opportunity_id} moved to {target.value}")
        return True

    async def approve(self, opportunity_id: str) -> bool:
        return await self._transition(
            opportunity_id, OpportunityStatus.APPROVED, ActionStatus.APPROVED
        )

    async def reject(self, opportunity_id: str) -> bool:
        return await self._transition(
            opportunity_id, OpportunityStatus.REJECTED, ActionStatus.REJECTED
        )

    async def mark_action_executed(
        self,
        action_id: str,
        success: bool,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        status = ActionStatus.EXECUTED if success else ActionStatus.FAILED

        async with self._pool.acquire() as conn:
            async with conn.transaction():
                opportunity_id = await conn.fetchval(
                    MARK_ACTION_EXECUTED_QUERY,
                    action_id,
                    status.value,
                    now if success else None,
                    error,
                )
                if not success or opportunity_id is None:
                    return
                remaining = await conn.fetchval(COUNT_UNEXECUTED_ACTIONS_QUERY, opportunity_id)
                if not remaining:
                    await conn.execute(
                        SET_OPPORTUNITY_STATUS_QUERY,
                        opportunity_id,
                        OpportunityStatus.IMPLEMENTED.value,
                        OpportunityStatus.APPROVED.value,
                    )

    async def expire_older_than(
        self,
        days: int = DEFAULT_EXPIRY_DAYS,
        now: Optional[datetime] = None,
    ) -> int:
        """
        Expire pending opportunities older than `days` or past their expires_at.

        Returns:
            Number of opportunities expired.
        """
        now = now or utcnow()
        cutoff = now - timedelta(days=days)

        async with self._pool.acquire() as conn:
            status = await conn.execute(EXPIRE_PENDING_QUERY, cutoff, now)

        expired = _affected_rows(status)
        logger.info(f"Expired {expired} pending opportunities older than {days} days")
        return expired

    async def queue_stats(self) -> QueueStats:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(QUEUE_STATS_QUERY)

        stats = QueueStats()
        for row in rows:
            try:
                status = OpportunityStatus(row['status'])
            except ValueError:
                continue
            setattr(stats, status.value, int(row['opportunity_count']))
            if status == OpportunityStatus.PENDING:
                stats.total_estimated_impact = float(row['impact'] or 0)
        return stats
