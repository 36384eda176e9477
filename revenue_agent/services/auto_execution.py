"""
Auto-execution of approved actions.

Approved opportunities whose confidence and estimated impact clear the gate
have their approved actions handed to an ActionHandler. The handler performs
the actual change (ad placement, link insertion, ...) and is supplied by the
host application. Each outcome is recorded on the Opportunity Store, and a
successful execution opens an Impact Measurement.

Safety Rails:
- Opportunity confidence >= 0.7 and estimated impact >= $0.10/month
- Failed actions are retried; actions with 3 or more attempts are skipped
- At most 10 actions per pass
- Circuit breaker: stop the pass after 3 consecutive failures
"""

import logging
from typing import Optional, Protocol

from revenue_agent.models import (
    ActionStatus,
    ExecutionSummary,
    MonetizationAction,
    Opportunity,
    OpportunityStatus,
)
from revenue_agent.services.impact_tracking import ImpactTracker
from revenue_agent.services.opportunity_store import OpportunityStore


MIN_CONFIDENCE: float = 0.7
MIN_IMPACT: float = 0.1
MAX_ATTEMPTS: int = 3
MAX_PER_RUN: int = 10
MAX_CONSECUTIVE_FAILURES: int = 3

# Failed actions are retried until they reach MAX_ATTEMPTS
RUNNABLE_ACTION_STATUSES = (ActionStatus.APPROVED, ActionStatus.FAILED)

logger = logging.getLogger(__name__)


class ActionHandler(Protocol):
    """Applies one action. Returns False (or raises) when the change did not land."""

    async def execute(self, action: MonetizationAction, opportunity: Opportunity) -> bool:
        ...


class AutoExecutor:
    def __init__(
        self,
        store: OpportunityStore,
        handler: ActionHandler,
        tracker: Optional[ImpactTracker] = None,
        min_confidence: float = MIN_CONFIDENCE,
        min_impact: float = MIN_IMPACT,
        max_attempts: int = MAX_ATTEMPTS,
        max_per_run: int = MAX_PER_RUN,
        max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES,
    ):
        self._store = store
        self._handler = handler
        self._tracker = tracker
        self._min_confidence = min_confidence
        self._min_impact = min_impact
        self._max_attempts = max_attempts
        self._max_per_run = max_per_run
        self._max_consecutive_failures = max_consecutive_failures

    def is_eligible(self, action: MonetizationAction, opportunity: Opportunity) -> bool:
        return (
            action.status in RUNNABLE_ACTION_STATUSES
            and opportunity.confidence >= self._min_confidence
            and opportunity.estimated_impact >= self._min_impact
            and action.execution_attempts < self._max_attempts
        )

    async def execute_approved_actions(self) -> ExecutionSummary:
        """
        Execute eligible approved actions, highest-priority opportunities first.

        Returns:
            ExecutionSummary with executed, failed and skipped counts. Actions
            not reached because of the per-run cap or the circuit breaker are
            not counted.
        """
        summary = ExecutionSummary()
        opportunities = await self._store.list_by_status(OpportunityStatus.APPROVED)

        consecutive_failures = 0
        attempted = 0

        for opportunity in opportunities:
            for action in opportunity.actions:
                if action.status not in RUNNABLE_ACTION_STATUSES:
                    continue
                if not self.is_eligible(action, opportunity):
                    summary.skipped += 1
                    continue
                if attempted >= self._max_per_run:
                    logger.info(f"Auto-execution cap of {self._max_per_run} actions reached")
                    return summary
                if consecutive_failures >= self._max_consecutive_failures:
                    logger.warning(
                        f"Auto-execution stopped after {consecutive_failures} consecutive failures"
                    )
                    return summary

                attempted += 1
                if await self._execute_one(action, opportunity):
                    summary.executed += 1
                    consecutive_failures = 0
                else:
                    summary.failed += 1
                    consecutive_failures += 1

        logger.info(
            f"Auto-execution: {summary.executed} executed, {summary.failed} failed, "
            f"{summary.skipped} skipped"
        )
        return summary

    async def _execute_one(self, action: MonetizationAction, opportunity: Opportunity) -> bool:
        try:
            success = bool(await self._handler.execute(action, opportunity))
            error = None if success else 'Handler reported failure'
        except Exception as e:
            logger.error(f"Action {action.id} ({action.action_type.value}) failed: {e}")
            success, error = False, str(e)

        await self._store.mark_action_executed(action.id, success, error)

        if success and self._tracker is not None:
            try:
                await self._tracker.start_tracking(action, opportunity)
            except Exception as e:
                logger.error(f"Could not start impact tracking for action {action.id}: {e}")

        return success
