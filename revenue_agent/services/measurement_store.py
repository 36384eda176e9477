"""
Impact measurement and learning snapshot persistence.

The Learning Engine only needs the read side (completed measurements); the
impact tracker also creates pending measurements and completes them once
their observation window has closed. Learning snapshots are written at most
once per rolling period.

Dependencies:
- asyncpg pool (revenue_agent.core.database)
- revenue_agent.sql.learning_queries
"""

import uuid
from datetime import datetime
from typing import List, Mapping, Optional, Protocol

from asyncpg import Pool

from revenue_agent.models import (
    ActionType,
    ImpactMeasurement,
    LearningMetric,
    MeasurementStatus,
    Trend,
)
from revenue_agent.sql.learning_queries import (
    COMPLETE_MEASUREMENT_QUERY,
    DUE_MEASUREMENTS_QUERY,
    INSERT_LEARNING_METRIC_QUERY,
    INSERT_MEASUREMENT_QUERY,
    LATEST_LEARNING_METRIC_QUERY,
    get_completed_measurements_query,
)


# =============================================================================
# Interfaces
# =============================================================================


class MeasurementSource(Protocol):
    """Read interface consumed by the Learning Engine."""

    async def query_completed_measurements(
        self, action_type: Optional[ActionType] = None
    ) -> List[ImpactMeasurement]:
        ...


class MeasurementStore(MeasurementSource, Protocol):
    async def create_measurement(self, measurement: ImpactMeasurement) -> str:
        ...

    async def list_due_measurements(self, now: datetime) -> List[ImpactMeasurement]:
        ...

    async def complete_measurement(self, measurement: ImpactMeasurement) -> None:
        ...


class LearningMetricStore(Protocol):
    async def latest_snapshot(self, action_type: ActionType) -> Optional[LearningMetric]:
        ...

    async def save_snapshot(self, metric: LearningMetric) -> None:
        ...


# =============================================================================
# Row Mapping
# =============================================================================


def _optional_float(value) -> Optional[float]:
    return float(value) if value is not None else None


def _row_to_measurement(row: Mapping) -> ImpactMeasurement:
    return ImpactMeasurement(
        id=row['id'],
        action_id=row['action_id'],
        action_type=ActionType(row['action_type']),
        page_url=row['page_url'],
        status=MeasurementStatus(row['status']),
        estimated_impact=float(row['estimated_impact'] or 0),
        measured_impact=_optional_float(row['measured_impact']),
        baseline_value=_optional_float(row['baseline_value']),
        measured_value=_optional_float(row['measured_value']),
        prediction_accuracy=_optional_float(row['prediction_accuracy']),
        prediction_error=_optional_float(row['prediction_error']),
        baseline_start=row['baseline_start'],
        start_date=row['start_date'],
        end_date=row['end_date'],
        completed_at=row['completed_at'],
    )


# =============================================================================
# Postgres Implementations
# =============================================================================


class PostgresMeasurementStore:
    """MeasurementStore backed by the impact_measurement table."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def query_completed_measurements(
        self,
        action_type: Optional[ActionType] = None,
    ) -> List[ImpactMeasurement]:
        query = get_completed_measurements_query(filter_action_type=action_type is not None)
        args = [action_type.value] if action_type is not None else []

        async with self._pool.acquire() as conn:
            rows = await conn.fetch(query, *args)
        return [_row_to_measurement(row) for row in rows]

    async def create_measurement(self, measurement: ImpactMeasurement) -> str:
        measurement_id = measurement.id or uuid.uuid4().hex
        async with self._pool.acquire() as conn:
            await conn.execute(
                INSERT_MEASUREMENT_QUERY,
                measurement_id,
                measurement.action_id,
                measurement.action_type.value,
                measurement.page_url,
                measurement.estimated_impact,
                measurement.baseline_value,
                measurement.baseline_start,
                measurement.start_date,
                measurement.end_date,
            )
        return measurement_id

    async def list_due_measurements(self, now: datetime) -> List[ImpactMeasurement]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(DUE_MEASUREMENTS_QUERY, now)
        return [_row_to_measurement(row) for row in rows]

    async def complete_measurement(self, measurement: ImpactMeasurement) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                COMPLETE_MEASUREMENT_QUERY,
                measurement.id,
                measurement.measured_value,
                measurement.measured_impact,
                measurement.prediction_accuracy,
                measurement.prediction_error,
                measurement.completed_at,
            )


class PostgresLearningMetricStore:
    """LearningMetricStore backed by the agent_learning_metric table."""

    def __init__(self, pool: Pool):
        self._pool = pool

    async def latest_snapshot(self, action_type: ActionType) -> Optional[LearningMetric]:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(LATEST_LEARNING_METRIC_QUERY, action_type.value)

        if row is None:
            return None

        return LearningMetric(
            action_type=ActionType(row['action_type']),
            sample_size=int(row['sample_size']),
            mean_accuracy=_optional_float(row['mean_accuracy']),
            adjustment_factor=float(row['adjustment_factor']),
            confidence=float(row['confidence']),
            trend=Trend(row['trend']),
            period_start=row['period_start'],
            period_end=row['period_end'],
        )

    async def save_snapshot(self, metric: LearningMetric) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute(
                INSERT_LEARNING_METRIC_QUERY,
                uuid.uuid4().hex,
                metric.action_type.value,
                metric.sample_size,
                metric.mean_accuracy,
                metric.adjustment_factor,
                metric.confidence,
                metric.trend.value,
                metric.period_start,
                metric.period_end,
            )
