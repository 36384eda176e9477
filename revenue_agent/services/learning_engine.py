"""
Learning Engine: self-calibration of revenue estimates from measured outcomes.

This module turns completed Impact Measurements (estimated vs. observed
monthly revenue delta per executed action) into per-action-type statistics
that the detectors use to scale future estimates, plus insights for the
reporting surface.

Key Features:
- Adjustment factor: mean of measured / estimated over completed measurements
  with a positive estimate
- Confidence as a step function of sample size
- Adjustments applied only with >= 5 samples and confidence >= 0.6
- Trend: recent vs. older half of a 30-day window (>= 3 points per half)
- Per-action-type accuracy table, insights and a dashboard summary
- Learning snapshots persisted at most once per rolling period; concurrent
  refreshes for one action type are serialized within the process

Data Insufficiency:
Missing or sparse data is never an error. It degrades to factor 1.0, zero
(or low) confidence and a stable trend. Lookup failures during an estimate are
logged and the raw estimate passes through.

Dependencies:
- numpy for means
- pandas for the per-action-type accuracy table
- revenue_agent.services.measurement_store: MeasurementSource, LearningMetricStore
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd

from revenue_agent.models import (
    ActionType,
    ActionTypeAccuracy,
    ActionTypeLearningStats,
    AdjustedEstimate,
    EstimateAdjustment,
    ImpactMeasurement,
    InsightSeverity,
    InsightType,
    LearningDashboard,
    LearningInsight,
    LearningMetric,
    Trend,
    utcnow,
)
from revenue_agent.services.impact_tracking import calculate_prediction_accuracy
from revenue_agent.services.measurement_store import LearningMetricStore, MeasurementSource


# =============================================================================
# Module Constants
# =============================================================================

# Fewer completed measurements than this and the factor stays at 1.0
MIN_MEASUREMENTS_FOR_ADJUSTMENT: int = 5

# Confidence needed before an adjustment is applied to an estimate
MIN_CONFIDENCE_TO_APPLY: float = 0.6

TREND_WINDOW_DAYS: int = 30

# Each half of the trend window needs this many points to call a direction
TREND_MIN_POINTS_PER_HALF: int = 3

# Change in mean accuracy between halves that counts as a trend
TREND_THRESHOLD: float = 0.05

HIGH_ACCURACY_THRESHOLD: float = 0.85
LOW_ACCURACY_THRESHOLD: float = 0.5

# Overall accuracy severities
OVERALL_SUCCESS_THRESHOLD: float = 0.8
OVERALL_INFO_THRESHOLD: float = 0.6

# |factor - 1| above this with enough confidence triggers a calibration note
CALIBRATION_DRIFT_THRESHOLD: float = 0.2
CALIBRATION_MIN_CONFIDENCE: float = 0.7

SNAPSHOT_PERIOD_DAYS: int = 30

logger = logging.getLogger(__name__)


# =============================================================================
# Pure Calculations
# =============================================================================


def calculate_confidence(sample_size: int) -> float:
    """
    Confidence in a learned factor, from sample size alone.

    0 -> 0.0, 1-2 -> 0.3, 3-4 -> 0.5, 5-9 -> 0.7, 10-19 -> 0.85, 20+ -> 0.95
    """
    if sample_size <= 0:
        return 0.0
    if sample_size < 3:
        return 0.3
    if sample_size < 5:
        return 0.5
    if sample_size < 10:
        return 0.7
    if sample_size < 20:
        return 0.85
    return 0.95


def _accuracy_of(measurement: ImpactMeasurement) -> Optional[float]:
    if measurement.prediction_accuracy is not None:
        return measurement.prediction_accuracy
    if measurement.measured_impact is None:
        return None
    return calculate_prediction_accuracy(measurement.estimated_impact, measurement.measured_impact)


def calculate_adjustment_factor(
    measurements: Sequence[ImpactMeasurement],
    min_sample_size: int = MIN_MEASUREMENTS_FOR_ADJUSTMENT,
) -> Tuple[float, int]:
    """
    Mean measured/estimated ratio over measurements with a positive estimate.

    Returns:
        (factor, sample_size). The factor is 1.0 when the sample is smaller
        than `min_sample_size`.
    """
    ratios = [
        m.measured_impact / m.estimated_impact
        for m in measurements
        if m.estimated_impact > 0 and m.measured_impact is not None
    ]
    if len(ratios) < min_sample_size:
        return 1.0, len(ratios)
    return float(np.mean(ratios)), len(ratios)


def classify_trend(
    measurements: Sequence[ImpactMeasurement],
    now: datetime,
    window_days: int = TREND_WINDOW_DAYS,
) -> Trend:
    """
    Compare mean accuracy of the recent half of the window to the older half.

    Both halves need TREND_MIN_POINTS_PER_HALF points; otherwise the trend is
    stable.
    """
    window_start = now - timedelta(days=window_days)
    midpoint = now - timedelta(days=window_days / 2)

    recent: List[float] = []
    historical: List[float] = []
    for measurement in measurements:
        completed_at = measurement.completed_at
        accuracy = _accuracy_of(measurement)
        if completed_at is None or accuracy is None:
            continue
        if midpoint <= completed_at <= now:
            recent.append(accuracy)
        elif window_start <= completed_at < midpoint:
            historical.append(accuracy)

    if len(recent) < TREND_MIN_POINTS_PER_HALF or len(historical) < TREND_MIN_POINTS_PER_HALF:
        return Trend.STABLE

    difference = float(np.mean(recent)) - float(np.mean(historical))
    if difference > TREND_THRESHOLD:
        return Trend.IMPROVING
    if difference < -TREND_THRESHOLD:
        return Trend.DECLINING
    return Trend.STABLE


def build_accuracy_table(measurements: Sequence[ImpactMeasurement]) -> pd.DataFrame:
    """
    Per-action-type accuracy table.

    Columns: measurement_count, mean_accuracy, mean_error, total_estimated,
    total_actual. Indexed by action type value.
    """
    columns = ['measurement_count', 'mean_accuracy', 'mean_error', 'total_estimated', 'total_actual']
    if not measurements:
        return pd.DataFrame(columns=columns)

    frame = pd.DataFrame([
        {
            'action_type': m.action_type.value,
            'accuracy': _accuracy_of(m),
            'error': abs(m.prediction_error) if m.prediction_error is not None else np.nan,
            'estimated': m.estimated_impact,
            'actual': m.measured_impact if m.measured_impact is not None else 0.0,
        }
        for m in measurements
    ])
    frame['accuracy'] = pd.to_numeric(frame['accuracy'], errors='coerce')

    table = frame.groupby('action_type').agg(
        measurement_count=('estimated', 'size'),
        mean_accuracy=('accuracy', 'mean'),
        mean_error=('error', 'mean'),
        total_estimated=('estimated', 'sum'),
        total_actual=('actual', 'sum'),
    )
    return table.fillna(0.0)[columns]


# =============================================================================
# Engine
# =============================================================================


class LearningEngine:
    """
    Per-action-type calibration backed by a MeasurementSource.

    Every lookup recomputes from the measurements. The only state held is one
    lock per action type around the snapshot check-then-write.
    """

    def __init__(
        self,
        measurements: MeasurementSource,
        snapshots: Optional[LearningMetricStore] = None,
        min_sample_size: int = MIN_MEASUREMENTS_FOR_ADJUSTMENT,
        min_confidence: float = MIN_CONFIDENCE_TO_APPLY,
        trend_window_days: int = TREND_WINDOW_DAYS,
        snapshot_period_days: int = SNAPSHOT_PERIOD_DAYS,
    ):
        self._measurements = measurements
        self._snapshots = snapshots
        self._min_sample_size = min_sample_size
        self._min_confidence = min_confidence
        self._trend_window_days = trend_window_days
        self._snapshot_period_days = snapshot_period_days
        self._snapshot_locks: Dict[ActionType, asyncio.Lock] = {}

    # -------------------------------------------------------------------------
    # Estimate adjustment
    # -------------------------------------------------------------------------

    async def get_estimate_adjustment(
        self,
        action_type: ActionType,
        now: Optional[datetime] = None,
    ) -> EstimateAdjustment:
        """
        Learned adjustment factor and confidence for an action type.

        Refreshes the persisted snapshot when the sample is large enough and
        the latest snapshot is older than the rolling period.
        """
        measurements = await self._measurements.query_completed_measurements(action_type)
        factor, sample_size = calculate_adjustment_factor(measurements, self._min_sample_size)
        adjustment = EstimateAdjustment(
            action_type=action_type,
            adjustment_factor=factor,
            confidence=calculate_confidence(sample_size),
            sample_size=sample_size,
        )

        if sample_size >= self._min_sample_size:
            await self._refresh_snapshot(adjustment, measurements, now or utcnow())

        return adjustment

    async def adjust_estimate(
        self,
        action_type: ActionType,
        base_estimate: float,
    ) -> AdjustedEstimate:
        """
        Scale a detector's base estimate by the learned factor.

        The factor is applied only with at least `min_sample_size` samples and
        confidence of at least `min_confidence`; otherwise the base estimate is
        returned unchanged with learning_applied=False.
        """
        try:
            adjustment = await self.get_estimate_adjustment(action_type)
        except Exception as e:
            logger.warning(
                f"Learning lookup failed for {action_type.value}, using base estimate: {e}"
            )
            return AdjustedEstimate(base_estimate=base_estimate, adjusted_estimate=base_estimate)

        applied = (
            adjustment.sample_size >= self._min_sample_size
            and adjustment.confidence >= self._min_confidence
        )
        if not applied:
            return AdjustedEstimate(
                base_estimate=base_estimate,
                adjusted_estimate=base_estimate,
                confidence=adjustment.confidence,
                sample_size=adjustment.sample_size,
            )

        return AdjustedEstimate(
            base_estimate=base_estimate,
            adjusted_estimate=base_estimate * adjustment.adjustment_factor,
            adjustment_factor=adjustment.adjustment_factor,
            confidence=adjustment.confidence,
            sample_size=adjustment.sample_size,
            learning_applied=True,
        )

    async def _refresh_snapshot(
        self,
        adjustment: EstimateAdjustment,
        measurements: Sequence[ImpactMeasurement],
        now: datetime,
    ) -> None:
        if self._snapshots is None:
            return

        lock = self._snapshot_locks.setdefault(adjustment.action_type, asyncio.Lock())
        period = timedelta(days=self._snapshot_period_days)
        try:
            async with lock:
                latest = await self._snapshots.latest_snapshot(adjustment.action_type)
                if latest is not None and latest.period_end > now - period:
                    return

                accuracies = [a for a in (_accuracy_of(m) for m in measurements) if a is not None]
                await self._snapshots.save_snapshot(LearningMetric(
                    action_type=adjustment.action_type,
                    sample_size=adjustment.sample_size,
                    mean_accuracy=float(np.mean(accuracies)) if accuracies else None,
                    adjustment_factor=adjustment.adjustment_factor,
                    confidence=adjustment.confidence,
                    trend=classify_trend(measurements, now, self._trend_window_days),
                    period_start=now - period,
                    period_end=now,
                ))
            logger.info(f"Saved learning snapshot for {adjustment.action_type.value}")
        except Exception as e:
            logger.warning(f"Could not persist learning snapshot for {adjustment.action_type.value}: {e}")

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def calculate_trend(self, action_type: ActionType, now: Optional[datetime] = None) -> Trend:
        measurements = await self._measurements.query_completed_measurements(action_type)
        return classify_trend(measurements, now or utcnow(), self._trend_window_days)

    async def get_all_action_type_accuracy(self) -> List[ActionTypeAccuracy]:
        measurements = await self._measurements.query_completed_measurements()
        return _accuracy_rows(build_accuracy_table(measurements))

    async def generate_insights(self, now: Optional[datetime] = None) -> List[LearningInsight]:
        dashboard = await self.get_dashboard(now)
        return dashboard.insights

    async def get_dashboard(self, now: Optional[datetime] = None) -> LearningDashboard:
        """
        Assemble per-type stats, insights and the overall accuracy figure.

        Measurements are fetched once and grouped in memory.
        """
        now = now or utcnow()
        measurements = await self._measurements.query_completed_measurements()

        by_type: Dict[ActionType, List[ImpactMeasurement]] = {}
        for measurement in measurements:
            by_type.setdefault(measurement.action_type, []).append(measurement)

        accuracy_rows = _accuracy_rows(build_accuracy_table(measurements))

        stats: List[ActionTypeLearningStats] = []
        for row in accuracy_rows:
            type_measurements = by_type.get(row.action_type, [])
            factor, sample_size = calculate_adjustment_factor(
                type_measurements, self._min_sample_size
            )
            stats.append(ActionTypeLearningStats(
                action_type=row.action_type,
                measurement_count=row.measurement_count,
                mean_accuracy=row.mean_accuracy,
                adjustment_factor=factor,
                confidence=calculate_confidence(sample_size),
                trend=classify_trend(type_measurements, now, self._trend_window_days),
            ))

        accuracies = [a for a in (_accuracy_of(m) for m in measurements) if a is not None]
        overall_accuracy = float(np.mean(accuracies)) if accuracies else 0.0

        counts = {s.action_type: s.measurement_count for s in stats}
        insights = self._build_insights(stats, counts, overall_accuracy, len(measurements))

        established = [s for s in stats if s.measurement_count >= self._min_sample_size]
        top_performing = [
            s.action_type
            for s in sorted(established, key=lambda s: s.mean_accuracy, reverse=True)
            if s.mean_accuracy >= HIGH_ACCURACY_THRESHOLD
        ]
        needs_attention = [
            s.action_type
            for s in sorted(established, key=lambda s: s.mean_accuracy)
            if s.mean_accuracy < LOW_ACCURACY_THRESHOLD
        ]

        improving = sum(1 for s in stats if s.trend == Trend.IMPROVING)
        declining = sum(1 for s in stats if s.trend == Trend.DECLINING)
        if improving > declining:
            recent_trend = Trend.IMPROVING
        elif declining > improving:
            recent_trend = Trend.DECLINING
        else:
            recent_trend = Trend.STABLE

        return LearningDashboard(
            overall_accuracy=overall_accuracy,
            total_measurements=len(measurements),
            recent_trend=recent_trend,
            action_type_stats=stats,
            insights=insights,
            top_performing=top_performing,
            needs_attention=needs_attention,
        )

    def _build_insights(
        self,
        stats: Sequence[ActionTypeLearningStats],
        counts: Dict[ActionType, int],
        overall_accuracy: float,
        total_measurements: int,
    ) -> List[LearningInsight]:
        insights: List[LearningInsight] = []

        if total_measurements > 0:
            if overall_accuracy >= OVERALL_SUCCESS_THRESHOLD:
                severity = InsightSeverity.SUCCESS
            elif overall_accuracy >= OVERALL_INFO_THRESHOLD:
                severity = InsightSeverity.INFO
            else:
                severity = InsightSeverity.WARNING
            insights.append(LearningInsight(
                insight_type=InsightType.ACCURACY,
                severity=severity,
                title=f"Overall prediction accuracy: {overall_accuracy:.0%}",
                description=(
                    f"Across {total_measurements} completed measurements, estimates "
                    f"matched observed impact with {overall_accuracy:.0%} accuracy."
                ),
                metric=overall_accuracy,
            ))

        for stat in stats:
            if stat.measurement_count < self._min_sample_size:
                continue
            label = stat.action_type.value.replace('_', ' ')

            if stat.mean_accuracy >= HIGH_ACCURACY_THRESHOLD:
                insights.append(LearningInsight(
                    insight_type=InsightType.ACCURACY,
                    severity=InsightSeverity.SUCCESS,
                    title=f"High accuracy for {label}",
                    description=(
                        f"{stat.mean_accuracy:.0%} accuracy over "
                        f"{stat.measurement_count} measurements."
                    ),
                    action_type=stat.action_type,
                    metric=stat.mean_accuracy,
                ))
            elif stat.mean_accuracy < LOW_ACCURACY_THRESHOLD:
                insights.append(LearningInsight(
                    insight_type=InsightType.ACCURACY,
                    severity=InsightSeverity.WARNING,
                    title=f"Low accuracy for {label}",
                    description=(
                        f"Only {stat.mean_accuracy:.0%} accuracy over "
                        f"{stat.measurement_count} measurements. Review the estimate model."
                    ),
                    action_type=stat.action_type,
                    metric=stat.mean_accuracy,
                ))

            if stat.trend != Trend.STABLE:
                insights.append(LearningInsight(
                    insight_type=InsightType.TREND,
                    severity=(
                        InsightSeverity.SUCCESS
                        if stat.trend == Trend.IMPROVING
                        else InsightSeverity.WARNING
                    ),
                    title=f"Accuracy {stat.trend.value} for {label}",
                    description=(
                        f"Recent {label} predictions are {stat.trend.value} compared "
                        f"with the previous {self._trend_window_days // 2} days."
                    ),
                    action_type=stat.action_type,
                ))

            drift = stat.adjustment_factor - 1.0
            if abs(drift) > CALIBRATION_DRIFT_THRESHOLD and stat.confidence >= CALIBRATION_MIN_CONFIDENCE:
                direction = "underestimating" if drift > 0 else "overestimating"
                insights.append(LearningInsight(
                    insight_type=InsightType.CALIBRATION,
                    severity=InsightSeverity.INFO,
                    title=f"Calibration: {label} is {direction}",
                    description=(
                        f"Observed impact averages {stat.adjustment_factor:.2f}x the estimate. "
                        f"Future estimates are scaled by this factor."
                    ),
                    action_type=stat.action_type,
                    metric=stat.adjustment_factor,
                ))

        sparse = [
            action_type
            for action_type in ActionType
            if counts.get(action_type, 0) < self._min_sample_size
        ]
        if sparse:
            insights.append(LearningInsight(
                insight_type=InsightType.RECOMMENDATION,
                severity=InsightSeverity.WARNING,
                title="Insufficient measurement data",
                description=(
                    f"{len(sparse)} action types have fewer than {self._min_sample_size} "
                    f"completed measurements: "
                    + ", ".join(a.value for a in sparse)
                    + ". Their estimates are not adjusted yet."
                ),
            ))

        return insights


def _accuracy_rows(table: pd.DataFrame) -> List[ActionTypeAccuracy]:
    return [
        ActionTypeAccuracy(
            action_type=ActionType(action_type),
            measurement_count=int(row['measurement_count']),
            mean_accuracy=float(row['mean_accuracy']),
            mean_error=float(row['mean_error']),
            total_estimated=float(row['total_estimated']),
            total_actual=float(row['total_actual']),
        )
        for action_type, row in table.iterrows()
    ]
