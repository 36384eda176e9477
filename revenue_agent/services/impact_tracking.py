"""
Impact tracking for executed actions.

When an action is executed a pending Impact Measurement is opened with a
baseline taken from the window just before execution. Once the measurement
window has closed, the observed revenue is compared to the baseline and
extrapolated to a monthly delta, which is what the detectors estimated.
The completed measurement feeds the Learning Engine.

Key Features:
- Per-action-type baseline and measurement window lengths
- Page revenue = ad revenue + affiliate clicks x expected value per click
- Prediction accuracy and signed relative error per measurement
- Batch completion of due measurements with per-item failure isolation

Accuracy Definition:
    accuracy = 1 - |estimated - actual| / max(estimated, actual), clamped to [0, 1]
    error    = (actual - estimated) / estimated   (0 when estimated is 0)
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from revenue_agent.models import (
    ActionType,
    ImpactMeasurement,
    MeasurementStatus,
    MetricWindow,
    MonetizationAction,
    Opportunity,
    PageMetrics,
    utcnow,
)
from revenue_agent.services.detection import AFFILIATE_CLICK_VALUE
from revenue_agent.services.measurement_store import MeasurementStore
from revenue_agent.services.metric_aggregator import MetricAggregator


# =============================================================================
# Module Constants
# =============================================================================

# (baseline_days, measurement_days) per action type
MEASUREMENT_WINDOWS: Dict[ActionType, Tuple[int, int]] = {
    ActionType.ADD_AFFILIATE_LINK: (14, 14),
    ActionType.OPTIMIZE_SEO: (21, 14),
    ActionType.CREATE_COLLECTION: (14, 14),
    ActionType.UPDATE_AD_PLACEMENT: (14, 14),
    ActionType.EXPAND_CONTENT: (7, 7),
    ActionType.RUN_AB_TEST: (14, 14),
}

DEFAULT_MEASUREMENT_WINDOW: Tuple[int, int] = (14, 14)

# Measured deltas are extrapolated to a month, matching detector estimates
DAYS_PER_MONTH: int = 30

logger = logging.getLogger(__name__)


# =============================================================================
# Accuracy Calculations
# =============================================================================


def calculate_prediction_accuracy(estimated: float, actual: float) -> float:
    """
    Symmetric accuracy of an estimate against the observed value.

    Args:
        estimated: Estimated monthly impact.
        actual: Measured monthly impact.

    Returns:
        1 - |estimated - actual| / max(estimated, actual), clamped to [0, 1].
        When neither value is positive, 1.0 for an exact match and 0.0 otherwise.

    Example:
        >>> calculate_prediction_accuracy(10.0, 8.0)
        0.8
    """
    scale = max(estimated, actual)
    if scale <= 0:
        return 1.0 if estimated == actual else 0.0
    accuracy = 1.0 - abs(estimated - actual) / scale
    return min(1.0, max(0.0, accuracy))


def calculate_prediction_error(estimated: float, actual: float) -> float:
    """Signed relative error; positive when the outcome beat the estimate."""
    if estimated == 0:
        return 0.0
    return (actual - estimated) / estimated


def page_revenue(metrics: Optional[PageMetrics]) -> float:
    if metrics is None:
        return 0.0
    return metrics.ad_revenue + metrics.affiliate_clicks * AFFILIATE_CLICK_VALUE


def measurement_window_for(action_type: ActionType) -> Tuple[int, int]:
    return MEASUREMENT_WINDOWS.get(action_type, DEFAULT_MEASUREMENT_WINDOW)


# =============================================================================
# Tracker
# =============================================================================


class ImpactTracker:
    """Opens and completes Impact Measurements for executed actions."""

    def __init__(self, measurements: MeasurementStore, aggregator: MetricAggregator):
        self._measurements = measurements
        self._aggregator = aggregator

    async def start_tracking(
        self,
        action: MonetizationAction,
        opportunity: Opportunity,
        now: Optional[datetime] = None,
    ) -> str:
        """
        Open a pending measurement for an action that was just executed.

        The baseline is the page's daily revenue over the baseline window that
        ends at execution time; the estimate is copied from the opportunity.

        Returns:
            The new measurement id.
        """
        now = now or utcnow()
        baseline_days, measurement_days = measurement_window_for(action.action_type)

        baseline_window = MetricWindow(start=now - timedelta(days=baseline_days), end=now)
        baseline = await self._aggregator.aggregate_page(opportunity.page_url, baseline_window)

        measurement = ImpactMeasurement(
            id=uuid.uuid4().hex,
            action_id=action.id,
            action_type=action.action_type,
            page_url=opportunity.page_url,
            estimated_impact=(
                action.estimated_impact
                if action.estimated_impact is not None
                else opportunity.estimated_impact
            ),
            baseline_value=page_revenue(baseline) / baseline_days,
            baseline_start=baseline_window.start,
            start_date=now,
            end_date=now + timedelta(days=measurement_days),
        )
        measurement_id = await self._measurements.create_measurement(measurement)
        logger.info(
            f"Tracking {action.action_type.value} on {opportunity.page_url} "
            f"until {measurement.end_date:%Y-%m-%d}"
        )
        return measurement_id

    async def complete_measurement(
        self,
        measurement: ImpactMeasurement,
        now: Optional[datetime] = None,
    ) -> ImpactMeasurement:
        """Measure one due window and persist the completed measurement."""
        now = now or utcnow()
        window = MetricWindow(start=measurement.start_date, end=measurement.end_date)
        metrics = await self._aggregator.aggregate_page(measurement.page_url, window)

        days = max(window.days, 1.0)
        measured_daily = page_revenue(metrics) / days
        baseline_daily = measurement.baseline_value or 0.0
        measured_impact = (measured_daily - baseline_daily) * DAYS_PER_MONTH

        completed = measurement.model_copy(update={
            'status': MeasurementStatus.COMPLETE,
            'measured_value': measured_daily,
            'measured_impact': measured_impact,
            'prediction_accuracy': calculate_prediction_accuracy(
                measurement.estimated_impact, measured_impact
            ),
            'prediction_error': calculate_prediction_error(
                measurement.estimated_impact, measured_impact
            ),
            'completed_at': now,
        })
        await self._measurements.complete_measurement(completed)
        return completed

    async def process_pending_measurements(self, now: Optional[datetime] = None) -> Dict[str, int]:
        """
        Complete every pending measurement whose window has closed.

        Returns:
            Dict with 'processed', 'completed' and 'failed' counts.
        """
        now = now or utcnow()
        due = await self._measurements.list_due_measurements(now)

        results = {'processed': len(due), 'completed': 0, 'failed': 0}

        for measurement in due:
            try:
                completed = await self.complete_measurement(measurement, now)
                results['completed'] += 1
                logger.debug(
                    f"Measurement {measurement.id}: estimated {completed.estimated_impact:.2f}, "
                    f"measured {completed.measured_impact:.2f}, "
                    f"accuracy {completed.prediction_accuracy:.2f}"
                )
            except Exception as e:
                logger.error(f"Error completing measurement {measurement.id}: {e}")
                results['failed'] += 1

        logger.info(
            f"Impact measurement: {results['completed']}/{results['processed']} completed, "
            f"{results['failed']} failed"
        )
        return results
