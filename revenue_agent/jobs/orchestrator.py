"""
Agent Orchestrator: sequences the batch pipeline and keeps the audit trail.

Jobs:
- ga4_sync / mediavine_sync: metric sync collaborators (soft-skip when absent)
- impact_measurement: complete measurements whose window has closed
- affiliate_scan / rpm_analysis: detector passes
- auto_execute: execute approved actions (soft-skip without an ActionHandler)
- cleanup: expire stale pending opportunities
- report: queue stats, last run per job type and recent runs (read-only)
- full: every job above except report, in a fixed order

Failure Isolation:
run_job never raises. A job that throws is logged and returned as a failed
JobResult. A full scan runs its sub-jobs sequentially and always continues to
the next one; its own Agent Run is failed when any sub-job failed, while the
item and opportunity totals still count the sub-jobs that succeeded.

Usage:
    orchestrator = build_orchestrator(pool, get_settings())
    result = await orchestrator.run_job('full')
"""

import logging
import time
from datetime import timedelta
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Union

from asyncpg import Pool

from revenue_agent.core.config import Settings
from revenue_agent.models import AgentReport, AgentRun, JobResult, JobType, utcnow
from revenue_agent.services.affiliate_detector import AffiliateDetector
from revenue_agent.services.auto_execution import ActionHandler, AutoExecutor
from revenue_agent.services.impact_tracking import ImpactTracker
from revenue_agent.services.learning_engine import LearningEngine
from revenue_agent.services.measurement_store import (
    PostgresLearningMetricStore,
    PostgresMeasurementStore,
)
from revenue_agent.services.metric_aggregator import (
    PostgresContentCatalog,
    PostgresMetricAggregator,
)
from revenue_agent.services.opportunity_store import OpportunityStore, PostgresOpportunityStore
from revenue_agent.services.rpm_detector import RpmDetector
from revenue_agent.services.run_store import PostgresRunStore, RunRecorder, RunStore, RunTracker
from revenue_agent.jobs.notifications import SlackRunNotifier


# =============================================================================
# Job Order
# =============================================================================

FULL_SCAN_ORDER: List[JobType] = [
    JobType.GA4_SYNC,
    JobType.MEDIAVINE_SYNC,
    JobType.IMPACT_MEASUREMENT,
    JobType.AFFILIATE_SCAN,
    JobType.RPM_ANALYSIS,
    JobType.AUTO_EXECUTE,
    JobType.CLEANUP,
]

# A metric sync returns the number of rows it ingested
MetricSync = Callable[[], Awaitable[int]]

logger = logging.getLogger(__name__)


class Detector(Protocol):
    async def run(self):
        ...


class RunNotifier(Protocol):
    async def notify_run_complete(self, run: AgentRun) -> Dict:
        ...


def _skipped(job_type: JobType, source: str) -> JobResult:
    note = f"{source} not configured - skipping"
    logger.info(f"{job_type.value}: {note}")
    return JobResult(job=job_type.value, success=True, note=note)


# =============================================================================
# Orchestrator
# =============================================================================


class AgentOrchestrator:
    """Runs agent jobs against explicitly injected collaborators."""

    def __init__(
        self,
        settings: Settings,
        store: OpportunityStore,
        affiliate_detector: Detector,
        rpm_detector: Detector,
        run_recorder: RunRecorder,
        run_store: RunStore,
        impact_tracker: Optional[ImpactTracker] = None,
        auto_executor: Optional[AutoExecutor] = None,
        notifier: Optional[RunNotifier] = None,
        metric_syncs: Optional[Dict[JobType, MetricSync]] = None,
        learning: Optional[LearningEngine] = None,
    ):
        self.settings = settings
        self.store = store
        self.learning = learning
        self._affiliate_detector = affiliate_detector
        self._rpm_detector = rpm_detector
        self._recorder = run_recorder
        self._run_store = run_store
        self._impact_tracker = impact_tracker
        self._auto_executor = auto_executor
        self._notifier = notifier
        self._metric_syncs = metric_syncs or {}

        self._handlers: Dict[JobType, Callable[[], Awaitable[JobResult]]] = {
            JobType.FULL: self.run_full_scan,
            JobType.GA4_SYNC: self._run_ga4_sync,
            JobType.MEDIAVINE_SYNC: self._run_mediavine_sync,
            JobType.IMPACT_MEASUREMENT: self._run_impact_measurement,
            JobType.AFFILIATE_SCAN: lambda: self._run_detector(
                JobType.AFFILIATE_SCAN, self._affiliate_detector
            ),
            JobType.RPM_ANALYSIS: lambda: self._run_detector(
                JobType.RPM_ANALYSIS, self._rpm_detector
            ),
            JobType.AUTO_EXECUTE: self._run_auto_execute,
            JobType.CLEANUP: self._run_cleanup,
            JobType.REPORT: self._run_report,
        }

    # -------------------------------------------------------------------------
    # Entry point
    # -------------------------------------------------------------------------

    async def run_job(self, job_type: Union[JobType, str]) -> JobResult:
        """
        Run one job by type.

        Returns:
            JobResult with success flag, duration in milliseconds, items
            processed, opportunities found and the error message on failure.
            Unknown job types produce a failed result.
        """
        try:
            job = JobType(job_type)
        except ValueError:
            logger.warning(f"Unknown job type requested: {job_type}")
            return JobResult(job=str(job_type), success=False, error=f"Unknown job type: {job_type}")

        logger.info(f"Starting job {job.value}")
        started = time.monotonic()
        try:
            result = await self._handlers[job]()
        except Exception as e:
            logger.exception(f"Job {job.value} failed")
            result = JobResult(job=job.value, success=False, error=str(e) or type(e).__name__)

        result.duration_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Finished job {job.value} in {result.duration_ms}ms: success={result.success}, "
            f"items={result.items_processed}, opportunities={result.opportunities_found}"
        )
        return result

    async def run_full_scan(self) -> JobResult:
        """
        Run every pipeline stage in order, isolating failures per stage.

        Totals only include sub-jobs that succeeded. The full-scan Agent Run is
        failed when any sub-job failed; its error summary lists them.
        """
        run = await self._recorder.start(JobType.FULL)
        tracker = RunTracker(run=run)

        sub_jobs: List[JobResult] = []
        for job_type in FULL_SCAN_ORDER:
            result = await self.run_job(job_type)
            sub_jobs.append(result)
            if result.success:
                tracker.items_processed += result.items_processed
                tracker.opportunities_found += result.opportunities_found
            else:
                tracker.errors.append(f"{job_type.value}: {result.error}")

        run = await self._recorder.finish(tracker)
        await self._notify(run)

        failed = [r.job for r in sub_jobs if not r.success]
        return JobResult(
            job=JobType.FULL.value,
            success=not failed,
            items_processed=tracker.items_processed,
            opportunities_found=tracker.opportunities_found,
            error=f"{len(failed)} of {len(sub_jobs)} jobs failed: {', '.join(failed)}" if failed else None,
            sub_jobs=sub_jobs,
        )

    async def _notify(self, run: AgentRun) -> None:
        if self._notifier is None:
            return
        try:
            result = await self._notifier.notify_run_complete(run)
            if not result.get('success', True):
                logger.warning(f"Run notification failed: {result.get('error')}")
        except Exception as e:
            logger.warning(f"Run notification failed: {e}")

    # -------------------------------------------------------------------------
    # Metric syncs
    # -------------------------------------------------------------------------

    async def _run_sync(self, job_type: JobType, source: str, configured: bool) -> JobResult:
        sync = self._metric_syncs.get(job_type)
        if not configured or sync is None:
            return _skipped(job_type, source)

        rows = await sync()
        return JobResult(job=job_type.value, success=True, items_processed=rows)

    async def _run_ga4_sync(self) -> JobResult:
        return await self._run_sync(JobType.GA4_SYNC, 'GA4', self.settings.ga4_configured)

    async def _run_mediavine_sync(self) -> JobResult:
        return await self._run_sync(
            JobType.MEDIAVINE_SYNC, 'Mediavine', self.settings.mediavine_configured
        )

    # -------------------------------------------------------------------------
    # Recorded jobs
    # -------------------------------------------------------------------------

    async def _run_impact_measurement(self) -> JobResult:
        if self._impact_tracker is None:
            return _skipped(JobType.IMPACT_MEASUREMENT, 'Impact tracker')

        async with self._recorder.track(JobType.IMPACT_MEASUREMENT) as tracker:
            results = await self._impact_tracker.process_pending_measurements()
            tracker.items_processed = results['completed']
            if results['failed']:
                tracker.error_details = {'failed_measurements': results['failed']}

        return JobResult(
            job=JobType.IMPACT_MEASUREMENT.value,
            success=True,
            items_processed=results['completed'],
        )

    async def _run_detector(self, job_type: JobType, detector: Detector) -> JobResult:
        async with self._recorder.track(job_type) as tracker:
            summary = await detector.run()
            tracker.items_processed = summary.candidates_scanned
            tracker.opportunities_found = summary.opportunities_created

        return JobResult(
            job=job_type.value,
            success=True,
            items_processed=summary.candidates_scanned,
            opportunities_found=summary.opportunities_created,
        )

    async def _run_auto_execute(self) -> JobResult:
        if self._auto_executor is None:
            return _skipped(JobType.AUTO_EXECUTE, 'Action handler')

        async with self._recorder.track(JobType.AUTO_EXECUTE) as tracker:
            summary = await self._auto_executor.execute_approved_actions()
            tracker.items_processed = summary.executed + summary.failed
            if summary.failed:
                tracker.error_details = {'failed_actions': summary.failed}

        return JobResult(
            job=JobType.AUTO_EXECUTE.value,
            success=True,
            items_processed=summary.executed + summary.failed,
            note=(
                f"{summary.executed} executed, {summary.failed} failed, "
                f"{summary.skipped} skipped"
            ),
        )

    async def _run_cleanup(self) -> JobResult:
        async with self._recorder.track(JobType.CLEANUP) as tracker:
            expired = await self.store.expire_older_than(self.settings.opportunity_expiry_days)
            tracker.items_processed = expired

        return JobResult(job=JobType.CLEANUP.value, success=True, items_processed=expired)

    # -------------------------------------------------------------------------
    # Reporting
    # -------------------------------------------------------------------------

    async def _run_report(self) -> JobResult:
        report = await self.generate_report()
        return JobResult(
            job=JobType.REPORT.value,
            success=True,
            items_processed=len(report.recent_runs),
            note=(
                f"{report.queue_stats.pending} pending opportunities worth "
                f"${report.queue_stats.total_estimated_impact:,.2f}/month"
            ),
        )

    async def generate_report(self, hours: Optional[int] = None) -> AgentReport:
        """Queue stats, last completed run per job type and recent runs. Read-only."""
        hours = hours or self.settings.report_hours
        now = utcnow()

        queue_stats = await self.store.queue_stats()
        last_completed = await self._run_store.last_completed_run_times()
        recent = await self._run_store.recent_runs(
            now - timedelta(hours=hours), self.settings.report_recent_runs
        )

        return AgentReport(
            generated_at=now,
            window_hours=hours,
            queue_stats=queue_stats,
            last_run_times={job_type: last_completed.get(job_type) for job_type in JobType},
            recent_runs=recent,
        )


# =============================================================================
# Wiring
# =============================================================================


def build_orchestrator(
    pool: Pool,
    settings: Settings,
    action_handler: Optional[ActionHandler] = None,
    metric_syncs: Optional[Dict[JobType, MetricSync]] = None,
) -> AgentOrchestrator:
    """Construct the Postgres-backed collaborators and the orchestrator over them."""
    aggregator = PostgresMetricAggregator(pool)
    catalog = PostgresContentCatalog(pool, settings.content_url_prefix)
    store = PostgresOpportunityStore(pool, settings.opportunity_expiry_days)
    measurements = PostgresMeasurementStore(pool)
    run_store = PostgresRunStore(pool)

    learning = LearningEngine(
        measurements,
        snapshots=PostgresLearningMetricStore(pool),
        min_sample_size=settings.min_measurements_for_adjustment,
        min_confidence=settings.min_learning_confidence,
        trend_window_days=settings.learning_trend_window_days,
        snapshot_period_days=settings.learning_snapshot_period_days,
    )
    tracker = ImpactTracker(measurements, aggregator)

    auto_executor = None
    if action_handler is not None:
        auto_executor = AutoExecutor(
            store,
            action_handler,
            tracker,
            min_confidence=settings.auto_execute_min_confidence,
            min_impact=settings.auto_execute_min_impact,
            max_per_run=settings.auto_execute_max_per_run,
            max_consecutive_failures=settings.auto_execute_max_failures,
        )

    return AgentOrchestrator(
        settings=settings,
        store=store,
        affiliate_detector=AffiliateDetector(
            aggregator,
            catalog,
            learning,
            store,
            window_days=settings.metric_window_days,
            max_workers=settings.detector_max_workers,
            content_url_prefix=settings.content_url_prefix,
        ),
        rpm_detector=RpmDetector(
            aggregator,
            learning,
            store,
            window_days=settings.metric_window_days,
            max_workers=settings.detector_max_workers,
        ),
        run_recorder=RunRecorder(run_store),
        run_store=run_store,
        impact_tracker=tracker,
        auto_executor=auto_executor,
        notifier=SlackRunNotifier(settings.slack_webhook_url),
        metric_syncs=metric_syncs,
        learning=learning,
    )
