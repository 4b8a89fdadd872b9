"""Scrape orchestrator: drives single jobs and scheduled batches."""

import asyncio
import time
import uuid
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from src.budget.ledger import BudgetLedger
from src.executors.base import MethodExecutor, failed_result
from src.executors.rate_limiter import MethodThrottle
from src.jobs.factory import build_job
from src.jobs.job_queue import JobQueue
from src.models.clock import Clock, Sleeper, UTCClock, default_sleeper
from src.models.config import OrchestratorConfig, VendorScrapeConfig
from src.models.data_models import (
    FREE_METHOD,
    BatchReport,
    BudgetPeriod,
    EscalationAction,
    JobPriority,
    JobSource,
    JobStatus,
    ScrapeJob,
    ScrapeResult,
    ScrapeStatus,
    ScrapingMethod,
)
from src.models.errors import (
    BatchStartError,
    JobNotFoundError,
    JobStateError,
    OrchestratorError,
    PersistenceError,
    QueueFullError,
)
from src.monitoring.logger import StructuredLogger
from src.orchestrator.session import SessionAggregator
from src.scheduling.service import SchedulingService
from src.selection.escalation import EscalationPolicy
from src.selection.method_selector import MethodSelector


CRON_ENDPOINT = "/api/cron/scheduled-scrape"

# A job whose outcome could not be persisted is retried no sooner than this
PERSISTENCE_RETRY_DELAY = timedelta(minutes=5)

RETRYABLE_JOB_STATUSES = frozenset({JobStatus.FAILED, JobStatus.CANCELLED})


class ScrapeOrchestrator:
    """
    Coordinates selection, execution, escalation and budget accounting.

    ``run_job`` takes one job to a terminal state. ``run_scheduled_batch``
    pulls due vendors from the scheduling service, queues one job per
    vendor and drains the queue with a fixed-size worker pool until it is
    empty or the batch time budget runs out.

    Paid methods reserve their table cost through the ledger before the
    executor runs. Of two workers racing for the last cents only one
    reservation succeeds; the other re-selects and falls back to the free
    method.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        ledger: BudgetLedger,
        scheduling: SchedulingService,
        executor: MethodExecutor,
        queue: Optional[JobQueue] = None,
        selector: Optional[MethodSelector] = None,
        escalation: Optional[EscalationPolicy] = None,
        throttle: Optional[MethodThrottle] = None,
        clock: Optional[Clock] = None,
        sleeper: Sleeper = default_sleeper,
        monotonic: Callable[[], float] = time.monotonic,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Initialize orchestrator.

        Args:
            config: Orchestrator configuration
            ledger: Shared budget ledger
            scheduling: Persistence boundary for vendors, jobs and cron logs
            executor: Executor (or registry) that runs one method attempt
            queue: Job queue (created from config if omitted)
            selector: Method selector (created from config if omitted)
            escalation: Escalation policy (created from config if omitted)
            throttle: Per-method rate limit and concurrency cap
            clock: Wall clock for timestamps
            sleeper: Async sleep used for retry backoff
            monotonic: Monotonic clock used for the batch deadline
            logger: Optional structured logger
        """
        self.config = config
        self.ledger = ledger
        self.scheduling = scheduling
        self.executor = executor
        self.clock = clock or UTCClock()
        self.logger = logger or StructuredLogger(
            level=config.log_level, structured=config.structured_logging
        )
        self.queue = queue or JobQueue(
            max_size=config.queue.max_queue_size, clock=self.clock, logger=self.logger
        )
        self.selector = selector or MethodSelector(config)
        self.escalation = escalation or EscalationPolicy(config, self.selector, self.clock)
        self.throttle = throttle or MethodThrottle(config.rate_limits)
        self._sleep = sleeper
        self._monotonic = monotonic

    # ------------------------------------------------------------------
    # Single job
    # ------------------------------------------------------------------

    async def run_job(self, job: ScrapeJob) -> ScrapeJob:
        """
        Run one job to a terminal state.

        Failed attempts never raise; they become results on the job.

        Raises:
            PersistenceError: If spend, job status or vendor status
                could not be written
        """
        vendor = await self._load_vendor(job.vendor_id)
        job.status = JobStatus.RUNNING
        job.started_at = job.started_at or self.clock.now()

        method = self.selector.select_method(
            vendor, self.ledger, job.allowed_methods, self._ceiling(job)
        )
        self.logger.job_start(job.id, vendor.vendor_id, method.value if method else None)

        if method is None:
            self._finish(job, JobStatus.SKIPPED, warning="No allowed method for vendor")
            await self._record_outcome(job, vendor, success=None)
            return job

        attempts_by_method: Dict[ScrapingMethod, int] = {}
        while True:
            if job.cancel_requested:
                self._finish(job, JobStatus.CANCELLED)
                await self._record_outcome(job, vendor, success=None)
                return job

            if job.attempts >= job.max_attempts:
                job.last_error = job.last_error or "Maximum attempts reached"
                self._finish(job, JobStatus.FAILED)
                await self._record_outcome(job, vendor, success=False)
                return job

            method = await self._reserve(job, vendor, method)
            if method is None:
                self._finish(job, JobStatus.SKIPPED, warning="No affordable method for vendor")
                await self._record_outcome(job, vendor, success=None)
                return job

            job.attempts += 1
            attempts_by_method[method] = attempts_by_method.get(method, 0) + 1
            result = await self._execute(vendor, method)
            job.results.append(result)
            await self._settle_cost(job, vendor, method, result)

            self.logger.attempt(
                job.id, vendor.vendor_id, method.value, result.status.value,
                attempts_by_method[method], result.duration_ms,
            )

            if result.status == ScrapeStatus.SUCCESS:
                self.escalation.on_success(vendor, method)
                self._finish(job, JobStatus.COMPLETED)
                await self._record_outcome(job, vendor, success=True)
                return job

            if result.status == ScrapeStatus.PARTIAL:
                # Partial data is accepted as-is, never escalated
                self.escalation.on_success(vendor, method)
                self._finish(job, JobStatus.COMPLETED, warning="Partial data extracted")
                await self._record_outcome(job, vendor, success=True)
                return job

            if result.status == ScrapeStatus.SKIPPED:
                message = result.error.message if result.error else "Skipped by executor"
                self._finish(job, JobStatus.SKIPPED, warning=message)
                await self._record_outcome(job, vendor, success=None)
                return job

            job.last_error = result.error.message if result.error else "Unknown error"
            decision = self.escalation.on_failure(
                vendor,
                method,
                result.error,
                self.ledger,
                attempts_by_method[method],
                allowed=job.allowed_methods,
                max_cost=self._ceiling(job),
            )
            self.logger.escalation(
                vendor.vendor_id,
                method.value,
                decision.action.value,
                decision.method.value if decision.method else None,
                decision.reason,
            )

            if decision.action == EscalationAction.RETRY_SAME:
                if decision.delay_seconds > 0:
                    await self._sleep(decision.delay_seconds)
                continue

            if decision.action == EscalationAction.ESCALATE:
                method = decision.method
                continue

            self._finish(job, JobStatus.FAILED)
            await self._record_outcome(job, vendor, success=False)
            return job

    async def _reserve(
        self, job: ScrapeJob, vendor: VendorScrapeConfig, method: ScrapingMethod
    ) -> Optional[ScrapingMethod]:
        """
        Make sure ``method`` is paid for, falling back when it is not.

        Returns the method that will actually run, or None if nothing can.
        """
        tried = set()
        while True:
            if not self.selector.is_affordable(method, self.ledger, self._ceiling(job)):
                method = self.selector.select_method(
                    vendor, self.ledger, job.allowed_methods, self._ceiling(job)
                )
                if method is None:
                    return None

            cost = self.ledger.cost_of(method)
            if cost == 0:
                return method

            allocation = await self.ledger.allocate(method, vendor.vendor_id, cost)
            if allocation.success:
                job.cost_spent = round(job.cost_spent + cost, 6)
                return method

            # Lost the race for the remaining budget
            tried.add(method)
            fallback = self.selector.select_method(
                vendor, self.ledger, job.allowed_methods, self._ceiling(job)
            )
            if fallback is None or fallback in tried:
                fallback = FREE_METHOD if FREE_METHOD in job.allowed_methods else None
            if fallback is None:
                return None
            method = fallback

    async def _settle_cost(
        self,
        job: ScrapeJob,
        vendor: VendorScrapeConfig,
        method: ScrapingMethod,
        result: ScrapeResult,
    ) -> None:
        """Charge any actual cost above the reservation; underspend is not refunded."""
        reserved = self.ledger.cost_of(method)
        excess = round(result.actual_cost - reserved, 6)
        if excess <= 0:
            return
        allocation = await self.ledger.allocate(method, vendor.vendor_id, excess)
        if allocation.success:
            job.cost_spent = round(job.cost_spent + excess, 6)
        else:
            # The executor already ran; the spend is sunk
            self.logger.allocation_anomaly(
                vendor.vendor_id, method.value, excess, allocation.message
            )

    async def _execute(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> ScrapeResult:
        """Run one attempt under the method's timeout; never raises for executor errors."""
        timeout = self._timeout_for(vendor, method)
        started_at = self.clock.now()
        try:
            async with self.throttle.slot(method):
                if timeout is None:
                    return await self.executor.execute(vendor, method)
                return await asyncio.wait_for(self.executor.execute(vendor, method), timeout)
        except asyncio.TimeoutError:
            return failed_result(
                vendor.vendor_id, method, started_at, self.clock.now(),
                message=f"{method.value} attempt timed out after {timeout}s",
                should_retry=True,
                code="TIMEOUT",
            )
        except Exception as e:
            self.logger.error("executor_error", str(e), vendor=vendor.vendor_id, method=method.value)
            return failed_result(
                vendor.vendor_id, method, started_at, self.clock.now(),
                message=str(e) or type(e).__name__,
                should_retry=True,
                code="EXECUTOR_ERROR",
            )

    def _timeout_for(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> Optional[float]:
        if method == ScrapingMethod.MANUAL:
            return None
        if vendor.timeout_ms:
            return vendor.timeout_ms / 1000.0
        return self.config.retry[method].timeout_seconds

    @staticmethod
    def _ceiling(job: ScrapeJob) -> float:
        return max(0.0, round(job.max_cost - job.cost_spent, 6))

    def _finish(self, job: ScrapeJob, status: JobStatus, warning: Optional[str] = None) -> None:
        job.status = status
        job.completed_at = self.clock.now()
        if warning:
            job.warning = warning
        self.logger.job_finished(job.id, job.vendor_id, status.value, job.cost_spent, job.attempts)

    async def _load_vendor(self, vendor_id: str) -> VendorScrapeConfig:
        return await self.scheduling.get_vendor(vendor_id)

    async def _record_outcome(
        self, job: ScrapeJob, vendor: VendorScrapeConfig, success: Optional[bool]
    ) -> None:
        """Persist vendor counters, scrape status and the job row."""
        try:
            await self.scheduling.save_vendor(vendor)
            if success is not None:
                await self.scheduling.update_vendor_scrape_status(
                    vendor.vendor_id, success, None if success else job.last_error
                )
            await self.scheduling.update_job(job)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(f"Failed to persist outcome of job {job.id}: {e}", cause=e) from e

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    async def run_scheduled_batch(
        self,
        max_vendors: Optional[int] = None,
        endpoint: str = CRON_ENDPOINT,
    ) -> BatchReport:
        """
        Queue every due vendor and drain the queue.

        Individual job failures are data, not batch errors; the batch
        always finishes with a cron log entry.

        Raises:
            BatchStartError: If due vendors could not be fetched or queued
        """
        max_vendors = max_vendors or self.config.max_vendors_per_run
        started = self._monotonic()
        session_id = str(uuid.uuid4())
        aggregator = SessionAggregator(session_id, self.clock.now())

        try:
            due = await self.scheduling.get_vendors_for_scheduled_scrape(max_vendors)
            queued = await self.scheduling.queue_scrape_jobs(due, JobSource.SCHEDULED)
        except Exception as e:
            self.logger.error("batch_start_failed", str(e), session_id=session_id)
            await self._log_cron_failure(endpoint, started, e)
            raise BatchStartError(f"Scheduled batch could not start: {e}") from e

        for expired in self.queue.sweep_expired():
            aggregator.add_job(expired)

        workers = self.config.queue.max_concurrent
        self.logger.batch_start(session_id, len(due), workers)

        batch_jobs: List[ScrapeJob] = []
        for entry in queued:
            if not entry.success:
                aggregator.add_admission_error(f"{entry.vendor_id}: {entry.error}")
                continue
            job = await self.scheduling.get_job(entry.job_id)
            batch_jobs.append(job)
            try:
                self.queue.enqueue(job)
            except QueueFullError as e:
                job.status = JobStatus.CANCELLED
                job.cancel_reason = "queue full"
                job.completed_at = self.clock.now()
                aggregator.add_admission_error(f"{entry.vendor_id}: {e}")
                aggregator.add_job(job)
                await self._update_job_quietly(job, aggregator)

        deadline = started + self.config.batch_time_budget
        await self._drain(deadline, aggregator, workers)

        session = aggregator.finalize(
            self.clock.now(),
            {p: self.ledger.remaining_budget(p) for p in BudgetPeriod},
        )
        elapsed_ms = int((self._monotonic() - started) * 1000)
        failed = sum(1 for entry in queued if not entry.success)

        self.logger.batch_finished(
            session_id, session.completed_jobs, session.failed_jobs, session.total_cost, elapsed_ms
        )

        message = (
            f"Queued {len(queued) - failed} vendors, {session.completed_jobs} completed, "
            f"{session.failed_jobs} failed"
        )
        status = "success"
        if failed or session.failed_jobs or session.admission_errors or session.persistence_errors:
            status = "warning"
        details = {
            "session_id": session_id,
            "vendors_queued": len(queued) - failed,
            "vendors_failed": failed,
            "message": message,
            "duration_ms": elapsed_ms,
            "completed_jobs": session.completed_jobs,
            "failed_jobs": session.failed_jobs,
            "skipped_jobs": session.skipped_jobs,
            "cancelled_jobs": session.cancelled_jobs,
            "total_cost": session.total_cost,
            "method_breakdown": {m.value: n for m, n in session.method_breakdown.items()},
            "results": [
                {"vendor": e.vendor, "vendor_id": e.vendor_id, "success": e.success,
                 "job_id": e.job_id, "error": e.error}
                for e in queued
            ],
        }
        try:
            await self.scheduling.log_cron_execution(endpoint, status, details)
        except Exception as e:
            session.persistence_errors.append(f"cron log: {e}")
            self.logger.error("cron_log_failed", str(e), session_id=session_id)

        return BatchReport(session=session, queued=queued, jobs=batch_jobs, message=message)

    async def process_queue(self, time_budget: Optional[float] = None) -> List[ScrapeJob]:
        """Drain whatever is queued; used for manual and retry triggers."""
        aggregator = SessionAggregator(str(uuid.uuid4()), self.clock.now())
        deadline = self._monotonic() + (time_budget or self.config.batch_time_budget)
        await self._drain(deadline, aggregator, self.config.queue.max_concurrent)
        return aggregator.get_jobs()

    async def _drain(self, deadline: float, aggregator: SessionAggregator, workers: int) -> None:
        await asyncio.gather(*(
            self._worker(deadline, aggregator) for _ in range(max(1, workers))
        ))

    async def _worker(self, deadline: float, aggregator: SessionAggregator) -> None:
        # Workers stop taking new jobs once the deadline passes; in-flight
        # jobs are bounded by their per-attempt timeouts
        while self._monotonic() < deadline:
            job = self.queue.dequeue()
            if job is None:
                return
            try:
                await self.run_job(job)
            except PersistenceError as e:
                aggregator.add_persistence_error(f"{job.id}: {e}")
                self.logger.error("persistence_error", str(e), job_id=job.id, vendor=job.vendor_id)
                job.last_error = str(e)
                # The rerun starts a fresh attempt budget; cost_spent stays so
                # the per-job ceiling still counts money already allocated
                job.attempts = 0
                job.results = []
                job.completed_at = None
                self.queue.requeue(job, scheduled_for=self.clock.now() + PERSISTENCE_RETRY_DELAY)
            except OrchestratorError as e:
                job.last_error = str(e)
                self._finish(job, JobStatus.FAILED)
                self.logger.error("job_error", str(e), job_id=job.id, vendor=job.vendor_id)
            aggregator.add_job(job)

    async def _update_job_quietly(self, job: ScrapeJob, aggregator: SessionAggregator) -> None:
        try:
            await self.scheduling.update_job(job)
        except Exception as e:
            aggregator.add_persistence_error(f"{job.id}: {e}")
            self.logger.error("persistence_error", str(e), job_id=job.id)

    async def _log_cron_failure(self, endpoint: str, started: float, error: Exception) -> None:
        details = {
            "vendors_queued": 0,
            "vendors_failed": 0,
            "error": str(error),
            "duration_ms": int((self._monotonic() - started) * 1000),
        }
        try:
            await self.scheduling.log_cron_execution(endpoint, "error", details, str(error))
        except Exception as e:
            self.logger.error("cron_log_failed", str(e))

    # ------------------------------------------------------------------
    # Operator actions
    # ------------------------------------------------------------------

    async def enqueue_vendor(
        self,
        vendor_id: str,
        source: JobSource = JobSource.MANUAL,
        priority: Optional[JobPriority] = None,
    ) -> ScrapeJob:
        """
        Queue an on-demand job for one vendor.

        Raises:
            VendorNotFoundError: If the vendor is unknown
            QueueFullError: If the queue is at capacity
        """
        vendor = await self._load_vendor(vendor_id)
        job = build_job(vendor, self.config, self.clock.now(), source=source, priority=priority)
        self.queue.enqueue(job)
        await self.scheduling.update_job(job)
        return job

    async def cancel_job(self, job_id: str, reason: str = "cancelled by operator") -> ScrapeJob:
        """
        Cancel a queued job, or request cancellation of a running one.

        Budget already allocated for completed attempts is never refunded.
        """
        try:
            job = self.queue.cancel(job_id, reason)
        except JobNotFoundError:
            job = await self.scheduling.get_job(job_id)
            if job.status == JobStatus.QUEUED:
                job.status = JobStatus.CANCELLED
                job.cancel_reason = reason
                job.completed_at = self.clock.now()
            elif job.status == JobStatus.RUNNING:
                job.cancel_requested = True
                job.cancel_reason = reason
        if job.is_terminal and job.status != JobStatus.CANCELLED:
            raise JobStateError(job_id, job.status.value, "cancel")
        await self.scheduling.update_job(job)
        return job

    async def retry_job(self, job_id: str) -> ScrapeJob:
        """
        Queue a fresh job for the vendor of a failed or cancelled job.

        Raises:
            JobNotFoundError: If the job is unknown
            JobStateError: If the job is not failed or cancelled
        """
        try:
            original = self.queue.get(job_id)
        except JobNotFoundError:
            original = await self.scheduling.get_job(job_id)
        if original.status not in RETRYABLE_JOB_STATUSES:
            raise JobStateError(job_id, original.status.value, "retry")

        vendor = await self._load_vendor(original.vendor_id)
        job = build_job(
            vendor,
            self.config,
            self.clock.now(),
            source=JobSource.RETRY,
            priority=original.priority,
            retry_of=original.id,
        )
        self.queue.enqueue(job)
        await self.scheduling.update_job(job)
        return job
