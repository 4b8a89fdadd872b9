"""Thread-safe aggregation of job outcomes into a scrape session."""

import threading
from datetime import datetime
from typing import Dict, List, Optional

from src.models.data_models import (
    BudgetPeriod,
    JobStatus,
    ScrapeJob,
    ScrapeSession,
    ScrapingMethod,
)


class SessionAggregator:
    """
    Collects finished jobs and errors for one batch run.

    Uses a lock so that workers can report concurrently; the lock also
    covers calls made from threadpool-backed API handlers.
    """

    def __init__(self, session_id: str, started_at: datetime):
        self._lock = threading.Lock()
        self._session_id = session_id
        self._started_at = started_at
        self._jobs: Dict[str, ScrapeJob] = {}
        self._admission_errors: List[str] = []
        self._persistence_errors: List[str] = []

    def add_job(self, job: ScrapeJob) -> None:
        """Record a job; a later report for the same id replaces the earlier one."""
        with self._lock:
            self._jobs[job.id] = job

    def add_admission_error(self, message: str) -> None:
        with self._lock:
            self._admission_errors.append(message)

    def add_persistence_error(self, message: str) -> None:
        with self._lock:
            self._persistence_errors.append(message)

    def get_jobs(self) -> List[ScrapeJob]:
        with self._lock:
            return list(self._jobs.values())

    def finalize(
        self,
        finished_at: datetime,
        budget_remaining: Optional[Dict[BudgetPeriod, float]] = None,
    ) -> ScrapeSession:
        """
        Build the session summary.

        Success rate counts completed jobs over jobs that reached a verdict
        (completed or failed); skipped and cancelled jobs are excluded.
        """
        with self._lock:
            jobs = list(self._jobs.values())
            counts = {status: 0 for status in JobStatus}
            for job in jobs:
                counts[job.status] += 1

            method_breakdown: Dict[ScrapingMethod, int] = {}
            durations: List[int] = []
            for job in jobs:
                for result in job.results:
                    method_breakdown[result.method] = method_breakdown.get(result.method, 0) + 1
                    durations.append(result.duration_ms)

            decided = counts[JobStatus.COMPLETED] + counts[JobStatus.FAILED]
            return ScrapeSession(
                id=self._session_id,
                started_at=self._started_at,
                finished_at=finished_at,
                total_jobs=len(jobs),
                completed_jobs=counts[JobStatus.COMPLETED],
                failed_jobs=counts[JobStatus.FAILED],
                skipped_jobs=counts[JobStatus.SKIPPED],
                cancelled_jobs=counts[JobStatus.CANCELLED],
                total_cost=round(sum(job.cost_spent for job in jobs), 6),
                budget_remaining=dict(budget_remaining or {}),
                method_breakdown=method_breakdown,
                average_duration_ms=sum(durations) / len(durations) if durations else 0.0,
                success_rate=counts[JobStatus.COMPLETED] / decided if decided > 0 else 0.0,
                admission_errors=list(self._admission_errors),
                persistence_errors=list(self._persistence_errors),
            )
