"""Priority queue of pending scrape jobs."""

import heapq
import itertools
import threading
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from src.models.clock import Clock, UTCClock
from src.models.data_models import JobStatus, ScrapeJob
from src.models.errors import JobNotFoundError, QueueFullError
from src.monitoring.logger import StructuredLogger


EXPIRED_REASON = "expired"

_HeapEntry = Tuple[int, datetime, int, str]


class JobQueue:
    """
    Bounded priority queue with TTL expiry and cancellation.

    Ordering is by priority weight (highest first), then earliest
    ``scheduled_for``, then insertion order. Dequeue never blocks and only
    returns jobs whose ``scheduled_for`` has passed. The queue does not
    limit concurrency; the orchestrator's worker pool does.

    Every job ever enqueued stays reachable through ``get`` so that
    running and finished jobs can still be inspected or cancelled.
    """

    def __init__(
        self,
        max_size: int = 1000,
        clock: Optional[Clock] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.max_size = max_size
        self.clock = clock or UTCClock()
        self.logger = logger
        self._heap: List[_HeapEntry] = []
        self._jobs: Dict[str, ScrapeJob] = {}
        self._counter = itertools.count()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return self.size()

    def size(self) -> int:
        """Number of jobs waiting in the queue."""
        with self._lock:
            return self._queued_count()

    def _queued_count(self) -> int:
        return sum(1 for _, _, _, job_id in self._heap if self._jobs[job_id].status == JobStatus.QUEUED)

    def enqueue(self, job: ScrapeJob) -> ScrapeJob:
        """
        Admit a job.

        Raises:
            QueueFullError: If the queue already holds ``max_size`` jobs
        """
        with self._lock:
            self._compact()
            if self._queued_count() >= self.max_size:
                raise QueueFullError(self.max_size)
            job.status = JobStatus.QUEUED
            self._jobs[job.id] = job
            self._push(job)
            depth = self._queued_count()
        if self.logger:
            self.logger.queue_depth(depth)
        return job

    def requeue(self, job: ScrapeJob, scheduled_for: Optional[datetime] = None) -> ScrapeJob:
        """Put a job back for another pickup, ignoring the size limit."""
        with self._lock:
            job.status = JobStatus.QUEUED
            job.started_at = None
            if scheduled_for is not None:
                job.scheduled_for = scheduled_for
            self._jobs[job.id] = job
            self._push(job)
        return job

    def dequeue(self) -> Optional[ScrapeJob]:
        """
        Remove and return the highest-priority ready job.

        Expired jobs met on the way are cancelled with reason ``expired``.

        Returns:
            The job, now in RUNNING state, or None if nothing is ready
        """
        now = self.clock.now()
        with self._lock:
            deferred: List[_HeapEntry] = []
            picked: Optional[ScrapeJob] = None
            while self._heap:
                entry = heapq.heappop(self._heap)
                job = self._jobs[entry[3]]
                if job.status != JobStatus.QUEUED:
                    continue
                if job.expires_at <= now:
                    self._expire(job, now)
                    continue
                if job.scheduled_for > now:
                    deferred.append(entry)
                    continue
                picked = job
                break
            for entry in deferred:
                heapq.heappush(self._heap, entry)

            if picked is not None:
                picked.status = JobStatus.RUNNING
                picked.started_at = now
            return picked

    def sweep_expired(self) -> List[ScrapeJob]:
        """Cancel every queued job past its TTL; returns the expired jobs."""
        now = self.clock.now()
        expired: List[ScrapeJob] = []
        with self._lock:
            for job in self._jobs.values():
                if job.status == JobStatus.QUEUED and job.expires_at <= now:
                    self._expire(job, now)
                    expired.append(job)
            self._compact()
        return expired

    def cancel(self, job_id: str, reason: str = "cancelled") -> ScrapeJob:
        """
        Cancel a job.

        Queued jobs are cancelled immediately. Running jobs get a cooperative
        cancel request that the orchestrator honours between attempts.
        Terminal jobs are returned unchanged.

        Raises:
            JobNotFoundError: If the job id is unknown
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.status == JobStatus.QUEUED:
                job.status = JobStatus.CANCELLED
                job.cancel_reason = reason
                job.completed_at = self.clock.now()
            elif job.status == JobStatus.RUNNING:
                job.cancel_requested = True
                job.cancel_reason = reason
            return job

    def get(self, job_id: str) -> ScrapeJob:
        with self._lock:
            job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def pending_jobs(self) -> List[ScrapeJob]:
        """Queued jobs in dequeue order (readiness ignored)."""
        with self._lock:
            entries = sorted(e for e in self._heap if self._jobs[e[3]].status == JobStatus.QUEUED)
            return [self._jobs[e[3]] for e in entries]

    def stats(self) -> Dict[str, int]:
        with self._lock:
            counts = {status.value: 0 for status in JobStatus}
            for job in self._jobs.values():
                counts[job.status.value] += 1
            counts["size"] = self._queued_count()
            return counts

    def _push(self, job: ScrapeJob) -> None:
        heapq.heappush(
            self._heap,
            (-job.priority.weight, job.scheduled_for, next(self._counter), job.id),
        )

    def _expire(self, job: ScrapeJob, now: datetime) -> None:
        job.status = JobStatus.CANCELLED
        job.cancel_reason = EXPIRED_REASON
        job.completed_at = now

    def _compact(self) -> None:
        # Drop heap entries for jobs that are no longer queued
        live = [e for e in self._heap if self._jobs[e[3]].status == JobStatus.QUEUED]
        if len(live) != len(self._heap):
            heapq.heapify(live)
            self._heap = live
