"""Scheduling service: the persistence boundary for vendors, jobs and cron logs."""

import uuid
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Protocol

from src.jobs.factory import build_job
from src.models.clock import Clock, UTCClock
from src.models.config import OrchestratorConfig, VendorScrapeConfig
from src.models.data_models import (
    CronLog,
    JobSource,
    ScheduledScrapeResult,
    ScrapeJob,
    ScrapingHealth,
    VendorForScraping,
)
from src.models.errors import JobNotFoundError, VendorNotFoundError
from src.monitoring.logger import StructuredLogger
from src.selection.circuit_breaker import VendorCircuitBreaker


class SchedulingService(Protocol):
    """Typed data access used by the orchestrator."""

    async def get_vendors_for_scheduled_scrape(self, max_vendors: int) -> List[VendorForScraping]:
        ...

    async def queue_scrape_jobs(
        self, vendors: List[VendorForScraping], source: JobSource = JobSource.SCHEDULED
    ) -> List[ScheduledScrapeResult]:
        ...

    async def log_cron_execution(
        self,
        endpoint: str,
        status: str,
        details: Dict[str, Any],
        error_message: Optional[str] = None,
    ) -> CronLog:
        ...

    async def update_vendor_scrape_status(
        self, vendor_id: str, success: bool, error_message: Optional[str] = None
    ) -> None:
        ...

    async def get_vendor(self, vendor_id: str) -> VendorScrapeConfig:
        ...

    async def save_vendor(self, vendor: VendorScrapeConfig) -> None:
        ...

    async def deactivate_vendor(self, vendor_id: str, reason: str) -> VendorScrapeConfig:
        ...

    async def reactivate_vendor(self, vendor_id: str) -> VendorScrapeConfig:
        ...

    async def get_job(self, job_id: str) -> ScrapeJob:
        ...

    async def update_job(self, job: ScrapeJob) -> None:
        ...

    async def get_recent_cron_logs(self, limit: int = 10) -> List[CronLog]:
        ...

    async def get_scraping_health(self) -> ScrapingHealth:
        ...


class InMemorySchedulingService:
    """
    Process-local implementation of ``SchedulingService``.

    Vendors are held as the validated config objects themselves, so the
    orchestrator and the service see the same failure counters. Cron logs
    are append-only.
    """

    def __init__(
        self,
        vendors: Iterable[VendorScrapeConfig],
        config: Optional[OrchestratorConfig] = None,
        clock: Optional[Clock] = None,
        circuit_breaker: Optional[VendorCircuitBreaker] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        self.config = config or OrchestratorConfig()
        self.clock = clock or UTCClock()
        self.logger = logger
        self.circuit_breaker = circuit_breaker or VendorCircuitBreaker(
            failure_threshold=self.config.escalation.circuit_breaker_threshold,
            logger=logger,
        )
        self._vendors: Dict[str, VendorScrapeConfig] = {v.vendor_id: v for v in vendors}
        self._jobs: Dict[str, ScrapeJob] = {}
        self._cron_logs: List[CronLog] = []

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def is_due(self, vendor: VendorScrapeConfig) -> bool:
        if not vendor.is_active:
            return False
        hours = vendor.hours_since_scrape(self.clock.now())
        return hours is None or hours >= vendor.scrape_frequency.interval_hours

    async def get_vendors_for_scheduled_scrape(self, max_vendors: int) -> List[VendorForScraping]:
        """
        Active vendors whose frequency interval has elapsed.

        Ordered by priority weight, then staleness (never-scraped first).
        """
        now = self.clock.now()
        due = [v for v in self._vendors.values() if self.is_due(v)]

        def staleness(vendor: VendorScrapeConfig) -> float:
            hours = vendor.hours_since_scrape(now)
            return float("inf") if hours is None else hours

        due.sort(key=lambda v: (-v.priority.weight, -staleness(v)))
        return [
            VendorForScraping(
                id=v.vendor_id,
                name=v.vendor_name,
                last_scraped_at=v.last_scraped_at,
                scrape_priority=v.priority,
                hours_since_scrape=v.hours_since_scrape(now),
            )
            for v in due[:max_vendors]
        ]

    async def queue_scrape_jobs(
        self, vendors: List[VendorForScraping], source: JobSource = JobSource.SCHEDULED
    ) -> List[ScheduledScrapeResult]:
        results: List[ScheduledScrapeResult] = []
        for entry in vendors:
            vendor = self._vendors.get(entry.id)
            if vendor is None:
                results.append(ScheduledScrapeResult(
                    vendor=entry.name, vendor_id=entry.id, success=False,
                    error=f"Vendor {entry.id} not found",
                ))
                continue
            if not vendor.is_active:
                results.append(ScheduledScrapeResult(
                    vendor=entry.name, vendor_id=entry.id, success=False,
                    error=f"Vendor {entry.id} is deactivated",
                ))
                continue

            job = build_job(vendor, self.config, self.clock.now(), source=source)
            self._jobs[job.id] = job
            results.append(ScheduledScrapeResult(
                vendor=entry.name, vendor_id=entry.id, success=True, job_id=job.id,
            ))
        return results

    async def add_job(self, job: ScrapeJob) -> None:
        self._jobs[job.id] = job

    async def get_job(self, job_id: str) -> ScrapeJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def update_job(self, job: ScrapeJob) -> None:
        self._jobs[job.id] = job

    # ------------------------------------------------------------------
    # Vendors
    # ------------------------------------------------------------------

    async def get_vendor(self, vendor_id: str) -> VendorScrapeConfig:
        vendor = self._vendors.get(vendor_id)
        if vendor is None:
            raise VendorNotFoundError(vendor_id)
        return vendor

    async def list_vendors(self) -> List[VendorScrapeConfig]:
        return list(self._vendors.values())

    async def save_vendor(self, vendor: VendorScrapeConfig) -> None:
        self._vendors[vendor.vendor_id] = vendor

    async def update_vendor_scrape_status(
        self, vendor_id: str, success: bool, error_message: Optional[str] = None
    ) -> None:
        """Stamp the scrape outcome and feed the vendor circuit breaker."""
        vendor = await self.get_vendor(vendor_id)
        now = self.clock.now()
        if success:
            vendor.last_successful_scrape = now
            self.circuit_breaker.record_success(vendor)
        else:
            vendor.last_failed_scrape = now
            self.circuit_breaker.record_failure(vendor, error_message)

    async def deactivate_vendor(self, vendor_id: str, reason: str) -> VendorScrapeConfig:
        vendor = await self.get_vendor(vendor_id)
        vendor.is_active = False
        vendor.deactivation_reason = reason
        return vendor

    async def reactivate_vendor(self, vendor_id: str) -> VendorScrapeConfig:
        vendor = await self.get_vendor(vendor_id)
        self.circuit_breaker.reactivate(vendor)
        if self.logger:
            self.logger.log("vendor_reactivated", vendor=vendor_id)
        return vendor

    # ------------------------------------------------------------------
    # Audit and health
    # ------------------------------------------------------------------

    async def log_cron_execution(
        self,
        endpoint: str,
        status: str,
        details: Dict[str, Any],
        error_message: Optional[str] = None,
    ) -> CronLog:
        entry = CronLog(
            id=str(uuid.uuid4()),
            endpoint=endpoint,
            status=status,
            vendors_queued=details.get("vendors_queued", 0),
            vendors_failed=details.get("vendors_failed", 0),
            details=dict(details),
            error_message=error_message,
            executed_at=self.clock.now(),
            duration_ms=details.get("duration_ms"),
        )
        self._cron_logs.append(entry)
        return entry

    async def get_recent_cron_logs(self, limit: int = 10) -> List[CronLog]:
        ordered = sorted(self._cron_logs, key=lambda log: log.executed_at, reverse=True)
        return ordered[:limit]

    async def get_scraping_health(self) -> ScrapingHealth:
        now = self.clock.now()
        vendors = list(self._vendors.values())
        stamps = [v.last_scraped_at for v in vendors if v.last_scraped_at is not None]

        def stale(vendor: VendorScrapeConfig, hours: int) -> bool:
            last = vendor.last_scraped_at
            return last is not None and now - last > timedelta(hours=hours)

        return ScrapingHealth(
            total_vendors=len(vendors),
            active_vendors=sum(1 for v in vendors if v.is_active),
            never_scraped=sum(1 for v in vendors if v.last_scraped_at is None),
            stale_24h=sum(1 for v in vendors if stale(v, 24)),
            stale_7d=sum(1 for v in vendors if stale(v, 24 * 7)),
            failing_vendors=sum(1 for v in vendors if v.consecutive_failures > 0),
            oldest_scrape=min(stamps) if stamps else None,
            newest_scrape=max(stamps) if stamps else None,
        )
