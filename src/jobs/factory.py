"""Construction of scrape jobs from vendor configuration."""

import uuid
from datetime import datetime, timedelta
from typing import Optional

from src.models.config import OrchestratorConfig, VendorScrapeConfig
from src.models.data_models import JobPriority, JobSource, ScrapeJob


def build_job(
    vendor: VendorScrapeConfig,
    config: OrchestratorConfig,
    now: datetime,
    source: JobSource = JobSource.SCHEDULED,
    priority: Optional[JobPriority] = None,
    scheduled_for: Optional[datetime] = None,
    retry_of: Optional[str] = None,
) -> ScrapeJob:
    """
    Create a queued job for ``vendor``.

    Allowed methods and the spend ceiling come from the vendor's tier
    policy and override entry; the TTL and attempt limit from queue settings.
    """
    return ScrapeJob(
        id=str(uuid.uuid4()),
        vendor_id=vendor.vendor_id,
        priority=priority or vendor.priority,
        allowed_methods=config.allowed_methods_for(vendor),
        max_cost=config.max_cost_for(vendor),
        scheduled_for=scheduled_for or now,
        created_at=now,
        expires_at=now + timedelta(hours=config.queue.job_ttl_hours),
        source=source,
        max_attempts=config.queue.default_max_attempts,
        retry_of=retry_of,
    )
