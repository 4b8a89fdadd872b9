"""JSON output formatting for batch reports.

This module turns batch reports, jobs, cron log entries and vendor health
into JSON-serializable dictionaries. The same shapes are returned by the
HTTP trigger surface and written to disk by the CLI.
"""

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from src.models.data_models import (
    BatchReport,
    CronLog,
    ScheduledScrapeResult,
    ScrapeJob,
    ScrapeResult,
    ScrapeSession,
    ScrapingHealth,
)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def format_result(result: ScrapeResult) -> Dict[str, Any]:
    formatted: Dict[str, Any] = {
        "method": result.method.value,
        "status": result.status.value,
        "started_at": _iso(result.started_at),
        "completed_at": _iso(result.completed_at),
        "duration_ms": result.duration_ms,
        "actual_cost": result.actual_cost,
    }
    if result.data is not None:
        formatted["data"] = {
            "tiers": [
                {
                    "name": tier.name,
                    "price": tier.price,
                    "price_model": tier.price_model,
                    "confidence": tier.confidence,
                    "features": tier.features,
                    "user_limit": tier.user_limit,
                }
                for tier in result.data.tiers
            ]
        }
    if result.error is not None:
        formatted["error"] = {
            "message": result.error.message,
            "code": result.error.code,
            "should_retry": result.error.should_retry,
            "suggested_method": (
                result.error.suggested_method.value if result.error.suggested_method else None
            ),
        }
    return formatted


def format_job(job: ScrapeJob) -> Dict[str, Any]:
    return {
        "id": job.id,
        "vendor_id": job.vendor_id,
        "status": job.status.value,
        "priority": job.priority.value,
        "source": job.source.value,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "cost_spent": job.cost_spent,
        "max_cost": job.max_cost,
        "allowed_methods": [m.value for m in job.allowed_methods],
        "created_at": _iso(job.created_at),
        "scheduled_for": _iso(job.scheduled_for),
        "expires_at": _iso(job.expires_at),
        "started_at": _iso(job.started_at),
        "completed_at": _iso(job.completed_at),
        "last_error": job.last_error,
        "warning": job.warning,
        "cancel_reason": job.cancel_reason,
        "retry_of": job.retry_of,
        "results": [format_result(r) for r in job.results],
    }


def format_session(session: ScrapeSession) -> Dict[str, Any]:
    return {
        "id": session.id,
        "started_at": _iso(session.started_at),
        "finished_at": _iso(session.finished_at),
        "total_jobs": session.total_jobs,
        "completed_jobs": session.completed_jobs,
        "failed_jobs": session.failed_jobs,
        "skipped_jobs": session.skipped_jobs,
        "cancelled_jobs": session.cancelled_jobs,
        "total_cost": round(session.total_cost, 4),
        "budget_remaining": {p.value: v for p, v in session.budget_remaining.items()},
        "method_breakdown": {m.value: n for m, n in session.method_breakdown.items()},
        "average_duration_ms": round(session.average_duration_ms, 2),
        "success_rate": round(session.success_rate, 4),
        "admission_errors": session.admission_errors,
        "persistence_errors": session.persistence_errors,
    }


def format_queued(entry: ScheduledScrapeResult) -> Dict[str, Any]:
    return {
        "vendor": entry.vendor,
        "vendor_id": entry.vendor_id,
        "success": entry.success,
        "job_id": entry.job_id,
        "error": entry.error,
    }


def format_cron_log(log: CronLog) -> Dict[str, Any]:
    return {
        "id": log.id,
        "endpoint": log.endpoint,
        "status": log.status,
        "vendors_queued": log.vendors_queued,
        "vendors_failed": log.vendors_failed,
        "details": log.details,
        "error_message": log.error_message,
        "executed_at": _iso(log.executed_at),
        "duration_ms": log.duration_ms,
    }


def format_health(health: ScrapingHealth) -> Dict[str, Any]:
    return {
        "total_vendors": health.total_vendors,
        "active_vendors": health.active_vendors,
        "never_scraped": health.never_scraped,
        "stale_24h": health.stale_24h,
        "stale_7d": health.stale_7d,
        "failing_vendors": health.failing_vendors,
        "oldest_scrape": _iso(health.oldest_scrape),
        "newest_scrape": _iso(health.newest_scrape),
    }


class JSONOutputFormatter:
    """
    Formats batch reports as JSON.

    Example output structure:
    {
        "success": true,
        "message": "Queued 3 vendors, 2 completed, 1 failed",
        "vendors_queued": 3,
        "vendors_failed": 0,
        "session": {"id": "...", "total_cost": 0.01, ...},
        "queued": [{"vendor": "Notion", "success": true, "job_id": "..."}],
        "jobs": [{"id": "...", "status": "completed", "results": [...]}]
    }
    """

    def format(self, report: BatchReport) -> Dict[str, Any]:
        """
        Format a batch report as a JSON-serializable dictionary.

        Args:
            report: Completed batch report

        Returns:
            Dictionary with counts, session summary, queue results and jobs
        """
        failed = sum(1 for entry in report.queued if not entry.success)
        return {
            "success": True,
            "message": report.message,
            "vendors_queued": len(report.queued) - failed,
            "vendors_failed": failed,
            "session": format_session(report.session),
            "queued": [format_queued(entry) for entry in report.queued],
            "jobs": self._format_jobs(report.jobs),
        }

    def _format_jobs(self, jobs: List[ScrapeJob]) -> list:
        return [format_job(job) for job in jobs]

    def save(self, report: BatchReport, path: str = "out/session.json") -> None:
        """
        Save formatted report to JSON file.

        Creates parent directories if they don't exist.

        Args:
            report: Batch report to save
            path: Output file path (default: out/session.json)
        """
        output_path = Path(path)
        output_path.parent.mkdir(parents=True, exist_ok=True)

        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.format(report), f, indent=2, ensure_ascii=False)
