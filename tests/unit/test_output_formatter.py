"""Unit tests for JSON output formatter."""

import json
from datetime import datetime

import pytest

from src.models.data_models import (
    BatchReport,
    BudgetPeriod,
    CronLog,
    JobStatus,
    ScheduledScrapeResult,
    ScrapeSession,
    ScrapeStatus,
    ScrapingHealth,
    ScrapingMethod,
)
from src.orchestrator.output import (
    JSONOutputFormatter,
    format_cron_log,
    format_health,
    format_job,
    format_result,
)
from tests.fixtures.sample_data import RESULT_TIME, failure_result, make_job, success_result


@pytest.fixture
def completed_job():
    job = make_job("acme", job_id="job-1")
    job.status = JobStatus.COMPLETED
    job.attempts = 2
    job.cost_spent = 0.01
    job.results = [
        failure_result("acme", ScrapingMethod.PLAYWRIGHT, message="blocked"),
        success_result("acme", ScrapingMethod.FIRECRAWL),
    ]
    return job


@pytest.fixture
def sample_report(completed_job):
    session = ScrapeSession(
        id="session-1",
        started_at=RESULT_TIME,
        finished_at=RESULT_TIME,
        total_jobs=1,
        completed_jobs=1,
        total_cost=0.0123456,
        budget_remaining={BudgetPeriod.DAILY: 2.99},
        method_breakdown={ScrapingMethod.PLAYWRIGHT: 1, ScrapingMethod.FIRECRAWL: 1},
        average_duration_ms=175.0,
        success_rate=2 / 3,
    )
    queued = [
        ScheduledScrapeResult(vendor="Acme", vendor_id="acme", success=True, job_id="job-1"),
        ScheduledScrapeResult(vendor="Globex", vendor_id="globex", success=False, error="db down"),
    ]
    return BatchReport(session=session, queued=queued, jobs=[completed_job],
                       message="Queued 1 vendors, 1 completed, 0 failed")


class TestFormatResult:

    def test_success_has_tiers(self):
        formatted = format_result(success_result("acme", ScrapingMethod.VISION))

        assert formatted["method"] == "vision"
        assert formatted["status"] == "success"
        assert formatted["duration_ms"] == 250
        assert formatted["actual_cost"] == 0.02
        assert formatted["data"]["tiers"][0]["name"] == "Pro"
        assert "error" not in formatted

    def test_failure_has_error(self):
        result = failure_result(
            "acme",
            ScrapingMethod.PLAYWRIGHT,
            status=ScrapeStatus.FAILED,
            should_retry=False,
            code="403",
            suggested_method=ScrapingMethod.VISION,
        )

        formatted = format_result(result)

        assert formatted["status"] == "failed"
        assert formatted["error"] == {
            "message": "playwright failed",
            "code": "403",
            "should_retry": False,
            "suggested_method": "vision",
        }
        assert "data" not in formatted


class TestFormatJob:

    def test_job_fields(self, completed_job):
        formatted = format_job(completed_job)

        assert formatted["id"] == "job-1"
        assert formatted["status"] == "completed"
        assert formatted["priority"] == "normal"
        assert formatted["source"] == "manual"
        assert formatted["allowed_methods"] == ["playwright", "firecrawl", "vision"]
        assert formatted["created_at"] == "2025-01-15T12:00:00"
        assert formatted["started_at"] is None
        assert [r["method"] for r in formatted["results"]] == ["playwright", "firecrawl"]


class TestJSONOutputFormatter:

    def test_format_structure(self, sample_report):
        output = JSONOutputFormatter().format(sample_report)

        assert output["success"] is True
        assert output["message"] == "Queued 1 vendors, 1 completed, 0 failed"
        assert output["vendors_queued"] == 1
        assert output["vendors_failed"] == 1
        assert output["queued"][1] == {
            "vendor": "Globex",
            "vendor_id": "globex",
            "success": False,
            "job_id": None,
            "error": "db down",
        }
        assert len(output["jobs"]) == 1

    def test_session_rounding_and_enum_keys(self, sample_report):
        session = JSONOutputFormatter().format(sample_report)["session"]

        assert session["total_cost"] == 0.0123
        assert session["success_rate"] == 0.6667
        assert session["budget_remaining"] == {"daily": 2.99}
        assert session["method_breakdown"] == {"playwright": 1, "firecrawl": 1}

    def test_save_creates_directories(self, sample_report, tmp_path):
        path = tmp_path / "nested" / "out" / "session.json"

        JSONOutputFormatter().save(sample_report, str(path))

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["session"]["id"] == "session-1"
        assert data["jobs"][0]["results"][1]["status"] == "success"


class TestFormatAuxiliary:

    def test_cron_log(self):
        log = CronLog(
            id="log-1",
            endpoint="/api/cron/scheduled-scrape",
            status="warning",
            vendors_queued=2,
            vendors_failed=1,
            details={"message": "Queued 2 vendors"},
            error_message=None,
            executed_at=datetime(2025, 1, 15, 12, 0),
            duration_ms=1500,
        )

        formatted = format_cron_log(log)

        assert formatted["status"] == "warning"
        assert formatted["executed_at"] == "2025-01-15T12:00:00"
        assert formatted["details"] == {"message": "Queued 2 vendors"}

    def test_health(self):
        health = ScrapingHealth(
            total_vendors=6,
            active_vendors=5,
            never_scraped=1,
            stale_24h=2,
            stale_7d=0,
            failing_vendors=1,
            oldest_scrape=None,
            newest_scrape=datetime(2025, 1, 15, 11, 0),
        )

        formatted = format_health(health)

        assert formatted["oldest_scrape"] is None
        assert formatted["newest_scrape"] == "2025-01-15T11:00:00"
        assert formatted["failing_vendors"] == 1
