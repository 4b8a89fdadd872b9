"""Tests for the FastAPI trigger surface."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from src.api.app import bearer_matches, create_app
from src.jobs.factory import build_job
from src.models.config import OrchestratorConfig
from src.models.data_models import ScrapeStatus, ScrapingMethod
from src.orchestrator.orchestrator import CRON_ENDPOINT
from src.scheduling.service import InMemorySchedulingService
from tests.fixtures.runtime import build_test_runtime
from tests.fixtures.sample_data import ScriptedExecutor, make_vendor


AUTH = {"Authorization": "Bearer s3cret"}


@pytest.fixture
def api_config():
    return OrchestratorConfig(budget_state_file=None, cron_secret="s3cret")


@pytest.fixture
def runtime(api_config, fake_clock):
    vendors = [make_vendor("acme"), make_vendor("globex")]
    executor = ScriptedExecutor({ScrapingMethod.PLAYWRIGHT: [ScrapeStatus.SUCCESS] * 2})
    return build_test_runtime(fake_clock, vendors, executor, config=api_config)


@pytest.fixture
def client(runtime):
    with TestClient(create_app(runtime=runtime)) as test_client:
        yield test_client


class TestBearerMatches:

    def test_matches(self):
        assert bearer_matches("Bearer s3cret", "s3cret")
        assert not bearer_matches("Bearer wrong", "s3cret")
        assert not bearer_matches("s3cret", "s3cret")
        assert not bearer_matches(None, "s3cret")

    def test_open_without_secret(self):
        assert bearer_matches(None, None)
        assert bearer_matches("Bearer anything", "")


class TestCronTrigger:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_requires_bearer_secret(self, client, runtime):
        response = client.get(CRON_ENDPOINT)

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}
        runtime.logger.log.assert_called_with("unauthorized_request", path=CRON_ENDPOINT)

    def test_rejects_wrong_secret(self, client):
        response = client.post(CRON_ENDPOINT, headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    def test_runs_batch(self, client):
        response = client.get(CRON_ENDPOINT, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["vendors_queued"] == 2
        assert body["vendors_failed"] == 0
        assert body["session"]["completed_jobs"] == 2
        assert {job["status"] for job in body["jobs"]} == {"completed"}

    def test_post_runs_batch(self, client):
        response = client.post(CRON_ENDPOINT, headers=AUTH)
        assert response.status_code == 200
        assert response.json()["vendors_queued"] == 2

    def test_batch_start_failure(self, api_config, fake_clock):
        class BrokenScheduling(InMemorySchedulingService):
            async def get_vendors_for_scheduled_scrape(self, max_vendors):
                raise IOError("database unavailable")

        scheduling = BrokenScheduling([], config=api_config, clock=fake_clock)
        runtime = build_test_runtime(fake_clock, [], ScriptedExecutor(), config=api_config, scheduling=scheduling)

        with TestClient(create_app(runtime=runtime)) as client:
            response = client.get(CRON_ENDPOINT, headers=AUTH)

        assert response.status_code == 500
        assert response.json()["error"] == "Cron job failed"
        assert "database unavailable" in response.json()["details"]

    def test_open_when_no_secret_configured(self, fake_clock):
        runtime = build_test_runtime(fake_clock, [], ScriptedExecutor())
        with TestClient(create_app(runtime=runtime)) as client:
            response = client.get(CRON_ENDPOINT)
        assert response.status_code == 200
        assert response.json()["vendors_queued"] == 0

    def test_cron_logs(self, client):
        client.get(CRON_ENDPOINT, headers=AUTH)
        client.get(CRON_ENDPOINT, headers=AUTH)

        response = client.get("/api/cron/logs", params={"limit": 1})

        logs = response.json()["logs"]
        assert len(logs) == 1
        assert logs[0]["endpoint"] == CRON_ENDPOINT
        assert logs[0]["status"] == "success"


class TestBudgetRoutes:

    def test_budget_status(self, client):
        response = client.get("/api/budget/status")

        data = response.json()["data"]
        assert data["budget"]["limits"]["daily"] == 3.0
        assert data["health"]["status"] == "healthy"
        assert data["can_scrape"] is True

    def test_emergency_shutdown_requires_secret(self, client):
        response = client.post("/api/budget/emergency-shutdown", json={"reason": "test"})
        assert response.status_code == 401

    def test_emergency_shutdown(self, client, runtime):
        response = client.post("/api/budget/emergency-shutdown", json={"reason": "runaway"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["data"]["can_scrape"] is False
        assert not runtime.ledger.can_afford(ScrapingMethod.FIRECRAWL)


class TestOperatorRoutes:

    def test_cancel_unknown_job(self, client):
        response = client.post("/api/jobs/missing/cancel", headers=AUTH)
        assert response.status_code == 404

    def test_cancel_queued_job(self, client, runtime, fake_clock):
        vendor = make_vendor("acme")
        job = build_job(vendor, runtime.config, fake_clock.now())
        runtime.orchestrator.queue.enqueue(job)

        response = client.post(f"/api/jobs/{job.id}/cancel", json={"reason": "duplicate"}, headers=AUTH)

        assert response.status_code == 200
        assert response.json()["job"]["status"] == "cancelled"
        assert response.json()["job"]["cancel_reason"] == "duplicate"

    def test_cancel_completed_job_conflicts(self, client):
        job_id = client.get(CRON_ENDPOINT, headers=AUTH).json()["jobs"][0]["id"]

        response = client.post(f"/api/jobs/{job_id}/cancel", headers=AUTH)

        assert response.status_code == 409

    def test_retry_routes(self, client):
        assert client.post("/api/jobs/missing/retry", headers=AUTH).status_code == 404

        job_id = client.get(CRON_ENDPOINT, headers=AUTH).json()["jobs"][0]["id"]
        assert client.post(f"/api/jobs/{job_id}/retry", headers=AUTH).status_code == 409

    def test_retry_cancelled_job(self, client, runtime, fake_clock):
        job = build_job(make_vendor("acme"), runtime.config, fake_clock.now())
        runtime.orchestrator.queue.enqueue(job)
        client.post(f"/api/jobs/{job.id}/cancel", headers=AUTH)

        response = client.post(f"/api/jobs/{job.id}/retry", headers=AUTH)

        assert response.status_code == 200
        assert response.json()["job"]["retry_of"] == job.id
        assert response.json()["job"]["source"] == "retry"

    def test_reactivate_vendor(self, client, runtime):
        assert client.post("/api/vendors/ghost/reactivate", headers=AUTH).status_code == 404

        response = client.post("/api/vendors/acme/reactivate", headers=AUTH)

        assert response.status_code == 200
        assert response.json() == {"success": True, "vendor_id": "acme", "is_active": True}

    def test_scraping_health(self, client):
        client.get(CRON_ENDPOINT, headers=AUTH)

        data = client.get("/api/scraping/health").json()["data"]

        assert data["total_vendors"] == 2
        assert data["never_scraped"] == 0
        assert data["failing_vendors"] == 0


class TestLifespan:

    def test_shutdown_releases_executor_connections(self, runtime):
        runtime.orchestrator.executor.aclose = AsyncMock()

        with TestClient(create_app(runtime=runtime)) as client:
            client.get("/health")
            runtime.orchestrator.executor.aclose.assert_not_awaited()

        runtime.orchestrator.executor.aclose.assert_awaited_once()
