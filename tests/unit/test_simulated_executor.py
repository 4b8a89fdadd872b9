"""Unit tests for offline executors and executor routing."""

import pytest

from src.executors import (
    ExecutorRegistry,
    HttpExtractionExecutor,
    ManualReviewExecutor,
    SimulatedExecutor,
    build_executor,
)
from src.models.config import OrchestratorConfig
from src.models.data_models import AUTOMATED_METHODS, ScrapeStatus, ScrapingMethod
from src.models.errors import ConfigurationError
from tests.fixtures.fakes import FakeSleeper
from tests.fixtures.sample_data import make_vendor


@pytest.fixture
def vendor():
    return make_vendor("acme")


class TestSimulatedExecutor:

    @pytest.mark.asyncio
    async def test_same_seed_same_outcomes(self, vendor, fake_clock):
        first = SimulatedExecutor(seed=42, clock=fake_clock)
        second = SimulatedExecutor(seed=42, clock=fake_clock)

        a = [await first.execute(vendor, ScrapingMethod.PLAYWRIGHT) for _ in range(20)]
        b = [await second.execute(vendor, ScrapingMethod.PLAYWRIGHT) for _ in range(20)]

        assert [r.status for r in a] == [r.status for r in b]
        assert {r.status for r in a} <= {ScrapeStatus.SUCCESS, ScrapeStatus.FAILED}

    @pytest.mark.asyncio
    async def test_success_reports_tiers_and_cost(self, vendor, fake_clock):
        executor = SimulatedExecutor(seed=1, success_rates={m: 1.0 for m in AUTOMATED_METHODS}, clock=fake_clock)

        result = await executor.execute(vendor, ScrapingMethod.VISION)

        assert result.status == ScrapeStatus.SUCCESS
        assert result.actual_cost == 0.02
        assert [t.name for t in result.data.tiers] == ["Starter", "Pro"]
        assert result.error is None

    @pytest.mark.asyncio
    async def test_failure_is_retryable(self, vendor, fake_clock):
        executor = SimulatedExecutor(
            seed=1,
            success_rates={ScrapingMethod.FIRECRAWL: 0.0},
            method_costs={ScrapingMethod.FIRECRAWL: 0.03},
            clock=fake_clock,
        )

        result = await executor.execute(vendor, ScrapingMethod.FIRECRAWL)

        assert result.status == ScrapeStatus.FAILED
        assert result.error.should_retry is True
        assert result.error.code == "SIMULATED_FAILURE"
        assert result.actual_cost == 0.03

    @pytest.mark.asyncio
    async def test_latency_uses_sleeper(self, vendor, fake_clock):
        sleeper = FakeSleeper(fake_clock)
        executor = SimulatedExecutor(seed=1, latency_seconds=1.5, clock=fake_clock, sleeper=sleeper)

        result = await executor.execute(vendor, ScrapingMethod.PLAYWRIGHT)

        assert sleeper.calls == [1.5]
        assert result.duration_ms == 1500


class TestManualReviewExecutor:

    @pytest.mark.asyncio
    async def test_skips_for_human(self, vendor, fake_clock):
        result = await ManualReviewExecutor(clock=fake_clock).execute(vendor, ScrapingMethod.MANUAL)

        assert result.status == ScrapeStatus.SKIPPED
        assert result.actual_cost == 0.0
        assert result.error.should_retry is False
        assert result.error.code == "MANUAL_REVIEW_REQUIRED"


class TestExecutorRouting:

    @pytest.mark.asyncio
    async def test_unregistered_method(self, vendor):
        registry = ExecutorRegistry()

        with pytest.raises(ConfigurationError):
            await registry.execute(vendor, ScrapingMethod.VISION)

    def test_build_simulated_by_default(self):
        registry = build_executor(OrchestratorConfig(budget_state_file=None), seed=3)

        assert isinstance(registry.for_method(ScrapingMethod.PLAYWRIGHT), SimulatedExecutor)
        assert registry.for_method(ScrapingMethod.VISION) is registry.for_method(ScrapingMethod.FIRECRAWL)
        assert isinstance(registry.for_method(ScrapingMethod.MANUAL), ManualReviewExecutor)

    def test_build_http_executor(self):
        config = OrchestratorConfig(
            budget_state_file=None,
            simulate_executors=False,
            extraction_api_url="https://extract.example.com",
        )

        registry = build_executor(config)

        assert isinstance(registry.for_method(ScrapingMethod.FIRECRAWL), HttpExtractionExecutor)
        assert isinstance(registry.for_method(ScrapingMethod.MANUAL), ManualReviewExecutor)

    def test_missing_url_falls_back_to_simulation(self):
        config = OrchestratorConfig(budget_state_file=None, simulate_executors=False)

        registry = build_executor(config)

        assert isinstance(registry.for_method(ScrapingMethod.PLAYWRIGHT), SimulatedExecutor)
