"""Executors that need no network access."""

import random
from typing import Dict, Optional

from src.executors.base import failed_result
from src.models.clock import Clock, Sleeper, UTCClock, default_sleeper
from src.models.config import VendorScrapeConfig
from src.models.data_models import (
    PricingTier,
    ScrapeData,
    ScrapeError,
    ScrapeResult,
    ScrapeStatus,
    ScrapingMethod,
)


DEFAULT_SUCCESS_RATES: Dict[ScrapingMethod, float] = {
    ScrapingMethod.PLAYWRIGHT: 0.70,
    ScrapingMethod.FIRECRAWL: 0.90,
    ScrapingMethod.VISION: 0.95,
}

DEFAULT_COSTS: Dict[ScrapingMethod, float] = {
    ScrapingMethod.PLAYWRIGHT: 0.0,
    ScrapingMethod.FIRECRAWL: 0.01,
    ScrapingMethod.VISION: 0.02,
    ScrapingMethod.MANUAL: 0.0,
}


class SimulatedExecutor:
    """
    Seeded stand-in for the real scraping backends.

    Used for dry runs and local batches. Each method succeeds with its
    configured probability; failures are retryable. Successful paid
    attempts report the table cost as their actual cost.
    """

    def __init__(
        self,
        seed: Optional[int] = None,
        success_rates: Optional[Dict[ScrapingMethod, float]] = None,
        method_costs: Optional[Dict[ScrapingMethod, float]] = None,
        latency_seconds: float = 0.0,
        clock: Optional[Clock] = None,
        sleeper: Sleeper = default_sleeper,
    ):
        self._random = random.Random(seed)
        self.success_rates = {**DEFAULT_SUCCESS_RATES, **(success_rates or {})}
        self.method_costs = {**DEFAULT_COSTS, **(method_costs or {})}
        self.latency_seconds = latency_seconds
        self.clock = clock or UTCClock()
        self._sleep = sleeper

    async def execute(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> ScrapeResult:
        started_at = self.clock.now()
        if self.latency_seconds > 0:
            await self._sleep(self.latency_seconds)

        cost = self.method_costs.get(method, 0.0)
        if self._random.random() >= self.success_rates.get(method, 0.0):
            return failed_result(
                vendor.vendor_id,
                method,
                started_at,
                self.clock.now(),
                message=f"Simulated {method.value} extraction failure",
                should_retry=True,
                code="SIMULATED_FAILURE",
                actual_cost=cost,
            )

        return ScrapeResult(
            vendor_id=vendor.vendor_id,
            method=method,
            status=ScrapeStatus.SUCCESS,
            started_at=started_at,
            completed_at=self.clock.now(),
            actual_cost=cost,
            data=ScrapeData(tiers=self._tiers(vendor)),
        )

    def _tiers(self, vendor: VendorScrapeConfig):
        base = round(self._random.uniform(5, 50), 2)
        return [
            PricingTier(name="Starter", price=base, price_model="per_month", confidence=0.9),
            PricingTier(name="Pro", price=round(base * 2.5, 2), price_model="per_month", confidence=0.85),
        ]


class ManualReviewExecutor:
    """Hands the vendor to a human; never extracts anything itself."""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or UTCClock()

    async def execute(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> ScrapeResult:
        now = self.clock.now()
        return ScrapeResult(
            vendor_id=vendor.vendor_id,
            method=method,
            status=ScrapeStatus.SKIPPED,
            started_at=now,
            completed_at=now,
            error=ScrapeError(
                message="Manual scraping requires human intervention",
                should_retry=False,
                code="MANUAL_REVIEW_REQUIRED",
            ),
        )
