"""Deterministic tests for method throttling with a fake clock."""

import asyncio

import pytest

from src.executors.rate_limiter import MethodThrottle, RateLimiter
from src.models.config import MethodRateLimit
from src.models.data_models import ScrapingMethod
from tests.fixtures.fakes import FakeMonotonic


class AdvancingSleeper:
    """Sleeper that moves the fake monotonic clock forward."""

    def __init__(self, monotonic: FakeMonotonic):
        self.monotonic = monotonic
        self.calls = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)
        self.monotonic.advance(seconds)


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def limiter(monotonic):
    limits = {
        ScrapingMethod.PLAYWRIGHT: MethodRateLimit(requests_per_minute=60, concurrent_requests=2),
        ScrapingMethod.FIRECRAWL: MethodRateLimit(requests_per_minute=6, concurrent_requests=1),
        ScrapingMethod.MANUAL: MethodRateLimit(requests_per_minute=0, concurrent_requests=1),
    }
    return RateLimiter(limits, retry_sleep=0.05, now=monotonic, sleeper=AdvancingSleeper(monotonic))


class TestRateLimiter:

    def test_refill_rate(self, limiter):
        assert limiter.refill_rate(ScrapingMethod.PLAYWRIGHT) == 1.0
        assert limiter.refill_rate(ScrapingMethod.FIRECRAWL) == 0.1
        assert limiter.refill_rate(ScrapingMethod.MANUAL) is None
        assert limiter.refill_rate(ScrapingMethod.VISION) is None

    def test_capacity(self, limiter):
        assert limiter.capacity(ScrapingMethod.PLAYWRIGHT) == 2.0
        assert limiter.capacity(ScrapingMethod.VISION) == 1.0

    @pytest.mark.asyncio
    async def test_unthrottled_method_never_sleeps(self, limiter):
        for _ in range(20):
            await limiter.acquire(ScrapingMethod.MANUAL)

        assert limiter._sleep.calls == []

    @pytest.mark.asyncio
    async def test_burst_up_to_capacity(self, limiter):
        await limiter.acquire(ScrapingMethod.PLAYWRIGHT)
        await limiter.acquire(ScrapingMethod.PLAYWRIGHT)

        assert limiter._sleep.calls == []
        assert limiter.tokens_available(ScrapingMethod.PLAYWRIGHT) == 0

    @pytest.mark.asyncio
    async def test_waits_for_refill(self, limiter, monotonic):
        await limiter.acquire(ScrapingMethod.PLAYWRIGHT)
        await limiter.acquire(ScrapingMethod.PLAYWRIGHT)

        await limiter.acquire(ScrapingMethod.PLAYWRIGHT)

        # One token per second at 60 rpm
        assert 1.0 - 1e-9 <= monotonic.value <= 1.1
        assert all(delay == 0.05 for delay in limiter._sleep.calls)

    @pytest.mark.asyncio
    async def test_refill_capped_at_capacity(self, limiter, monotonic):
        await limiter.acquire(ScrapingMethod.PLAYWRIGHT)
        monotonic.advance(600)

        assert limiter.tokens_available(ScrapingMethod.PLAYWRIGHT) == 2

    @pytest.mark.asyncio
    async def test_methods_have_separate_buckets(self, limiter):
        await limiter.acquire(ScrapingMethod.FIRECRAWL)
        assert limiter.tokens_available(ScrapingMethod.FIRECRAWL) == 0

        await limiter.acquire(ScrapingMethod.PLAYWRIGHT)

        assert limiter._sleep.calls == []


class TestMethodThrottle:

    async def _run_slots(self, throttle, method, tasks):
        active = 0
        peak = 0

        async def work():
            nonlocal active, peak
            async with throttle.slot(method):
                active += 1
                peak = max(peak, active)
                for _ in range(3):
                    await asyncio.sleep(0)
                active -= 1

        await asyncio.gather(*(work() for _ in range(tasks)))
        return peak

    @pytest.mark.asyncio
    async def test_single_slot_serializes(self):
        limits = {ScrapingMethod.VISION: MethodRateLimit(requests_per_minute=0, concurrent_requests=1)}

        peak = await self._run_slots(MethodThrottle(limits), ScrapingMethod.VISION, 4)

        assert peak == 1

    @pytest.mark.asyncio
    async def test_concurrency_cap(self):
        limits = {ScrapingMethod.PLAYWRIGHT: MethodRateLimit(requests_per_minute=0, concurrent_requests=2)}

        peak = await self._run_slots(MethodThrottle(limits), ScrapingMethod.PLAYWRIGHT, 6)

        assert peak == 2

    @pytest.mark.asyncio
    async def test_slot_takes_rate_token(self, monotonic):
        limits = {ScrapingMethod.FIRECRAWL: MethodRateLimit(requests_per_minute=60, concurrent_requests=1)}
        sleeper = AdvancingSleeper(monotonic)
        limiter = RateLimiter(limits, now=monotonic, sleeper=sleeper)
        throttle = MethodThrottle(limits, rate_limiter=limiter)

        async with throttle.slot(ScrapingMethod.FIRECRAWL):
            pass
        async with throttle.slot(ScrapingMethod.FIRECRAWL):
            pass

        assert sleeper.calls
        assert monotonic.value >= 1.0 - 1e-9
