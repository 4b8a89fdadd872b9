"""Per-method request throttling: token bucket plus concurrency cap."""

import asyncio
import time
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Dict, Optional, Tuple

from src.models.clock import Sleeper, default_sleeper
from src.models.config import MethodRateLimit
from src.models.data_models import ScrapingMethod


class RateLimiter:
    """Token bucket rate limiter keyed by scraping method.

    Each method gets a bucket sized by its concurrent request cap and
    refilled at ``requests_per_minute / 60`` tokens per second. When the
    bucket is empty the caller sleeps ``retry_sleep`` and tries again.
    """

    def __init__(
        self,
        limits: Dict[ScrapingMethod, MethodRateLimit],
        retry_sleep: float = 0.05,
        now: Callable[[], float] = time.monotonic,
        sleeper: Sleeper = default_sleeper,
    ):
        """Initialize rate limiter.

        Args:
            limits: Requests/minute and concurrency per method
            retry_sleep: Sleep duration when tokens unavailable
            now: Clock function for time operations (default: time.monotonic)
            sleeper: Async sleep function (default: asyncio.sleep)
        """
        self.limits = limits
        self.retry_sleep = retry_sleep
        self._now = now
        self._sleep = sleeper

        # Per-method token buckets: {method: (tokens, last_refill_time)}
        self._buckets: Dict[ScrapingMethod, Tuple[float, float]] = {}
        self._lock = asyncio.Lock()

    def capacity(self, method: ScrapingMethod) -> float:
        limit = self.limits.get(method)
        return float(max(1, limit.concurrent_requests)) if limit else 1.0

    def refill_rate(self, method: ScrapingMethod) -> Optional[float]:
        """Tokens per second, or None for an unthrottled method."""
        limit = self.limits.get(method)
        if limit is None or limit.requests_per_minute <= 0:
            return None
        return limit.requests_per_minute / 60.0

    async def acquire(self, method: ScrapingMethod) -> None:
        """Block until a token is available for ``method``."""
        if self.refill_rate(method) is None:
            return
        while True:
            async with self._lock:
                tokens, last_refill = self._get_bucket_state(method)
                if tokens >= 1.0:
                    self._buckets[method] = (tokens - 1.0, last_refill)
                    return

            await self._sleep(self.retry_sleep)

    def tokens_available(self, method: ScrapingMethod) -> int:
        tokens, _ = self._get_bucket_state(method)
        return int(tokens)

    def _get_bucket_state(self, method: ScrapingMethod) -> Tuple[float, float]:
        current_time = self._now()
        max_tokens = self.capacity(method)

        if method not in self._buckets:
            self._buckets[method] = (max_tokens, current_time)
            return (max_tokens, current_time)

        tokens, last_refill = self._buckets[method]
        rate = self.refill_rate(method) or 0.0
        new_tokens = min(max_tokens, tokens + (current_time - last_refill) * rate)
        self._buckets[method] = (new_tokens, current_time)
        return (new_tokens, current_time)


class MethodThrottle:
    """Combines the per-method rate limit with a per-method concurrency cap."""

    def __init__(self, limits: Dict[ScrapingMethod, MethodRateLimit], rate_limiter: Optional[RateLimiter] = None):
        self.limits = limits
        self.rate_limiter = rate_limiter or RateLimiter(limits)
        self._semaphores: Dict[ScrapingMethod, asyncio.Semaphore] = {}

    def _semaphore(self, method: ScrapingMethod) -> asyncio.Semaphore:
        if method not in self._semaphores:
            limit = self.limits.get(method)
            self._semaphores[method] = asyncio.Semaphore(max(1, limit.concurrent_requests) if limit else 1)
        return self._semaphores[method]

    @asynccontextmanager
    async def slot(self, method: ScrapingMethod) -> AsyncIterator[None]:
        """Hold a concurrency slot and a rate token for one execution."""
        async with self._semaphore(method):
            await self.rate_limiter.acquire(method)
            yield
