"""Method executors: the boundary to the actual scraping backends."""

from typing import Optional

import httpx

from src.models.clock import Clock
from src.models.config import OrchestratorConfig
from src.models.data_models import AUTOMATED_METHODS, ScrapingMethod

from .base import ExecutorRegistry, MethodExecutor, failed_result
from .http_executor import HttpExtractionExecutor
from .rate_limiter import MethodThrottle, RateLimiter
from .simulated import ManualReviewExecutor, SimulatedExecutor


def build_executor(
    config: OrchestratorConfig,
    clock: Optional[Clock] = None,
    seed: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ExecutorRegistry:
    """
    Wire executors for every method from configuration.

    Automated methods go to the simulated executor or to the extraction
    service, depending on ``simulate_executors``. Manual always goes to
    the manual review executor.
    """
    registry = ExecutorRegistry()
    if config.simulate_executors or not config.extraction_api_url:
        automated: MethodExecutor = SimulatedExecutor(
            seed=seed, method_costs=config.method_costs, clock=clock
        )
    else:
        automated = HttpExtractionExecutor.from_settings(
            config.extraction_api_url,
            api_key=config.extraction_api_key,
            method_costs=config.method_costs,
            transport=transport,
            clock=clock,
        )
    for method in AUTOMATED_METHODS:
        registry.register(method, automated)
    registry.register(ScrapingMethod.MANUAL, ManualReviewExecutor(clock=clock))
    return registry


__all__ = [
    "ExecutorRegistry",
    "HttpExtractionExecutor",
    "ManualReviewExecutor",
    "MethodExecutor",
    "MethodThrottle",
    "RateLimiter",
    "SimulatedExecutor",
    "build_executor",
    "failed_result",
]
