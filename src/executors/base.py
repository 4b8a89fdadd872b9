"""Method executor interface and routing."""

from datetime import datetime
from typing import Dict, Optional, Protocol

from src.models.config import VendorScrapeConfig
from src.models.data_models import ScrapeError, ScrapeResult, ScrapeStatus, ScrapingMethod
from src.models.errors import ConfigurationError


class MethodExecutor(Protocol):
    """Runs one extraction attempt with one method."""

    async def execute(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> ScrapeResult:
        ...


def failed_result(
    vendor_id: str,
    method: ScrapingMethod,
    started_at: datetime,
    completed_at: datetime,
    message: str,
    should_retry: bool,
    code: Optional[str] = None,
    actual_cost: float = 0.0,
    suggested_method: Optional[ScrapingMethod] = None,
) -> ScrapeResult:
    """Build a FAILED result carrying a structured error."""
    return ScrapeResult(
        vendor_id=vendor_id,
        method=method,
        status=ScrapeStatus.FAILED,
        started_at=started_at,
        completed_at=completed_at,
        actual_cost=actual_cost,
        error=ScrapeError(
            message=message,
            should_retry=should_retry,
            code=code,
            suggested_method=suggested_method,
        ),
    )


class ExecutorRegistry:
    """Routes each method to the executor that implements it."""

    def __init__(self, executors: Optional[Dict[ScrapingMethod, MethodExecutor]] = None):
        self._executors: Dict[ScrapingMethod, MethodExecutor] = dict(executors or {})

    def register(self, method: ScrapingMethod, executor: MethodExecutor) -> None:
        self._executors[method] = executor

    def for_method(self, method: ScrapingMethod) -> MethodExecutor:
        executor = self._executors.get(method)
        if executor is None:
            raise ConfigurationError(f"No executor registered for method {method.value}")
        return executor

    async def execute(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> ScrapeResult:
        return await self.for_method(method).execute(vendor, method)

    async def aclose(self) -> None:
        """Release connections held by executors; shared executors close once."""
        closed = set()
        for executor in self._executors.values():
            close = getattr(executor, "aclose", None)
            if close is None or id(executor) in closed:
                continue
            closed.add(id(executor))
            await close()
