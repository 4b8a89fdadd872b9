"""Executor backed by a remote extraction service."""

from typing import Any, Dict, List, Optional, Set

import httpx

from src.executors.base import failed_result
from src.executors.http_client import AsyncHTTPClient
from src.models.clock import Clock, UTCClock
from src.models.config import VendorScrapeConfig
from src.models.data_models import (
    PricingTier,
    ScrapeData,
    ScrapeError,
    ScrapeResult,
    ScrapeStatus,
    ScrapingMethod,
)


class HttpExtractionExecutor:
    """
    Delegates extraction to an HTTP service.

    Request: ``POST {api_url}/extract`` with the vendor URL, method and
    selector hints. Response body::

        {"status": "success|partial|failed", "cost": 0.01,
         "tiers": [{"name", "price", "price_model", "confidence"}],
         "error": {"message", "should_retry", "code", "suggested_method"}}

    Transport problems are converted into failed results:
    timeouts, connection errors and 429/5xx are retryable, other 4xx are not.
    """

    RETRYABLE_STATUS_CODES: Set[int] = {429, 502, 503, 504}

    def __init__(
        self,
        http_client: AsyncHTTPClient,
        method_costs: Optional[Dict[ScrapingMethod, float]] = None,
        clock: Optional[Clock] = None,
    ):
        self.http_client = http_client
        self.method_costs = dict(method_costs or {})
        self.clock = clock or UTCClock()

    @classmethod
    def from_settings(
        cls,
        api_url: str,
        api_key: Optional[str] = None,
        method_costs: Optional[Dict[ScrapingMethod, float]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Optional[Clock] = None,
    ) -> "HttpExtractionExecutor":
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        client = AsyncHTTPClient(base_url=api_url, headers=headers, transport=transport)
        return cls(client, method_costs=method_costs, clock=clock)

    async def execute(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> ScrapeResult:
        started_at = self.clock.now()
        payload = {
            "vendor_id": vendor.vendor_id,
            "url": vendor.pricing_url,
            "method": method.value,
            "selectors": vendor.selectors,
        }
        if vendor.timeout_ms:
            payload["timeout_ms"] = vendor.timeout_ms

        try:
            await self.http_client.open()
            response = await self.http_client.post("/extract", json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.TimeoutException as e:
            return self._failure(vendor, method, started_at, f"Request timed out: {e}", True, "TIMEOUT")
        except httpx.HTTPStatusError as e:
            status_code = e.response.status_code
            return self._failure(
                vendor,
                method,
                started_at,
                f"Extraction service returned HTTP {status_code}",
                status_code in self.RETRYABLE_STATUS_CODES,
                f"HTTP_{status_code}",
            )
        except httpx.RequestError as e:
            return self._failure(vendor, method, started_at, f"Request failed: {e}", True, "NETWORK_ERROR")
        except ValueError as e:
            return self._failure(vendor, method, started_at, f"Invalid response body: {e}", False, "BAD_RESPONSE")

        return self._parse(vendor, method, started_at, body)

    def _parse(
        self,
        vendor: VendorScrapeConfig,
        method: ScrapingMethod,
        started_at,
        body: Dict[str, Any],
    ) -> ScrapeResult:
        try:
            status = ScrapeStatus(body.get("status", "failed"))
        except ValueError:
            return self._failure(
                vendor, method, started_at, f"Unknown status: {body.get('status')}", False, "BAD_RESPONSE"
            )

        cost = float(body.get("cost", self.method_costs.get(method, 0.0)))
        error = self._error(body.get("error"))
        if status == ScrapeStatus.FAILED and error is None:
            error = ScrapeError(message="Extraction failed", should_retry=True)

        tiers = self._tiers(body.get("tiers") or [])
        return ScrapeResult(
            vendor_id=vendor.vendor_id,
            method=method,
            status=status,
            started_at=started_at,
            completed_at=self.clock.now(),
            actual_cost=cost,
            data=ScrapeData(tiers=tiers) if tiers else None,
            error=error,
        )

    @staticmethod
    def _tiers(raw: List[Dict[str, Any]]) -> List[PricingTier]:
        return [
            PricingTier(
                name=tier["name"],
                price=float(tier.get("price", 0.0)),
                price_model=tier.get("price_model", "per_month"),
                confidence=float(tier.get("confidence", 0.0)),
                features=list(tier.get("features", [])),
                user_limit=tier.get("user_limit"),
            )
            for tier in raw
        ]

    @staticmethod
    def _error(raw: Optional[Dict[str, Any]]) -> Optional[ScrapeError]:
        if not raw:
            return None
        suggested = raw.get("suggested_method")
        return ScrapeError(
            message=raw.get("message", "Extraction failed"),
            should_retry=bool(raw.get("should_retry", True)),
            code=raw.get("code"),
            suggested_method=ScrapingMethod(suggested) if suggested else None,
        )

    def _failure(self, vendor, method, started_at, message, should_retry, code) -> ScrapeResult:
        return failed_result(
            vendor.vendor_id,
            method,
            started_at,
            self.clock.now(),
            message=message,
            should_retry=should_retry,
            code=code,
        )

    async def aclose(self) -> None:
        await self.http_client.close()
