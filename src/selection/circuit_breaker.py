"""Vendor-level circuit breaker."""

from typing import Optional

from src.models.config import VendorScrapeConfig
from src.monitoring.logger import StructuredLogger


class VendorCircuitBreaker:
    """
    Deactivates vendors that keep failing across every method.

    Unlike a per-endpoint breaker there is no half-open trial request: an open
    breaker stays open until an operator calls ``reactivate``, so budget
    is not spent on a persistently broken pricing page.
    """

    def __init__(self, failure_threshold: int = 5, logger: Optional[StructuredLogger] = None):
        """
        Initialize circuit breaker.

        Args:
            failure_threshold: Consecutive failed jobs before deactivation
            logger: Optional structured logger
        """
        self.failure_threshold = failure_threshold
        self.logger = logger

    def is_open(self, vendor: VendorScrapeConfig) -> bool:
        return not vendor.is_active

    def record_failure(self, vendor: VendorScrapeConfig, error_message: Optional[str] = None) -> bool:
        """
        Count a failed job for the vendor.

        Returns:
            True if this failure tripped the breaker
        """
        vendor.consecutive_failures += 1
        if error_message:
            vendor.last_error = error_message

        if vendor.is_active and vendor.consecutive_failures >= self.failure_threshold:
            vendor.is_active = False
            vendor.deactivation_reason = (
                f"{vendor.consecutive_failures} consecutive failures"
                + (f": {error_message}" if error_message else "")
            )
            if self.logger:
                self.logger.circuit_breaker(vendor.vendor_id, vendor.consecutive_failures)
            return True
        return False

    def record_success(self, vendor: VendorScrapeConfig) -> None:
        vendor.consecutive_failures = 0
        vendor.last_error = None

    def reactivate(self, vendor: VendorScrapeConfig) -> None:
        """Operator reset: close the breaker and clear failure counters."""
        vendor.is_active = True
        vendor.deactivation_reason = None
        vendor.consecutive_failures = 0
        vendor.method_failures = {}
