"""Unit tests for the vendor circuit breaker."""

from unittest.mock import MagicMock

from src.models.data_models import ScrapingMethod
from src.selection.circuit_breaker import VendorCircuitBreaker
from tests.fixtures.sample_data import make_vendor


class TestVendorCircuitBreaker:
    """Test breaker state transitions."""

    def test_starts_closed(self):
        breaker = VendorCircuitBreaker(failure_threshold=5)
        assert not breaker.is_open(make_vendor("acme"))

    def test_opens_after_threshold(self):
        breaker = VendorCircuitBreaker(failure_threshold=5)
        vendor = make_vendor("acme")

        tripped = [breaker.record_failure(vendor, "selector not found") for _ in range(5)]

        assert tripped == [False, False, False, False, True]
        assert breaker.is_open(vendor)
        assert vendor.deactivation_reason == "5 consecutive failures: selector not found"
        assert vendor.last_error == "selector not found"

    def test_trips_only_once(self):
        breaker = VendorCircuitBreaker(failure_threshold=2)
        vendor = make_vendor("acme")
        breaker.record_failure(vendor)
        assert breaker.record_failure(vendor) is True
        assert breaker.record_failure(vendor) is False
        assert vendor.consecutive_failures == 3

    def test_success_resets_count(self):
        breaker = VendorCircuitBreaker(failure_threshold=3)
        vendor = make_vendor("acme")
        breaker.record_failure(vendor, "boom")
        breaker.record_failure(vendor, "boom")

        breaker.record_success(vendor)
        breaker.record_failure(vendor)

        assert vendor.consecutive_failures == 1
        assert not breaker.is_open(vendor)

    def test_reactivate_clears_counters(self):
        breaker = VendorCircuitBreaker(failure_threshold=1)
        vendor = make_vendor("acme", method_failures={ScrapingMethod.PLAYWRIGHT: 3})
        breaker.record_failure(vendor)
        assert breaker.is_open(vendor)

        breaker.reactivate(vendor)

        assert not breaker.is_open(vendor)
        assert vendor.consecutive_failures == 0
        assert vendor.method_failures == {}
        assert vendor.deactivation_reason is None

    def test_trip_is_logged(self):
        logger = MagicMock()
        breaker = VendorCircuitBreaker(failure_threshold=1, logger=logger)
        breaker.record_failure(make_vendor("acme"))
        logger.circuit_breaker.assert_called_once_with("acme", 1)
