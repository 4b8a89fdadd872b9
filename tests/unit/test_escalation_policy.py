"""Unit tests for retry and escalation decisions."""

from datetime import timedelta

import pytest

from src.models.config import MethodRetryPolicy, OrchestratorConfig
from src.models.data_models import EscalationAction, ScrapeError, ScrapingMethod
from src.selection.escalation import EscalationPolicy, calculate_backoff_delay
from tests.fixtures.fakes import make_ledger
from tests.fixtures.sample_data import make_vendor


PW = ScrapingMethod.PLAYWRIGHT
FC = ScrapingMethod.FIRECRAWL
VI = ScrapingMethod.VISION
ALL = [PW, FC, VI]

RETRYABLE = ScrapeError(message="timeout", should_retry=True)
FATAL = ScrapeError(message="page removed", should_retry=False)


@pytest.fixture
def policy(config, fake_clock):
    return EscalationPolicy(config, clock=fake_clock)


class TestBackoffDelay:

    def test_playwright_schedule(self):
        policy = MethodRetryPolicy(max_attempts=3, delay_ms=2000, backoff_multiplier=2)
        assert calculate_backoff_delay(1, policy) == 2.0
        assert calculate_backoff_delay(2, policy) == 4.0
        assert calculate_backoff_delay(3, policy) == 8.0

    def test_firecrawl_schedule(self):
        policy = MethodRetryPolicy(max_attempts=2, delay_ms=1000, backoff_multiplier=1.5)
        assert calculate_backoff_delay(1, policy) == 1.0
        assert calculate_backoff_delay(2, policy) == 1.5

    def test_no_delay(self):
        assert calculate_backoff_delay(1, MethodRetryPolicy(delay_ms=0)) == 0.0
        assert calculate_backoff_delay(0, MethodRetryPolicy(delay_ms=1000)) == 0.0


class TestOnFailure:

    def test_playwright_retries_then_escalates(self, policy, ledger):
        vendor = make_vendor("acme")

        first = policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        second = policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=2, allowed=ALL, max_cost=1.0)
        third = policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=3, allowed=ALL, max_cost=1.0)

        assert (first.action, first.delay_seconds) == (EscalationAction.RETRY_SAME, 2.0)
        assert (second.action, second.delay_seconds) == (EscalationAction.RETRY_SAME, 4.0)
        assert third.action == EscalationAction.ESCALATE
        assert third.method == FC
        # Leaving the method clears its count for the next job
        assert vendor.method_failures[PW] == 0

    def test_firecrawl_escalates_to_vision(self, policy, ledger):
        vendor = make_vendor("acme")

        first = policy.on_failure(vendor, FC, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        second = policy.on_failure(vendor, FC, RETRYABLE, ledger, job_attempts=2, allowed=ALL, max_cost=1.0)

        assert (first.action, first.delay_seconds) == (EscalationAction.RETRY_SAME, 1.0)
        assert (second.action, second.method) == (EscalationAction.ESCALATE, VI)

    def test_vision_failure_exhausts(self, policy, ledger):
        vendor = make_vendor("acme")
        decision = policy.on_failure(vendor, VI, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)

        assert decision.action == EscalationAction.EXHAUSTED
        assert decision.reason == "no further methods available"

    def test_non_retryable_error_escalates_immediately(self, policy, ledger):
        vendor = make_vendor("acme")
        decision = policy.on_failure(vendor, PW, FATAL, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        assert (decision.action, decision.method) == (EscalationAction.ESCALATE, FC)

    def test_vendor_threshold_override(self, policy, ledger):
        vendor = make_vendor("acme", max_failures_before_escalation=1)
        decision = policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        assert decision.action == EscalationAction.ESCALATE

    def test_next_job_gets_full_retries_after_escalation(self, policy, ledger, fake_clock):
        vendor = make_vendor("acme")
        for attempt in (1, 2, 3):
            policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=attempt, allowed=ALL, max_cost=1.0)

        fake_clock.advance(hours=1)
        decision = policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)

        assert (decision.action, decision.delay_seconds) == (EscalationAction.RETRY_SAME, 2.0)

    def test_count_cleared_when_exhausted(self, policy, ledger):
        vendor = make_vendor("acme")
        decision = policy.on_failure(vendor, VI, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)

        assert decision.action == EscalationAction.EXHAUSTED
        assert vendor.method_failures[VI] == 0

    def test_partial_count_carries_into_next_job(self, policy, ledger):
        # A job cancelled between playwright retries leaves its count behind
        vendor = make_vendor("acme", method_failures={PW: 1})
        decision = policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)

        assert decision.action == EscalationAction.RETRY_SAME
        assert vendor.method_failures[PW] == 2

    def test_suggested_method(self, policy, ledger):
        vendor = make_vendor("acme")
        error = ScrapeError(message="js heavy", should_retry=False, suggested_method=VI)
        decision = policy.on_failure(vendor, PW, error, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        assert decision.method == VI

    def test_cooldown_blocks_repeat_escalation(self, policy, ledger, fake_clock):
        vendor = make_vendor("acme")
        policy.on_failure(vendor, PW, FATAL, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        assert vendor.last_escalation_at[PW] == fake_clock.now()

        fake_clock.advance(hours=1)
        blocked = policy.on_failure(vendor, PW, FATAL, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        assert (blocked.action, blocked.reason) == (EscalationAction.EXHAUSTED, "escalation cooldown active")

        fake_clock.advance(hours=23)
        allowed_again = policy.on_failure(vendor, PW, FATAL, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)
        assert allowed_again.action == EscalationAction.ESCALATE

    def test_escalation_needs_budget_headroom(self, policy, fake_clock):
        vendor = make_vendor("acme")
        ledger = make_ledger(fake_clock, daily=0.5)

        decision = policy.on_failure(vendor, PW, FATAL, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)

        assert decision.action == EscalationAction.EXHAUSTED
        assert decision.reason == "insufficient budget for escalation"

    def test_job_ceiling_stops_escalation(self, policy, ledger):
        vendor = make_vendor("acme")
        decision = policy.on_failure(vendor, PW, FATAL, ledger, job_attempts=1, allowed=ALL, max_cost=0.0)
        assert decision.action == EscalationAction.EXHAUSTED


class TestOnSuccess:

    def test_success_clears_method_counter(self, policy, ledger):
        vendor = make_vendor("acme")
        policy.on_failure(vendor, PW, RETRYABLE, ledger, job_attempts=1, allowed=ALL, max_cost=1.0)

        policy.on_success(vendor, PW)

        assert vendor.method_failures[PW] == 0
        assert vendor.last_successful_method == PW

    def test_later_success_clears_cheaper_counters(self, policy, ledger):
        vendor = make_vendor("acme", method_failures={PW: 2, FC: 1})

        policy.on_success(vendor, VI)

        assert vendor.method_failures[PW] == 0
        assert vendor.method_failures[FC] == 0
        assert vendor.last_successful_method == VI

    def test_threshold_uses_config_table(self, fake_clock):
        config = OrchestratorConfig(
            budget_state_file=None,
            escalation={"max_failures": {"playwright": 5, "firecrawl": 2, "vision": 1, "manual": 1}},
        )
        policy = EscalationPolicy(config, clock=fake_clock)
        assert policy.threshold_for(make_vendor("acme"), PW) == 5
        assert policy.threshold_for(make_vendor("acme"), ScrapingMethod.MANUAL) == 1
