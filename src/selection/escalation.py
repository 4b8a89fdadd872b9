"""Retry and escalation decisions after a failed attempt."""

from datetime import timedelta
from typing import Iterable, Optional

from src.budget.ledger import BudgetLedger
from src.models.clock import Clock, UTCClock
from src.models.config import MethodRetryPolicy, OrchestratorConfig, VendorScrapeConfig
from src.models.data_models import (
    METHOD_ORDER,
    BudgetPeriod,
    EscalationAction,
    EscalationDecision,
    ScrapeError,
    ScrapingMethod,
)
from src.selection.method_selector import MethodSelector


def calculate_backoff_delay(failures: int, policy: MethodRetryPolicy) -> float:
    """
    Delay before the next attempt on the same method.

    Formula: delay_ms * backoff_multiplier ** (failures - 1)

    Args:
        failures: Failed attempts so far on this method (1-indexed)
        policy: Retry policy for the method

    Returns:
        Delay in seconds
    """
    if failures < 1 or policy.delay_ms <= 0:
        return 0.0
    return (policy.delay_ms * (policy.backoff_multiplier ** (failures - 1))) / 1000.0


class EscalationPolicy:
    """
    Decides between retrying, escalating and giving up.

    Per-method failure counters live on the vendor and count consecutive
    failures of one run on that method. The counter is cleared once the run
    leaves the method (escalated or exhausted) and when the vendor succeeds
    with that method or a more expensive one, so every job starts with the
    full retry allowance.
    """

    def __init__(
        self,
        config: OrchestratorConfig,
        selector: Optional[MethodSelector] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.rules = config.escalation
        self.selector = selector or MethodSelector(config)
        self.clock = clock or UTCClock()

    def threshold_for(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> int:
        if vendor.max_failures_before_escalation is not None:
            return vendor.max_failures_before_escalation
        return self.rules.threshold_for(method)

    def has_escalation_budget(self, ledger: BudgetLedger) -> bool:
        return all(
            ledger.remaining_budget(period) > self.rules.min_budget_for_escalation.get(period, 0.0)
            for period in BudgetPeriod
        )

    def cooldown_elapsed(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> bool:
        last = vendor.last_escalation_at.get(method)
        if last is None:
            return True
        cooldown = timedelta(hours=self.rules.escalation_cooldown_hours)
        return self.clock.now() - last >= cooldown

    def on_failure(
        self,
        vendor: VendorScrapeConfig,
        method: ScrapingMethod,
        error: Optional[ScrapeError],
        ledger: BudgetLedger,
        job_attempts: int,
        allowed: Optional[Iterable[ScrapingMethod]] = None,
        max_cost: Optional[float] = None,
    ) -> EscalationDecision:
        """
        Record a failed attempt and decide what happens next.

        Args:
            vendor: Vendor whose counters are updated in place
            method: Method that just failed
            error: Error reported by the executor
            ledger: Budget ledger used for escalation checks
            job_attempts: Attempts this job has made with ``method``
            allowed: Methods permitted for the job
            max_cost: Remaining per-job spend ceiling

        Returns:
            EscalationDecision with the action and, where relevant, the method
        """
        failures = vendor.method_failures.get(method, 0) + 1
        vendor.method_failures[method] = failures

        threshold = self.threshold_for(vendor, method)
        policy = self.config.retry[method]
        retryable = error is None or error.should_retry

        if retryable and failures < threshold and job_attempts < policy.max_attempts:
            return EscalationDecision(
                action=EscalationAction.RETRY_SAME,
                method=method,
                delay_seconds=calculate_backoff_delay(job_attempts, policy),
                reason=f"{method.value} failure {failures}/{threshold}",
            )

        vendor.method_failures[method] = 0

        if not self.cooldown_elapsed(vendor, method):
            return self._exhausted("escalation cooldown active")

        if not self.has_escalation_budget(ledger):
            return self._exhausted("insufficient budget for escalation")

        suggested = error.suggested_method if error else None
        next_method = self.selector.next_method(
            vendor, method, ledger, allowed=allowed, max_cost=max_cost, suggested=suggested
        )
        if next_method is None:
            return self._exhausted("no further methods available")

        vendor.last_escalation_at[method] = self.clock.now()
        return EscalationDecision(
            action=EscalationAction.ESCALATE,
            method=next_method,
            reason=f"{method.value} failed {failures} times",
        )

    def on_success(self, vendor: VendorScrapeConfig, method: ScrapingMethod) -> None:
        """Clear counters for the winning method and every cheaper one."""
        for cleared in METHOD_ORDER[: METHOD_ORDER.index(method) + 1]:
            vendor.method_failures[cleared] = 0
        vendor.last_successful_method = method

    @staticmethod
    def _exhausted(reason: str) -> EscalationDecision:
        return EscalationDecision(action=EscalationAction.EXHAUSTED, reason=reason)
