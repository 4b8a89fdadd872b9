"""Budget ledger: the single source of truth for scraping spend."""

import asyncio
from datetime import datetime
from typing import Dict, Optional

from src.budget.repository import BudgetRepository, BudgetState, InMemoryBudgetRepository
from src.models.clock import Clock, UTCClock
from src.models.config import AlertThresholds, BudgetLimits, OrchestratorConfig
from src.models.data_models import (
    AllocationResult,
    BudgetAlert,
    BudgetHealth,
    BudgetHealthStatus,
    BudgetPeriod,
    ScrapingMethod,
)
from src.models.errors import BudgetWriteError
from src.monitoring.logger import StructuredLogger


# Money is rounded to micro-dollars so 2.99 + 0.01 compares equal to 3.00.
MONEY_PRECISION = 6


def _money(value: float) -> float:
    return round(value, MONEY_PRECISION)


def period_elapsed(period: BudgetPeriod, last_reset: datetime, now: datetime) -> bool:
    """True if ``now`` falls in a later calendar day/ISO week/month than ``last_reset``."""
    if period == BudgetPeriod.DAILY:
        return now.date() != last_reset.date()
    if period == BudgetPeriod.WEEKLY:
        # ISO weeks start on Monday
        return now.isocalendar()[:2] != last_reset.isocalendar()[:2]
    if period == BudgetPeriod.MONTHLY:
        return (now.year, now.month) != (last_reset.year, last_reset.month)
    return False


class BudgetLedger:
    """
    Tracks spend against daily, weekly and monthly limits.

    The ledger is the only state shared across concurrent workers. Every
    allocation is a check-and-increment performed under one asyncio lock, so
    two workers racing for the last cents cannot both succeed. Selection-time
    ``can_afford`` checks are advisory; ``allocate`` is authoritative.

    Usage is kept in memory and written through to a ``BudgetRepository``
    after each allocation. A failed write raises ``BudgetWriteError`` while
    the in-memory counters keep the spend.
    """

    def __init__(
        self,
        limits: Optional[BudgetLimits] = None,
        method_costs: Optional[Dict[ScrapingMethod, float]] = None,
        thresholds: Optional[AlertThresholds] = None,
        repository: Optional[BudgetRepository] = None,
        clock: Optional[Clock] = None,
        logger: Optional[StructuredLogger] = None,
    ):
        """
        Initialize the ledger with zero usage.

        Args:
            limits: Spend ceilings per period
            method_costs: Cost table per method (defaults to the stock table)
            thresholds: Alert thresholds as fractions of the limits
            repository: Where usage and alerts are persisted
            clock: Clock interface for time management (defaults to UTCClock)
            logger: Optional structured logger
        """
        self.limits = limits or BudgetLimits()
        self.method_costs = dict(method_costs or OrchestratorConfig().method_costs)
        self.thresholds = thresholds or AlertThresholds()
        self.repository = repository or InMemoryBudgetRepository()
        self.clock = clock or UTCClock()
        self.logger = logger

        now = self.clock.now()
        self._usage: Dict[BudgetPeriod, float] = {p: 0.0 for p in BudgetPeriod}
        self._last_reset: Dict[BudgetPeriod, datetime] = {p: now for p in BudgetPeriod}
        self._spend_by_method: Dict[ScrapingMethod, float] = {}
        self._lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @classmethod
    async def from_config(
        cls,
        config: OrchestratorConfig,
        repository: Optional[BudgetRepository] = None,
        clock: Optional[Clock] = None,
        logger: Optional[StructuredLogger] = None,
    ) -> "BudgetLedger":
        """Build a ledger from configuration and restore persisted usage."""
        ledger = cls(
            limits=config.budget_limits,
            method_costs=config.method_costs,
            thresholds=config.alert_thresholds,
            repository=repository,
            clock=clock,
            logger=logger,
        )
        await ledger.restore()
        return ledger

    async def restore(self) -> None:
        """Load counters from the repository, if it has any."""
        state = await self.repository.load()
        if state is None:
            return
        async with self._lock:
            for period in BudgetPeriod:
                self._usage[period] = _money(max(0.0, state.usage.get(period, 0.0)))
                if period in state.last_reset:
                    self._last_reset[period] = state.last_reset[period]
            self._spend_by_method = dict(state.spend_by_method)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def cost_of(self, method: ScrapingMethod) -> float:
        """Table cost of one attempt; unknown methods are free."""
        return self.method_costs.get(method, 0.0)

    def usage(self, period: BudgetPeriod) -> float:
        """Usage in the current window; an elapsed, not-yet-reset period reads as zero."""
        if self.should_reset(period):
            return 0.0
        return self._usage[period]

    def last_reset(self, period: BudgetPeriod) -> datetime:
        """Start of the window whose usage is being counted."""
        return self._last_reset[period]

    def remaining_budget(self, period: BudgetPeriod) -> float:
        return max(0.0, _money(self.limits.for_period(period) - self.usage(period)))

    def can_afford(self, method: ScrapingMethod, cost: Optional[float] = None) -> bool:
        """Cost must fit the remaining budget in every period at once."""
        cost = self.cost_of(method) if cost is None else cost
        return all(_money(cost) <= self.remaining_budget(p) for p in BudgetPeriod)

    def utilization(self) -> float:
        """Highest usage/limit ratio over the three periods."""
        ratios = []
        for period in BudgetPeriod:
            limit = self.limits.for_period(period)
            usage = self.usage(period)
            # A zero limit means nothing paid is ever affordable
            ratios.append(usage / limit if limit > 0 else 1.0)
        return max(ratios)

    def health(self) -> BudgetHealth:
        remaining = {p: self.remaining_budget(p) for p in BudgetPeriod}
        utilization = self.utilization()

        if utilization >= self.thresholds.shutdown:
            status, message = BudgetHealthStatus.EXHAUSTED, "Budget exhausted - only free methods available"
        elif utilization >= self.thresholds.critical:
            status, message = BudgetHealthStatus.CRITICAL, "Critical budget warning - approaching limits"
        elif utilization >= self.thresholds.warning:
            status, message = BudgetHealthStatus.WARNING, "Budget warning - monitor usage carefully"
        else:
            status, message = BudgetHealthStatus.HEALTHY, "Budget healthy - all methods available"

        return BudgetHealth(status=status, message=message, remaining=remaining, utilization=utilization)

    def spend_by_method(self) -> Dict[ScrapingMethod, float]:
        return dict(self._spend_by_method)

    def status_snapshot(self) -> Dict:
        """Read-only view for dashboards and the budget status endpoint."""
        health = self.health()
        return {
            "budget": {
                "limits": {p.value: self.limits.for_period(p) for p in BudgetPeriod},
                "usage": {
                    **{p.value: self.usage(p) for p in BudgetPeriod},
                    "last_reset": {p.value: self._last_reset[p].isoformat() for p in BudgetPeriod},
                },
                "method_costs": {m.value: c for m, c in self.method_costs.items()},
            },
            "health": {
                "status": health.status.value,
                "message": health.message,
                "remaining": {p.value: v for p, v in health.remaining.items()},
                "utilization": round(health.utilization, 4),
            },
            "spend_by_method": {m.value: v for m, v in self._spend_by_method.items()},
            "can_scrape": health.status != BudgetHealthStatus.EXHAUSTED,
        }

    # ------------------------------------------------------------------
    # Period resets
    # ------------------------------------------------------------------

    def should_reset(self, period: BudgetPeriod) -> bool:
        return period_elapsed(period, self._last_reset[period], self.clock.now())

    async def reset_period(self, period: BudgetPeriod) -> bool:
        """
        Zero usage for ``period`` if its window has rolled over.

        Idempotent: a second call inside the same window is a no-op.

        Returns:
            True if this call performed the reset
        """
        async with self._lock:
            did_reset = self._reset_if_elapsed(period)
        if did_reset:
            await self._persist()
        return did_reset

    async def check_and_reset_periods(self) -> Dict[BudgetPeriod, bool]:
        """Reset every elapsed period; returns which periods were reset."""
        async with self._lock:
            resets = {p: self._reset_if_elapsed(p) for p in BudgetPeriod}
        if any(resets.values()):
            await self._persist()
        return resets

    def _reset_if_elapsed(self, period: BudgetPeriod) -> bool:
        # Caller holds self._lock
        if not self.should_reset(period):
            return False
        self._usage[period] = 0.0
        self._last_reset[period] = self.clock.now()
        if self.logger:
            self.logger.budget_reset(period.value)
        return True

    # ------------------------------------------------------------------
    # Allocation
    # ------------------------------------------------------------------

    async def allocate(
        self,
        method: ScrapingMethod,
        vendor_id: str,
        cost: Optional[float] = None,
    ) -> AllocationResult:
        """
        Atomically charge ``cost`` to every period if it still fits.

        Elapsed periods are reset first. A rejection leaves usage untouched
        and is a routing signal for the caller, not an error.

        Args:
            method: Method being paid for
            vendor_id: Vendor the spend is attributed to
            cost: Amount to charge (defaults to the method's table cost)

        Returns:
            AllocationResult describing the decision

        Raises:
            BudgetWriteError: If the new usage could not be persisted
        """
        cost = _money(self.cost_of(method) if cost is None else cost)
        if cost < 0:
            raise ValueError(f"allocation cost must be non-negative, got: {cost}")

        alert: Optional[BudgetAlert] = None
        reset_happened = False
        async with self._lock:
            for period in BudgetPeriod:
                reset_happened = self._reset_if_elapsed(period) or reset_happened

            # Authoritative re-check at commit time
            if not self.can_afford(method, cost):
                remaining = {p: self.remaining_budget(p) for p in BudgetPeriod}
                result = AllocationResult(
                    success=False,
                    method=method,
                    cost=cost,
                    message="Insufficient budget for this operation",
                    remaining=remaining,
                )
            else:
                before = self.utilization()
                for period in BudgetPeriod:
                    self._usage[period] = _money(self._usage[period] + cost)
                self._spend_by_method[method] = _money(self._spend_by_method.get(method, 0.0) + cost)
                alert = self._threshold_alert(before, self.utilization())
                remaining = {p: self.remaining_budget(p) for p in BudgetPeriod}
                result = AllocationResult(
                    success=True,
                    method=method,
                    cost=cost,
                    message=f"Successfully allocated ${cost:.2f}",
                    remaining=remaining,
                )

        if self.logger:
            self.logger.allocation(vendor_id, method.value, cost, result.success)

        if (result.success and cost > 0) or reset_happened:
            await self._persist()
        if alert is not None:
            await self._emit_alert(alert)
        return result

    async def emergency_shutdown(self, reason: str) -> None:
        """Exhaust every period so that only free methods remain."""
        async with self._lock:
            for period in BudgetPeriod:
                self._reset_if_elapsed(period)
                self._usage[period] = max(self._usage[period], self.limits.for_period(period))
        await self._persist()
        await self._emit_alert(
            BudgetAlert(
                level="shutdown",
                message=f"EMERGENCY SHUTDOWN: {reason}",
                utilization=self.utilization(),
                remaining={p: self.remaining_budget(p) for p in BudgetPeriod},
                created_at=self.clock.now(),
            )
        )

    def _threshold_alert(self, before: float, after: float) -> Optional[BudgetAlert]:
        crossed = None
        for level in ("warning", "critical", "shutdown"):
            threshold = getattr(self.thresholds, level)
            if before < threshold <= after:
                crossed = level
        if crossed is None:
            return None
        return BudgetAlert(
            level=crossed,
            message=f"Budget utilization reached {after:.0%} ({crossed} threshold)",
            utilization=after,
            remaining={p: self.remaining_budget(p) for p in BudgetPeriod},
            created_at=self.clock.now(),
        )

    async def _emit_alert(self, alert: BudgetAlert) -> None:
        if self.logger:
            self.logger.budget_alert(alert.level, alert.message, alert.utilization)
        try:
            await self.repository.record_alert(alert)
        except Exception as e:
            # Alerts are advisory; spend tracking is not affected
            if self.logger:
                self.logger.error("budget_alert_write_failed", str(e), alert=alert.level)

    def _state(self) -> BudgetState:
        return BudgetState(
            usage=dict(self._usage),
            last_reset=dict(self._last_reset),
            spend_by_method=dict(self._spend_by_method),
        )

    async def _persist(self) -> None:
        # Always writes the latest counters, so concurrent writers never regress the row
        async with self._write_lock:
            try:
                await self.repository.save(self._state())
            except Exception as e:
                if self.logger:
                    self.logger.error("budget_write_failed", str(e))
                raise BudgetWriteError("Failed to persist budget usage", cause=e) from e
