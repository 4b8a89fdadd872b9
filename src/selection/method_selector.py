"""Cost-aware choice of the next extraction method for a vendor."""

from typing import Iterable, List, Optional

from src.budget.ledger import BudgetLedger
from src.models.config import OrchestratorConfig, VendorScrapeConfig
from src.models.data_models import (
    AUTOMATED_METHODS,
    FREE_METHOD,
    METHOD_ORDER,
    BudgetHealthStatus,
    ScrapingMethod,
)


class MethodSelector:
    """
    Picks methods in cost-ascending order, honouring vendor overrides.

    Budget exhaustion never blocks a vendor: when nothing paid is
    affordable, or the ledger is past its shutdown threshold, the free
    method is returned. ``None`` is returned only when the vendor disallows
    the free method as well.
    """

    def __init__(self, config: OrchestratorConfig):
        self.config = config

    def is_affordable(
        self,
        method: ScrapingMethod,
        ledger: BudgetLedger,
        max_cost: Optional[float] = None,
    ) -> bool:
        cost = ledger.cost_of(method)
        if cost == 0:
            return True
        if max_cost is not None and cost > max_cost:
            return False
        if ledger.health().status == BudgetHealthStatus.EXHAUSTED:
            return False
        return ledger.can_afford(method)

    def select_method(
        self,
        vendor: VendorScrapeConfig,
        ledger: BudgetLedger,
        allowed: Optional[Iterable[ScrapingMethod]] = None,
        max_cost: Optional[float] = None,
    ) -> Optional[ScrapingMethod]:
        """
        Resolve the method for the next attempt.

        Args:
            vendor: Vendor being scraped
            ledger: Budget ledger consulted for affordability (advisory)
            allowed: Methods permitted for this job (defaults to the vendor's)
            max_cost: Remaining per-job spend ceiling

        Returns:
            The chosen method, or None if the job should be skipped
        """
        allowed_methods = self._allowed(vendor, allowed)

        override = self.config.vendor_overrides.get(vendor.vendor_id)
        if override and override.preferred_method:
            method = override.preferred_method
            if method in allowed_methods and self.is_affordable(method, ledger, max_cost):
                return method

        for method in vendor.preferred_methods or METHOD_ORDER:
            if method in allowed_methods and self.is_affordable(method, ledger, max_cost):
                return method

        if FREE_METHOD in allowed_methods:
            return FREE_METHOD
        return None

    def next_method(
        self,
        vendor: VendorScrapeConfig,
        current: ScrapingMethod,
        ledger: BudgetLedger,
        allowed: Optional[Iterable[ScrapingMethod]] = None,
        max_cost: Optional[float] = None,
        suggested: Optional[ScrapingMethod] = None,
    ) -> Optional[ScrapingMethod]:
        """
        Next more expensive automated method that is allowed and affordable.

        Never moves backwards and never returns ``manual``. An executor's
        ``suggested`` method is honoured when it satisfies the same rules.
        """
        allowed_methods = self._allowed(vendor, allowed)
        candidates = self._escalation_candidates(current)

        if suggested in candidates:
            if suggested in allowed_methods and self.is_affordable(suggested, ledger, max_cost):
                return suggested

        for method in candidates:
            if method in allowed_methods and self.is_affordable(method, ledger, max_cost):
                return method
        return None

    def _allowed(
        self,
        vendor: VendorScrapeConfig,
        allowed: Optional[Iterable[ScrapingMethod]],
    ) -> List[ScrapingMethod]:
        if allowed is not None:
            return list(allowed)
        return self.config.allowed_methods_for(vendor)

    @staticmethod
    def _escalation_candidates(current: ScrapingMethod) -> List[ScrapingMethod]:
        if current not in AUTOMATED_METHODS:
            return []
        return AUTOMATED_METHODS[AUTOMATED_METHODS.index(current) + 1:]
