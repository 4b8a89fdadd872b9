"""Budget tracking: ledger and its persistence."""

from .ledger import BudgetLedger, period_elapsed
from .repository import BudgetRepository, BudgetState, InMemoryBudgetRepository, JsonFileBudgetRepository

__all__ = [
    "BudgetLedger",
    "BudgetRepository",
    "BudgetState",
    "InMemoryBudgetRepository",
    "JsonFileBudgetRepository",
    "period_elapsed",
]
