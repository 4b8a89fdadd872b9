"""Method selection, escalation and vendor circuit breaking."""

from .circuit_breaker import VendorCircuitBreaker
from .escalation import EscalationPolicy, calculate_backoff_delay
from .method_selector import MethodSelector

__all__ = [
    "EscalationPolicy",
    "MethodSelector",
    "VendorCircuitBreaker",
    "calculate_backoff_delay",
]
