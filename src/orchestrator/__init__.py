"""Job and batch orchestration."""

from .orchestrator import CRON_ENDPOINT, ScrapeOrchestrator
from .output import JSONOutputFormatter
from .runtime import Runtime, build_runtime
from .session import SessionAggregator

__all__ = [
    "CRON_ENDPOINT",
    "JSONOutputFormatter",
    "Runtime",
    "ScrapeOrchestrator",
    "SessionAggregator",
    "build_runtime",
]
