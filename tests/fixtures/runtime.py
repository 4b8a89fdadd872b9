"""Synchronously wired runtimes for API and CLI tests."""

from typing import List, Optional
from unittest.mock import MagicMock

from src.budget.ledger import BudgetLedger
from src.budget.repository import InMemoryBudgetRepository
from src.executors.base import MethodExecutor
from src.models.config import OrchestratorConfig, VendorScrapeConfig
from src.monitoring.logger import StructuredLogger
from src.orchestrator.orchestrator import ScrapeOrchestrator
from src.orchestrator.runtime import Runtime
from src.scheduling.service import InMemorySchedulingService
from tests.fixtures.fakes import FakeClock, FakeSleeper, fast_throttle


def build_test_runtime(
    clock: FakeClock,
    vendors: List[VendorScrapeConfig],
    executor: MethodExecutor,
    config: Optional[OrchestratorConfig] = None,
    scheduling: Optional[InMemorySchedulingService] = None,
) -> Runtime:
    config = config or OrchestratorConfig(budget_state_file=None)
    logger = MagicMock(spec=StructuredLogger)
    ledger = BudgetLedger(
        limits=config.budget_limits,
        method_costs=config.method_costs,
        thresholds=config.alert_thresholds,
        repository=InMemoryBudgetRepository(),
        clock=clock,
    )
    scheduling = scheduling or InMemorySchedulingService(vendors, config=config, clock=clock)
    orchestrator = ScrapeOrchestrator(
        config,
        ledger,
        scheduling,
        executor,
        throttle=fast_throttle(),
        clock=clock,
        sleeper=FakeSleeper(),
        logger=logger,
    )
    return Runtime(
        config=config,
        ledger=ledger,
        scheduling=scheduling,
        orchestrator=orchestrator,
        logger=logger,
    )
