"""Wiring of ledger, scheduling service, executors and orchestrator."""

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import httpx

from src.budget.ledger import BudgetLedger
from src.budget.repository import BudgetRepository, InMemoryBudgetRepository, JsonFileBudgetRepository
from src.executors import MethodThrottle, build_executor
from src.models.clock import Clock, Sleeper, UTCClock, default_sleeper
from src.models.config import OrchestratorConfig, VendorScrapeConfig
from src.monitoring.logger import StructuredLogger
from src.orchestrator.orchestrator import ScrapeOrchestrator
from src.scheduling.service import InMemorySchedulingService
from src.scheduling.vendors import load_vendors


@dataclass
class Runtime:
    """Everything a trigger surface needs to run batches."""
    config: OrchestratorConfig
    ledger: BudgetLedger
    scheduling: InMemorySchedulingService
    orchestrator: ScrapeOrchestrator
    logger: StructuredLogger

    async def aclose(self) -> None:
        close = getattr(self.orchestrator.executor, "aclose", None)
        if close is not None:
            await close()


async def build_runtime(
    config: OrchestratorConfig,
    vendors: Optional[List[VendorScrapeConfig]] = None,
    repository: Optional[BudgetRepository] = None,
    clock: Optional[Clock] = None,
    sleeper: Sleeper = default_sleeper,
    seed: Optional[int] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    throttle: Optional[MethodThrottle] = None,
) -> Runtime:
    """
    Build a ready-to-run orchestrator from configuration.

    Vendors are read from ``config.vendors_file`` unless passed in. The
    ledger is restored from ``config.budget_state_file`` when set.
    """
    clock = clock or UTCClock()
    logger = StructuredLogger(level=config.log_level, structured=config.structured_logging)

    if vendors is None:
        vendors = load_vendors(Path(config.vendors_file), config.vendor_overrides)

    if repository is None:
        if config.budget_state_file:
            repository = JsonFileBudgetRepository(Path(config.budget_state_file))
        else:
            repository = InMemoryBudgetRepository()

    ledger = await BudgetLedger.from_config(config, repository=repository, clock=clock, logger=logger)
    scheduling = InMemorySchedulingService(vendors, config=config, clock=clock, logger=logger)
    orchestrator = ScrapeOrchestrator(
        config,
        ledger,
        scheduling,
        build_executor(config, clock=clock, seed=seed, transport=transport),
        clock=clock,
        throttle=throttle,
        sleeper=sleeper,
        logger=logger,
    )
    return Runtime(
        config=config,
        ledger=ledger,
        scheduling=scheduling,
        orchestrator=orchestrator,
        logger=logger,
    )
