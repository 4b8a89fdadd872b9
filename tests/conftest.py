"""Pytest configuration and shared fixtures."""

import random

import pytest

from src.budget.ledger import BudgetLedger
from src.budget.repository import InMemoryBudgetRepository
from src.models.config import OrchestratorConfig
from tests.fixtures.fakes import FakeClock, FakeSleeper


@pytest.fixture(scope="session")
def deterministic_seed():
    """Set a fixed random seed for deterministic test results."""
    random.seed(42)
    return 42


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_sleeper():
    return FakeSleeper()


@pytest.fixture
def config():
    """Default production configuration without file inputs."""
    return OrchestratorConfig(budget_state_file=None)


@pytest.fixture
def repository():
    return InMemoryBudgetRepository()


@pytest.fixture
def ledger(config, repository, fake_clock):
    return BudgetLedger(
        limits=config.budget_limits,
        method_costs=config.method_costs,
        thresholds=config.alert_thresholds,
        repository=repository,
        clock=fake_clock,
    )
