"""
Shared fixtures: fixed clock, stores, a published load and the orchestrator.
"""

import os
from pathlib import Path
from unittest.mock import MagicMock

import pytest

# Agents read API keys at client creation; no test talks to a real provider
os.environ.setdefault("ANTHROPIC_API_KEY", "test-key")
os.environ.setdefault("OPENAI_API_KEY", "test-key")

from loadmatch.core.config import ConfigManager, MatchingConfig, ScoringConfig
from loadmatch.core.locks import KeyedLock
from loadmatch.data.memory import (
    InMemoryDriverStore,
    InMemoryLoadStore,
    InMemoryMatchStore,
    InMemoryPricingCalculationStore,
)
from loadmatch.data.models import Load, LoadStatus
from loadmatch.engine.matching import MatchOrchestrator
from loadmatch.engine.scoring import DriverScorer

from .factories import FakeClock, make_load


# ============================================================================
# Configuration
# ============================================================================


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture
def config_manager(project_root: Path) -> ConfigManager:
    return ConfigManager(project_root / "config")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Stores
# ============================================================================


@pytest.fixture
def load_store() -> InMemoryLoadStore:
    return InMemoryLoadStore()


@pytest.fixture
def driver_store() -> InMemoryDriverStore:
    return InMemoryDriverStore()


@pytest.fixture
def match_store() -> InMemoryMatchStore:
    return InMemoryMatchStore()


@pytest.fixture
def calculation_store() -> InMemoryPricingCalculationStore:
    return InMemoryPricingCalculationStore()


@pytest.fixture
def published_load(load_store: InMemoryLoadStore) -> Load:
    load = make_load(status=LoadStatus.PUBLISHED)
    load_store.save(load)
    return load


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def notifier():
    return MagicMock()


@pytest.fixture
def locks() -> KeyedLock:
    return KeyedLock()


@pytest.fixture
def orchestrator(load_store, driver_store, match_store, notifier, clock, locks) -> MatchOrchestrator:
    return MatchOrchestrator(
        load_store,
        driver_store,
        match_store,
        scorer=DriverScorer(ScoringConfig(max_workers=4)),
        notifier=notifier,
        config=MatchingConfig(),
        locks=locks,
        clock=clock,
    )
