"""
Test Configuration and Fixtures

Provides shared fixtures for the suite: an on-disk SQLite database per test,
the engine components wired against it, and a pinned clock.
"""

import os
import uuid
from typing import AsyncGenerator

import pytest
import pytest_asyncio

# Set test environment variables before importing the engine.
os.environ.setdefault("LOG_LEVEL", "WARNING")
os.environ.setdefault("METRICS_ENABLED", "false")

from knowledge_engine.config import Settings
from knowledge_engine.db.client import Database
from knowledge_engine.decisions.ledger import DecisionLedger
from knowledge_engine.expertise.ranker import ExpertiseRanker
from knowledge_engine.graph.store import GraphStore
from knowledge_engine.monitoring.metrics import Metrics, get_metrics
from knowledge_engine.search.hybrid import HybridSearchEngine
from knowledge_engine.search.repository import CandidateRepository
from knowledge_engine.service import KnowledgeQueryService


# =============================================================================
# PYTEST CONFIGURATION
# =============================================================================


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests (fast, isolated)")
    config.addinivalue_line("markers", "integration: Integration tests (may use real services)")
    config.addinivalue_line("markers", "slow: Slow tests (>1s)")


def pytest_collection_modifyitems(config, items):
    """
    Auto-assign tier markers so we can run:
    - pytest -m unit
    - pytest -m integration

    Convention:
    - tests/integration/** => integration
    - everything else      => unit
    """
    for item in items:
        path = str(getattr(item, "fspath", ""))
        if item.get_closest_marker("integration") or item.get_closest_marker("unit"):
            continue
        if "/tests/integration/" in path or path.endswith("\\tests\\integration\\"):
            item.add_marker(pytest.mark.integration)
        else:
            item.add_marker(pytest.mark.unit)


@pytest.fixture
def fake_clock():
    """Deterministic clock pinned to 2026-01-01T00:00:00Z."""
    from tests.support.clock import FakeClock

    return FakeClock.fixed()


# =============================================================================
# ENGINE FIXTURES
# =============================================================================


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'kg.db'}",
        db_pool_mode="null",
        metrics_enabled=False,
        log_level="WARNING",
    )


@pytest.fixture
def metrics() -> Metrics:
    return get_metrics(enabled=False)


@pytest_asyncio.fixture
async def db(settings) -> AsyncGenerator[Database, None]:
    """Fresh schema in a per-test SQLite file."""
    database = Database.from_settings(settings)
    await database.create_all()
    yield database
    await database.dispose()


@pytest.fixture
def graph(db, settings) -> GraphStore:
    return GraphStore(db, settings)


@pytest.fixture
def ledger(db, graph, fake_clock, metrics) -> DecisionLedger:
    return DecisionLedger(db, graph, clock=fake_clock, metrics=metrics)


@pytest.fixture
def ranker(db, settings, fake_clock) -> ExpertiseRanker:
    return ExpertiseRanker(db, settings, clock=fake_clock)


@pytest.fixture
def search_engine(db, settings, fake_clock, metrics) -> HybridSearchEngine:
    return HybridSearchEngine(
        CandidateRepository(db),
        settings,
        metrics=metrics,
        clock=fake_clock,
    )


@pytest.fixture
def service(db, settings, fake_clock) -> KnowledgeQueryService:
    return KnowledgeQueryService.from_database(db, settings, clock=fake_clock)


# =============================================================================
# FACTORY FUNCTIONS
# =============================================================================


class TestDataFactory:
    """Factory for creating test identifiers."""

    @staticmethod
    def organization_id() -> str:
        return f"org_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def user_id() -> str:
        return f"user_{uuid.uuid4().hex[:12]}"


@pytest.fixture
def factory() -> type[TestDataFactory]:
    """Provide test data factory."""
    return TestDataFactory


@pytest.fixture
def org_id(factory) -> str:
    return factory.organization_id()
