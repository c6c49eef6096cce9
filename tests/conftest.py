"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests:
- fake card and session stores (see tests/fakes.py) for unit tests
- an in-memory SQLite engine with the full schema (integration tests)
"""
import sys
from datetime import datetime, timedelta, timezone
from itertools import count
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from config import Settings  # noqa: E402
from cadence.study.cards import ReviewCard  # noqa: E402
from tests.fakes import FakeCardStore, FakeSessionStore  # noqa: E402

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (in-memory SQLite)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def now():
    """Fixed clock for deterministic scheduling."""
    return NOW


@pytest.fixture
def make_card():
    """
    Factory for ReviewCards.

    Cards are created a day before NOW, in creation order, unless told otherwise.
    """
    ids = count(1)

    def _make(**overrides):
        n = next(ids)
        defaults = {
            "id": f"card-{n:03d}",
            "owner_id": "learner-1",
            "front": f"Question {n}",
            "back": f"Answer {n}",
            "created_at": NOW - timedelta(days=1) + timedelta(seconds=n),
            "due_at": NOW - timedelta(days=1) + timedelta(seconds=n),
        }
        defaults.update(overrides)
        return ReviewCard(**defaults)

    return _make


@pytest.fixture
def fake_cards():
    return FakeCardStore()


@pytest.fixture
def fake_sessions():
    return FakeSessionStore()


@pytest.fixture
def test_settings():
    """Settings pinned to defaults, independent of any local .env."""
    return Settings(_env_file=None, database_url="sqlite://", log_file=None)


@pytest.fixture
def sqlite_engine():
    """Fresh in-memory SQLite database with the full schema."""
    from cadence.db.database import init_db

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine):
    return sessionmaker(
        bind=sqlite_engine, autocommit=False, autoflush=False, expire_on_commit=False
    )
