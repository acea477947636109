"""Root pytest configuration and shared fixtures.

Provides common test fixtures used across all test modules:
- store: SettlementStore over an in-memory SQLite database
- sample_dates: dict of commonly used test dates
- record_factory: factory for valid curtailment record dicts
- load_fixture: callable to load JSON fixtures from tests/fixtures/
"""

from __future__ import annotations

import json
from datetime import date
from pathlib import Path
from typing import Any, Callable

import pytest
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from curtailment_recon.storage import SettlementStore
from support import make_record

FIXTURES_DIR = Path(__file__).parent / "fixtures"


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def engine():
    """In-memory SQLite engine shared across sessions of one test."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    yield engine
    engine.dispose()


@pytest.fixture
def store(engine) -> SettlementStore:
    """SettlementStore with the full schema created."""
    store = SettlementStore.from_engine(engine)
    store.create_schema()
    return store


@pytest.fixture
def sample_dates() -> dict[str, date]:
    """Return a dict of commonly used test dates.

    Keys:
        pre_halving, post_halving, day, next_day
    """
    return {
        "pre_halving": date(2024, 4, 19),
        "post_halving": date(2024, 4, 20),
        "day": date(2025, 3, 28),
        "next_day": date(2025, 3, 29),
    }


@pytest.fixture
def record_factory() -> Callable[..., dict[str, Any]]:
    return make_record


@pytest.fixture
def load_fixture() -> Any:
    """Return a callable that loads JSON fixtures from tests/fixtures/.

    Usage::

        def test_something(load_fixture):
            data = load_fixture("elexon_bid_stack.json")
    """
    def _load(filename: str) -> Any:
        filepath = FIXTURES_DIR / filename
        with filepath.open("r", encoding="utf-8") as f:
            return json.load(f)
    return _load
