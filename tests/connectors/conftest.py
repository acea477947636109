"""Connector-specific pytest fixtures.

Loads sample API response fixtures for the connector test modules:
Elexon bid/offer settlement stacks, mempool.space difficulty adjustments
and a small wind-farm BMU mapping.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from curtailment_recon.connectors.bmu_mapping import BmuMapping

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


def _load_json(filename: str) -> Any:
    """Load a JSON fixture file."""
    filepath = FIXTURES_DIR / filename
    with filepath.open("r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def bid_stack_response() -> dict[str, Any]:
    """Sample Elexon bid stack for 2025-03-28 period 17."""
    return _load_json("elexon_bid_stack.json")


@pytest.fixture
def offer_stack_response() -> dict[str, Any]:
    """Sample Elexon offer stack for 2025-03-28 period 17."""
    return _load_json("elexon_offer_stack.json")


@pytest.fixture
def difficulty_response() -> list[list[float]]:
    """Sample mempool.space difficulty adjustment history (unsorted)."""
    return _load_json("difficulty_adjustments.json")


@pytest.fixture
def bmu_mapping_path() -> Path:
    return FIXTURES_DIR / "bmu_mapping.json"


@pytest.fixture
def bmu_mapping() -> BmuMapping:
    return BmuMapping.from_entries(_load_json("bmu_mapping.json"))
