"""Connector-specific pytest fixtures.

Loads sample API response fixtures for the connector test modules.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

FIXTURES_DIR = Path(__file__).parent.parent / "fixtures"


def _load_json(filename: str) -> Any:
    """Load a JSON fixture file."""
    filepath = FIXTURES_DIR / filename
    with filepath.open("r", encoding="utf-8") as f:
        return json.load(f)


@pytest.fixture
def binance_ticker_response() -> list[dict[str, Any]]:
    """Sample Binance 24h ticker response for BTCUSDT and ETHUSDT."""
    return _load_json("binance_ticker_sample.json")
