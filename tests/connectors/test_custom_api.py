"""Tests for the custom JSON API connector and the gateway registry.

Uses respx to mock custom endpoints and verify:
- One request per identifier, absolute or relative to the base URL
- Both accepted payload shapes
- HTTP and parse failures fail only their own identifier
- A hanging endpoint times out without failing the rest of the batch
- Case-insensitive registry resolution
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest
import respx

from signal_engine.connectors.base import DataParsingError
from signal_engine.connectors.binance import BinanceConnector
from signal_engine.connectors.custom_api import CustomApiConnector, parse_payload
from signal_engine.connectors.registry import DataSourceRegistry, build_default_registry
from tests.helpers import NOW, FakeGateway

BASE_URL = "https://metrics.example.com"


# ---------------------------------------------------------------------------
# Payload parsing
# ---------------------------------------------------------------------------
def test_parse_metrics_list_payload():
    payload = {
        "metrics": [
            {"name": "price", "value": "101.5", "timestamp": "2026-03-01T10:00:00Z"},
            {"name": "volume", "value": 2000},
        ]
    }
    values = parse_payload(payload, NOW)

    assert [(v.metric_name, v.value) for v in values] == [
        ("price", Decimal("101.5")),
        ("volume", Decimal("2000")),
    ]
    assert values[0].timestamp == datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)
    assert values[1].timestamp == NOW


def test_parse_flat_payload_skips_non_numeric():
    values = parse_payload({"price": 3.25, "status": "ok", "nested": {"a": 1}, "flag": True}, NOW)
    assert [(v.metric_name, v.value) for v in values] == [("price", Decimal("3.25"))]


@pytest.mark.parametrize(
    "payload",
    [
        [1, 2, 3],
        {"metrics": "nope"},
        {"metrics": [{"name": "price", "value": "abc"}]},
        {"metrics": [{"value": 1}]},
        {"metrics": [{"name": "price", "value": 1, "timestamp": "yesterday"}]},
    ],
)
def test_parse_invalid_payload_raises(payload):
    with pytest.raises(DataParsingError):
        parse_payload(payload, NOW)


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------
@pytest.mark.asyncio
async def test_fetch_batch_requests_each_identifier():
    """Each identifier is fetched on its own; one failure does not fail the others."""
    with respx.mock(base_url=BASE_URL) as mock:
        good = mock.get("/feeds/a").respond(200, json={"temperature": 21.5})
        bad = mock.get("/feeds/b").respond(404)

        async with CustomApiConnector(base_url=BASE_URL) as conn:
            results = await conn.fetch_batch(["/feeds/a", "/feeds/b"])

    assert good.call_count == 1
    assert bad.call_count == 1
    assert results["/feeds/a"].success is True
    assert results["/feeds/a"].values[0].value == Decimal("21.5")
    assert results["/feeds/b"].success is False


@pytest.mark.asyncio
async def test_absolute_url_identifier():
    with respx.mock() as mock:
        mock.get("https://other.example.org/v1/rate").respond(
            200, json={"metrics": [{"name": "rate", "value": 0.05}]}
        )

        async with CustomApiConnector(base_url="") as conn:
            results = await conn.fetch_batch(["https://other.example.org/v1/rate"])

    result = results["https://other.example.org/v1/rate"]
    assert result.success is True
    assert result.values[0].metric_name == "rate"


@pytest.mark.asyncio
async def test_invalid_json_is_failure():
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/feeds/a").respond(200, text="<html>oops</html>")

        async with CustomApiConnector(base_url=BASE_URL) as conn:
            results = await conn.fetch_batch(["/feeds/a"])

    assert results["/feeds/a"].success is False


@pytest.mark.asyncio
async def test_relative_identifier_without_base_url_fails():
    async with CustomApiConnector(base_url="") as conn:
        results = await conn.fetch_batch(["/feeds/a"])

    assert results["/feeds/a"].success is False
    assert "custom_api_base_url" in results["/feeds/a"].error_message



async def _hang(request):
    await asyncio.sleep(5)
    return httpx.Response(200, json={"price": 1})


@pytest.mark.asyncio
async def test_hanging_endpoint_fails_only_its_identifier():
    """A slow endpoint times out on its own while the others still succeed."""
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/good").respond(200, json={"price": 150})
        mock.get("/hangs").mock(side_effect=_hang)

        async with CustomApiConnector(
            base_url=BASE_URL, identifier_timeout_seconds=0.2, batch_timeout_seconds=2.0
        ) as conn:
            results = await conn.fetch_batch(["/hangs", "/good"])

    assert results["/good"].success is True
    assert results["/good"].values[0].value == Decimal("150")
    assert results["/hangs"].success is False
    assert "Timed out" in results["/hangs"].error_message


@pytest.mark.asyncio
async def test_batch_deadline_fails_unfinished_identifiers():
    with respx.mock(base_url=BASE_URL) as mock:
        mock.get("/good").respond(200, json={"price": 150})
        mock.get("/hangs").mock(side_effect=_hang)

        async with CustomApiConnector(
            base_url=BASE_URL, identifier_timeout_seconds=10.0, batch_timeout_seconds=0.2
        ) as conn:
            results = await conn.fetch_batch(["/hangs", "/good"])

    assert results["/good"].success is True
    assert results["/hangs"].success is False
    assert "deadline" in results["/hangs"].error_message


@pytest.mark.asyncio
async def test_empty_batch():
    async with CustomApiConnector(base_url=BASE_URL) as conn:
        assert await conn.fetch_batch([]) == {}

# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------
def test_registry_resolves_case_insensitively():
    gateway = FakeGateway(code="Binance")
    registry = DataSourceRegistry([gateway])

    assert registry.resolve("BINANCE") is gateway
    assert registry.resolve("binance") is gateway
    assert registry.resolve(" binance ") is gateway
    assert registry.resolve("KRAKEN") is None
    assert registry.resolve(None) is None
    assert registry.registered_codes() == ["BINANCE"]


def test_registry_register_replaces_existing():
    first, second = FakeGateway(code="CUSTOM_API"), FakeGateway(code="custom_api")
    registry = DataSourceRegistry([first])
    registry.register(second)

    assert registry.resolve("CUSTOM_API") is second


def test_default_registry_contents():
    registry = build_default_registry()

    assert registry.registered_codes() == ["BINANCE", "CUSTOM_API"]
    assert isinstance(registry.resolve("binance"), BinanceConnector)
