"""Binance spot market connector -- 24h rolling ticker statistics.

One ``GET /api/v3/ticker/24hr?symbols=[...]`` call answers a whole batch of
base symbols. Identifiers are base assets ("BTC") quoted against
``settings.binance_quote_asset`` ("USDT"), so "BTC" is requested as
"BTCUSDT". Identifiers that already carry the quote suffix are sent as-is.

Each ticker yields four values stamped with the ticker's ``closeTime``:
price, volume_24h, price_change_24h and price_change_percent_24h.

Binance rejects the whole request (HTTP 400) when any symbol in it is
unknown. In that case the batch is retried symbol by symbol so that valid
identifiers still get data and only the unknown ones fail.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from signal_engine.connectors.base import (
    BaseConnector,
    DataParsingError,
    FetchedValue,
    FetchResult,
)
from signal_engine.core.config import settings
from signal_engine.core.enums import DataSourceCode
from signal_engine.domain.entities import to_decimal

TICKER_PATH = "/api/v3/ticker/24hr"

# Binance ticker field -> metric name
TICKER_FIELDS: dict[str, str] = {
    "lastPrice": "price",
    "volume": "volume_24h",
    "priceChange": "price_change_24h",
    "priceChangePercent": "price_change_percent_24h",
}


class BinanceConnector(BaseConnector):
    """Connector for the Binance public 24h ticker endpoint.

    No API key is required for market data.

    Usage::

        async with BinanceConnector() as conn:
            results = await conn.fetch_batch(["BTC", "ETH"])
    """

    SOURCE_NAME: str = DataSourceCode.BINANCE.value
    BASE_URL: str = "https://api.binance.com"
    RATE_LIMIT_PER_SECOND: float = 10.0

    def __init__(
        self,
        base_url: Optional[str] = None,
        quote_asset: Optional[str] = None,
    ) -> None:
        super().__init__(base_url=base_url or settings.binance_base_url)
        self.quote_asset = (quote_asset or settings.binance_quote_asset).upper()

    def to_symbol(self, identifier: str) -> str:
        """Map a base asset identifier to the Binance trading pair."""
        symbol = identifier.strip().upper()
        if symbol.endswith(self.quote_asset) and symbol != self.quote_asset:
            return symbol
        return f"{symbol}{self.quote_asset}"

    async def fetch_batch(self, identifiers: list[str]) -> dict[str, FetchResult]:
        if not identifiers:
            return {}

        by_symbol: dict[str, list[str]] = {}
        for identifier in identifiers:
            by_symbol.setdefault(self.to_symbol(identifier), []).append(identifier)

        try:
            tickers = await self._fetch_tickers(list(by_symbol))
        except httpx.HTTPStatusError as exc:
            if exc.response.status_code != 400:
                raise
            self.log.warning(
                "batch_rejected_fetching_individually",
                symbols=len(by_symbol),
            )
            return await self._fetch_individually(by_symbol)

        return self._map_results(by_symbol, tickers)

    async def _fetch_tickers(self, symbols: list[str]) -> list[dict[str, Any]]:
        response = await self._request(
            "GET",
            TICKER_PATH,
            params={"symbols": json.dumps(symbols, separators=(",", ":"))},
        )
        payload = response.json()
        if isinstance(payload, dict):
            payload = [payload]
        if not isinstance(payload, list):
            raise DataParsingError(
                f"{self.SOURCE_NAME}: Unexpected ticker payload type {type(payload).__name__}"
            )
        return payload

    async def _fetch_individually(
        self, by_symbol: dict[str, list[str]]
    ) -> dict[str, FetchResult]:
        results: dict[str, FetchResult] = {}
        for symbol, idents in by_symbol.items():
            try:
                tickers = await self._fetch_tickers([symbol])
            except httpx.HTTPStatusError as exc:
                if exc.response.status_code != 400:
                    raise
                for identifier in idents:
                    results[identifier] = FetchResult.failure(
                        identifier, f"Unknown Binance symbol {symbol}"
                    )
                continue
            results.update(self._map_results({symbol: idents}, tickers))
        return results

    def _map_results(
        self,
        by_symbol: dict[str, list[str]],
        tickers: list[dict[str, Any]],
    ) -> dict[str, FetchResult]:
        by_ticker_symbol = {
            str(t.get("symbol", "")).upper(): t for t in tickers if isinstance(t, dict)
        }

        results: dict[str, FetchResult] = {}
        for symbol, idents in by_symbol.items():
            ticker = by_ticker_symbol.get(symbol)
            values: list[FetchedValue] = []
            error: Optional[str] = None
            if ticker is None:
                error = f"No ticker returned for {symbol}"
            else:
                try:
                    values = parse_ticker(ticker)
                except DataParsingError as exc:
                    self.log.warning("ticker_parse_failed", symbol=symbol, error=str(exc))
                    error = str(exc)
            for identifier in idents:
                if error is None:
                    results[identifier] = FetchResult.ok(identifier, values)
                else:
                    results[identifier] = FetchResult.failure(identifier, error)
        return results


def parse_ticker(ticker: dict[str, Any]) -> list[FetchedValue]:
    """Convert one Binance 24h ticker into fetched values.

    Raises:
        DataParsingError: If closeTime or any mapped field is missing or
            not numeric.
    """
    close_time = ticker.get("closeTime")
    if not isinstance(close_time, (int, float)) or isinstance(close_time, bool):
        raise DataParsingError(f"Invalid closeTime {close_time!r}")
    timestamp = datetime.fromtimestamp(close_time / 1000, tz=timezone.utc)

    values = []
    for field, metric_name in TICKER_FIELDS.items():
        value = to_decimal(ticker.get(field))
        if value is None:
            raise DataParsingError(f"Invalid {field} {ticker.get(field)!r}")
        values.append(FetchedValue(metric_name=metric_name, value=value, timestamp=timestamp))
    return values
