"""Custom HTTP API connector for tenant-defined JSON endpoints.

Custom endpoints cannot be batched: each identifier is its own URL, either
absolute or a path relative to ``settings.custom_api_base_url``. Identifiers
are fetched concurrently, each under its own deadline, and an HTTP error, a
parse error or a timeout only fails that identifier.

Accepted payloads::

    {"metrics": [{"name": "price", "value": 101.5, "timestamp": "2026-01-01T00:00:00Z"}]}

    {"price": 101.5, "volume": 2000}

Values without a timestamp are stamped with the fetch time. Non-numeric
entries of a flat object are ignored.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import httpx

from signal_engine.connectors.base import (
    BaseConnector,
    ConnectorError,
    DataParsingError,
    FetchedValue,
    FetchResult,
)
from signal_engine.core.config import settings
from signal_engine.core.enums import DataSourceCode
from signal_engine.domain.entities import to_decimal


class CustomApiConnector(BaseConnector):
    """Connector for per-identifier JSON endpoints.

    Usage::

        async with CustomApiConnector() as conn:
            results = await conn.fetch_batch(["https://example.com/metrics/a"])
    """

    SOURCE_NAME: str = DataSourceCode.CUSTOM_API.value
    RATE_LIMIT_PER_SECOND: float = 2.0

    def __init__(
        self,
        base_url: Optional[str] = None,
        identifier_timeout_seconds: Optional[float] = None,
        batch_timeout_seconds: Optional[float] = None,
    ) -> None:
        super().__init__(
            base_url=base_url if base_url is not None else settings.custom_api_base_url
        )
        self.identifier_timeout_seconds = (
            identifier_timeout_seconds
            if identifier_timeout_seconds is not None
            else settings.custom_api_identifier_timeout_seconds
        )
        self.batch_timeout_seconds = (
            batch_timeout_seconds
            if batch_timeout_seconds is not None
            else settings.custom_api_batch_timeout_seconds
        )

    async def fetch_batch(self, identifiers: list[str]) -> dict[str, FetchResult]:
        """Fetch every identifier concurrently, each under its own deadline.

        An identifier that exceeds ``identifier_timeout_seconds``, or is still
        running when ``batch_timeout_seconds`` elapses, becomes a failure
        result. The batch itself never raises for a slow endpoint.
        """
        tasks = {
            identifier: asyncio.create_task(self._fetch_within_deadline(identifier))
            for identifier in dict.fromkeys(identifiers)
        }
        if not tasks:
            return {}
        try:
            await asyncio.wait(tasks.values(), timeout=self.batch_timeout_seconds)
        finally:
            pending = [task for task in tasks.values() if not task.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)

        results: dict[str, FetchResult] = {}
        for identifier, task in tasks.items():
            if task.cancelled():
                self.log.warning(
                    "custom_api_batch_deadline_exceeded",
                    identifier=identifier,
                    timeout_seconds=self.batch_timeout_seconds,
                )
                results[identifier] = FetchResult.failure(
                    identifier, f"Batch deadline of {self.batch_timeout_seconds}s exceeded"
                )
            else:
                results[identifier] = task.result()
        return results

    async def _fetch_within_deadline(self, identifier: str) -> FetchResult:
        try:
            return await asyncio.wait_for(
                self._fetch_one(identifier), timeout=self.identifier_timeout_seconds
            )
        except asyncio.TimeoutError:
            self.log.warning(
                "custom_api_fetch_timeout",
                identifier=identifier,
                timeout_seconds=self.identifier_timeout_seconds,
            )
            return FetchResult.failure(
                identifier, f"Timed out after {self.identifier_timeout_seconds}s"
            )

    async def _fetch_one(self, identifier: str) -> FetchResult:
        if not identifier.startswith(("http://", "https://")) and not self.base_url:
            return FetchResult.failure(
                identifier, "Relative identifier requires custom_api_base_url"
            )
        fetched_at = datetime.now(timezone.utc)
        try:
            response = await self._request("GET", identifier)
            values = parse_payload(response.json(), fetched_at)
        except (httpx.HTTPError, ConnectorError, ValueError) as exc:
            self.log.warning("custom_api_fetch_failed", identifier=identifier, error=str(exc))
            return FetchResult.failure(identifier, str(exc) or type(exc).__name__)
        return FetchResult.ok(identifier, values)


def _parse_timestamp(raw: Any, default: datetime) -> datetime:
    if raw is None:
        return default
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        return datetime.fromtimestamp(raw, tz=timezone.utc)
    if isinstance(raw, str):
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError as exc:
            raise DataParsingError(f"Invalid timestamp {raw!r}") from exc
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise DataParsingError(f"Invalid timestamp {raw!r}")


def parse_payload(payload: Any, fetched_at: datetime) -> list[FetchedValue]:
    """Convert a custom endpoint's JSON body into fetched values.

    Args:
        payload: Decoded JSON body.
        fetched_at: Timestamp used for values the payload does not stamp.

    Returns:
        List of FetchedValue, possibly empty.

    Raises:
        DataParsingError: If the payload matches neither accepted shape.
    """
    if not isinstance(payload, dict):
        raise DataParsingError(f"Expected a JSON object, got {type(payload).__name__}")

    if "metrics" in payload:
        entries = payload["metrics"]
        if not isinstance(entries, list):
            raise DataParsingError("'metrics' must be a list")
        values = []
        for entry in entries:
            if not isinstance(entry, dict) or not entry.get("name"):
                raise DataParsingError(f"Invalid metric entry {entry!r}")
            value = to_decimal(entry.get("value"))
            if value is None:
                raise DataParsingError(
                    f"Invalid value {entry.get('value')!r} for {entry['name']}"
                )
            values.append(
                FetchedValue(
                    metric_name=str(entry["name"]),
                    value=value,
                    timestamp=_parse_timestamp(entry.get("timestamp"), fetched_at),
                )
            )
        return values

    values = []
    for name, raw in payload.items():
        value = to_decimal(raw) if isinstance(raw, (int, float, str)) else None
        if value is None:
            continue
        values.append(FetchedValue(metric_name=str(name), value=value, timestamp=fetched_at))
    return values
