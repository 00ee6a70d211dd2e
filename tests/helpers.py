"""Builders and fakes shared across the test suite.

- NOW: fixed aware UTC timestamp used as the cycle clock
- make_asset / make_metric / make_rule / make_point: record builders with
  sensible defaults that fail loudly on invalid input
- ok_result: successful FetchResult from keyword values
- FakeGateway: scriptable DataSourceGateway recording its calls
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from signal_engine.connectors.base import FetchedValue, FetchResult
from signal_engine.domain.entities import Asset, Metric, MetricDataPoint, Rule

NOW = datetime(2026, 3, 2, 12, 0, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------
def make_metric(
    id: int = 1,
    tenant_id: int = 1,
    asset_id: int = 1,
    name: str = "price",
    **kwargs: Any,
) -> Metric:
    metric, error = Metric.create(id=id, tenant_id=tenant_id, asset_id=asset_id, name=name, **kwargs)
    assert error is None, error
    return metric


def make_asset(
    id: int = 1,
    tenant_id: int = 1,
    identifier: str = "BTC",
    data_source_code: str = "BINANCE",
    ingestion_interval_seconds: int = 60,
    metric_names: tuple[str, ...] = ("price",),
    metric_id_start: Optional[int] = None,
    **kwargs: Any,
) -> Asset:
    """Build an asset carrying one metric per name.

    Metric ids default to ``id * 10 + n`` so they never collide across
    assets built in the same test.
    """
    start = metric_id_start if metric_id_start is not None else id * 10
    metrics = tuple(
        make_metric(id=start + n, tenant_id=tenant_id, asset_id=id, name=name)
        for n, name in enumerate(metric_names)
    )
    asset, error = Asset.create(
        id=id,
        tenant_id=tenant_id,
        identifier=identifier,
        data_source_code=data_source_code,
        ingestion_interval_seconds=ingestion_interval_seconds,
        metrics=metrics,
        **kwargs,
    )
    assert error is None, error
    return asset


def make_rule(
    id: int = 1,
    tenant_id: int = 1,
    asset_id: int = 1,
    name: str = "BTC above 100",
    metric_name: str = "price",
    operator: str = "GT",
    threshold: Any = "100",
    consecutive_breaches_required: int = 1,
    **kwargs: Any,
) -> Rule:
    rule, error = Rule.create(
        id=id,
        tenant_id=tenant_id,
        asset_id=asset_id,
        name=name,
        metric_name=metric_name,
        operator=operator,
        threshold=threshold,
        consecutive_breaches_required=consecutive_breaches_required,
        **kwargs,
    )
    assert error is None, error
    return rule


def make_point(
    metric_id: int,
    value: Any,
    tenant_id: int = 1,
    timestamp: datetime = NOW,
) -> MetricDataPoint:
    point, error = MetricDataPoint.create(
        tenant_id=tenant_id,
        metric_id=metric_id,
        value=value,
        timestamp=timestamp,
        created_at=timestamp,
    )
    assert error is None, error
    return point


def ok_result(identifier: str, at: datetime = NOW, **values: Any) -> FetchResult:
    return FetchResult.ok(
        identifier,
        [FetchedValue(name, Decimal(str(v)), at) for name, v in values.items()],
    )


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------
class FakeGateway:
    """DataSourceGateway returning scripted results and recording calls.

    ``results`` maps identifier -> FetchResult; identifiers missing from it
    are simply absent from the returned dict. ``error`` is raised from
    every call instead, and ``delay`` sleeps before answering.
    """

    def __init__(
        self,
        code: str = "BINANCE",
        results: Optional[dict[str, FetchResult]] = None,
        error: Optional[BaseException] = None,
        delay: float = 0.0,
    ) -> None:
        self.code = code
        self.results = results or {}
        self.error = error
        self.delay = delay
        self.calls: list[list[str]] = []

    async def fetch_batch(self, identifiers: list[str]) -> dict[str, FetchResult]:
        self.calls.append(list(identifiers))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return {i: self.results[i] for i in identifiers if i in self.results}

