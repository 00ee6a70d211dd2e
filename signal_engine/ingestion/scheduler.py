"""Ingestion scheduler -- one cycle of due-asset data collection.

A cycle:

1. Loads active assets whose ``next_ingestion_at`` is unset or not after
   ``now`` (bounded by ``settings.ingestion_max_assets_per_tick``).
2. Groups them by data source code, not by tenant, so that many tenants
   watching the same identifier cost one upstream request.
3. Calls the gateway's ``fetch_batch`` once per group with the distinct
   identifiers of the group, bounded by ``settings.fetch_timeout_seconds``.
4. Fans each fetched value out to every asset holding that identifier,
   writing points under the asset's own tenant and metric ids.
5. Advances each successfully ingested asset's cursor to
   ``now + ingestion_interval_seconds``.
6. Commits once.

Failures are isolated per asset: a failed fetch, an unregistered data source
or an exception while fanning out leaves that asset's cursor untouched and
counts one error. Each asset's writes run inside a savepoint so a partial
fan-out never survives.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import structlog

from signal_engine.connectors.base import FetchResult
from signal_engine.connectors.registry import DataSourceRegistry
from signal_engine.core.config import settings
from signal_engine.core.exceptions import CycleCommitError
from signal_engine.core.utils.clock import utcnow
from signal_engine.domain.entities import Asset, MetricDataPoint
from signal_engine.repositories.ports import UnitOfWork

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IngestionResult:
    """Counters for one ingestion cycle."""

    assets_processed: int = 0
    data_points_created: int = 0
    errors: int = 0
    duration_seconds: float = 0.0

    @property
    def assets_attempted(self) -> int:
        return self.assets_processed + self.errors

    @property
    def error_rate(self) -> float:
        attempted = self.assets_attempted
        return self.errors / attempted if attempted else 0.0


@dataclass
class _Tally:
    processed: int = 0
    points: int = 0
    errors: int = 0


def group_by_data_source(assets: list[Asset]) -> dict[str, list[Asset]]:
    """Group assets by upper-cased data source code, in first-seen order."""
    groups: dict[str, list[Asset]] = {}
    for asset in assets:
        groups.setdefault(asset.data_source_code.strip().upper(), []).append(asset)
    return groups


class IngestionScheduler:
    """Runs ingestion cycles against a unit of work and a gateway registry.

    Args:
        uow: Unit of work for this cycle; committed once at the end.
        registry: Gateways keyed by data source code.
        fetch_timeout_seconds: Upper bound on one ``fetch_batch`` call.
        max_assets_per_tick: Cap on due assets loaded per cycle.
        clock: Source of ``now`` when ``run_cycle`` is called without one.
    """

    def __init__(
        self,
        uow: UnitOfWork,
        registry: DataSourceRegistry,
        fetch_timeout_seconds: Optional[float] = None,
        max_assets_per_tick: Optional[int] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.uow = uow
        self.registry = registry
        self.fetch_timeout_seconds = (
            fetch_timeout_seconds
            if fetch_timeout_seconds is not None
            else settings.fetch_timeout_seconds
        )
        self.max_assets_per_tick = (
            max_assets_per_tick
            if max_assets_per_tick is not None
            else settings.ingestion_max_assets_per_tick
        )
        self.clock = clock

    async def run_cycle(self, now: Optional[datetime] = None) -> IngestionResult:
        started = time.monotonic()
        now = now or self.clock()

        try:
            assets = await self.uow.assets.get_due_for_ingestion(
                now, self.max_assets_per_tick
            )
            if not assets:
                logger.debug("no_assets_due", now=now.isoformat())
                return IngestionResult(duration_seconds=time.monotonic() - started)

            tally = _Tally()
            for code, group in group_by_data_source(assets).items():
                await self._ingest_group(code, group, now, tally)
        except (Exception, asyncio.CancelledError):
            await self.uow.rollback()
            raise

        await self._commit()

        result = IngestionResult(
            assets_processed=tally.processed,
            data_points_created=tally.points,
            errors=tally.errors,
            duration_seconds=time.monotonic() - started,
        )
        log = logger.info if (result.assets_processed or result.errors) else logger.debug
        log(
            "ingestion_cycle_completed",
            assets_processed=result.assets_processed,
            data_points_created=result.data_points_created,
            errors=result.errors,
            duration_seconds=round(result.duration_seconds, 3),
        )
        return result

    async def _commit(self) -> None:
        try:
            await self.uow.commit()
        except Exception as exc:
            await self.uow.rollback()
            logger.critical("ingestion_commit_failed", error=str(exc))
            raise CycleCommitError("Ingestion cycle commit failed") from exc

    # ------------------------------------------------------------------
    # Per-group fetch and per-asset fan-out
    # ------------------------------------------------------------------
    async def _fetch_group(
        self, code: str, identifiers: list[str]
    ) -> dict[str, FetchResult]:
        gateway = self.registry.resolve(code)
        if gateway is None:
            logger.warning("data_source_not_registered", data_source=code)
            return {}
        try:
            return await asyncio.wait_for(
                gateway.fetch_batch(identifiers), timeout=self.fetch_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning(
                "data_source_fetch_timeout",
                data_source=code,
                identifiers=len(identifiers),
                timeout_seconds=self.fetch_timeout_seconds,
            )
        except Exception as exc:
            logger.warning(
                "data_source_fetch_failed",
                data_source=code,
                identifiers=len(identifiers),
                error=str(exc),
            )
        return {}

    async def _ingest_group(
        self, code: str, group: list[Asset], now: datetime, tally: _Tally
    ) -> None:
        identifiers = list(dict.fromkeys(asset.identifier for asset in group))
        results = await self._fetch_group(code, identifiers)

        for asset in group:
            result = results.get(asset.identifier)
            if result is None or not result.success:
                tally.errors += 1
                logger.warning(
                    "asset_fetch_failed",
                    asset_id=asset.id,
                    tenant_id=asset.tenant_id,
                    data_source=code,
                    identifier=asset.identifier,
                    error=result.error_message if result is not None else "no result",
                )
                continue

            try:
                async with self.uow.savepoint():
                    created = await self._store_asset(asset, result, now)
            except Exception as exc:
                tally.errors += 1
                logger.error(
                    "asset_ingestion_failed",
                    asset_id=asset.id,
                    tenant_id=asset.tenant_id,
                    error=str(exc),
                    exc_info=True,
                )
                continue

            tally.processed += 1
            tally.points += created

    async def _store_asset(self, asset: Asset, result: FetchResult, now: datetime) -> int:
        points: list[MetricDataPoint] = []
        for fetched in result.values:
            metric = asset.find_metric(fetched.metric_name)
            if metric is None:
                logger.debug(
                    "fetched_metric_unmatched",
                    asset_id=asset.id,
                    metric_name=fetched.metric_name,
                )
                continue
            point, error = MetricDataPoint.create(
                tenant_id=asset.tenant_id,
                metric_id=metric.id,
                value=fetched.value,
                timestamp=fetched.timestamp,
                created_at=now,
            )
            if error:
                raise ValueError(error)
            points.append(point)

        if points:
            await self.uow.metric_data.add(points)

        advanced = asset.advance_cursor(now)
        await self.uow.cursors.update_cursor(
            asset.id, advanced.last_ingested_at, advanced.next_ingestion_at
        )
        return len(points)
