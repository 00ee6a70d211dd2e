"""Cycle runners and worker wiring for the ingestion and evaluation engines.

Each cycle opens a fresh unit of work from the factory and closes it when
done, mirroring one database session per tick.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from signal_engine.connectors.registry import DataSourceRegistry
from signal_engine.core.config import Settings, settings
from signal_engine.core.utils.logging_config import get_logger
from signal_engine.evaluation.cycle import EvaluationCycle, EvaluationResult
from signal_engine.ingestion.scheduler import IngestionResult, IngestionScheduler
from signal_engine.repositories.ports import RuleFilter, UnitOfWorkFactory
from signal_engine.workers.periodic import PeriodicWorker

logger = get_logger(__name__)

# Share of attempted assets above which an ingestion cycle is flagged
HIGH_ERROR_RATE = 0.10


async def run_ingestion_cycle(
    uow_factory: UnitOfWorkFactory,
    registry: DataSourceRegistry,
    config: Settings = settings,
) -> IngestionResult:
    uow = uow_factory()
    try:
        result = await IngestionScheduler(
            uow,
            registry,
            fetch_timeout_seconds=config.fetch_timeout_seconds,
            max_assets_per_tick=config.ingestion_max_assets_per_tick,
        ).run_cycle()
    finally:
        await uow.close()

    if result.error_rate > HIGH_ERROR_RATE:
        logger.warning(
            "high_ingestion_error_rate",
            errors=result.errors,
            assets_attempted=result.assets_attempted,
            error_rate=round(result.error_rate, 3),
        )
    return result


async def run_evaluation_cycle(
    uow_factory: UnitOfWorkFactory,
    rule_filter: Optional[RuleFilter] = None,
    config: Settings = settings,
) -> EvaluationResult:
    uow = uow_factory()
    try:
        return await EvaluationCycle(
            uow, default_recipient=config.default_notification_recipient
        ).run_cycle(rule_filter)
    finally:
        await uow.close()


def build_ingestion_worker(
    uow_factory: UnitOfWorkFactory,
    registry: DataSourceRegistry,
    config: Settings = settings,
) -> PeriodicWorker:
    return PeriodicWorker(
        name="metric_ingestion",
        interval_seconds=config.ingestion_tick_seconds,
        tick=lambda: run_ingestion_cycle(uow_factory, registry, config),
        enabled=config.ingestion_enabled,
    )


def build_evaluation_worker(
    uow_factory: UnitOfWorkFactory,
    rule_filter: Optional[RuleFilter] = None,
    config: Settings = settings,
) -> PeriodicWorker:
    return PeriodicWorker(
        name="rule_evaluation",
        interval_seconds=config.evaluation_interval_seconds,
        tick=lambda: run_evaluation_cycle(uow_factory, rule_filter, config),
        enabled=config.evaluation_enabled,
    )


async def run_workers(workers: list[PeriodicWorker]) -> None:
    """Run workers concurrently until all stop; cancelling cancels them all."""
    await asyncio.gather(*(worker.run() for worker in workers))
