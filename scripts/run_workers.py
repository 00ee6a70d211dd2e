#!/usr/bin/env python3
"""Worker entry point for the Signal Engine.

Runs the metric ingestion worker, the rule evaluation worker, or both,
against the PostgreSQL database configured in ``.env``. Each worker ticks
immediately and then on its configured interval until interrupted.

Features:
- ``--engine`` selects ingestion, evaluation or both (default).
- ``--once`` runs a single cycle of each selected engine, prints a summary
  and exits with status 1 if any cycle reported errors.
- ``--frequency`` and ``--tenant`` narrow which rules are evaluated.

Usage::

    python scripts/run_workers.py
    python scripts/run_workers.py --engine ingestion
    python scripts/run_workers.py --once --engine evaluation --frequency 1_MIN
    python scripts/run_workers.py --once --tenant 42
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Ensure project root is on sys.path so ``signal_engine.*`` imports work when
# this script is executed directly.
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from signal_engine.connectors import build_default_registry
from signal_engine.core.config import settings
from signal_engine.core.database import get_async_engine, get_async_session_factory
from signal_engine.core.enums import EvaluationFrequency
from signal_engine.core.utils.logging_config import configure_logging, get_logger
from signal_engine.repositories import RuleFilter, SqlAlchemyUnitOfWork, TenantContext
from signal_engine.workers import (
    build_evaluation_worker,
    build_ingestion_worker,
    run_evaluation_cycle,
    run_ingestion_cycle,
    run_workers,
)

logger = get_logger("run_workers")

ENGINES = ("ingestion", "evaluation", "both")


def _build_rule_filter(frequency: Optional[str], tenant: Optional[int]) -> RuleFilter:
    context = TenantContext.for_tenant(tenant) if tenant else TenantContext.system()
    return RuleFilter(evaluation_frequency=frequency, tenant=context)


async def main(engine: str, once: bool, rule_filter: RuleFilter) -> bool:
    """Run the selected engines.

    Returns:
        True if every cycle completed without errors (``--once``), or when
        the long-running workers stop.
    """
    uow_factory = SqlAlchemyUnitOfWork.factory(get_async_session_factory())
    registry = build_default_registry()
    run_ingestion = engine in ("ingestion", "both")
    run_evaluation = engine in ("evaluation", "both")

    try:
        if once:
            ok = True
            if run_ingestion:
                result = await run_ingestion_cycle(uow_factory, registry)
                print(
                    f"Ingestion: {result.assets_processed} assets, "
                    f"{result.data_points_created} points, {result.errors} errors "
                    f"({result.duration_seconds:.2f}s)"
                )
                ok = ok and result.errors == 0
            if run_evaluation:
                result = await run_evaluation_cycle(uow_factory, rule_filter)
                print(
                    f"Evaluation: {result.rules_evaluated} evaluated, "
                    f"{result.signals_created} signals, {result.rules_skipped} skipped, "
                    f"{result.errors} errors ({result.duration_seconds:.2f}s)"
                )
                ok = ok and result.errors == 0
            return ok

        workers = []
        if run_ingestion:
            workers.append(build_ingestion_worker(uow_factory, registry))
        if run_evaluation:
            workers.append(build_evaluation_worker(uow_factory, rule_filter))
        await run_workers(workers)
        return True
    finally:
        await registry.aclose()
        await get_async_engine().dispose()


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------
def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run the Signal Engine ingestion and evaluation workers.",
    )
    parser.add_argument(
        "--engine",
        choices=ENGINES,
        default="both",
        help="Which engine to run (default: both).",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single cycle of each selected engine and exit.",
    )
    parser.add_argument(
        "--frequency",
        choices=[f.value for f in EvaluationFrequency],
        default=None,
        help="Only evaluate rules with this evaluation frequency.",
    )
    parser.add_argument(
        "--tenant",
        type=int,
        default=None,
        help="Only evaluate rules of this tenant id.",
    )
    args = parser.parse_args(argv)
    if args.tenant is not None and args.tenant <= 0:
        parser.error("--tenant must be a positive integer")
    return args


if __name__ == "__main__":
    args = parse_args()
    configure_logging(settings.debug, settings.log_json)
    try:
        success = asyncio.run(
            main(args.engine, args.once, _build_rule_filter(args.frequency, args.tenant))
        )
    except KeyboardInterrupt:
        logger.info("workers_interrupted")
        success = True
    sys.exit(0 if success else 1)
