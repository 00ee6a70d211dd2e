"""Periodic workers for the ingestion and evaluation engines."""

from .periodic import PeriodicWorker
from .runners import (
    build_evaluation_worker,
    build_ingestion_worker,
    run_evaluation_cycle,
    run_ingestion_cycle,
    run_workers,
)

__all__ = [
    "PeriodicWorker",
    "build_evaluation_worker",
    "build_ingestion_worker",
    "run_evaluation_cycle",
    "run_ingestion_cycle",
    "run_workers",
]
