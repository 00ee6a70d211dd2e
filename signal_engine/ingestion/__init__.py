"""Metric ingestion engine."""

from .scheduler import IngestionResult, IngestionScheduler, group_by_data_source

__all__ = ["IngestionResult", "IngestionScheduler", "group_by_data_source"]
