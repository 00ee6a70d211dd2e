"""Domain records and the pure rule evaluator."""

from .entities import (
    Asset,
    Metric,
    MetricDataPoint,
    Notification,
    Rule,
    Signal,
    SignalState,
)
from .evaluator import describe_operator, evaluate

__all__ = [
    "Asset",
    "Metric",
    "MetricDataPoint",
    "Notification",
    "Rule",
    "Signal",
    "SignalState",
    "describe_operator",
    "evaluate",
]
