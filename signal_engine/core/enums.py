"""Shared enumerations used across entities, models and engines.

All enums use the (str, Enum) mixin pattern so their values are
serializable strings, compatible with database storage and JSON output.
"""

from enum import Enum


class RuleOperator(str, Enum):
    """Comparison applied between the latest metric value and a threshold."""

    GT = "GT"
    GTE = "GTE"
    LT = "LT"
    LTE = "LTE"
    EQ = "EQ"


class Severity(str, Enum):
    """Severity attached to a rule and echoed in signal titles."""

    INFO = "INFO"
    WARNING = "WARNING"
    CRITICAL = "CRITICAL"


class SignalStatus(str, Enum):
    """Lifecycle status of a signal.

    Only OPEN is produced here; resolution happens elsewhere.
    """

    OPEN = "OPEN"
    RESOLVED = "RESOLVED"


class NotificationChannel(str, Enum):
    """Delivery channel of a queued notification."""

    EMAIL = "EMAIL"
    WEBHOOK = "WEBHOOK"
    SLACK = "SLACK"


class DataSourceCode(str, Enum):
    """Known external data providers."""

    BINANCE = "BINANCE"
    COINBASE = "COINBASE"
    KRAKEN = "KRAKEN"
    CUSTOM_API = "CUSTOM_API"


class EvaluationFrequency(str, Enum):
    """How often a rule should be evaluated by the evaluation worker."""

    ONE_MINUTE = "1_MIN"
    FIVE_MINUTES = "5_MIN"
    FIFTEEN_MINUTES = "15_MIN"
