"""SQLAlchemy 2.0 ORM models for the Signal Engine.

Re-exports Base and all model classes for convenient imports:
  - 3 definition tables: TenantRecord, AssetRecord, MetricRecord
  - 1 time-series table: MetricDataRecord
  - 2 rule tables: RuleRecord, SignalStateRecord
  - 2 output tables: SignalRecord, NotificationRecord
"""

from .assets import AssetRecord, MetricRecord, TenantRecord
from .base import Base
from .metric_data import MetricDataRecord
from .rules import RuleRecord, SignalStateRecord
from .signals import NotificationRecord, SignalRecord

__all__ = [
    "Base",
    "TenantRecord",
    "AssetRecord",
    "MetricRecord",
    "MetricDataRecord",
    "RuleRecord",
    "SignalStateRecord",
    "SignalRecord",
    "NotificationRecord",
]
