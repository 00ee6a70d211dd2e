"""Metric data table -- append-only time series of fetched values.

Each row carries the tenant of the asset that produced it, so one upstream
fetch shared by several tenants yields independent rows per tenant.
Latest-value lookups use the (metric_id, timestamp) index.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import BigInteger, DateTime, ForeignKey, Index, Integer, func
from sqlalchemy.orm import Mapped, mapped_column

from .base import DECIMAL_TYPE, Base


class MetricDataRecord(Base):
    __tablename__ = "metric_data"

    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"),
        primary_key=True,
        autoincrement=True,
    )
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    metric_id: Mapped[int] = mapped_column(
        ForeignKey("metrics.id"), nullable=False
    )
    value: Mapped[Decimal] = mapped_column(DECIMAL_TYPE, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )

    __table_args__ = (
        Index("ix_metric_data_metric_timestamp", "metric_id", "timestamp"),
    )
