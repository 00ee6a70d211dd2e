"""Tenant, asset and metric definition tables.

Regular PostgreSQL tables. An asset is one tenant's pointer to an external
identifier on a data source; its ingestion cursor (last_ingested_at,
next_ingestion_at) drives the ingestion scheduler. Metric definitions are
unique per (asset_id, name).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base


class TenantRecord(Base):
    __tablename__ = "tenants"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    default_notification_email: Mapped[Optional[str]] = mapped_column(
        String(320), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )


class AssetRecord(Base):
    __tablename__ = "assets"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    identifier: Mapped[str] = mapped_column(String(200), nullable=False)
    data_source_code: Mapped[str] = mapped_column(String(50), nullable=False)
    ingestion_interval_seconds: Mapped[int] = mapped_column(
        Integer, nullable=False, default=60
    )
    last_ingested_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    next_ingestion_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    __table_args__ = (
        CheckConstraint(
            "ingestion_interval_seconds >= 10", name="min_ingestion_interval"
        ),
        Index("ix_assets_next_ingestion_at", "next_ingestion_at"),
        Index("ix_assets_data_source_identifier", "data_source_code", "identifier"),
    )


class MetricRecord(Base):
    __tablename__ = "metrics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    asset_id: Mapped[int] = mapped_column(
        ForeignKey("assets.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    unit: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        UniqueConstraint("asset_id", "name", name="uq_metrics_asset_name"),
    )
