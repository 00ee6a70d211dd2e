"""Rule and signal-state tables.

A rule is a tenant-owned threshold condition over one named metric of one
asset. signal_states holds exactly one breach-counter row per rule
(unique rule_id), created lazily on the rule's first evaluation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from .base import DECIMAL_TYPE, Base


class RuleRecord(Base):
    __tablename__ = "rules"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    asset_id: Mapped[int] = mapped_column(
        ForeignKey("assets.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    metric_name: Mapped[str] = mapped_column(String(100), nullable=False)
    operator: Mapped[str] = mapped_column(String(10), nullable=False)
    threshold: Mapped[Decimal] = mapped_column(DECIMAL_TYPE, nullable=False)
    severity: Mapped[str] = mapped_column(String(20), nullable=False)
    evaluation_frequency: Mapped[str] = mapped_column(
        String(20), nullable=False, default="5_MIN"
    )
    consecutive_breaches_required: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)

    __table_args__ = (
        CheckConstraint(
            "consecutive_breaches_required >= 1", name="min_consecutive_breaches"
        ),
        Index("ix_rules_tenant_active", "tenant_id", "is_active"),
    )


class SignalStateRecord(Base):
    __tablename__ = "signal_states"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    tenant_id: Mapped[int] = mapped_column(
        ForeignKey("tenants.id"), nullable=False
    )
    rule_id: Mapped[int] = mapped_column(
        ForeignKey("rules.id"), nullable=False
    )
    consecutive_breaches: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    last_evaluated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    last_metric_value: Mapped[Optional[Decimal]] = mapped_column(
        DECIMAL_TYPE, nullable=True
    )
    is_breached: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("rule_id", name="uq_signal_states_rule_id"),
        CheckConstraint(
            "consecutive_breaches >= 0", name="non_negative_breaches"
        ),
    )
