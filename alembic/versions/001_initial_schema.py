"""Initial schema with 8 tables for tenants, assets, rules and signals.

Creates the complete database schema for the Signal Engine:
- 3 definition tables: tenants, assets, metrics
- 1 time-series table: metric_data
- 2 rule tables: rules, signal_states
- 2 output tables: signals, notifications

Revision ID: 5e1a9c0d7b21
Revises: None
Create Date: 2026-10-17

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "5e1a9c0d7b21"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

DECIMAL = sa.Numeric(28, 10)


def upgrade() -> None:
    # -----------------------------------------------------------------------
    # Step 1: Definition tables
    # -----------------------------------------------------------------------

    # tenants -- notification addressing only
    op.create_table(
        "tenants",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("default_notification_email", sa.String(320), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_tenants"),
    )

    # assets -- external identifiers with ingestion cursor
    op.create_table(
        "assets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("identifier", sa.String(200), nullable=False),
        sa.Column("data_source_code", sa.String(50), nullable=False),
        sa.Column("ingestion_interval_seconds", sa.Integer(), nullable=False, server_default="60"),
        sa.Column("last_ingested_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("next_ingestion_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_assets"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_assets_tenant_id_tenants"),
        sa.CheckConstraint(
            "ingestion_interval_seconds >= 10",
            name="ck_assets_min_ingestion_interval",
        ),
    )
    op.create_index("ix_assets_next_ingestion_at", "assets", ["next_ingestion_at"])
    op.create_index(
        "ix_assets_data_source_identifier", "assets", ["data_source_code", "identifier"]
    )

    # metrics -- named measurements per asset
    op.create_table(
        "metrics",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("asset_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("unit", sa.String(50), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_metrics"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_metrics_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"], name="fk_metrics_asset_id_assets"),
        sa.UniqueConstraint("asset_id", "name", name="uq_metrics_asset_name"),
    )

    # -----------------------------------------------------------------------
    # Step 2: Time series
    # -----------------------------------------------------------------------
    op.create_table(
        "metric_data",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("metric_id", sa.Integer(), nullable=False),
        sa.Column("value", DECIMAL, nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_metric_data"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_metric_data_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["metric_id"], ["metrics.id"], name="fk_metric_data_metric_id_metrics"),
    )
    op.create_index(
        "ix_metric_data_metric_timestamp", "metric_data", ["metric_id", "timestamp"]
    )

    # -----------------------------------------------------------------------
    # Step 3: Rules and breach state
    # -----------------------------------------------------------------------
    op.create_table(
        "rules",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("asset_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("metric_name", sa.String(100), nullable=False),
        sa.Column("operator", sa.String(10), nullable=False),
        sa.Column("threshold", DECIMAL, nullable=False),
        sa.Column("severity", sa.String(20), nullable=False),
        sa.Column("evaluation_frequency", sa.String(20), nullable=False, server_default="5_MIN"),
        sa.Column("consecutive_breaches_required", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.PrimaryKeyConstraint("id", name="pk_rules"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_rules_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"], name="fk_rules_asset_id_assets"),
        sa.CheckConstraint(
            "consecutive_breaches_required >= 1",
            name="ck_rules_min_consecutive_breaches",
        ),
    )
    op.create_index("ix_rules_tenant_active", "rules", ["tenant_id", "is_active"])

    op.create_table(
        "signal_states",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=False),
        sa.Column("consecutive_breaches", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_evaluated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_metric_value", DECIMAL, nullable=True),
        sa.Column("is_breached", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.PrimaryKeyConstraint("id", name="pk_signal_states"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_signal_states_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["rule_id"], ["rules.id"], name="fk_signal_states_rule_id_rules"),
        sa.UniqueConstraint("rule_id", name="uq_signal_states_rule_id"),
        sa.CheckConstraint(
            "consecutive_breaches >= 0",
            name="ck_signal_states_non_negative_breaches",
        ),
    )

    # -----------------------------------------------------------------------
    # Step 4: Signals and the notification queue
    # -----------------------------------------------------------------------
    op.create_table(
        "signals",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("rule_id", sa.Integer(), nullable=False),
        sa.Column("asset_id", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("trigger_value", DECIMAL, nullable=False),
        sa.Column("threshold_value", DECIMAL, nullable=False),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_signals"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_signals_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["rule_id"], ["rules.id"], name="fk_signals_rule_id_rules"),
        sa.ForeignKeyConstraint(["asset_id"], ["assets.id"], name="fk_signals_asset_id_assets"),
    )
    op.create_index("ix_signals_tenant_triggered_at", "signals", ["tenant_id", "triggered_at"])
    op.create_index("ix_signals_rule_id", "signals", ["rule_id"])

    op.create_table(
        "notifications",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column("tenant_id", sa.Integer(), nullable=False),
        sa.Column("signal_id", sa.BigInteger(), nullable=False),
        sa.Column("channel", sa.String(20), nullable=False),
        sa.Column("recipient", sa.String(320), nullable=False),
        sa.Column("subject", sa.String(500), nullable=False),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column("is_sent", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_notifications"),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], name="fk_notifications_tenant_id_tenants"),
        sa.ForeignKeyConstraint(["signal_id"], ["signals.id"], name="fk_notifications_signal_id_signals"),
    )
    op.create_index("ix_notifications_pending", "notifications", ["is_sent", "retry_count"])


def downgrade() -> None:
    op.drop_index("ix_notifications_pending")
    op.drop_table("notifications")
    op.drop_index("ix_signals_rule_id")
    op.drop_index("ix_signals_tenant_triggered_at")
    op.drop_table("signals")
    op.drop_table("signal_states")
    op.drop_index("ix_rules_tenant_active")
    op.drop_table("rules")
    op.drop_index("ix_metric_data_metric_timestamp")
    op.drop_table("metric_data")
    op.drop_table("metrics")
    op.drop_index("ix_assets_data_source_identifier")
    op.drop_index("ix_assets_next_ingestion_at")
    op.drop_table("assets")
    op.drop_table("tenants")
