"""Domain records for assets, metrics, rules, breach state and signals.

All records are frozen dataclasses linked by id. State changes produce new
records (``dataclasses.replace``) that the caller hands back to a repository.

Each record exposes a ``create(...)`` factory returning ``(record, error)``:
on invalid input ``record`` is ``None`` and ``error`` describes the first
problem found. Factories never raise for bad input, so invalid paths can be
tested without exception harnesses. Repositories rebuild records from
storage with the plain constructor.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from signal_engine.core.enums import (
    EvaluationFrequency,
    NotificationChannel,
    RuleOperator,
    Severity,
    SignalStatus,
)
from signal_engine.domain.evaluator import evaluate, normalize_code

MIN_INGESTION_INTERVAL_SECONDS = 10


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------
def to_decimal(value: Any) -> Optional[Decimal]:
    """Convert ``value`` to Decimal, or return None if it is not numeric.

    Floats go through ``str`` so that 0.1 becomes Decimal("0.1") rather
    than its binary expansion. NaN and infinities are rejected.
    """
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, Decimal):
        result = value
    else:
        try:
            result = Decimal(str(value))
        except (InvalidOperation, ValueError):
            return None
    if not result.is_finite():
        return None
    return result


def _positive_id(value: Optional[int], name: str) -> Optional[str]:
    if value is None or value <= 0:
        return f"{name} must be positive."
    return None


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


# ---------------------------------------------------------------------------
# Metric definitions and assets
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Metric:
    """Named measurement definition scoped to one asset.

    Attributes:
        id: Metric id.
        tenant_id: Owning tenant.
        asset_id: Asset the metric belongs to.
        name: Measurement name, matched case-insensitively (e.g. ``"price"``).
        unit: Optional unit label.
        is_active: Inactive metrics receive no data points.
    """

    id: int
    tenant_id: int
    asset_id: int
    name: str
    unit: Optional[str] = None
    is_active: bool = True

    @classmethod
    def create(
        cls,
        id: int,
        tenant_id: int,
        asset_id: int,
        name: str,
        unit: Optional[str] = None,
        is_active: bool = True,
    ) -> tuple[Optional["Metric"], Optional[str]]:
        for error in (
            _positive_id(id, "Metric ID"),
            _positive_id(tenant_id, "Tenant ID"),
            _positive_id(asset_id, "Asset ID"),
        ):
            if error:
                return None, error
        if _blank(name):
            return None, "Metric name is required."
        return cls(id, tenant_id, asset_id, name.strip(), unit, is_active), None

    def matches(self, metric_name: str) -> bool:
        return self.name.casefold() == metric_name.strip().casefold()


@dataclass(frozen=True)
class Asset:
    """A tenant's pointer to an externally-sourced thing to monitor.

    ``next_ingestion_at`` of ``None`` means the asset has never been
    ingested and is due immediately. Once set, it always equals
    ``last_ingested_at + ingestion_interval_seconds``.

    Attributes:
        id: Asset id.
        tenant_id: Owning tenant.
        name: Display name.
        identifier: External identifier on the data source (e.g. ``"BTC"``).
        data_source_code: Provider code (e.g. ``"BINANCE"``).
        ingestion_interval_seconds: Seconds between ingestions (>= 10).
        last_ingested_at: Cursor: last successful ingestion.
        next_ingestion_at: Cursor: when the asset is next due.
        is_active: Inactive assets are never due.
        metrics: Active metric definitions, attached when loaded for ingestion.
    """

    id: int
    tenant_id: int
    name: str
    identifier: str
    data_source_code: str
    ingestion_interval_seconds: int
    last_ingested_at: Optional[datetime] = None
    next_ingestion_at: Optional[datetime] = None
    is_active: bool = True
    metrics: tuple[Metric, ...] = ()

    @classmethod
    def create(
        cls,
        id: int,
        tenant_id: int,
        identifier: str,
        data_source_code: str,
        ingestion_interval_seconds: int,
        name: Optional[str] = None,
        last_ingested_at: Optional[datetime] = None,
        next_ingestion_at: Optional[datetime] = None,
        is_active: bool = True,
        metrics: tuple[Metric, ...] = (),
    ) -> tuple[Optional["Asset"], Optional[str]]:
        for error in (
            _positive_id(id, "Asset ID"),
            _positive_id(tenant_id, "Tenant ID"),
        ):
            if error:
                return None, error
        if _blank(identifier):
            return None, "Asset identifier is required."
        if _blank(data_source_code):
            return None, "Data source code is required."
        if ingestion_interval_seconds < MIN_INGESTION_INTERVAL_SECONDS:
            return None, (
                f"Ingestion interval must be at least "
                f"{MIN_INGESTION_INTERVAL_SECONDS} seconds."
            )
        if next_ingestion_at is not None:
            if last_ingested_at is None:
                return None, "Next ingestion time requires a last ingestion time."
            expected = last_ingested_at + timedelta(seconds=ingestion_interval_seconds)
            if next_ingestion_at != expected:
                return None, "Next ingestion time must equal last ingestion plus interval."
        if any(m.asset_id != id or m.tenant_id != tenant_id for m in metrics):
            return None, "Metrics must belong to the same asset and tenant."
        asset = cls(
            id=id,
            tenant_id=tenant_id,
            name=(name or identifier).strip(),
            identifier=identifier.strip(),
            data_source_code=data_source_code.strip().upper(),
            ingestion_interval_seconds=ingestion_interval_seconds,
            last_ingested_at=last_ingested_at,
            next_ingestion_at=next_ingestion_at,
            is_active=is_active,
            metrics=tuple(metrics),
        )
        return asset, None

    def is_due(self, now: datetime) -> bool:
        if not self.is_active:
            return False
        return self.next_ingestion_at is None or self.next_ingestion_at <= now

    def find_metric(self, metric_name: str) -> Optional[Metric]:
        """Return the active metric whose name matches, ignoring case."""
        for metric in self.metrics:
            if metric.is_active and metric.matches(metric_name):
                return metric
        return None

    def advance_cursor(self, now: datetime) -> "Asset":
        return replace(
            self,
            last_ingested_at=now,
            next_ingestion_at=now + timedelta(seconds=self.ingestion_interval_seconds),
        )


@dataclass(frozen=True)
class MetricDataPoint:
    """One timestamped value of a metric, owned by a tenant.

    ``id`` is assigned by the repository on insert.
    """

    tenant_id: int
    metric_id: int
    value: Decimal
    timestamp: datetime
    created_at: datetime
    id: Optional[int] = None

    @classmethod
    def create(
        cls,
        tenant_id: int,
        metric_id: int,
        value: Any,
        timestamp: datetime,
        created_at: datetime,
    ) -> tuple[Optional["MetricDataPoint"], Optional[str]]:
        for error in (
            _positive_id(tenant_id, "Tenant ID"),
            _positive_id(metric_id, "Metric ID"),
        ):
            if error:
                return None, error
        decimal_value = to_decimal(value)
        if decimal_value is None:
            return None, f"Metric value {value!r} is not a finite number."
        if timestamp is None:
            return None, "Timestamp is required."
        return cls(tenant_id, metric_id, decimal_value, timestamp, created_at), None


# ---------------------------------------------------------------------------
# Rules and breach state
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Rule:
    """Tenant-owned threshold condition over a named metric of one asset.

    Attributes:
        id: Rule id.
        tenant_id: Owning tenant.
        asset_id: Asset whose metric is evaluated.
        name: Display name used in signal titles.
        metric_name: Metric to read, matched case-insensitively.
        operator: GT, GTE, LT, LTE or EQ. Stored as given; unknown codes
            never breach.
        threshold: Value compared against the latest metric value.
        severity: INFO, WARNING or CRITICAL.
        consecutive_breaches_required: Breaches in a row needed to fire (>= 1).
        evaluation_frequency: Worker cadence code (``1_MIN``, ``5_MIN``, ``15_MIN``).
        description: Optional free text.
        is_active: Inactive rules are not evaluated.
    """

    id: int
    tenant_id: int
    asset_id: int
    name: str
    metric_name: str
    operator: str
    threshold: Decimal
    severity: str = Severity.WARNING.value
    consecutive_breaches_required: int = 1
    evaluation_frequency: str = EvaluationFrequency.FIVE_MINUTES.value
    description: Optional[str] = None
    is_active: bool = True

    @classmethod
    def create(
        cls,
        id: int,
        tenant_id: int,
        asset_id: int,
        name: str,
        metric_name: str,
        operator: Any,
        threshold: Any,
        severity: Any = Severity.WARNING,
        consecutive_breaches_required: int = 1,
        evaluation_frequency: Any = EvaluationFrequency.FIVE_MINUTES,
        description: Optional[str] = None,
        is_active: bool = True,
    ) -> tuple[Optional["Rule"], Optional[str]]:
        for error in (
            _positive_id(id, "Rule ID"),
            _positive_id(tenant_id, "Tenant ID"),
            _positive_id(asset_id, "Asset ID"),
        ):
            if error:
                return None, error
        if _blank(name):
            return None, "Rule name is required."
        if _blank(metric_name):
            return None, "Metric name is required."
        operator_code = normalize_code(operator)
        if operator_code not in {op.value for op in RuleOperator}:
            return None, f"Unknown operator {operator!r}."
        severity_code = normalize_code(severity)
        if severity_code not in {level.value for level in Severity}:
            return None, f"Unknown severity {severity!r}."
        decimal_threshold = to_decimal(threshold)
        if decimal_threshold is None:
            return None, f"Threshold {threshold!r} is not a finite number."
        if consecutive_breaches_required < 1:
            return None, "Consecutive breaches required must be at least 1."
        rule = cls(
            id=id,
            tenant_id=tenant_id,
            asset_id=asset_id,
            name=name.strip(),
            metric_name=metric_name.strip(),
            operator=operator_code,
            threshold=decimal_threshold,
            severity=severity_code,
            consecutive_breaches_required=consecutive_breaches_required,
            evaluation_frequency=normalize_code(evaluation_frequency),
            description=description,
            is_active=is_active,
        )
        return rule, None

    def is_breached_by(self, metric_value: Decimal) -> bool:
        return evaluate(self.operator, metric_value, self.threshold)


@dataclass(frozen=True)
class SignalState:
    """Live breach counter for one rule.

    Idle: ``consecutive_breaches == 0`` and not breached.
    Breaching: ``consecutive_breaches >= 1`` and breached.

    Transitions return new records; the only exits from Breaching are a
    non-breaching evaluation (``record_success``) or firing (``reset``).
    """

    tenant_id: int
    rule_id: int
    last_evaluated_at: datetime
    consecutive_breaches: int = 0
    last_metric_value: Optional[Decimal] = None
    is_breached: bool = False

    @classmethod
    def initial(
        cls, tenant_id: int, rule_id: int, at: datetime
    ) -> tuple[Optional["SignalState"], Optional[str]]:
        for error in (
            _positive_id(tenant_id, "Tenant ID"),
            _positive_id(rule_id, "Rule ID"),
        ):
            if error:
                return None, error
        return cls(tenant_id=tenant_id, rule_id=rule_id, last_evaluated_at=at), None

    def record_breach(self, metric_value: Decimal, at: datetime) -> "SignalState":
        return replace(
            self,
            consecutive_breaches=self.consecutive_breaches + 1,
            last_metric_value=metric_value,
            last_evaluated_at=at,
            is_breached=True,
        )

    def record_success(self, metric_value: Decimal, at: datetime) -> "SignalState":
        return replace(
            self,
            consecutive_breaches=0,
            last_metric_value=metric_value,
            last_evaluated_at=at,
            is_breached=False,
        )

    def reset(self, at: datetime) -> "SignalState":
        return replace(
            self,
            consecutive_breaches=0,
            last_metric_value=None,
            last_evaluated_at=at,
            is_breached=False,
        )

    def has_reached(self, required: int) -> bool:
        return self.consecutive_breaches >= required


# ---------------------------------------------------------------------------
# Signals and queued notifications
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class Signal:
    """Immutable alert emitted when a rule's breach cycle completes."""

    tenant_id: int
    rule_id: int
    asset_id: int
    title: str
    trigger_value: Decimal
    threshold_value: Decimal
    triggered_at: datetime
    description: Optional[str] = None
    status: str = SignalStatus.OPEN.value
    id: Optional[int] = None

    @classmethod
    def create(
        cls,
        tenant_id: int,
        rule_id: int,
        asset_id: int,
        title: str,
        trigger_value: Decimal,
        threshold_value: Decimal,
        triggered_at: datetime,
        description: Optional[str] = None,
    ) -> tuple[Optional["Signal"], Optional[str]]:
        for error in (
            _positive_id(tenant_id, "Tenant ID"),
            _positive_id(rule_id, "Rule ID"),
            _positive_id(asset_id, "Asset ID"),
        ):
            if error:
                return None, error
        if _blank(title):
            return None, "Signal title is required."
        signal = cls(
            tenant_id=tenant_id,
            rule_id=rule_id,
            asset_id=asset_id,
            title=title,
            trigger_value=trigger_value,
            threshold_value=threshold_value,
            triggered_at=triggered_at,
            description=description,
        )
        return signal, None


@dataclass(frozen=True)
class Notification:
    """Queued delivery request for a signal.

    Only the external dispatcher changes ``is_sent`` and ``retry_count``.
    """

    tenant_id: int
    signal_id: int
    recipient: str
    subject: str
    body: str
    channel: str = NotificationChannel.EMAIL.value
    is_sent: bool = False
    retry_count: int = 0
    id: Optional[int] = None

    @classmethod
    def create(
        cls,
        tenant_id: int,
        signal_id: Optional[int],
        recipient: str,
        subject: str,
        body: str,
        channel: Any = NotificationChannel.EMAIL,
    ) -> tuple[Optional["Notification"], Optional[str]]:
        for error in (
            _positive_id(tenant_id, "Tenant ID"),
            _positive_id(signal_id, "Signal ID"),
        ):
            if error:
                return None, error
        if _blank(recipient):
            return None, "Recipient is required."
        if _blank(subject):
            return None, "Subject is required."
        if _blank(body):
            return None, "Body is required."
        notification = cls(
            tenant_id=tenant_id,
            signal_id=signal_id,
            recipient=recipient.strip(),
            subject=subject,
            body=body,
            channel=normalize_code(channel),
        )
        return notification, None


__all__ = [
    "Asset",
    "Metric",
    "MetricDataPoint",
    "Notification",
    "Rule",
    "Signal",
    "SignalState",
    "to_decimal",
]
