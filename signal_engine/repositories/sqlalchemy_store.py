"""SQLAlchemy implementation of the persistence ports.

One ``SqlAlchemyUnitOfWork`` wraps one AsyncSession, i.e. one database
transaction per cycle. Savepoints map to ``session.begin_nested()``. Inserts
are flushed immediately so that generated ids (signals, metric data) are
available to later statements in the same transaction.

Datetimes read back are normalised to aware UTC since some backends
(SQLite) drop the offset.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import replace
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from signal_engine.core.models import (
    AssetRecord,
    MetricDataRecord,
    MetricRecord,
    NotificationRecord,
    RuleRecord,
    SignalRecord,
    SignalStateRecord,
    TenantRecord,
)
from signal_engine.core.utils.clock import ensure_utc, utcnow
from signal_engine.domain.entities import (
    Asset,
    Metric,
    MetricDataPoint,
    Notification,
    Rule,
    Signal,
    SignalState,
)
from signal_engine.repositories.ports import RuleFilter

logger = structlog.get_logger(__name__)


# ---------------------------------------------------------------------------
# Record -> domain mapping
# ---------------------------------------------------------------------------
def _to_metric(record: MetricRecord) -> Metric:
    return Metric(
        id=record.id,
        tenant_id=record.tenant_id,
        asset_id=record.asset_id,
        name=record.name,
        unit=record.unit,
        is_active=record.is_active,
    )


def _to_asset(record: AssetRecord, metrics: tuple[Metric, ...] = ()) -> Asset:
    return Asset(
        id=record.id,
        tenant_id=record.tenant_id,
        name=record.name,
        identifier=record.identifier,
        data_source_code=record.data_source_code,
        ingestion_interval_seconds=record.ingestion_interval_seconds,
        last_ingested_at=ensure_utc(record.last_ingested_at),
        next_ingestion_at=ensure_utc(record.next_ingestion_at),
        is_active=record.is_active,
        metrics=metrics,
    )


def _to_point(record: MetricDataRecord) -> MetricDataPoint:
    return MetricDataPoint(
        id=record.id,
        tenant_id=record.tenant_id,
        metric_id=record.metric_id,
        value=record.value,
        timestamp=ensure_utc(record.timestamp),
        created_at=ensure_utc(record.created_at),
    )


def _to_rule(record: RuleRecord) -> Rule:
    return Rule(
        id=record.id,
        tenant_id=record.tenant_id,
        asset_id=record.asset_id,
        name=record.name,
        metric_name=record.metric_name,
        operator=record.operator,
        threshold=record.threshold,
        severity=record.severity,
        consecutive_breaches_required=record.consecutive_breaches_required,
        evaluation_frequency=record.evaluation_frequency,
        description=record.description,
        is_active=record.is_active,
    )


def _to_state(record: SignalStateRecord) -> SignalState:
    return SignalState(
        tenant_id=record.tenant_id,
        rule_id=record.rule_id,
        last_evaluated_at=ensure_utc(record.last_evaluated_at),
        consecutive_breaches=record.consecutive_breaches,
        last_metric_value=record.last_metric_value,
        is_breached=record.is_breached,
    )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------
class _SessionRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session


class SqlAlchemyAssetRepository(_SessionRepository):
    async def get_due_for_ingestion(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[Asset]:
        stmt = (
            select(AssetRecord)
            .where(
                AssetRecord.is_active.is_(True),
                (AssetRecord.next_ingestion_at.is_(None))
                | (AssetRecord.next_ingestion_at <= now),
            )
            .order_by(AssetRecord.next_ingestion_at.asc().nulls_first(), AssetRecord.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        assets = list((await self.session.execute(stmt)).scalars())
        if not assets:
            return []

        metric_rows = await self.session.execute(
            select(MetricRecord)
            .where(
                MetricRecord.asset_id.in_([a.id for a in assets]),
                MetricRecord.is_active.is_(True),
            )
            .order_by(MetricRecord.id)
        )
        metrics_by_asset: dict[int, list[Metric]] = {}
        for record in metric_rows.scalars():
            metrics_by_asset.setdefault(record.asset_id, []).append(_to_metric(record))

        return [_to_asset(a, tuple(metrics_by_asset.get(a.id, ()))) for a in assets]


class SqlAlchemyAssetCursorRepository(_SessionRepository):
    async def update_cursor(
        self, asset_id: int, last_at: datetime, next_at: datetime
    ) -> None:
        result = await self.session.execute(
            update(AssetRecord)
            .where(AssetRecord.id == asset_id)
            .values(last_ingested_at=last_at, next_ingestion_at=next_at)
        )
        if result.rowcount == 0:
            raise LookupError(f"Asset {asset_id} not found")


class SqlAlchemyMetricDataRepository(_SessionRepository):
    async def add(self, points: list[MetricDataPoint]) -> list[MetricDataPoint]:
        records = [
            MetricDataRecord(
                tenant_id=p.tenant_id,
                metric_id=p.metric_id,
                value=p.value,
                timestamp=p.timestamp,
                created_at=p.created_at,
            )
            for p in points
        ]
        self.session.add_all(records)
        await self.session.flush()
        return [replace(p, id=r.id) for p, r in zip(points, records)]

    async def get_latest(
        self, tenant_id: int, asset_id: int, metric_name: str
    ) -> Optional[MetricDataPoint]:
        stmt = (
            select(MetricDataRecord)
            .join(MetricRecord, MetricRecord.id == MetricDataRecord.metric_id)
            .where(
                MetricDataRecord.tenant_id == tenant_id,
                MetricRecord.tenant_id == tenant_id,
                MetricRecord.asset_id == asset_id,
                func.lower(MetricRecord.name) == metric_name.strip().lower(),
            )
            .order_by(MetricDataRecord.timestamp.desc(), MetricDataRecord.id.desc())
            .limit(1)
        )
        record = (await self.session.execute(stmt)).scalar_one_or_none()
        return _to_point(record) if record is not None else None


class SqlAlchemyRuleRepository(_SessionRepository):
    async def get_active(self, rule_filter: Optional[RuleFilter] = None) -> list[Rule]:
        rule_filter = rule_filter or RuleFilter()
        stmt = select(RuleRecord).where(RuleRecord.is_active.is_(True))
        if not rule_filter.tenant.is_system:
            stmt = stmt.where(RuleRecord.tenant_id == rule_filter.tenant.tenant_id)
        if rule_filter.evaluation_frequency is not None:
            stmt = stmt.where(
                func.upper(RuleRecord.evaluation_frequency)
                == rule_filter.evaluation_frequency.upper()
            )
        result = await self.session.execute(stmt.order_by(RuleRecord.id))
        return [_to_rule(r) for r in result.scalars()]


class SqlAlchemySignalStateRepository(_SessionRepository):
    def __init__(self, session: AsyncSession, clock: Callable[[], datetime]) -> None:
        super().__init__(session)
        self.clock = clock

    async def _get_record(self, rule_id: int) -> Optional[SignalStateRecord]:
        result = await self.session.execute(
            select(SignalStateRecord).where(SignalStateRecord.rule_id == rule_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create(self, tenant_id: int, rule_id: int) -> SignalState:
        record = await self._get_record(rule_id)
        if record is not None:
            return _to_state(record)

        state, error = SignalState.initial(tenant_id, rule_id, self.clock())
        if error:
            raise ValueError(error)
        self.session.add(
            SignalStateRecord(
                tenant_id=state.tenant_id,
                rule_id=state.rule_id,
                consecutive_breaches=state.consecutive_breaches,
                last_evaluated_at=state.last_evaluated_at,
                last_metric_value=state.last_metric_value,
                is_breached=state.is_breached,
            )
        )
        await self.session.flush()
        return state

    async def update(self, state: SignalState) -> None:
        record = await self._get_record(state.rule_id)
        if record is None:
            raise LookupError(f"Signal state for rule {state.rule_id} not found")
        record.consecutive_breaches = state.consecutive_breaches
        record.last_evaluated_at = state.last_evaluated_at
        record.last_metric_value = state.last_metric_value
        record.is_breached = state.is_breached
        await self.session.flush()


class SqlAlchemySignalRepository(_SessionRepository):
    async def add(self, signal: Signal) -> Signal:
        record = SignalRecord(
            tenant_id=signal.tenant_id,
            rule_id=signal.rule_id,
            asset_id=signal.asset_id,
            status=signal.status,
            title=signal.title,
            description=signal.description,
            trigger_value=signal.trigger_value,
            threshold_value=signal.threshold_value,
            triggered_at=signal.triggered_at,
        )
        self.session.add(record)
        await self.session.flush()
        return replace(signal, id=record.id)


class SqlAlchemyNotificationRepository(_SessionRepository):
    async def add(self, notification: Notification) -> Notification:
        record = NotificationRecord(
            tenant_id=notification.tenant_id,
            signal_id=notification.signal_id,
            channel=notification.channel,
            recipient=notification.recipient,
            subject=notification.subject,
            body=notification.body,
            is_sent=notification.is_sent,
            retry_count=notification.retry_count,
        )
        self.session.add(record)
        await self.session.flush()
        return replace(notification, id=record.id)


class SqlAlchemyTenantRepository(_SessionRepository):
    async def get_notification_email(self, tenant_id: int) -> Optional[str]:
        tenant = await self.session.get(TenantRecord, tenant_id)
        if tenant is None:
            return None
        return tenant.default_notification_email


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------
class SqlAlchemyUnitOfWork:
    """Unit of work over a single AsyncSession."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.session = session
        self.assets = SqlAlchemyAssetRepository(session)
        self.cursors = SqlAlchemyAssetCursorRepository(session)
        self.metric_data = SqlAlchemyMetricDataRepository(session)
        self.rules = SqlAlchemyRuleRepository(session)
        self.signal_states = SqlAlchemySignalStateRepository(session, clock or utcnow)
        self.signals = SqlAlchemySignalRepository(session)
        self.notifications = SqlAlchemyNotificationRepository(session)
        self.tenants = SqlAlchemyTenantRepository(session)

    @classmethod
    def factory(
        cls, session_factory: async_sessionmaker[AsyncSession]
    ) -> Callable[[], "SqlAlchemyUnitOfWork"]:
        """Build a unit-of-work factory that opens a new session per call."""
        return lambda: cls(session_factory())

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        async with self.session.begin_nested():
            yield

    async def commit(self) -> None:
        await self.session.commit()

    async def rollback(self) -> None:
        await self.session.rollback()

    async def close(self) -> None:
        await self.session.close()
