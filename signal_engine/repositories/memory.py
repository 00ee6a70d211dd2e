"""In-memory implementation of the persistence ports.

``InMemoryStore`` holds committed state. Each ``InMemoryUnitOfWork`` stages
its writes and applies them to the store on ``commit()``; ``rollback()``
discards them. Reads inside a unit of work see its own staged writes.
Savepoints snapshot the staging area and restore it when the block raises.

Ids are drawn from store-wide counters when a record is staged, the way a
database sequence hands out ids that are lost on rollback.
"""

from __future__ import annotations

import itertools
from contextlib import asynccontextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import AsyncIterator, Callable, Optional

import structlog

from signal_engine.core.utils.clock import utcnow
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


class InMemoryStore:
    """Committed state shared by every in-memory unit of work."""

    def __init__(self) -> None:
        self.tenant_emails: dict[int, Optional[str]] = {}
        self.assets: dict[int, Asset] = {}
        self.metrics: dict[int, Metric] = {}
        self.metric_data: list[MetricDataPoint] = []
        self.rules: dict[int, Rule] = {}
        self.signal_states: dict[int, SignalState] = {}
        self.signals: list[Signal] = []
        self.notifications: list[Notification] = []
        self._ids = {
            "metric_data": itertools.count(1),
            "signals": itertools.count(1),
            "notifications": itertools.count(1),
        }

    def next_id(self, table: str) -> int:
        return next(self._ids[table])

    # ------------------------------------------------------------------
    # Seeding helpers
    # ------------------------------------------------------------------
    def add_tenant(self, tenant_id: int, notification_email: Optional[str] = None) -> None:
        self.tenant_emails[tenant_id] = notification_email

    def add_asset(self, asset: Asset) -> Asset:
        """Store an asset and the metric definitions it carries."""
        for metric in asset.metrics:
            self.metrics[metric.id] = metric
        self.assets[asset.id] = replace(asset, metrics=())
        return asset

    def add_metric(self, metric: Metric) -> Metric:
        self.metrics[metric.id] = metric
        return metric

    def add_rule(self, rule: Rule) -> Rule:
        self.rules[rule.id] = rule
        return rule

    def metrics_for(self, asset_id: int) -> tuple[Metric, ...]:
        return tuple(m for m in self.metrics.values() if m.asset_id == asset_id)

    def unit_of_work(self) -> "InMemoryUnitOfWork":
        return InMemoryUnitOfWork(self)


@dataclass
class _Staging:
    points: list[MetricDataPoint] = field(default_factory=list)
    cursors: dict[int, tuple[datetime, datetime]] = field(default_factory=dict)
    states: dict[int, SignalState] = field(default_factory=dict)
    signals: list[Signal] = field(default_factory=list)
    notifications: list[Notification] = field(default_factory=list)

    def copy(self) -> "_Staging":
        return _Staging(
            points=list(self.points),
            cursors=dict(self.cursors),
            states=dict(self.states),
            signals=list(self.signals),
            notifications=list(self.notifications),
        )


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------
class _Repository:
    def __init__(self, uow: "InMemoryUnitOfWork") -> None:
        self._uow = uow

    @property
    def _store(self) -> InMemoryStore:
        return self._uow.store

    @property
    def _staging(self) -> _Staging:
        return self._uow.staging


class InMemoryAssetRepository(_Repository):
    def _current(self, asset: Asset) -> Asset:
        cursor = self._staging.cursors.get(asset.id)
        if cursor is not None:
            asset = replace(asset, last_ingested_at=cursor[0], next_ingestion_at=cursor[1])
        return asset

    async def get_due_for_ingestion(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[Asset]:
        due = [
            self._current(asset)
            for asset in self._store.assets.values()
        ]
        due = [asset for asset in due if asset.is_due(now)]
        due.sort(key=lambda a: (a.next_ingestion_at is not None, a.next_ingestion_at or now, a.id))
        if limit is not None:
            due = due[:limit]
        return [
            replace(
                asset,
                metrics=tuple(m for m in self._store.metrics_for(asset.id) if m.is_active),
            )
            for asset in due
        ]


class InMemoryAssetCursorRepository(_Repository):
    async def update_cursor(
        self, asset_id: int, last_at: datetime, next_at: datetime
    ) -> None:
        if asset_id not in self._store.assets:
            raise KeyError(f"Asset {asset_id} not found")
        self._staging.cursors[asset_id] = (last_at, next_at)


class InMemoryMetricDataRepository(_Repository):
    async def add(self, points: list[MetricDataPoint]) -> list[MetricDataPoint]:
        stored = [replace(p, id=self._store.next_id("metric_data")) for p in points]
        self._staging.points.extend(stored)
        return stored

    async def get_latest(
        self, tenant_id: int, asset_id: int, metric_name: str
    ) -> Optional[MetricDataPoint]:
        metric_ids = {
            m.id
            for m in self._store.metrics_for(asset_id)
            if m.tenant_id == tenant_id and m.matches(metric_name)
        }
        if not metric_ids:
            return None
        candidates = [
            p
            for p in itertools.chain(self._store.metric_data, self._staging.points)
            if p.metric_id in metric_ids and p.tenant_id == tenant_id
        ]
        if not candidates:
            return None
        return max(candidates, key=lambda p: (p.timestamp, p.id or 0))


class InMemoryRuleRepository(_Repository):
    async def get_active(self, rule_filter: Optional[RuleFilter] = None) -> list[Rule]:
        rule_filter = rule_filter or RuleFilter()
        return sorted(
            (r for r in self._store.rules.values() if rule_filter.matches(r)),
            key=lambda r: r.id,
        )


class InMemorySignalStateRepository(_Repository):
    async def get_or_create(self, tenant_id: int, rule_id: int) -> SignalState:
        state = self._staging.states.get(rule_id) or self._store.signal_states.get(rule_id)
        if state is not None:
            return state
        state, error = SignalState.initial(tenant_id, rule_id, self._uow.clock())
        if error:
            raise ValueError(error)
        self._staging.states[rule_id] = state
        return state

    async def update(self, state: SignalState) -> None:
        self._staging.states[state.rule_id] = state


class InMemorySignalRepository(_Repository):
    async def add(self, signal: Signal) -> Signal:
        stored = replace(signal, id=self._store.next_id("signals"))
        self._staging.signals.append(stored)
        return stored


class InMemoryNotificationRepository(_Repository):
    async def add(self, notification: Notification) -> Notification:
        stored = replace(notification, id=self._store.next_id("notifications"))
        self._staging.notifications.append(stored)
        return stored


class InMemoryTenantRepository(_Repository):
    async def get_notification_email(self, tenant_id: int) -> Optional[str]:
        return self._store.tenant_emails.get(tenant_id)


# ---------------------------------------------------------------------------
# Unit of work
# ---------------------------------------------------------------------------
class InMemoryUnitOfWork:
    """Unit of work over an InMemoryStore."""

    def __init__(
        self, store: InMemoryStore, clock: Optional[Callable[[], datetime]] = None
    ) -> None:
        self.store = store
        self.clock = clock or utcnow
        self.staging = _Staging()
        self.assets = InMemoryAssetRepository(self)
        self.cursors = InMemoryAssetCursorRepository(self)
        self.metric_data = InMemoryMetricDataRepository(self)
        self.rules = InMemoryRuleRepository(self)
        self.signal_states = InMemorySignalStateRepository(self)
        self.signals = InMemorySignalRepository(self)
        self.notifications = InMemoryNotificationRepository(self)
        self.tenants = InMemoryTenantRepository(self)

    @asynccontextmanager
    async def savepoint(self) -> AsyncIterator[None]:
        snapshot = self.staging.copy()
        try:
            yield
        except Exception:
            self.staging = snapshot
            raise

    async def commit(self) -> None:
        staging = self.staging
        store = self.store
        for asset_id, (last_at, next_at) in staging.cursors.items():
            store.assets[asset_id] = replace(
                store.assets[asset_id],
                last_ingested_at=last_at,
                next_ingestion_at=next_at,
            )
        store.metric_data.extend(staging.points)
        store.signal_states.update(staging.states)
        store.signals.extend(staging.signals)
        store.notifications.extend(staging.notifications)
        logger.debug(
            "in_memory_commit",
            points=len(staging.points),
            cursors=len(staging.cursors),
            signals=len(staging.signals),
        )
        self.staging = _Staging()

    async def rollback(self) -> None:
        self.staging = _Staging()

    async def close(self) -> None:
        await self.rollback()
