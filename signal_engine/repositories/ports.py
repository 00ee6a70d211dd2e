"""Persistence ports used by the ingestion scheduler and evaluation cycle.

The engines depend only on these protocols. Two implementations ship with
the package: ``SqlAlchemyUnitOfWork`` (PostgreSQL via an AsyncSession) and
``InMemoryUnitOfWork`` (dry runs and tests).

A unit of work is opened per cycle. Repository writes are staged and become
visible to other units of work only after ``commit()``. ``savepoint()``
scopes the writes of one asset or one rule so that a failure inside it can
be discarded without losing the rest of the cycle.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import AsyncContextManager, Callable, Optional, Protocol

from signal_engine.domain.entities import (
    Asset,
    MetricDataPoint,
    Notification,
    Rule,
    Signal,
    SignalState,
)


# ---------------------------------------------------------------------------
# Query scoping
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class TenantContext:
    """Tenant scope of a query.

    Worker cycles run in the explicit system context, which spans every
    tenant. ``for_tenant`` narrows a query to one tenant.
    """

    tenant_id: Optional[int] = None

    @classmethod
    def system(cls) -> "TenantContext":
        return cls(tenant_id=None)

    @classmethod
    def for_tenant(cls, tenant_id: int) -> "TenantContext":
        if tenant_id <= 0:
            raise ValueError("Tenant ID must be positive.")
        return cls(tenant_id=tenant_id)

    @property
    def is_system(self) -> bool:
        return self.tenant_id is None

    def allows(self, tenant_id: int) -> bool:
        return self.is_system or self.tenant_id == tenant_id


@dataclass(frozen=True)
class RuleFilter:
    """Selection of active rules for one evaluation cycle."""

    evaluation_frequency: Optional[str] = None
    tenant: TenantContext = field(default_factory=TenantContext.system)

    def matches(self, rule: Rule) -> bool:
        if not rule.is_active or not self.tenant.allows(rule.tenant_id):
            return False
        if self.evaluation_frequency is None:
            return True
        return rule.evaluation_frequency.upper() == self.evaluation_frequency.upper()


# ---------------------------------------------------------------------------
# Repository protocols
# ---------------------------------------------------------------------------
class AssetRepository(Protocol):
    async def get_due_for_ingestion(
        self, now: datetime, limit: Optional[int] = None
    ) -> list[Asset]:
        """Active assets with no next ingestion time or one at or before ``now``.

        Each asset carries its active metric definitions. Ordered by next
        ingestion time, never-ingested assets first.
        """
        ...


class AssetCursorRepository(Protocol):
    async def update_cursor(
        self, asset_id: int, last_at: datetime, next_at: datetime
    ) -> None:
        ...


class MetricDataRepository(Protocol):
    async def add(self, points: list[MetricDataPoint]) -> list[MetricDataPoint]:
        """Append points and return them with ids assigned."""
        ...

    async def get_latest(
        self, tenant_id: int, asset_id: int, metric_name: str
    ) -> Optional[MetricDataPoint]:
        """Most recent point (by timestamp) of the named metric.

        The metric name matches case-insensitively. Only the given tenant's
        data for the given asset is considered.
        """
        ...


class RuleRepository(Protocol):
    async def get_active(self, rule_filter: Optional[RuleFilter] = None) -> list[Rule]:
        ...


class SignalStateRepository(Protocol):
    async def get_or_create(self, tenant_id: int, rule_id: int) -> SignalState:
        """Existing state for the rule, or a new Idle state staged for insert."""
        ...

    async def update(self, state: SignalState) -> None:
        ...


class SignalRepository(Protocol):
    async def add(self, signal: Signal) -> Signal:
        """Stage the signal and return it with its id assigned."""
        ...


class NotificationRepository(Protocol):
    async def add(self, notification: Notification) -> Notification:
        ...


class TenantRepository(Protocol):
    async def get_notification_email(self, tenant_id: int) -> Optional[str]:
        ...


class UnitOfWork(Protocol):
    assets: AssetRepository
    cursors: AssetCursorRepository
    metric_data: MetricDataRepository
    rules: RuleRepository
    signal_states: SignalStateRepository
    signals: SignalRepository
    notifications: NotificationRepository
    tenants: TenantRepository

    def savepoint(self) -> AsyncContextManager[None]:
        """Scope writes; an exception inside discards them and re-raises."""
        ...

    async def commit(self) -> None:
        ...

    async def rollback(self) -> None:
        ...

    async def close(self) -> None:
        ...


UnitOfWorkFactory = Callable[[], UnitOfWork]
