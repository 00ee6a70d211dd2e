"""Persistence ports and their SQLAlchemy and in-memory implementations."""

from .memory import InMemoryStore, InMemoryUnitOfWork
from .ports import RuleFilter, TenantContext, UnitOfWork, UnitOfWorkFactory
from .sqlalchemy_store import SqlAlchemyUnitOfWork

__all__ = [
    "InMemoryStore",
    "InMemoryUnitOfWork",
    "RuleFilter",
    "SqlAlchemyUnitOfWork",
    "TenantContext",
    "UnitOfWork",
    "UnitOfWorkFactory",
]
