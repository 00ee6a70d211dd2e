"""Root pytest configuration and shared fixtures.

Provides common fixtures used across all test modules:
- store: empty InMemoryStore with tenants 1 and 2
- uow: unit of work over ``store`` with its clock fixed at NOW

Record builders and fakes live in tests/helpers.py.
"""

from __future__ import annotations

import pytest

from signal_engine.repositories.memory import InMemoryStore, InMemoryUnitOfWork
from tests.helpers import NOW


@pytest.fixture
def store() -> InMemoryStore:
    """Empty in-memory store with tenants 1 and 2 registered.

    Tenant 1 has a default notification email; tenant 2 does not.
    """
    s = InMemoryStore()
    s.add_tenant(1, "alerts@tenant-one.example")
    s.add_tenant(2)
    return s


@pytest.fixture
def uow(store: InMemoryStore) -> InMemoryUnitOfWork:
    return InMemoryUnitOfWork(store, clock=lambda: NOW)
