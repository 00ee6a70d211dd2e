"""Database engine layer for the Signal Engine.

Provides an async engine (asyncpg) for the worker runtime and a sync engine
(psycopg2) for Alembic migrations. Engines are created on
first use so that importing the package never opens a connection pool.
Session factories are configured with autoflush=False and
expire_on_commit=False for explicit transaction control.
"""

from functools import lru_cache

from sqlalchemy import Engine, create_engine
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from .config import settings


# ---------------------------------------------------------------------------
# Async engine (for the workers -- asyncpg)
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_async_engine() -> AsyncEngine:
    """Return the process-wide async engine."""
    return create_async_engine(
        settings.async_database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        echo=settings.debug,
    )


@lru_cache(maxsize=1)
def get_async_session_factory() -> async_sessionmaker[AsyncSession]:
    """Return the async session factory bound to the async engine."""
    return async_sessionmaker(
        get_async_engine(),
        class_=AsyncSession,
        autoflush=False,
        expire_on_commit=False,
    )


# ---------------------------------------------------------------------------
# Sync engine (for Alembic -- psycopg2)
# ---------------------------------------------------------------------------
@lru_cache(maxsize=1)
def get_sync_engine() -> Engine:
    """Return the process-wide sync engine."""
    return create_engine(
        settings.sync_database_url,
        pool_size=5,
        pool_pre_ping=True,
        echo=settings.debug,
    )

