"""Alembic migration environment for the signal engine schema.

``sqlalchemy.url`` in alembic.ini wins when set; otherwise the sync
psycopg2 URL built by ``signal_engine.core.config.settings`` is used.
"""

from logging.config import fileConfig

from sqlalchemy import engine_from_config, pool

from alembic import context

import signal_engine.core.models  # noqa: F401  registers every table
from signal_engine.core.config import settings
from signal_engine.core.database import get_sync_engine
from signal_engine.core.models.base import Base

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

ini_url = config.get_main_option("sqlalchemy.url")


def _offline() -> None:
    """Render the migration SQL without a live connection."""
    context.configure(
        url=ini_url or settings.sync_database_url,
        target_metadata=Base.metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def _online() -> None:
    engine = (
        engine_from_config(
            config.get_section(config.config_ini_section, {}),
            prefix="sqlalchemy.",
            poolclass=pool.NullPool,
        )
        if ini_url
        else get_sync_engine()
    )
    with engine.connect() as connection:
        context.configure(connection=connection, target_metadata=Base.metadata)
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    _offline()
else:
    _online()
