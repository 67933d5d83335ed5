"""Alembic environment for the job run and worker tables.

The database URL comes from ``Settings`` (``DATABASE_URL``) unless it is
overridden on the command line with ``alembic -x url=...``.
"""

from __future__ import annotations

import asyncio
from logging.config import fileConfig
from typing import Any

from alembic import context
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool

from job_coordinator.config import Settings
from job_coordinator.models import Base

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name, disable_existing_loggers=False)

database_url = context.get_x_argument(as_dictionary=True).get(
    "url", Settings().DATABASE_URL
)
config.set_main_option("sqlalchemy.url", database_url)


def _configure(**options: Any) -> None:
    context.configure(target_metadata=Base.metadata, compare_type=True, **options)


def run_migrations_offline() -> None:
    """Render SQL for the configured URL without connecting."""

    _configure(
        url=database_url,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        render_as_batch=database_url.startswith("sqlite"),
    )
    with context.begin_transaction():
        context.run_migrations()


def _migrate(connection: Connection) -> None:
    # SQLite cannot ALTER most constraints in place.
    _configure(
        connection=connection,
        render_as_batch=connection.dialect.name == "sqlite",
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    engine = create_async_engine(database_url, poolclass=NullPool)
    try:
        async with engine.connect() as connection:
            await connection.run_sync(_migrate)
    finally:
        await engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
