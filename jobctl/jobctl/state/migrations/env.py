"""Alembic environment for the job-control store.

The store URL comes from ``ALEMBIC_DATABASE_URL``, then
``JOBCTL_DATABASE_URL``, then ``sqlalchemy.url`` in ``alembic.ini``.
Migrations run on synchronous drivers, so the async drivers jobctl uses at
runtime are swapped for psycopg and pysqlite here.
"""

from __future__ import annotations

import logging
import os
from logging.config import fileConfig

from alembic import context
from jobctl.state.tables import Base
from sqlalchemy import engine_from_config, pool
from sqlalchemy.engine import make_url

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

_SYNC_DRIVERS = {
    "postgresql": "postgresql+psycopg",
    "postgresql+asyncpg": "postgresql+psycopg",
    "sqlite+aiosqlite": "sqlite",
}


def _store_url() -> str:
    raw = (
        os.environ.get("ALEMBIC_DATABASE_URL")
        or os.environ.get("JOBCTL_DATABASE_URL")
        or config.get_main_option("sqlalchemy.url")
        or "sqlite:///.jobctl/ledger.db"
    )
    url = make_url(raw)
    url = url.set(drivername=_SYNC_DRIVERS.get(url.drivername, url.drivername))
    logger.info("Migrating job-control store %s", url.render_as_string(hide_password=True))
    return url.render_as_string(hide_password=False)


def run_migrations_offline() -> None:
    """Emit migration SQL without connecting."""
    context.configure(
        url=_store_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations to the live store in one transaction."""
    section = config.get_section(config.config_ini_section, {})
    section["sqlalchemy.url"] = _store_url()
    connectable = engine_from_config(section, prefix="sqlalchemy.", poolclass=pool.NullPool)

    try:
        with connectable.connect() as connection:
            context.configure(
                connection=connection,
                target_metadata=target_metadata,
                compare_type=True,
                # SQLite cannot ALTER constraints in place.
                render_as_batch=connection.dialect.name == "sqlite",
            )
            with context.begin_transaction():
                context.run_migrations()
    finally:
        connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
