"""Engine and session helpers for the job-control store.

The ledger, metric and alert tables live in PostgreSQL in production and in
SQLite for local runs and tests.  :func:`get_engine` picks the driver from
the URL:

  - ``postgresql://`` or ``postgresql+asyncpg://`` -> pooled asyncpg engine
  - ``sqlite://`` or ``sqlite+aiosqlite://``       -> aiosqlite engine

Every ledger transition runs in its own :func:`get_session` block, so a
claimed row is visible to other jobs' dependency gates as soon as the block
exits.
"""

from __future__ import annotations

import logging
import weakref
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from sqlalchemy.engine import Engine, make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

logger = logging.getLogger(__name__)

# Server-side limits applied to every PostgreSQL connection.
_STATEMENT_TIMEOUT_MS = 30_000
_LOCK_TIMEOUT_MS = 10_000

_session_factories: weakref.WeakKeyDictionary[Engine, async_sessionmaker[AsyncSession]] = (
    weakref.WeakKeyDictionary()
)


def _async_url(database_url: str) -> str:
    """Map plain driver schemes onto their async drivers."""
    url = make_url(database_url)
    if url.drivername == "postgresql":
        url = url.set(drivername="postgresql+asyncpg")
    elif url.drivername == "sqlite":
        url = url.set(drivername="sqlite+aiosqlite")
    elif url.drivername not in ("postgresql+asyncpg", "sqlite+aiosqlite"):
        raise ValueError(f"Unsupported job-control store URL scheme: {url.drivername}")
    return url.render_as_string(hide_password=False)


def get_engine(
    database_url: str,
    pool_size: int = 5,
    max_overflow: int = 5,
) -> AsyncEngine:
    """Create the async engine for the job-control store.

    Parameters
    ----------
    database_url:
        PostgreSQL or SQLite URL.  Sync schemes are mapped to asyncpg and
        aiosqlite.
    pool_size, max_overflow:
        PostgreSQL connection pool sizing; ignored for SQLite.

    Raises
    ------
    ValueError
        The URL names a backend other than PostgreSQL or SQLite.
    """
    url = _async_url(database_url)
    if url.startswith("sqlite"):
        from jobctl.state.sqlite_adapter import get_local_engine

        return get_local_engine(make_url(url).database or ":memory:")

    engine = create_async_engine(
        url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        pool_pre_ping=True,
        pool_recycle=3600,
        pool_timeout=10,
        connect_args={
            "server_settings": {
                "statement_timeout": str(_STATEMENT_TIMEOUT_MS),
                "lock_timeout": str(_LOCK_TIMEOUT_MS),
                "application_name": "jobctl",
            }
        },
    )
    logger.info(
        "Created job-control store engine %s (pool_size=%d, max_overflow=%d)",
        make_url(url).render_as_string(hide_password=True),
        pool_size,
        max_overflow,
    )
    return engine


@asynccontextmanager
async def get_session(engine: AsyncEngine) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session that commits on success and rolls back on error."""
    factory = _session_factories.get(engine.sync_engine)
    if factory is None:
        factory = async_sessionmaker(engine, expire_on_commit=False)
        _session_factories[engine.sync_engine] = factory
    session = factory()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()
