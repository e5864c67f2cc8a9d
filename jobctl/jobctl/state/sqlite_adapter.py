"""SQLite backend for local runs, dry runs and tests.

Uses the same ORM tables as PostgreSQL, so the ledger and post-processing
code paths do not branch on the backend.  Differences:

* An in-memory store shares one connection (``StaticPool``) so every
  session sees the same tables.
* File stores run in WAL mode with a busy timeout, so one job's gate can
  read the ledger while another job is writing its claim.
* :func:`create_local_tables` builds the schema directly instead of running
  Alembic migrations.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)

MEMORY = ":memory:"
BUSY_TIMEOUT_MS = 5000


def get_local_engine(db_path: Path | str = ".jobctl/ledger.db") -> AsyncEngine:
    """Create an aiosqlite engine for *db_path*.

    Parent directories of a file store are created.  Pass ``":memory:"`` for
    an ephemeral store.
    """
    options: dict[str, Any] = {"connect_args": {"check_same_thread": False}}
    if str(db_path) == MEMORY:
        url = f"sqlite+aiosqlite:///{MEMORY}"
        options["poolclass"] = StaticPool
    else:
        path = Path(db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        url = f"sqlite+aiosqlite:///{path}"

    engine = create_async_engine(url, **options)

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_conn: Any, _record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute(f"PRAGMA busy_timeout={BUSY_TIMEOUT_MS}")
        if str(db_path) != MEMORY:
            cursor.execute("PRAGMA journal_mode=WAL")
            cursor.execute("PRAGMA synchronous=NORMAL")
        cursor.close()

    logger.debug("Opened SQLite job-control store at %s", url)
    return engine


async def create_local_tables(engine: AsyncEngine) -> None:
    """Create the ledger, metric and alert tables if missing."""
    from jobctl.state.tables import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.debug("Job-control tables ready on %s", engine.url)
