"""Repository classes providing access to the job-control store.

Each repository takes an ``AsyncSession`` at construction time and operates
within the caller's transaction boundary.  All writes call ``session.flush()``;
the caller is responsible for committing (or relying on the ``get_session``
context manager).
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from jobctl.state.tables import JobAlertTable, JobMetricTable, RunLedgerTable, _utcnow

logger = logging.getLogger(__name__)


async def _dialect_upsert(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
    update_columns: list[str],
) -> Any:
    """Dialect-aware upsert: PostgreSQL ``ON CONFLICT DO UPDATE`` or SQLite equivalent.

    Parameters
    ----------
    session:
        The active async session.
    table:
        The SQLAlchemy table class to upsert into.
    values:
        Column-value mapping for the row to insert.
    index_elements:
        Column names forming the unique constraint for conflict detection.
    update_columns:
        Column names to update when a conflict occurs.

    Returns
    -------
    The execution result from ``session.execute()``.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: getattr(stmt.excluded, col) for col in update_columns},
        )
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={col: values[col] for col in update_columns},
        )
    return await session.execute(stmt)


async def _dialect_upsert_nothing(
    session: AsyncSession,
    table: Any,
    values: dict[str, Any],
    index_elements: list[str],
) -> Any:
    """Dialect-aware insert with ``ON CONFLICT DO NOTHING``.

    The returned result's ``rowcount`` is ``1`` when the row was inserted
    and ``0`` when it already existed.
    """
    bind = session.get_bind()
    dialect_name = getattr(getattr(bind, "dialect", None), "name", "")

    stmt: Any
    if "postgresql" in str(dialect_name):
        from sqlalchemy.dialects.postgresql import insert as _pg_insert

        stmt = _pg_insert(table).values(**values)
    else:
        from sqlalchemy.dialects.sqlite import insert as _sqlite_insert

        stmt = _sqlite_insert(table).values(**values)
    stmt = stmt.on_conflict_do_nothing(index_elements=index_elements)
    return await session.execute(stmt)


# ---------------------------------------------------------------------------
# RunLedgerRepository
# ---------------------------------------------------------------------------


class RunLedgerRepository:
    """Row-level access to the ``etl_job_control`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, job_id: str, run_date: date) -> RunLedgerTable | None:
        """Fetch the ledger row for ``(job_id, run_date)``, if any."""
        stmt = select(RunLedgerTable).where(
            RunLedgerTable.job_id == job_id,
            RunLedgerTable.run_date == run_date,
        )
        result = await self._session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_running(
        self,
        job_id: str,
        run_date: date,
        job_name: str,
        start_time: datetime,
    ) -> None:
        """Insert or overwrite the row as RUNNING, clearing terminal fields."""
        values = {
            "job_id": job_id,
            "run_date": run_date,
            "job_name": job_name,
            "job_status": "RUNNING",
            "start_time": start_time,
            "end_time": None,
            "records_processed": None,
            "error_message": None,
        }
        await _dialect_upsert(
            self._session,
            RunLedgerTable,
            values,
            index_elements=["job_id", "run_date"],
            update_columns=[
                "job_name",
                "job_status",
                "start_time",
                "end_time",
                "records_processed",
                "error_message",
            ],
        )
        await self._session.flush()

    async def mark_terminal(
        self,
        job_id: str,
        run_date: date,
        status: str,
        end_time: datetime,
        records_processed: int | None = None,
        error_message: str | None = None,
    ) -> int:
        """Move a row to a terminal status.

        Returns
        -------
        int
            Number of rows updated (``0`` when no row exists).
        """
        stmt = (
            update(RunLedgerTable)
            .where(
                RunLedgerTable.job_id == job_id,
                RunLedgerTable.run_date == run_date,
            )
            .values(
                job_status=status,
                end_time=end_time,
                records_processed=records_processed,
                error_message=error_message,
            )
        )
        result = await self._session.execute(stmt)
        await self._session.flush()
        return result.rowcount or 0

    async def list_for_date(self, run_date: date) -> list[RunLedgerTable]:
        """Return every row for *run_date*, ordered by job id."""
        stmt = select(RunLedgerTable).where(RunLedgerTable.run_date == run_date).order_by(RunLedgerTable.job_id.asc())
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def count_for_key(self, job_id: str, run_date: date) -> int:
        """Count rows for a key; the primary key keeps this at 0 or 1."""
        stmt = (
            select(func.count())
            .select_from(RunLedgerTable)
            .where(
                RunLedgerTable.job_id == job_id,
                RunLedgerTable.run_date == run_date,
            )
        )
        result = await self._session.execute(stmt)
        return int(result.scalar_one())


# ---------------------------------------------------------------------------
# MetricRepository
# ---------------------------------------------------------------------------


class MetricRepository:
    """Upsert-only access to the ``job_metrics`` rollup table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def upsert(
        self,
        job_id: str,
        run_date: date,
        metric_name: str,
        metric_value: float | None,
    ) -> None:
        """Write a metric, overwriting any value from a previous run."""
        values = {
            "job_id": job_id,
            "run_date": run_date,
            "metric_name": metric_name,
            "metric_value": metric_value,
            "computed_at": _utcnow(),
        }
        await _dialect_upsert(
            self._session,
            JobMetricTable,
            values,
            index_elements=["job_id", "run_date", "metric_name"],
            update_columns=["metric_value", "computed_at"],
        )
        await self._session.flush()

    async def get_for_run(self, job_id: str, run_date: date) -> dict[str, float | None]:
        """Return ``{metric_name: metric_value}`` for one run."""
        stmt = (
            select(JobMetricTable)
            .where(
                JobMetricTable.job_id == job_id,
                JobMetricTable.run_date == run_date,
            )
            .order_by(JobMetricTable.metric_name.asc())
        )
        result = await self._session.execute(stmt)
        return {row.metric_name: row.metric_value for row in result.scalars().all()}


# ---------------------------------------------------------------------------
# AlertRepository
# ---------------------------------------------------------------------------


class AlertRepository:
    """Insert-once access to the ``job_alerts`` table."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def insert_if_absent(
        self,
        job_id: str,
        run_date: date,
        entity_id: str,
        alert_type: str,
        severity: str = "MEDIUM",
        detail: str | None = None,
    ) -> bool:
        """Insert an alert unless one exists for the same entity and type.

        Returns
        -------
        bool
            ``True`` when a new row was written.
        """
        values = {
            "job_id": job_id,
            "run_date": run_date,
            "entity_id": entity_id,
            "alert_type": alert_type,
            "severity": severity,
            "detail": detail,
            "created_at": _utcnow(),
        }
        result = await _dialect_upsert_nothing(
            self._session,
            JobAlertTable,
            values,
            index_elements=["job_id", "run_date", "entity_id", "alert_type"],
        )
        await self._session.flush()
        return (result.rowcount or 0) > 0

    async def list_for_run(self, job_id: str, run_date: date) -> list[JobAlertTable]:
        """Return alerts for one run, ordered by entity and type."""
        stmt = (
            select(JobAlertTable)
            .where(
                JobAlertTable.job_id == job_id,
                JobAlertTable.run_date == run_date,
            )
            .order_by(JobAlertTable.entity_id.asc(), JobAlertTable.alert_type.asc())
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())
