"""Run ledger backed by the ``etl_job_control`` table.

Every operation runs in its own short transaction via
:func:`jobctl.state.database.get_session`, so a RUNNING row is visible to
other jobs' dependency gates as soon as :meth:`SqlRunLedger.claim` returns.
Driver and connectivity failures are translated to :class:`StorageError`
at this boundary.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from jobctl.failures import InvalidTransitionError, JobControlError, RunNotClaimedError, StorageError
from jobctl.models.run import RunRecord, RunStatus
from jobctl.state.database import get_session
from jobctl.state.repository import RunLedgerRepository
from jobctl.state.tables import RunLedgerTable

logger = logging.getLogger(__name__)

_OPEN_STATUSES = (RunStatus.PENDING.value, RunStatus.RUNNING.value)


def _to_record(row: RunLedgerTable) -> RunRecord:
    return RunRecord(
        job_id=row.job_id,
        run_date=row.run_date,
        job_name=row.job_name,
        status=RunStatus(row.job_status),
        start_time=row.start_time,
        end_time=row.end_time,
        records_processed=row.records_processed,
        error_message=row.error_message,
    )


class SqlRunLedger:
    """SQLAlchemy implementation of :class:`jobctl.ledger.base.RunLedger`.

    Parameters
    ----------
    engine:
        Async engine for the ledger database.
    clock:
        Returns the current (timezone-aware) time; injectable for tests.
    """

    def __init__(
        self,
        engine: AsyncEngine,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._engine = engine
        self._clock = clock or (lambda: datetime.now(UTC))

    async def claim(self, job_id: str, run_date: date, job_name: str = "") -> RunRecord:
        now = self._clock()
        try:
            async with get_session(self._engine) as session:
                repo = RunLedgerRepository(session)
                existing = await repo.get(job_id, run_date)
                if existing is not None and existing.job_status == RunStatus.RUNNING.value:
                    logger.warning(
                        "Re-claiming run %s/%s that is still RUNNING (started %s)",
                        job_id,
                        run_date.isoformat(),
                        existing.start_time,
                    )
                await repo.upsert_running(job_id, run_date, job_name, now)
        except JobControlError:
            raise
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"Failed to claim run {job_id}/{run_date.isoformat()}: {exc}") from exc

        logger.info("Claimed run %s/%s", job_id, run_date.isoformat())
        return RunRecord(
            job_id=job_id,
            run_date=run_date,
            job_name=job_name,
            status=RunStatus.RUNNING,
            start_time=now,
        )

    async def complete(self, job_id: str, run_date: date, records_processed: int) -> RunRecord:
        if records_processed < 0:
            raise ValueError(f"records_processed must be >= 0, got {records_processed}")
        return await self._finish(job_id, run_date, RunStatus.COMPLETED, records_processed=records_processed)

    async def fail(self, job_id: str, run_date: date, error_message: str) -> RunRecord:
        return await self._finish(job_id, run_date, RunStatus.FAILED, error_message=error_message)

    async def _finish(
        self,
        job_id: str,
        run_date: date,
        status: RunStatus,
        records_processed: int | None = None,
        error_message: str | None = None,
    ) -> RunRecord:
        now = self._clock()
        try:
            async with get_session(self._engine) as session:
                repo = RunLedgerRepository(session)
                row = await repo.get(job_id, run_date)
                if row is None:
                    raise RunNotClaimedError(job_id, run_date)
                if row.job_status not in _OPEN_STATUSES:
                    raise InvalidTransitionError(job_id, run_date, RunStatus(row.job_status), status)
                record = _to_record(row)
                await repo.mark_terminal(
                    job_id,
                    run_date,
                    status.value,
                    end_time=now,
                    records_processed=records_processed,
                    error_message=error_message,
                )
        except JobControlError:
            raise
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(
                f"Failed to record {status.value} for run {job_id}/{run_date.isoformat()}: {exc}"
            ) from exc

        logger.info("Run %s/%s -> %s", job_id, run_date.isoformat(), status.value)
        return record.model_copy(
            update={
                "status": status,
                "end_time": now,
                "records_processed": records_processed,
                "error_message": error_message,
            }
        )

    async def status_of(self, job_id: str, run_date: date) -> RunStatus:
        record = await self.get(job_id, run_date)
        return record.status if record is not None else RunStatus.NOT_FOUND

    async def get(self, job_id: str, run_date: date) -> RunRecord | None:
        try:
            async with get_session(self._engine) as session:
                row = await RunLedgerRepository(session).get(job_id, run_date)
                return _to_record(row) if row is not None else None
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"Failed to read run {job_id}/{run_date.isoformat()}: {exc}") from exc

    async def list_for_date(self, run_date: date) -> list[RunRecord]:
        try:
            async with get_session(self._engine) as session:
                rows = await RunLedgerRepository(session).list_for_date(run_date)
                return [_to_record(row) for row in rows]
        except (SQLAlchemyError, OSError) as exc:
            raise StorageError(f"Failed to list runs for {run_date.isoformat()}: {exc}") from exc
