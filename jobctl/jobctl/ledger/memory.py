"""Dict-backed run ledger with the same semantics as :class:`SqlRunLedger`.

Used by dry runs and by tests that exercise the controller and the gate
without a database.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import UTC, date, datetime

from jobctl.failures import InvalidTransitionError, RunNotClaimedError
from jobctl.models.run import RunRecord, RunStatus

logger = logging.getLogger(__name__)


class InMemoryRunLedger:
    """In-process implementation of :class:`jobctl.ledger.base.RunLedger`."""

    def __init__(
        self,
        records: list[RunRecord] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._rows: dict[tuple[str, date], RunRecord] = {}
        self._clock = clock or (lambda: datetime.now(UTC))
        for record in records or []:
            self._rows[record.key] = record

    async def claim(self, job_id: str, run_date: date, job_name: str = "") -> RunRecord:
        existing = self._rows.get((job_id, run_date))
        if existing is not None and existing.status == RunStatus.RUNNING:
            logger.warning(
                "Re-claiming run %s/%s that is still RUNNING (started %s)",
                job_id,
                run_date.isoformat(),
                existing.start_time,
            )
        record = RunRecord(
            job_id=job_id,
            run_date=run_date,
            job_name=job_name,
            status=RunStatus.RUNNING,
            start_time=self._clock(),
        )
        self._rows[record.key] = record
        return record

    async def complete(self, job_id: str, run_date: date, records_processed: int) -> RunRecord:
        if records_processed < 0:
            raise ValueError(f"records_processed must be >= 0, got {records_processed}")
        return self._finish(job_id, run_date, RunStatus.COMPLETED, records_processed=records_processed)

    async def fail(self, job_id: str, run_date: date, error_message: str) -> RunRecord:
        return self._finish(job_id, run_date, RunStatus.FAILED, error_message=error_message)

    def _finish(
        self,
        job_id: str,
        run_date: date,
        status: RunStatus,
        records_processed: int | None = None,
        error_message: str | None = None,
    ) -> RunRecord:
        current = self._rows.get((job_id, run_date))
        if current is None:
            raise RunNotClaimedError(job_id, run_date)
        if current.status.is_terminal:
            raise InvalidTransitionError(job_id, run_date, current.status, status)
        record = current.model_copy(
            update={
                "status": status,
                "end_time": self._clock(),
                "records_processed": records_processed,
                "error_message": error_message,
            }
        )
        self._rows[record.key] = record
        return record

    async def status_of(self, job_id: str, run_date: date) -> RunStatus:
        record = self._rows.get((job_id, run_date))
        return record.status if record is not None else RunStatus.NOT_FOUND

    async def get(self, job_id: str, run_date: date) -> RunRecord | None:
        return self._rows.get((job_id, run_date))

    async def list_for_date(self, run_date: date) -> list[RunRecord]:
        return sorted(
            (record for (_, day), record in self._rows.items() if day == run_date),
            key=lambda r: r.job_id,
        )
