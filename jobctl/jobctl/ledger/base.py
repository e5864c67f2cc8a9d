"""Abstract interface for run ledgers.

The lifecycle controller and the dependency gate only ever talk to a
:class:`RunLedger`.  Implementations are **not** required to subclass the
protocol; they only need to expose methods with matching signatures.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from jobctl.models.run import RunRecord, RunStatus


class RunLedger(Protocol):
    """Durable record of one run per ``(job_id, run_date)``."""

    async def claim(self, job_id: str, run_date: date, job_name: str = "") -> RunRecord:
        """Upsert the run to RUNNING with ``start_time=now``.

        An existing row for the key is overwritten and its terminal fields
        are cleared.

        Raises
        ------
        StorageError
            The ledger could not be written.
        """
        ...

    async def complete(self, job_id: str, run_date: date, records_processed: int) -> RunRecord:
        """Move a claimed run to COMPLETED with ``end_time=now``.

        Raises
        ------
        RunNotClaimedError
            No row exists for the key.
        InvalidTransitionError
            The run is already terminal.
        """
        ...

    async def fail(self, job_id: str, run_date: date, error_message: str) -> RunRecord:
        """Move a claimed run to FAILED with ``end_time=now`` and the message stored."""
        ...

    async def status_of(self, job_id: str, run_date: date) -> RunStatus:
        """Return the run's status, or ``RunStatus.NOT_FOUND`` when never claimed."""
        ...

    async def get(self, job_id: str, run_date: date) -> RunRecord | None:
        """Return the full run record, if any."""
        ...

    async def list_for_date(self, run_date: date) -> list[RunRecord]:
        """Return every run recorded for *run_date*, ordered by job id."""
        ...
