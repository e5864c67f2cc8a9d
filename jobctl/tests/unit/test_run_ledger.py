"""Tests for the SQL-backed run ledger against in-memory SQLite."""

from __future__ import annotations

from datetime import UTC, date, datetime
from unittest.mock import patch

import pytest
from jobctl.failures import InvalidTransitionError, RunNotClaimedError, StorageError
from jobctl.ledger import SqlRunLedger
from jobctl.models.run import RunStatus
from jobctl.state.database import get_session
from jobctl.state.repository import RunLedgerRepository
from sqlalchemy.exc import OperationalError

D = date(2024, 6, 15)


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2024, 6, 15, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now


async def _row_count(engine, job_id: str, run_date: date) -> int:
    async with get_session(engine) as session:
        return await RunLedgerRepository(session).count_for_key(job_id, run_date)


# ---------------------------------------------------------------------------
# claim
# ---------------------------------------------------------------------------


class TestClaim:
    @pytest.mark.asyncio
    async def test_claim_creates_running_row(self, engine) -> None:
        clock = _Clock()
        ledger = SqlRunLedger(engine, clock=clock)

        record = await ledger.claim("A", D, "job_a")

        assert record.status == RunStatus.RUNNING
        stored = await ledger.get("A", D)
        assert stored is not None
        assert stored.status == RunStatus.RUNNING
        assert stored.job_name == "job_a"
        assert stored.start_time == clock.now
        assert stored.end_time is None

    @pytest.mark.asyncio
    async def test_reclaim_overwrites_and_clears_terminal_fields(self, engine) -> None:
        clock = _Clock()
        ledger = SqlRunLedger(engine, clock=clock)
        await ledger.claim("A", D)
        await ledger.fail("A", D, "execute: boom")

        clock.now = datetime(2024, 6, 15, 9, 30, tzinfo=UTC)
        await ledger.claim("A", D)

        stored = await ledger.get("A", D)
        assert stored.status == RunStatus.RUNNING
        assert stored.start_time == clock.now
        assert stored.end_time is None
        assert stored.error_message is None
        assert stored.records_processed is None

    @pytest.mark.asyncio
    async def test_reclaim_running_row_warns(self, engine, caplog) -> None:
        ledger = SqlRunLedger(engine)
        await ledger.claim("A", D)
        with caplog.at_level("WARNING"):
            await ledger.claim("A", D)
        assert "still RUNNING" in caplog.text

    @pytest.mark.asyncio
    async def test_one_row_per_key_after_many_invocations(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        for _ in range(3):
            await ledger.claim("A", D)
            await ledger.complete("A", D, 10)
        await ledger.claim("A", D)
        await ledger.fail("A", D, "precondition: missing")

        assert await _row_count(engine, "A", D) == 1

    @pytest.mark.asyncio
    async def test_storage_failure_raises_storage_error(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        with patch(
            "jobctl.ledger.sql_ledger.RunLedgerRepository.upsert_running",
            side_effect=OperationalError("INSERT", {}, Exception("connection refused")),
        ):
            with pytest.raises(StorageError, match="Failed to claim"):
                await ledger.claim("A", D)


# ---------------------------------------------------------------------------
# complete / fail
# ---------------------------------------------------------------------------


class TestTerminalTransitions:
    @pytest.mark.asyncio
    async def test_complete(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        await ledger.claim("A", D)

        record = await ledger.complete("A", D, 42)

        assert record.status == RunStatus.COMPLETED
        stored = await ledger.get("A", D)
        assert stored.status == RunStatus.COMPLETED
        assert stored.records_processed == 42
        assert stored.end_time is not None
        assert stored.error_message is None

    @pytest.mark.asyncio
    async def test_fail_stores_message(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        await ledger.claim("A", D)

        await ledger.fail("A", D, "execute: Spark job execution failed (exit code 143)")

        stored = await ledger.get("A", D)
        assert stored.status == RunStatus.FAILED
        assert stored.error_message == "execute: Spark job execution failed (exit code 143)"
        assert stored.records_processed is None

    @pytest.mark.asyncio
    async def test_complete_without_claim_raises(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        with pytest.raises(RunNotClaimedError):
            await ledger.complete("A", D, 1)

    @pytest.mark.asyncio
    async def test_fail_without_claim_raises(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        with pytest.raises(RunNotClaimedError):
            await ledger.fail("A", D, "boom")

    @pytest.mark.asyncio
    async def test_terminal_row_cannot_move_again(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        await ledger.claim("A", D)
        await ledger.complete("A", D, 5)

        with pytest.raises(InvalidTransitionError):
            await ledger.fail("A", D, "late failure")
        assert (await ledger.get("A", D)).status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_negative_records_rejected(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        await ledger.claim("A", D)
        with pytest.raises(ValueError):
            await ledger.complete("A", D, -1)


# ---------------------------------------------------------------------------
# reads
# ---------------------------------------------------------------------------


class TestReads:
    @pytest.mark.asyncio
    async def test_status_of_unknown_is_not_found(self, engine) -> None:
        assert await SqlRunLedger(engine).status_of("A", D) == RunStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_status_is_per_run_date(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        await ledger.claim("A", D)
        await ledger.complete("A", D, 1)

        assert await ledger.status_of("A", D) == RunStatus.COMPLETED
        assert await ledger.status_of("A", date(2024, 6, 16)) == RunStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_list_for_date_sorted_by_job(self, engine) -> None:
        ledger = SqlRunLedger(engine)
        await ledger.claim("B", D)
        await ledger.claim("A", D)
        await ledger.claim("C", date(2024, 6, 14))

        records = await ledger.list_for_date(D)
        assert [r.job_id for r in records] == ["A", "B"]
