"""Tests for the lifecycle controller state machine."""

from __future__ import annotations

import asyncio
import sys
from datetime import date
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest
from jobctl.checks import SourceVolumeProbe
from jobctl.compute import NoopComputeEngine, SparkSubmitEngine
from jobctl.controller import LifecycleController, abort_run
from jobctl.failures import FailureStage, StorageError
from jobctl.ledger import InMemoryRunLedger, SqlRunLedger
from jobctl.models.run import RunRecord, RunStatus
from jobctl.notify import AlertStatus
from jobctl.postprocess import PostProcessGate, PostProcessResult
from jobctl.state.database import get_session
from sqlalchemy import text

D = date(2024, 6, 15)


def _probe(volume: int | None) -> MagicMock:
    probe = MagicMock()
    probe.count = AsyncMock(return_value=volume)
    return probe


def _notifier() -> MagicMock:
    notifier = MagicMock()
    notifier.notify = AsyncMock()
    return notifier


class _CompleteFailsLedger(InMemoryRunLedger):
    async def complete(self, job_id: str, run_date: date, records_processed: int) -> RunRecord:
        raise StorageError("ledger went away")


class _ClaimFailsLedger(InMemoryRunLedger):
    async def claim(self, job_id: str, run_date: date, job_name: str = "") -> RunRecord:
        raise StorageError("connection refused")


# ---------------------------------------------------------------------------
# Dependency gate
# ---------------------------------------------------------------------------


class TestDependencyPath:
    @pytest.mark.asyncio
    async def test_completed_dependency_allows_run(self, make_job, clock) -> None:
        ledger = InMemoryRunLedger([RunRecord(job_id="A", run_date=D, status=RunStatus.COMPLETED)])
        compute = NoopComputeEngine()
        controller = LifecycleController(ledger, compute, source_probe=_probe(5), clock=clock)

        outcome = await controller.run(make_job(dependencies=["A"]), D)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.exit_code == 0
        assert compute.calls == [("JOB_B", D)]
        assert await ledger.status_of("JOB_B", D) == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_missing_dependency_fails_without_claim(self, make_job, clock) -> None:
        ledger = InMemoryRunLedger()
        compute = NoopComputeEngine()
        notifier = _notifier()
        controller = LifecycleController(ledger, compute, notifier=notifier, clock=clock)

        outcome = await controller.run(make_job(dependencies=["A"]), D)

        assert outcome.status == RunStatus.FAILED
        assert outcome.exit_code == 1
        assert outcome.claimed is False
        assert outcome.failure.stage == FailureStage.DEPENDENCY
        assert "Dependency job A not completed. Status: NOT_FOUND" in outcome.failure.message
        assert await ledger.status_of("JOB_B", D) == RunStatus.NOT_FOUND
        assert compute.calls == []
        notifier.notify.assert_awaited_once()
        assert notifier.notify.await_args.args[1] == AlertStatus.FAILED

    @pytest.mark.asyncio
    async def test_running_dependency_is_unmet(self, make_job) -> None:
        ledger = InMemoryRunLedger([RunRecord(job_id="A", run_date=D, status=RunStatus.RUNNING)])
        outcome = await LifecycleController(ledger, NoopComputeEngine()).run(make_job(dependencies=["A"]), D)
        assert outcome.exit_code == 1
        assert await ledger.get("JOB_B", D) is None

    @pytest.mark.asyncio
    async def test_storage_error_on_claim(self, make_job) -> None:
        notifier = _notifier()
        controller = LifecycleController(_ClaimFailsLedger(), NoopComputeEngine(), notifier=notifier)

        outcome = await controller.run(make_job(), D)

        assert outcome.exit_code == 1
        assert outcome.claimed is False
        assert outcome.failure.stage == FailureStage.STORAGE
        notifier.notify.assert_awaited_once()


# ---------------------------------------------------------------------------
# Pre-conditions and source volume
# ---------------------------------------------------------------------------


class TestChecks:
    @pytest.mark.asyncio
    async def test_missing_required_file_fails_claimed_run(self, make_job, tmp_path: Path) -> None:
        ledger = InMemoryRunLedger()
        compute = NoopComputeEngine()
        missing = tmp_path / "db_password"
        job = make_job(preconditions={"required_files": [str(missing)], "check_database": False})

        outcome = await LifecycleController(ledger, compute).run(job, D)

        assert outcome.exit_code == 1
        assert outcome.claimed is True
        assert outcome.failure.stage == FailureStage.PRECONDITION
        record = await ledger.get("JOB_B", D)
        assert record.status == RunStatus.FAILED
        assert record.error_message.startswith("precondition: Required file not found")
        assert compute.calls == []

    @pytest.mark.asyncio
    async def test_zero_source_rows_completes_without_compute(self, make_job) -> None:
        ledger = InMemoryRunLedger()
        compute = NoopComputeEngine()
        notifier = _notifier()
        post = MagicMock()
        post.run = AsyncMock()
        controller = LifecycleController(
            ledger, compute, notifier=notifier, source_probe=_probe(0), post_processor=post
        )

        outcome = await controller.run(make_job(), D)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.exit_code == 0
        assert outcome.records_processed == 0
        assert outcome.compute_invoked is False
        assert compute.calls == []
        post.run.assert_not_awaited()
        notifier.notify.assert_not_awaited()
        record = await ledger.get("JOB_B", D)
        assert record.status == RunStatus.COMPLETED
        assert record.records_processed == 0

    @pytest.mark.asyncio
    async def test_unexpected_error_in_probe(self, make_job) -> None:
        ledger = InMemoryRunLedger()
        probe = MagicMock()
        probe.count = AsyncMock(side_effect=RuntimeError("driver crashed"))

        outcome = await LifecycleController(ledger, NoopComputeEngine(), source_probe=probe).run(make_job(), D)

        assert outcome.exit_code == 1
        assert outcome.failure.stage == FailureStage.UNEXPECTED
        record = await ledger.get("JOB_B", D)
        assert record.status == RunStatus.FAILED
        assert record.error_message.startswith("unexpected: Unexpected error")


# ---------------------------------------------------------------------------
# Compute step and completion
# ---------------------------------------------------------------------------


class TestComputeAndCompletion:
    @pytest.mark.asyncio
    async def test_nonzero_exit_propagates(self, make_job) -> None:
        ledger = InMemoryRunLedger()
        notifier = _notifier()
        controller = LifecycleController(ledger, NoopComputeEngine(exit_code=143), notifier=notifier)

        outcome = await controller.run(make_job(), D)

        assert outcome.status == RunStatus.FAILED
        assert outcome.exit_code == 143
        assert outcome.compute_invoked is True
        record = await ledger.get("JOB_B", D)
        assert record.status == RunStatus.FAILED
        assert record.error_message == "execute: Spark job execution failed (exit code 143)"
        extra = notifier.notify.await_args.args[4]
        assert extra["exit_code"] == 143

    @pytest.mark.asyncio
    async def test_processed_count_from_post_processing(self, make_job) -> None:
        ledger = InMemoryRunLedger()
        notifier = _notifier()
        post = MagicMock()
        post.run = AsyncMock(
            return_value=PostProcessResult(metrics={"high_risk_count": 3.0}, alerts_inserted=2, processed_count=40)
        )
        controller = LifecycleController(
            ledger, NoopComputeEngine(), notifier=notifier, source_probe=_probe(50), post_processor=post
        )

        outcome = await controller.run(make_job(), D)

        assert outcome.records_processed == 40
        assert outcome.metrics == {"high_risk_count": 3.0}
        assert outcome.alerts_inserted == 2
        assert (await ledger.get("JOB_B", D)).records_processed == 40
        status, extra = notifier.notify.await_args.args[1], notifier.notify.await_args.args[4]
        assert status == AlertStatus.SUCCESS
        assert extra["records_processed"] == 40
        assert extra["high_risk_count"] == 3.0

    @pytest.mark.asyncio
    async def test_source_volume_used_without_processed_count(self, make_job) -> None:
        ledger = InMemoryRunLedger()
        outcome = await LifecycleController(ledger, NoopComputeEngine(), source_probe=_probe(12)).run(make_job(), D)
        assert outcome.records_processed == 12

    @pytest.mark.asyncio
    async def test_storage_error_on_complete(self, make_job) -> None:
        notifier = _notifier()
        controller = LifecycleController(_CompleteFailsLedger(), NoopComputeEngine(), notifier=notifier)

        outcome = await controller.run(make_job(), D)

        assert outcome.status == RunStatus.FAILED
        assert outcome.exit_code == 1
        assert outcome.failure.stage == FailureStage.STORAGE
        assert notifier.notify.await_args.args[1] == AlertStatus.FAILED

    @pytest.mark.asyncio
    async def test_notifier_errors_do_not_change_outcome(self, make_job) -> None:
        notifier = MagicMock()
        notifier.notify = AsyncMock(side_effect=RuntimeError("monitoring down"))

        outcome = await LifecycleController(InMemoryRunLedger(), NoopComputeEngine(), notifier=notifier).run(
            make_job(), D
        )

        assert outcome.exit_code == 0

    @pytest.mark.asyncio
    async def test_failure_after_compute_reports_compute_invoked(self, make_job) -> None:
        post = MagicMock()
        post.run = AsyncMock(side_effect=RuntimeError("metrics query failed"))
        controller = LifecycleController(InMemoryRunLedger(), NoopComputeEngine(), post_processor=post)

        outcome = await controller.run(make_job(), D)

        assert outcome.failure.stage == FailureStage.UNEXPECTED
        assert outcome.compute_invoked is True

    @pytest.mark.asyncio
    async def test_failure_before_compute_reports_compute_not_invoked(self, make_job, tmp_path: Path) -> None:
        compute = NoopComputeEngine()
        job = make_job(preconditions={"required_files": [str(tmp_path / "absent")], "check_database": False})

        outcome = await LifecycleController(InMemoryRunLedger(), compute).run(job, D)

        assert outcome.failure.stage == FailureStage.PRECONDITION
        assert outcome.compute_invoked is False
        assert compute.calls == []

    @pytest.mark.asyncio
    async def test_long_compute_output_line_completes_run(self, make_job) -> None:
        script = "import sys; sys.stdout.write('y' * 300000 + '\\n')"
        compute = SparkSubmitEngine(command_prefix=[sys.executable, "-c", script])
        ledger = InMemoryRunLedger()

        outcome = await LifecycleController(ledger, compute).run(make_job(), D)

        assert outcome.status == RunStatus.COMPLETED
        assert outcome.exit_code == 0
        assert await ledger.status_of("JOB_B", D) == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancellation_marks_run_failed(self, make_job) -> None:
        ledger = InMemoryRunLedger()
        compute = MagicMock()
        compute.execute = AsyncMock(side_effect=asyncio.CancelledError())

        with pytest.raises(asyncio.CancelledError):
            await LifecycleController(ledger, compute).run(make_job(), D)

        record = await ledger.get("JOB_B", D)
        assert record.status == RunStatus.FAILED
        assert record.error_message == "unexpected: Run cancelled"


class TestAbortRun:
    @pytest.mark.asyncio
    async def test_escalates_without_ledger(self, make_job, clock) -> None:
        notifier = _notifier()

        outcome = await abort_run(make_job(), D, StorageError("cannot open store"), notifier, clock)

        assert outcome.status == RunStatus.FAILED
        assert outcome.exit_code == 1
        assert outcome.claimed is False
        assert outcome.failure.stage == FailureStage.STORAGE
        notifier.notify.assert_awaited_once()
        assert notifier.notify.await_args.args[1] == AlertStatus.FAILED
        assert notifier.notify.await_args.args[3] == clock()


# ---------------------------------------------------------------------------
# End to end over SQLite
# ---------------------------------------------------------------------------


class _WritingCompute:
    """Stand-in compute step that writes result rows for the run date."""

    def __init__(self, engine, scores: list[float]) -> None:
        self._engine = engine
        self._scores = scores

    async def execute(self, job_id, run_date, source_locator, target_locator, config) -> int:
        async with get_session(self._engine) as session:
            for i, score in enumerate(self._scores):
                await session.execute(
                    text("INSERT INTO results (id, process_date, score) VALUES (:id, :d, :s)"),
                    {"id": i, "d": run_date.isoformat(), "s": score},
                )
        return 0


class TestEndToEnd:
    @pytest.mark.asyncio
    async def test_full_run_against_sqlite(self, engine, make_job) -> None:
        async with get_session(engine) as session:
            await session.execute(text("CREATE TABLE events (id INTEGER, event_date TEXT)"))
            await session.execute(text("CREATE TABLE results (id INTEGER PRIMARY KEY, process_date TEXT, score REAL)"))
            for i in range(3):
                await session.execute(
                    text("INSERT INTO events (id, event_date) VALUES (:id, :d)"), {"id": i, "d": D.isoformat()}
                )

        job = make_job(
            source_counts=[{"name": "events", "sql": "SELECT COUNT(*) FROM events WHERE event_date = :run_date"}],
            post_process={
                "processed_count": "SELECT COUNT(*) FROM results WHERE process_date = :run_date",
                "metrics": {"high_score": "SELECT COUNT(*) FROM results WHERE score >= 0.9 AND process_date = :run_date"},
                "alerts": [
                    {
                        "sql": "SELECT id AS entity_id, 'HIGH_SCORE' AS alert_type FROM results "
                        "WHERE score >= 0.9 AND process_date = :run_date"
                    }
                ],
            },
        )
        ledger = SqlRunLedger(engine)
        controller = LifecycleController(
            ledger,
            _WritingCompute(engine, scores=[0.5, 0.7, 0.95]),
            engine=engine,
            source_probe=SourceVolumeProbe(engine),
            post_processor=PostProcessGate(engine),
        )

        outcome = await controller.run(job, D)

        assert outcome.exit_code == 0
        assert outcome.records_processed == 3
        assert outcome.metrics == {"high_score": 1.0}
        assert outcome.alerts_inserted == 1
        record = await ledger.get("JOB_B", D)
        assert record.status == RunStatus.COMPLETED
        assert record.records_processed == 3

    @pytest.mark.asyncio
    async def test_empty_source_against_sqlite(self, engine, make_job) -> None:
        async with get_session(engine) as session:
            await session.execute(text("CREATE TABLE events (id INTEGER, event_date TEXT)"))

        job = make_job(source_counts=[{"name": "events", "sql": "SELECT COUNT(*) FROM events WHERE event_date = :run_date"}])
        compute = NoopComputeEngine()
        ledger = SqlRunLedger(engine)

        outcome = await LifecycleController(ledger, compute, source_probe=SourceVolumeProbe(engine)).run(job, D)

        assert outcome.exit_code == 0
        assert compute.calls == []
        record = await ledger.get("JOB_B", D)
        assert record.status == RunStatus.COMPLETED
        assert record.records_processed == 0
