"""Lifecycle controller: one job, one run date, one pass through the state machine.

::

    START -> dependency check
        unsatisfied            -> FAIL (no ledger row, escalate, exit 1)
        satisfied              -> CLAIM (ledger: RUNNING)
    CLAIM -> pre-conditions
        any missing            -> FAIL (ledger: FAILED, escalate, exit 1)
    SOURCE CHECK
        zero eligible rows     -> COMPLETE (records_processed=0, exit 0)
    EXECUTE
        nonzero exit code      -> FAIL (ledger: FAILED, escalate, exit=<code>)
    POST-PROCESS
        -> COMPLETE (records_processed=<count>, escalate success, exit 0)

Every path out of CLAIM ends in a terminal ledger write.  Failures before
CLAIM never touch the ledger.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, date, datetime
from typing import Any

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncEngine

from jobctl.checks.preconditions import build_preconditions, verify_preconditions
from jobctl.checks.source_volume import SourceVolumeProbe
from jobctl.compute.base import ComputeEngine
from jobctl.failures import (
    SUCCESS_EXIT_CODE,
    ComputeStepFailed,
    FailureReport,
    JobControlError,
    StorageError,
    UnexpectedError,
    classify_exception,
)
from jobctl.gate.dependency_gate import DependencyGate
from jobctl.ledger.base import RunLedger
from jobctl.log_config import job_context
from jobctl.models.job_definition import JobDefinition
from jobctl.models.run import RunStatus
from jobctl.notify.base import AlertStatus, Notifier, NullNotifier
from jobctl.postprocess.gate import PostProcessGate, PostProcessResult

logger = logging.getLogger(__name__)


class RunOutcome(BaseModel):
    """Final result of one controller invocation."""

    job_id: str
    run_date: date
    status: RunStatus = Field(..., description="COMPLETED or FAILED.")
    exit_code: int = Field(..., description="Process exit status for the scheduler.")
    claimed: bool = Field(default=False, description="Whether a ledger row was claimed.")
    compute_invoked: bool = False
    records_processed: int | None = None
    failure: FailureReport | None = None
    metrics: dict[str, float | None] = Field(default_factory=dict)
    alerts_inserted: int = 0

    @property
    def succeeded(self) -> bool:
        return self.exit_code == SUCCESS_EXIT_CODE


class LifecycleController:
    """Drive a :class:`JobDefinition` through claim, checks, compute and completion.

    Parameters
    ----------
    ledger:
        Run ledger the run is claimed and finished in.
    compute:
        Engine executing the external compute step.
    notifier:
        Monitoring channel; defaults to :class:`NullNotifier`.
    engine:
        Analytics-store engine used for the database pre-condition probe.
    source_probe:
        Source volume probe.  When omitted the compute step always runs.
    post_processor:
        Post-processing gate.  When omitted no post-processing runs.
    connect_timeout:
        Timeout for reachability pre-conditions, in seconds.
    clock:
        Returns the current (timezone-aware) time; injectable for tests.
    """

    def __init__(
        self,
        ledger: RunLedger,
        compute: ComputeEngine,
        notifier: Notifier | None = None,
        engine: AsyncEngine | None = None,
        source_probe: SourceVolumeProbe | None = None,
        post_processor: PostProcessGate | None = None,
        connect_timeout: float = 5.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._ledger = ledger
        self._gate = DependencyGate(ledger)
        self._compute = compute
        self._notifier: Notifier = notifier or NullNotifier()
        self._engine = engine
        self._source_probe = source_probe
        self._post_processor = post_processor
        self._connect_timeout = connect_timeout
        self._clock = clock or (lambda: datetime.now(UTC))

    async def run(self, job: JobDefinition, run_date: date) -> RunOutcome:
        """Execute one invocation of *job* for *run_date*."""
        with job_context(job.job_id, run_date):
            logger.info("Starting %s (%s) for %s", job.job_id, job.job_name, run_date.isoformat())
            outcome = await self._run(job, run_date)
            logger.info(
                "Finished %s for %s: %s (exit %d)",
                job.job_id,
                run_date.isoformat(),
                outcome.status.value,
                outcome.exit_code,
            )
            return outcome

    async def _run(self, job: JobDefinition, run_date: date) -> RunOutcome:
        # Dependency gate and claim: failures here never touch the ledger.
        try:
            decision = await self._gate.check(job.dependencies, run_date)
            decision.raise_if_unsatisfied()
            await self._ledger.claim(job.job_id, run_date, job.job_name)
        except Exception as exc:
            return await abort_run(job, run_date, exc, self._notifier, self._clock)

        progress = _Progress()
        try:
            return await self._run_claimed(job, run_date, progress)
        except asyncio.CancelledError:
            report = classify_exception(UnexpectedError("Run cancelled"), self._clock())
            await self._fail(job, run_date, report, progress.compute_invoked)
            raise
        except Exception as exc:
            if not isinstance(exc, JobControlError):
                logger.exception("Unexpected error during %s", job.job_id)
            return await self._fail(job, run_date, classify_exception(exc, self._clock()), progress.compute_invoked)

    async def _run_claimed(self, job: JobDefinition, run_date: date, progress: _Progress) -> RunOutcome:
        checks = build_preconditions(job.preconditions, self._engine, self._connect_timeout)
        await verify_preconditions(checks)

        volume: int | None = None
        if self._source_probe is not None:
            volume = await self._source_probe.count(job, run_date)
        if volume == 0:
            logger.info("No source records to process for %s; completing without compute", run_date.isoformat())
            return await self._complete(job, run_date, 0, PostProcessResult(), compute_invoked=False)

        progress.compute_invoked = True
        exit_code = await self._compute.execute(
            job.job_id,
            run_date,
            job.compute.source,
            job.compute.target,
            job.compute,
        )
        if exit_code != SUCCESS_EXIT_CODE:
            raise ComputeStepFailed(exit_code)

        result = PostProcessResult()
        if self._post_processor is not None:
            result = await self._post_processor.run(job, run_date)
        if result.processed_count is not None:
            records = result.processed_count
        else:
            records = volume or 0
        return await self._complete(job, run_date, records, result, compute_invoked=True)

    async def _complete(
        self,
        job: JobDefinition,
        run_date: date,
        records: int,
        result: PostProcessResult,
        compute_invoked: bool,
    ) -> RunOutcome:
        try:
            await self._ledger.complete(job.job_id, run_date, records)
        except StorageError as exc:
            report = classify_exception(exc, self._clock())
            logger.error("Could not record completion: %s", report.message)
            await _escalate_failure(self._notifier, job, run_date, report)
            return RunOutcome(
                job_id=job.job_id,
                run_date=run_date,
                status=RunStatus.FAILED,
                exit_code=report.exit_code,
                claimed=True,
                compute_invoked=compute_invoked,
                failure=report,
            )

        logger.info("Job completed successfully: %d records processed", records)
        if compute_invoked:
            await _send_alert(
                self._notifier,
                job.job_id,
                AlertStatus.SUCCESS,
                f"Completed with {records} records processed",
                self._clock(),
                {
                    "process_date": run_date.isoformat(),
                    "records_processed": records,
                    "alerts_inserted": result.alerts_inserted,
                    **result.metrics,
                },
            )
        return RunOutcome(
            job_id=job.job_id,
            run_date=run_date,
            status=RunStatus.COMPLETED,
            exit_code=SUCCESS_EXIT_CODE,
            claimed=True,
            compute_invoked=compute_invoked,
            records_processed=records,
            metrics=result.metrics,
            alerts_inserted=result.alerts_inserted,
        )

    async def _fail(
        self,
        job: JobDefinition,
        run_date: date,
        report: FailureReport,
        compute_invoked: bool,
    ) -> RunOutcome:
        logger.error("Job failed: %s", report.message)
        try:
            await self._ledger.fail(job.job_id, run_date, report.message)
        except StorageError as exc:
            logger.error("Could not record failure in the ledger: %s", exc)
        await _escalate_failure(self._notifier, job, run_date, report)
        return RunOutcome(
            job_id=job.job_id,
            run_date=run_date,
            status=RunStatus.FAILED,
            exit_code=report.exit_code,
            claimed=True,
            compute_invoked=compute_invoked,
            failure=report,
        )


# ---------------------------------------------------------------------------
# Escalation helpers
# ---------------------------------------------------------------------------


class _Progress:
    """How far a claimed run got; read when it fails."""

    def __init__(self) -> None:
        self.compute_invoked = False


async def abort_run(
    job: JobDefinition,
    run_date: date,
    exc: BaseException,
    notifier: Notifier,
    clock: Callable[[], datetime] | None = None,
) -> RunOutcome:
    """Classify and escalate a failure that happened before a run was claimed.

    The ledger is never touched.  Used for unmet dependencies, failed claims
    and a job-control store that cannot be opened at all.
    """
    now = clock() if clock is not None else datetime.now(UTC)
    report = classify_exception(exc, now)
    logger.error("Run not started: %s", report.message)
    await _escalate_failure(notifier, job, run_date, report)
    return RunOutcome(
        job_id=job.job_id,
        run_date=run_date,
        status=RunStatus.FAILED,
        exit_code=report.exit_code,
        failure=report,
    )


async def _escalate_failure(notifier: Notifier, job: JobDefinition, run_date: date, report: FailureReport) -> None:
    await _send_alert(
        notifier,
        job.job_id,
        AlertStatus.FAILED,
        report.message,
        report.timestamp,
        {"process_date": run_date.isoformat(), "exit_code": report.exit_code},
    )


async def _send_alert(
    notifier: Notifier,
    job_id: str,
    status: AlertStatus,
    detail: str,
    timestamp: datetime,
    extra: dict[str, Any],
) -> None:
    try:
        await notifier.notify(job_id, status, detail, timestamp, extra)
    except Exception:
        logger.exception("Notifier raised while sending %s for %s", status.value, job_id)
