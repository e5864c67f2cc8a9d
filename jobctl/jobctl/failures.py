"""Failure taxonomy, classification and exit-code policy.

Every failure the lifecycle controller can encounter is expressed as a
:class:`JobControlError` subclass carrying the pipeline ``stage`` it occurred
in and the process ``exit_code`` it maps to.  :func:`classify` and
:func:`classify_exception` turn a failure into a :class:`FailureReport`, whose
``message`` is what the run ledger stores and what alert payloads carry.

Exit-code policy:

* ``0`` -- the run completed (including a graceful empty run).
* ``1`` -- the sentinel for every failure that has no exit status of its own.
* anything else -- the compute step's exit status, propagated unchanged.
"""

from __future__ import annotations

from datetime import UTC, date, datetime
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from jobctl.models.run import RunStatus

SUCCESS_EXIT_CODE = 0
SENTINEL_EXIT_CODE = 1


class FailureStage(str, Enum):
    """Pipeline stage a failure occurred in."""

    DEPENDENCY = "dependency"
    PRECONDITION = "precondition"
    SOURCE_CHECK = "source_check"
    EXECUTE = "execute"
    POST_PROCESS = "post_process"
    STORAGE = "storage"
    UNEXPECTED = "unexpected"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class JobControlError(Exception):
    """Base exception for every classified job-control failure.

    Attributes
    ----------
    stage:
        The pipeline stage the failure belongs to.
    detail:
        Human-readable description, without the stage prefix.
    exit_code:
        Process exit status the failure maps to.
    """

    stage: FailureStage = FailureStage.UNEXPECTED
    exit_code: int = SENTINEL_EXIT_CODE

    def __init__(self, detail: str, *, exit_code: int | None = None) -> None:
        self.detail = detail
        if exit_code is not None:
            self.exit_code = exit_code
        super().__init__(detail)


class DependencyUnsatisfied(JobControlError):
    """One or more prerequisite jobs have not COMPLETED for the run date."""

    stage = FailureStage.DEPENDENCY

    def __init__(self, unmet: list[tuple[str, RunStatus]]) -> None:
        self.unmet = list(unmet)
        parts = [f"Dependency job {job_id} not completed. Status: {status.value}" for job_id, status in self.unmet]
        super().__init__("; ".join(parts) or "Dependencies not satisfied")


class PreconditionMissing(JobControlError):
    """A required input, credential or downstream system is unavailable."""

    stage = FailureStage.PRECONDITION


class SourceCheckError(JobControlError):
    """The source volume probe could not be evaluated."""

    stage = FailureStage.SOURCE_CHECK


class ComputeStepFailed(JobControlError):
    """The external compute step exited with a nonzero status."""

    stage = FailureStage.EXECUTE

    def __init__(self, exit_code: int, detail: str | None = None) -> None:
        if exit_code == SUCCESS_EXIT_CODE:
            raise ValueError("ComputeStepFailed requires a nonzero exit code")
        super().__init__(
            detail or f"Spark job execution failed (exit code {exit_code})",
            exit_code=exit_code,
        )


class PostProcessError(JobControlError):
    """A post-processing statement failed."""

    stage = FailureStage.POST_PROCESS


class StorageError(JobControlError):
    """The run ledger (or analytics store) could not be read or written."""

    stage = FailureStage.STORAGE


class RunNotClaimedError(StorageError):
    """A terminal write was attempted for a run that was never claimed."""

    def __init__(self, job_id: str, run_date: date) -> None:
        self.job_id = job_id
        self.run_date = run_date
        super().__init__(f"No claimed run for job '{job_id}' on {run_date.isoformat()}")


class InvalidTransitionError(StorageError):
    """A terminal write would move a run that is already terminal."""

    def __init__(self, job_id: str, run_date: date, current: RunStatus, target: RunStatus) -> None:
        self.job_id = job_id
        self.run_date = run_date
        self.current = current
        self.target = target
        super().__init__(
            f"Cannot move run '{job_id}' on {run_date.isoformat()} from {current.value} to {target.value}"
        )


class UnexpectedError(JobControlError):
    """Catch-all for failures outside the taxonomy."""

    stage = FailureStage.UNEXPECTED


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------


class FailureReport(BaseModel):
    """Classified description of a run failure."""

    stage: FailureStage = Field(..., description="Pipeline stage the failure occurred in.")
    detail: str = Field(..., description="Human-readable failure description.")
    timestamp: datetime = Field(..., description="When the failure was classified (UTC).")
    exit_code: int = Field(
        default=SENTINEL_EXIT_CODE,
        description="Process exit status the failure maps to.",
    )

    @property
    def message(self) -> str:
        """Stage-prefixed message stored in the ledger's ``error_message``."""
        return f"{self.stage.value}: {self.detail}"


def classify(
    stage: FailureStage,
    detail: str,
    exit_code: int | None = None,
    timestamp: datetime | None = None,
) -> FailureReport:
    """Build a :class:`FailureReport` for a failure at *stage*.

    Parameters
    ----------
    stage:
        The pipeline stage that failed.
    detail:
        Description of the failure.
    exit_code:
        Exit status to report.  Defaults to the sentinel ``1``.  A zero
        exit code is never a failure and is replaced with the sentinel.
    timestamp:
        Classification time; defaults to now (UTC).
    """
    code = exit_code if exit_code else SENTINEL_EXIT_CODE
    return FailureReport(
        stage=stage,
        detail=detail,
        timestamp=timestamp or datetime.now(UTC),
        exit_code=code,
    )


def classify_exception(exc: BaseException, timestamp: datetime | None = None) -> FailureReport:
    """Classify a raised exception.

    :class:`JobControlError` subclasses keep their stage and exit code.
    Anything else is reported as an ``unexpected`` failure with the
    sentinel exit code.
    """
    if isinstance(exc, JobControlError):
        return classify(exc.stage, exc.detail, exc.exit_code, timestamp)
    return classify(
        FailureStage.UNEXPECTED,
        f"Unexpected error: {type(exc).__name__}: {exc}",
        SENTINEL_EXIT_CODE,
        timestamp,
    )
