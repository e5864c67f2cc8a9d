"""Run record models for tracking job execution state.

Each ``RunRecord`` tracks the lifecycle of a single job invocation keyed by
``(job_id, run_date)``, from claim through to COMPLETED or FAILED, capturing
timing, error details and the processed-row count.
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from pydantic import BaseModel, Field


class RunStatus(str, Enum):
    """Lifecycle state of a job run.

    ``NOT_FOUND`` is never persisted.  It is what a ledger lookup returns
    when no run has ever been claimed for the requested key.
    """

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    NOT_FOUND = "NOT_FOUND"

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


PERSISTED_STATUSES: tuple[RunStatus, ...] = (
    RunStatus.PENDING,
    RunStatus.RUNNING,
    RunStatus.COMPLETED,
    RunStatus.FAILED,
)


class RunRecord(BaseModel):
    """The ledger row for one job on one run date."""

    job_id: str = Field(
        ...,
        min_length=1,
        description="Stable identifier of the job definition.",
    )
    run_date: date = Field(
        ...,
        description="Logical business date the run covers.",
    )
    job_name: str = Field(
        default="",
        description="Descriptive label, informational only.",
    )
    status: RunStatus = Field(
        default=RunStatus.PENDING,
        description="Current lifecycle state of the run.",
    )
    start_time: datetime | None = Field(
        default=None,
        description="Timestamp when the run was claimed.",
    )
    end_time: datetime | None = Field(
        default=None,
        description="Timestamp when the run reached a terminal state.",
    )
    records_processed: int | None = Field(
        default=None,
        ge=0,
        description="Number of rows processed; set only on COMPLETED.",
    )
    error_message: str | None = Field(
        default=None,
        description="Failure description naming the failing stage; set only on FAILED.",
    )

    @property
    def key(self) -> tuple[str, date]:
        return (self.job_id, self.run_date)
