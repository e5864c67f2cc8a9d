"""Domain models for the job-control core."""

from jobctl.models.job_definition import (
    AlertQuery,
    ComputeSpec,
    JobDefinition,
    JobFrequency,
    PostProcessSpec,
    PreconditionSpec,
    RunDatePolicy,
    SourceQuery,
)
from jobctl.models.run import PERSISTED_STATUSES, RunRecord, RunStatus

__all__ = [
    "AlertQuery",
    "ComputeSpec",
    "JobDefinition",
    "JobFrequency",
    "PERSISTED_STATUSES",
    "PostProcessSpec",
    "PreconditionSpec",
    "RunDatePolicy",
    "RunRecord",
    "RunStatus",
    "SourceQuery",
]
