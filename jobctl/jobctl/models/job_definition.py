"""Job definition schema for declarative job configuration files.

A ``JobDefinition`` is everything the lifecycle controller needs to run one
job: identity, the prerequisite job ids, pre-flight checks, the source
volume queries, the compute-step descriptor and the post-processing SQL.
"""

from __future__ import annotations

import re
from datetime import date, timedelta
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator

_INSERT_RE = re.compile(r"\bINSERT\s+INTO\b", re.IGNORECASE)
_ON_CONFLICT_RE = re.compile(r"\bON\s+CONFLICT\b", re.IGNORECASE)
_NOT_EXISTS_RE = re.compile(r"\bNOT\s+EXISTS\b", re.IGNORECASE)
_HOST_PORT_RE = re.compile(r"^[A-Za-z0-9_.-]+:\d{1,5}$")


class JobFrequency(str, Enum):
    """How often the external scheduler triggers the job."""

    DAILY = "daily"
    REALTIME = "realtime"


class RunDatePolicy(str, Enum):
    """Which calendar date an invocation logically covers."""

    YESTERDAY = "yesterday"  # Daily batch over the previous day
    TODAY = "today"  # Same-day / real-time jobs


class PreconditionSpec(BaseModel):
    """Pre-flight requirements checked after the run is claimed."""

    required_files: list[str] = Field(
        default_factory=list,
        description="Credential, secret or template files that must exist.",
    )
    reachable_hosts: list[str] = Field(
        default_factory=list,
        description="'host:port' endpoints that must accept a TCP connection.",
    )
    check_database: bool = Field(
        default=True,
        description="Whether the ledger/analytics store must answer a probe query.",
    )

    @field_validator("reachable_hosts")
    @classmethod
    def validate_host_port(cls, v: list[str]) -> list[str]:
        for entry in v:
            if not _HOST_PORT_RE.match(entry):
                raise ValueError(f"reachable_hosts entry must be 'host:port', got {entry!r}")
        return v


class SourceQuery(BaseModel):
    """A named count query over the job's eligible input rows."""

    name: str = Field(..., min_length=1)
    sql: str = Field(..., min_length=1)


class ComputeSpec(BaseModel):
    """Descriptor of the external compute step (a ``spark-submit`` call)."""

    application: str = Field(
        ...,
        min_length=1,
        description="Path to the application jar or Python file.",
    )
    main_class: str | None = Field(default=None, description="JVM entry point class.")
    master: str = "yarn"
    deploy_mode: str = "client"
    driver_memory: str | None = None
    executor_memory: str | None = None
    executor_cores: int | None = Field(default=None, ge=1)
    num_executors: int | None = Field(default=None, ge=1)
    conf: dict[str, str] = Field(default_factory=dict)
    packages: list[str] = Field(default_factory=list)
    source: str = Field(default="", description="Source table, schema or path locator.")
    target: str = Field(default="", description="Target table, schema or path locator.")
    source_flag: str = "--source-schema"
    target_flag: str = "--target-schema"
    config_file: str | None = None
    log_level: str = "INFO"
    args: list[str] = Field(
        default_factory=list,
        description="Extra application arguments appended verbatim.",
    )

    @field_validator("conf", mode="before")
    @classmethod
    def stringify_conf(cls, v: object) -> object:
        if isinstance(v, dict):
            return {str(k): str(val).lower() if isinstance(val, bool) else str(val) for k, val in v.items()}
        return v


class AlertQuery(BaseModel):
    """A query yielding discrete alert rows for a run date.

    The query must return ``entity_id`` and ``alert_type`` columns and may
    return ``severity`` and ``detail``.
    """

    sql: str = Field(..., min_length=1)
    default_severity: str = "MEDIUM"


class PostProcessSpec(BaseModel):
    """Idempotent post-processing performed after a successful compute step."""

    merges: list[str] = Field(
        default_factory=list,
        description=(
            "Downstream aggregate writes; every INSERT must use ON CONFLICT merge semantics "
            "or a WHERE NOT EXISTS guard."
        ),
    )
    metrics: dict[str, str] = Field(
        default_factory=dict,
        description="Metric name -> scalar SQL, upserted per (job_id, run_date, metric_name).",
    )
    alerts: list[AlertQuery] = Field(default_factory=list)
    processed_count: str | None = Field(
        default=None,
        description="Scalar SQL counting rows written for the run date.",
    )

    @field_validator("merges")
    @classmethod
    def require_merge_semantics(cls, v: list[str]) -> list[str]:
        for sql in v:
            if not _INSERT_RE.search(sql):
                continue
            if _ON_CONFLICT_RE.search(sql) or _NOT_EXISTS_RE.search(sql):
                continue
            raise ValueError(
                "post_process INSERT statements must use ON CONFLICT merge semantics "
                f"or a NOT EXISTS guard: {sql.strip()[:80]!r}"
            )
        return v


class JobDefinition(BaseModel):
    """Declarative definition of one scheduled job."""

    # -- Identity --
    job_id: str = Field(
        ...,
        min_length=1,
        max_length=128,
        description="Stable identifier, e.g. 'XTF_FRAUDDETECTION_REALTIME'.",
    )
    job_name: str = Field(
        default="",
        description="Descriptive label; also the log file prefix.",
    )
    domain: str | None = None
    process_type: str | None = None
    frequency: JobFrequency = JobFrequency.DAILY
    description: str = ""
    run_date_policy: RunDatePolicy | None = Field(
        default=None,
        description="Defaults to 'yesterday' for daily jobs and 'today' for real-time jobs.",
    )

    # -- Orchestration --
    dependencies: frozenset[str] = Field(
        default_factory=frozenset,
        description="Job ids that must be COMPLETED for the same run date.",
    )
    preconditions: PreconditionSpec = Field(default_factory=PreconditionSpec)
    source_counts: list[SourceQuery] = Field(
        default_factory=list,
        description="Eligible-input counts; the source volume is their sum.",
    )
    compute: ComputeSpec
    post_process: PostProcessSpec = Field(default_factory=PostProcessSpec)

    @field_validator("dependencies", mode="before")
    @classmethod
    def coerce_dependencies(cls, v: object) -> object:
        if v is None:
            return frozenset()
        return v

    @model_validator(mode="after")
    def fill_defaults(self) -> JobDefinition:
        if not self.job_name:
            self.job_name = self.job_id
        if self.run_date_policy is None:
            self.run_date_policy = (
                RunDatePolicy.TODAY if self.frequency == JobFrequency.REALTIME else RunDatePolicy.YESTERDAY
            )
        if self.job_id in self.dependencies:
            raise ValueError(f"Job '{self.job_id}' cannot depend on itself")
        return self

    def resolve_run_date(self, today: date, override: date | None = None) -> date:
        """Return the run date an invocation on *today* covers."""
        if override is not None:
            return override
        if self.run_date_policy == RunDatePolicy.TODAY:
            return today
        return today - timedelta(days=1)
