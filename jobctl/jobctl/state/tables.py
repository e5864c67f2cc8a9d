"""SQLAlchemy 2.0 ORM table definitions for the job-control store.

All tables use the ``Mapped`` / ``mapped_column`` declaration style.  The
``Base`` declarative base is exported for use by Alembic migrations and the
repository layer.
"""

from __future__ import annotations

from datetime import UTC, date, datetime

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    PrimaryKeyConstraint,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


def _utcnow() -> datetime:
    """Return the current UTC timestamp (timezone-aware)."""
    return datetime.now(UTC)


class UTCDateTime(TypeDecorator):
    """Timezone-aware ``DateTime`` that reads back as UTC on every dialect.

    SQLite stores timestamps without an offset; values read from it are
    tagged as UTC so comparisons with ``_utcnow()`` never mix naive and
    aware datetimes.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is not None:
            return value.astimezone(UTC)
        return value

    def process_result_value(self, value, dialect):  # type: ignore[override]
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value


# ---------------------------------------------------------------------------
# Declarative base
# ---------------------------------------------------------------------------


class Base(DeclarativeBase):
    """Shared declarative base for all job-control tables."""


# ---------------------------------------------------------------------------
# Run ledger
# ---------------------------------------------------------------------------


class RunLedgerTable(Base):
    """One row per ``(job_id, run_date)`` tracking a job run's lifecycle."""

    __tablename__ = "etl_job_control"

    job_id: Mapped[str] = mapped_column(String(128), nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    job_name: Mapped[str] = mapped_column(String(256), nullable=False, default="")
    job_status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING")
    start_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    records_processed: Mapped[int | None] = mapped_column(Integer, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        PrimaryKeyConstraint("job_id", "run_date", name="pk_etl_job_control"),
        CheckConstraint(
            "job_status IN ('PENDING', 'RUNNING', 'COMPLETED', 'FAILED')",
            name="ck_etl_job_control_status",
        ),
        CheckConstraint(
            "records_processed IS NULL OR records_processed >= 0",
            name="ck_etl_job_control_records_non_negative",
        ),
        Index("ix_etl_job_control_run_date_status", "run_date", "job_status"),
    )


# ---------------------------------------------------------------------------
# Post-processing outputs
# ---------------------------------------------------------------------------


class JobMetricTable(Base):
    """Rollup metrics computed after a run, overwritten on re-run."""

    __tablename__ = "job_metrics"

    job_id: Mapped[str] = mapped_column(String(128), nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    metric_name: Mapped[str] = mapped_column(String(128), nullable=False)
    metric_value: Mapped[float | None] = mapped_column(Float, nullable=True)
    computed_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (PrimaryKeyConstraint("job_id", "run_date", "metric_name", name="pk_job_metrics"),)


class JobAlertTable(Base):
    """Discrete alerts emitted by a run; at most one per entity and type per run date."""

    __tablename__ = "job_alerts"

    alert_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    job_id: Mapped[str] = mapped_column(String(128), nullable=False)
    run_date: Mapped[date] = mapped_column(Date, nullable=False)
    entity_id: Mapped[str] = mapped_column(String(256), nullable=False)
    alert_type: Mapped[str] = mapped_column(String(128), nullable=False)
    severity: Mapped[str] = mapped_column(String(32), nullable=False, default="MEDIUM")
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "job_id",
            "run_date",
            "entity_id",
            "alert_type",
            name="uq_job_alerts_run_entity_type",
        ),
        Index("ix_job_alerts_job_run_date", "job_id", "run_date"),
    )
