"""Initial job-control schema: run ledger, metrics and alerts.

Revision ID: 001
Revises:
Create Date: 2026-10-18 00:00:00.000000+00:00

"""

from __future__ import annotations

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "etl_job_control",
        sa.Column("job_id", sa.String(128), nullable=False),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("job_name", sa.String(256), nullable=False, server_default=""),
        sa.Column("job_status", sa.String(16), nullable=False, server_default="PENDING"),
        sa.Column("start_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("records_processed", sa.Integer(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("job_id", "run_date", name="pk_etl_job_control"),
        sa.CheckConstraint(
            "job_status IN ('PENDING', 'RUNNING', 'COMPLETED', 'FAILED')",
            name="ck_etl_job_control_status",
        ),
        sa.CheckConstraint(
            "records_processed IS NULL OR records_processed >= 0",
            name="ck_etl_job_control_records_non_negative",
        ),
    )
    op.create_index(
        "ix_etl_job_control_run_date_status",
        "etl_job_control",
        ["run_date", "job_status"],
    )

    op.create_table(
        "job_metrics",
        sa.Column("job_id", sa.String(128), nullable=False),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("metric_name", sa.String(128), nullable=False),
        sa.Column("metric_value", sa.Float(), nullable=True),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("job_id", "run_date", "metric_name", name="pk_job_metrics"),
    )

    op.create_table(
        "job_alerts",
        sa.Column("alert_id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("job_id", sa.String(128), nullable=False),
        sa.Column("run_date", sa.Date(), nullable=False),
        sa.Column("entity_id", sa.String(256), nullable=False),
        sa.Column("alert_type", sa.String(128), nullable=False),
        sa.Column("severity", sa.String(32), nullable=False, server_default="MEDIUM"),
        sa.Column("detail", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("alert_id"),
        sa.UniqueConstraint(
            "job_id",
            "run_date",
            "entity_id",
            "alert_type",
            name="uq_job_alerts_run_entity_type",
        ),
    )
    op.create_index("ix_job_alerts_job_run_date", "job_alerts", ["job_id", "run_date"])


def downgrade() -> None:
    op.drop_index("ix_job_alerts_job_run_date", table_name="job_alerts")
    op.drop_table("job_alerts")
    op.drop_table("job_metrics")
    op.drop_index("ix_etl_job_control_run_date_status", table_name="etl_job_control")
    op.drop_table("etl_job_control")
