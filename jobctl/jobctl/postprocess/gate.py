"""Idempotent post-processing after a successful compute step.

Everything here is safe to repeat for the same run date:

* merge statements must carry ``ON CONFLICT`` semantics (enforced when the
  job definition is loaded),
* metric rollups are upserted per ``(job_id, run_date, metric_name)`` so a
  re-run overwrites instead of accumulating,
* alerts are inserted with ``ON CONFLICT DO NOTHING`` per
  ``(job_id, run_date, entity_id, alert_type)`` so a re-run never
  duplicates an alert.

All statements for one run execute in a single transaction; a failure rolls
the whole post-processing step back and surfaces as
:class:`PostProcessError`.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession

from jobctl.failures import PostProcessError
from jobctl.models.job_definition import AlertQuery, JobDefinition
from jobctl.state.database import get_session
from jobctl.state.repository import AlertRepository, MetricRepository
from jobctl.state.sql_params import execute_run_sql, scalar_run_sql

logger = logging.getLogger(__name__)


@dataclass
class PostProcessResult:
    """What one post-processing pass produced."""

    metrics: dict[str, float | None] = field(default_factory=dict)
    merges_executed: int = 0
    alerts_found: int = 0
    alerts_inserted: int = 0
    processed_count: int | None = None


class PostProcessGate:
    """Run a job's post-processing SQL against the analytics store."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def run(self, job: JobDefinition, run_date: date) -> PostProcessResult:
        """Execute merges, metric rollups, alert emission and the processed count.

        Raises
        ------
        PostProcessError
            Any statement failed, or an alert query returned unusable rows.
        """
        spec = job.post_process
        result = PostProcessResult()
        try:
            async with get_session(self._engine) as session:
                for sql in spec.merges:
                    await execute_run_sql(session, sql, job.job_id, run_date)
                    result.merges_executed += 1

                metrics = MetricRepository(session)
                for name in sorted(spec.metrics):
                    value = await scalar_run_sql(session, spec.metrics[name], job.job_id, run_date)
                    metric_value = float(value) if value is not None else None
                    await metrics.upsert(job.job_id, run_date, name, metric_value)
                    result.metrics[name] = metric_value

                for alert_query in spec.alerts:
                    found, inserted = await self._emit_alerts(session, job.job_id, run_date, alert_query)
                    result.alerts_found += found
                    result.alerts_inserted += inserted

                if spec.processed_count is not None:
                    value = await scalar_run_sql(session, spec.processed_count, job.job_id, run_date)
                    result.processed_count = int(value or 0)
        except PostProcessError:
            raise
        except (SQLAlchemyError, TypeError, ValueError) as exc:
            raise PostProcessError(f"Post-processing failed for {run_date.isoformat()}: {exc}") from exc

        logger.info(
            "Post-processing for %s/%s: %d merges, %d metrics, %d/%d alerts new, processed=%s",
            job.job_id,
            run_date.isoformat(),
            result.merges_executed,
            len(result.metrics),
            result.alerts_inserted,
            result.alerts_found,
            result.processed_count,
        )
        return result

    async def _emit_alerts(
        self,
        session: AsyncSession,
        job_id: str,
        run_date: date,
        alert_query: AlertQuery,
    ) -> tuple[int, int]:
        rows = (await execute_run_sql(session, alert_query.sql, job_id, run_date)).mappings().all()
        alerts = AlertRepository(session)
        inserted = 0
        for row in rows:
            if "entity_id" not in row or "alert_type" not in row:
                raise PostProcessError("Alert query must return 'entity_id' and 'alert_type' columns")
            is_new = await alerts.insert_if_absent(
                job_id,
                run_date,
                entity_id=str(row["entity_id"]),
                alert_type=str(row["alert_type"]),
                severity=str(row.get("severity") or alert_query.default_severity),
                detail=None if row.get("detail") is None else str(row["detail"]),
            )
            if is_new:
                inserted += 1
        return len(rows), inserted
