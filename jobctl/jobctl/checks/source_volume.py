"""Source volume probe: how many eligible input rows exist for a run date."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from jobctl.failures import SourceCheckError
from jobctl.models.job_definition import JobDefinition
from jobctl.state.database import get_session
from jobctl.state.sql_params import scalar_run_sql

logger = logging.getLogger(__name__)


class SourceVolumeProbe:
    """Sum a job's ``source_counts`` queries for one run date."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def count(self, job: JobDefinition, run_date: date) -> int | None:
        """Return the summed source volume.

        Returns ``None`` when the job declares no count queries, meaning the
        volume is unknown and the compute step always runs.

        Raises
        ------
        SourceCheckError
            A query failed or returned a non-integer value.
        """
        if not job.source_counts:
            return None

        total = 0
        try:
            async with get_session(self._engine) as session:
                for query in job.source_counts:
                    value = await scalar_run_sql(session, query.sql, job.job_id, run_date)
                    try:
                        count = int(value or 0)
                    except (TypeError, ValueError) as exc:
                        raise SourceCheckError(
                            f"Source count '{query.name}' returned a non-integer value: {value!r}"
                        ) from exc
                    logger.info("Source count %s for %s: %d", query.name, run_date.isoformat(), count)
                    total += count
        except SQLAlchemyError as exc:
            raise SourceCheckError(f"Source count query failed: {exc}") from exc

        logger.info("Total source records for %s: %d", run_date.isoformat(), total)
        return total
