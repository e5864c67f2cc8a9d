"""Compute engine that performs no work, used for dry runs."""

from __future__ import annotations

import logging
from datetime import date

from jobctl.models.job_definition import ComputeSpec

logger = logging.getLogger(__name__)


class NoopComputeEngine:
    """Report a fixed exit code without running anything."""

    def __init__(self, exit_code: int = 0) -> None:
        self.exit_code = exit_code
        self.calls: list[tuple[str, date]] = []

    async def execute(
        self,
        job_id: str,
        run_date: date,
        source_locator: str,
        target_locator: str,
        config: ComputeSpec,
    ) -> int:
        self.calls.append((job_id, run_date))
        logger.info(
            "Dry run: skipping compute step for %s/%s (%s -> %s)",
            job_id,
            run_date.isoformat(),
            source_locator or "-",
            target_locator or "-",
        )
        return self.exit_code
