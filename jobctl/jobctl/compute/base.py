"""Abstract interface for compute engines.

The lifecycle controller treats the transformation as a black box: it hands
the engine a job id, a run date, source/target locators and the job's
compute configuration, and interprets the integer exit code it gets back.
"""

from __future__ import annotations

from datetime import date
from typing import Protocol

from jobctl.models.job_definition import ComputeSpec


class ComputeEngine(Protocol):
    """Structural interface for the external compute step."""

    async def execute(
        self,
        job_id: str,
        run_date: date,
        source_locator: str,
        target_locator: str,
        config: ComputeSpec,
    ) -> int:
        """Run the compute step to completion and return its exit code.

        ``0`` means success.  A step killed by signal ``N`` is reported as
        ``128 + N``.
        """
        ...
