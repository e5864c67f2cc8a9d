"""Dependency gate: may a job run for a given run date?

A job may proceed only when every prerequisite job shows exactly
``COMPLETED`` for the same run date.  ``NOT_FOUND``, ``PENDING``,
``RUNNING`` and ``FAILED`` all count as unmet.  The gate is a single
read-only check against the ledger; it never waits or polls.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from typing import NamedTuple

from jobctl.failures import DependencyUnsatisfied
from jobctl.ledger.base import RunLedger
from jobctl.models.run import RunStatus

logger = logging.getLogger(__name__)


class UnmetDependency(NamedTuple):
    """A prerequisite job and the status that kept it from satisfying the gate."""

    job_id: str
    status: RunStatus


@dataclass(frozen=True)
class GateDecision:
    """Outcome of a dependency check.

    ``unmet`` is sorted by job id; an empty list means the gate is satisfied.
    """

    run_date: date
    unmet: list[UnmetDependency] = field(default_factory=list)

    @property
    def satisfied(self) -> bool:
        return not self.unmet

    def raise_if_unsatisfied(self) -> None:
        """Raise :class:`DependencyUnsatisfied` when any dependency is unmet."""
        if self.unmet:
            raise DependencyUnsatisfied([(dep.job_id, dep.status) for dep in self.unmet])


class DependencyGate:
    """Evaluate a job's prerequisites against a :class:`RunLedger`."""

    def __init__(self, ledger: RunLedger) -> None:
        self._ledger = ledger

    async def check(self, dependencies: Iterable[str], run_date: date) -> GateDecision:
        """Read every dependency's status for *run_date*.

        Parameters
        ----------
        dependencies:
            Prerequisite job ids.  Duplicates are ignored.
        run_date:
            The run date both the job and its prerequisites refer to.

        Raises
        ------
        StorageError
            The ledger could not be read.
        """
        unmet: list[UnmetDependency] = []
        for dep_id in sorted(set(dependencies)):
            status = await self._ledger.status_of(dep_id, run_date)
            if status != RunStatus.COMPLETED:
                logger.error(
                    "Dependency job %s not completed for %s. Status: %s",
                    dep_id,
                    run_date.isoformat(),
                    status.value,
                )
                unmet.append(UnmetDependency(dep_id, status))
            else:
                logger.info("Dependency job %s completed for %s", dep_id, run_date.isoformat())
        return GateDecision(run_date=run_date, unmet=unmet)
