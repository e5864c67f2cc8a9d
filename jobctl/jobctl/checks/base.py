"""Abstract base class for pre-conditions.

Every check run between claiming a run and starting compute subclasses
:class:`BasePrecondition`.  Checks report problems through the returned
:class:`CheckResult`; they do not raise.
"""

from __future__ import annotations

import abc
import time

from jobctl.checks.models import CheckKind, CheckResult, CheckStatus


class BasePrecondition(abc.ABC):
    """Abstract base for pre-condition probes."""

    kind: CheckKind

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short identifier used in results and log lines."""

    @abc.abstractmethod
    async def execute(self) -> CheckResult:
        """Run the probe and return its result."""

    def _result(self, started: float, failure: str | None = None) -> CheckResult:
        """Build a result timed from the ``time.monotonic()`` value *started*."""
        return CheckResult(
            kind=self.kind,
            name=self.name,
            status=CheckStatus.PASS if failure is None else CheckStatus.FAIL,
            message=failure or "",
            duration_ms=int((time.monotonic() - started) * 1000),
        )
