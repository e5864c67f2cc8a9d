"""Concrete pre-flight checks run after a run is claimed.

* :class:`FileExistsCheck` -- credential, secret or template files exist.
* :class:`HostReachableCheck` -- a downstream ``host:port`` accepts TCP.
* :class:`DatabaseReachableCheck` -- the store answers ``SELECT 1``.

:func:`verify_preconditions` runs every check in order and raises
:class:`PreconditionMissing` naming all failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Sequence
from pathlib import Path

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from jobctl.checks.base import BasePrecondition
from jobctl.checks.models import CheckKind, CheckResult
from jobctl.failures import PreconditionMissing
from jobctl.models.job_definition import PreconditionSpec

logger = logging.getLogger(__name__)


class FileExistsCheck(BasePrecondition):
    """Pass when *path* exists and is a regular file."""

    kind = CheckKind.FILE

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path).expanduser()

    @property
    def name(self) -> str:
        return f"file:{self._path}"

    async def execute(self) -> CheckResult:
        start = time.monotonic()
        if self._path.is_file():
            return self._result(start)
        return self._result(start, f"Required file not found: {self._path}")


class HostReachableCheck(BasePrecondition):
    """Pass when a TCP connection to ``host:port`` opens within *timeout* seconds."""

    kind = CheckKind.HOST

    def __init__(self, host: str, port: int, timeout: float = 5.0) -> None:
        self._host = host
        self._port = port
        self._timeout = timeout

    @classmethod
    def from_endpoint(cls, endpoint: str, timeout: float = 5.0) -> HostReachableCheck:
        host, _, port = endpoint.rpartition(":")
        return cls(host, int(port), timeout)

    @property
    def name(self) -> str:
        return f"host:{self._host}:{self._port}"

    async def execute(self) -> CheckResult:
        start = time.monotonic()
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self._host, self._port),
                timeout=self._timeout,
            )
        except (OSError, TimeoutError) as exc:
            return self._result(
                start,
                f"Connectivity check failed for {self._host}:{self._port}: {str(exc) or 'timed out'}",
            )
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            logger.debug("Error closing probe connection to %s", self.name)
        return self._result(start)


class DatabaseReachableCheck(BasePrecondition):
    """Pass when the store answers a trivial query within *timeout* seconds."""

    kind = CheckKind.DATABASE

    def __init__(self, engine: AsyncEngine, timeout: float = 5.0) -> None:
        self._engine = engine
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "database"

    async def _probe(self) -> None:
        async with self._engine.connect() as conn:
            await conn.execute(text("SELECT 1"))

    async def execute(self) -> CheckResult:
        start = time.monotonic()
        try:
            await asyncio.wait_for(self._probe(), timeout=self._timeout)
        except (SQLAlchemyError, OSError, TimeoutError) as exc:
            return self._result(start, f"Database connectivity check failed: {str(exc) or 'timed out'}")
        return self._result(start)


def build_preconditions(
    spec: PreconditionSpec,
    engine: AsyncEngine | None = None,
    connect_timeout: float = 5.0,
) -> list[BasePrecondition]:
    """Instantiate the checks a job's :class:`PreconditionSpec` asks for.

    The database probe is only added when an *engine* is supplied.
    """
    checks: list[BasePrecondition] = [FileExistsCheck(path) for path in spec.required_files]
    checks.extend(HostReachableCheck.from_endpoint(endpoint, connect_timeout) for endpoint in spec.reachable_hosts)
    if spec.check_database and engine is not None:
        checks.append(DatabaseReachableCheck(engine, connect_timeout))
    return checks


async def run_preconditions(checks: Sequence[BasePrecondition]) -> list[CheckResult]:
    """Execute *checks* sequentially and return every result."""
    results: list[CheckResult] = []
    for check in checks:
        result = await check.execute()
        if result.passed:
            logger.info("Pre-condition passed: %s (%d ms)", result.name, result.duration_ms)
        else:
            logger.error("Pre-condition failed: %s", result.message)
        results.append(result)
    return results


async def verify_preconditions(checks: Sequence[BasePrecondition]) -> list[CheckResult]:
    """Run *checks* and raise when any of them failed.

    Raises
    ------
    PreconditionMissing
        At least one check failed; the message lists every failure.
    """
    results = await run_preconditions(checks)
    failures = [r.message for r in results if not r.passed]
    if failures:
        raise PreconditionMissing("; ".join(failures))
    return results
