"""Shared fixtures for jobctl tests."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from datetime import UTC, date, datetime
from typing import Any

import pytest
import pytest_asyncio
from jobctl.models.job_definition import JobDefinition
from jobctl.state.sqlite_adapter import create_local_tables, get_local_engine
from sqlalchemy.ext.asyncio import AsyncEngine

RUN_DATE = date(2024, 6, 15)
FIXED_NOW = datetime(2024, 6, 15, 12, 0, 0, tzinfo=UTC)


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine with the ledger, metric and alert tables."""
    eng = get_local_engine(":memory:")
    await create_local_tables(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: FIXED_NOW


@pytest.fixture
def make_job() -> Callable[..., JobDefinition]:
    """Factory building a minimal, valid job definition."""

    def _make(job_id: str = "JOB_B", **overrides: Any) -> JobDefinition:
        data: dict[str, Any] = {
            "job_id": job_id,
            "compute": {"application": "/opt/jobs/app.jar", "source": "src.events", "target": "dst.results"},
            "preconditions": {"check_database": False},
        }
        data.update(overrides)
        return JobDefinition.model_validate(data)

    return _make
