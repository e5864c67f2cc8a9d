"""Bind job-supplied SQL to the run's ``:run_date`` / ``:job_id`` parameters.

Job definitions carry plain SQL strings.  Only the parameters a statement
actually references are bound, so statements that use neither are valid
too.  ``:run_date`` is typed as ``Date`` so every dialect receives a
proper date value.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Any

from sqlalchemy import Date, String, bindparam, text
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql.elements import TextClause

_PARAM_RE = re.compile(r"(?<![:\w]):(run_date|job_id)\b")


def referenced_params(sql: str) -> set[str]:
    """Return the run parameters referenced by *sql*."""
    return set(_PARAM_RE.findall(sql))


def bind_run_sql(sql: str, job_id: str, run_date: date) -> tuple[TextClause, dict[str, Any]]:
    """Build a ``text()`` clause and its parameter mapping for one run."""
    used = referenced_params(sql)
    clause = text(sql)
    params: dict[str, Any] = {}
    if "run_date" in used:
        clause = clause.bindparams(bindparam("run_date", type_=Date))
        params["run_date"] = run_date
    if "job_id" in used:
        clause = clause.bindparams(bindparam("job_id", type_=String))
        params["job_id"] = job_id
    return clause, params


async def execute_run_sql(session: AsyncSession, sql: str, job_id: str, run_date: date) -> Any:
    """Execute job-supplied SQL bound to ``(job_id, run_date)``."""
    clause, params = bind_run_sql(sql, job_id, run_date)
    return await session.execute(clause, params)


async def scalar_run_sql(session: AsyncSession, sql: str, job_id: str, run_date: date) -> Any:
    """Execute a scalar query bound to ``(job_id, run_date)`` and return its value."""
    result = await execute_run_sql(session, sql, job_id, run_date)
    return result.scalar()
