"""Shared fixtures for CLI tests.

Every test gets its own jobs directory, SQLite ledger and log directory via
``JOBCTL_*`` environment variables, so commands never touch the working
directory.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path

import pytest
from jobctl import log_config

_JOB_YAML = """\
job_id: {job_id}
job_name: {job_name}
frequency: daily
dependencies: {deps}
compute:
  application: /opt/scm-etl/jars/app.jar
  main_class: com.scm.Job
  source: src_schema
  target: dst_schema
"""


def write_job(jobs_dir: Path, job_id: str, deps: list[str] | None = None) -> Path:
    path = jobs_dir / f"{job_id.lower()}.yaml"
    path.write_text(
        _JOB_YAML.format(job_id=job_id, job_name=f"scm_{job_id.lower()}", deps=deps or []),
        encoding="utf-8",
    )
    return path


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """A jobs dir with ``FEEDBACK`` and ``SENTIMENT`` (depends on FEEDBACK)."""
    jobs_dir = tmp_path / "jobs"
    jobs_dir.mkdir()
    write_job(jobs_dir, "FEEDBACK")
    write_job(jobs_dir, "SENTIMENT", ["FEEDBACK"])

    monkeypatch.setenv("JOBCTL_JOBS_DIR", str(jobs_dir))
    monkeypatch.setenv("JOBCTL_DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    monkeypatch.setenv("JOBCTL_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.delenv("JOBCTL_ALERT_URL", raising=False)
    return tmp_path


@pytest.fixture(autouse=True)
def _reset_logging() -> Iterator[None]:
    """Drop handlers ``jobctl run`` installed on the runner's streams."""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in log_config._installed_handlers:
        root.removeHandler(handler)
        handler.close()
    log_config._installed_handlers.clear()
    root.setLevel(level)


@pytest.fixture
def no_job_logging(monkeypatch: pytest.MonkeyPatch) -> None:
    """Skip handler setup in ``jobctl run`` for tests that invoke several commands.

    Handlers installed by one invocation would otherwise keep writing to that
    invocation's closed output stream.
    """
    monkeypatch.setattr(log_config, "configure_logging", lambda **_: None)
