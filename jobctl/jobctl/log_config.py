"""Logging setup for job runs.

Every record carries the ``job_id`` and ``run_date`` of the run that emitted
it, taken from context variables set by :func:`job_context`.
:func:`configure_logging` installs:

* a stderr handler, plain text or single-line JSON (:class:`JSONFormatter`)
  when structured logging is enabled,
* a per-invocation job log ``<log_dir>/<job_name>_<YYYYmmdd_HHMMSS>.log``,
* an error log ``<log_dir>/<job_name>_error_<YYYYmmdd_HHMMSS>.log`` that
  receives ERROR and above.

JSON output schema per line::

    {
        "timestamp": "2026-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "jobctl.controller",
        "message": "Claimed run ...",
        "job_id": "XTF_FRAUDDETECTION_REALTIME",   // present inside a run
        "run_date": "2026-05-15",                 // present inside a run
        "exc_info": "Traceback ..."               // present only on exceptions
    }
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
import traceback
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, date, datetime
from pathlib import Path
from typing import Any

_job_id_var: contextvars.ContextVar[str] = contextvars.ContextVar("job_id", default="")
_run_date_var: contextvars.ContextVar[str] = contextvars.ContextVar("run_date", default="")

_TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(job_tag)s: %(message)s"
_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Handlers installed by configure_logging, removed again on reconfiguration.
_installed_handlers: list[logging.Handler] = []


@contextmanager
def job_context(job_id: str, run_date: date) -> Iterator[None]:
    """Tag every log record emitted inside the block with the run's key."""
    job_token = _job_id_var.set(job_id)
    date_token = _run_date_var.set(run_date.isoformat())
    try:
        yield
    finally:
        _job_id_var.reset(job_token)
        _run_date_var.reset(date_token)


class JobContextFilter(logging.Filter):
    """Inject ``job_id``, ``run_date`` and a ``job_tag`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        job_id = _job_id_var.get()
        run_date = _run_date_var.get()
        record.job_id = job_id  # type: ignore[attr-defined]
        record.run_date = run_date  # type: ignore[attr-defined]
        record.job_tag = f" [{job_id} {run_date}]" if job_id else ""  # type: ignore[attr-defined]
        return True


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON for log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        """Render *record* as a single JSON line."""
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        job_id = getattr(record, "job_id", None)
        if job_id:
            payload["job_id"] = job_id
        run_date = getattr(record, "run_date", None)
        if run_date:
            payload["run_date"] = run_date

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)


@dataclass(frozen=True)
class JobLogFiles:
    """Paths of the log files opened for one invocation."""

    log_file: Path
    error_log: Path


def _make_formatter(structured: bool) -> logging.Formatter:
    if structured:
        return JSONFormatter()
    return logging.Formatter(_TEXT_FORMAT, datefmt=_DATE_FORMAT)


def configure_logging(
    level: int = logging.INFO,
    structured: bool = False,
    log_dir: Path | None = None,
    job_name: str | None = None,
    now: datetime | None = None,
) -> JobLogFiles | None:
    """Install the stderr handler and, for a job run, the job and error logs.

    Calling this again replaces the handlers a previous call installed.

    Parameters
    ----------
    level:
        Root logger level.
    structured:
        Emit single-line JSON instead of plain text.
    log_dir:
        Directory for the per-invocation log files.  No files are opened
        unless both *log_dir* and *job_name* are given.
    job_name:
        Log file prefix, normally the job definition's ``job_name``.
    now:
        Timestamp used in the file names; defaults to the current local time.

    Returns
    -------
    JobLogFiles | None
        The opened log file paths, or ``None`` when logging to stderr only.
    """
    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    root.setLevel(level)
    context_filter = JobContextFilter()

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(_make_formatter(structured))
    stream_handler.addFilter(context_filter)
    _installed_handlers.append(stream_handler)

    files: JobLogFiles | None = None
    if log_dir is not None and job_name:
        log_dir.mkdir(parents=True, exist_ok=True)
        stamp = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        files = JobLogFiles(
            log_file=log_dir / f"{job_name}_{stamp}.log",
            error_log=log_dir / f"{job_name}_error_{stamp}.log",
        )

        file_handler = logging.FileHandler(files.log_file, encoding="utf-8")
        file_handler.setFormatter(_make_formatter(structured))
        file_handler.addFilter(context_filter)
        _installed_handlers.append(file_handler)

        error_handler = logging.FileHandler(files.error_log, encoding="utf-8", delay=True)
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(_make_formatter(structured))
        error_handler.addFilter(context_filter)
        _installed_handlers.append(error_handler)

    for handler in _installed_handlers:
        root.addHandler(handler)
    return files
