"""Log file retention.

Job runs leave a job log and (on failure) an error log per invocation.
:func:`sweep_logs` deletes the ones older than the retention horizon.  It
runs outside the controller's state machine, typically from the
``jobctl sweep-logs`` command.
"""

from __future__ import annotations

import glob
import logging
from datetime import UTC, datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_RETENTION_DAYS = 7

# Timestamp suffix written by log_config: YYYYmmdd_HHMMSS.
_STAMP = "[0-9]" * 8 + "_" + "[0-9]" * 6


def sweep_logs(
    log_dir: Path,
    job_name: str | None = None,
    retention_days: int = DEFAULT_RETENTION_DAYS,
    now: datetime | None = None,
) -> list[Path]:
    """Delete ``*.log`` files older than *retention_days*.

    Parameters
    ----------
    log_dir:
        Directory holding the log files.  A missing directory is not an error.
    job_name:
        Restrict the sweep to that job's own logs,
        ``<job_name>_<timestamp>.log`` and ``<job_name>_error_<timestamp>.log``.
        Another job whose name merely starts with *job_name* is left alone.
    retention_days:
        Age threshold in days; must be positive.
    now:
        Reference time; defaults to the current time.

    Returns
    -------
    list[Path]
        Paths that were deleted, sorted.
    """
    if retention_days < 1:
        raise ValueError(f"retention_days must be >= 1, got {retention_days}")
    if not log_dir.is_dir():
        logger.info("Log directory %s does not exist; nothing to sweep", log_dir)
        return []

    reference = now or datetime.now(UTC)
    cutoff = (reference - timedelta(days=retention_days)).timestamp()
    deleted: list[Path] = []
    for path in _candidates(log_dir, job_name):
        if not path.is_file():
            continue
        if path.stat().st_mtime < cutoff:
            path.unlink()
            deleted.append(path)

    logger.info(
        "Swept %d log file(s) older than %d days from %s",
        len(deleted),
        retention_days,
        log_dir,
    )
    return deleted


def _candidates(log_dir: Path, job_name: str | None) -> list[Path]:
    if not job_name:
        return sorted(log_dir.glob("*.log"))
    prefix = glob.escape(job_name)
    paths = set(log_dir.glob(f"{prefix}_{_STAMP}.log")) | set(log_dir.glob(f"{prefix}_error_{_STAMP}.log"))
    return sorted(paths)
