"""Tests for log file retention."""

from __future__ import annotations

import os
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from jobctl.retention import DEFAULT_RETENTION_DAYS, sweep_logs

NOW = datetime(2024, 6, 15, 12, 0, tzinfo=UTC)


def _touch(path: Path, age_days: float) -> Path:
    path.write_text("log line\n", encoding="utf-8")
    stamp = (NOW - timedelta(days=age_days)).timestamp()
    os.utime(path, (stamp, stamp))
    return path


class TestSweepLogs:
    def test_deletes_only_old_files(self, tmp_path: Path) -> None:
        old = _touch(tmp_path / "job_a_20240601_000000.log", 10)
        fresh = _touch(tmp_path / "job_a_20240614_000000.log", 1)

        deleted = sweep_logs(tmp_path, now=NOW)

        assert deleted == [old]
        assert not old.exists()
        assert fresh.exists()

    def test_job_name_filter(self, tmp_path: Path) -> None:
        mine = _touch(tmp_path / "job_a_error_20240601_000000.log", 30)
        other = _touch(tmp_path / "job_b_20240601_000000.log", 30)

        assert sweep_logs(tmp_path, job_name="job_a", now=NOW) == [mine]
        assert other.exists()

    def test_non_log_files_untouched(self, tmp_path: Path) -> None:
        keep = _touch(tmp_path / "ledger.db", 30)
        assert sweep_logs(tmp_path, now=NOW) == []
        assert keep.exists()

    def test_custom_retention(self, tmp_path: Path) -> None:
        three_days = _touch(tmp_path / "job_20240612.log", 3)
        assert sweep_logs(tmp_path, retention_days=2, now=NOW) == [three_days]

    def test_missing_directory(self, tmp_path: Path) -> None:
        assert sweep_logs(tmp_path / "absent", now=NOW) == []

    def test_invalid_retention(self, tmp_path: Path) -> None:
        with pytest.raises(ValueError):
            sweep_logs(tmp_path, retention_days=0)

    def test_default_retention(self, tmp_path: Path) -> None:
        eight_days = _touch(tmp_path / "job_a_20240607_120000.log", 8)
        six_days = _touch(tmp_path / "job_a_20240609_120000.log", 6)

        assert DEFAULT_RETENTION_DAYS == 7
        assert sweep_logs(tmp_path, now=NOW) == [eight_days]
        assert six_days.exists()

    def test_job_name_filter_ignores_longer_job_names(self, tmp_path: Path) -> None:
        mine = _touch(tmp_path / "job_a_20240601_000000.log", 30)
        my_errors = _touch(tmp_path / "job_a_error_20240601_000000.log", 30)
        extra = _touch(tmp_path / "job_a_extra_20240601_000000.log", 30)
        extra_errors = _touch(tmp_path / "job_a_extra_error_20240601_000000.log", 30)
        numbered = _touch(tmp_path / "job_a_2_20240601_000000.log", 30)

        assert sweep_logs(tmp_path, job_name="job_a", now=NOW) == [mine, my_errors]
        assert extra.exists()
        assert extra_errors.exists()
        assert numbered.exists()
