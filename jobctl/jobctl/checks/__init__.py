"""Pre-flight checks and the source volume probe."""

from jobctl.checks.base import BasePrecondition
from jobctl.checks.models import CheckKind, CheckResult, CheckStatus
from jobctl.checks.preconditions import (
    DatabaseReachableCheck,
    FileExistsCheck,
    HostReachableCheck,
    build_preconditions,
    run_preconditions,
    verify_preconditions,
)
from jobctl.checks.source_volume import SourceVolumeProbe

__all__ = [
    "BasePrecondition",
    "CheckKind",
    "CheckResult",
    "CheckStatus",
    "DatabaseReachableCheck",
    "FileExistsCheck",
    "HostReachableCheck",
    "SourceVolumeProbe",
    "build_preconditions",
    "run_preconditions",
    "verify_preconditions",
]
