"""Result models for the pre-conditions run after a job is claimed."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, Field


class CheckKind(str, Enum):
    """What a pre-condition probes."""

    FILE = "file"
    HOST = "host"
    DATABASE = "database"


class CheckStatus(str, Enum):
    PASS = "PASS"
    FAIL = "FAIL"


class CheckResult(BaseModel):
    """Outcome of one pre-condition probe."""

    kind: CheckKind
    name: str = Field(..., description="Probe target, e.g. 'file:/etc/scm/kafka.jks'.")
    status: CheckStatus
    message: str = Field(default="", description="Why the probe failed; empty on success.")
    duration_ms: int = Field(default=0, ge=0)

    @property
    def passed(self) -> bool:
        return self.status == CheckStatus.PASS
