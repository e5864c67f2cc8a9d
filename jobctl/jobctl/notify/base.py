"""Notification interface for run escalation.

Notification is a best-effort side effect: implementations must never raise
into the lifecycle controller and never change a run's outcome.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class AlertStatus(str, Enum):
    """Status reported to the monitoring channel."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"


class Notifier(Protocol):
    """Structural interface for the monitoring channel."""

    async def notify(
        self,
        job_id: str,
        status: AlertStatus,
        detail: str,
        timestamp: datetime,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Send one notification; failures are logged, never raised."""
        ...


class NullNotifier:
    """Notifier used when no monitoring endpoint is configured."""

    async def notify(
        self,
        job_id: str,
        status: AlertStatus,
        detail: str,
        timestamp: datetime,
        extra: dict[str, Any] | None = None,
    ) -> None:
        logger.debug("Alerting disabled; not sending %s for %s: %s", status.value, job_id, detail)
