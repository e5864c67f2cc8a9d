"""Escalation of run outcomes to the monitoring channel."""

from jobctl.notify.base import AlertStatus, Notifier, NullNotifier
from jobctl.notify.http_notifier import HttpAlertNotifier, build_payload

__all__ = ["AlertStatus", "HttpAlertNotifier", "Notifier", "NullNotifier", "build_payload"]
