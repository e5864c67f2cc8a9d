"""HTTP notifier posting JSON alerts to the monitoring endpoint.

INVARIANT: Delivery is fire-and-forget.  Transport errors and non-2xx
responses are logged but never propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

import httpx

from jobctl.notify.base import AlertStatus

logger = logging.getLogger(__name__)

_BACKOFF_BASE = 1.0  # seconds: 1, 2, 4


def build_payload(
    job_id: str,
    status: AlertStatus,
    detail: str,
    timestamp: datetime,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Return the JSON body for one alert.

    ``step`` carries the failure message (or a success summary), and
    ``timestamp`` is rendered as UTC with a ``Z`` suffix.
    """
    payload: dict[str, Any] = {
        "job_id": job_id,
        "status": status.value,
        "step": detail,
        "timestamp": timestamp.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ"),
    }
    for key, value in (extra or {}).items():
        payload.setdefault(key, value)
    return payload


class HttpAlertNotifier:
    """POST alerts to a monitoring endpoint with ``httpx``.

    Parameters
    ----------
    url:
        Monitoring endpoint receiving the JSON payload.
    timeout:
        Per-request timeout in seconds.
    max_attempts:
        Delivery attempts before giving up, with exponential backoff.
    http_client:
        Optional ``httpx.AsyncClient`` for testing.  A default client is
        created if not provided.
    """

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        max_attempts: int = 1,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = url
        self._max_attempts = max(1, max_attempts)
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    async def close(self) -> None:
        """Close the HTTP client if we own it."""
        if self._owns_client:
            await self._client.aclose()

    async def notify(
        self,
        job_id: str,
        status: AlertStatus,
        detail: str,
        timestamp: datetime,
        extra: dict[str, Any] | None = None,
    ) -> None:
        payload = build_payload(job_id, status, detail, timestamp, extra)
        await self._deliver(payload)

    async def _deliver(self, payload: dict[str, Any]) -> bool:
        """Attempt delivery; return whether the endpoint accepted it."""
        for attempt in range(1, self._max_attempts + 1):
            try:
                response = await self._client.post(self._url, json=payload)
            except httpx.HTTPError as exc:
                logger.warning(
                    "Alert delivery error: url=%s attempt=%d/%d error=%s",
                    self._url,
                    attempt,
                    self._max_attempts,
                    exc,
                )
            else:
                if 200 <= response.status_code < 300:
                    logger.info(
                        "Alert delivered: job=%s status=%s http=%d",
                        payload["job_id"],
                        payload["status"],
                        response.status_code,
                    )
                    return True
                logger.warning(
                    "Alert delivery failed: url=%s status=%d attempt=%d/%d",
                    self._url,
                    response.status_code,
                    attempt,
                    self._max_attempts,
                )

            if attempt < self._max_attempts:
                await asyncio.sleep(_BACKOFF_BASE * (2 ** (attempt - 1)))

        logger.error("Alert for job %s not delivered after %d attempt(s)", payload["job_id"], self._max_attempts)
        return False
