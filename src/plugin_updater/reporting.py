"""Failure reporting for plugin updates.

Update failures are pushed to the metric transfer endpoint as a single
metric with value 1, named after a short subject tag such as
``signature-fail``. Reporting is fire-and-forget: a broken or slow sink
is logged and never fails the update that triggered it.
"""

from __future__ import annotations

import socket
import time
from typing import TYPE_CHECKING, Any, Protocol

import httpx

from plugin_updater.constants import METRIC_PREFIX, REPORT_TIMEOUT_SECONDS
from plugin_updater.logging import get_logger

if TYPE_CHECKING:
    from plugin_updater.config import Settings

log = get_logger("plugin_updater.reporting")


class FailureReporter(Protocol):
    """Sink for update failure notifications."""

    async def report(self, subject: str, description: str) -> None: ...


class LogReporter:
    """Reporter that only logs; used when no transfer endpoint is configured."""

    async def report(self, subject: str, description: str) -> None:
        log.warning("plugin_failure_reported", subject=subject, desc=description[:500])


class TransferReporter:
    """POSTs failure metrics to the agent's transfer endpoint."""

    def __init__(
        self,
        transfer_url: str,
        hostname: str | None = None,
        metric_prefix: str = METRIC_PREFIX,
        timeout: float = REPORT_TIMEOUT_SECONDS,
    ) -> None:
        self._url = transfer_url
        self._hostname = hostname or socket.gethostname()
        self._prefix = metric_prefix
        self._timeout = timeout

    def build_metrics(self, subject: str, description: str) -> list[dict[str, Any]]:
        return [
            {
                "endpoint": self._hostname,
                "metric": f"{self._prefix}{subject}",
                "value": 1,
                "step": 1,
                "timestamp": int(time.time()),
                "tags": {},
                "desc": description,
            }
        ]

    async def report(self, subject: str, description: str) -> None:
        """Send one failure metric; errors are logged, never raised."""
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(
                    self._url,
                    json=self.build_metrics(subject, description),
                )
            if resp.status_code >= 400:
                log.warning(
                    "plugin_failure_report_rejected",
                    subject=subject,
                    status=resp.status_code,
                    body=resp.text[:200],
                )
        except httpx.HTTPError as exc:
            log.warning("plugin_failure_report_failed", subject=subject, error=str(exc))


def reporter_from_settings(settings: Settings) -> FailureReporter:
    """Use the transfer endpoint when configured, else log only."""
    if settings.transfer_url:
        return TransferReporter(
            transfer_url=settings.transfer_url,
            hostname=settings.hostname,
            metric_prefix=settings.metric_prefix,
        )
    return LogReporter()
