"""Notification delivery to company chat channels."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Protocol

import httpx

from pcntrack.config import get_settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeliveryResult:
    ok: bool
    status_code: int | None = None
    error: str | None = None


class Notifier(Protocol):
    name: str

    def send(self, channel: str, message: str) -> DeliveryResult:
        ...


class SlackWebhookNotifier:
    """Post ``{"text": ...}`` to an incoming-webhook URL.

    Delivery problems are returned, never raised, so one bad channel cannot
    abort a sweep.
    """

    name = "slack"

    def __init__(self, timeout: float | None = None, client: httpx.Client | None = None) -> None:
        self.timeout = timeout if timeout is not None else get_settings().NOTIFY_TIMEOUT_SECONDS
        self._client = client

    def send(self, channel: str, message: str) -> DeliveryResult:
        try:
            if self._client is not None:
                response = self._client.post(channel, json={"text": message}, timeout=self.timeout)
            else:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(channel, json={"text": message})
        except httpx.HTTPError as exc:
            logger.warning("Notification delivery failed", extra={"error": str(exc)})
            return DeliveryResult(ok=False, error=f"{type(exc).__name__}: {exc}")

        if response.status_code >= 400:
            logger.warning(
                "Notification rejected by channel",
                extra={"status_code": response.status_code},
            )
            return DeliveryResult(
                ok=False,
                status_code=response.status_code,
                error=f"HTTP {response.status_code}: {response.text[:200]}",
            )
        return DeliveryResult(ok=True, status_code=response.status_code)


def get_notifier() -> Notifier:
    return SlackWebhookNotifier()


__all__ = ["DeliveryResult", "Notifier", "SlackWebhookNotifier", "get_notifier"]
