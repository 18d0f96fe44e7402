"""Minimal GoHighLevel API client used to enrich contact-only webhooks."""
from __future__ import annotations

import logging
from typing import Any

import httpx

from pcntrack.config import Settings, get_settings
from pcntrack.models.company import Company
from pcntrack.utils.errors import InfrastructureError
from pcntrack.utils.time import parse_datetime

logger = logging.getLogger(__name__)

API_VERSION = "2021-07-28"


class GHLClient:
    """Blocking client with a hard per-request timeout."""

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str,
        timeout: float,
        location_id: str | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.location_id = location_id
        self._transport = transport

    @classmethod
    def for_company(cls, company: Company, settings: Settings | None = None) -> "GHLClient | None":
        if not company.ghl_api_key:
            return None
        settings = settings or get_settings()
        return cls(
            company.ghl_api_key,
            base_url=settings.GHL_API_BASE_URL,
            timeout=settings.GHL_API_TIMEOUT_SECONDS,
            location_id=company.ghl_location_id,
        )

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Version": API_VERSION,
            "Accept": "application/json",
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self._transport) as client:
                response = client.get(f"{self.base_url}{path}", headers=headers, params=params)
                response.raise_for_status()
                return response.json()
        except httpx.TimeoutException as exc:
            logger.warning("GHL request timed out", extra={"path": path, "timeout": self.timeout})
            raise InfrastructureError(
                "GHL API request timed out.",
                code="GHL_TIMEOUT",
                details={"path": path, "timeout_seconds": self.timeout},
            ) from exc
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("GHL request failed", extra={"path": path, "error": str(exc)})
            raise InfrastructureError(
                "GHL API request failed.",
                code="GHL_REQUEST_FAILED",
                details={"path": path},
            ) from exc

    def get_contact(self, contact_id: str) -> dict[str, Any] | None:
        data = self._get(f"/contacts/{contact_id}")
        return data.get("contact") if isinstance(data, dict) else None

    def latest_appointment(self, contact_id: str) -> dict[str, Any] | None:
        """Return the contact's most recently starting appointment, if any."""

        data = self._get(f"/contacts/{contact_id}/appointments")
        events = data.get("events") or data.get("appointments") or []
        dated = [
            (parse_datetime(event.get("startTime")), event)
            for event in events
            if isinstance(event, dict) and event.get("id")
        ]
        dated = [entry for entry in dated if entry[0] is not None]
        if not dated:
            return None
        return max(dated, key=lambda entry: entry[0])[1]


__all__ = ["GHLClient"]
