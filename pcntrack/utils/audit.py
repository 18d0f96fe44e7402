"""Audit logging helper utilities."""
from __future__ import annotations

from typing import Any, Mapping

from sqlalchemy.orm import Session

from pcntrack.models.audit import AuditLog
from pcntrack.utils.time import utcnow


SENSITIVE_KEYS = {
    "email",
    "phone",
    "ghl_api_key",
    "ghl_webhook_secret",
    "ghl_webhook_secret_legacy",
    "notification_webhook_url",
}


def _mask_value(key: str, value: Any) -> Any:
    if value is None:
        return None

    if key == "email":
        text = str(value)
        if "@" in text:
            _, domain = text.split("@", 1)
            return f"***@{domain}"
        return "***"

    if key == "phone":
        digits = "".join(ch for ch in str(value) if ch.isdigit())
        return f"***{digits[-2:]}" if digits else "***"

    return "***"


def sanitize_payload_for_audit(data: Any) -> Any:
    """Return a copy of ``data`` with obvious PII and secrets masked."""

    if isinstance(data, Mapping):
        sanitized: dict[str, Any] = {}
        for key, value in data.items():
            masked_value = _mask_value(key, value) if key in SENSITIVE_KEYS else value
            sanitized[key] = sanitize_payload_for_audit(masked_value)
        return sanitized

    if isinstance(data, list):
        return [sanitize_payload_for_audit(item) for item in data]

    return data


def log_audit(
    db: Session,
    *,
    actor: str,
    action: str,
    entity: str,
    entity_id: int | None,
    company_id: int | None = None,
    data: dict | None = None,
) -> None:
    """Stage an audit entry; the caller commits it with its own writes."""

    db.add(
        AuditLog(
            company_id=company_id,
            actor=actor,
            action=action,
            entity=entity,
            entity_id=entity_id if entity_id is not None else 0,
            data_json=sanitize_payload_for_audit(data or {}),
            at=utcnow(),
        )
    )


__all__ = ["sanitize_payload_for_audit", "log_audit"]
