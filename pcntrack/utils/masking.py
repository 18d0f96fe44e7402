"""Helpers for keeping secrets and signatures out of logs and the event store."""
from __future__ import annotations

import hashlib
from typing import Mapping

MASKED_PLACEHOLDER = "***masked***"

# Only these inbound headers are persisted with a webhook event.
RECORDED_HEADERS = {
    "content-type",
    "user-agent",
    "x-ghl-signature",
    "x-ghl-timestamp",
    "x-wh-signature",
    "x-forwarded-for",
}
SIGNATURE_HEADERS = {"x-ghl-signature", "x-wh-signature"}


def fingerprint(secret: str | None) -> str | None:
    """Return a short, stable marker for a secret instead of its value."""

    if not secret:
        return None
    digest = hashlib.sha256(secret.encode("utf-8")).hexdigest()[:8]
    return f"sha256:{digest}"


def masked_secret_status(secrets_info: Mapping[str, str | None]) -> dict[str, str | None]:
    return {name: fingerprint(secret) for name, secret in secrets_info.items()}


def mask_headers(headers: Mapping[str, str]) -> dict[str, str]:
    """Keep the recorded subset of headers and truncate signature values."""

    kept: dict[str, str] = {}
    for key, value in headers.items():
        lower = key.lower()
        if lower not in RECORDED_HEADERS:
            continue
        if lower in SIGNATURE_HEADERS and value:
            kept[lower] = f"{value[:8]}..." if len(value) > 8 else MASKED_PLACEHOLDER
        else:
            kept[lower] = value
    return kept


def mask_query_params(params: Mapping[str, str] | None) -> dict[str, str]:
    if not params:
        return {}
    return {key: (MASKED_PLACEHOLDER if key.lower() == "secret" else value) for key, value in params.items()}


__all__ = [
    "MASKED_PLACEHOLDER",
    "fingerprint",
    "masked_secret_status",
    "mask_headers",
    "mask_query_params",
]
