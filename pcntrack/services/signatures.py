"""Webhook signature verification with two-secret rotation."""
from __future__ import annotations

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping

from pcntrack.utils.masking import masked_secret_status

logger = logging.getLogger(__name__)

SOURCE_GHL = "ghl"
SOURCE_PCN_SURVEY = "ghl_pcn_survey"

SIGNATURE_HEADER = "X-GHL-Signature"
TIMESTAMP_HEADER = "X-GHL-Timestamp"


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of a signature check; ``matched`` names the secret that verified."""

    verified: bool
    code: str | None = None
    reason: str | None = None
    matched: str | None = None

    @property
    def http_status(self) -> int:
        if self.verified:
            return 200
        if self.code == "WEBHOOK_SECRET_NOT_CONFIGURED":
            return 503
        return 401


def _rejected(code: str, reason: str) -> VerificationResult:
    return VerificationResult(verified=False, code=code, reason=reason)


def _get_header(headers: Mapping[str, str], key: str) -> str | None:
    for h_key, value in headers.items():
        if h_key.lower() == key.lower():
            return value
    return None


def compute_signature(secret: str, body: bytes, timestamp: str) -> str:
    """HMAC-SHA256 over ``"{timestamp}.{body}"``, hex encoded."""

    msg = timestamp.encode("utf-8") + b"." + body
    return hmac.new(secret.encode("utf-8"), msg, hashlib.sha256).hexdigest()


def _parse_timestamp(value: str) -> int | None:
    try:
        ts = int(float(value))
    except (TypeError, ValueError):
        try:
            ts = int(datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp())
        except ValueError:
            return None
    # Millisecond epochs are accepted as well.
    return ts // 1000 if ts > 10_000_000_000 else ts


def verify_ghl_signature(
    raw_body: bytes,
    headers: Mapping[str, str],
    *,
    current_secret: str | None,
    previous_secret: str | None,
    max_drift_seconds: int = 300,
    now: float | None = None,
) -> VerificationResult:
    """Validate the HMAC headers against the current, then the previous secret."""

    secrets_info = {"current": current_secret, "previous": previous_secret}
    candidates = [(name, secret) for name, secret in secrets_info.items() if secret]
    if not candidates:
        logger.error(
            "GHL webhook secrets are not configured",
            extra={"ghl_secret_status": masked_secret_status(secrets_info)},
        )
        return _rejected("WEBHOOK_SECRET_NOT_CONFIGURED", "GHL webhook secrets are not configured.")

    provided_sig = _get_header(headers, SIGNATURE_HEADER)
    ts = _get_header(headers, TIMESTAMP_HEADER)
    if not provided_sig or not ts:
        logger.warning(
            "Missing GHL signature or timestamp",
            extra={"ghl_secret_status": masked_secret_status(secrets_info)},
        )
        return _rejected("WEBHOOK_SIGNATURE_MISSING", "Signature or timestamp header missing.")

    ts_seconds = _parse_timestamp(ts)
    if ts_seconds is None:
        logger.warning("Invalid GHL webhook timestamp format", extra={"timestamp": ts[:32]})
        return _rejected("WEBHOOK_TIMESTAMP_INVALID", "Invalid timestamp format.")

    reference = int(now if now is not None else time.time())
    age = abs(reference - ts_seconds)
    if age > max_drift_seconds:
        logger.warning(
            "GHL webhook timestamp outside allowed window",
            extra={"age": age, "max_drift_seconds": max_drift_seconds},
        )
        return _rejected("WEBHOOK_TIMESTAMP_DRIFT", "Webhook timestamp is outside allowed window.")

    for name, secret in candidates:
        expected = compute_signature(secret, raw_body, ts)
        if hmac.compare_digest(expected, provided_sig.strip().lower()):
            if name == "previous":
                logger.info("GHL webhook verified with previous secret; rotation still in progress")
            return VerificationResult(verified=True, matched=name)

    logger.warning(
        "GHL webhook signature mismatch",
        extra={"ghl_secret_status": masked_secret_status(secrets_info)},
    )
    return _rejected("WEBHOOK_SIGNATURE_INVALID", "Invalid webhook signature.")


def verify_shared_secret(
    provided: str | None,
    *,
    current_secret: str | None,
    legacy_secret: str | None,
) -> VerificationResult:
    """Compare a query-string secret against a company's current and legacy secret."""

    secrets_info = {"current": current_secret, "legacy": legacy_secret}
    candidates = [(name, secret) for name, secret in secrets_info.items() if secret]
    if not candidates:
        return _rejected("WEBHOOK_SECRET_NOT_CONFIGURED", "Company webhook secret is not configured.")
    if not provided:
        return _rejected("WEBHOOK_SIGNATURE_MISSING", "Webhook secret parameter missing.")

    for name, secret in candidates:
        if hmac.compare_digest(secret.encode("utf-8"), provided.encode("utf-8")):
            return VerificationResult(verified=True, matched=name)

    logger.warning(
        "Survey webhook secret mismatch",
        extra={"ghl_secret_status": masked_secret_status(secrets_info)},
    )
    return _rejected("WEBHOOK_SIGNATURE_INVALID", "Invalid webhook secret.")


def verify_request(
    source: str,
    raw_body: bytes,
    headers: Mapping[str, str],
    params: Mapping[str, str] | None,
    *,
    settings: Any,
    company: Any = None,
) -> VerificationResult:
    """Dispatch to the verification scheme of ``source``."""

    if source == SOURCE_GHL:
        return verify_ghl_signature(
            raw_body,
            headers,
            current_secret=settings.ghl_webhook_secret,
            previous_secret=settings.ghl_webhook_secret_previous,
            max_drift_seconds=settings.ghl_webhook_max_drift_seconds,
        )
    if source == SOURCE_PCN_SURVEY:
        if company is None:
            return _rejected("WEBHOOK_SIGNATURE_INVALID", "Unknown company for webhook secret.")
        return verify_shared_secret(
            (params or {}).get("secret"),
            current_secret=company.ghl_webhook_secret,
            legacy_secret=company.ghl_webhook_secret_legacy,
        )
    return _rejected("WEBHOOK_SOURCE_UNKNOWN", f"Unsupported webhook source: {source}")


__all__ = [
    "SOURCE_GHL",
    "SOURCE_PCN_SURVEY",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "VerificationResult",
    "compute_signature",
    "verify_ghl_signature",
    "verify_shared_secret",
    "verify_request",
]
