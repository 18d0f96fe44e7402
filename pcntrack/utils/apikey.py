"""API key generation and validation helpers."""
from __future__ import annotations

import hashlib
import hmac
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from pcntrack.config import get_settings
from pcntrack.models.api_key import ApiKey
from pcntrack.utils.time import ensure_utc, utcnow


def hash_key(raw: str) -> str:
    """Return an HMAC-SHA256 hash for the provided API key."""

    return hmac.new(get_settings().SECRET_KEY.encode(), raw.encode(), hashlib.sha256).hexdigest()


def gen_key(prefix_len: int = 6) -> tuple[str, str, str]:
    """Generate a user-facing API key, its prefix, and the stored hash."""

    prefix = "pcn_" + secrets.token_hex(prefix_len)[:prefix_len]
    suffix = secrets.token_urlsafe(32)
    raw = f"{prefix}.{suffix}"
    return raw, prefix, hash_key(raw)


def is_legacy_key(raw: str) -> bool:
    legacy = get_settings().DEV_API_KEY
    return bool(legacy) and secrets.compare_digest(raw, legacy)


def find_valid_key(db: Session, raw: str) -> Optional[ApiKey]:
    """Return the matching active, unexpired API key if any."""

    key = db.scalars(
        select(ApiKey).where(ApiKey.key_hash == hash_key(raw), ApiKey.is_active.is_(True))
    ).first()
    if key and (key.expires_at is None or ensure_utc(key.expires_at) > utcnow()):
        return key
    return None


__all__ = ["hash_key", "gen_key", "is_legacy_key", "find_valid_key"]
