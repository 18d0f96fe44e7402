"""Time utilities."""
from __future__ import annotations

import re
from datetime import UTC, date, datetime, timedelta, timezone
from typing import Any


def utcnow() -> datetime:
    """Return current UTC time with timezone awareness."""

    return datetime.now(tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive values (SQLite drops tzinfo) and convert aware ones."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_iso_utc(value: str) -> datetime:
    """Parse an ISO 8601 string and normalize it to UTC."""

    dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


_EPOCH = re.compile(r"\d+(?:\.\d+)?")

# GHL workflow dates look like "Thu, Oct 30th, 2025 | 2:00 pm".
_GHL_HUMAN_DATE = re.compile(
    r"^(?:\w+,\s*)?(?P<month>[A-Za-z]{3,9})\s+(?P<day>\d{1,2})(?:st|nd|rd|th)?,\s*(?P<year>\d{4})"
    r"\s*\|\s*(?P<hour>\d{1,2}):(?P<minute>\d{2})\s*(?P<ampm>am|pm)$",
    re.IGNORECASE,
)


def _parse_ghl_human_date(value: str) -> datetime | None:
    match = _GHL_HUMAN_DATE.match(value.strip())
    if not match:
        return None
    month_text = match.group("month")[:3].title()
    try:
        month = datetime.strptime(month_text, "%b").month
    except ValueError:
        return None
    hour = int(match.group("hour")) % 12
    if match.group("ampm").lower() == "pm":
        hour += 12
    return datetime(
        int(match.group("year")),
        month,
        int(match.group("day")),
        hour,
        int(match.group("minute")),
        tzinfo=timezone.utc,
    )


def parse_datetime(value: Any) -> datetime | None:
    """Best-effort parse of webhook timestamps; ``None`` when unparseable.

    Accepts datetimes, epoch seconds or milliseconds, ISO 8601 strings and the
    human-readable format GHL workflows emit. Naive values are taken as UTC.
    """

    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        seconds = value / 1000 if value > 10_000_000_000 else value
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    text = str(value).strip()
    if text.isdigit():
        return parse_datetime(int(text))
    if _EPOCH.fullmatch(text):
        return parse_datetime(float(text))
    try:
        return parse_iso_utc(text)
    except ValueError:
        return _parse_ghl_human_date(text)


def week_start(moment: datetime) -> date:
    """Return the Monday of the ISO week containing ``moment``."""

    day = ensure_utc(moment).date()
    return day - timedelta(days=day.weekday())


__all__ = ["utcnow", "ensure_utc", "parse_iso_utc", "parse_datetime", "week_start"]
