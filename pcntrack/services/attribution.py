"""Traffic-source attribution for contacts, one strategy per company."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Mapping, Sequence

from pcntrack.models.company import AttributionStrategy
from pcntrack.services.extraction import FieldRule, flatten_payload, is_present
from pcntrack.utils.errors import ValidationError

logger = logging.getLogger(__name__)

DEFAULT_SOURCE_FIELD = "contact.source"

CONFIDENCE_EXPLICIT = 1.0
CONFIDENCE_PATTERN = 0.8
CONFIDENCE_FALLBACK = 0.5

# Source tokens appended to calendar names: "Strategy Call (META)",
# "Strategy Call [META]", "Strategy Call - META".
CALENDAR_NAME_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\(([^)]+)\)\s*$"),
    re.compile(r"\[([^\]]+)\]\s*$"),
    re.compile(r"\s[-_]\s*([A-Z0-9][A-Z0-9-]*)$"),
)

TAG_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^source[:\-\s](.+)$", re.IGNORECASE),
    re.compile(r"^traffic[:\-\s](.+)$", re.IGNORECASE),
    re.compile(
        r"^(meta|facebook|google|youtube|organic|email|instagram|linkedin|twitter|tiktok)$",
        re.IGNORECASE,
    ),
)

HYROS_SOURCE = FieldRule(
    "hyros_source",
    (
        "hyros.lastsource",
        "hyros.last_source",
        "hyroslastsource",
        "hyros_source",
        "customdata.hyros_source",
        "contact.hyros_source",
        "customfields.hyros_source",
    ),
)
HYROS_LEAD_SOURCE = FieldRule("hyros_lead_source", ("hyros.firstsource", "hyros.first_source", "hyros_first_source"))


@dataclass(frozen=True)
class Attribution:
    traffic_source: str
    lead_source: str | None = None
    confidence: float = CONFIDENCE_EXPLICIT

    def as_dict(self) -> dict[str, Any]:
        return {
            "traffic_source": self.traffic_source,
            "lead_source": self.lead_source,
            "confidence": self.confidence,
        }


@dataclass(frozen=True)
class AttributionConfig:
    strategy: AttributionStrategy = AttributionStrategy.none
    source_field: str | None = None

    @property
    def calendar_based(self) -> bool:
        return self.strategy == AttributionStrategy.calendars

    @classmethod
    def from_company(cls, company: Any) -> "AttributionConfig":
        return validate_attribution_config(company.attribution_strategy, company.attribution_source_field)


@dataclass(frozen=True)
class CalendarInfo:
    """What the calendar strategy needs to know about the booked calendar."""

    external_id: str | None = None
    name: str | None = None
    traffic_source: str | None = None


def validate_attribution_config(strategy: Any, source_field: str | None = None) -> AttributionConfig:
    """Check a strategy/field pair at configuration time.

    ``ghl_fields`` falls back to ``contact.source`` when no field is given;
    other strategies ignore the field.
    """

    try:
        parsed = strategy if isinstance(strategy, AttributionStrategy) else AttributionStrategy(str(strategy).strip())
    except ValueError as exc:
        raise ValidationError(
            "Unknown attribution strategy.",
            code="INVALID_ATTRIBUTION_STRATEGY",
            details={
                "strategy": str(strategy),
                "allowed": [item.value for item in AttributionStrategy],
            },
        ) from exc

    if parsed != AttributionStrategy.ghl_fields:
        return AttributionConfig(strategy=parsed, source_field=None)

    field = (source_field or "").strip() or DEFAULT_SOURCE_FIELD
    if any(not part.strip() for part in field.split(".")):
        raise ValidationError(
            "Attribution source field must be a dotted path.",
            code="INVALID_ATTRIBUTION_FIELD",
            details={"source_field": source_field},
        )
    return AttributionConfig(strategy=parsed, source_field=field)


def _clean(value: Any) -> str | None:
    if not is_present(value) or isinstance(value, (dict, list)):
        return None
    return str(value).strip()


def _resolve_ghl_fields(index: Mapping[str, Any], source_field: str | None) -> Attribution | None:
    field = (source_field or DEFAULT_SOURCE_FIELD).lower()
    candidates = [field]
    # Flat payloads carry contact attributes at the root.
    if field.startswith("contact."):
        candidates.append(field[len("contact."):])
    value = _clean(FieldRule("source_field", tuple(candidates)).resolve(index))
    if value is None:
        return None
    return Attribution(traffic_source=value, lead_source=value, confidence=CONFIDENCE_EXPLICIT)


def source_from_calendar_name(name: str | None) -> str | None:
    """Extract a trailing source token from a calendar name, if any."""

    if not name:
        return None
    for pattern in CALENDAR_NAME_PATTERNS:
        match = pattern.search(name.strip())
        if match:
            token = match.group(1).strip()
            if token:
                return token
    return None


def _resolve_calendars(index: Mapping[str, Any], calendar: CalendarInfo | None) -> Attribution | None:
    if calendar is None:
        calendar_id = _clean(index.get("calendarid") or index.get("calendar.id"))
        calendar_name = _clean(index.get("calendarname") or index.get("calendar.name"))
        calendar = CalendarInfo(external_id=calendar_id, name=calendar_name)

    override = _clean(calendar.traffic_source)
    if override:
        return Attribution(traffic_source=override, lead_source=calendar.name, confidence=CONFIDENCE_EXPLICIT)

    token = source_from_calendar_name(calendar.name)
    if token:
        return Attribution(traffic_source=token, lead_source=calendar.name, confidence=CONFIDENCE_PATTERN)

    fallback = _clean(calendar.name) or _clean(calendar.external_id)
    if fallback:
        return Attribution(traffic_source=fallback, lead_source=calendar.name, confidence=CONFIDENCE_FALLBACK)
    return None


def _resolve_hyros(index: Mapping[str, Any]) -> Attribution | None:
    value = _clean(HYROS_SOURCE.resolve(index))
    if value is None:
        return None
    lead = _clean(HYROS_LEAD_SOURCE.resolve(index)) or value
    return Attribution(traffic_source=value, lead_source=lead, confidence=CONFIDENCE_EXPLICIT)


def _normalise_tags(raw: Any) -> list[str]:
    if isinstance(raw, str):
        return [tag.strip() for tag in raw.split(",") if tag.strip()]
    if isinstance(raw, Sequence):
        return [str(tag).strip() for tag in raw if is_present(tag)]
    return []


def source_from_tags(tags: Sequence[str]) -> str | None:
    """First tag (in order) matching a source pattern (in order) wins."""

    for tag in tags:
        for pattern in TAG_PATTERNS:
            match = pattern.match(tag.strip())
            if match:
                token = match.group(1).strip()
                if token:
                    return token
    return None


def _resolve_tags(index: Mapping[str, Any]) -> Attribution | None:
    raw = index.get("tags")
    if not is_present(raw):
        raw = index.get("contact.tags")
    token = source_from_tags(_normalise_tags(raw))
    if token is None:
        return None
    return Attribution(traffic_source=token, lead_source=token, confidence=CONFIDENCE_PATTERN)


def resolve_attribution(
    payload: Mapping[str, Any],
    config: AttributionConfig,
    *,
    calendar: CalendarInfo | None = None,
) -> Attribution | None:
    """Resolve the traffic source of ``payload`` using exactly one strategy."""

    if config.strategy == AttributionStrategy.none:
        return None

    index = flatten_payload(payload)
    if config.strategy == AttributionStrategy.ghl_fields:
        result = _resolve_ghl_fields(index, config.source_field)
    elif config.strategy == AttributionStrategy.calendars:
        result = _resolve_calendars(index, calendar)
    elif config.strategy == AttributionStrategy.hyros:
        result = _resolve_hyros(index)
    elif config.strategy == AttributionStrategy.tags:
        result = _resolve_tags(index)
    else:  # pragma: no cover - enum is exhaustive
        result = None

    logger.debug(
        "Attribution resolved",
        extra={"strategy": config.strategy.value, "traffic_source": result.traffic_source if result else None},
    )
    return result


__all__ = [
    "DEFAULT_SOURCE_FIELD",
    "Attribution",
    "AttributionConfig",
    "CalendarInfo",
    "validate_attribution_config",
    "resolve_attribution",
    "source_from_calendar_name",
    "source_from_tags",
]
