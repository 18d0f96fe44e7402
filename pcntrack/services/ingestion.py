"""Webhook ingestion: record, verify, dispatch, finalise."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Mapping

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pcntrack.config import Settings, get_settings
from pcntrack.models.company import Company
from pcntrack.models.webhook_event import WebhookEvent
from pcntrack.services import extraction
from pcntrack.services.appointments import find_closer, normalize_status, upsert_appointment, upsert_calendar
from pcntrack.services.attribution import CalendarInfo
from pcntrack.services.authz import Actor
from pcntrack.services.contacts import sync_contact
from pcntrack.services.ghl_client import GHLClient
from pcntrack.services.pcn import submit_pcn
from pcntrack.services.signatures import SOURCE_GHL, SOURCE_PCN_SURVEY, verify_request
from pcntrack.services.survey import parse_survey
from pcntrack.services.webhook_events import mark_failed, mark_processed, record_received
from pcntrack.utils.errors import DomainError
from pcntrack.utils.time import ensure_utc, parse_datetime, utcnow

logger = logging.getLogger(__name__)

KIND_APPOINTMENT = "appointment"
KIND_CONTACT = "contact"
KIND_SURVEY = "pcn_survey"
KIND_UNRECOGNIZED = "unrecognized"

# Workflow triggers named after the appointment status they report.
STATUS_EVENT_TYPES = {
    "booked",
    "confirmed",
    "scheduled",
    "rescheduled",
    "cancelled",
    "canceled",
    "showed",
    "noshow",
    "no_show",
    "completed",
}
DELETE_EVENT_TYPES = {"appointmentdelete", "appointment_delete", "appointmentdeleted"}

EnrichmentFactory = Callable[[Company], Any]


@dataclass
class ProcessingResult:
    event_id: int | None
    status: str
    http_status: int
    event_type: str | None = None
    error_code: str | None = None
    error: str | None = None

    @property
    def acknowledged(self) -> bool:
        return self.http_status < 300


def _normalise_type(raw: Any) -> str:
    return re.sub(r"[\s-]+", "_", str(raw or "").strip().lower())


def classify_event(source: str, index: Mapping[str, Any]) -> tuple[str, str]:
    """Return ``(kind, event_type)`` for a flattened payload."""

    if source == SOURCE_PCN_SURVEY:
        return KIND_SURVEY, "pcn_survey"

    event_type = _normalise_type(extraction.EVENT_TYPE.resolve(index))
    compact = event_type.replace("_", "")
    if compact.startswith("appointment") or event_type in STATUS_EVENT_TYPES or compact in STATUS_EVENT_TYPES:
        return KIND_APPOINTMENT, event_type
    if compact.startswith("contact"):
        return KIND_CONTACT, event_type
    if extraction.APPOINTMENT_ID.resolve(index) is not None:
        return KIND_APPOINTMENT, event_type or "appointment"
    return KIND_UNRECOGNIZED, event_type or KIND_UNRECOGNIZED


def _decode_payload(raw_body: bytes) -> tuple[dict[str, Any], bool]:
    text = raw_body.decode("utf-8", errors="replace")
    try:
        data = json.loads(text) if text.strip() else None
    except ValueError:
        return {"raw": text}, False
    if not isinstance(data, dict):
        return {"raw": text}, False
    return data, True


def _company_by_location(db: Session, location_id: Any) -> Company | None:
    if location_id is None:
        return None
    return db.execute(
        select(Company).where(Company.ghl_location_id == str(location_id), Company.is_active.is_(True))
    ).scalar_one_or_none()


def _company_for_survey(db: Session, params: Mapping[str, str] | None) -> Company | None:
    ref = (params or {}).get("company")
    if not ref:
        return None
    if ref.isdigit():
        company = db.get(Company, int(ref))
        if company is not None and company.is_active:
            return company
    return _company_by_location(db, ref)


def _contact_attributes(index: Mapping[str, Any]) -> dict[str, Any]:
    name = extraction.CONTACT_NAME.resolve(index)
    if name is None:
        parts = [extraction.CONTACT_FIRST_NAME.resolve(index), extraction.CONTACT_LAST_NAME.resolve(index)]
        name = " ".join(str(part) for part in parts if part) or None
    return {
        "name": name,
        "email": extraction.CONTACT_EMAIL.resolve(index),
        "phone": extraction.CONTACT_PHONE.resolve(index),
        "tags": extraction.CONTACT_TAGS.resolve(index),
    }


def _apply_appointment(
    db: Session,
    company: Company,
    index: Mapping[str, Any],
    payload: Mapping[str, Any],
    *,
    event_type: str,
    event_at: datetime,
    now: datetime,
    external_id: Any = None,
) -> None:
    external_id = external_id or extraction.APPOINTMENT_ID.resolve(index)
    if external_id is None and event_type.replace("_", "").startswith("appointment"):
        external_id = extraction.APPOINTMENT_ROOT_ID.resolve(index)
    if external_id is None:
        raise DomainError("Appointment id missing from payload.", code="APPOINTMENT_ID_MISSING")

    changes: dict[str, Any] = {}
    status = normalize_status(extraction.APPOINTMENT_STATUS.resolve(index))
    if status is None and event_type in DELETE_EVENT_TYPES:
        status = "cancelled"
    if status is None and event_type in STATUS_EVENT_TYPES:
        status = normalize_status(event_type)
    if status is not None:
        changes["status"] = status

    raw_start = extraction.START_TIME.resolve(index)
    if raw_start is not None:
        scheduled_at = parse_datetime(raw_start)
        if scheduled_at is None:
            raise DomainError(f"Unparseable start time: {raw_start!r}", code="INVALID_START_TIME")
        changes["scheduled_at"] = scheduled_at

    title = extraction.TITLE.resolve(index)
    if title is not None:
        changes["title"] = str(title)[:255]

    calendar_info = None
    calendar_id = extraction.CALENDAR_ID.resolve(index)
    if calendar_id is not None:
        calendar = upsert_calendar(db, company.id, str(calendar_id), extraction.CALENDAR_NAME.resolve(index))
        db.flush()
        changes["calendar_id"] = calendar.id
        calendar_info = CalendarInfo(
            external_id=calendar.external_id,
            name=calendar.name,
            traffic_source=calendar.traffic_source,
        )

    closer = find_closer(db, company.id, extraction.ASSIGNED_USER_ID.resolve(index))
    if closer is not None:
        changes["closer_id"] = closer.id

    contact_id = extraction.CONTACT_ID.resolve(index)
    if contact_id is not None:
        contact = sync_contact(
            db,
            company,
            external_id=str(contact_id),
            attributes=_contact_attributes(index),
            payload=payload,
            calendar=calendar_info,
            now=now,
        )
        changes["contact_id"] = contact.id

    upsert_appointment(
        db,
        company_id=company.id,
        external_id=str(external_id),
        changes=changes,
        event_at=event_at,
        now=now,
    )


def _apply_contact(
    db: Session,
    company: Company,
    index: Mapping[str, Any],
    payload: Mapping[str, Any],
    *,
    event_at: datetime,
    now: datetime,
    enrichment: EnrichmentFactory,
) -> None:
    contact_id = extraction.CONTACT_ID.resolve(index) or extraction.APPOINTMENT_ROOT_ID.resolve(index)
    if contact_id is None:
        raise DomainError("Contact id missing from payload.", code="CONTACT_ID_MISSING")
    sync_contact(
        db,
        company,
        external_id=str(contact_id),
        attributes=_contact_attributes(index),
        payload=payload,
        now=now,
    )

    client = enrichment(company)
    if client is None:
        return
    latest = client.latest_appointment(str(contact_id))
    if not latest:
        return
    enriched = {**latest, "contactId": str(contact_id)}
    latest_index = extraction.flatten_payload(enriched)
    latest_at = parse_datetime(extraction.EVENT_TIMESTAMP.resolve(latest_index)) or event_at
    _apply_appointment(
        db,
        company,
        latest_index,
        enriched,
        event_type="appointment_enrichment",
        event_at=latest_at,
        now=now,
        external_id=latest.get("id"),
    )


def _apply_survey(db: Session, company: Company, payload: Mapping[str, Any], *, now: datetime) -> None:
    appointment_ref, submission = parse_survey(payload)
    submit_pcn(
        db,
        appointment_ref,
        company.id,
        submission,
        Actor.system("ghl-survey"),
        resubmit=True,
        strict=False,
        source="survey",
        commit=False,
        now=now,
    )


def _finalise_failed(
    db: Session,
    event: WebhookEvent,
    message: str,
    *,
    code: str,
    http_status: int = 200,
    event_type: str | None = None,
) -> ProcessingResult:
    try:
        mark_failed(db, event, message)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Could not record webhook failure", extra={"event_id": event.id})
        return ProcessingResult(
            event_id=event.id,
            status="unavailable",
            http_status=503,
            event_type=event_type,
            error_code="EVENT_STORE_UNAVAILABLE",
            error=message,
        )
    return ProcessingResult(
        event_id=event.id,
        status="failed",
        http_status=http_status,
        event_type=event_type,
        error_code=code,
        error=message,
    )


def ingest(
    db: Session,
    source: str,
    raw_body: bytes,
    headers: Mapping[str, str],
    params: Mapping[str, str] | None = None,
    *,
    settings: Settings | None = None,
    now: datetime | None = None,
    enrichment: EnrichmentFactory | None = None,
) -> ProcessingResult:
    """Record and process one webhook delivery.

    The raw event is committed as ``pending`` before anything else. Bad
    signatures answer 401 (503 when no secret is configured); processing
    failures are recorded on the event and acknowledged with 200 so the
    sender stops retrying. Only an unavailable event store answers 503.
    """

    settings = settings or get_settings()
    now = ensure_utc(now or utcnow())
    if enrichment is None:

        def enrichment(company: Company) -> GHLClient | None:
            return GHLClient.for_company(company, settings)

    payload, is_json = _decode_payload(raw_body)
    try:
        event = record_received(
            db,
            source=source,
            payload=payload,
            headers=headers,
            params=params,
            received_at=now,
        )
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Webhook event store unavailable", extra={"source": source})
        return ProcessingResult(
            event_id=None,
            status="unavailable",
            http_status=503,
            error_code="EVENT_STORE_UNAVAILABLE",
            error="Event store unavailable.",
        )

    company = _company_for_survey(db, params) if source == SOURCE_PCN_SURVEY else None
    verification = verify_request(source, raw_body, headers, params, settings=settings, company=company)
    if not verification.verified:
        logger.warning(
            "Webhook signature rejected",
            extra={"event_id": event.id, "source": source, "code": verification.code},
        )
        result = _finalise_failed(
            db,
            event,
            f"invalid signature: {verification.reason}",
            code=verification.code or "WEBHOOK_SIGNATURE_INVALID",
            http_status=verification.http_status,
        )
        if result.status == "failed":
            result.status = "rejected"
        return result

    if not is_json:
        return _finalise_failed(db, event, "invalid JSON payload", code="INVALID_PAYLOAD")

    index = extraction.flatten_payload(payload)
    kind, event_type = classify_event(source, index)
    if source == SOURCE_GHL:
        company = _company_by_location(db, extraction.LOCATION_ID.resolve(index))
        if company is None:
            return _finalise_failed(
                db,
                event,
                "unknown company for location id",
                code="COMPANY_NOT_FOUND",
                event_type=event_type,
            )

    external_event_id = extraction.EVENT_ID.resolve(index)
    event_at = parse_datetime(extraction.EVENT_TIMESTAMP.resolve(index)) or now
    try:
        event.event_type = event_type[:100]
        event.company_id = company.id
        event.external_event_id = str(external_event_id)[:128] if external_event_id is not None else None
        db.add(event)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Webhook event store unavailable", extra={"event_id": event.id})
        return ProcessingResult(
            event_id=event.id,
            status="unavailable",
            http_status=503,
            event_type=event_type,
            error_code="EVENT_STORE_UNAVAILABLE",
        )

    try:
        if kind == KIND_APPOINTMENT:
            _apply_appointment(db, company, index, payload, event_type=event_type, event_at=event_at, now=now)
        elif kind == KIND_CONTACT:
            _apply_contact(db, company, index, payload, event_at=event_at, now=now, enrichment=enrichment)
        elif kind == KIND_SURVEY:
            _apply_survey(db, company, payload, now=now)
        mark_processed(db, event, processed_at=now)
        db.commit()
    except Exception as exc:  # noqa: BLE001
        db.rollback()
        code = exc.code if isinstance(exc, DomainError) else "HANDLER_ERROR"
        message = f"{type(exc).__name__}: {exc}"
        logger.exception(
            "Webhook processing failed",
            extra={"event_id": event.id, "event_type": event_type, "company_id": company.id},
        )
        return _finalise_failed(db, event, message, code=code, event_type=event_type)

    logger.info(
        "Webhook processed",
        extra={"event_id": event.id, "event_type": event_type, "kind": kind, "company_id": company.id},
    )
    return ProcessingResult(event_id=event.id, status="processed", http_status=200, event_type=event_type)


__all__ = ["ProcessingResult", "classify_event", "ingest"]
