"""Appointment lifecycle store: idempotent, timestamp-ordered upserts."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pcntrack.models.appointment import Appointment, AppointmentStatus
from pcntrack.models.calendar import Calendar
from pcntrack.models.user import User
from pcntrack.services import inclusion
from pcntrack.utils.errors import NotFoundError
from pcntrack.utils.time import ensure_utc, parse_iso_utc

logger = logging.getLogger(__name__)

# Fields a webhook may write; each remembers the timestamp of its last writer.
MERGEABLE_FIELDS = frozenset(
    {
        "status",
        "outcome",
        "scheduled_at",
        "title",
        "contact_id",
        "closer_id",
        "calendar_id",
        "cash_collected",
    }
)
FLAG_INPUTS = frozenset({"status", "outcome", "scheduled_at"})

_STATUS_ALIASES = {
    "booked": AppointmentStatus.scheduled.value,
    "confirmed": AppointmentStatus.scheduled.value,
    "new": AppointmentStatus.scheduled.value,
    "scheduled": AppointmentStatus.scheduled.value,
    "rescheduled": AppointmentStatus.scheduled.value,
    "canceled": AppointmentStatus.cancelled.value,
    "cancelled": AppointmentStatus.cancelled.value,
    "deleted": AppointmentStatus.cancelled.value,
    "noshow": AppointmentStatus.no_show.value,
    "no_show": AppointmentStatus.no_show.value,
    "no-show": AppointmentStatus.no_show.value,
    "no show": AppointmentStatus.no_show.value,
    "showed": AppointmentStatus.showed.value,
    "show": AppointmentStatus.showed.value,
    "completed": AppointmentStatus.completed.value,
}


def normalize_status(raw: Any) -> str | None:
    """Map CRM status spellings onto the lifecycle vocabulary.

    Unknown statuses are kept, lower-cased, rather than rejected.
    """

    if raw is None:
        return None
    text = str(raw).strip().lower()
    if not text:
        return None
    return _STATUS_ALIASES.get(text, text[:32])


@dataclass
class UpsertResult:
    appointment: Appointment
    created: bool
    changed_fields: list[str] = field(default_factory=list)
    stale_fields: list[str] = field(default_factory=list)


def _load_for_update(db: Session, company_id: int, external_id: str) -> Appointment | None:
    return db.execute(
        select(Appointment)
        .where(Appointment.company_id == company_id, Appointment.external_id == external_id)
        .with_for_update()
    ).scalar_one_or_none()


def _same_value(current: Any, new: Any) -> bool:
    if isinstance(current, datetime) or isinstance(new, datetime):
        return ensure_utc(current) == ensure_utc(new)
    if isinstance(current, Decimal) or isinstance(new, Decimal):
        if current is None or new is None:
            return current is new
        return Decimal(str(current)) == Decimal(str(new))
    return current == new


def _field_version(versions: Mapping[str, str], name: str) -> datetime | None:
    raw = versions.get(name)
    if not raw:
        return None
    try:
        return parse_iso_utc(raw)
    except ValueError:
        return None


def upsert_appointment(
    db: Session,
    *,
    company_id: int,
    external_id: str,
    changes: Mapping[str, Any],
    event_at: datetime,
    now: datetime | None = None,
) -> UpsertResult:
    """Create or merge an appointment keyed by (company, external id).

    The row is read under lock and each field is overwritten only when the
    incoming event is at least as recent as the event that last wrote it, so
    redelivered or late events never roll state back. Flushes; the caller
    commits.
    """

    unknown = set(changes) - MERGEABLE_FIELDS
    if unknown:
        raise ValueError(f"Unsupported appointment fields: {sorted(unknown)}")

    event_at = ensure_utc(event_at)
    appointment = _load_for_update(db, company_id, external_id)
    created = False
    if appointment is None:
        try:
            with db.begin_nested():
                appointment = Appointment(
                    company_id=company_id,
                    external_id=external_id,
                    status=AppointmentStatus.scheduled.value,
                    pcn_submitted=False,
                    field_versions={},
                )
                db.add(appointment)
            created = True
        except IntegrityError:
            appointment = _load_for_update(db, company_id, external_id)
            if appointment is None:
                raise

    versions = dict(appointment.field_versions or {})
    result = UpsertResult(appointment=appointment, created=created)
    for name, value in changes.items():
        stored_at = _field_version(versions, name)
        if stored_at is not None and stored_at > event_at:
            result.stale_fields.append(name)
            continue
        if created or not _same_value(getattr(appointment, name), value):
            setattr(appointment, name, value)
            result.changed_fields.append(name)
        versions[name] = event_at.isoformat()

    appointment.field_versions = versions
    last_event_at = ensure_utc(appointment.last_event_at)
    if last_event_at is None or event_at > last_event_at:
        appointment.last_event_at = event_at

    if created or FLAG_INPUTS.intersection(result.changed_fields):
        inclusion.recompute(db, appointment, now=now)

    db.add(appointment)
    db.flush()
    logger.info(
        "Appointment upserted",
        extra={
            "appointment_id": appointment.id,
            "company_id": company_id,
            "external_id": external_id,
            "appointment_created": created,
            "changed_fields": result.changed_fields,
            "stale_fields": result.stale_fields,
        },
    )
    return result


def upsert_calendar(db: Session, company_id: int, external_id: str, name: str | None) -> Calendar:
    calendar = db.execute(
        select(Calendar).where(Calendar.company_id == company_id, Calendar.external_id == external_id)
    ).scalar_one_or_none()
    if calendar is None:
        try:
            with db.begin_nested():
                calendar = Calendar(company_id=company_id, external_id=external_id, name=name)
                db.add(calendar)
        except IntegrityError:
            calendar = db.execute(
                select(Calendar).where(Calendar.company_id == company_id, Calendar.external_id == external_id)
            ).scalar_one()
    elif name and calendar.name != name:
        calendar.name = name
        db.add(calendar)
    return calendar


def find_closer(db: Session, company_id: int, external_user_id: str | None) -> User | None:
    """Map a CRM user id onto a local user of the company (or a cross-company one)."""

    if not external_user_id:
        return None
    return db.execute(
        select(User)
        .where(
            User.external_id == external_user_id,
            User.is_active.is_(True),
            or_(User.company_id == company_id, User.company_id.is_(None)),
        )
        .order_by(User.company_id.is_(None))
        .limit(1)
    ).scalar_one_or_none()


def get_appointment(db: Session, company_id: int, ref: str, *, for_update: bool = False) -> Appointment:
    """Find an appointment by external id, then by internal id, within a company."""

    conditions = [Appointment.external_id == ref]
    if ref.isdigit():
        conditions.append(Appointment.id == int(ref))
    stmt = (
        select(Appointment)
        .where(Appointment.company_id == company_id, or_(*conditions))
        .order_by((Appointment.external_id == ref).desc())
        .limit(1)
    )
    if for_update:
        stmt = stmt.with_for_update()
    appointment = db.execute(stmt).scalar_one_or_none()
    if appointment is None:
        raise NotFoundError(
            "Appointment not found.",
            code="APPOINTMENT_NOT_FOUND",
            details={"appointment": ref, "company_id": company_id},
        )
    return appointment


__all__ = [
    "MERGEABLE_FIELDS",
    "UpsertResult",
    "normalize_status",
    "upsert_appointment",
    "upsert_calendar",
    "find_closer",
    "get_appointment",
]
