"""Inclusion-flag rules deciding whether an appointment counts toward metrics."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from pcntrack.models.appointment import Appointment, AppointmentStatus, InclusionFlag
from pcntrack.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

CANCELLATION_OUTCOMES = frozenset({"cancelled", "canceled"})


def is_cancellation(value: Any) -> bool:
    return isinstance(value, str) and value.strip().lower() in CANCELLATION_OUTCOMES


@dataclass(frozen=True)
class AppointmentSnapshot:
    """The inputs of the flag rules, detached from the ORM."""

    appointment_id: int | None
    status: str | None
    outcome: str | None
    scheduled_at: datetime | None

    @classmethod
    def from_appointment(cls, appointment: Appointment) -> "AppointmentSnapshot":
        return cls(
            appointment_id=appointment.id,
            status=appointment.status,
            outcome=appointment.outcome,
            scheduled_at=ensure_utc(appointment.scheduled_at),
        )


def compute_inclusion_flag(snapshot: AppointmentSnapshot, now: datetime) -> InclusionFlag:
    """Pure rule table; the first matching rule wins.

    1. cancelled status              -> excluded
    2. cancellation outcome          -> excluded
    3. scheduled in the future/unset -> pending
    4. otherwise                     -> included
    """

    if (snapshot.status or "").strip().lower() == AppointmentStatus.cancelled.value:
        return InclusionFlag.excluded
    if is_cancellation(snapshot.outcome):
        return InclusionFlag.excluded
    scheduled_at = ensure_utc(snapshot.scheduled_at)
    if scheduled_at is None or scheduled_at > ensure_utc(now):
        return InclusionFlag.pending
    return InclusionFlag.included


def recompute(db: Session, appointment: Appointment, *, now: datetime | None = None) -> InclusionFlag:
    """Recompute and store the flag of one appointment; no commit."""

    flag = compute_inclusion_flag(AppointmentSnapshot.from_appointment(appointment), now or utcnow())
    if appointment.inclusion_flag != flag:
        logger.info(
            "Inclusion flag changed",
            extra={
                "appointment_id": appointment.id,
                "from": appointment.inclusion_flag.value if appointment.inclusion_flag else None,
                "to": flag.value,
            },
        )
        appointment.inclusion_flag = flag
        db.add(appointment)
    return flag


@dataclass
class RecomputeSummary:
    total: int = 0
    updated: int = 0
    errors: int = 0
    failed_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "updated": self.updated,
            "errors": self.errors,
            "failed_ids": list(self.failed_ids),
        }


def recompute_all(
    db: Session,
    company_id: int | None = None,
    *,
    now: datetime | None = None,
    batch_size: int = 100,
    due_pending_only: bool = False,
) -> RecomputeSummary:
    """Recompute every flag in id-ordered batches, isolating per-record failures.

    ``due_pending_only`` limits the pass to pending flags whose appointment
    time has already passed.
    """

    reference = ensure_utc(now or utcnow())
    summary = RecomputeSummary()
    last_id = 0
    while True:
        stmt = select(Appointment.id).where(Appointment.id > last_id).order_by(Appointment.id).limit(batch_size)
        if company_id is not None:
            stmt = stmt.where(Appointment.company_id == company_id)
        if due_pending_only:
            stmt = stmt.where(
                Appointment.inclusion_flag == InclusionFlag.pending,
                Appointment.scheduled_at.is_not(None),
                Appointment.scheduled_at <= reference,
            )
        ids = list(db.scalars(stmt))
        if not ids:
            break

        for appointment_id in ids:
            summary.total += 1
            try:
                with db.begin_nested():
                    appointment = db.execute(
                        select(Appointment)
                        .where(Appointment.id == appointment_id)
                        .with_for_update()
                        .execution_options(populate_existing=True)
                    ).scalar_one()
                    before = appointment.inclusion_flag
                    if recompute(db, appointment, now=reference) != before:
                        summary.updated += 1
            except Exception:  # noqa: BLE001
                summary.errors += 1
                summary.failed_ids.append(appointment_id)
                logger.exception("Inclusion recompute failed", extra={"appointment_id": appointment_id})
        db.commit()
        last_id = ids[-1]

    logger.info(
        "Inclusion recompute finished",
        extra={"company_id": company_id, "due_pending_only": due_pending_only, **summary.as_dict()},
    )
    return summary


def refresh_due_pending(
    db: Session, company_id: int | None = None, *, now: datetime | None = None
) -> RecomputeSummary:
    return recompute_all(db, company_id, now=now, due_pending_only=True)


__all__ = [
    "CANCELLATION_OUTCOMES",
    "AppointmentSnapshot",
    "RecomputeSummary",
    "compute_inclusion_flag",
    "is_cancellation",
    "recompute",
    "recompute_all",
    "refresh_due_pending",
]
