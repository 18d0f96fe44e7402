"""Pending-PCN reminder sweep."""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import Select, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pcntrack.config import Settings, get_settings
from pcntrack.models.appointment import Appointment, AppointmentStatus, InclusionFlag
from pcntrack.models.company import Company
from pcntrack.models.notification import PCNNotification
from pcntrack.services.inclusion import CANCELLATION_OUTCOMES, refresh_due_pending
from pcntrack.services.notifications import DeliveryResult, Notifier
from pcntrack.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

URGENCY_HIGH_MINUTES = 240
URGENCY_MEDIUM_MINUTES = 120


@dataclass
class SweepSummary:
    checked: int = 0
    notified: int = 0
    skipped: int = 0
    errors: int = 0
    truncated: bool = False

    def as_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "notified": self.notified,
            "skipped": self.skipped,
            "errors": self.errors,
            "truncated": self.truncated,
        }


def overdue_query(
    now: datetime,
    *,
    grace_minutes: int,
    company_id: int | None = None,
    notifiable_only: bool = False,
) -> Select:
    """Appointments past their grace period with no PCN, cancelled or excluded ones left out.

    With ``notifiable_only`` only appointments of active companies that have a
    notification channel are kept.
    """

    cutoff = ensure_utc(now) - timedelta(minutes=grace_minutes)
    stmt = select(Appointment).where(
        Appointment.pcn_submitted.is_(False),
        Appointment.scheduled_at.is_not(None),
        Appointment.scheduled_at <= cutoff,
        Appointment.status != AppointmentStatus.cancelled.value,
        or_(
            Appointment.outcome.is_(None),
            func.lower(Appointment.outcome).not_in(sorted(CANCELLATION_OUTCOMES)),
        ),
        or_(
            Appointment.inclusion_flag.is_(None),
            Appointment.inclusion_flag != InclusionFlag.excluded,
        ),
    )
    if company_id is not None:
        stmt = stmt.where(Appointment.company_id == company_id)
    if notifiable_only:
        notifiable = select(Company.id).where(
            Company.is_active.is_(True),
            Company.notification_webhook_url.is_not(None),
            Company.notification_webhook_url != "",
        )
        stmt = stmt.where(Appointment.company_id.in_(notifiable))
    return stmt


def urgency_for(minutes_overdue: int) -> str:
    if minutes_overdue > URGENCY_HIGH_MINUTES:
        return "high"
    if minutes_overdue > URGENCY_MEDIUM_MINUTES:
        return "medium"
    return "normal"


def list_pending_pcns(
    db: Session,
    company_id: int,
    now: datetime | None = None,
    *,
    grace_minutes: int | None = None,
) -> list[dict[str, Any]]:
    """Overdue appointments of one company, oldest first."""

    now = ensure_utc(now or utcnow())
    if grace_minutes is None:
        grace_minutes = get_settings().PCN_GRACE_PERIOD_MINUTES
    stmt = overdue_query(now, grace_minutes=grace_minutes, company_id=company_id).order_by(
        Appointment.scheduled_at, Appointment.id
    )
    pending = []
    for appointment in db.scalars(stmt):
        scheduled_at = ensure_utc(appointment.scheduled_at)
        minutes = int((now - scheduled_at).total_seconds() // 60)
        pending.append(
            {
                "appointment_id": appointment.id,
                "external_id": appointment.external_id,
                "company_id": appointment.company_id,
                "title": appointment.title,
                "contact_name": appointment.contact.name if appointment.contact else None,
                "closer_id": appointment.closer_id,
                "closer_name": appointment.closer.name if appointment.closer else None,
                "scheduled_at": scheduled_at,
                "minutes_overdue": minutes,
                "urgency": urgency_for(minutes),
            }
        )
    return pending


def build_reminder_message(appointment: Appointment, now: datetime, base_url: str) -> str:
    scheduled_at = ensure_utc(appointment.scheduled_at)
    minutes = int((ensure_utc(now) - scheduled_at).total_seconds() // 60)
    lines = ["*PCN Required*", ""]
    if appointment.contact and appointment.contact.name:
        lines.append(f"*Prospect:* {appointment.contact.name}")
    if appointment.title:
        lines.append(f"*Call:* {appointment.title}")
    lines.append(f"*Scheduled:* {scheduled_at:%Y-%m-%d %H:%M} UTC ({minutes} min ago)")
    lines.append("")
    lines.append(f"<{base_url.rstrip('/')}/pcn/{appointment.id}|Fill out PCN>")
    message = "\n".join(lines)
    closer = appointment.closer
    if closer is not None and closer.slack_user_id:
        message = f"<@{closer.slack_user_id}> {message}"
    return message


def _load_dispatch(db: Session, appointment_id: int) -> PCNNotification | None:
    return db.execute(
        select(PCNNotification)
        .where(PCNNotification.appointment_id == appointment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _lock_dispatch(db: Session, appointment: Appointment) -> PCNNotification:
    dispatch = _load_dispatch(db, appointment.id)
    if dispatch is not None:
        return dispatch
    try:
        with db.begin_nested():
            dispatch = PCNNotification(
                appointment_id=appointment.id,
                company_id=appointment.company_id,
                status="pending",
                attempts=0,
            )
            db.add(dispatch)
    except IntegrityError:
        # Another sweep created it first.
        dispatch = _load_dispatch(db, appointment.id)
        if dispatch is None:
            raise
    return dispatch


def _record_delivery(db: Session, appointment_id: int, result: DeliveryResult, now: datetime) -> None:
    dispatch = _load_dispatch(db, appointment_id)
    if dispatch is None:
        db.rollback()
        return
    if result.ok:
        dispatch.status = "sent"
        dispatch.last_notified_at = now
        dispatch.last_error = None
    else:
        dispatch.status = "failed"
        dispatch.last_error = result.error
    db.add(dispatch)
    db.commit()


def _notify_one(
    db: Session,
    appointment_id: int,
    *,
    notifier: Notifier,
    now: datetime,
    cycle: timedelta,
    settings: Settings,
    summary: SweepSummary,
) -> None:
    """Claim and deliver one reminder.

    The attempt is committed before the notifier is called so no row lock is
    held during delivery; the outcome is stamped in a second transaction.
    """

    appointment = db.execute(
        select(Appointment)
        .where(Appointment.id == appointment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if appointment is None or appointment.pcn_submitted:
        summary.skipped += 1
        db.rollback()
        return

    company = db.get(Company, appointment.company_id)
    if company is None or not company.is_active or not company.notification_webhook_url:
        summary.skipped += 1
        db.rollback()
        return

    dispatch = _lock_dispatch(db, appointment)
    last_notified_at = ensure_utc(dispatch.last_notified_at)
    if last_notified_at is not None and last_notified_at > now - cycle:
        summary.skipped += 1
        db.commit()
        return

    channel = company.notification_webhook_url
    message = build_reminder_message(appointment, now, settings.APP_BASE_URL)
    dispatch.status = "sending"
    dispatch.attempts = (dispatch.attempts or 0) + 1
    dispatch.last_attempt_at = now
    dispatch.channel = getattr(notifier, "name", None)
    dispatch.message = message
    db.add(dispatch)
    db.commit()

    try:
        result = notifier.send(channel, message)
    except Exception as exc:
        _record_delivery(db, appointment_id, DeliveryResult(ok=False, error=str(exc)[:500]), now)
        raise

    _record_delivery(db, appointment_id, result, now)
    if result.ok:
        summary.notified += 1
    else:
        summary.errors += 1


def sweep_pending_pcns(
    db: Session,
    *,
    notifier: Notifier,
    now: datetime | None = None,
    company_id: int | None = None,
    settings: Settings | None = None,
) -> SweepSummary:
    """Send at most one reminder per overdue appointment per notification cycle.

    Past-due ``pending`` flags are refreshed first. Appointments of companies
    without a channel are not visited. Works in id-ordered batches and stops
    once the runtime budget is spent, reporting ``truncated``. Each appointment
    commits on its own so a failure only affects that appointment.
    """

    settings = settings or get_settings()
    now = ensure_utc(now or utcnow())
    cycle = timedelta(minutes=settings.PCN_NOTIFY_CYCLE_MINUTES)
    deadline = time.monotonic() + settings.PCN_SWEEP_MAX_RUNTIME_SECONDS
    summary = SweepSummary()

    # Promote pending flags whose start time has passed.
    refresh_due_pending(db, company_id, now=now)

    base = overdue_query(
        now, grace_minutes=settings.PCN_GRACE_PERIOD_MINUTES, company_id=company_id, notifiable_only=True
    )
    ids_query = base.with_only_columns(Appointment.id).order_by(Appointment.id)
    last_id = 0
    while not summary.truncated:
        ids = list(db.scalars(ids_query.where(Appointment.id > last_id).limit(settings.PCN_SWEEP_BATCH_SIZE)))
        if not ids:
            break
        for appointment_id in ids:
            if time.monotonic() > deadline:
                summary.truncated = True
                break
            summary.checked += 1
            try:
                _notify_one(
                    db,
                    appointment_id,
                    notifier=notifier,
                    now=now,
                    cycle=cycle,
                    settings=settings,
                    summary=summary,
                )
            except Exception:  # noqa: BLE001
                db.rollback()
                summary.errors += 1
                logger.exception("PCN reminder failed", extra={"appointment_id": appointment_id})
        last_id = ids[-1]

    logger.info("PCN sweep finished", extra={"company_id": company_id, **summary.as_dict()})
    return summary


__all__ = [
    "SweepSummary",
    "build_reminder_message",
    "list_pending_pcns",
    "overdue_query",
    "sweep_pending_pcns",
    "urgency_for",
]
