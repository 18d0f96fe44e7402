"""Weekly per-company KPI report, sent once per ISO week."""
from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from pcntrack.config import Settings, get_settings
from pcntrack.models.appointment import Appointment, AppointmentStatus
from pcntrack.models.company import Company
from pcntrack.models.notification import WeeklyReportDispatch
from pcntrack.services.notifications import Notifier
from pcntrack.services.sweep import overdue_query
from pcntrack.utils.time import ensure_utc, utcnow, week_start

logger = logging.getLogger(__name__)

SHOWED_STATUSES = {
    AppointmentStatus.showed.value,
    AppointmentStatus.signed.value,
    AppointmentStatus.contract_sent.value,
    AppointmentStatus.completed.value,
}


@dataclass
class WeeklyReportSummary:
    companies: int = 0
    sent: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "companies": self.companies,
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": self.errors,
        }


def _rate(part: int, whole: int) -> str:
    return f"{(part / whole) * 100:.1f}" if whole else "0.0"


def collect_weekly_metrics(
    db: Session,
    company_id: int,
    now: datetime,
    *,
    grace_minutes: int,
) -> dict[str, Any]:
    """Aggregate the seven days ending at ``now``."""

    end = ensure_utc(now)
    start = end - timedelta(days=7)
    appointments = list(
        db.scalars(
            select(Appointment).where(
                Appointment.company_id == company_id,
                Appointment.scheduled_at >= start,
                Appointment.scheduled_at <= end,
                Appointment.status != AppointmentStatus.cancelled.value,
            )
        )
    )
    scheduled = len(appointments)
    showed = sum(1 for item in appointments if item.status in SHOWED_STATUSES)
    signed = [item for item in appointments if item.status == AppointmentStatus.signed.value or item.outcome == "signed"]
    cash = sum((item.cash_collected or Decimal("0") for item in signed), Decimal("0"))

    by_closer: dict[str, Decimal] = defaultdict(lambda: Decimal("0"))
    for item in signed:
        if item.closer is not None:
            by_closer[item.closer.name] += item.cash_collected or Decimal("0")
    top_closer = max(by_closer.items(), key=lambda entry: entry[1]) if by_closer else None

    pending = db.scalar(
        select(func.count()).select_from(
            overdue_query(end, grace_minutes=grace_minutes, company_id=company_id).subquery()
        )
    )
    return {
        "start": start,
        "end": end,
        "scheduled": scheduled,
        "showed": showed,
        "signed": len(signed),
        "cash_collected": cash,
        "show_rate": _rate(showed, scheduled),
        "close_rate": _rate(len(signed), showed),
        "pending_pcns": int(pending or 0),
        "top_closer": {"name": top_closer[0], "cash_collected": top_closer[1]} if top_closer else None,
    }


def build_weekly_message(company: Company, metrics: dict[str, Any]) -> str:
    lines = [
        f"*Weekly Sales Report* - {company.name}",
        f"*Period:* {metrics['start']:%Y-%m-%d} - {metrics['end']:%Y-%m-%d}",
        "",
        "*Key Metrics:*",
        f"- Scheduled calls: {metrics['scheduled']}",
        f"- Showed: {metrics['showed']} ({metrics['show_rate']}% show rate)",
        f"- Closed: {metrics['signed']} ({metrics['close_rate']}% close rate)",
        f"- Cash collected: ${metrics['cash_collected']:.2f}",
        f"- Pending PCNs: {metrics['pending_pcns']}",
    ]
    top = metrics.get("top_closer")
    if top:
        lines.extend(["", f"*Top Closer:* {top['name']} - ${top['cash_collected']:.2f}"])
    return "\n".join(lines)


def _load_week(db: Session, company_id: int, week: date) -> WeeklyReportDispatch | None:
    return db.execute(
        select(WeeklyReportDispatch)
        .where(WeeklyReportDispatch.company_id == company_id, WeeklyReportDispatch.week_start == week)
        .with_for_update()
    ).scalar_one_or_none()


def _lock_week(db: Session, company_id: int, week: date) -> WeeklyReportDispatch:
    dispatch = _load_week(db, company_id, week)
    if dispatch is not None:
        return dispatch
    try:
        with db.begin_nested():
            dispatch = WeeklyReportDispatch(company_id=company_id, week_start=week, status="pending")
            db.add(dispatch)
    except IntegrityError:
        dispatch = _load_week(db, company_id, week)
        if dispatch is None:
            raise
    return dispatch


def send_weekly_reports(
    db: Session,
    *,
    notifier: Notifier,
    now: datetime | None = None,
    company_id: int | None = None,
    settings: Settings | None = None,
) -> WeeklyReportSummary:
    settings = settings or get_settings()
    now = ensure_utc(now or utcnow())
    week = week_start(now)
    summary = WeeklyReportSummary()

    stmt = select(Company).where(Company.is_active.is_(True)).order_by(Company.id)
    if company_id is not None:
        stmt = stmt.where(Company.id == company_id)
    companies = list(db.scalars(stmt))

    for company in companies:
        summary.companies += 1
        if not company.notification_webhook_url:
            summary.skipped += 1
            continue
        try:
            dispatch = _lock_week(db, company.id, week)
            if dispatch.status == "sent":
                summary.skipped += 1
                db.commit()
                continue
            metrics = collect_weekly_metrics(
                db, company.id, now, grace_minutes=settings.PCN_GRACE_PERIOD_MINUTES
            )
            message = build_weekly_message(company, metrics)
            result = notifier.send(company.notification_webhook_url, message)
            dispatch.message = message
            if result.ok:
                dispatch.status = "sent"
                dispatch.sent_at = now
                dispatch.last_error = None
                summary.sent += 1
            else:
                dispatch.status = "failed"
                dispatch.last_error = result.error
                summary.errors += 1
            db.add(dispatch)
            db.commit()
        except Exception:  # noqa: BLE001
            db.rollback()
            summary.errors += 1
            logger.exception("Weekly report failed", extra={"company_id": company.id})

    logger.info(
        "Weekly reports finished",
        extra={"company_id": company_id, "week_start": week.isoformat(), **summary.as_dict()},
    )
    return summary


__all__ = [
    "WeeklyReportSummary",
    "build_weekly_message",
    "collect_weekly_metrics",
    "send_weekly_reports",
]
