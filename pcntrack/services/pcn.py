"""Post-call note submission pipeline."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from pcntrack.config import get_settings
from pcntrack.models.appointment import Appointment, AppointmentStatus, InclusionFlag
from pcntrack.models.pcn import PCNRecord
from pcntrack.schemas.pcn import PCNSubmission
from pcntrack.services import inclusion
from pcntrack.services.appointments import get_appointment
from pcntrack.services.authz import Actor, ensure_company_access
from pcntrack.utils.audit import log_audit
from pcntrack.utils.errors import ConflictError, InfrastructureError, ValidationError
from pcntrack.utils.time import utcnow

logger = logging.getLogger(__name__)

OUTCOME_ALIASES = {
    "showed": "showed",
    "show": "showed",
    "showed_won": "showed",
    "no_show": "no_show",
    "no-show": "no_show",
    "no show": "no_show",
    "noshow": "no_show",
    "no_showed": "no_show",
    "noshowed": "no_show",
    "signed": "signed",
    "won": "signed",
    "sale": "signed",
    "closed": "signed",
    "contract_sent": "contract_sent",
    "contract sent": "contract_sent",
    "cancelled": "cancelled",
    "canceled": "cancelled",
}

STATUS_BY_OUTCOME = {
    "showed": AppointmentStatus.showed.value,
    "no_show": AppointmentStatus.no_show.value,
    "signed": AppointmentStatus.signed.value,
    "contract_sent": AppointmentStatus.contract_sent.value,
    "cancelled": AppointmentStatus.cancelled.value,
}

QUALIFICATION_STATUSES = {"qualified_to_purchase", "downsell_opportunity", "disqualified"}
PAYMENT_TYPES = {"payment_plan", "pif"}


def normalize_outcome(raw: Any) -> str | None:
    if raw is None:
        return None
    return OUTCOME_ALIASES.get(str(raw).strip().lower())


def _positive(value: Decimal | int | None) -> bool:
    return value is not None and value > 0


def validate_pcn_submission(submission: PCNSubmission, *, strict: bool = True) -> dict[str, str]:
    """Return field errors for ``submission``; an empty dict means valid.

    Cash collected is required for signed deals in every mode. Strict mode
    adds the per-outcome questionnaire requirements.
    """

    errors: dict[str, str] = {}
    outcome = normalize_outcome(submission.outcome)
    if outcome is None:
        errors["outcome"] = f"Unsupported call outcome: {submission.outcome!r}"
        return errors

    if submission.cash_collected is not None and submission.cash_collected < 0:
        errors["cash_collected"] = "Cash collected cannot be negative"

    if outcome == "signed":
        if not _positive(submission.cash_collected):
            errors["cash_collected"] = "Please enter the cash collected amount"
        if strict:
            if not submission.payment_plan_or_pif:
                errors["payment_plan_or_pif"] = "Please indicate if this is a payment plan or paid in full"
            elif submission.payment_plan_or_pif not in PAYMENT_TYPES:
                errors["payment_plan_or_pif"] = "Payment type must be payment_plan or pif"
            elif submission.payment_plan_or_pif == "payment_plan":
                if not _positive(submission.total_price):
                    errors["total_price"] = "Please enter the total price for the payment plan"
                if not _positive(submission.number_of_payments):
                    errors["number_of_payments"] = "Please enter the number of payments"

    elif outcome == "showed" and strict:
        if not submission.first_call_or_follow_up:
            errors["first_call_or_follow_up"] = "Please indicate if this was a first call or follow up"
        qualification = submission.qualification_status
        if not qualification:
            errors["qualification_status"] = "Please select the prospect's qualification status"
        elif qualification not in QUALIFICATION_STATUSES:
            errors["qualification_status"] = f"Unknown qualification status: {qualification!r}"
        elif qualification == "qualified_to_purchase":
            if submission.was_offer_made is None:
                errors["was_offer_made"] = "Please indicate if an offer was made"
            elif submission.was_offer_made and not submission.why_didnt_move_forward:
                errors["why_didnt_move_forward"] = "Please provide a reason why the prospect didn't move forward"
            elif not submission.was_offer_made and not submission.why_no_offer:
                errors["why_no_offer"] = "Please provide a reason why no offer was made"
        elif qualification == "downsell_opportunity" and not submission.downsell_opportunity:
            errors["downsell_opportunity"] = "Please select a downsell opportunity"
        elif qualification == "disqualified" and not submission.disqualification_reason:
            errors["disqualification_reason"] = "Please provide a disqualification reason"
        if submission.follow_up_scheduled and not submission.nurture_type:
            errors["nurture_type"] = "Please select nurture type for follow-up"

    elif outcome == "no_show" and strict:
        if not submission.no_show_communicative:
            errors["no_show_communicative"] = "Please indicate if the no-show was communicative"

    elif outcome == "cancelled" and strict:
        if not submission.cancellation_reason:
            errors["cancellation_reason"] = "Please provide a cancellation reason"

    return errors


def parse_submission(data: PCNSubmission | Mapping[str, Any]) -> PCNSubmission:
    if isinstance(data, PCNSubmission):
        return data
    try:
        return PCNSubmission.model_validate(data)
    except PydanticValidationError as exc:
        fields = {".".join(str(part) for part in err["loc"]) or "submission": err["msg"] for err in exc.errors()}
        raise ValidationError(
            "PCN submission is invalid.",
            code="PCN_VALIDATION_FAILED",
            details={"fields": fields},
        ) from exc


@dataclass
class SubmissionResult:
    appointment_id: int
    external_id: str
    status: str
    outcome: str
    pcn_submitted: bool
    inclusion_flag: InclusionFlag | None
    revision: int
    submitted_at: datetime
    created: bool

    def as_dict(self) -> dict[str, Any]:
        return {
            "appointment_id": self.appointment_id,
            "external_id": self.external_id,
            "status": self.status,
            "outcome": self.outcome,
            "pcn_submitted": self.pcn_submitted,
            "inclusion_flag": self.inclusion_flag,
            "revision": self.revision,
            "submitted_at": self.submitted_at,
            "created": self.created,
        }


def _record_snapshot(record: PCNRecord | None) -> dict[str, Any] | None:
    if record is None:
        return None
    return {
        "outcome": record.outcome,
        "cash_collected": str(record.cash_collected) if record.cash_collected is not None else None,
        "notes": record.notes,
        **(record.details or {}),
    }


def _diff(previous: Mapping[str, Any] | None, new: Mapping[str, Any]) -> dict[str, dict[str, Any]]:
    previous = previous or {}
    changes: dict[str, dict[str, Any]] = {}
    for key in sorted(set(previous) | set(new)):
        if previous.get(key) != new.get(key):
            changes[key] = {"old": previous.get(key), "new": new.get(key)}
    return changes


def _attribution_snapshot(appointment: Appointment) -> dict[str, Any]:
    contact = appointment.contact
    if contact is None:
        return {}
    return {
        "traffic_source": contact.traffic_source,
        "lead_source": contact.lead_source,
        "confidence": contact.attribution_confidence,
    }


def submit_pcn(
    db: Session,
    appointment_ref: str,
    company_id: int,
    submission: PCNSubmission | Mapping[str, Any],
    actor: Actor,
    *,
    resubmit: bool = False,
    strict: bool = True,
    policy: str | None = None,
    source: str = "manual",
    commit: bool = True,
    now: datetime | None = None,
) -> SubmissionResult:
    """Validate and file a post-call note as one transaction.

    Nothing is written unless validation, authorization, lookup and the
    resubmission policy all pass. With ``commit=False`` the caller owns the
    transaction boundary.
    """

    submission = parse_submission(submission)
    errors = validate_pcn_submission(submission, strict=strict)
    if errors:
        raise ValidationError(
            "PCN submission is invalid.",
            code="PCN_VALIDATION_FAILED",
            details={"fields": errors},
        )
    outcome = normalize_outcome(submission.outcome)

    ensure_company_access(actor, company_id)
    appointment = get_appointment(db, company_id, str(appointment_ref), for_update=True)

    existing = db.execute(
        select(PCNRecord).where(PCNRecord.appointment_id == appointment.id).with_for_update()
    ).scalar_one_or_none()
    policy = (policy or get_settings().PCN_RESUBMISSION_POLICY).lower()
    if (existing is not None or appointment.pcn_submitted) and policy == "reject" and not resubmit:
        raise ConflictError(
            "A PCN has already been submitted for this appointment.",
            code="PCN_ALREADY_SUBMITTED",
            details={
                "appointment_id": appointment.id,
                "revision": existing.revision if existing else None,
            },
        )

    submitted_at = now or utcnow()
    previous = _record_snapshot(existing)
    created = existing is None
    try:
        record = existing or PCNRecord(appointment_id=appointment.id, company_id=company_id, revision=0)
        record.submitted_by_id = actor.user_id
        record.submitted_by_name = actor.name
        record.submitted_at = submitted_at
        record.outcome = outcome
        record.cash_collected = submission.cash_collected
        record.notes = submission.notes
        record.details = submission.detail_fields()
        record.attribution_snapshot = _attribution_snapshot(appointment)
        record.source = source
        record.revision = (record.revision or 0) + 1
        db.add(record)

        versions = dict(appointment.field_versions or {})
        appointment.status = STATUS_BY_OUTCOME[outcome]
        appointment.outcome = outcome
        versions["status"] = versions["outcome"] = submitted_at.isoformat()
        if submission.cash_collected is not None:
            appointment.cash_collected = submission.cash_collected
            versions["cash_collected"] = submitted_at.isoformat()
        appointment.field_versions = versions
        appointment.pcn_submitted = True
        appointment.pcn_submitted_at = submitted_at
        appointment.pcn_submitted_by_id = actor.user_id
        flag = inclusion.recompute(db, appointment, now=submitted_at)
        db.add(appointment)
        db.flush()

        new = _record_snapshot(record)
        log_audit(
            db,
            actor=actor.label,
            action="PCN_CREATED" if created else "PCN_UPDATED",
            entity="PCNRecord",
            entity_id=record.id,
            company_id=company_id,
            data={
                "appointment_id": appointment.id,
                "company_id": company_id,
                "source": source,
                "revision": record.revision,
                "previous": previous,
                "new": new,
                "changes": _diff(previous, new),
            },
        )
        if commit:
            db.commit()
        else:
            db.flush()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception(
            "PCN commit failed",
            extra={"appointment_id": appointment.id, "company_id": company_id},
        )
        raise InfrastructureError(
            "Could not store the PCN submission.",
            code="PCN_COMMIT_FAILED",
            details={"appointment_id": appointment.id},
        ) from exc

    logger.info(
        "PCN submitted",
        extra={
            "appointment_id": appointment.id,
            "company_id": company_id,
            "outcome": outcome,
            "revision": record.revision,
            "source": source,
            "actor": actor.label,
        },
    )
    return SubmissionResult(
        appointment_id=appointment.id,
        external_id=appointment.external_id,
        status=appointment.status,
        outcome=outcome,
        pcn_submitted=True,
        inclusion_flag=flag,
        revision=record.revision,
        submitted_at=submitted_at,
        created=created,
    )


__all__ = [
    "OUTCOME_ALIASES",
    "STATUS_BY_OUTCOME",
    "SubmissionResult",
    "normalize_outcome",
    "parse_submission",
    "validate_pcn_submission",
    "submit_pcn",
]
