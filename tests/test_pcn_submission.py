from decimal import Decimal

import pytest
from sqlalchemy import select

from pcntrack.models import ApiScope, AuditLog, InclusionFlag, PCNRecord
from pcntrack.schemas.pcn import PCNSubmission
from pcntrack.services.authz import Actor
from pcntrack.services.pcn import submit_pcn, validate_pcn_submission
from pcntrack.utils.errors import AuthorizationError, ConflictError, NotFoundError, ValidationError

SIGNED = {"outcome": "won", "cash_collected": "1500.00", "payment_plan_or_pif": "pif", "notes": "Closed on call"}


def _actor_for(company, user_id=None) -> Actor:
    return Actor(label="apikey:test", user_id=user_id, name="Casey Closer", company_id=company.id)


def _records(db_session, appointment):
    return list(db_session.scalars(select(PCNRecord).where(PCNRecord.appointment_id == appointment.id)))


def _audit_actions(db_session, record):
    return list(
        db_session.scalars(
            select(AuditLog.action).where(AuditLog.entity == "PCNRecord", AuditLog.entity_id == record.id)
        )
    )


def test_signed_without_cash_changes_nothing(db_session, make_company, make_appointment):
    company = make_company()
    appointment = make_appointment(company)

    with pytest.raises(ValidationError) as excinfo:
        submit_pcn(db_session, appointment.external_id, company.id, {"outcome": "won"}, _actor_for(company))

    assert excinfo.value.code == "PCN_VALIDATION_FAILED"
    assert excinfo.value.details["fields"]["cash_collected"] == "Please enter the cash collected amount"
    db_session.refresh(appointment)
    assert appointment.pcn_submitted is False
    assert appointment.status == "scheduled"
    assert _records(db_session, appointment) == []


def test_signed_pcn_updates_appointment_and_audits(db_session, make_company, make_user, make_appointment):
    company = make_company()
    closer = make_user(company)
    appointment = make_appointment(company, closer=closer)

    result = submit_pcn(
        db_session, appointment.external_id, company.id, SIGNED, _actor_for(company, user_id=closer.id)
    )

    assert result.created is True
    assert result.outcome == "signed"
    assert result.revision == 1
    db_session.refresh(appointment)
    assert appointment.status == "signed"
    assert appointment.outcome == "signed"
    assert appointment.cash_collected == Decimal("1500.00")
    assert appointment.pcn_submitted is True
    assert appointment.pcn_submitted_by_id == closer.id
    assert appointment.inclusion_flag is InclusionFlag.included

    [record] = _records(db_session, appointment)
    assert record.submitted_by_name == "Casey Closer"
    assert record.details == {"payment_plan_or_pif": "pif", "follow_up_scheduled": False}
    assert _audit_actions(db_session, record) == ["PCN_CREATED"]


def test_resubmission_is_rejected_by_default(db_session, make_company, make_appointment):
    company = make_company()
    appointment = make_appointment(company)
    actor = _actor_for(company)
    submit_pcn(db_session, appointment.external_id, company.id, SIGNED, actor, policy="reject")

    with pytest.raises(ConflictError) as excinfo:
        submit_pcn(
            db_session, appointment.external_id, company.id, {**SIGNED, "cash_collected": "900"}, actor, policy="reject"
        )
    assert excinfo.value.code == "PCN_ALREADY_SUBMITTED"
    assert _records(db_session, appointment)[0].outcome == "signed"


def test_explicit_resubmit_replaces_and_logs_changes(db_session, make_company, make_appointment):
    company = make_company()
    appointment = make_appointment(company)
    actor = _actor_for(company)
    submit_pcn(db_session, appointment.external_id, company.id, SIGNED, actor, policy="reject")

    updated = {**SIGNED, "cash_collected": "2000"}
    result = submit_pcn(
        db_session, appointment.external_id, company.id, updated, actor, policy="reject", resubmit=True
    )
    assert result.created is False
    assert result.revision == 2

    [record] = _records(db_session, appointment)
    assert record.cash_collected == Decimal("2000")
    audit = db_session.scalars(
        select(AuditLog).where(AuditLog.action == "PCN_UPDATED", AuditLog.entity_id == record.id)
    ).one()
    assert audit.data_json["changes"]["cash_collected"] == {"old": "1500.00", "new": "2000"}


def test_overwrite_policy_accepts_resubmission(db_session, make_company, make_appointment):
    company = make_company()
    appointment = make_appointment(company)
    actor = _actor_for(company)
    submit_pcn(db_session, appointment.external_id, company.id, SIGNED, actor, policy="overwrite")

    cancelled = {"outcome": "cancelled", "cancellation_reason": "Prospect rescheduled"}
    result = submit_pcn(db_session, appointment.external_id, company.id, cancelled, actor, policy="overwrite")
    assert result.status == "cancelled"
    assert result.inclusion_flag is InclusionFlag.excluded


def test_actor_from_another_company_is_denied(db_session, make_company, make_appointment):
    company = make_company()
    other = make_company()
    appointment = make_appointment(company)

    with pytest.raises(AuthorizationError):
        submit_pcn(db_session, appointment.external_id, company.id, SIGNED, _actor_for(other))
    assert _records(db_session, appointment) == []


def test_unknown_appointment_is_not_found(db_session, make_company):
    company = make_company()
    with pytest.raises(NotFoundError):
        submit_pcn(db_session, "missing", company.id, SIGNED, _actor_for(company))


def test_strict_showed_requires_questionnaire():
    errors = validate_pcn_submission(PCNSubmission(outcome="showed"))
    assert set(errors) == {"first_call_or_follow_up", "qualification_status"}

    lenient = validate_pcn_submission(PCNSubmission(outcome="showed"), strict=False)
    assert lenient == {}


def test_qualified_prospect_needs_offer_answers():
    submission = PCNSubmission(
        outcome="showed",
        first_call_or_follow_up="first_call",
        qualification_status="qualified_to_purchase",
        was_offer_made=False,
    )
    assert validate_pcn_submission(submission) == {"why_no_offer": "Please provide a reason why no offer was made"}


def test_payment_plan_requires_terms():
    submission = PCNSubmission(outcome="signed", cash_collected=Decimal("500"), payment_plan_or_pif="payment_plan")
    assert set(validate_pcn_submission(submission)) == {"total_price", "number_of_payments"}


def test_unknown_outcome_and_negative_cash():
    assert "outcome" in validate_pcn_submission(PCNSubmission(outcome="maybe"))
    errors = validate_pcn_submission(PCNSubmission(outcome="no_show", cash_collected=Decimal("-1")), strict=False)
    assert errors == {"cash_collected": "Cash collected cannot be negative"}


@pytest.mark.anyio
async def test_submit_pcn_route(client, make_company, make_user, make_appointment, headers_for):
    company = make_company()
    closer = make_user(company)
    appointment = make_appointment(company, closer=closer)

    response = await client.post(
        f"/appointments/{appointment.external_id}/pcn",
        json={"company_id": company.id, "submission": SIGNED},
        headers=headers_for(ApiScope.closer, user=closer),
    )
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "signed"
    assert body["pcn_submitted"] is True
    assert body["revision"] == 1


@pytest.mark.anyio
async def test_submit_pcn_route_errors(client, make_company, make_user, make_appointment, headers_for):
    company = make_company()
    other = make_company()
    appointment = make_appointment(company)
    outsider = headers_for(ApiScope.closer, user=make_user(other))
    insider = headers_for(ApiScope.closer, user=make_user(company))
    url = f"/appointments/{appointment.external_id}/pcn"

    unauthenticated = await client.post(url, json={"company_id": company.id, "submission": SIGNED})
    assert unauthenticated.status_code == 401

    denied = await client.post(url, json={"company_id": company.id, "submission": SIGNED}, headers=outsider)
    assert denied.status_code == 403
    assert denied.json()["error"]["code"] == "COMPANY_ACCESS_DENIED"

    invalid = await client.post(url, json={"company_id": company.id, "submission": {"outcome": "won"}}, headers=insider)
    assert invalid.status_code == 422
    assert invalid.json()["error"]["code"] == "PCN_VALIDATION_FAILED"

    missing = await client.post(
        "/appointments/nope/pcn", json={"company_id": company.id, "submission": SIGNED}, headers=insider
    )
    assert missing.status_code == 404

    await client.post(url, json={"company_id": company.id, "submission": SIGNED}, headers=insider)
    conflict = await client.post(url, json={"company_id": company.id, "submission": SIGNED}, headers=insider)
    assert conflict.status_code == 409


@pytest.mark.anyio
async def test_read_appointment_and_pending_list(client, make_company, make_user, make_appointment, headers_for):
    company = make_company()
    closer = make_user(company, name="Jordan")
    appointment = make_appointment(company, closer=closer)
    headers = headers_for(ApiScope.manager, user=make_user(company))

    response = await client.get(
        f"/appointments/{appointment.id}", params={"company_id": company.id}, headers=headers
    )
    assert response.status_code == 200
    assert response.json()["external_id"] == appointment.external_id

    pending = await client.get("/appointments/pending-pcns", params={"company_id": company.id}, headers=headers)
    assert pending.status_code == 200
    [item] = pending.json()
    assert item["appointment_id"] == appointment.id
    assert item["closer_name"] == "Jordan"
    assert item["urgency"] == "high"
