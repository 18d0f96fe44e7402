from datetime import date
from decimal import Decimal

import pytest

from pcntrack.services.pcn import validate_pcn_submission
from pcntrack.services.survey import parse_boolean, parse_cash, parse_survey
from pcntrack.utils.errors import ValidationError


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("$1,500.00", Decimal("1500.00")),
        ("2500", Decimal("2500")),
        (750, Decimal("750")),
        ("-250", Decimal("-250")),
        ("-$1,500", Decimal("-1500")),
        ("1.500,00", Decimal("1500.00")),
        ("1.234.567", Decimal("1234567")),
        ("1 500,5", Decimal("1500.5")),
        ("12,50", Decimal("12.50")),
        ("0.5", Decimal("0.5")),
        ("1.500", None),
        ("1,50,000", None),
        ("1,5.00", None),
        ("1500-2000", None),
        ("--5", None),
        ("", None),
        ("n/a", None),
        (None, None),
        (True, None),
    ],
)
def test_parse_cash(raw, expected):
    assert parse_cash(raw) == expected


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("Yes", True), ("y", True), ("1", True), (1, True), ("No", False), ("false", False), (0, False), ("maybe", None)],
)
def test_parse_boolean(raw, expected):
    assert parse_boolean(raw) is expected


def test_showed_survey_gets_form_defaults():
    ref, submission = parse_survey({"PCN - Appointment ID": "appt-9", "PCN - Call Outcome": "Showed"})

    assert ref == "appt-9"
    assert submission.outcome == "showed"
    assert submission.first_call_or_follow_up == "first_call"
    assert submission.was_offer_made is False
    assert submission.follow_up_scheduled is False


def test_signed_survey_reads_cash_and_notes():
    ref, submission = parse_survey(
        {
            "customData": {"appointmentId": "appt-10"},
            "Call Outcome": "Signed",
            "PCN - Cash Collected": "$3,000",
            "PCN - Notes": "  Paid in full  ",
        }
    )

    assert ref == "appt-10"
    assert submission.outcome == "signed"
    assert submission.cash_collected == Decimal("3000")
    assert submission.notes == "Paid in full"


def test_negative_survey_cash_keeps_its_sign_and_fails_validation():
    _, submission = parse_survey(
        {"PCN - Appointment ID": "appt-15", "PCN - Call Outcome": "Signed", "PCN - Cash Collected": "-$1,500"}
    )

    assert submission.cash_collected == Decimal("-1500")
    assert "cash_collected" in validate_pcn_submission(submission, strict=False)


def test_follow_up_answers_are_normalized():
    _, submission = parse_survey(
        {
            "PCN - Appointment ID": "appt-11",
            "PCN - Call Outcome": "Showed",
            "PCN - First Call or Follow Up": "Follow Up Call",
            "PCN - Qualification Status": "Downsell opportunity",
            "PCN - Was a follow up scheduled?": "Yes",
            "PCN - Follow Up Date": "2025-11-21T15:00:00Z",
            "PCN - Nurture Type": "Budget",
        }
    )

    assert submission.first_call_or_follow_up == "follow_up"
    assert submission.qualification_status == "downsell_opportunity"
    assert submission.follow_up_scheduled is True
    assert submission.follow_up_date == date(2025, 11, 21)
    assert submission.nurture_type == "budget"


def test_follow_up_without_date_is_dropped():
    _, submission = parse_survey(
        {
            "PCN - Appointment ID": "appt-12",
            "PCN - Call Outcome": "Showed",
            "PCN - Was a follow up scheduled?": "Yes",
        }
    )
    assert submission.follow_up_scheduled is False


def test_cancelled_survey_defaults_the_reason():
    _, submission = parse_survey({"PCN - Appointment ID": "appt-13", "PCN - Call Outcome": "Cancelled"})
    assert submission.outcome == "cancelled"
    assert submission.cancellation_reason == "Not specified"


def test_survey_without_appointment_id_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        parse_survey({"PCN - Call Outcome": "Showed"})
    assert excinfo.value.code == "SURVEY_APPOINTMENT_MISSING"


def test_survey_with_unknown_outcome_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        parse_survey({"PCN - Appointment ID": "appt-14", "PCN - Call Outcome": "Rescheduled twice"})
    assert excinfo.value.code == "SURVEY_OUTCOME_INVALID"
    assert excinfo.value.details == {"outcome": "Rescheduled twice"}
