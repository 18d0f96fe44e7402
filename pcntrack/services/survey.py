"""Turn GHL post-call survey submissions into PCN submissions."""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from pcntrack.schemas.pcn import PCNSubmission
from pcntrack.services import extraction
from pcntrack.services.pcn import normalize_outcome, parse_submission
from pcntrack.utils.errors import ValidationError
from pcntrack.utils.time import parse_datetime

TRUE_VALUES = {"yes", "true", "1", "y"}
FALSE_VALUES = {"no", "false", "0", "n"}
NOT_SPECIFIED = "Not specified"


def parse_boolean(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return value > 0
    text = str(value).strip().lower()
    if text in TRUE_VALUES:
        return True
    if text in FALSE_VALUES:
        return False
    return None


def _grouped(text: str, separator: str) -> bool:
    return re.fullmatch(r"\d{1,3}(?:%s\d{3})+" % re.escape(separator), text) is not None


def _plain_amount(digits: str) -> str | None:
    """Rewrite ``digits`` with ``.`` as the only decimal mark, or None when unreadable."""

    if "," in digits and "." in digits:
        decimal = "," if digits.rfind(",") > digits.rfind(".") else "."
        group = "." if decimal == "," else ","
        integer, _, fraction = digits.rpartition(decimal)
        if not fraction.isdigit() or not _grouped(integer, group):
            return None
        return integer.replace(group, "") + "." + fraction
    if "," not in digits and "." not in digits:
        return digits
    separator = "," if "," in digits else "."
    if digits.count(separator) > 1:
        return digits.replace(separator, "") if _grouped(digits, separator) else None
    integer, _, fraction = digits.partition(separator)
    if not fraction.isdigit():
        return None
    if len(fraction) == 3:
        # "1,500" groups thousands; "1.500" may be 1.5 or 1500.
        return integer + fraction if separator == "," and integer else None
    if separator == "," and len(fraction) > 2:
        return None
    return (integer or "0") + "." + fraction


def parse_cash(value: Any) -> Decimal | None:
    """Read amounts such as ``"$1,500.00"``, ``"-250"`` or ``"1.500,00"``.

    When both separators appear the rightmost one is the decimal mark. Input
    that could mean two different amounts is None, like anything unparseable.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float, Decimal)):
        return Decimal(str(value))
    text = re.sub(r"[^\d.,-]", "", str(value))
    negative = text.startswith("-")
    digits = text[1:] if negative else text
    if not digits or "-" in digits:
        return None
    plain = _plain_amount(digits)
    if plain is None:
        return None
    try:
        amount = Decimal(plain)
    except InvalidOperation:
        return None
    return -amount if negative else amount


def _first_call_or_follow_up(value: Any) -> str | None:
    text = str(value or "").lower()
    if "follow" in text:
        return "follow_up"
    if "first" in text:
        return "first_call"
    return None


def _qualification(value: Any) -> str | None:
    text = str(value or "").lower()
    if "disqual" in text:
        return "disqualified"
    if "downsell" in text:
        return "downsell_opportunity"
    if "qualified" in text:
        return "qualified_to_purchase"
    return None


def _nurture_type(value: Any) -> str | None:
    text = str(value or "").strip().lower()
    if not text:
        return None
    if "redzone" in text or "within 7" in text or "timing" in text:
        return "timing"
    if "budget" in text:
        return "budget"
    if "think" in text or "follow up" in text:
        return "thinking_it_over"
    if "not qualified" in text:
        return "not_qualified_yet"
    return "other"


def _no_show_communicative(value: Any) -> str | None:
    text = str(value or "").strip().lower()
    if not text:
        return None
    if "not communicative" in text or text in {"no", "n"}:
        return "not_communicative"
    if "communicative" in text and "rescheduled" in text:
        return "communicative_rescheduled"
    if "communicative" in text or text in {"yes", "y"}:
        return "communicative_up_to_call"
    return None


def parse_survey(payload: Mapping[str, Any]) -> tuple[str, PCNSubmission]:
    """Extract the appointment reference and a lenient submission from a survey payload.

    Missing optional answers get the defaults a form submission implies
    (first call vs follow-up, no offer, "Not specified" reasons); cash for a
    signed deal is never defaulted.
    """

    index = extraction.flatten_payload(payload)
    appointment_ref = extraction.SURVEY_APPOINTMENT_ID.resolve(index)
    if appointment_ref is None:
        raise ValidationError("Appointment ID not found in payload.", code="SURVEY_APPOINTMENT_MISSING")

    raw_outcome = extraction.SURVEY_OUTCOME.resolve(index)
    outcome = normalize_outcome(re.sub(r"[_\s-]+", "_", str(raw_outcome or "").strip().lower()))
    if outcome is None:
        outcome = normalize_outcome(raw_outcome)
    if outcome is None:
        raise ValidationError(
            "Unsupported or missing call outcome in payload.",
            code="SURVEY_OUTCOME_INVALID",
            details={"outcome": raw_outcome},
        )

    answers = extraction.extract_all(index, extraction.SURVEY_RULES)
    follow_up_date = parse_datetime(answers.get("follow_up_date"))
    data: dict[str, Any] = {
        "outcome": outcome,
        "notes": answers.get("notes"),
        "cash_collected": parse_cash(answers.get("cash_collected")),
        "first_call_or_follow_up": _first_call_or_follow_up(answers.get("first_call_or_follow_up")),
        "qualification_status": _qualification(answers.get("qualification_status")),
        "was_offer_made": parse_boolean(answers.get("was_offer_made")),
        "why_didnt_move_forward": answers.get("why_didnt_move_forward"),
        "disqualification_reason": answers.get("disqualification_reason"),
        "objection_type": answers.get("objection_type"),
        "follow_up_scheduled": parse_boolean(answers.get("follow_up_scheduled")) or False,
        "follow_up_date": follow_up_date.date() if follow_up_date else None,
        "nurture_type": _nurture_type(answers.get("nurture_type")),
        "no_show_communicative": _no_show_communicative(answers.get("no_show_communicative")),
        "cancellation_reason": answers.get("cancellation_reason"),
    }

    if outcome == "showed":
        if not data["first_call_or_follow_up"]:
            data["first_call_or_follow_up"] = "follow_up" if data["follow_up_scheduled"] else "first_call"
        if data["was_offer_made"] is None:
            data["was_offer_made"] = False
        if data["was_offer_made"] and not data["why_didnt_move_forward"]:
            data["why_didnt_move_forward"] = NOT_SPECIFIED
        if data["follow_up_scheduled"] and not data["follow_up_date"]:
            data["follow_up_scheduled"] = False
        if data["follow_up_scheduled"] and not data["nurture_type"]:
            data["nurture_type"] = "other"
    elif outcome == "cancelled" and not data["cancellation_reason"]:
        data["cancellation_reason"] = NOT_SPECIFIED

    return str(appointment_ref), parse_submission(data)


__all__ = ["parse_boolean", "parse_cash", "parse_survey"]
