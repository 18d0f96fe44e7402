"""Ordered field-extraction rules for loosely shaped CRM webhook payloads.

GHL delivers the same logical field under different keys depending on the
trigger (marketplace event, workflow webhook, custom-field survey). Each
logical field is described by a :class:`FieldRule` listing candidate keys in
priority order; the first non-empty value wins. Keys are dotted paths into the
payload and are matched case-insensitively.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping


def flatten_payload(payload: Mapping[str, Any], prefix: str = "") -> dict[str, Any]:
    """Index a nested payload by lower-cased dotted path.

    Lists are kept as values and not descended into. When two keys collide
    after lower-casing, the first one seen wins.
    """

    index: dict[str, Any] = {}
    for key, value in payload.items():
        path = f"{prefix}{str(key).strip().lower()}"
        if path not in index:
            index[path] = value
        if isinstance(value, Mapping):
            for sub_key, sub_value in flatten_payload(value, f"{path}.").items():
                index.setdefault(sub_key, sub_value)
    return index


def is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (list, dict)):
        return bool(value)
    return True


@dataclass(frozen=True)
class FieldRule:
    """A logical field and its candidate keys, highest priority first."""

    name: str
    candidates: tuple[str, ...]

    def resolve(self, index: Mapping[str, Any]) -> Any | None:
        for candidate in self.candidates:
            value = index.get(candidate.lower())
            if is_present(value):
                return value.strip() if isinstance(value, str) else value
        return None


def lookup(payload: Mapping[str, Any], path: str) -> Any | None:
    """Resolve a single dotted path against a payload, case-insensitively."""

    return FieldRule(path, (path,)).resolve(flatten_payload(payload))


# --- GHL appointment / contact webhooks ---------------------------------------

EVENT_TYPE = FieldRule("event_type", ("type", "event_type", "eventtype", "event.type", "customdata.type", "data.type"))
EVENT_ID = FieldRule("event_id", ("webhookid", "webhook_id", "eventid", "event_id", "event.id"))
EVENT_TIMESTAMP = FieldRule(
    "event_timestamp",
    (
        "eventtimestamp",
        "event_timestamp",
        "timestamp",
        "dateupdated",
        "date_updated",
        "updatedat",
        "updated_at",
        "appointment.dateupdated",
        "calendar.dateupdated",
        "customdata.timestamp",
    ),
)
LOCATION_ID = FieldRule(
    "location_id",
    ("locationid", "location_id", "location.id", "customdata.locationid", "appointment.locationid", "data.locationid"),
)
APPOINTMENT_ID = FieldRule(
    "appointment_id",
    (
        "appointmentid",
        "appointment_id",
        "appointment.id",
        "appointment.appointmentid",
        "triggerdata.appointment.id",
        "customdata.appointmentid",
        "customdata.appointment_id",
        "data.appointmentid",
        "event.appointmentid",
        "calendar.appointmentid",
        "pcn - appointment id",
        "call notes - appointment id",
    ),
)
# Marketplace appointment events carry the appointment id as the root "id".
APPOINTMENT_ROOT_ID = FieldRule("appointment_root_id", ("id",))
APPOINTMENT_STATUS = FieldRule(
    "appointment_status",
    (
        "appointmentstatus",
        "appointment_status",
        "status",
        "appointment.appointmentstatus",
        "appointment.status",
        "triggerdata.appointment.status",
        "calendar.appoinmentstatus",  # sic, GHL workflow payloads
        "calendar.appointmentstatus",
        "calendar.status",
        "customdata.appointmentstatus",
        "customdata.status",
        "data.appointmentstatus",
    ),
)
START_TIME = FieldRule(
    "start_time",
    (
        "starttime",
        "start_time",
        "scheduledat",
        "scheduled_at",
        "appointment.starttime",
        "appointment.start_time",
        "triggerdata.appointment.starttime",
        "calendar.starttime",
        "calendar.start_time",
        "customdata.starttime",
        "customdata.start_time",
        "data.starttime",
        "appointment date",
        "call booked date",
    ),
)
CALENDAR_ID = FieldRule(
    "calendar_id",
    ("calendarid", "calendar_id", "calendar.id", "appointment.calendarid", "customdata.calendarid", "data.calendarid"),
)
CALENDAR_NAME = FieldRule(
    "calendar_name",
    ("calendarname", "calendar.calendarname", "calendar.name", "appointment.calendarname", "customdata.calendarname"),
)
ASSIGNED_USER_ID = FieldRule(
    "assigned_user_id",
    (
        "assigneduserid",
        "assigned_user_id",
        "assigneduser",
        "appointment.assigneduserid",
        "calendar.assigneduserid",
        "customdata.assigneduserid",
        "customdata.assigned_user_id",
        "data.assigneduserid",
    ),
)
TITLE = FieldRule("title", ("title", "appointment.title", "calendar.title", "customdata.title"))
CONTACT_ID = FieldRule(
    "contact_id",
    ("contactid", "contact_id", "contact.id", "appointment.contactid", "customdata.contactid", "data.contactid"),
)
CONTACT_NAME = FieldRule(
    "contact_name",
    ("contact.name", "contactname", "full_name", "fullname", "customdata.contactname", "contact.full_name"),
)
CONTACT_FIRST_NAME = FieldRule("contact_first_name", ("firstname", "first_name", "contact.firstname", "contact.first_name"))
CONTACT_LAST_NAME = FieldRule("contact_last_name", ("lastname", "last_name", "contact.lastname", "contact.last_name"))
CONTACT_EMAIL = FieldRule("contact_email", ("email", "contact.email", "contactemail", "customdata.email"))
CONTACT_PHONE = FieldRule("contact_phone", ("phone", "contact.phone", "contactphone", "customdata.phone"))
CONTACT_TAGS = FieldRule("contact_tags", ("tags", "contact.tags", "customdata.tags"))


# --- PCN survey webhooks (GHL form / custom-field automation) ----------------

SURVEY_APPOINTMENT_ID = FieldRule(
    "appointment_id",
    (
        "pcn-appointment-id",
        "pcn_appointment_id",
        "pcn appointment id",
        "pcn - appointment id",
        "appointmentid",
        "appointment_id",
        "appointment id",
        "call notes - appointment id",
        "calendar.appointmentid",
        "appointment.id",
        "data.appointmentid",
        "customdata.appointmentid",
    ),
)
SURVEY_OUTCOME = FieldRule(
    "call_outcome",
    ("pcn - call outcome", "call outcome", "pcn_call_outcome", "outcome", "callnotes-calloutcome", "customdata.outcome"),
)
SURVEY_NOTES = FieldRule(
    "notes",
    ("notes", "pcn - notes", "pcn_notes", "call notes - signed notes", "pcn - fathom notes", "call notes - fathom notes"),
)
SURVEY_CASH = FieldRule(
    "cash_collected",
    (
        "pcn - cash collected",
        "pcn_cash_collected",
        "cash collected",
        "payment amount",
        "charged amount",
        "deposit amount",
    ),
)
SURVEY_FIRST_CALL = FieldRule(
    "first_call_or_follow_up",
    ("pcn - first call or follow up", "pcn_first_call_or_follow_up", "first call or follow up", "call notes - first call or follow up"),
)
SURVEY_QUALIFICATION = FieldRule(
    "qualification_status",
    ("pcn - qualification status", "pcn_qualification_status", "qualification status", "call notes - qualification status"),
)
SURVEY_OFFER_MADE = FieldRule(
    "was_offer_made",
    ("pcn - did you make an offer?", "call notes - did you make an offer?", "pcn_did_you_make_an_offer", "did you make an offer"),
)
SURVEY_WHY_NOT = FieldRule(
    "why_didnt_move_forward",
    (
        "pcn - why didn't the prospect move forward?",
        "pcn - why didnt the prospect move forward?",
        "call notes - why didn't the prospect move forward?",
        "why didn't the prospect move forward?",
        "why didnt move forward",
        "pcn_why_didnt_move_forward",
    ),
)
SURVEY_FOLLOW_UP = FieldRule(
    "follow_up_scheduled",
    ("pcn - was a follow up scheduled?", "pcn_was_follow_up_scheduled", "was a follow up scheduled", "follow up scheduled"),
)
SURVEY_FOLLOW_UP_DATE = FieldRule(
    "follow_up_date",
    ("pcn - follow up date", "follow up date", "pcn_follow_up_date", "call notes - follow up date"),
)
SURVEY_NURTURE = FieldRule(
    "nurture_type",
    ("pcn - nurture type", "pcn_nurture_type", "nurture type", "call notes - nurture type"),
)
SURVEY_NO_SHOW_COMMUNICATIVE = FieldRule(
    "no_show_communicative",
    ("pcn - was the no show communicative?", "pcn_was_no_show_communicative", "was the no show communicative"),
)
SURVEY_CANCELLATION_REASON = FieldRule(
    "cancellation_reason",
    ("pcn - cancellation reason", "pcn_cancellation_reason", "cancellation reason", "call notes - cancellation reason"),
)
SURVEY_DQ_REASON = FieldRule(
    "disqualification_reason",
    ("pcn - dq reason", "pcn_dq_reason", "dq reason", "call notes - dq reason"),
)
SURVEY_OBJECTION = FieldRule(
    "objection_type",
    ("pcn - objection type", "pcn_objection_type", "objection type", "call notes - objection type"),
)

SURVEY_RULES: tuple[FieldRule, ...] = (
    SURVEY_NOTES,
    SURVEY_CASH,
    SURVEY_FIRST_CALL,
    SURVEY_QUALIFICATION,
    SURVEY_OFFER_MADE,
    SURVEY_WHY_NOT,
    SURVEY_FOLLOW_UP,
    SURVEY_FOLLOW_UP_DATE,
    SURVEY_NURTURE,
    SURVEY_NO_SHOW_COMMUNICATIVE,
    SURVEY_CANCELLATION_REASON,
    SURVEY_DQ_REASON,
    SURVEY_OBJECTION,
)


def extract_all(index: Mapping[str, Any], rules: Iterable[FieldRule]) -> dict[str, Any]:
    """Resolve every rule, keeping only the fields that were found."""

    found: dict[str, Any] = {}
    for rule in rules:
        value = rule.resolve(index)
        if value is not None:
            found[rule.name] = value
    return found


__all__ = [
    "FieldRule",
    "flatten_payload",
    "is_present",
    "lookup",
    "extract_all",
    "SURVEY_RULES",
]
