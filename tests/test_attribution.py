import pytest
from sqlalchemy import select

from pcntrack.models import AttributionStrategy, Contact
from pcntrack.services import contacts
from pcntrack.services.attribution import (
    AttributionConfig,
    CalendarInfo,
    resolve_attribution,
    source_from_calendar_name,
    source_from_tags,
    validate_attribution_config,
)
from pcntrack.services.contacts import sync_contact
from pcntrack.utils.errors import ValidationError


def _config(strategy: AttributionStrategy, field: str | None = None) -> AttributionConfig:
    return validate_attribution_config(strategy, field)


def test_none_strategy_resolves_nothing():
    assert resolve_attribution({"contact": {"source": "Meta"}}, _config(AttributionStrategy.none)) is None


def test_ghl_fields_defaults_to_contact_source():
    result = resolve_attribution({"contact": {"source": "Facebook Ads"}}, _config(AttributionStrategy.ghl_fields))
    assert result.traffic_source == "Facebook Ads"
    assert result.confidence == 1.0


def test_ghl_fields_reads_flat_contact_payloads():
    result = resolve_attribution({"source": "Google"}, _config(AttributionStrategy.ghl_fields))
    assert result.traffic_source == "Google"


def test_ghl_fields_custom_path():
    config = _config(AttributionStrategy.ghl_fields, "customData.utm_source")
    result = resolve_attribution({"customData": {"utm_source": "youtube"}}, config)
    assert result.traffic_source == "youtube"
    assert resolve_attribution({"contact": {"source": "Meta"}}, config) is None


@pytest.mark.parametrize(
    ("name", "token"),
    [
        ("Strategy Call (META)", "META"),
        ("Strategy Call [YT]", "YT"),
        ("Strategy Call - GOOGLE", "GOOGLE"),
        ("Strategy Call", None),
        (None, None),
    ],
)
def test_calendar_name_tokens(name, token):
    assert source_from_calendar_name(name) == token


def test_calendar_override_beats_name_pattern():
    calendar = CalendarInfo(external_id="cal-1", name="Strategy Call (META)", traffic_source="YouTube")
    result = resolve_attribution({}, _config(AttributionStrategy.calendars), calendar=calendar)
    assert result.traffic_source == "YouTube"
    assert result.confidence == 1.0


def test_calendar_pattern_and_fallback_confidence():
    config = _config(AttributionStrategy.calendars)
    pattern = resolve_attribution({}, config, calendar=CalendarInfo(name="Strategy Call (META)"))
    assert (pattern.traffic_source, pattern.confidence) == ("META", 0.8)

    fallback = resolve_attribution({}, config, calendar=CalendarInfo(external_id="cal-1", name="Discovery"))
    assert (fallback.traffic_source, fallback.confidence) == ("Discovery", 0.5)


def test_calendar_strategy_reads_payload_without_calendar_row():
    payload = {"calendar": {"id": "cal-2", "name": "Demo [TIKTOK]"}}
    result = resolve_attribution(payload, _config(AttributionStrategy.calendars))
    assert result.traffic_source == "TIKTOK"


def test_hyros_strategy():
    payload = {"hyros": {"lastSource": "facebook", "firstSource": "google"}}
    result = resolve_attribution(payload, _config(AttributionStrategy.hyros))
    assert result.traffic_source == "facebook"
    assert result.lead_source == "google"


def test_tags_first_matching_tag_wins():
    assert source_from_tags(["vip", "source:instagram", "meta"]) == "instagram"
    assert source_from_tags(["customer", "Meta"]) == "Meta"
    assert source_from_tags(["vip"]) is None


def test_tags_strategy_accepts_comma_separated_tags():
    result = resolve_attribution({"tags": "lead, traffic-tiktok"}, _config(AttributionStrategy.tags))
    assert result.traffic_source == "tiktok"


def test_unknown_strategy_is_rejected_at_configuration_time():
    with pytest.raises(ValidationError) as excinfo:
        validate_attribution_config("utm_magic")
    assert excinfo.value.code == "INVALID_ATTRIBUTION_STRATEGY"


def test_malformed_source_field_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        validate_attribution_config("ghl_fields", "contact..source")
    assert excinfo.value.code == "INVALID_ATTRIBUTION_FIELD"


def test_non_field_strategies_drop_source_field():
    config = validate_attribution_config("calendars", "contact.source")
    assert config.source_field is None
    assert config.calendar_based is True


def test_resolved_attribution_is_never_recomputed(db_session, make_company):
    company = make_company(strategy=AttributionStrategy.tags)
    contact = sync_contact(
        db_session,
        company,
        external_id="c-1",
        attributes={"name": "Pat Prospect", "tags": ["source:meta"]},
        payload={"tags": ["source:meta"], "contact": {"source": "Google"}},
    )
    assert contact.traffic_source == "meta"
    resolved_at = contact.attribution_resolved_at

    company.attribution_strategy = AttributionStrategy.ghl_fields
    db_session.flush()
    again = sync_contact(
        db_session,
        company,
        external_id="c-1",
        attributes={"name": "Pat Prospect"},
        payload={"contact": {"source": "Google"}},
    )
    assert again.id == contact.id
    assert again.traffic_source == "meta"
    assert again.attribution_resolved_at == resolved_at


def test_concurrent_contact_insert_reuses_the_existing_row(db_session, make_company, monkeypatch):
    company = make_company(strategy=AttributionStrategy.ghl_fields)
    existing = Contact(company_id=company.id, external_id="c-race", name="Pat", tags=[], custom_fields={})
    db_session.add(existing)
    db_session.commit()

    load = contacts._load_for_update
    calls = []

    def lookup_misses_once(*args):
        calls.append(args)
        return None if len(calls) == 1 else load(*args)

    monkeypatch.setattr(contacts, "_load_for_update", lookup_misses_once)
    contact = sync_contact(
        db_session,
        company,
        external_id="c-race",
        attributes={"name": "Pat Prospect", "email": "pat@example.com"},
        payload={"contact": {"source": "Facebook Ads"}},
    )
    db_session.commit()

    assert len(calls) == 2
    assert contact.id == existing.id
    rows = db_session.scalars(
        select(Contact).where(Contact.company_id == company.id, Contact.external_id == "c-race")
    ).all()
    assert len(rows) == 1
    assert rows[0].name == "Pat Prospect"
    assert rows[0].email == "pat@example.com"
    assert rows[0].traffic_source == "Facebook Ads"
