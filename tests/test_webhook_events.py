import pytest

from pcntrack.models import WebhookEventStatus
from pcntrack.services.webhook_events import MAX_ERROR_LENGTH, mark_failed, mark_processed, record_received
from pcntrack.utils.errors import ConflictError


def _record(db_session, **kwargs):
    defaults = {
        "source": "ghl",
        "payload": {"type": "AppointmentCreate"},
        "headers": {"Content-Type": "application/json", "X-GHL-Signature": "abcdef0123456789", "Cookie": "x"},
    }
    defaults.update(kwargs)
    return record_received(db_session, **defaults)


def test_record_received_stores_pending_with_masked_headers(db_session):
    event = _record(db_session, params={"company": "1", "secret": "hunter2"})
    assert event.id is not None
    assert event.status is WebhookEventStatus.pending
    assert event.headers["x-ghl-signature"] == "abcdef01..."
    assert "cookie" not in event.headers
    assert event.headers["query"] == {"company": "1", "secret": "***masked***"}


def test_event_is_finalised_once(db_session):
    event = _record(db_session)
    mark_processed(db_session, event)
    db_session.commit()

    with pytest.raises(ConflictError) as excinfo:
        mark_failed(db_session, event, "late failure")
    assert excinfo.value.code == "WEBHOOK_EVENT_FINALISED"

    with pytest.raises(ConflictError):
        mark_processed(db_session, event)


def test_terminal_event_fields_are_immutable(db_session):
    event = _record(db_session)
    mark_failed(db_session, event, "boom")
    db_session.commit()

    with pytest.raises(ConflictError):
        event.payload = {"tampered": True}
    with pytest.raises(ConflictError):
        event.error = "rewritten"
    with pytest.raises(ConflictError):
        event.status = WebhookEventStatus.pending


def test_failure_message_is_truncated(db_session):
    event = _record(db_session)
    mark_failed(db_session, event, "x" * (MAX_ERROR_LENGTH + 50))
    db_session.commit()
    assert len(event.error) == MAX_ERROR_LENGTH
    assert event.status is WebhookEventStatus.failed
    assert event.processed_at is not None
