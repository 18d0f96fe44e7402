import json

import httpx
import pytest

from pcntrack.services.ghl_client import GHLClient
from pcntrack.services.notifications import SlackWebhookNotifier
from pcntrack.utils.errors import InfrastructureError

CHANNEL = "https://hooks.slack.test/services/T000/B000"


def _notifier(handler) -> SlackWebhookNotifier:
    return SlackWebhookNotifier(timeout=2.0, client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_slack_delivery_posts_text():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text="ok")

    result = _notifier(handler).send(CHANNEL, "*PCN Required*")

    assert result.ok is True
    assert result.status_code == 200
    [request] = seen
    assert str(request.url) == CHANNEL
    assert json.loads(request.content) == {"text": "*PCN Required*"}


def test_slack_rejection_is_returned_not_raised():
    result = _notifier(lambda request: httpx.Response(500, text="channel_is_archived")).send(CHANNEL, "hi")

    assert result.ok is False
    assert result.status_code == 500
    assert result.error == "HTTP 500: channel_is_archived"


def test_slack_transport_error_is_returned():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = _notifier(handler).send(CHANNEL, "hi")

    assert result.ok is False
    assert result.status_code is None
    assert result.error.startswith("ConnectError")


def _ghl(handler) -> GHLClient:
    return GHLClient(
        "pit-123",
        base_url="https://ghl.test/",
        timeout=1.0,
        location_id="loc-1",
        transport=httpx.MockTransport(handler),
    )


def test_latest_appointment_picks_the_latest_start():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "events": [
                    {"id": "a", "startTime": "2025-11-10T15:00:00Z"},
                    {"id": "b", "startTime": "2025-11-20T15:00:00Z"},
                    {"id": "c", "startTime": None},
                    {"startTime": "2025-12-01T15:00:00Z"},
                ]
            },
        )

    latest = _ghl(handler).latest_appointment("contact-1")

    assert latest["id"] == "b"
    [request] = seen
    assert request.url.path == "/contacts/contact-1/appointments"
    assert request.headers["Authorization"] == "Bearer pit-123"
    assert request.headers["Version"] == "2021-07-28"


def test_latest_appointment_without_events():
    assert _ghl(lambda request: httpx.Response(200, json={"events": []})).latest_appointment("contact-1") is None


def test_get_contact_unwraps_the_contact():
    client = _ghl(lambda request: httpx.Response(200, json={"contact": {"id": "contact-1", "firstName": "Robin"}}))
    assert client.get_contact("contact-1") == {"id": "contact-1", "firstName": "Robin"}


def test_timeout_is_an_infrastructure_error():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    with pytest.raises(InfrastructureError) as excinfo:
        _ghl(handler).latest_appointment("contact-1")
    assert excinfo.value.code == "GHL_TIMEOUT"


def test_http_error_is_an_infrastructure_error():
    with pytest.raises(InfrastructureError) as excinfo:
        _ghl(lambda request: httpx.Response(401, json={"message": "Invalid JWT"})).get_contact("contact-1")
    assert excinfo.value.code == "GHL_REQUEST_FAILED"
    assert excinfo.value.details == {"path": "/contacts/contact-1"}
