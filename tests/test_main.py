import logging

import pytest
from fastapi import APIRouter

from pcntrack.config import Settings
from pcntrack.main import _assert_ghl_webhook_secrets, app, lifespan
from pcntrack.utils.errors import ConflictError

failing_routes = APIRouter()


@failing_routes.get("/__test/conflict")
def _conflict():
    raise ConflictError("Already done.", code="ALREADY_DONE", details={"ref": "x"})


app.include_router(failing_routes)


@pytest.fixture
def root_logging():
    """Undo the handlers and level that application startup installs."""

    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)


@pytest.mark.anyio
async def test_lifespan_keeps_the_preset_database(app_settings, root_logging):
    database = app.state.database
    app_settings.SCHEDULER_ENABLED = False

    async with lifespan(app):
        assert app.state.database is database
    assert app.state.database is database


def test_missing_secrets_abort_startup_outside_dev():
    settings = Settings(app_env="prod", ghl_webhook_secret=None, ghl_webhook_secret_previous=None)
    with pytest.raises(RuntimeError):
        _assert_ghl_webhook_secrets(settings)


def test_missing_secrets_only_warn_in_dev():
    _assert_ghl_webhook_secrets(Settings(app_env="dev", ghl_webhook_secret=None, ghl_webhook_secret_previous=None))
    _assert_ghl_webhook_secrets(Settings(app_env="prod", ghl_webhook_secret=None, ghl_webhook_secret_previous="old"))


def test_invalid_resubmission_policy_is_rejected():
    with pytest.raises(ValueError):
        Settings(PCN_RESUBMISSION_POLICY="merge")


@pytest.mark.anyio
async def test_domain_errors_use_the_error_envelope(client):
    response = await client.get("/__test/conflict")
    assert response.status_code == 409
    assert response.json() == {
        "error": {"code": "ALREADY_DONE", "message": "Already done.", "details": {"ref": "x"}}
    }


@pytest.mark.anyio
async def test_request_validation_uses_the_error_envelope(client, admin_headers):
    response = await client.post("/appointments/appt-1/pcn", json={"submission": {}}, headers=admin_headers)
    assert response.status_code == 422
    body = response.json()
    assert body["error"]["code"] == "VALIDATION_ERROR"
    assert body["error"]["details"]["errors"]
