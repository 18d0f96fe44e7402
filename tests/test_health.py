import pytest

from pcntrack.core.runtime_state import set_scheduler_active


@pytest.mark.anyio
async def test_health_reports_ok(client, app_settings):
    app_settings.ghl_webhook_secret = "current-secret"
    app_settings.ghl_webhook_secret_previous = None

    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "ok"
    assert body["env"] == "test"
    assert body["db_ok"] is True
    assert body["migrations_ok"] is True
    assert body["migrations_status"] == "up_to_date"
    assert body["ghl_webhook_configured"] is True
    assert body["ghl_webhook_secret_status"] == "ok"
    assert body["ghl_webhook_secret_fingerprints"]["previous"] is None
    assert body["ghl_webhook_secret_fingerprints"]["current"] != "current-secret"
    assert body["pcn_resubmission_policy"] == "reject"
    assert body["scheduler_running"] is False
    assert body["scheduler_jobs"] == []
    assert body["scheduler_lock"]["present"] is False


@pytest.mark.anyio
@pytest.mark.parametrize(
    ("current", "previous", "status"),
    [("new", "old", "rotating"), (None, "old", "partial"), (None, None, "missing")],
)
async def test_health_secret_status(client, app_settings, current, previous, status):
    app_settings.ghl_webhook_secret = current
    app_settings.ghl_webhook_secret_previous = previous

    body = (await client.get("/health")).json()
    assert body["ghl_webhook_secret_status"] == status
    assert body["ghl_webhook_configured"] is (status != "missing")


@pytest.mark.anyio
async def test_health_lists_running_jobs(client):
    set_scheduler_active(True, ("pcn-sweep", "weekly-report"))
    try:
        body = (await client.get("/health")).json()
    finally:
        set_scheduler_active(False)
    assert body["scheduler_running"] is True
    assert body["scheduler_jobs"] == ["pcn-sweep", "weekly-report"]


@pytest.mark.anyio
async def test_health_degrades_when_database_is_down(client, monkeypatch):
    monkeypatch.setattr("pcntrack.routers.health._db_status", lambda database: "error")

    response = await client.get("/health")
    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "degraded"
    assert body["db_ok"] is False
    assert body["migrations_status"] == "unknown"
    assert body["scheduler_lock"] == {"status": "unknown", "owner": None}
