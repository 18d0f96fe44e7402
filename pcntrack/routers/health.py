"""Health check endpoint."""
from __future__ import annotations

import logging
from pathlib import Path

from alembic.config import Config
from alembic.script import ScriptDirectory
from fastapi import APIRouter, Depends

from pcntrack.config import get_settings
from pcntrack.core.runtime_state import is_scheduler_active, scheduled_jobs
from pcntrack.db import Database, get_database
from pcntrack.services.scheduler_lock import describe_scheduler_lock
from pcntrack.utils.masking import masked_secret_status

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def _secret_status(primary: str | None, secondary: str | None) -> str:
    if primary and secondary:
        return "rotating"
    if primary:
        return "ok"
    if secondary:
        return "partial"
    return "missing"


def _db_status(database: Database) -> str:
    """Return 'ok' if the DB is reachable, 'error' otherwise."""

    try:
        database.ping()
        return "ok"
    except Exception:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error"


def _expected_migration_head() -> str | None:
    try:
        script = ScriptDirectory.from_config(Config(str(ALEMBIC_INI)))
        return script.get_current_head()
    except Exception:  # noqa: BLE001
        logger.exception("Failed to load Alembic head revision")
        return None


def _migrations_status(database: Database) -> tuple[bool, str]:
    expected_head = _expected_migration_head()
    try:
        current = database.current_revision()
    except Exception:  # noqa: BLE001
        logger.exception("Migration check failed")
        return False, "unknown"
    if expected_head is None:
        return False, "unknown"
    if current == expected_head:
        return True, "up_to_date"
    return False, "out_of_date"


def _lock_status(database: Database) -> dict[str, object]:
    try:
        with database.session() as session:
            return describe_scheduler_lock(session)
    except Exception:  # noqa: BLE001
        logger.exception("Scheduler lock check failed")
        return {"status": "unknown", "owner": None}


@router.get("", summary="Health check")
def healthcheck(database: Database = Depends(get_database)) -> dict[str, object]:
    settings = get_settings()
    db_status = _db_status(database)
    db_ok = db_status == "ok"
    if db_ok:
        migration_ok, migration_status = _migrations_status(database)
    else:
        migration_ok, migration_status = False, "unknown"
    degraded = not (db_ok and migration_ok)
    return {
        "status": "degraded" if degraded else "ok",
        "env": settings.app_env,
        "db_ok": db_ok,
        "db_status": db_status,
        "migrations_ok": migration_ok,
        "migrations_status": migration_status,
        "ghl_webhook_configured": bool(settings.ghl_webhook_secret or settings.ghl_webhook_secret_previous),
        "ghl_webhook_secret_status": _secret_status(
            settings.ghl_webhook_secret, settings.ghl_webhook_secret_previous
        ),
        "ghl_webhook_secret_fingerprints": masked_secret_status(
            {"current": settings.ghl_webhook_secret, "previous": settings.ghl_webhook_secret_previous}
        ),
        "pcn_resubmission_policy": settings.PCN_RESUBMISSION_POLICY,
        "scheduler_config_enabled": bool(settings.SCHEDULER_ENABLED),
        "scheduler_running": is_scheduler_active(),
        "scheduler_jobs": scheduled_jobs(),
        "scheduler_lock": _lock_status(database) if db_ok else {"status": "unknown", "owner": None},
    }
