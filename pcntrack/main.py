from __future__ import annotations

from contextlib import asynccontextmanager
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import pcntrack.models  # noqa: F401  registers the tables
from pcntrack.config import AppInfo, Settings, get_settings
from pcntrack.core.logging import get_logger, setup_logging
from pcntrack.core.runtime_state import set_scheduler_active
from pcntrack.db import Database
from pcntrack.routers import get_api_router
from pcntrack.services.cron import (
    heartbeat_once,
    pcn_sweep_once,
    recompute_inclusion_once,
    weekly_report_once,
)
from pcntrack.services.scheduler_lock import release_scheduler_lock, try_acquire_scheduler_lock
from pcntrack.utils.errors import DomainError, error_response

logger = get_logger(__name__)
scheduler: AsyncIOScheduler | None = None
ALLOWED_CREATE_ENV = {"dev", "local", "test"}


def _configure_middlewares(fastapi_app: FastAPI) -> None:
    """Configure middleware using a fresh snapshot of the settings."""

    runtime_settings = get_settings()
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=runtime_settings.CORS_ALLOW_ORIGINS,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["Authorization", "Content-Type", "X-API-Key"],
    )

    if runtime_settings.PROMETHEUS_ENABLED:
        from starlette_exporter import PrometheusMiddleware, handle_metrics

        fastapi_app.add_middleware(PrometheusMiddleware)
        fastapi_app.add_route("/metrics", handle_metrics)

    if runtime_settings.SENTRY_DSN:
        import sentry_sdk

        sentry_sdk.init(dsn=runtime_settings.SENTRY_DSN, traces_sample_rate=0.2)


def _assert_ghl_webhook_secrets(settings: Settings) -> None:
    """Fail fast when GHL webhook secrets are missing in non-dev environments."""

    secrets_configured = bool(settings.ghl_webhook_secret or settings.ghl_webhook_secret_previous)
    env_lower = settings.app_env.lower()
    if env_lower not in ALLOWED_CREATE_ENV and not secrets_configured:
        logger.error(
            "GHL webhook secrets are missing; configure GHL_WEBHOOK_SECRET before startup.",
            extra={"env": settings.app_env},
        )
        raise RuntimeError("Missing GHL webhook secrets in non-dev environment.")
    if not secrets_configured:
        logger.warning(
            "GHL webhook secrets are not configured; signed webhooks will be answered 503.",
            extra={"env": settings.app_env},
        )
    elif settings.ghl_webhook_secret is None:
        logger.warning(
            "Current GHL webhook secret unset; relying on GHL_WEBHOOK_SECRET_PREVIOUS only.",
            extra={"env": settings.app_env},
        )


def _start_scheduler(database: Database, settings: Settings) -> AsyncIOScheduler:
    job_scheduler = AsyncIOScheduler(timezone="UTC")
    job_scheduler.add_job(
        pcn_sweep_once,
        "interval",
        minutes=settings.PCN_SWEEP_INTERVAL_MINUTES,
        args=[database],
        id="pcn-sweep",
        max_instances=1,
        coalesce=True,
        replace_existing=True,
    )
    job_scheduler.add_job(
        weekly_report_once,
        CronTrigger.from_crontab(settings.WEEKLY_REPORT_CRON, timezone="UTC"),
        args=[database],
        id="weekly-report",
        max_instances=1,
        replace_existing=True,
    )
    job_scheduler.add_job(
        recompute_inclusion_once,
        CronTrigger.from_crontab(settings.RECOMPUTE_CRON, timezone="UTC"),
        args=[database],
        id="recompute-inclusion",
        max_instances=1,
        replace_existing=True,
    )
    job_scheduler.add_job(
        heartbeat_once,
        "interval",
        seconds=60,
        args=[database],
        id="scheduler-lock-heartbeat",
        replace_existing=True,
    )
    job_scheduler.start()
    return job_scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    global scheduler
    settings = get_settings()
    setup_logging(settings.LOG_LEVEL)
    logger.info("Application startup", extra={"env": settings.app_env})
    _assert_ghl_webhook_secrets(settings)

    database = getattr(app.state, "database", None)
    owns_database = database is None
    if owns_database:
        database = Database(settings.database_url)
        app.state.database = database

    env_lower = settings.app_env.lower()
    if settings.ALLOW_DB_CREATE_ALL and env_lower in ALLOWED_CREATE_ENV:
        logger.warning(
            "Running create_all() because ALLOW_DB_CREATE_ALL is set",
            extra={"env": settings.app_env},
        )
        database.create_all()
    else:
        logger.info("Skipping create_all(); use Alembic migrations.", extra={"env": settings.app_env})

    # Only the replica holding the DB lock runs the jobs; the others rely on it.
    set_scheduler_active(False)
    lock_acquired = False
    if settings.SCHEDULER_ENABLED:
        with database.session() as session:
            lock_acquired = try_acquire_scheduler_lock(session)
        if lock_acquired:
            scheduler = _start_scheduler(database, settings)
            set_scheduler_active(True, tuple(job.id for job in scheduler.get_jobs()))
        else:
            logger.warning(
                "Scheduler disabled because lock is already held by another instance.",
                extra={"env": settings.app_env},
            )
    try:
        yield
    finally:
        if scheduler:
            scheduler.shutdown(wait=False)
            scheduler = None
        if lock_acquired:
            with database.session() as session:
                release_scheduler_lock(session)
        set_scheduler_active(False)
        if owns_database:
            database.dispose()
        logger.info("Application shutdown", extra={"env": settings.app_env})


app_info = AppInfo()

app = FastAPI(title=app_info.name, version=app_info.version, lifespan=lifespan)

_configure_middlewares(app)
app.include_router(get_api_router())


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError) -> JSONResponse:
    log = logger.error if exc.status_code >= 500 else logger.info
    log("Request failed", extra={"code": exc.code, "path": request.url.path, "status_code": exc.status_code})
    return JSONResponse(status_code=exc.status_code, content=exc.to_response())


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    payload = error_response("VALIDATION_ERROR", "Invalid request.", {"errors": jsonable_errors(exc)})
    return JSONResponse(status_code=422, content=payload)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled exception", exc_info=exc)
    payload = error_response("INTERNAL_SERVER_ERROR", "An unexpected error occurred.")
    return JSONResponse(status_code=500, content=payload)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    detail = exc.detail
    if isinstance(detail, dict) and "error" in detail:
        content: dict[str, Any] = detail
    else:
        content = error_response("HTTP_ERROR", str(detail))
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": [str(part) for part in err.get("loc", ())], "msg": err.get("msg"), "type": err.get("type")}
        for err in exc.errors()
    ]


__all__ = ["app"]
