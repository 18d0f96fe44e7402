"""Application configuration settings."""
from __future__ import annotations

import os
from functools import lru_cache

from pydantic import AliasChoices, BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# --- Runtime toggles -----------------------------------------------------
# Execution environment: "dev" | "test" | "staging" | "prod"
ENV = os.getenv("PCN_ENV", "dev").lower()

# Legacy admin key, only honoured in dev-like environments
DEV_API_KEY = os.getenv("DEV_API_KEY") or os.getenv("API_KEY") or "dev-secret-key"
DEV_API_KEY_ALLOWED = ENV in {"dev", "local", "test"}

RESUBMISSION_POLICIES = {"reject", "overwrite"}


class Settings(BaseSettings):
    """Environment configuration for the PCN tracker."""

    app_env: str = ENV
    database_url: str = "sqlite:///pcntrack.db"
    SECRET_KEY: str = "change-me"
    DEV_API_KEY: str | None = Field(
        default=DEV_API_KEY,
        validation_alias=AliasChoices("DEV_API_KEY", "API_KEY"),
    )
    CORS_ALLOW_ORIGINS: list[str] = ["http://localhost:3000"]
    SENTRY_DSN: str | None = None
    PROMETHEUS_ENABLED: bool = True
    LOG_LEVEL: str = "INFO"
    APP_BASE_URL: str = "http://localhost:3000"
    ALLOW_DB_CREATE_ALL: bool = False

    # --- GHL webhooks ----------------------------------------------------
    ghl_webhook_secret: str | None = None
    ghl_webhook_secret_previous: str | None = None
    ghl_webhook_max_drift_seconds: int = 300
    GHL_API_BASE_URL: str = "https://services.leadconnectorhq.com"
    GHL_API_TIMEOUT_SECONDS: float = 5.0

    # --- PCN pipeline ----------------------------------------------------
    PCN_RESUBMISSION_POLICY: str = "reject"

    # --- Reminder sweep & reports ---------------------------------------
    PCN_GRACE_PERIOD_MINUTES: int = Field(default=10, ge=0)
    PCN_NOTIFY_CYCLE_MINUTES: int = Field(default=10, ge=1)
    PCN_SWEEP_BATCH_SIZE: int = Field(default=100, ge=1)
    PCN_SWEEP_MAX_RUNTIME_SECONDS: int = Field(default=120, ge=1)
    NOTIFY_TIMEOUT_SECONDS: float = 5.0

    # --- Scheduler ------------------------------------------------------
    SCHEDULER_ENABLED: bool = False
    PCN_SWEEP_INTERVAL_MINUTES: int = 10
    WEEKLY_REPORT_CRON: str = "0 9 * * 1"
    RECOMPUTE_CRON: str = "30 3 * * *"

    model_config = SettingsConfigDict(
        env_file=".env", env_prefix="", env_file_encoding="utf-8", extra="ignore"
    )

    @field_validator("ghl_webhook_secret", "ghl_webhook_secret_previous")
    @classmethod
    def _strip_empty_secret(cls, value: str | None) -> str | None:
        """Normalise empty webhook secrets to ``None`` for easier validation."""

        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None

    @field_validator("PCN_RESUBMISSION_POLICY")
    @classmethod
    def _check_policy(cls, value: str) -> str:
        normalised = value.strip().lower()
        if normalised not in RESUBMISSION_POLICIES:
            raise ValueError(f"PCN_RESUBMISSION_POLICY must be one of {sorted(RESUBMISSION_POLICIES)}")
        return normalised


class AppInfo(BaseModel):
    name: str = "pcn-tracker"
    version: str = "0.1.0"


settings = Settings()


@lru_cache
def get_settings() -> Settings:
    """Return cached application settings."""

    return settings


__all__ = [
    "ENV",
    "DEV_API_KEY",
    "DEV_API_KEY_ALLOWED",
    "RESUBMISSION_POLICIES",
    "Settings",
    "AppInfo",
    "settings",
    "get_settings",
]
