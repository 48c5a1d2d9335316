from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator


_DOTENV_LOADED = False

DEFAULT_TIMEZONE = "America/Los_Angeles"


def load_env(dotenv_path: Optional[str] = None) -> None:
    global _DOTENV_LOADED
    if _DOTENV_LOADED:
        return
    # Load from provided path or default search
    load_dotenv(dotenv_path, override=False)
    _DOTENV_LOADED = True


def get_db_url() -> str:
    url = os.getenv("DATABASE_URL")
    if url:
        return url
    user = os.getenv("DB_USER", os.getenv("USER", "postgres"))
    password = os.getenv("DB_PASSWORD")
    host = os.getenv("DB_HOST", "localhost")
    port = os.getenv("DB_PORT", "5432")
    name = os.getenv("DB_NAME", "facility_metrics")
    auth = f"{user}:{password}@" if password else f"{user}@"
    return f"postgresql://{auth}{host}:{port}/{name}"


def get_log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()


class MetricsSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    timezone: str = DEFAULT_TIMEZONE
    max_in_flight: int = Field(3, ge=1)
    delivery_attempts: int = Field(5, ge=1)
    backfill_concurrency: int = Field(10, ge=1)
    excluded_facility_ids: tuple[str, ...] = ()
    connect_timeout: int = Field(10, ge=1)
    statement_timeout_ms: int = Field(30000, ge=0)
    reconcile_hour: int = Field(3, ge=0, le=23)

    @field_validator("excluded_facility_ids", mode="before")
    @classmethod
    def _split_ids(cls, v):
        if isinstance(v, str):
            return tuple(f.strip() for f in v.split(",") if f.strip())
        return v


# Settings field -> environment variable
_SETTINGS_ENV = {
    "timezone": "METRICS_TIMEZONE",
    "max_in_flight": "METRICS_MAX_IN_FLIGHT",
    "delivery_attempts": "METRICS_DELIVERY_ATTEMPTS",
    "backfill_concurrency": "METRICS_BACKFILL_CONCURRENCY",
    "excluded_facility_ids": "METRICS_EXCLUDED_FACILITY_IDS",
    "connect_timeout": "METRICS_DB_CONNECT_TIMEOUT",
    "statement_timeout_ms": "METRICS_STATEMENT_TIMEOUT_MS",
    "reconcile_hour": "METRICS_RECONCILE_HOUR",
}


def get_metrics_settings() -> MetricsSettings:
    """Build settings from the environment; unset or blank variables keep their defaults."""
    load_env()
    values = {}
    for field, var in _SETTINGS_ENV.items():
        raw = os.getenv(var)
        if raw is not None and raw.strip() != "":
            values[field] = raw.strip()
    return MetricsSettings.model_validate(values)
