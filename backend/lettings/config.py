# backend/lettings/config.py
from __future__ import annotations
import os
from decimal import Decimal

from flask import current_app, has_app_context


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/lettings.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///lettings.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Tenant scope is established upstream and passed through this header
    AGENCY_SCOPE_HEADER = "X-Agency-Id"
    AGENCY_TIMEZONE = os.environ.get("AGENCY_TIMEZONE", "Europe/London")

    # Browser origins allowed to call the API directly
    CORS_ALLOWED_ORIGINS = (
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:4173",
        "http://127.0.0.1:4173",
    )

    # Rent conversion
    WEEKS_PER_YEAR = 52
    MONTHS_PER_YEAR = 12
    DAYS_PER_WEEK = 7

    # Billing calendar
    RENT_DUE_DAY_OFFSET = 0
    QUARTER_START_MONTHS = (1, 4, 7, 10)
    HYBRID_MONTHLY_MONTHS = (7, 8, 9)
    DEPOSIT_DUE_DAYS_BEFORE_START = 7
    DEPOSIT_RETURN_DAYS_AFTER_KEYS = 14

    # Balance within this distance of zero counts as settled
    BALANCE_TOLERANCE = Decimal("0.001")

    GUARANTOR_TOKEN_TTL_DAYS = 14

    # Tenancies in these statuses no longer hold their rooms
    EXCLUDED_OCCUPANCY_STATUSES = ("expired",)

    # Rolling continuation job
    ROLLING_JOB_ENABLED = _env_bool("ROLLING_JOB_ENABLED", False)
    ROLLING_JOB_HOUR = int(os.environ.get("ROLLING_JOB_HOUR", "1"))
    ROLLING_JOB_MINUTE = int(os.environ.get("ROLLING_JOB_MINUTE", "30"))
    ROLLING_JOB_MISFIRE_GRACE_SECONDS = 3600

    # Lock / serialization failure retry policy
    RETRY_ATTEMPTS = 3
    RETRY_BACKOFF_BASE = 0.1


def setting(name: str):
    """
    Read a config value from the active app, falling back to Config defaults.

    WHY: Rent and reconciliation helpers are pure and must work without an
    application context (scripts, unit tests), but deployments override the
    constants through app.config.
    """
    if has_app_context() and name in current_app.config:
        return current_app.config[name]
    return getattr(Config, name)
