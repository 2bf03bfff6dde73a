# backend/lettings/routes/system.py
"""
System health endpoint.

Reports database reachability, the notification outbox backlog and whether
the rolling continuation scheduler is running in this process.
"""

import time
from flask import Blueprint, current_app
from ..extensions import db
from ..models import Tenancy, TenancyEvent
from .. import scheduler
from ..time_utils import utcnow

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    """
    Check database connectivity and basic operations.

    Returns dict with status and details.
    """
    start_time = time.time()
    try:
        tenancy_count = db.session.query(Tenancy).count()
        elapsed_ms = (time.time() - start_time) * 1000
        return {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"tenancies": tenancy_count},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_outbox_health() -> dict:
    """Undelivered events; a growing backlog means the dispatcher is failing."""
    try:
        pending = db.session.query(TenancyEvent).filter(TenancyEvent.dispatched_at.is_(None)).count()
        failing = db.session.query(TenancyEvent).filter(
            TenancyEvent.dispatched_at.is_(None),
            TenancyEvent.last_error.isnot(None),
        ).count()
    except Exception:
        current_app.logger.exception("Outbox health check failed")
        return {"status": "unhealthy", "error": "Outbox error"}
    return {
        "status": "degraded" if failing else "healthy",
        "details": {"pending_events": pending, "failing_events": failing},
    }


def check_scheduler_health() -> dict:
    enabled = bool(current_app.config.get("ROLLING_JOB_ENABLED"))
    running = scheduler.background_running()
    if enabled and not running:
        return {"status": "degraded", "warning": "Rolling scheduler enabled but not running"}
    return {"status": "healthy", "details": {"enabled": enabled, "running": running}}


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable
    """
    start_time = time.time()

    checks = {
        "database": check_database_health(),
        "outbox": check_outbox_health(),
        "scheduler": check_scheduler_health(),
    }
    statuses = [check["status"] for check in checks.values()]
    if "unhealthy" in statuses:
        overall_status, http_status = "unhealthy", 503
    elif "degraded" in statuses:
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": utcnow().isoformat() + "Z",
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": checks,
    }, http_status
