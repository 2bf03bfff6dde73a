"""
Daily scheduler for the rolling continuation job.

The job body is rolling_service.run_rolling_continuation(); this module only
owns the trigger. APScheduler runs it in a worker thread, so each run pushes
its own application context and removes its session afterwards.
"""

import logging
from typing import Optional

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED, EVENT_JOB_MISSED
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.jobstores.memory import MemoryJobStore
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.cron import CronTrigger

from .extensions import db

logger = logging.getLogger(__name__)

ROLLING_JOB_ID = "rolling_continuation"


def run_rolling_job(app) -> dict:
    """Job entry point: one continuation pass inside an app context."""
    from .services.rolling_service import run_rolling_continuation

    with app.app_context():
        try:
            report = run_rolling_continuation()
            return report.to_dict()
        finally:
            db.session.remove()


def _on_job_event(event):
    if event.code == EVENT_JOB_MISSED:
        logger.warning("Job %s missed its run time %s", event.job_id, event.scheduled_run_time)
    elif event.exception is not None:
        logger.error("Job %s raised: %s", event.job_id, event.exception)
    else:
        logger.info("Job %s finished: %s", event.job_id, event.retval)


def build_scheduler(app, *, blocking: bool = False):
    """
    Configure (but do not start) a scheduler with the daily rolling job.

    Trigger time and time zone come from ROLLING_JOB_HOUR, ROLLING_JOB_MINUTE
    and AGENCY_TIMEZONE. Missed runs within the grace period are coalesced
    into one run; at most one run executes at a time.
    """
    # Jobs are re-registered on each start, so nothing needs persisting
    jobstores = {"default": MemoryJobStore()}
    executors = {"default": ThreadPoolExecutor(max_workers=1)}
    job_defaults = {
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": app.config["ROLLING_JOB_MISFIRE_GRACE_SECONDS"],
    }
    scheduler_cls = BlockingScheduler if blocking else BackgroundScheduler
    scheduler = scheduler_cls(
        jobstores=jobstores,
        executors=executors,
        job_defaults=job_defaults,
        timezone=app.config["AGENCY_TIMEZONE"],
    )

    trigger = CronTrigger(
        hour=app.config["ROLLING_JOB_HOUR"],
        minute=app.config["ROLLING_JOB_MINUTE"],
        timezone=app.config["AGENCY_TIMEZONE"],
    )
    scheduler.add_job(
        run_rolling_job,
        trigger=trigger,
        args=[app],
        id=ROLLING_JOB_ID,
        name="Rolling tenancy payment continuation",
        replace_existing=True,
    )
    scheduler.add_listener(_on_job_event, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR | EVENT_JOB_MISSED)
    return scheduler


_background: Optional[BackgroundScheduler] = None


def start_background_scheduler(app) -> BackgroundScheduler:
    """Start the in-process scheduler once per process."""
    global _background
    if _background is None or not _background.running:
        _background = build_scheduler(app)
        _background.start()
        logger.info(
            "Rolling continuation scheduled daily at %02d:%02d %s",
            app.config["ROLLING_JOB_HOUR"], app.config["ROLLING_JOB_MINUTE"], app.config["AGENCY_TIMEZONE"],
        )
    return _background


def background_running() -> bool:
    return _background is not None and _background.running
