# Overview: Service-layer operations for rolling tenancies; unattended continuation of periodic billing.

"""
Rolling continuation

Once a day (lettings.scheduler, `flask rolling run`, or POST /api/rolling/run)
every active rolling tenancy with auto-generation on, and no end date or an
end date not yet passed, gets the obligation for the billing period that
contains today.

- Uses the same pure generator as the approval transition, in
  current-period-only mode, so re-running on the same day creates nothing.
- Each tenancy is its own short transaction. A failure is rolled back, logged
  and recorded on the report; the run carries on with the next tenancy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Optional

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import PaymentSchedule, Tenancy
from ..models.tenancies import TENANCY_ACTIVE
from ..time_utils import local_today, to_iso_date
from . import event_service
from .concurrency import run_with_retry
from .schedule_service import add_missing_obligations


logger = logging.getLogger(__name__)


@dataclass
class RollingRunReport:
    run_date: date
    processed: int = 0
    created: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "run_date": to_iso_date(self.run_date),
            "processed": self.processed,
            "created": self.created,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def _eligible(query, today: date):
    return query.filter(
        Tenancy.status == TENANCY_ACTIVE,
        Tenancy.is_rolling_periodic.is_(True),
        Tenancy.auto_generate_payments.is_(True),
        or_(Tenancy.end_date.is_(None), Tenancy.end_date >= today),
    )


def due_tenancies(today: Optional[date] = None, *, agency_id: Optional[int] = None) -> list[int]:
    """Ids of tenancies the continuation run processes on `today`."""
    if today is None:
        today = local_today()
    query = _eligible(db.session.query(Tenancy.id), today)
    if agency_id is not None:
        query = query.filter(Tenancy.agency_id == agency_id)
    return [row.id for row in query.order_by(Tenancy.id).all()]


def continue_tenancy(tenancy_id: int, *, today: date) -> list[PaymentSchedule]:
    """
    Ensure one tenancy's current-period obligations exist.

    Eligibility is re-checked inside the transaction, so a tenancy that was
    expired or switched off since the id list was taken is left alone.
    """
    def _op():
        tenancy = _eligible(db.session.query(Tenancy).filter(Tenancy.id == tenancy_id), today).first()
        if tenancy is None:
            return []
        created = add_missing_obligations(tenancy, as_of=today, current_period_only=True)
        for obligation in created:
            event_service.emit_event(
                agency_id=tenancy.agency_id,
                event_type=event_service.ROLLING_PAYMENT_GENERATED,
                tenancy_id=tenancy.id,
                member_id=obligation.member_id,
                payload={
                    "schedule_id": obligation.id,
                    "amount_due": obligation.amount_due,
                    "due_date": obligation.due_date,
                    "description": obligation.description,
                },
            )
        db.session.commit()
        return created

    try:
        return run_with_retry(_op)
    except IntegrityError:
        # Another run inserted the same period first; re-check against it
        db.session.rollback()
        return run_with_retry(_op)


def run_rolling_continuation(today: Optional[date] = None, *, agency_id: Optional[int] = None) -> RollingRunReport:
    """
    Single pass over all eligible rolling tenancies.

    Returns:
        RollingRunReport with counts and a per-tenancy error list
    """
    if today is None:
        today = local_today()
    report = RollingRunReport(run_date=today)

    for tenancy_id in due_tenancies(today, agency_id=agency_id):
        report.processed += 1
        try:
            created = continue_tenancy(tenancy_id, today=today)
        except Exception as exc:
            db.session.rollback()
            logger.exception("Rolling continuation failed for tenancy %s", tenancy_id)
            report.failed += 1
            report.errors.append({
                "tenancy_id": tenancy_id,
                "error": str(exc),
                "error_type": type(exc).__name__,
            })
            continue
        if created:
            report.created += len(created)
        else:
            report.skipped += 1

    logger.info(
        "Rolling continuation %s: processed=%s created=%s skipped=%s failed=%s",
        today.isoformat(), report.processed, report.created, report.skipped, report.failed,
    )
    return report
