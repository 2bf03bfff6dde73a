# Overview: Service-layer operations for notification events; append-only outbox plus dispatch.

from __future__ import annotations

import json
import logging
from typing import Callable, Optional

from ..extensions import db
from ..models import TenancyEvent
from ..time_utils import utcnow


logger = logging.getLogger(__name__)

"""
Notification outbox invariants

- Events are written inside the same DB transaction as the lifecycle change
  they describe; a rolled-back change leaves no event behind.
- The core never delivers anything. dispatch_pending_events() hands each
  undelivered event to an external callable (email sender, queue producer).
- A dispatch failure is logged and recorded on the row; the event stays
  pending and is retried on the next dispatch call. It never affects the
  committed lifecycle change.
"""

SIGNATURE_LINK_ISSUED = "signature_link_issued"
GUARANTOR_LINK_ISSUED = "guarantor_link_issued"
GUARANTOR_LINK_REGENERATED = "guarantor_link_regenerated"
TENANCY_APPROVED = "tenancy_approved"
TENANCY_ACTIVATED = "tenancy_activated"
TENANCY_EXPIRED = "tenancy_expired"
ROLLING_PAYMENT_GENERATED = "rolling_payment_generated"

EVENT_TYPES = {
    SIGNATURE_LINK_ISSUED,
    GUARANTOR_LINK_ISSUED,
    GUARANTOR_LINK_REGENERATED,
    TENANCY_APPROVED,
    TENANCY_ACTIVATED,
    TENANCY_EXPIRED,
    ROLLING_PAYMENT_GENERATED,
}


def emit_event(
    *,
    agency_id: int,
    event_type: str,
    tenancy_id: Optional[int] = None,
    member_id: Optional[int] = None,
    payload: Optional[dict] = None,
) -> TenancyEvent:
    """
    Append one logical event to the outbox. Does not commit.

    Raises:
        ValueError: Unknown event type
    """
    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown event type '{event_type}'")
    event = TenancyEvent(
        agency_id=agency_id,
        tenancy_id=tenancy_id,
        member_id=member_id,
        event_type=event_type,
        payload=json.dumps(payload or {}, sort_keys=True, default=str),
    )
    db.session.add(event)
    return event


def pending_events(*, agency_id: Optional[int] = None, limit: int = 100) -> list[TenancyEvent]:
    query = db.session.query(TenancyEvent).filter(TenancyEvent.dispatched_at.is_(None))
    if agency_id is not None:
        query = query.filter(TenancyEvent.agency_id == agency_id)
    return query.order_by(TenancyEvent.id).limit(limit).all()


def dispatch_pending_events(
    dispatcher: Callable[[dict], None],
    *,
    agency_id: Optional[int] = None,
    limit: int = 100,
) -> dict:
    """
    Deliver undelivered events through `dispatcher`, one commit per event.

    Returns:
        {"dispatched": n, "failed": m, "errors": [{"event_id", "error"}]}
    """
    dispatched = 0
    errors = []
    for event in pending_events(agency_id=agency_id, limit=limit):
        event.dispatch_attempts = (event.dispatch_attempts or 0) + 1
        try:
            dispatcher(event.to_dict())
        except Exception as exc:
            logger.exception("Dispatch of event %s (%s) failed", event.id, event.event_type)
            event.last_error = str(exc)
            errors.append({"event_id": event.id, "error": str(exc)})
        else:
            event.dispatched_at = utcnow()
            event.last_error = None
            dispatched += 1
        db.session.commit()

    return {"dispatched": dispatched, "failed": len(errors), "errors": errors}


def log_dispatcher(event: dict) -> None:
    """Dispatcher that only logs; used by the CLI when no transport is configured."""
    logger.info(
        "event %s %s tenancy=%s member=%s payload=%s",
        event["id"], event["event_type"], event["tenancy_id"], event["member_id"], event["payload"],
    )
