from __future__ import annotations

import json

from ..extensions import db
from ..time_utils import to_utc_z


class TenancyEvent(db.Model):
    """
    Outbox of logical notification events.

    Written in the same transaction as the lifecycle change it records.
    Delivery is done by an external dispatcher; dispatched_at marks success.
    tenancy_id is not a foreign key so events survive pending-tenancy deletion.
    """
    __tablename__ = "tenancy_events"
    __table_args__ = (
        db.Index("ix_tenancy_events_undispatched", "dispatched_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    agency_id = db.Column(db.Integer, db.ForeignKey("agencies.id"), nullable=False, index=True)
    tenancy_id = db.Column(db.Integer, nullable=True, index=True)
    member_id = db.Column(db.Integer, nullable=True)
    event_type = db.Column(db.String(64), nullable=False)
    payload = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    dispatched_at = db.Column(db.DateTime(timezone=True), nullable=True)
    dispatch_attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.Text, nullable=True)

    def payload_dict(self) -> dict:
        return json.loads(self.payload) if self.payload else {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "agency_id": self.agency_id,
            "tenancy_id": self.tenancy_id,
            "member_id": self.member_id,
            "event_type": self.event_type,
            "payload": self.payload_dict(),
            "occurred_at": to_utc_z(self.occurred_at),
            "dispatched_at": to_utc_z(self.dispatched_at),
            "dispatch_attempts": self.dispatch_attempts,
        }
