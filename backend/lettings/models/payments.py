from __future__ import annotations

from ..extensions import db
from ..time_utils import to_iso_date, to_utc_z


PAYMENT_TYPE_RENT = "rent"
PAYMENT_TYPE_DEPOSIT = "deposit"
PAYMENT_TYPE_UTILITIES = "utilities"
PAYMENT_TYPE_FEE = "fee"
PAYMENT_TYPE_OTHER = "other"
PAYMENT_TYPES = (
    PAYMENT_TYPE_RENT,
    PAYMENT_TYPE_DEPOSIT,
    PAYMENT_TYPE_UTILITIES,
    PAYMENT_TYPE_FEE,
    PAYMENT_TYPE_OTHER,
)

SCHEDULE_AUTOMATED = "automated"
SCHEDULE_MANUAL = "manual"

STATUS_PENDING = "pending"
STATUS_PARTIAL = "partial"
STATUS_PAID = "paid"
STATUS_OVERDUE = "overdue"
OBLIGATION_STATUSES = (STATUS_PENDING, STATUS_PARTIAL, STATUS_PAID, STATUS_OVERDUE)


class PaymentSchedule(db.Model):
    """
    One billing obligation (schedule entry).

    amount_due is signed: negative amounts are refunds owed to the occupant.

    status and amount_paid are a read-through cache of the payments ledger.
    Only reconciliation_service writes them; readers must re-derive.

    One automated rent line per (tenancy, member, coverage start) is enforced
    by uq_payment_schedules_period so concurrent generation cannot duplicate.
    """
    __tablename__ = "payment_schedules"
    __table_args__ = (
        db.UniqueConstraint(
            "tenancy_id", "member_id", "payment_type", "covers_from",
            name="uq_payment_schedules_period",
        ),
        db.Index("ix_payment_schedules_tenancy_due", "tenancy_id", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenancy_id = db.Column(db.Integer, db.ForeignKey("tenancies.id"), nullable=False)
    member_id = db.Column(db.Integer, db.ForeignKey("tenancy_members.id"), nullable=True, index=True)

    payment_type = db.Column(db.String(32), nullable=False, default=PAYMENT_TYPE_RENT)
    schedule_type = db.Column(db.String(16), nullable=False, default=SCHEDULE_AUTOMATED)
    description = db.Column(db.String(255), nullable=True)

    amount_due = db.Column(db.Numeric(12, 2), nullable=False)
    due_date = db.Column(db.Date, nullable=False)
    covers_from = db.Column(db.Date, nullable=True)
    covers_to = db.Column(db.Date, nullable=True)

    # Cache columns, see reconciliation_service.refresh_cached_status
    amount_paid = db.Column(db.Numeric(12, 2), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=STATUS_PENDING)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenancy = db.relationship("Tenancy", back_populates="payment_schedules")
    member = db.relationship("TenancyMember")
    payments = db.relationship(
        "Payment",
        back_populates="schedule",
        order_by="Payment.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return (
            f"<PaymentSchedule id={self.id} type={self.payment_type} "
            f"due={self.amount_due} on={self.due_date}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenancy_id": self.tenancy_id,
            "member_id": self.member_id,
            "payment_type": self.payment_type,
            "schedule_type": self.schedule_type,
            "description": self.description,
            "amount_due": str(self.amount_due),
            "amount_paid": str(self.amount_paid),
            "due_date": to_iso_date(self.due_date),
            "covers_from": to_iso_date(self.covers_from),
            "covers_to": to_iso_date(self.covers_to),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class Payment(db.Model):
    """
    One recorded cash movement against an obligation (ledger entry).

    Same sign convention as the obligation it offsets. Corrections go through
    payment_service.update_payment / delete_payment, which re-reconcile.
    """
    __tablename__ = "payments"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(db.Integer, db.ForeignKey("payment_schedules.id"), nullable=False, index=True)
    tenancy_id = db.Column(db.Integer, db.ForeignKey("tenancies.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(12, 2), nullable=False)
    payment_date = db.Column(db.Date, nullable=False)
    payment_reference = db.Column(db.String(128), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    schedule = db.relationship("PaymentSchedule", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "tenancy_id": self.tenancy_id,
            "amount": str(self.amount),
            "payment_date": to_iso_date(self.payment_date),
            "payment_reference": self.payment_reference,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
