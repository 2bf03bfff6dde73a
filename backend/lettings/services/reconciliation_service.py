# Overview: Service-layer operations for ledger reconciliation; derives obligation status from payments.

"""
Ledger reconciliation

The payments ledger is the single source of truth. An obligation's status is a
pure function of (amount_due, sum of payments, due_date, today):

    1. |balance| < BALANCE_TOLERANCE                   -> paid
    2. amount_due > 0 and 0 < paid < amount_due        -> partial
    3. amount_due < 0 and amount_due < paid < 0        -> partial (refund)
    4. today > due_date                                -> overdue
    5. otherwise                                       -> pending

PaymentSchedule.status / amount_paid are a cache. They are rewritten here when
they disagree with the derivation and nowhere else. Writes are idempotent, so
concurrent readers refreshing the same row at worst repeat the same UPDATE.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from ..config import setting
from ..extensions import db
from ..models import Payment, PaymentSchedule, Tenancy
from ..models.payments import (
    OBLIGATION_STATUSES,
    STATUS_OVERDUE,
    STATUS_PAID,
    STATUS_PARTIAL,
    STATUS_PENDING,
)
from ..time_utils import local_today
from ..validation import NotFoundError


@dataclass(frozen=True)
class Reconciliation:
    amount_paid: Decimal
    balance: Decimal
    status: str


def derive_status(
    amount_due: Decimal,
    amount_paid: Decimal,
    due_date: date,
    today: date,
    tolerance: Decimal,
) -> str:
    balance = amount_due - amount_paid
    if abs(balance) < tolerance:
        return STATUS_PAID
    if amount_due > 0 and 0 < amount_paid < amount_due:
        return STATUS_PARTIAL
    if amount_due < 0 and amount_due < amount_paid < 0:
        return STATUS_PARTIAL
    if today > due_date:
        return STATUS_OVERDUE
    return STATUS_PENDING


def reconcile(
    obligation,
    payments: Optional[Iterable] = None,
    *,
    today: Optional[date] = None,
    tolerance: Optional[Decimal] = None,
) -> Reconciliation:
    """
    Derive amount paid, balance and status for one obligation.

    Args:
        obligation: Anything with amount_due and due_date (PaymentSchedule)
        payments: Ledger entries with .amount; defaults to obligation.payments
        today: Business date, defaults to today in the agency time zone
        tolerance: Settled-balance tolerance, defaults to BALANCE_TOLERANCE

    Returns:
        Reconciliation(amount_paid, balance, status). Never writes.
    """
    if payments is None:
        payments = obligation.payments
    if today is None:
        today = local_today()
    if tolerance is None:
        tolerance = Decimal(setting("BALANCE_TOLERANCE"))

    amount_due = Decimal(obligation.amount_due)
    amount_paid = sum((Decimal(p.amount) for p in payments), Decimal("0"))
    status = derive_status(amount_due, amount_paid, obligation.due_date, today, tolerance)
    return Reconciliation(amount_paid=amount_paid, balance=amount_due - amount_paid, status=status)


def refresh_cached_status(obligation: PaymentSchedule, *, today: Optional[date] = None) -> Reconciliation:
    """
    Rewrite the cached status/amount_paid columns if they drifted.

    Does not commit; the caller owns the transaction.
    """
    result = reconcile(obligation, today=today)
    cached_paid = Decimal(obligation.amount_paid) if obligation.amount_paid is not None else None
    if obligation.status != result.status or cached_paid != result.amount_paid:
        obligation.status = result.status
        obligation.amount_paid = result.amount_paid
    return result


def _load_tenancy(tenancy_id: int, agency_id: int) -> Tenancy:
    tenancy = db.session.query(Tenancy).filter_by(id=tenancy_id, agency_id=agency_id).first()
    if not tenancy:
        raise NotFoundError(f"Tenancy {tenancy_id} not found")
    return tenancy


def get_tenancy_schedules(
    tenancy_id: int,
    *,
    agency_id: int,
    member_id: Optional[int] = None,
    today: Optional[date] = None,
) -> list[dict]:
    """
    Obligations for a tenancy with freshly derived status.

    Stale cache rows are written back and committed; the returned status is the
    derived one regardless of what was stored.
    """
    _load_tenancy(tenancy_id, agency_id)
    query = db.session.query(PaymentSchedule).filter(PaymentSchedule.tenancy_id == tenancy_id)
    if member_id is not None:
        query = query.filter(PaymentSchedule.member_id == member_id)
    obligations = query.order_by(PaymentSchedule.due_date, PaymentSchedule.id).all()

    results = []
    for obligation in obligations:
        result = refresh_cached_status(obligation, today=today)
        data = obligation.to_dict()
        data["amount_paid"] = str(result.amount_paid)
        data["balance"] = str(result.balance)
        data["status"] = result.status
        data["payments"] = [p.to_dict() for p in obligation.payments]
        results.append(data)

    if db.session.dirty:
        db.session.commit()
    return results


def unpaid_obligations(tenancy: Tenancy, *, today: Optional[date] = None) -> list[tuple[PaymentSchedule, Reconciliation]]:
    """Obligations whose derived status is anything but paid."""
    unpaid = []
    for obligation in tenancy.payment_schedules:
        result = reconcile(obligation, today=today)
        if result.status != STATUS_PAID:
            unpaid.append((obligation, result))
    return unpaid


def tenancy_payment_stats(tenancy_id: int, *, agency_id: int, today: Optional[date] = None) -> dict:
    """
    Totals for a tenancy derived from the ledger.

    total_due counts money owed by occupants (positive lines); refunds owed to
    occupants are reported separately as total_refunds_due.
    """
    tenancy = _load_tenancy(tenancy_id, agency_id)
    counts = {status: 0 for status in OBLIGATION_STATUSES}
    total_due = Decimal("0")
    total_paid = Decimal("0")
    refunds_due = Decimal("0")
    refunds_paid = Decimal("0")
    overdue_amount = Decimal("0")

    for obligation in tenancy.payment_schedules:
        result = reconcile(obligation, today=today)
        counts[result.status] += 1
        amount_due = Decimal(obligation.amount_due)
        if amount_due >= 0:
            total_due += amount_due
            total_paid += result.amount_paid
        else:
            refunds_due += -amount_due
            refunds_paid += -result.amount_paid
        if result.status == STATUS_OVERDUE:
            overdue_amount += result.balance

    ledger_total = (
        db.session.query(db.func.coalesce(db.func.sum(Payment.amount), 0))
        .filter(Payment.tenancy_id == tenancy_id)
        .scalar()
    )

    return {
        "tenancy_id": tenancy_id,
        "total_due": str(total_due),
        "total_paid": str(total_paid),
        "total_outstanding": str(total_due - total_paid),
        "total_refunds_due": str(refunds_due),
        "total_refunds_paid": str(refunds_paid),
        "overdue_amount": str(overdue_amount),
        "net_ledger_total": str(Decimal(str(ledger_total)).quantize(Decimal("0.01"))),
        "counts": counts,
        "obligation_count": sum(counts.values()),
    }
