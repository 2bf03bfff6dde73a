# Overview: Service-layer operations for payments; records ledger entries and maintains obligations.

"""
Payments ledger service

DESIGN PRINCIPLES:
- Payments are separate from obligations (many-to-one relationship)
- Partial payments: a payment may be less than the balance
- Overpayment is refused: a payment cannot take an obligation past its
  amount due (sign-aware, so refunds are capped the same way)
- Every insert/edit/delete re-derives the obligation's cached status in the
  same transaction
- Manual edits to an automated line turn it into a manual line
"""

from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal
from typing import Optional

from ..config import setting
from ..extensions import db
from ..models import Payment, PaymentSchedule, Tenancy, TenancyMember
from ..models.payments import (
    PAYMENT_TYPE_DEPOSIT,
    PAYMENT_TYPES,
    SCHEDULE_AUTOMATED,
    SCHEDULE_MANUAL,
    STATUS_PENDING,
)
from ..models.tenancies import (
    KEY_RETURNED,
    TENANCY_ACTIVE,
    TENANCY_APPROVAL,
    TENANCY_EXPIRED,
)
from ..time_utils import local_today
from ..validation import NotFoundError, coerce_money
from .concurrency import lock_for_update, run_with_retry
from .reconciliation_service import reconcile, refresh_cached_status


class PaymentError(Exception):
    """Raised for payment operation errors."""
    pass


# Deposits are taken before move-in and arrears collected after expiry
RECORDABLE_TENANCY_STATUSES = {TENANCY_APPROVAL, TENANCY_ACTIVE, TENANCY_EXPIRED}
MANUAL_OBLIGATION_STATUSES = {TENANCY_APPROVAL, TENANCY_ACTIVE}


# =============================================================================
# LOOKUPS
# =============================================================================

def _get_obligation(schedule_id: int, agency_id: int, *, lock: bool = False) -> PaymentSchedule:
    query = (
        db.session.query(PaymentSchedule)
        .join(Tenancy, PaymentSchedule.tenancy_id == Tenancy.id)
        .filter(PaymentSchedule.id == schedule_id, Tenancy.agency_id == agency_id)
    )
    if lock:
        query = lock_for_update(query)
    obligation = query.first()
    if not obligation:
        raise NotFoundError(f"Payment schedule {schedule_id} not found")
    return obligation


def _get_payment(payment_id: int, agency_id: int) -> Payment:
    payment = (
        db.session.query(Payment)
        .join(Tenancy, Payment.tenancy_id == Tenancy.id)
        .filter(Payment.id == payment_id, Tenancy.agency_id == agency_id)
        .first()
    )
    if not payment:
        raise NotFoundError(f"Payment {payment_id} not found")
    return payment


def _tolerance() -> Decimal:
    return Decimal(setting("BALANCE_TOLERANCE"))


def _check_amount_fits(obligation: PaymentSchedule, amount: Decimal, already_paid: Decimal) -> None:
    """
    Refuse zero, wrong-sign and balance-exceeding amounts.

    Raises:
        PaymentError: With the remaining balance in the message
    """
    if amount == 0:
        raise PaymentError("Payment amount must be non-zero")

    amount_due = Decimal(obligation.amount_due)
    remaining = amount_due - already_paid
    tolerance = _tolerance()

    if amount_due == 0:
        raise PaymentError("Nothing is owed on this obligation")
    if (amount_due > 0) != (amount > 0):
        direction = "positive" if amount_due > 0 else "negative (refund)"
        raise PaymentError(f"Payment amount must be {direction} for this obligation")
    if amount_due > 0 and amount - remaining >= tolerance:
        raise PaymentError(f"Payment {amount} exceeds remaining balance {remaining}")
    if amount_due < 0 and remaining - amount >= tolerance:
        raise PaymentError(f"Refund {amount} exceeds remaining balance {remaining}")


# =============================================================================
# LEDGER ENTRIES
# =============================================================================

def record_payment(
    schedule_id: int,
    *,
    agency_id: int,
    amount,
    payment_date: Optional[date] = None,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Payment:
    """
    Record a cash movement against an obligation.

    Args:
        schedule_id: Obligation being paid
        agency_id: Caller's tenant scope
        amount: Signed amount, same sign as the obligation
        payment_date: Defaults to today in the agency time zone
        payment_reference: Bank reference, receipt number, etc. (optional)
        notes: Free text (optional)

    Returns:
        Payment record

    Raises:
        NotFoundError: Obligation outside the agency
        PaymentError: Tenancy not billable, zero amount, wrong sign, or the
            amount exceeds the remaining balance
    """
    amount = coerce_money("amount", amount)

    def _op():
        obligation = _get_obligation(schedule_id, agency_id, lock=True)
        tenancy = obligation.tenancy
        if tenancy.status not in RECORDABLE_TENANCY_STATUSES:
            raise PaymentError(
                f"Cannot record payments on a tenancy with status {tenancy.status}"
            )

        current = reconcile(obligation)
        _check_amount_fits(obligation, amount, current.amount_paid)

        payment = Payment(
            tenancy_id=obligation.tenancy_id,
            amount=amount,
            payment_date=payment_date or local_today(),
            payment_reference=payment_reference,
            notes=notes,
        )
        obligation.payments.append(payment)
        db.session.flush()

        refresh_cached_status(obligation)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def update_payment(
    payment_id: int,
    *,
    agency_id: int,
    amount=None,
    payment_date: Optional[date] = None,
    payment_reference: Optional[str] = None,
    notes: Optional[str] = None,
) -> Payment:
    """Correct a recorded payment. The new amount is re-checked against the balance."""
    new_amount = coerce_money("amount", amount) if amount is not None else None

    def _op():
        payment = _get_payment(payment_id, agency_id)
        obligation = _get_obligation(payment.schedule_id, agency_id, lock=True)

        if new_amount is not None:
            others = [p for p in obligation.payments if p.id != payment.id]
            paid_elsewhere = reconcile(obligation, others).amount_paid
            _check_amount_fits(obligation, new_amount, paid_elsewhere)
            payment.amount = new_amount
        if payment_date is not None:
            payment.payment_date = payment_date
        if payment_reference is not None:
            payment.payment_reference = payment_reference
        if notes is not None:
            payment.notes = notes

        db.session.flush()
        refresh_cached_status(obligation)
        db.session.commit()
        return payment

    return run_with_retry(_op)


def delete_payment(payment_id: int, *, agency_id: int) -> PaymentSchedule:
    """Remove a ledger entry; returns the re-reconciled obligation."""
    def _op():
        payment = _get_payment(payment_id, agency_id)
        obligation = _get_obligation(payment.schedule_id, agency_id, lock=True)
        obligation.payments.remove(payment)
        db.session.flush()
        refresh_cached_status(obligation)
        db.session.commit()
        return obligation

    return run_with_retry(_op)


def revert_obligation(schedule_id: int, *, agency_id: int) -> int:
    """
    Delete every payment recorded against an obligation.

    Returns:
        Number of payments removed
    """
    def _op():
        obligation = _get_obligation(schedule_id, agency_id, lock=True)
        removed = len(obligation.payments)
        obligation.payments.clear()
        db.session.flush()
        refresh_cached_status(obligation)
        db.session.commit()
        return removed

    return run_with_retry(_op)


# =============================================================================
# OBLIGATIONS
# =============================================================================

def create_manual_obligation(
    tenancy_id: int,
    *,
    agency_id: int,
    amount_due,
    due_date: date,
    payment_type: str,
    description: Optional[str] = None,
    member_id: Optional[int] = None,
) -> PaymentSchedule:
    """
    Add a one-off line (fee, utilities, adjustment) to a tenancy.

    Raises:
        PaymentError: Unknown type, zero amount, tenancy not billable, or the
            member belongs to another tenancy
    """
    amount_due = coerce_money("amount_due", amount_due)
    if payment_type not in PAYMENT_TYPES:
        raise PaymentError(f"Invalid payment type: {payment_type}. Must be one of {list(PAYMENT_TYPES)}")
    if amount_due == 0:
        raise PaymentError("Amount due must be non-zero")

    def _op():
        tenancy = db.session.query(Tenancy).filter_by(id=tenancy_id, agency_id=agency_id).first()
        if not tenancy:
            raise NotFoundError(f"Tenancy {tenancy_id} not found")
        if tenancy.status not in MANUAL_OBLIGATION_STATUSES:
            raise PaymentError(
                f"Cannot add payments to a tenancy with status {tenancy.status}"
            )
        if member_id is not None:
            member = db.session.query(TenancyMember).filter_by(id=member_id, tenancy_id=tenancy.id).first()
            if not member:
                raise PaymentError(f"Member {member_id} is not part of tenancy {tenancy_id}")

        obligation = PaymentSchedule(
            tenancy_id=tenancy.id,
            member_id=member_id,
            payment_type=payment_type,
            schedule_type=SCHEDULE_MANUAL,
            description=description or payment_type.capitalize(),
            amount_due=amount_due,
            due_date=due_date,
            amount_paid=Decimal("0"),
            status=STATUS_PENDING,
        )
        tenancy.payment_schedules.append(obligation)
        db.session.flush()
        refresh_cached_status(obligation)
        db.session.commit()
        return obligation

    return run_with_retry(_op)


def update_obligation(
    schedule_id: int,
    *,
    agency_id: int,
    amount_due=None,
    due_date: Optional[date] = None,
    description: Optional[str] = None,
) -> PaymentSchedule:
    """
    Edit an obligation's amount, due date or description.

    Changing the amount of an automated line marks it manual so it is
    recognisably hand-edited; regeneration still treats its period as covered.
    """
    new_amount = coerce_money("amount_due", amount_due) if amount_due is not None else None
    if new_amount is not None and new_amount == 0:
        raise PaymentError("Amount due must be non-zero")

    def _op():
        obligation = _get_obligation(schedule_id, agency_id, lock=True)
        if new_amount is not None and new_amount != Decimal(obligation.amount_due):
            obligation.amount_due = new_amount
            if obligation.schedule_type == SCHEDULE_AUTOMATED:
                obligation.schedule_type = SCHEDULE_MANUAL
        if due_date is not None:
            obligation.due_date = due_date
        if description is not None:
            obligation.description = description
        refresh_cached_status(obligation)
        db.session.commit()
        return obligation

    return run_with_retry(_op)


def delete_obligation(schedule_id: int, *, agency_id: int) -> None:
    """Remove an obligation that has no payments against it."""
    def _op():
        obligation = _get_obligation(schedule_id, agency_id, lock=True)
        if obligation.payments:
            raise PaymentError(
                "Cannot delete an obligation with recorded payments; revert them first"
            )
        db.session.delete(obligation)
        db.session.commit()

    return run_with_retry(_op)


def create_deposit_returns(
    tenancy_id: int,
    *,
    agency_id: int,
    member_ids: Optional[list[int]] = None,
) -> list[PaymentSchedule]:
    """
    Create refund obligations for deposits held, once keys are returned.

    One negative deposit line per member, equal to the deposit actually paid,
    due DEPOSIT_RETURN_DAYS_AFTER_KEYS after the member's key return date.

    Raises:
        PaymentError: Keys not returned, nothing held, or a return already exists
    """
    def _op():
        tenancy = db.session.query(Tenancy).filter_by(id=tenancy_id, agency_id=agency_id).first()
        if not tenancy:
            raise NotFoundError(f"Tenancy {tenancy_id} not found")

        members = tenancy.members
        if member_ids is not None:
            wanted = set(member_ids)
            members = [m for m in members if m.id in wanted]
            if len(members) != len(wanted):
                raise PaymentError("One or more members are not part of this tenancy")

        deposit_lines = [
            ob for ob in tenancy.payment_schedules if ob.payment_type == PAYMENT_TYPE_DEPOSIT
        ]
        return_days = timedelta(days=setting("DEPOSIT_RETURN_DAYS_AFTER_KEYS"))

        created = []
        for member in members:
            mine = [ob for ob in deposit_lines if ob.member_id == member.id]
            if any(Decimal(ob.amount_due) < 0 for ob in mine):
                raise PaymentError(f"A deposit return already exists for {member.full_name}")
            if member.key_status != KEY_RETURNED or member.key_return_date is None:
                raise PaymentError(f"Keys have not been returned by {member.full_name}")

            held = sum(
                (reconcile(ob).amount_paid for ob in mine if Decimal(ob.amount_due) > 0),
                Decimal("0"),
            )
            if held <= 0:
                continue

            obligation = PaymentSchedule(
                tenancy_id=tenancy.id,
                member_id=member.id,
                payment_type=PAYMENT_TYPE_DEPOSIT,
                schedule_type=SCHEDULE_MANUAL,
                description="Deposit return",
                amount_due=-held,
                due_date=member.key_return_date + return_days,
                amount_paid=Decimal("0"),
                status=STATUS_PENDING,
            )
            tenancy.payment_schedules.append(obligation)
            created.append(obligation)

        if not created:
            raise PaymentError("No deposits are held for the selected members")

        db.session.flush()
        for obligation in created:
            refresh_cached_status(obligation)
        db.session.commit()
        return created

    return run_with_retry(_op)
