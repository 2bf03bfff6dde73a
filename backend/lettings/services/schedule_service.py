# Overview: Service-layer operations for payment schedules; builds and persists rent and deposit obligations.

"""
Payment schedule generation

generate_schedule() is pure: given a tenancy, its members and the set of
obligations that already exist, it returns the drafts that are missing. It
never touches the session, so the same logic serves the approval transition,
migration import, manual re-generation and the rolling continuation job.

MODES:
- Full (default): every period of the term. For an open-ended rolling tenancy
  the term is taken to run up to the period containing `as_of`.
- Current period only: just the period containing `as_of` (rolling job).

RULES:
- Rolling tenancies always bill monthly; others use the member's payment option.
- Members without a positive weekly rent are not billed.
- One rent draft per (member, period); its key is (member, "rent", covers_from).
  Drafts whose key already exists are dropped, so re-running is a no-op.
- One deposit draft per member with a positive deposit, due
  DEPOSIT_DUE_DAYS_BEFORE_START days before the start. Never regenerated.
- Existing rows are never modified by generation. When a tenancy's end date
  moves, refit_rent_lines() re-clips the unpaid automated lines first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy.exc import IntegrityError

from ..config import setting
from ..extensions import db
from ..models import PaymentSchedule, Tenancy
from ..models.payments import (
    PAYMENT_TYPE_DEPOSIT,
    PAYMENT_TYPE_RENT,
    SCHEDULE_AUTOMATED,
    STATUS_PENDING,
)
from ..models.tenancies import PAYMENT_OPTION_MONTHLY, PAYMENT_OPTIONS
from ..time_utils import local_today
from ..validation import NotFoundError
from . import rent_calculations as rc
from .concurrency import run_with_retry
from .reconciliation_service import refresh_cached_status


logger = logging.getLogger(__name__)


class ScheduleError(ValueError):
    """Generation refused because a tenancy precondition is violated."""


@dataclass(frozen=True)
class ObligationDraft:
    member_id: Optional[int]
    payment_type: str
    amount_due: Decimal
    due_date: date
    covers_from: Optional[date]
    covers_to: Optional[date]
    description: str

    @property
    def key(self) -> tuple:
        return (self.member_id, self.payment_type, self.covers_from)


def validate_term(tenancy) -> None:
    """
    Raises:
        ScheduleError: End before start, or fixed-term tenancy without an end date
    """
    if tenancy.start_date is None:
        raise ScheduleError(f"Tenancy {tenancy.id} has no start date")
    if tenancy.end_date is None and not tenancy.is_rolling_periodic:
        raise ScheduleError(
            f"Tenancy {tenancy.id} is fixed-term but has no end date"
        )
    if tenancy.end_date is not None and tenancy.end_date < tenancy.start_date:
        raise ScheduleError(
            f"Tenancy {tenancy.id} end date {tenancy.end_date} is before start date {tenancy.start_date}"
        )


def existing_keys(obligations: Iterable) -> set:
    """
    Keys of obligations that block regeneration.

    Rent lines are keyed by coverage start regardless of later manual edits;
    any positive deposit line blocks a new deposit for that member.
    """
    keys = set()
    for ob in obligations:
        if ob.payment_type == PAYMENT_TYPE_RENT and ob.covers_from is not None:
            keys.add((ob.member_id, PAYMENT_TYPE_RENT, ob.covers_from))
        elif ob.payment_type == PAYMENT_TYPE_DEPOSIT and Decimal(ob.amount_due) > 0:
            keys.add((ob.member_id, PAYMENT_TYPE_DEPOSIT, None))
    return keys


def _payment_option_for(tenancy, member) -> str:
    if tenancy.is_rolling_periodic:
        return PAYMENT_OPTION_MONTHLY
    return member.payment_option


def _billing_window(tenancy, as_of: date) -> tuple[date, date]:
    """Term start and the last day generation may cover."""
    if tenancy.end_date is not None:
        return tenancy.start_date, tenancy.end_date
    horizon = rc.month_end(max(as_of, tenancy.start_date))
    return tenancy.start_date, horizon


def generate_schedule(
    tenancy,
    members: Iterable,
    *,
    as_of: Optional[date] = None,
    current_period_only: bool = False,
    include_deposits: Optional[bool] = None,
    existing: Iterable = (),
) -> list[ObligationDraft]:
    """
    Build the obligation drafts a tenancy is missing.

    Args:
        tenancy: Tenancy (or any object with the same date/flag attributes)
        members: Members to bill; each needs id, rent_pppw, deposit_amount,
            payment_option
        as_of: Business date for the rolling horizon / current period
        current_period_only: Emit only the period containing as_of
        include_deposits: Defaults to True in full mode, False otherwise
        existing: Obligations already stored for the tenancy

    Returns:
        Drafts ordered by due date then member id.

    Raises:
        ScheduleError: Inconsistent dates or a billable member without a
            valid payment option. Nothing is produced in that case.
    """
    validate_term(tenancy)
    if as_of is None:
        as_of = local_today()
    if include_deposits is None:
        include_deposits = not current_period_only

    members = list(members)
    billable = [m for m in members if m.rent_pppw is not None and Decimal(m.rent_pppw) > 0]

    invalid = [m for m in billable if _payment_option_for(tenancy, m) not in PAYMENT_OPTIONS]
    if invalid:
        names = ", ".join(f"member {m.id}" for m in invalid)
        raise ScheduleError(f"No valid payment option chosen for {names}")

    blocked = existing_keys(existing)
    offset = timedelta(days=setting("RENT_DUE_DAY_OFFSET"))
    start, last_day = _billing_window(tenancy, as_of)

    drafts: list[ObligationDraft] = []
    for member in billable:
        periods = rc.billing_periods(_payment_option_for(tenancy, member), start, last_day)
        if current_period_only:
            periods = [p for p in periods if p.start <= as_of <= p.end]
        for period in periods:
            draft = ObligationDraft(
                member_id=member.id,
                payment_type=PAYMENT_TYPE_RENT,
                amount_due=rc.period_rent(member.rent_pppw, period.start, period.end),
                due_date=period.start + offset,
                covers_from=period.start,
                covers_to=period.end,
                description=rc.describe_period(period),
            )
            if draft.key not in blocked:
                drafts.append(draft)

    if include_deposits:
        deposit_due = tenancy.start_date - timedelta(days=setting("DEPOSIT_DUE_DAYS_BEFORE_START"))
        for member in members:
            deposit = Decimal(member.deposit_amount or 0)
            if deposit <= 0:
                continue
            draft = ObligationDraft(
                member_id=member.id,
                payment_type=PAYMENT_TYPE_DEPOSIT,
                amount_due=rc.round_money(deposit),
                due_date=deposit_due,
                covers_from=None,
                covers_to=None,
                description="Deposit",
            )
            if draft.key not in blocked:
                drafts.append(draft)

    drafts.sort(key=lambda d: (d.due_date, d.member_id or 0, d.payment_type))
    return drafts


def persist_drafts(tenancy: Tenancy, drafts: Iterable[ObligationDraft]) -> list[PaymentSchedule]:
    """Add drafts to the session as automated obligations. Does not commit."""
    created = []
    for draft in drafts:
        obligation = PaymentSchedule(
            tenancy_id=tenancy.id,
            member_id=draft.member_id,
            payment_type=draft.payment_type,
            schedule_type=SCHEDULE_AUTOMATED,
            description=draft.description,
            amount_due=draft.amount_due,
            due_date=draft.due_date,
            covers_from=draft.covers_from,
            covers_to=draft.covers_to,
            amount_paid=Decimal("0"),
            status=STATUS_PENDING,
        )
        tenancy.payment_schedules.append(obligation)
        created.append(obligation)
    return created


def add_missing_obligations(
    tenancy: Tenancy,
    *,
    as_of: Optional[date] = None,
    current_period_only: bool = False,
    include_deposits: Optional[bool] = None,
) -> list[PaymentSchedule]:
    """
    Generate and stage whatever the tenancy is missing. Caller commits.

    Deposits are staged only with a tenancy's first automated lines, so a
    deposit line deleted later is not recreated.
    """
    existing = (
        db.session.query(PaymentSchedule)
        .filter(PaymentSchedule.tenancy_id == tenancy.id)
        .all()
    )
    if include_deposits is None and not current_period_only:
        include_deposits = not any(ob.schedule_type == SCHEDULE_AUTOMATED for ob in existing)
    drafts = generate_schedule(
        tenancy,
        tenancy.members,
        as_of=as_of,
        current_period_only=current_period_only,
        include_deposits=include_deposits,
        existing=existing,
    )
    created = persist_drafts(tenancy, drafts)
    if created:
        db.session.flush()
    return created


@dataclass
class RefitReport:
    removed: int = 0
    repriced: int = 0
    held: list[PaymentSchedule] = field(default_factory=list)


def refit_rent_lines(tenancy: Tenancy) -> RefitReport:
    """
    Re-align rent lines with a changed end date. Does not commit.

    Unpaid automated lines starting after the end are removed, and the line
    whose coverage no longer matches its period is re-clipped and re-priced.
    Lines with payments, or edited by hand, are left as they are and reported
    in `held`. Periods the new term gains are not added here; see
    add_missing_obligations().
    """
    report = RefitReport()
    if tenancy.end_date is None:
        return report
    validate_term(tenancy)

    members = {m.id: m for m in tenancy.members}
    periods_by_member: dict = {}

    for obligation in list(tenancy.payment_schedules):
        if obligation.payment_type != PAYMENT_TYPE_RENT or obligation.covers_from is None:
            continue
        member = members.get(obligation.member_id)
        if member is None or member.rent_pppw is None or Decimal(member.rent_pppw) <= 0:
            continue

        if obligation.member_id not in periods_by_member:
            periods = rc.billing_periods(
                _payment_option_for(tenancy, member), tenancy.start_date, tenancy.end_date,
            )
            periods_by_member[obligation.member_id] = {p.start: p for p in periods}
        period = periods_by_member[obligation.member_id].get(obligation.covers_from)
        if period is not None and period.end == obligation.covers_to:
            continue

        if obligation.schedule_type != SCHEDULE_AUTOMATED or obligation.payments:
            report.held.append(obligation)
            continue

        if period is None:
            tenancy.payment_schedules.remove(obligation)
            report.removed += 1
            continue

        obligation.covers_to = period.end
        obligation.amount_due = rc.period_rent(member.rent_pppw, period.start, period.end)
        obligation.description = rc.describe_period(period)
        refresh_cached_status(obligation)
        report.repriced += 1

    if report.removed or report.repriced:
        db.session.flush()
    return report


def generate_for_tenancy(
    tenancy_id: int,
    *,
    agency_id: Optional[int] = None,
    as_of: Optional[date] = None,
    current_period_only: bool = False,
    include_deposits: Optional[bool] = None,
) -> list[PaymentSchedule]:
    """
    Generate missing obligations for one tenancy in its own transaction.

    A concurrent run that inserts the same period first makes this commit fail
    on uq_payment_schedules_period; the operation is then re-run once against
    the fresh state, where those periods are already present.

    Returns:
        Newly created obligations (empty when already fully scheduled).
    """
    def _op():
        query = db.session.query(Tenancy).filter(Tenancy.id == tenancy_id)
        if agency_id is not None:
            query = query.filter(Tenancy.agency_id == agency_id)
        tenancy = query.first()
        if not tenancy:
            raise NotFoundError(f"Tenancy {tenancy_id} not found")
        created = add_missing_obligations(
            tenancy,
            as_of=as_of,
            current_period_only=current_period_only,
            include_deposits=include_deposits,
        )
        db.session.commit()
        return created

    try:
        created = run_with_retry(_op)
    except IntegrityError:
        db.session.rollback()
        logger.info("Tenancy %s: concurrent schedule generation detected, re-checking", tenancy_id)
        created = run_with_retry(_op)

    if created:
        logger.info("Tenancy %s: created %s obligations", tenancy_id, len(created))
    return created
