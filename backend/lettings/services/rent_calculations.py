# Overview: Pure rent arithmetic and billing-period partitioning; no database access.

"""
Rent calculations

All amounts are Decimal. Conversion constants come from config so an agency
can change them without touching arithmetic:

    monthly rate = weekly * WEEKS_PER_YEAR / MONTHS_PER_YEAR
    daily rate   = weekly / DAYS_PER_WEEK

A calendar month covered end-to-end is billed at the monthly rate; any clipped
month is billed per day. A longer period (quarter, whole term) is the sum of
its months, rounded once to pennies. Because every cadence uses the same
per-month rule, the full-term rent is identical whichever cadence is chosen.
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterator

from ..config import setting
from ..models.tenancies import (
    PAYMENT_OPTION_MONTHLY,
    PAYMENT_OPTION_MONTHLY_TO_QUARTERLY,
    PAYMENT_OPTION_QUARTERLY,
    PAYMENT_OPTION_UPFRONT,
)


PENNY = Decimal("0.01")

PERIOD_MONTH = "month"
PERIOD_QUARTER = "quarter"
PERIOD_TERM = "term"


@dataclass(frozen=True)
class BillingPeriod:
    start: date
    end: date
    kind: str
    # True when the period is shorter than the calendar unit it belongs to
    clipped: bool = False

    @property
    def days(self) -> int:
        return days_inclusive(self.start, self.end)


def round_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(PENNY, rounding=ROUND_HALF_UP)


def days_inclusive(start: date, end: date) -> int:
    """Number of days from start to end, counting both ends."""
    return (end - start).days + 1


def month_start(d: date) -> date:
    return d.replace(day=1)


def month_end(d: date) -> date:
    return d.replace(day=calendar.monthrange(d.year, d.month)[1])


def add_months(d: date, months: int) -> date:
    """First of the month `months` after d's month."""
    index = d.year * 12 + (d.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def monthly_rate(weekly_rate) -> Decimal:
    weekly = Decimal(weekly_rate)
    return weekly * Decimal(setting("WEEKS_PER_YEAR")) / Decimal(setting("MONTHS_PER_YEAR"))


def daily_rate(weekly_rate) -> Decimal:
    return Decimal(weekly_rate) / Decimal(setting("DAYS_PER_WEEK"))


def _iter_months(start: date, end: date) -> Iterator[tuple[date, date, bool]]:
    """Yield (clipped_start, clipped_end, is_full_month) for each month touched."""
    cursor = month_start(start)
    while cursor <= end:
        m_end = month_end(cursor)
        seg_start = max(cursor, start)
        seg_end = min(m_end, end)
        yield seg_start, seg_end, (seg_start == cursor and seg_end == m_end)
        cursor = add_months(cursor, 1)


def period_rent_unrounded(weekly_rate, start: date, end: date) -> Decimal:
    if end < start:
        raise ValueError(f"Period end {end} is before start {start}")
    total = Decimal("0")
    for seg_start, seg_end, full in _iter_months(start, end):
        if full:
            total += monthly_rate(weekly_rate)
        else:
            total += daily_rate(weekly_rate) * days_inclusive(seg_start, seg_end)
    return total


def period_rent(weekly_rate, start: date, end: date) -> Decimal:
    """
    Rent owed for [start, end] inclusive, rounded to pennies.

    Examples (weekly 100):
        1 Mar - 31 Mar         -> 433.33 (monthly rate, not 31 days)
        15 Jun - 30 Jun        -> 228.57 (100 / 7 * 16)
    """
    return round_money(period_rent_unrounded(weekly_rate, start, end))


def term_rent(weekly_rate, start: date, end: date) -> Decimal:
    """Full-term rent implied by the weekly rate (same month rule as periods)."""
    return period_rent(weekly_rate, start, end)


# =============================================================================
# PERIOD PARTITIONING
# =============================================================================

def _quarter_starts() -> list[int]:
    return sorted(setting("QUARTER_START_MONTHS"))


def quarter_start(d: date) -> date:
    starts = _quarter_starts()
    earlier = [m for m in starts if m <= d.month]
    if earlier:
        return date(d.year, max(earlier), 1)
    return date(d.year - 1, max(starts), 1)


def next_quarter_start(d: date) -> date:
    starts = _quarter_starts()
    later = [m for m in starts if m > d.month]
    if later:
        return date(d.year, min(later), 1)
    return date(d.year + 1, min(starts), 1)


def month_periods(start: date, end: date) -> list[BillingPeriod]:
    return [
        BillingPeriod(seg_start, seg_end, PERIOD_MONTH, clipped=not full)
        for seg_start, seg_end, full in _iter_months(start, end)
    ]


def quarter_periods(start: date, end: date) -> list[BillingPeriod]:
    periods = []
    cursor = start
    while cursor <= end:
        q_start = quarter_start(cursor)
        q_end = next_quarter_start(cursor) - timedelta(days=1)
        seg_end = min(q_end, end)
        clipped = cursor != q_start or seg_end != q_end
        periods.append(BillingPeriod(cursor, seg_end, PERIOD_QUARTER, clipped=clipped))
        cursor = seg_end + timedelta(days=1)
    return periods


def hybrid_periods(start: date, end: date) -> list[BillingPeriod]:
    """
    Monthly in HYBRID_MONTHLY_MONTHS, quarterly otherwise.

    Within a quarter, consecutive non-monthly months are billed together;
    a monthly month always stands alone.
    """
    monthly_months = set(setting("HYBRID_MONTHLY_MONTHS"))
    periods = []
    for quarter in quarter_periods(start, end):
        block: list[tuple[date, date, bool]] = []
        for seg in _iter_months(quarter.start, quarter.end):
            if seg[0].month in monthly_months:
                if block:
                    periods.append(_merge_block(block))
                    block = []
                periods.append(BillingPeriod(seg[0], seg[1], PERIOD_MONTH, clipped=not seg[2]))
            else:
                block.append(seg)
        if block:
            periods.append(_merge_block(block))
    return periods


def _merge_block(block) -> BillingPeriod:
    clipped = not all(seg[2] for seg in block)
    return BillingPeriod(block[0][0], block[-1][1], PERIOD_QUARTER, clipped=clipped)


def billing_periods(payment_option: str, start: date, end: date) -> list[BillingPeriod]:
    """
    Partition [start, end] into billing periods for a payment option.

    Raises:
        ValueError: Unknown payment option or end before start
    """
    if end < start:
        raise ValueError(f"End date {end} is before start date {start}")
    if payment_option == PAYMENT_OPTION_MONTHLY:
        return month_periods(start, end)
    if payment_option == PAYMENT_OPTION_QUARTERLY:
        return quarter_periods(start, end)
    if payment_option == PAYMENT_OPTION_MONTHLY_TO_QUARTERLY:
        return hybrid_periods(start, end)
    if payment_option == PAYMENT_OPTION_UPFRONT:
        return [BillingPeriod(start, end, PERIOD_TERM, clipped=False)]
    raise ValueError(f"Unknown payment option '{payment_option}'")


def describe_period(period: BillingPeriod) -> str:
    """Human label used in obligation descriptions, e.g. 'Rent - March 2025 (partial)'."""
    if period.kind == PERIOD_TERM:
        label = f"Upfront ({period.start:%d %b %Y} - {period.end:%d %b %Y})"
    elif period.start.year == period.end.year and period.start.month == period.end.month:
        label = f"{period.start:%B %Y}"
    elif period.start.year == period.end.year:
        label = f"{period.start:%b}-{period.end:%b %Y}"
    else:
        label = f"{period.start:%b %Y}-{period.end:%b %Y}"
    suffix = " (partial)" if period.clipped else ""
    return f"Rent - {label}{suffix}"
