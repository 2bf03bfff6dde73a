# Overview: Pytest coverage for rent arithmetic and billing-period partitioning.

"""
Rent calculation tests

Pure functions only; no database. Worked examples use a weekly rate of 100:
    monthly = 100 * 52 / 12 = 433.33
    daily   = 100 / 7       = 14.2857...
"""

from datetime import date
from decimal import Decimal

import pytest

from lettings.services import rent_calculations as rc


def _sum(weekly, periods):
    return sum((rc.period_rent(weekly, p.start, p.end) for p in periods), Decimal("0"))


class TestRates:
    def test_monthly_rate_uses_52_over_12(self):
        assert rc.round_money(rc.monthly_rate(Decimal("100"))) == Decimal("433.33")

    def test_daily_rate(self):
        assert rc.round_money(rc.daily_rate(Decimal("70"))) == Decimal("10.00")

    def test_round_money_half_up(self):
        assert rc.round_money(Decimal("1.005")) == Decimal("1.01")
        assert rc.round_money(Decimal("-1.005")) == Decimal("-1.01")


class TestPeriodRent:
    def test_full_month_billed_at_monthly_rate_not_day_count(self):
        """A 31-day month and a 28-day month cost the same."""
        assert rc.period_rent(Decimal("100"), date(2025, 3, 1), date(2025, 3, 31)) == Decimal("433.33")
        assert rc.period_rent(Decimal("100"), date(2025, 2, 1), date(2025, 2, 28)) == Decimal("433.33")

    def test_partial_month_prorated_daily(self):
        """Start on the 15th of a 30-day month: 16 days at 100/7."""
        assert rc.period_rent(Decimal("100"), date(2025, 6, 15), date(2025, 6, 30)) == Decimal("228.57")

    def test_full_quarter_is_three_monthly_rates(self):
        assert rc.period_rent(Decimal("100"), date(2025, 1, 1), date(2025, 3, 31)) == Decimal("1300.00")

    def test_clipped_quarter_mixes_daily_and_monthly(self):
        # 17 days of February at 100/7 plus March at the monthly rate
        expected = rc.round_money(Decimal("100") / 7 * 17 + Decimal("100") * 52 / 12)
        assert rc.period_rent(Decimal("100"), date(2025, 2, 12), date(2025, 3, 31)) == expected

    def test_end_before_start_rejected(self):
        with pytest.raises(ValueError):
            rc.period_rent(Decimal("100"), date(2025, 3, 2), date(2025, 3, 1))

    def test_days_inclusive_counts_both_ends(self):
        assert rc.days_inclusive(date(2025, 6, 15), date(2025, 6, 30)) == 16
        assert rc.days_inclusive(date(2025, 6, 15), date(2025, 6, 15)) == 1


class TestPartitioning:
    START = date(2025, 9, 1)
    END = date(2026, 8, 31)

    def test_monthly_periods_cover_term_without_gaps(self):
        periods = rc.billing_periods("monthly", self.START, self.END)
        assert len(periods) == 12
        assert periods[0].start == self.START
        assert periods[-1].end == self.END
        for prev, nxt in zip(periods, periods[1:]):
            assert (nxt.start - prev.end).days == 1
        assert not any(p.clipped for p in periods)

    def test_monthly_periods_mark_clipped_ends(self):
        periods = rc.billing_periods("monthly", date(2025, 9, 15), date(2026, 6, 14))
        assert periods[0].clipped and periods[-1].clipped
        assert not any(p.clipped for p in periods[1:-1])

    def test_quarterly_periods_follow_calendar_quarters(self):
        periods = rc.billing_periods("quarterly", self.START, self.END)
        assert [(p.start, p.end) for p in periods] == [
            (date(2025, 9, 1), date(2025, 9, 30)),
            (date(2025, 10, 1), date(2025, 12, 31)),
            (date(2026, 1, 1), date(2026, 3, 31)),
            (date(2026, 4, 1), date(2026, 6, 30)),
            (date(2026, 7, 1), date(2026, 8, 31)),
        ]
        assert periods[0].clipped and periods[-1].clipped
        assert not periods[1].clipped

    def test_hybrid_is_monthly_in_summer_quarterly_otherwise(self):
        periods = rc.billing_periods("monthly_to_quarterly", self.START, self.END)
        assert [(p.start, p.end, p.kind) for p in periods] == [
            (date(2025, 9, 1), date(2025, 9, 30), rc.PERIOD_MONTH),
            (date(2025, 10, 1), date(2025, 12, 31), rc.PERIOD_QUARTER),
            (date(2026, 1, 1), date(2026, 3, 31), rc.PERIOD_QUARTER),
            (date(2026, 4, 1), date(2026, 6, 30), rc.PERIOD_QUARTER),
            (date(2026, 7, 1), date(2026, 7, 31), rc.PERIOD_MONTH),
            (date(2026, 8, 1), date(2026, 8, 31), rc.PERIOD_MONTH),
        ]

    def test_upfront_is_one_period(self):
        periods = rc.billing_periods("upfront", self.START, self.END)
        assert len(periods) == 1
        assert periods[0].kind == rc.PERIOD_TERM
        assert (periods[0].start, periods[0].end) == (self.START, self.END)

    def test_unknown_option_rejected(self):
        with pytest.raises(ValueError):
            rc.billing_periods("fortnightly", self.START, self.END)

    @pytest.mark.parametrize("option", ["monthly", "quarterly", "monthly_to_quarterly", "upfront"])
    @pytest.mark.parametrize("start,end", [
        (date(2025, 9, 1), date(2026, 8, 31)),
        (date(2025, 9, 15), date(2026, 6, 14)),
        (date(2024, 2, 10), date(2024, 11, 3)),
    ])
    def test_period_amounts_sum_to_term_rent(self, option, start, end):
        """Whatever the cadence, the term costs the same to within a penny per period."""
        weekly = Decimal("137.50")
        periods = rc.billing_periods(option, start, end)
        total = _sum(weekly, periods)
        term = rc.term_rent(weekly, start, end)
        assert abs(total - term) <= Decimal("0.005") * (len(periods) + 1)


class TestQuarterHelpers:
    def test_quarter_start(self):
        assert rc.quarter_start(date(2025, 5, 20)) == date(2025, 4, 1)
        assert rc.quarter_start(date(2025, 12, 31)) == date(2025, 10, 1)

    def test_next_quarter_start_wraps_year(self):
        assert rc.next_quarter_start(date(2025, 11, 2)) == date(2026, 1, 1)

    def test_add_months(self):
        assert rc.add_months(date(2025, 11, 30), 3) == date(2026, 2, 1)


class TestDescribePeriod:
    def test_full_month(self):
        period = rc.BillingPeriod(date(2025, 3, 1), date(2025, 3, 31), rc.PERIOD_MONTH)
        assert rc.describe_period(period) == "Rent - March 2025"

    def test_partial_month(self):
        period = rc.BillingPeriod(date(2025, 6, 15), date(2025, 6, 30), rc.PERIOD_MONTH, clipped=True)
        assert rc.describe_period(period) == "Rent - June 2025 (partial)"

    def test_quarter_same_year(self):
        period = rc.BillingPeriod(date(2025, 10, 1), date(2025, 12, 31), rc.PERIOD_QUARTER)
        assert rc.describe_period(period) == "Rent - Oct-Dec 2025"

    def test_upfront(self):
        period = rc.BillingPeriod(date(2025, 9, 1), date(2026, 8, 31), rc.PERIOD_TERM)
        assert rc.describe_period(period) == "Rent - Upfront (01 Sep 2025 - 31 Aug 2026)"
