"""
Test suite for interest module

Tests day-count interest, interest pauses, leap-year splitting and the
installment solver. All calculations must be precise to the cent.
"""

import pytest
from decimal import Decimal
from datetime import date

from lending_core.calendar_utils import DaysInMonthType, DaysInYearType
from lending_core.currency import Money, Currency
from lending_core.interest import (
    BalanceSegment, InterestCalculator, calculate_pmt, solve_installment
)
from lending_core.loans import InterestPause


def usd(amount):
    return Money(Decimal(amount), Currency.USD)


class TestInterestCalculator:
    """Test per-period interest"""

    def test_actual_actual_month(self):
        """Test 10000 at 12% over 30 days of 2023"""
        calculator = InterestCalculator(Decimal('12'))
        interest = calculator.interest_for_period(usd('10000.00'), date(2023, 1, 1), date(2023, 1, 31))
        assert interest == usd('98.63')

    def test_thirty_360(self):
        calculator = InterestCalculator(Decimal('12'), DaysInMonthType.DAYS_30, DaysInYearType.DAYS_360)
        interest = calculator.interest_for_period(usd('10000.00'), date(2023, 1, 15), date(2023, 2, 15))
        assert interest == usd('100.00')

    def test_fixed_365(self):
        calculator = InterestCalculator(Decimal('10'), days_in_year_type=DaysInYearType.DAYS_365)
        interest = calculator.interest_for_period(usd('3650.00'), date(2024, 2, 1), date(2024, 3, 1))
        assert interest == usd('29.00')

    def test_period_across_leap_year_boundary(self):
        """Test ACTUAL days-in-year splits at January 1st"""
        calculator = InterestCalculator(Decimal('12'))
        interest = calculator.interest_for_period(usd('10000.00'), date(2023, 12, 17), date(2024, 1, 16))
        assert interest == usd('98.50')

    def test_paused_days_excluded(self):
        """Test a 10-day inclusive pause removes 10 days of interest"""
        pause = InterestPause(date(2023, 1, 11), date(2023, 1, 20))
        calculator = InterestCalculator(Decimal('12'), interest_pauses=[pause])

        interest = calculator.interest_for_period(usd('10000.00'), date(2023, 1, 1), date(2023, 1, 31))

        assert interest == usd('65.75')
        assert calculator.accruing_intervals(date(2023, 1, 1), date(2023, 1, 31)) == [
            (date(2023, 1, 1), date(2023, 1, 11)),
            (date(2023, 1, 21), date(2023, 1, 31)),
        ]

    def test_pause_covering_whole_period(self):
        pause = InterestPause(date(2022, 12, 1), date(2023, 2, 28))
        calculator = InterestCalculator(Decimal('12'), interest_pauses=[pause])

        interest = calculator.interest_for_period(usd('10000.00'), date(2023, 1, 1), date(2023, 1, 31))

        assert interest.is_zero()

    def test_pause_outside_period_ignored(self):
        pause = InterestPause(date(2023, 3, 1), date(2023, 3, 5))
        calculator = InterestCalculator(Decimal('12'), interest_pauses=[pause])

        assert calculator.accruing_intervals(date(2023, 1, 1), date(2023, 1, 31)) == [
            (date(2023, 1, 1), date(2023, 1, 31))
        ]

    def test_segments_rounded_once(self):
        """Test interest on several segments is summed before rounding"""
        calculator = InterestCalculator(Decimal('12'), DaysInMonthType.DAYS_30, DaysInYearType.DAYS_360)
        segments = [
            BalanceSegment(Decimal('1000.50'), date(2023, 1, 1), date(2023, 1, 2)),
            BalanceSegment(Decimal('1000.50'), date(2023, 1, 2), date(2023, 1, 3)),
        ]
        # Each day is 0.33350, rounded separately that would be 0.66
        assert calculator.interest_for_segments(segments, Currency.USD) == usd('0.67')

    def test_period_rate(self):
        calculator = InterestCalculator(Decimal('12'), DaysInMonthType.DAYS_30, DaysInYearType.DAYS_360)
        rate = calculator.period_rate(date(2023, 1, 15), date(2023, 2, 15))
        assert rate.quantize(Decimal('0.000001')) == Decimal('0.010000')

    def test_empty_or_zero_balance(self):
        calculator = InterestCalculator(Decimal('12'))
        assert calculator.raw_interest(Decimal('0'), date(2023, 1, 1), date(2023, 2, 1)) == 0
        assert calculator.raw_interest(Decimal('100'), date(2023, 2, 1), date(2023, 2, 1)) == 0


class TestInstallment:
    """Test PMT formula and the installment solver"""

    def test_pmt(self):
        pmt = calculate_pmt(Decimal('10000'), Decimal('0.01'), 12)
        assert Money(pmt, Currency.USD) == usd('888.49')

    def test_pmt_zero_rate(self):
        assert calculate_pmt(Decimal('1200'), Decimal('0'), 12) == Decimal('100')

    def test_solver_matches_pmt(self):
        """Test the cent solver lands on the textbook installment"""
        def residual(emi):
            balance = usd('10000.00')
            for _ in range(12):
                interest = balance * Decimal('0.01')
                balance = balance - (emi - interest)
            return balance.amount

        guess = usd('800.00')
        assert solve_installment(residual, guess) == usd('888.49')

    def test_solver_from_high_guess(self):
        def residual(emi):
            return Decimal('1000.00') - emi.amount * 4

        assert solve_installment(residual, usd('900.00')) == usd('250.00')

    @pytest.mark.parametrize("principal,periods", [
        ('999.99', 1),
        ('5000.00', 7),
        ('123456.78', 36),
    ])
    def test_solver_picks_smallest_residual(self, principal, periods):
        def residual(emi):
            balance = usd(principal)
            for _ in range(periods):
                balance = balance - (emi - balance * Decimal('0.015'))
            return balance.amount

        emi = solve_installment(residual, usd('1.00'))
        cent = usd('0.01')
        assert abs(residual(emi)) <= abs(residual(emi + cent))
        assert abs(residual(emi)) <= abs(residual(emi - cent))
