"""
Interest & EMI Calculation Module

Day-count interest over an outstanding-balance timeline with interest
pauses excluded, the closed-form PMT formula and the integer-cent EMI
solver used for equal-installment amortization.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, Context, localcontext
from typing import Callable, Iterable, List, Optional, Tuple

from .calendar_utils import (
    DaysInMonthType, DaysInYearType, days_between, days_in_year, year_boundaries
)
from .currency import Money, Currency, math_context
from .loans import InterestPause


@dataclass(frozen=True)
class BalanceSegment:
    """Principal balance outstanding over [from_date, to_date)"""
    balance: Decimal
    from_date: date
    to_date: date


class InterestCalculator:
    """
    Computes interest for a balance timeline.

    Interest for a period is the sum over its non-paused sub-intervals of
    ``balance * rate / 100 * days / days_in_year``, rounded once to the
    currency scale at the end.
    """

    def __init__(
        self,
        annual_interest_rate: Decimal,
        days_in_month_type: DaysInMonthType = DaysInMonthType.ACTUAL,
        days_in_year_type: DaysInYearType = DaysInYearType.ACTUAL,
        interest_pauses: Iterable[InterestPause] = (),
        context: Optional[Context] = None,
    ):
        self.annual_interest_rate = Decimal(str(annual_interest_rate))
        self.days_in_month_type = days_in_month_type
        self.days_in_year_type = days_in_year_type
        self.interest_pauses = sorted(interest_pauses, key=lambda p: p.start_date)
        self.context = context or math_context()

    @classmethod
    def for_terms(cls, terms, interest_pauses: Iterable[InterestPause] = ()) -> 'InterestCalculator':
        return cls(
            terms.annual_interest_rate,
            terms.days_in_month_type,
            terms.days_in_year_type,
            interest_pauses,
        )

    def accruing_intervals(self, from_date: date, to_date: date) -> List[Tuple[date, date]]:
        """Sub-intervals of [from_date, to_date) not covered by any pause"""
        intervals = []
        cursor = from_date
        for pause in self.interest_pauses:
            # Pauses are inclusive of their end date
            pause_start, pause_end = pause.start_date, pause.end_date + timedelta(days=1)
            if pause_end <= cursor or pause_start >= to_date:
                continue
            if pause_start > cursor:
                intervals.append((cursor, pause_start))
            cursor = max(cursor, pause_end)
            if cursor >= to_date:
                break
        if cursor < to_date:
            intervals.append((cursor, to_date))
        return intervals

    def day_counts(self, from_date: date, to_date: date) -> List[Tuple[int, int]]:
        """(accruing days, days in year) for each slice of [from_date, to_date)"""
        counts = []
        for start, end in self.accruing_intervals(from_date, to_date):
            if self.days_in_year_type == DaysInYearType.ACTUAL:
                slices = year_boundaries(start, end)
            else:
                slices = [(start, end)]
            for slice_start, slice_end in slices:
                counts.append((
                    days_between(slice_start, slice_end, self.days_in_month_type),
                    days_in_year(self.days_in_year_type, slice_start),
                ))
        return counts

    def year_fraction(self, from_date: date, to_date: date) -> Decimal:
        """Accruing fraction of a year between the two dates"""
        fraction = Decimal('0')
        with localcontext(self.context):
            for days, year_length in self.day_counts(from_date, to_date):
                fraction += Decimal(days) / Decimal(year_length)
        return fraction

    def raw_interest(self, balance: Decimal, from_date: date, to_date: date) -> Decimal:
        """Unrounded interest on a constant balance"""
        if balance == 0 or to_date <= from_date:
            return Decimal('0')
        interest = Decimal('0')
        with localcontext(self.context):
            for days, year_length in self.day_counts(from_date, to_date):
                interest += balance * self.annual_interest_rate * days / (Decimal('100') * year_length)
        return interest

    def interest_for_segments(self, segments: Iterable[BalanceSegment], currency: Currency) -> Money:
        total = Decimal('0')
        with localcontext(self.context):
            for segment in segments:
                total += self.raw_interest(segment.balance, segment.from_date, segment.to_date)
        return Money(total, currency)

    def interest_for_period(self, balance: Money, from_date: date, to_date: date) -> Money:
        return self.interest_for_segments(
            [BalanceSegment(balance.amount, from_date, to_date)], balance.currency
        )

    def period_rate(self, from_date: date, to_date: date) -> Decimal:
        """Periodic rate for a window, as a fraction"""
        with localcontext(self.context):
            return self.annual_interest_rate / Decimal('100') * self.year_fraction(from_date, to_date)


def calculate_pmt(principal: Decimal, period_rate: Decimal, number_of_periods: int,
                  context: Optional[Context] = None) -> Decimal:
    """
    Level payment for a fully amortizing loan.

    PMT = P * r / (1 - (1 + r)^-n), or P / n when r is zero.
    """
    context = context or math_context()
    with localcontext(context):
        if period_rate == 0:
            return principal / Decimal(number_of_periods)
        factor = (Decimal('1') + period_rate) ** -number_of_periods
        return principal * period_rate / (Decimal('1') - factor)


def solve_installment(residual: Callable[[Money], Decimal], guess: Money) -> Money:
    """
    Find the installment, in whole minor units, whose residual is closest to zero.

    ``residual`` returns the balance left after the last period when every
    period pays the candidate installment; it must be non-increasing in the
    installment amount. The returned installment minimises ``abs(residual)``,
    and the caller lets the last period absorb what is left.
    """
    currency = guess.currency
    quantum = currency.quantum

    def evaluate(units: int) -> Decimal:
        return residual(Money(quantum * units, currency))

    start = max(int(guess.amount / quantum), 0)

    # Bracket the root: residual(low) >= 0 >= residual(high)
    low, high = start, start
    step = 1
    while low > 0 and evaluate(low) < 0:
        low = max(low - step, 0)
        step *= 2
    step = 1
    while evaluate(high) > 0:
        high += step
        step *= 2

    while high - low > 1:
        middle = (low + high) // 2
        if evaluate(middle) > 0:
            low = middle
        else:
            high = middle

    if abs(evaluate(low)) < abs(evaluate(high)):
        return Money(quantum * low, currency)
    return Money(quantum * high, currency)
