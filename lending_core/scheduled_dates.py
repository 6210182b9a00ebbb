"""
Scheduled-Date Generator

Produces the raw sequence of repayment due dates, before any holiday or
working-day adjustment.
"""

from datetime import date
from typing import List, Optional

from .calendar_utils import PeriodFrequencyType, add_period
from .exceptions import InvalidLoanTermsError


def generate_due_dates(
    start_date: date,
    number_of_repayments: int,
    repayment_every: int,
    frequency: PeriodFrequencyType,
    first_due_date: Optional[date] = None,
) -> List[date]:
    """
    Generate N due dates.

    Each date is derived from the anchor, never from the previous date, so
    month-end clamping in one period does not drift into the next:
    ``start + k*I`` for k = 1..N, or ``first + (k-1)*I`` when an explicit
    first due date is supplied.
    """
    if number_of_repayments <= 0:
        raise InvalidLoanTermsError(
            f"Number of repayments must be positive, got {number_of_repayments}",
            code="loan.terms.number.of.repayments.not.positive",
        )
    if repayment_every <= 0:
        raise InvalidLoanTermsError(
            f"Repayment interval must be positive, got {repayment_every}",
            code="loan.terms.repayment.every.not.positive",
        )

    if first_due_date is not None:
        if first_due_date <= start_date:
            raise InvalidLoanTermsError(
                f"First repayment date {first_due_date} must be after {start_date}",
                code="loan.terms.repayments.starting.from.date.not.after.disbursement",
            )
        return [
            add_period(first_due_date, k * repayment_every, frequency)
            for k in range(number_of_repayments)
        ]

    return [
        add_period(start_date, k * repayment_every, frequency)
        for k in range(1, number_of_repayments + 1)
    ]
