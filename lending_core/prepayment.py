"""
Prepayment & Foreclosure Module

Computes the payoff amount of a loan as of an arbitrary date without
mutating the schedule.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from .currency import Money
from .exceptions import (
    BackdatedTransactionError, ForeclosureNotAllowedError, FutureDatedTransactionError,
    InvalidPrepaymentDateError, LendingError
)
from .interest import BalanceSegment, InterestCalculator
from .loans import (
    AllocationComponent, InterestPause, LoanTerms, PeriodKind, PreClosureInterestStrategy,
    SchedulePeriod
)
from .logging_config import get_logger, log_action


@dataclass(frozen=True)
class OutstandingAmounts:
    """Amounts owed to settle the loan on a given date"""
    principal: Money
    interest: Money
    fee_charges: Money
    penalty_charges: Money

    @property
    def total(self) -> Money:
        return self.principal + self.interest + self.fee_charges + self.penalty_charges


class PrepaymentCalculator:
    """Payoff quotes for early settlement"""

    def __init__(self):
        self.logger = get_logger("lending.prepayment")

    def calculate_prepayment(
        self,
        periods: List[SchedulePeriod],
        terms: LoanTerms,
        as_of_date: date,
        interest_pauses: Iterable[InterestPause] = (),
    ) -> OutstandingAmounts:
        """
        Payoff amount as of as_of_date.

        Principal is what was disbursed on or before as_of_date less principal
        already paid or written off; later tranches are not owed. Interest is what is past
        due, plus interest on the enclosing period (accrued per day up to
        as_of_date, or the whole period under TILL_REST_FREQUENCY_DATE), less
        interest already paid or waived on the enclosing and later periods.
        """
        currency = terms.currency
        zero = Money.zero(currency)
        installments = sorted((p for p in periods if p.is_installment), key=lambda p: p.sort_key())
        repayments = [p for p in installments if p.kind == PeriodKind.REPAYMENT]
        if not repayments:
            raise self._rejected(InvalidPrepaymentDateError(
                "Schedule has no repayment installments", code="prepayment.no.installments"
            ), as_of_date)

        last_settled = None
        for period in repayments:
            if not period.is_fully_settled:
                break
            last_settled = period

        maturity = repayments[-1].due_date
        if last_settled is not None and as_of_date <= last_settled.due_date:
            raise self._rejected(InvalidPrepaymentDateError(
                f"As-of date {as_of_date} is not after the last settled installment due "
                f"{last_settled.due_date}",
                code="prepayment.date.not.after.last.settled.installment",
            ), as_of_date)
        if as_of_date >= maturity:
            raise self._rejected(InvalidPrepaymentDateError(
                f"As-of date {as_of_date} is not before maturity {maturity}",
                code="prepayment.date.not.before.maturity",
            ), as_of_date)
        if as_of_date < repayments[0].from_date:
            raise self._rejected(InvalidPrepaymentDateError(
                f"As-of date {as_of_date} is before the loan starts {repayments[0].from_date}",
                code="prepayment.date.before.loan.start",
            ), as_of_date)

        enclosing = next(p for p in repayments if p.from_date <= as_of_date <= p.due_date)

        # Only tranches already paid out are owed
        tranches = [p for p in periods if p.kind == PeriodKind.DISBURSEMENT and p.due_date <= as_of_date]
        principal = zero
        for tranche in tranches:
            principal = principal + tranche.disbursed
        for period in installments:
            principal = principal - period.paid(AllocationComponent.PRINCIPAL) \
                - period.written_off(AllocationComponent.PRINCIPAL)
        if principal.is_negative():
            principal = zero

        past_due_interest = zero
        advance_interest = zero
        fee_charges = zero
        penalty_charges = zero
        for period in installments:
            if period.due_date < enclosing.due_date:
                past_due_interest = past_due_interest + period.outstanding(AllocationComponent.INTEREST)
            elif period.kind == PeriodKind.REPAYMENT:
                advance_interest = advance_interest + period.interest_paid + period.interest_waived
            if period.due_date <= enclosing.due_date:
                fee_charges = fee_charges + period.outstanding(AllocationComponent.FEE)
                penalty_charges = penalty_charges + period.outstanding(AllocationComponent.PENALTY)

        if terms.pre_closure_interest_strategy == PreClosureInterestStrategy.TILL_REST_FREQUENCY_DATE:
            current_interest = enclosing.interest
        else:
            calculator = InterestCalculator.for_terms(terms, interest_pauses)
            current_interest = min(
                calculator.interest_for_segments(
                    self._accrual_segments(principal, tranches, enclosing.from_date, as_of_date), currency
                ),
                enclosing.interest,
            )

        interest = past_due_interest + current_interest - advance_interest
        if interest.is_negative():
            interest = zero

        result = OutstandingAmounts(principal, interest, fee_charges, penalty_charges)
        log_action(
            self.logger, "info",
            f"Prepayment amount {result.total.to_string()} as of {as_of_date.isoformat()}",
            action="calculate_prepayment",
            resource="loan",
            extra={
                "principal": str(principal.amount),
                "interest": str(interest.amount),
                "strategy": terms.pre_closure_interest_strategy.value,
                "enclosing_installment": enclosing.number,
            },
        )
        return result

    def calculate_foreclosure(
        self,
        periods: List[SchedulePeriod],
        terms: LoanTerms,
        as_of_date: date,
        business_date: date,
        last_transaction_date: Optional[date] = None,
        interest_pauses: Iterable[InterestPause] = (),
    ) -> OutstandingAmounts:
        """Prepayment quote with the additional checks foreclosure requires"""
        if terms.interest_recalculation_enabled:
            raise self._rejected(ForeclosureNotAllowedError(
                "Loans with interest recalculation enabled cannot be foreclosed",
                code="foreclosure.not.allowed.with.interest.recalculation",
            ), as_of_date)
        if as_of_date > business_date:
            raise self._rejected(FutureDatedTransactionError(
                f"Foreclosure date {as_of_date} is after business date {business_date}",
                code="foreclosure.date.in.future",
            ), as_of_date)
        if last_transaction_date is not None and as_of_date < last_transaction_date:
            raise self._rejected(BackdatedTransactionError(
                f"Foreclosure date {as_of_date} is before last transaction on {last_transaction_date}",
                code="foreclosure.date.before.last.transaction",
            ), as_of_date)
        return self.calculate_prepayment(periods, terms, as_of_date, interest_pauses)

    @staticmethod
    def _accrual_segments(principal: Money, tranches: List[SchedulePeriod],
                          from_date: date, as_of_date: date) -> List[BalanceSegment]:
        """Balance timeline from from_date to as_of_date, stepping up on each tranche inside it"""
        steps = sorted((t for t in tranches if from_date < t.due_date), key=lambda t: t.due_date)
        balance = principal.amount
        for tranche in steps:
            balance -= tranche.disbursed.amount

        segments = []
        cursor = from_date
        for tranche in steps:
            if tranche.due_date > cursor:
                segments.append(BalanceSegment(max(balance, Decimal('0')), cursor, tranche.due_date))
                cursor = tranche.due_date
            balance += tranche.disbursed.amount
        segments.append(BalanceSegment(balance, cursor, as_of_date))
        return segments

    def _rejected(self, error: LendingError, as_of_date: date) -> LendingError:
        log_action(
            self.logger, "warning", str(error),
            action="calculate_prepayment",
            resource="loan",
            extra={"code": error.code, "as_of_date": as_of_date.isoformat()},
        )
        return error
