"""
Loan Module

Loan terms, disbursements, interest pauses and the schedule data model.
A LoanSchedule owns its SchedulePeriod sequence; periods are mutated only
by the allocation processor and replaced only by schedule regeneration.
"""

from dataclasses import dataclass, field, fields, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from .calendar_utils import DaysInMonthType, DaysInYearType, PeriodFrequencyType
from .currency import Money, Currency
from .exceptions import (
    InvalidInterestPauseError, InvalidLoanTermsError, InvalidTransactionError,
    CurrencyMismatchError
)


class AmortizationMethod(Enum):
    """Methods for loan amortization"""
    EQUAL_PRINCIPAL = "equal_principal"      # Equal principal + declining interest
    EQUAL_INSTALLMENT = "equal_installment"  # French method - equal payments


class InterestMethod(Enum):
    """How interest is charged"""
    FLAT = "flat"                            # On the disbursed principal
    DECLINING_BALANCE = "declining_balance"  # On the outstanding principal


class PreClosureInterestStrategy(Enum):
    """Interest owed when a loan is settled before maturity"""
    TILL_PRE_CLOSURE_DATE = "till_pre_closure_date"          # Accrued up to the as-of date
    TILL_REST_FREQUENCY_DATE = "till_rest_frequency_date"    # Full current period


class PeriodKind(Enum):
    """Role of a period within the schedule"""
    DISBURSEMENT = "disbursement"
    DOWN_PAYMENT = "down_payment"
    REPAYMENT = "repayment"


class AllocationComponent(Enum):
    """Installment components a transaction can be applied to"""
    PENALTY = "penalty"
    FEE = "fee"
    INTEREST = "interest"
    PRINCIPAL = "principal"


_COMPONENT_FIELDS = {
    AllocationComponent.PRINCIPAL: "principal",
    AllocationComponent.INTEREST: "interest",
    AllocationComponent.FEE: "fee_charges",
    AllocationComponent.PENALTY: "penalty_charges",
}

# Sort rank of periods falling due on the same date
_KIND_RANK = {
    PeriodKind.DISBURSEMENT: 0,
    PeriodKind.DOWN_PAYMENT: 1,
    PeriodKind.REPAYMENT: 2,
}


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms and conditions, replaced as a whole on reschedule"""
    principal: Money
    annual_interest_rate: Decimal          # Percent, e.g. 12 for 12%
    number_of_repayments: int
    repayment_every: int
    repayment_frequency: PeriodFrequencyType
    amortization_method: AmortizationMethod
    interest_method: InterestMethod
    expected_disbursement_date: date
    days_in_month_type: DaysInMonthType = DaysInMonthType.ACTUAL
    days_in_year_type: DaysInYearType = DaysInYearType.ACTUAL
    repayments_starting_from_date: Optional[date] = None
    principal_grace_periods: int = 0
    interest_grace_periods: int = 0
    down_payment_percentage: Optional[Decimal] = None
    pre_closure_interest_strategy: PreClosureInterestStrategy = PreClosureInterestStrategy.TILL_PRE_CLOSURE_DATE
    interest_recalculation_enabled: bool = False
    fixed_emi_amount: Optional[Money] = None

    def __post_init__(self):
        if not isinstance(self.annual_interest_rate, Decimal):
            object.__setattr__(self, 'annual_interest_rate', Decimal(str(self.annual_interest_rate)))
        if self.down_payment_percentage is not None and not isinstance(self.down_payment_percentage, Decimal):
            object.__setattr__(self, 'down_payment_percentage', Decimal(str(self.down_payment_percentage)))

        if not self.principal.is_positive():
            raise InvalidLoanTermsError(
                f"Principal must be positive, got {self.principal.to_string()}",
                code="loan.terms.principal.not.positive",
            )
        if self.number_of_repayments <= 0:
            raise InvalidLoanTermsError(
                f"Number of repayments must be positive, got {self.number_of_repayments}",
                code="loan.terms.number.of.repayments.not.positive",
            )
        if self.repayment_every <= 0:
            raise InvalidLoanTermsError(
                f"Repayment interval must be positive, got {self.repayment_every}",
                code="loan.terms.repayment.every.not.positive",
            )
        if self.annual_interest_rate <= 0:
            raise InvalidLoanTermsError(
                f"Annual interest rate must be positive, got {self.annual_interest_rate}",
                code="loan.terms.interest.rate.not.positive",
            )
        for name in ("principal_grace_periods", "interest_grace_periods"):
            grace = getattr(self, name)
            if grace < 0 or grace >= self.number_of_repayments:
                raise InvalidLoanTermsError(
                    f"{name} must be between 0 and {self.number_of_repayments - 1}, got {grace}",
                    code=f"loan.terms.{name.replace('_', '.')}.out.of.range",
                )
        if self.down_payment_percentage is not None and not (
                Decimal('0') <= self.down_payment_percentage < Decimal('100')):
            raise InvalidLoanTermsError(
                f"Down payment percentage must be in [0, 100), got {self.down_payment_percentage}",
                code="loan.terms.down.payment.percentage.out.of.range",
            )
        if self.fixed_emi_amount is not None:
            if self.fixed_emi_amount.currency != self.currency:
                raise CurrencyMismatchError("Fixed EMI currency must match principal currency")
            if not self.fixed_emi_amount.is_positive():
                raise InvalidLoanTermsError(
                    "Fixed EMI amount must be positive",
                    code="loan.terms.fixed.emi.not.positive",
                )

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def has_down_payment(self) -> bool:
        return self.down_payment_percentage is not None and self.down_payment_percentage > 0

    def down_payment_for(self, amount: Money) -> Money:
        """Down payment due for a disbursement of the given amount"""
        if not self.has_down_payment:
            return Money.zero(amount.currency)
        return amount * (self.down_payment_percentage / Decimal('100'))

    def with_interest_rate(self, annual_interest_rate: Decimal) -> 'LoanTerms':
        return replace(self, annual_interest_rate=annual_interest_rate)


@dataclass(frozen=True)
class Disbursement:
    """A single tranche paid out to the borrower"""
    disbursement_date: date
    amount: Money

    def __post_init__(self):
        if not self.amount.is_positive():
            raise InvalidTransactionError(
                f"Disbursement amount must be positive, got {self.amount.to_string()}",
                code="disbursement.amount.not.positive",
            )


@dataclass(frozen=True)
class InterestPause:
    """Inclusive date interval during which no interest accrues"""
    start_date: date
    end_date: date

    def __post_init__(self):
        if self.end_date < self.start_date:
            raise InvalidInterestPauseError(
                f"Interest pause ends {self.end_date} before it starts {self.start_date}",
                code="interest.pause.end.date.before.start.date",
            )

    def overlaps(self, other: 'InterestPause') -> bool:
        return self.start_date <= other.end_date and other.start_date <= self.end_date


@dataclass
class SchedulePeriod:
    """
    One row of the repayment schedule.

    Amounts due are ``principal``, ``interest``, ``fee_charges`` and
    ``penalty_charges``; each has matching ``_paid`` and ``_written_off``
    sub-amounts, and all but principal have a ``_waived`` sub-amount.
    ``outstanding_balance`` is the scheduled principal balance after the period.
    """
    number: int                 # Installment number, 0 for disbursement rows
    kind: PeriodKind
    from_date: date
    due_date: date
    principal: Money
    interest: Optional[Money] = None
    fee_charges: Optional[Money] = None
    penalty_charges: Optional[Money] = None
    disbursed: Optional[Money] = None
    outstanding_balance: Optional[Money] = None

    principal_paid: Optional[Money] = None
    interest_paid: Optional[Money] = None
    fee_charges_paid: Optional[Money] = None
    penalty_charges_paid: Optional[Money] = None

    interest_waived: Optional[Money] = None
    fee_charges_waived: Optional[Money] = None
    penalty_charges_waived: Optional[Money] = None

    principal_written_off: Optional[Money] = None
    interest_written_off: Optional[Money] = None
    fee_charges_written_off: Optional[Money] = None
    penalty_charges_written_off: Optional[Money] = None

    obligations_met_on_date: Optional[date] = None

    def __post_init__(self):
        zero = Money.zero(self.principal.currency)
        for f in fields(self):
            if f.name != "obligations_met_on_date" and getattr(self, f.name) is None:
                setattr(self, f.name, zero)

    @property
    def currency(self) -> Currency:
        return self.principal.currency

    @property
    def is_installment(self) -> bool:
        return self.kind != PeriodKind.DISBURSEMENT

    def due(self, component: AllocationComponent) -> Money:
        return getattr(self, _COMPONENT_FIELDS[component])

    def paid(self, component: AllocationComponent) -> Money:
        return getattr(self, _COMPONENT_FIELDS[component] + "_paid")

    def waived(self, component: AllocationComponent) -> Money:
        if component == AllocationComponent.PRINCIPAL:
            return Money.zero(self.currency)
        return getattr(self, _COMPONENT_FIELDS[component] + "_waived")

    def written_off(self, component: AllocationComponent) -> Money:
        return getattr(self, _COMPONENT_FIELDS[component] + "_written_off")

    def outstanding(self, component: AllocationComponent) -> Money:
        remaining = self.due(component) - self.paid(component) - self.waived(component) \
            - self.written_off(component)
        return remaining if remaining.is_positive() else Money.zero(self.currency)

    @property
    def total_due(self) -> Money:
        return self.principal + self.interest + self.fee_charges + self.penalty_charges

    @property
    def total_outstanding(self) -> Money:
        total = Money.zero(self.currency)
        for component in AllocationComponent:
            total = total + self.outstanding(component)
        return total

    @property
    def is_fully_settled(self) -> bool:
        return self.total_outstanding.is_zero()

    def has_activity(self) -> bool:
        """True once any amount was paid, waived or written off"""
        for component in AllocationComponent:
            if not (self.paid(component).is_zero() and self.waived(component).is_zero()
                    and self.written_off(component).is_zero()):
                return True
        return False

    def add_charge(self, component: AllocationComponent, amount: Money) -> None:
        if component not in (AllocationComponent.FEE, AllocationComponent.PENALTY):
            raise InvalidTransactionError(
                f"Charges apply to fee or penalty, not {component.value}",
                code="charge.component.invalid",
            )
        name = _COMPONENT_FIELDS[component]
        setattr(self, name, getattr(self, name) + amount)

    def pay(self, component: AllocationComponent, amount: Money, on_date: date) -> Money:
        """Pay up to amount against the component, returning what was applied"""
        return self._reduce(component, "_paid", amount, on_date)

    def waive(self, component: AllocationComponent, amount: Money, on_date: date) -> Money:
        if component == AllocationComponent.PRINCIPAL:
            raise InvalidTransactionError("Principal cannot be waived", code="waiver.principal.not.allowed")
        return self._reduce(component, "_waived", amount, on_date)

    def write_off(self, component: AllocationComponent, amount: Money, on_date: date) -> Money:
        return self._reduce(component, "_written_off", amount, on_date)

    def unpay(self, component: AllocationComponent, amount: Money) -> Money:
        """Reverse up to amount of earlier payments, returning what was reversed"""
        return self._restore(component, "_paid", amount)

    def unwaive(self, component: AllocationComponent, amount: Money) -> Money:
        return self._restore(component, "_waived", amount)

    def unwrite_off(self, component: AllocationComponent, amount: Money) -> Money:
        return self._restore(component, "_written_off", amount)

    def _reduce(self, component, suffix: str, amount: Money, on_date: date) -> Money:
        applied = min(amount, self.outstanding(component))
        if applied.is_positive():
            name = _COMPONENT_FIELDS[component] + suffix
            setattr(self, name, getattr(self, name) + applied)
            if self.is_fully_settled:
                self.obligations_met_on_date = on_date
        return applied

    def _restore(self, component, suffix: str, amount: Money) -> Money:
        name = _COMPONENT_FIELDS[component] + suffix
        applied = min(amount, getattr(self, name))
        if applied.is_positive():
            setattr(self, name, getattr(self, name) - applied)
            if not self.is_fully_settled:
                self.obligations_met_on_date = None
        return applied

    def copy(self) -> 'SchedulePeriod':
        return replace(self)

    def sort_key(self) -> Tuple[date, int, int]:
        return self.due_date, _KIND_RANK[self.kind], self.number


@dataclass
class LoanSchedule:
    """Loan terms together with the period sequence generated from them"""
    terms: LoanTerms
    disbursements: List[Disbursement]
    interest_pauses: List[InterestPause] = field(default_factory=list)
    periods: List[SchedulePeriod] = field(default_factory=list)

    @property
    def installments(self) -> List[SchedulePeriod]:
        return [p for p in self.periods if p.is_installment]

    @property
    def repayment_periods(self) -> List[SchedulePeriod]:
        return [p for p in self.periods if p.kind == PeriodKind.REPAYMENT]

    @property
    def maturity_date(self) -> date:
        return self.repayment_periods[-1].due_date

    @property
    def loan_start_date(self) -> date:
        return self.terms.expected_disbursement_date

    @property
    def total_disbursed(self) -> Money:
        total = Money.zero(self.terms.currency)
        for disbursement in self.disbursements:
            total = total + disbursement.amount
        return total

    @property
    def outstanding_principal(self) -> Money:
        total = Money.zero(self.terms.currency)
        for period in self.installments:
            total = total + period.outstanding(AllocationComponent.PRINCIPAL)
        return total

    def split(self, as_of_date: date) -> Tuple[List[SchedulePeriod], List[SchedulePeriod]]:
        """
        Split periods into a settled and a projected segment.

        The settled segment runs through the last period that is already
        due on as_of_date or carries any payment activity; everything after
        it may be regenerated.
        """
        cut = 0
        for index, period in enumerate(self.periods):
            if period.due_date <= as_of_date or period.has_activity():
                cut = index + 1
        return self.periods[:cut], self.periods[cut:]
