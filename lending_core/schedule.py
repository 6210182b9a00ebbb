"""
Schedule Generation Module

Builds the period-by-period repayment plan and regenerates its projected
part after mid-life changes: additional disbursements, interest pauses,
interest-rate changes and explicit reschedules. Periods that are already
due or carry payment activity are never rewritten.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, localcontext
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .calendar_utils import WorkingDays
from .config import get_config
from .currency import Money
from .exceptions import (
    CurrencyMismatchError, DisbursementLimitExceededError, InvalidInterestPauseError,
    InvalidLoanTermsError, InvalidTransactionError, LendingError
)
from .holidays import Holiday, HolidayAdjuster, MeetingCalendar
from .interest import BalanceSegment, InterestCalculator, calculate_pmt, solve_installment
from .loans import (
    AmortizationMethod, Disbursement, InterestMethod, InterestPause, LoanSchedule,
    LoanTerms, PeriodKind, SchedulePeriod
)
from .logging_config import get_logger, log_action
from .scheduled_dates import generate_due_dates


@dataclass(frozen=True)
class _Window:
    """Repayment window [from_date, due_date) for repayment index k (0-based)"""
    index: int
    from_date: date
    due_date: date


@dataclass
class _Projection:
    """Inputs shared by every amortization strategy"""
    terms: LoanTerms
    calculator: InterestCalculator
    windows: List[_Window]
    opening_balance: Decimal
    disbursed_base: Decimal
    window_steps: List[List[Tuple[date, Decimal]]]

    @property
    def currency(self):
        return self.terms.currency

    def zero(self) -> Money:
        return Money.zero(self.currency)

    def interest_free(self, window: _Window) -> bool:
        return window.index < self.terms.interest_grace_periods

    def principal_free(self, window: _Window) -> bool:
        return window.index < self.terms.principal_grace_periods

    def principal_windows_from(self, position: int) -> int:
        return sum(1 for window in self.windows[position:] if not self.principal_free(window))

    def interest(self, window: _Window, segments: List[BalanceSegment]) -> Money:
        if self.interest_free(window):
            return self.zero()
        return self.calculator.interest_for_segments(segments, self.currency)


Row = Tuple[Money, Money]  # (interest, principal)


def _segments(balance: Decimal, window: _Window,
              steps: Sequence[Tuple[date, Decimal]]) -> Tuple[List[BalanceSegment], Decimal]:
    """Balance timeline across a window with disbursement steps applied"""
    segments = []
    cursor = window.from_date
    for step_date, amount in steps:
        if step_date > cursor:
            segments.append(BalanceSegment(balance, cursor, step_date))
            cursor = step_date
        balance += amount
    segments.append(BalanceSegment(balance, cursor, window.due_date))
    return segments, balance


def _equal_principal_walk(projection: _Projection):
    """
    Yield (window, outstanding segments, disbursed segments, principal).

    The fixed principal is recomputed whenever a disbursement lands inside a
    window; the last window takes whatever balance remains.
    """
    currency = projection.currency
    balance = projection.opening_balance
    base = projection.disbursed_base
    last = len(projection.windows) - 1
    fixed = None

    for position, window in enumerate(projection.windows):
        steps = projection.window_steps[position]
        outstanding_segments, balance = _segments(balance, window, steps)
        base_segments, base = _segments(base, window, steps)

        if fixed is None or steps:
            with localcontext(projection.calculator.context):
                fixed = Money(balance / Decimal(projection.principal_windows_from(position)), currency)

        if projection.principal_free(window):
            principal = projection.zero()
        elif position == last:
            principal = Money(balance, currency)
        else:
            principal = min(fixed, Money(balance, currency))

        balance -= principal.amount
        yield window, outstanding_segments, base_segments, principal


def _declining_balance_equal_principal(projection: _Projection) -> List[Row]:
    return [
        (projection.interest(window, outstanding_segments), principal)
        for window, outstanding_segments, _, principal in _equal_principal_walk(projection)
    ]


def _flat_equal_principal(projection: _Projection) -> List[Row]:
    return [
        (projection.interest(window, base_segments), principal)
        for window, _, base_segments, principal in _equal_principal_walk(projection)
    ]


def _flat_equal_installment(projection: _Projection) -> List[Row]:
    """Total flat interest spread evenly over the interest-bearing windows"""
    walk = list(_equal_principal_walk(projection))
    calculator = projection.calculator
    currency = projection.currency

    total = Decimal('0')
    bearing = 0
    with localcontext(calculator.context):
        for window, _, base_segments, _ in walk:
            if not projection.interest_free(window):
                bearing += 1
                for segment in base_segments:
                    total += calculator.raw_interest(segment.balance, segment.from_date, segment.to_date)

    total_interest = Money(total, currency)
    with localcontext(calculator.context):
        per_window = Money(total / Decimal(bearing), currency) if bearing else projection.zero()

    rows = []
    allocated = projection.zero()
    bearing_seen = 0
    for window, _, _, principal in walk:
        if projection.interest_free(window):
            interest = projection.zero()
        else:
            bearing_seen += 1
            interest = total_interest - allocated if bearing_seen == bearing else per_window
            allocated = allocated + interest
        rows.append((interest, principal))
    return rows


def _declining_balance_equal_installment(projection: _Projection) -> List[Row]:
    """
    Progressive EMI: every principal-bearing window pays the same installment.

    The installment is solved in whole minor units so that the balance left
    after the last window is as close to zero as possible, then the last
    window absorbs that residue.
    """
    currency = projection.currency
    last = len(projection.windows) - 1

    def simulate(emi: Money, clamp: bool) -> Tuple[List[Row], Decimal]:
        rows = []
        balance = projection.opening_balance
        for position, window in enumerate(projection.windows):
            segments, balance = _segments(balance, window, projection.window_steps[position])
            interest = projection.interest(window, segments)
            if projection.principal_free(window):
                principal = projection.zero()
            elif clamp and position == last:
                principal = Money(balance, currency)
            else:
                principal = emi - interest
                if principal.is_negative():
                    principal = projection.zero()
                if clamp:
                    principal = min(principal, Money(balance, currency))
            balance -= principal.amount
            rows.append((interest, principal))
        return rows, balance

    emi = projection.terms.fixed_emi_amount
    if emi is None:
        emi = solve_installment(lambda candidate: simulate(candidate, clamp=False)[1],
                                _installment_guess(projection))

    rows, _ = simulate(emi, clamp=True)
    return rows


def _installment_guess(projection: _Projection) -> Money:
    total = projection.opening_balance
    for steps in projection.window_steps:
        for _, amount in steps:
            total += amount

    bearing = [w for w in projection.windows if not projection.principal_free(w)]
    rate = projection.calculator.period_rate(bearing[0].from_date, bearing[0].due_date)
    guess = calculate_pmt(total, rate, len(bearing), projection.calculator.context)
    return Money(guess, projection.currency)


AmortizationStrategy = Callable[[_Projection], List[Row]]

_STRATEGIES: Dict[Tuple[InterestMethod, AmortizationMethod], AmortizationStrategy] = {
    (InterestMethod.DECLINING_BALANCE, AmortizationMethod.EQUAL_PRINCIPAL): _declining_balance_equal_principal,
    (InterestMethod.DECLINING_BALANCE, AmortizationMethod.EQUAL_INSTALLMENT): _declining_balance_equal_installment,
    (InterestMethod.FLAT, AmortizationMethod.EQUAL_PRINCIPAL): _flat_equal_principal,
    (InterestMethod.FLAT, AmortizationMethod.EQUAL_INSTALLMENT): _flat_equal_installment,
}


def strategy_for(terms: LoanTerms) -> AmortizationStrategy:
    return _STRATEGIES[(terms.interest_method, terms.amortization_method)]


def is_progressive(terms: LoanTerms) -> bool:
    return (terms.interest_method == InterestMethod.DECLINING_BALANCE
            and terms.amortization_method == AmortizationMethod.EQUAL_INSTALLMENT)


class ScheduleGenerator:
    """
    Generates and regenerates loan schedules.

    Holiday, working-day and meeting-calendar rules are fixed per generator;
    everything loan specific is passed to each call.
    """

    def __init__(
        self,
        holidays: Iterable[Holiday] = (),
        working_days: Optional[WorkingDays] = None,
        meeting_calendar: Optional[MeetingCalendar] = None,
        settings=None,
    ):
        self.settings = settings or get_config()
        self.working_days = working_days or WorkingDays.from_config(self.settings)
        self.adjuster = HolidayAdjuster(holidays, self.working_days, meeting_calendar)
        self.logger = get_logger("lending.schedule")

    def due_dates(self, terms: LoanTerms) -> List[date]:
        """Holiday-adjusted due dates for the full term"""
        raw = generate_due_dates(
            terms.expected_disbursement_date,
            terms.number_of_repayments,
            terms.repayment_every,
            terms.repayment_frequency,
            terms.repayments_starting_from_date,
        )
        return self.adjuster.adjust(raw)

    def generate_schedule(
        self,
        terms: LoanTerms,
        disbursements: Optional[List[Disbursement]] = None,
        interest_pauses: Iterable[InterestPause] = (),
    ) -> LoanSchedule:
        """
        Build the initial schedule.

        Without explicit disbursements the full principal is disbursed on the
        expected disbursement date.
        """
        if disbursements is None:
            disbursements = [Disbursement(terms.expected_disbursement_date, terms.principal)]
        disbursements = sorted(disbursements, key=lambda d: d.disbursement_date)
        interest_pauses = list(interest_pauses)

        dates = self.due_dates(terms)
        self._validate_disbursements(terms, disbursements, dates[-1])
        self._validate_interest_pauses(terms, interest_pauses, dates[-1])

        schedule = LoanSchedule(terms, disbursements, interest_pauses, [])
        periods = self._regenerate(schedule, terms, settled=[], projected=[], dates=dates)
        schedule.periods = periods

        log_action(
            self.logger, "info",
            f"Generated schedule with {len(schedule.installments)} installments",
            action="generate_schedule",
            resource="schedule",
            extra={
                "principal": str(terms.principal.amount),
                "currency": terms.currency.code,
                "amortization_method": terms.amortization_method.value,
                "interest_method": terms.interest_method.value,
                "maturity_date": schedule.maturity_date.isoformat(),
            },
        )
        return schedule

    def reschedule_next_installments(
        self,
        schedule: LoanSchedule,
        as_of_date: date,
        new_terms: Optional[LoanTerms] = None,
    ) -> LoanSchedule:
        """
        Regenerate the periods that are not yet due as of as_of_date.

        Settled periods (due on or before as_of_date, or with payment
        activity) are copied unchanged; the rest is projected again from the
        settled outstanding balance under new_terms when given.
        """
        terms = new_terms or schedule.terms
        if terms.currency != schedule.terms.currency:
            raise self._rejected(
                CurrencyMismatchError("Rescheduled terms must keep the loan currency"),
                "reschedule_next_installments",
            )

        settled, projected = schedule.split(as_of_date)
        settled = [p.copy() for p in settled]
        settled_repayments = sum(1 for p in settled if p.kind == PeriodKind.REPAYMENT)

        if settled_repayments >= terms.number_of_repayments:
            if any(p.kind == PeriodKind.REPAYMENT for p in projected):
                raise self._rejected(InvalidLoanTermsError(
                    f"New term of {terms.number_of_repayments} repayments ends before "
                    f"{settled_repayments} settled repayments",
                    code="loan.reschedule.term.shorter.than.settled.periods",
                ), "reschedule_next_installments")
            periods = settled + [p.copy() for p in projected]
        else:
            periods = self._regenerate(schedule, terms, settled, projected, self.due_dates(terms))

        rescheduled = LoanSchedule(terms, list(schedule.disbursements), list(schedule.interest_pauses), periods)

        log_action(
            self.logger, "info",
            f"Rescheduled {len(periods) - len(settled)} periods from {as_of_date.isoformat()}",
            action="reschedule_next_installments",
            resource="schedule",
            extra={
                "as_of_date": as_of_date.isoformat(),
                "settled_periods": len(settled),
                "annual_interest_rate": str(terms.annual_interest_rate),
            },
        )
        return rescheduled

    def add_disbursement(self, schedule: LoanSchedule, disbursement: Disbursement) -> LoanSchedule:
        """Record another tranche and reproject the periods after it"""
        terms = schedule.terms
        disbursements = list(schedule.disbursements) + [disbursement]
        self._validate_disbursements(terms, disbursements, schedule.maturity_date)

        settled, _ = schedule.split(disbursement.disbursement_date)
        if settled and settled[-1].due_date > disbursement.disbursement_date:
            raise self._rejected(InvalidTransactionError(
                f"Disbursement on {disbursement.disbursement_date} precedes settled period "
                f"due {settled[-1].due_date}",
                code="disbursement.date.before.settled.period",
            ), "add_disbursement")

        pending = LoanSchedule(terms, disbursements, list(schedule.interest_pauses), schedule.periods)
        return self.reschedule_next_installments(pending, disbursement.disbursement_date)

    def add_interest_pause(
        self,
        schedule: LoanSchedule,
        interest_pause: InterestPause,
        as_of_date: Optional[date] = None,
    ) -> LoanSchedule:
        """Suspend interest over an inclusive date range and reproject"""
        pauses = list(schedule.interest_pauses) + [interest_pause]
        self._validate_interest_pauses(schedule.terms, pauses, schedule.maturity_date)

        as_of_date = as_of_date or interest_pause.start_date
        settled, _ = schedule.split(as_of_date)
        if settled and settled[-1].due_date > interest_pause.start_date:
            raise self._rejected(InvalidInterestPauseError(
                f"Interest pause starting {interest_pause.start_date} overlaps settled period "
                f"due {settled[-1].due_date}",
                code="interest.pause.before.settled.period",
            ), "add_interest_pause")

        pending = LoanSchedule(schedule.terms, list(schedule.disbursements), pauses, schedule.periods)
        return self.reschedule_next_installments(pending, as_of_date)

    def change_interest_rate(
        self,
        schedule: LoanSchedule,
        effective_date: date,
        annual_interest_rate: Decimal,
    ) -> LoanSchedule:
        """Apply a new rate to every period not yet due on effective_date"""
        try:
            new_terms = schedule.terms.with_interest_rate(annual_interest_rate)
        except LendingError as error:
            raise self._rejected(error, "change_interest_rate")
        return self.reschedule_next_installments(schedule, effective_date, new_terms)

    def _regenerate(
        self,
        schedule: LoanSchedule,
        terms: LoanTerms,
        settled: List[SchedulePeriod],
        projected: List[SchedulePeriod],
        dates: List[date],
    ) -> List[SchedulePeriod]:
        currency = terms.currency
        settled_repayments = [p for p in settled if p.kind == PeriodKind.REPAYMENT]
        first_index = len(settled_repayments)

        # Windows for the repayments still to come
        previous = settled_repayments[-1].due_date if settled_repayments else terms.expected_disbursement_date
        windows = []
        for index in range(first_index, terms.number_of_repayments):
            if dates[index] <= previous:
                raise self._rejected(InvalidLoanTermsError(
                    f"Due date {dates[index]} is not after the previous due date {previous}",
                    code="loan.schedule.due.date.not.after.previous",
                ), "generate_schedule")
            windows.append(_Window(index, previous, dates[index]))
            previous = dates[index]

        opening = settled[-1].outstanding_balance.amount if settled else Decimal('0')
        disbursed_base = Decimal('0')
        for period in settled:
            if period.kind == PeriodKind.DISBURSEMENT:
                disbursed_base += period.disbursed.amount
            elif period.kind == PeriodKind.DOWN_PAYMENT:
                disbursed_base -= period.principal.amount

        settled_disbursements = sum(1 for p in settled if p.kind == PeriodKind.DISBURSEMENT)
        pending = sorted(schedule.disbursements, key=lambda d: d.disbursement_date)[settled_disbursements:]

        # Net disbursement steps, folded into the opening balance when they
        # precede the first window
        window_steps = [[] for _ in windows]
        projection_opening = opening
        for disbursement in pending:
            net = (disbursement.amount - terms.down_payment_for(disbursement.amount)).amount
            if disbursement.disbursement_date <= windows[0].from_date:
                projection_opening += net
                disbursed_base += net
                continue
            for position, window in enumerate(windows):
                if disbursement.disbursement_date <= window.due_date:
                    window_steps[position].append((disbursement.disbursement_date, net))
                    break

        projection = _Projection(
            terms=terms,
            calculator=InterestCalculator.for_terms(terms, schedule.interest_pauses),
            windows=windows,
            opening_balance=projection_opening,
            disbursed_base=disbursed_base,
            window_steps=window_steps,
        )
        rows = strategy_for(terms)(projection)

        # Charges already levied on projected installments carry over
        charges = {}
        projected_repayments = [p for p in projected if p.kind == PeriodKind.REPAYMENT]
        for offset, period in enumerate(projected_repayments):
            charges[first_index + offset] = (period.fee_charges, period.penalty_charges)

        new_periods = []
        for disbursement in pending:
            new_periods.append(SchedulePeriod(
                number=0,
                kind=PeriodKind.DISBURSEMENT,
                from_date=disbursement.disbursement_date,
                due_date=disbursement.disbursement_date,
                principal=Money.zero(currency),
                disbursed=disbursement.amount,
            ))
            if terms.has_down_payment:
                new_periods.append(SchedulePeriod(
                    number=0,
                    kind=PeriodKind.DOWN_PAYMENT,
                    from_date=disbursement.disbursement_date,
                    due_date=disbursement.disbursement_date,
                    principal=terms.down_payment_for(disbursement.amount),
                ))

        for window, (interest, principal) in zip(windows, rows):
            fee, penalty = charges.get(window.index, (None, None))
            new_periods.append(SchedulePeriod(
                number=0,
                kind=PeriodKind.REPAYMENT,
                from_date=window.from_date,
                due_date=window.due_date,
                principal=principal,
                interest=interest,
                fee_charges=fee,
                penalty_charges=penalty,
            ))

        new_periods.sort(key=lambda p: p.sort_key())

        number = sum(1 for p in settled if p.is_installment)
        balance = Money(opening, currency)
        for period in new_periods:
            if period.is_installment:
                number += 1
                period.number = number
            balance = balance + period.disbursed - period.principal
            period.outstanding_balance = balance

        return settled + new_periods

    def _validate_disbursements(self, terms: LoanTerms, disbursements: List[Disbursement],
                                maturity_date: date) -> None:
        total = Money.zero(terms.currency)
        for disbursement in disbursements:
            if disbursement.amount.currency != terms.currency:
                raise self._rejected(CurrencyMismatchError(
                    "Disbursement currency must match principal currency"
                ), "validate_disbursements")
            if disbursement.disbursement_date < terms.expected_disbursement_date:
                raise self._rejected(InvalidTransactionError(
                    f"Disbursement on {disbursement.disbursement_date} precedes expected "
                    f"disbursement date {terms.expected_disbursement_date}",
                    code="disbursement.date.before.expected.disbursement.date",
                ), "validate_disbursements")
            if disbursement.disbursement_date >= maturity_date:
                raise self._rejected(InvalidTransactionError(
                    f"Disbursement on {disbursement.disbursement_date} is not before maturity {maturity_date}",
                    code="disbursement.date.after.maturity.date",
                ), "validate_disbursements")
            total = total + disbursement.amount

        if total > terms.principal:
            raise self._rejected(DisbursementLimitExceededError(
                f"Disbursements of {total.to_string()} exceed approved principal "
                f"{terms.principal.to_string()}"
            ), "validate_disbursements")

    def _validate_interest_pauses(self, terms: LoanTerms, pauses: List[InterestPause],
                                  maturity_date: date) -> None:
        if not pauses:
            return
        if not is_progressive(terms):
            raise self._rejected(InvalidInterestPauseError(
                "Interest pauses are only supported for progressive loans",
                code="interest.pause.not.supported.for.loan.type",
            ), "validate_interest_pauses")

        for pause in pauses:
            if pause.start_date < terms.expected_disbursement_date:
                raise self._rejected(InvalidInterestPauseError(
                    f"Interest pause starts {pause.start_date} before the loan starts "
                    f"{terms.expected_disbursement_date}",
                    code="interest.pause.start.date.before.loan.start.date",
                ), "validate_interest_pauses")
            if pause.end_date > maturity_date:
                raise self._rejected(InvalidInterestPauseError(
                    f"Interest pause ends {pause.end_date} after loan maturity {maturity_date}",
                    code="interest.pause.end.date.after.loan.maturity.date",
                ), "validate_interest_pauses")

        ordered = sorted(pauses, key=lambda p: p.start_date)
        for earlier, later in zip(ordered, ordered[1:]):
            if earlier.overlaps(later):
                raise self._rejected(InvalidInterestPauseError(
                    f"Interest pauses {earlier.start_date}..{earlier.end_date} and "
                    f"{later.start_date}..{later.end_date} overlap",
                    code="interest.pause.overlapping",
                ), "validate_interest_pauses")

    def _rejected(self, error: LendingError, action: str) -> LendingError:
        log_action(
            self.logger, "warning", str(error),
            action=action,
            resource="schedule",
            extra={"code": error.code},
        )
        return error
