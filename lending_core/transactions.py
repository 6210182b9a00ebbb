"""
Repayment Allocation Module

Distributes repayments, waivers, refunds, charge payments, charge-offs and
down payments across installment components according to a configurable
allocation order. Every non-zero application produces a mapping record that
can later be replayed to reverse the transaction exactly.
"""

from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple
import uuid

from .config import get_config
from .currency import Money, default_currency
from .exceptions import (
    BackdatedTransactionError, FutureDatedTransactionError, InvalidAllocationOrderError,
    InvalidTransactionError, LendingError
)
from .loans import AllocationComponent, PeriodKind, SchedulePeriod
from .logging_config import get_logger, log_action


class TransactionType(Enum):
    """Kinds of loan transactions"""
    REPAYMENT = "repayment"            # Borrower payment
    DOWN_PAYMENT = "down_payment"      # Payment against down-payment installments
    WAIVER = "waiver"                  # Interest or charge waiver
    REFUND = "refund"                  # Money returned, unpays earlier payments
    CHARGE_PAYMENT = "charge_payment"  # Payment of a fee or penalty only
    CHARGE_OFF = "charge_off"          # Write-off of uncollectible amounts


class WaiverType(Enum):
    """What a waiver applies to"""
    INTEREST = "interest"
    CHARGES = "charges"    # Fees and penalties


class ChargeType(Enum):
    """Classification of a charge"""
    FEE = "fee"
    PENALTY = "penalty"


class InstallmentOrder(Enum):
    """Order in which installments are visited"""
    DUE_DATE = "due_date"            # Earliest due date first
    CHRONOLOGICAL = "chronological"  # Installment sequence number


class AllocationAction(Enum):
    """Effect recorded by a mapping"""
    PAID = "paid"
    WAIVED = "waived"
    WRITTEN_OFF = "written_off"
    UNPAID = "unpaid"


_CHARGE_COMPONENTS = {
    ChargeType.FEE: AllocationComponent.FEE,
    ChargeType.PENALTY: AllocationComponent.PENALTY,
}


@dataclass(frozen=True)
class AllocationOrder:
    """Immutable allocation configuration supplied with each call"""
    components: Tuple[AllocationComponent, ...] = (
        AllocationComponent.PENALTY,
        AllocationComponent.FEE,
        AllocationComponent.INTEREST,
        AllocationComponent.PRINCIPAL,
    )
    spill_to_next_installment: bool = True
    installment_order: InstallmentOrder = InstallmentOrder.DUE_DATE
    allow_advance_payment: bool = True

    def __post_init__(self):
        components = tuple(self.components)
        if len(components) != len(AllocationComponent) or set(components) != set(AllocationComponent):
            raise InvalidAllocationOrderError(
                "Allocation order must name penalty, fee, interest and principal exactly once, got "
                f"{[c.value for c in components]}"
            )
        object.__setattr__(self, 'components', components)

    @classmethod
    def from_config(cls, settings=None) -> 'AllocationOrder':
        settings = settings or get_config()
        try:
            components = tuple(AllocationComponent(name) for name in settings.allocation_components)
        except ValueError as exc:
            raise InvalidAllocationOrderError(
                f"Unknown allocation component in {settings.default_allocation_order!r}"
            ) from exc
        return cls(
            components=components,
            spill_to_next_installment=settings.allocation_spill_to_next_installment,
            allow_advance_payment=settings.allocation_allow_advance_payment,
        )


@dataclass(frozen=True)
class Transaction:
    """A posted loan transaction; immutable once created"""
    transaction_type: TransactionType
    amount: Money
    transaction_date: date
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    waiver_type: Optional[WaiverType] = None
    charge_type: Optional[ChargeType] = None

    def __post_init__(self):
        if self.amount.is_negative():
            raise InvalidTransactionError(
                f"Transaction amount cannot be negative, got {self.amount.to_string()}",
                code="transaction.amount.negative",
            )
        if self.transaction_type == TransactionType.WAIVER and self.waiver_type is None:
            raise InvalidTransactionError("Waiver needs a waiver type", code="waiver.type.missing")
        if self.transaction_type == TransactionType.CHARGE_PAYMENT and self.charge_type is None:
            raise InvalidTransactionError("Charge payment needs a charge type", code="charge.type.missing")


@dataclass(frozen=True)
class TransactionMapping:
    """Amount of one transaction applied to one component of one installment"""
    transaction_id: str
    installment_number: int
    component: AllocationComponent
    amount: Money
    action: AllocationAction
    transaction_date: date
    reversal: bool = False
    # Settlement date an UNPAID mapping cleared, restored when it is reversed
    obligations_met_on_date: Optional[date] = None


@dataclass(frozen=True)
class Charge:
    """Fee or penalty levied on the installment whose window holds due_date"""
    charge_type: ChargeType
    amount: Money
    due_date: date
    name: str = ""

    def __post_init__(self):
        if not self.amount.is_positive():
            raise InvalidTransactionError(
                f"Charge amount must be positive, got {self.amount.to_string()}",
                code="charge.amount.not.positive",
            )


@dataclass
class AllocationResult:
    """Updated periods, mappings produced and any amount left over"""
    periods: List[SchedulePeriod]
    mappings: List[TransactionMapping]
    unprocessed: Money

    @property
    def applied(self) -> Money:
        total = Money.zero(self.unprocessed.currency)
        for mapping in self.mappings:
            total = total + mapping.amount
        return total


class AllocationProcessor:
    """
    Applies transactions to a schedule.

    The processor holds no per-loan state: every call copies the periods it
    is given and returns the updated copies.
    """

    def __init__(self):
        self.logger = get_logger("lending.allocation")

    def allocate(
        self,
        periods: List[SchedulePeriod],
        transaction: Transaction,
        order: Optional[AllocationOrder] = None,
        *,
        business_date: Optional[date] = None,
        last_transaction_date: Optional[date] = None,
    ) -> AllocationResult:
        """
        Allocate a transaction across the schedule.

        Raises FutureDatedTransactionError or BackdatedTransactionError before
        touching anything. Whatever cannot be applied is returned as
        ``unprocessed`` (overpayment, or a refund larger than what was paid).
        """
        order = order or AllocationOrder.from_config()
        txn_date = transaction.transaction_date

        if business_date is not None and txn_date > business_date:
            raise self._rejected(FutureDatedTransactionError(
                f"Transaction date {txn_date} is after business date {business_date}"
            ), transaction)
        if last_transaction_date is not None and txn_date < last_transaction_date:
            raise self._rejected(BackdatedTransactionError(
                f"Transaction date {txn_date} is before last transaction on {last_transaction_date}"
            ), transaction)

        updated = [p.copy() for p in periods]
        if transaction.amount.is_zero():
            return AllocationResult(updated, [], transaction.amount)

        installments = self._ordered_installments(updated, order)
        kind = transaction.transaction_type

        if kind == TransactionType.REPAYMENT:
            candidates = installments
            if not order.allow_advance_payment:
                candidates = [p for p in installments if p.from_date <= txn_date]
            remaining, mappings = self._distribute(
                candidates, order.components, transaction, AllocationAction.PAID,
                order.spill_to_next_installment,
            )
        elif kind == TransactionType.DOWN_PAYMENT:
            candidates = [p for p in installments if p.kind == PeriodKind.DOWN_PAYMENT]
            remaining, mappings = self._distribute(
                candidates, (AllocationComponent.PRINCIPAL,), transaction, AllocationAction.PAID, True,
            )
        elif kind == TransactionType.WAIVER:
            if transaction.waiver_type == WaiverType.INTEREST:
                components = (AllocationComponent.INTEREST,)
            else:
                components = tuple(c for c in order.components
                                   if c in (AllocationComponent.PENALTY, AllocationComponent.FEE))
            remaining, mappings = self._distribute(
                installments, components, transaction, AllocationAction.WAIVED,
                order.spill_to_next_installment,
            )
        elif kind == TransactionType.REFUND:
            remaining, mappings = self._distribute(
                list(reversed(installments)), tuple(reversed(order.components)), transaction,
                AllocationAction.UNPAID, True,
            )
        elif kind == TransactionType.CHARGE_PAYMENT:
            remaining, mappings = self._distribute(
                installments, (_CHARGE_COMPONENTS[transaction.charge_type],), transaction,
                AllocationAction.PAID, True,
            )
        elif kind == TransactionType.CHARGE_OFF:
            remaining, mappings = self._distribute(
                installments, order.components, transaction, AllocationAction.WRITTEN_OFF, True,
            )
        else:
            raise InvalidTransactionError(f"Unsupported transaction type: {kind}")

        log_action(
            self.logger, "info",
            f"Allocated {kind.value} of {transaction.amount.to_string()} across "
            f"{len({m.installment_number for m in mappings})} installments",
            action="allocate_transaction",
            resource="transaction",
            correlation_id=transaction.id,
            extra={
                "applied": str(transaction.amount.amount - remaining.amount),
                "unprocessed": str(remaining.amount),
                "mappings": len(mappings),
            },
        )
        return AllocationResult(updated, mappings, remaining)

    def reverse_transaction(
        self,
        periods: List[SchedulePeriod],
        mappings: List[TransactionMapping],
        transaction_id: Optional[str] = None,
        reversal_date: Optional[date] = None,
    ) -> AllocationResult:
        """
        Undo a posted transaction by replaying its mappings backwards.

        Returns mirror mappings flagged as reversals. Allocating a transaction
        and reversing it leaves every period exactly as it was.
        """
        updated = [p.copy() for p in periods]
        by_number = {p.number: p for p in updated if p.is_installment}
        selected = [m for m in mappings if transaction_id is None or m.transaction_id == transaction_id]

        mirrored = []
        for mapping in reversed(selected):
            period = by_number.get(mapping.installment_number)
            if period is None:
                raise InvalidTransactionError(
                    f"Installment {mapping.installment_number} not found for reversal",
                    code="reversal.installment.not.found",
                )
            on_date = reversal_date or mapping.transaction_date
            restored = self._revert(period, mapping, on_date)
            if restored.is_positive():
                mirrored.append(TransactionMapping(
                    transaction_id=mapping.transaction_id,
                    installment_number=mapping.installment_number,
                    component=mapping.component,
                    amount=restored,
                    action=mapping.action,
                    transaction_date=on_date,
                    reversal=True,
                    obligations_met_on_date=mapping.obligations_met_on_date,
                ))

        log_action(
            self.logger, "info",
            f"Reversed {len(mirrored)} allocation mappings",
            action="reverse_transaction",
            resource="transaction",
            correlation_id=transaction_id,
        )
        currency = updated[0].currency if updated else default_currency()
        return AllocationResult(updated, mirrored, Money.zero(currency))

    def apply_charge(self, periods: List[SchedulePeriod], charge: Charge) -> List[SchedulePeriod]:
        """Add a fee or penalty to the installment whose window contains its due date"""
        updated = [p.copy() for p in periods]
        repayments = sorted((p for p in updated if p.kind == PeriodKind.REPAYMENT), key=lambda p: p.sort_key())
        if not repayments:
            raise InvalidTransactionError("Schedule has no repayment installments", code="charge.no.installment")

        target = repayments[-1]
        for period in repayments:
            if charge.due_date <= period.due_date:
                target = period
                break

        target.add_charge(_CHARGE_COMPONENTS[charge.charge_type], charge.amount)
        log_action(
            self.logger, "info",
            f"Applied {charge.charge_type.value} of {charge.amount.to_string()} to installment {target.number}",
            action="apply_charge",
            resource="charge",
            extra={"due_date": charge.due_date.isoformat()},
        )
        return updated

    def _ordered_installments(self, periods: List[SchedulePeriod], order: AllocationOrder) -> List[SchedulePeriod]:
        installments = [p for p in periods if p.is_installment]
        if order.installment_order == InstallmentOrder.CHRONOLOGICAL:
            return sorted(installments, key=lambda p: p.number)
        return sorted(installments, key=lambda p: (p.due_date, p.number))

    def _distribute(
        self,
        installments: List[SchedulePeriod],
        components: Tuple[AllocationComponent, ...],
        transaction: Transaction,
        action: AllocationAction,
        spill: bool,
    ) -> Tuple[Money, List[TransactionMapping]]:
        """
        Walk components against one installment at a time.

        Moves to the next eligible installment only while money remains and
        spilling is enabled.
        """
        apply = self._operation(action)
        remaining = transaction.amount
        mappings = []

        eligible = [p for p in installments if self._capacity(p, components, action).is_positive()]
        for period in eligible:
            settled_on = period.obligations_met_on_date if action == AllocationAction.UNPAID else None
            for component in components:
                if remaining.is_zero():
                    break
                applied = apply(period, component, remaining, transaction.transaction_date)
                if applied.is_positive():
                    remaining = remaining - applied
                    mappings.append(TransactionMapping(
                        transaction_id=transaction.id,
                        installment_number=period.number,
                        component=component,
                        amount=applied,
                        action=action,
                        transaction_date=transaction.transaction_date,
                        obligations_met_on_date=settled_on,
                    ))
            if remaining.is_zero() or not spill:
                break

        return remaining, mappings

    @staticmethod
    def _capacity(period: SchedulePeriod, components, action: AllocationAction) -> Money:
        total = Money.zero(period.currency)
        for component in components:
            if action == AllocationAction.UNPAID:
                total = total + period.paid(component)
            else:
                total = total + period.outstanding(component)
        return total

    @staticmethod
    def _operation(action: AllocationAction) -> Callable:
        operations: Dict[AllocationAction, Callable] = {
            AllocationAction.PAID: lambda p, c, amount, on: p.pay(c, amount, on),
            AllocationAction.WAIVED: lambda p, c, amount, on: p.waive(c, amount, on),
            AllocationAction.WRITTEN_OFF: lambda p, c, amount, on: p.write_off(c, amount, on),
            AllocationAction.UNPAID: lambda p, c, amount, on: p.unpay(c, amount),
        }
        return operations[action]

    @staticmethod
    def _revert(period: SchedulePeriod, mapping: TransactionMapping, on_date: date) -> Money:
        if mapping.action == AllocationAction.PAID:
            return period.unpay(mapping.component, mapping.amount)
        elif mapping.action == AllocationAction.WAIVED:
            return period.unwaive(mapping.component, mapping.amount)
        elif mapping.action == AllocationAction.WRITTEN_OFF:
            return period.unwrite_off(mapping.component, mapping.amount)
        restored = period.pay(mapping.component, mapping.amount, on_date)
        if period.is_fully_settled and mapping.obligations_met_on_date is not None:
            period.obligations_met_on_date = mapping.obligations_met_on_date
        return restored

    def _rejected(self, error: LendingError, transaction: Transaction) -> LendingError:
        log_action(
            self.logger, "warning", str(error),
            action="allocate_transaction",
            resource="transaction",
            correlation_id=transaction.id,
            extra={"code": error.code},
        )
        return error
