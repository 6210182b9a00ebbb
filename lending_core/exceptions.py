"""Domain-specific exceptions"""

from typing import Optional


class LendingError(Exception):
    """Base exception for the lending engine"""

    default_code = "lending.error"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.code = code or self.default_code


class CurrencyMismatchError(LendingError, ValueError):
    """Two amounts in different currencies were combined"""

    default_code = "money.currency.mismatch"


class LoanConfigurationError(LendingError, ValueError):
    """Invalid loan configuration, rejected before anything is generated"""

    default_code = "loan.configuration.invalid"


class InvalidLoanTermsError(LoanConfigurationError):
    """Principal, term, rate, grace or day-count settings are not usable"""

    default_code = "loan.terms.invalid"


class InvalidInterestPauseError(LoanConfigurationError):
    """Interest pause is outside the loan bounds, overlapping or not allowed"""

    default_code = "interest.pause.invalid"


class InvalidAllocationOrderError(LoanConfigurationError):
    """Allocation order is not a permutation of the four components"""

    default_code = "allocation.order.invalid"


class InvalidHolidayError(LoanConfigurationError):
    """Holiday interval is malformed"""

    default_code = "holiday.invalid"


class InvalidTransactionError(LendingError, ValueError):
    """Transaction rejected before any mutation took place"""

    default_code = "transaction.invalid"


class FutureDatedTransactionError(InvalidTransactionError):
    """Transaction date lies after the business date"""

    default_code = "transaction.date.in.future"


class BackdatedTransactionError(InvalidTransactionError):
    """Transaction date lies before the last recorded transaction"""

    default_code = "transaction.date.before.last.transaction"


class DisbursementLimitExceededError(InvalidTransactionError):
    """Disbursements would exceed the approved principal"""

    default_code = "disbursement.exceeds.approved.principal"


class InvalidPrepaymentDateError(InvalidTransactionError):
    """Prepayment as-of date is outside the open part of the schedule"""

    default_code = "prepayment.date.invalid"


class ForeclosureNotAllowedError(InvalidTransactionError):
    """Loan cannot be foreclosed in its current configuration"""

    default_code = "foreclosure.not.allowed"
