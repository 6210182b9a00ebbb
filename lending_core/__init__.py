"""
Lending Core

Loan amortization and repayment-allocation engine: due-date generation,
holiday adjustment, day-count interest, EMI solving, schedule generation and
regeneration, payment allocation and prepayment quotes. All money math uses
Decimal with deterministic rounding.
"""

__version__ = "1.0.0"
