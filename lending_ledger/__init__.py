"""Lending Ledger: bookkeeping and loan dues for a small gold-lending business."""

from lending_ledger.services.amortization import (
    calculate_interest_simple,
    calculate_loan_dues,
    calculate_loan_schedule,
)
from lending_ledger.services.ordering import sort_transactions
from lending_ledger.services.reconciler import compute_effective_principal

__version__ = "1.0.0"

__all__ = ['calculate_interest_simple', 'calculate_loan_dues', 'calculate_loan_schedule',
           'sort_transactions', 'compute_effective_principal']
