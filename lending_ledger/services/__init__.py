"""Services package for Lending Ledger business logic.

The ordering, amortization and reconciler modules are pure functions over
the records passed in; LedgerService is the stateful caller that reads and
writes the repository.
"""

from .ordering import sort_transactions
from .amortization import (
    calculate_interest_simple,
    calculate_loan_dues,
    calculate_loan_schedule,
    principal_outstanding_as_of,
    round_currency,
    summarize_transactions,
)
from .reconciler import compute_effective_principal, reconcile_collateral_items
from .ledger_service import LedgerService

__all__ = ['sort_transactions', 'calculate_interest_simple', 'calculate_loan_dues',
           'calculate_loan_schedule', 'principal_outstanding_as_of', 'round_currency',
           'summarize_transactions', 'compute_effective_principal', 'reconcile_collateral_items',
           'LedgerService']
