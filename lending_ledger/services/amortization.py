"""Loan dues engine.

Walks a loan's transactions in chronological order keeping a running
principal and accrued-interest balance:

- Interest accrues as simple interest on the current principal between
  consecutive transaction dates (and from the last one to the as-of date).
- A ``debit`` (disbursement) adds to principal.
- A ``credit`` (repayment) pays accrued interest first, then principal.
  Principal never goes below zero; any overpayment beyond that is dropped,
  not carried as a credit balance.
- Any other type (collateral, return_items, ...) moves no money but its date
  still becomes the next accrual boundary.

Balances are carried at full float precision and only rounded (half away
from zero, 2 places) when a figure is returned.
"""
import math
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP, localcontext

from lending_ledger.config import (
    CURRENCY_DECIMALS,
    DAYS_PER_MONTH,
    DAYS_PER_YEAR,
    DEFAULT_INTEREST_BASIS,
    INTEREST_BASES,
    INTEREST_BASIS_MONTHLY,
    TX_CREDIT,
    TX_DEBIT,
)
from lending_ledger.exceptions import InvalidInterestBasisError, InvalidLoanError
from lending_ledger.logging_config import get_logger
from lending_ledger.models import LoanDues, LoanSchedule, ScheduleEntry
from lending_ledger.services.ordering import (
    MISSING,
    coerce_number,
    field_value,
    parse_date,
    sort_transactions,
    transaction_type,
)

logger = get_logger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60
_CURRENCY_QUANTUM = Decimal(1).scaleb(-CURRENCY_DECIMALS)


def round_currency(value):
    """Round to CURRENCY_DECIMALS places, half away from zero.

    Goes through the shortest decimal repr of the float so that 33.335 is
    treated as written and becomes 33.34.
    """
    number = coerce_number(value)
    exact = Decimal(repr(number))
    with localcontext() as ctx:
        # enough digits for the integer part plus the currency places
        ctx.prec = max(ctx.prec, exact.adjusted() + CURRENCY_DECIMALS + 2)
        rounded = exact.quantize(_CURRENCY_QUANTUM, rounding=ROUND_HALF_UP)
    # + 0.0 turns -0.0 into 0.0
    return float(rounded) + 0.0


def today_iso():
    """Current calendar date (UTC) as YYYY-MM-DD."""
    return datetime.now(timezone.utc).date().isoformat()


def _date_label(value):
    if value is None:
        return ""
    if hasattr(value, 'isoformat'):
        return value.isoformat()
    return str(value)


def resolve_interest_basis(loan=None, interest_basis=None):
    """Pick the interest basis: explicit argument, then the loan's, then the default."""
    basis = interest_basis
    if basis is None and loan is not None:
        basis = field_value(loan, 'interest_basis', 'interestBasis', default=None)
    if basis is None:
        basis = DEFAULT_INTEREST_BASIS
    basis = str(basis).strip().lower()
    if basis not in INTEREST_BASES:
        raise InvalidInterestBasisError(basis)
    return basis


def loan_interest_rate(loan):
    """Interest rate percentage of a loan; bad values become 0.

    Raises:
        InvalidLoanError: If there is no loan or it has no interest rate field.
    """
    if loan is None:
        raise InvalidLoanError("A loan record is required to calculate dues")
    rate = field_value(loan, 'interest_rate', 'interestRate')
    if rate is MISSING:
        raise InvalidLoanError("Loan record has no interest rate field",
                               {'loan_id': field_value(loan, 'id', default=None)})
    rate = coerce_number(rate, 0.0)
    if rate < 0:
        logger.debug("Negative interest rate %s treated as 0", rate)
        return 0.0
    return rate


def transaction_amount(transaction):
    """Amount of a transaction as a non-negative float; bad or negative values become 0."""
    amount = coerce_number(field_value(transaction, 'amount', default=0), 0.0)
    if amount < 0:
        logger.debug("Negative amount %s on transaction %s treated as 0", amount,
                     field_value(transaction, 'id', default=None))
        return 0.0
    return amount


def whole_days_between(start, end):
    """Whole days from start to end, floored. None if either date can't be parsed."""
    start_dt = parse_date(start)
    end_dt = parse_date(end)
    if start_dt is None or end_dt is None:
        return None
    return math.floor((end_dt - start_dt).total_seconds() / _SECONDS_PER_DAY)


def calculate_interest_simple(principal, rate_pct, start, end, interest_basis=DEFAULT_INTEREST_BASIS):
    """Simple interest on ``principal`` between two dates.

    annual:  principal x rate/100 x days/365
    monthly: principal x rate/100 x days/30 (every month is 30 days)

    Days are floored. Returns 0 when either date is unparseable or the end is
    not after the start.
    """
    basis = resolve_interest_basis(interest_basis=interest_basis)
    amount = coerce_number(principal, 0.0)
    rate = coerce_number(rate_pct, 0.0) / 100

    days = whole_days_between(start, end)
    if days is None or days <= 0:
        return 0.0

    period = DAYS_PER_MONTH if basis == INTEREST_BASIS_MONTHLY else DAYS_PER_YEAR
    return amount * rate * (days / period)


class AmortizationState:
    """Running balances of one loan while its transactions are replayed."""

    def __init__(self, rate_pct, interest_basis):
        self.rate_pct = rate_pct
        self.interest_basis = interest_basis
        self.principal = 0.0
        self.interest_accrued = 0.0
        self.last_date = None
        self.principal_disbursed = 0.0
        self.payments_received = 0.0

    def accrue_to(self, date_value):
        """Add interest on the current principal from the last boundary to date_value."""
        if self.last_date is None:
            return 0.0
        interest = calculate_interest_simple(
            self.principal, self.rate_pct, self.last_date, date_value, self.interest_basis
        )
        self.interest_accrued += interest
        return interest

    def apply(self, transaction):
        """Accrue up to the transaction's date, then apply its effect."""
        tx_date = field_value(transaction, 'date', default=None)
        self.accrue_to(tx_date)
        self.last_date = tx_date

        kind = transaction_type(transaction)
        if kind == TX_DEBIT:
            amount = transaction_amount(transaction)
            self.principal_disbursed += amount
            self.principal += amount
        elif kind == TX_CREDIT:
            payment = transaction_amount(transaction)
            self.payments_received += payment
            interest_payment = min(payment, self.interest_accrued)
            self.interest_accrued -= interest_payment
            payment -= interest_payment
            self.principal = max(0.0, self.principal - payment)

    @property
    def interest_due(self):
        return max(0.0, self.interest_accrued)

    def snapshot(self, date_value):
        return ScheduleEntry(
            date=_date_label(date_value),
            principal_due=round_currency(self.principal),
            interest_due=round_currency(self.interest_due),
        )


def replay_transactions(loan, transactions, interest_basis=None):
    """Apply every transaction of a loan in order and return the final state."""
    state = AmortizationState(
        loan_interest_rate(loan),
        resolve_interest_basis(loan, interest_basis),
    )
    for transaction in sort_transactions(transactions):
        state.apply(transaction)
    return state


def summarize_transactions(transactions):
    """Totals of credits and debits plus the transactions in processing order.

    Returns:
        Tuple of (total_credit, total_debit, sorted_transactions).
    """
    ordered = sort_transactions(transactions)
    total_credit = 0.0
    total_debit = 0.0
    for transaction in ordered:
        kind = transaction_type(transaction)
        if kind == TX_CREDIT:
            total_credit += transaction_amount(transaction)
        elif kind == TX_DEBIT:
            total_debit += transaction_amount(transaction)
    return total_credit, total_debit, ordered


def calculate_loan_dues(loan, transactions, as_of_date=None, interest_basis=None):
    """Principal and interest due on a loan as of a date (default: today).

    Args:
        loan: Loan record (needs an interest rate).
        transactions: The loan's transactions, in any order.
        as_of_date: ISO date the balance is projected to.
        interest_basis: "annual" or "monthly"; falls back to the loan's
            basis, then the configured default.

    Returns:
        LoanDues with every figure rounded to 2 places.
    """
    state = replay_transactions(loan, transactions, interest_basis)
    state.accrue_to(as_of_date or today_iso())

    return LoanDues(
        principal_disbursed=round_currency(state.principal_disbursed),
        payments_received=round_currency(state.payments_received),
        principal_due=round_currency(state.principal),
        interest_due=round_currency(state.interest_due),
        total_due=round_currency(state.principal + state.interest_due),
    )


def calculate_loan_schedule(loan, transactions, as_of_date=None, interest_basis=None):
    """Per-transaction balances plus a projection to the as-of date.

    ``entries`` holds one snapshot per transaction in processing order (zero
    amount transactions included); ``today`` accrues from the last
    transaction to ``as_of_date`` with no further payment.
    """
    rate = loan_interest_rate(loan)
    basis = resolve_interest_basis(loan, interest_basis)

    state = AmortizationState(rate, basis)
    entries = []
    for transaction in sort_transactions(transactions):
        state.apply(transaction)
        entries.append(state.snapshot(field_value(transaction, 'date', default=None)))

    today = as_of_date or today_iso()
    state.accrue_to(today)
    return LoanSchedule(entries=tuple(entries), today=state.snapshot(today))


def principal_outstanding_as_of(transactions, as_of_date=None):
    """Debits minus credits up to and including a date, ignoring interest.

    This is the older principal-only balance. It is not floored at zero and
    transactions with unreadable dates are always counted.
    """
    cutoff = parse_date(as_of_date) if as_of_date else None
    principal = 0.0
    for transaction in sort_transactions(transactions):
        tx_date = parse_date(field_value(transaction, 'date', default=None))
        if cutoff is not None and tx_date is not None and tx_date > cutoff:
            break
        kind = transaction_type(transaction)
        if kind == TX_DEBIT:
            principal += transaction_amount(transaction)
        elif kind == TX_CREDIT:
            principal -= transaction_amount(transaction)
    return principal
