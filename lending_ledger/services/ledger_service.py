"""Ledger service for Lending Ledger.

This service owns the repository and is the only caller of the dues engine
that persists anything. It handles:
- Customer, loan and transaction bookkeeping
- Recomputing a loan's net principal whenever its transactions change
- Collateral returns
- Rates and interest-basis settings
- Dashboard totals
"""
import math

from lending_ledger.config import (
    DEFAULT_GOLD_RATE,
    DEFAULT_INTEREST_RATE,
    DEFAULT_SILVER_RATE,
    TX_COLLATERAL,
    TX_RETURN_ITEMS,
)
from lending_ledger.exceptions import (
    CustomerNotFoundError,
    LoanNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from lending_ledger.logging_config import get_logger
from lending_ledger.models import CollateralItem, Loan, Rates, Transaction
from lending_ledger.services.amortization import (
    calculate_loan_dues,
    calculate_loan_schedule,
    principal_outstanding_as_of,
    resolve_interest_basis,
    round_currency,
    today_iso,
)
from lending_ledger.services.collateral import build_collateral_item_label, format_collateral_items
from lending_ledger.services.ordering import coerce_number, parse_date, sort_transactions
from lending_ledger.services.reconciler import (
    compute_effective_principal,
    format_returned_description,
    reconcile_collateral_items,
)

logger = get_logger(__name__)

# rate kind -> settings key
RATE_KEYS = {
    'gold': 'gold_rate',
    'silver': 'silver_rate',
    'default_interest': 'default_interest_rate',
}

INTEREST_BASIS_KEY = 'interest_basis'


class LedgerService:
    """Bookkeeping operations over a DatabaseManager.

    Every operation that changes a loan's transactions re-runs the dues
    engine and overwrites the loan's ``net_principal`` / ``as_of_date`` in the
    same database transaction as the change.
    """

    def __init__(self, db_manager):
        """Initialize LedgerService.

        Args:
            db_manager: DatabaseManager instance for data persistence.
        """
        self.db = db_manager

    # ------------------------------------------------------------------
    # Customers
    # ------------------------------------------------------------------
    def add_customer(self, name, father_name="", address=""):
        name = (name or "").strip()
        if not name:
            raise ValidationError("Customer name is required", "name")
        customer_id = self.db.add_customer(name, (father_name or "").strip(), (address or "").strip())
        logger.info("Added customer %s", customer_id, extra={'customer_id': customer_id})
        return customer_id

    def get_customer(self, customer_id):
        customer = self.db.get_customer(customer_id)
        if customer is None:
            raise CustomerNotFoundError(customer_id)
        return customer

    def list_customers(self):
        return self.db.get_customers()

    def update_customer(self, customer_id, name, father_name="", address=""):
        self.get_customer(customer_id)
        name = (name or "").strip()
        if not name:
            raise ValidationError("Customer name is required", "name")
        self.db.update_customer(customer_id, name, (father_name or "").strip(), (address or "").strip())

    def delete_customer(self, customer_id):
        """Delete a customer and, with them, all their loans and transactions."""
        self.get_customer(customer_id)
        self.db.delete_customer(customer_id)
        logger.info("Deleted customer %s", customer_id, extra={'customer_id': customer_id})

    # ------------------------------------------------------------------
    # Loans
    # ------------------------------------------------------------------
    @staticmethod
    def _normalize_items(collateral_items):
        items = []
        for item in collateral_items or []:
            if not isinstance(item, CollateralItem):
                item = CollateralItem.from_dict(item)
            # Incomplete rows are skipped, not rejected
            if item.name.strip() and item.metal_type.strip():
                items.append(item)
        return items

    @staticmethod
    def _require_date(value, field):
        text = (value or "").strip() if isinstance(value, str) else value
        if not text or parse_date(text) is None:
            raise ValidationError(f"Please select a valid {field.replace('_', ' ')}.", field)
        return text if isinstance(text, str) else text.isoformat()

    def _resolve_rate(self, interest_rate):
        default_rate = self.get_rates().default_interest_rate
        if interest_rate is None or interest_rate == "":
            return default_rate
        return coerce_number(interest_rate, default_rate)

    def add_loan(self, customer_id, collateral_items, loan_date, interest_rate=None, interest_basis=None):
        """Open a loan against collateral.

        A zero-amount ``collateral`` transaction dated on the loan date
        records the pledged items. Money is lent with a separate ``debit``.

        Returns:
            The new loan id.

        Raises:
            CustomerNotFoundError: If the customer doesn't exist.
            ValidationError: If no usable collateral or no valid loan date is given.
        """
        self.get_customer(customer_id)
        items = self._normalize_items(collateral_items)
        if not items:
            raise ValidationError("Please add at least one collateral item.", "collateral_items")
        loan_date = self._require_date(loan_date, "loan_date")
        if interest_basis is not None:
            interest_basis = resolve_interest_basis(interest_basis=interest_basis)

        loan = Loan(
            id=None,
            customer_id=customer_id,
            interest_rate=self._resolve_rate(interest_rate),
            collateral_items=items,
            net_principal=0.0,
            as_of_date=loan_date,
            net_due=0.0,
            net_date=loan_date,
            interest_basis=interest_basis,
        )
        with self.db.transaction():
            loan_id = self.db.add_loan(loan)
            self.db.add_transaction(Transaction(
                id=None, loan_id=loan_id, type=TX_COLLATERAL, amount=0,
                date=loan_date, description=format_collateral_items(loan),
            ))
        logger.info("Added loan %s for customer %s", loan_id, customer_id, extra={'loan_id': loan_id})
        return loan_id

    def get_loan(self, loan_id):
        loan = self.db.get_loan(loan_id)
        if loan is None:
            raise LoanNotFoundError(loan_id)
        return loan

    def list_loans(self, customer_id=None):
        return self.db.get_loans(customer_id)

    def update_loan(self, loan_id, collateral_items=None, loan_date=None, interest_rate=None,
                    interest_basis=None, customer_id=None):
        """Edit a loan's terms or collateral and keep its collateral record in sync."""
        loan = self.get_loan(loan_id)
        if customer_id is not None:
            self.get_customer(customer_id)
            loan.customer_id = customer_id
        if collateral_items is not None:
            items = self._normalize_items(collateral_items)
            if not items:
                raise ValidationError("Please add at least one collateral item.", "collateral_items")
            loan.collateral_items = items
        if interest_rate is not None:
            loan.interest_rate = self._resolve_rate(interest_rate)
        if interest_basis is not None:
            loan.interest_basis = resolve_interest_basis(interest_basis=interest_basis)
        if loan_date is not None:
            loan_date = self._require_date(loan_date, "loan_date")

        with self.db.transaction():
            self.db.update_loan(loan)
            collateral_tx = next(
                (t for t in self.db.get_transactions(loan_id) if t.type.strip().lower() == TX_COLLATERAL),
                None,
            )
            if collateral_tx is not None:
                collateral_tx.description = format_collateral_items(loan)
                collateral_tx.amount = 0
                if loan_date:
                    collateral_tx.date = loan_date
                self.db.update_transaction(collateral_tx)
            else:
                self.db.add_transaction(Transaction(
                    id=None, loan_id=loan_id, type=TX_COLLATERAL, amount=0,
                    date=loan_date or loan.as_of_date or today_iso(),
                    description=format_collateral_items(loan),
                ))
            self.update_loan_effective_principal(loan_id)

    def delete_loan(self, loan_id):
        """Delete a loan and all of its transactions."""
        self.get_loan(loan_id)
        self.db.delete_loan(loan_id)
        logger.info("Deleted loan %s", loan_id, extra={'loan_id': loan_id})

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------
    def _return_details(self, loan, returned_item_ids):
        """Labels, ids and the collateral left once the given items are returned."""
        wanted = {str(item_id) for item_id in returned_item_ids or []}
        returned = [item for item in loan.collateral_items if item.item_id in wanted]
        remaining = [item for item in loan.collateral_items if item.item_id not in wanted]
        labels = [build_collateral_item_label(item) for item in returned]
        return labels, tuple(item.item_id for item in returned), remaining

    def _build_transaction(self, loan, tx_type, amount, date, note, returned_item_ids, transaction_id=None):
        tx_type = (tx_type or "").strip().lower()
        if not tx_type:
            raise ValidationError("Transaction type is required", "type")
        date = self._require_date(date, "date")

        description = ""
        returned_ids = ()
        remaining = None
        if tx_type == TX_RETURN_ITEMS:
            amount = 0
            labels, returned_ids, remaining = self._return_details(loan, returned_item_ids)
            description = format_returned_description(labels)
        else:
            amount = coerce_number(amount, float('nan'))
            if math.isnan(amount) or amount < 0:
                raise ValidationError("Please enter a valid non-negative amount", "amount")

        transaction = Transaction(
            id=transaction_id, loan_id=loan.id, type=tx_type, amount=amount, date=date,
            description=description, note=(note or "").strip(), returned_item_ids=returned_ids,
        )
        return transaction, remaining

    def add_transaction(self, loan_id, tx_type, amount, date, note="", returned_item_ids=None):
        """Record a transaction and refresh the loan's net principal.

        ``return_items`` transactions carry no amount; the items named by
        ``returned_item_ids`` are removed from the loan's collateral.

        Returns:
            The new transaction id.
        """
        loan = self.get_loan(loan_id)
        transaction, remaining = self._build_transaction(loan, tx_type, amount, date, note, returned_item_ids)

        with self.db.transaction():
            transaction_id = self.db.add_transaction(transaction)
            if remaining is not None and len(remaining) != len(loan.collateral_items):
                self.db.update_loan_collateral(loan_id, remaining)
            self.update_loan_effective_principal(loan_id)
        logger.info("Added %s transaction %s on loan %s", transaction.type, transaction_id, loan_id,
                    extra={'loan_id': loan_id, 'transaction_id': transaction_id})
        return transaction_id

    def get_transaction(self, transaction_id):
        transaction = self.db.get_transaction(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    def list_transactions(self, loan_id=None):
        return self.db.get_transactions(loan_id)

    def update_transaction(self, transaction_id, loan_id=None, tx_type=None, amount=None, date=None,
                           note=None, returned_item_ids=None):
        """Edit a transaction; unspecified fields keep their current values."""
        existing = self.get_transaction(transaction_id)
        loan = self.get_loan(loan_id if loan_id is not None else existing.loan_id)
        transaction, remaining = self._build_transaction(
            loan,
            tx_type if tx_type is not None else existing.type,
            amount if amount is not None else existing.amount,
            date if date is not None else existing.date,
            note if note is not None else existing.note,
            returned_item_ids if returned_item_ids is not None else existing.returned_item_ids,
            transaction_id=transaction_id,
        )
        if transaction.type == TX_RETURN_ITEMS and returned_item_ids is None:
            # Items returned earlier are no longer on the loan; keep the original record
            transaction.description = existing.description
            transaction.returned_item_ids = existing.returned_item_ids
            remaining = None

        with self.db.transaction():
            self.db.update_transaction(transaction)
            if remaining is not None and len(remaining) != len(loan.collateral_items):
                self.db.update_loan_collateral(loan.id, remaining)
            self.update_loan_effective_principal(loan.id)
            if existing.loan_id != loan.id and self.db.get_loan(existing.loan_id) is not None:
                self.update_loan_effective_principal(existing.loan_id)

    def delete_transaction(self, transaction_id):
        transaction = self.get_transaction(transaction_id)
        with self.db.transaction():
            self.db.delete_transaction(transaction_id)
            if self.db.get_loan(transaction.loan_id) is not None:
                self.update_loan_effective_principal(transaction.loan_id)
        logger.info("Deleted transaction %s", transaction_id,
                    extra={'loan_id': transaction.loan_id, 'transaction_id': transaction_id})

    # ------------------------------------------------------------------
    # Dues
    # ------------------------------------------------------------------
    def _basis_for(self, loan):
        return loan.interest_basis or self.get_interest_basis()

    def loan_schedule(self, loan_id, as_of_date=None):
        loan = self.get_loan(loan_id)
        return calculate_loan_schedule(loan, self.db.get_transactions(loan_id), as_of_date,
                                       interest_basis=self._basis_for(loan))

    def loan_dues(self, loan_id, as_of_date=None):
        loan = self.get_loan(loan_id)
        return calculate_loan_dues(loan, self.db.get_transactions(loan_id), as_of_date,
                                   interest_basis=self._basis_for(loan))

    def update_loan_effective_principal(self, loan_id):
        """Recompute and persist a loan's net principal and as-of date.

        Also drops collateral items that return transactions show as handed
        back, and mirrors the figures into the legacy net due fields.

        Returns:
            EffectivePrincipal written to the loan.
        """
        loan = self.get_loan(loan_id)
        transactions = self.db.get_transactions(loan_id)
        schedule = calculate_loan_schedule(loan, transactions, interest_basis=self._basis_for(loan))
        effective = compute_effective_principal(schedule)

        remaining = reconcile_collateral_items(loan.collateral_items, transactions)
        with self.db.transaction():
            if len(remaining) != len(loan.collateral_items):
                self.db.update_loan_collateral(loan_id, remaining)
            self.db.update_loan_summary(loan_id, effective.net_principal, effective.as_of_date,
                                        net_due=effective.net_principal, net_date=effective.as_of_date)
        logger.debug("Loan %s net principal %.2f as of %s", loan_id, effective.net_principal,
                     effective.as_of_date, extra={'loan_id': loan_id})
        return effective

    def update_loan_net_due(self, loan_id, as_of_date=None):
        """Store the principal-only balance (debits minus credits) as the loan's net due.

        Defaults to the date of the loan's latest transaction.
        """
        loan = self.get_loan(loan_id)
        transactions = self.db.get_transactions(loan_id)
        if not as_of_date:
            ordered = sort_transactions(transactions)
            as_of_date = ordered[-1].date if ordered else today_iso()
        net_due = round_currency(principal_outstanding_as_of(transactions, as_of_date))
        self.db.update_loan_summary(loan_id, loan.net_principal, loan.as_of_date,
                                    net_due=net_due, net_date=as_of_date)
        return net_due

    # ------------------------------------------------------------------
    # Rates and settings
    # ------------------------------------------------------------------
    def get_rates(self):
        return Rates(
            gold_rate=coerce_number(self.db.get_setting('gold_rate'), DEFAULT_GOLD_RATE),
            silver_rate=coerce_number(self.db.get_setting('silver_rate'), DEFAULT_SILVER_RATE),
            default_interest_rate=coerce_number(self.db.get_setting('default_interest_rate'),
                                                DEFAULT_INTEREST_RATE),
        )

    def update_rate(self, kind, value):
        """Set the gold, silver or default interest rate.

        Raises:
            ValidationError: For an unknown kind or a negative/non-numeric rate.
        """
        key = RATE_KEYS.get(kind)
        if key is None:
            raise ValidationError(f"Unknown rate '{kind}'", "kind")
        rate = coerce_number(value, float('nan'))
        if math.isnan(rate) or rate < 0:
            raise ValidationError("Please enter a valid rate", key)
        self.db.set_setting(key, rate)
        logger.info("Updated %s to %s", key, rate)
        return self.get_rates()

    def get_interest_basis(self):
        return resolve_interest_basis(interest_basis=self.db.get_setting(INTEREST_BASIS_KEY))

    def set_interest_basis(self, basis):
        basis = resolve_interest_basis(interest_basis=basis)
        self.db.set_setting(INTEREST_BASIS_KEY, basis)
        return basis

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------
    def dashboard_summary(self):
        """Counts and total outstanding principal across all loans.

        Uses each loan's stored net due, falling back to the principal-only
        balance for loans that have never been computed.
        """
        total_outstanding = 0.0
        for loan in self.db.get_loans():
            if loan.net_due is not None:
                total_outstanding += coerce_number(loan.net_due)
            else:
                total_outstanding += principal_outstanding_as_of(self.db.get_transactions(loan.id))
        return {
            'total_customers': self.db.count_rows('customers'),
            'total_loans': self.db.count_rows('loans'),
            'total_transactions': self.db.count_rows('transactions'),
            'total_outstanding': round_currency(total_outstanding),
        }
