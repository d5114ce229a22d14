"""Tests for LedgerService bookkeeping and net principal maintenance."""
import os
import sys
import unittest
from unittest import mock

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from lending_ledger.database import DatabaseManager
from lending_ledger.exceptions import (
    CustomerNotFoundError,
    InvalidInterestBasisError,
    LoanNotFoundError,
    TransactionNotFoundError,
    ValidationError,
)
from lending_ledger.models import EffectivePrincipal
from lending_ledger.services.ledger_service import LedgerService

CHAIN = {'name': 'Chain', 'metal_type': 'gold', 'weight': 10.5, 'purity': 91.6}
RING = {'name': 'Ring', 'metal_type': 'silver', 'weight': 5, 'purity': 0}


class LedgerTestCase(unittest.TestCase):

    def setUp(self):
        self.db = DatabaseManager(":memory:")
        self.service = LedgerService(self.db)
        self.customer_id = self.service.add_customer("Lakshmi", "Raman", "Temple Street")

    def tearDown(self):
        self.db.close()

    def _open_loan(self, items=(CHAIN,), rate=12):
        return self.service.add_loan(self.customer_id, list(items), '2024-01-01', interest_rate=rate)


class TestCustomers(LedgerTestCase):

    def test_name_required(self):
        with self.assertRaises(ValidationError):
            self.service.add_customer("   ")

    def test_missing_customer(self):
        with self.assertRaises(CustomerNotFoundError):
            self.service.get_customer(42)

    def test_update_customer(self):
        self.service.update_customer(self.customer_id, " Lakshmi R ", address="North Street")
        customer = self.service.get_customer(self.customer_id)
        self.assertEqual((customer.name, customer.address), ("Lakshmi R", "North Street"))

    def test_delete_customer_removes_loans(self):
        loan_id = self._open_loan()
        self.service.delete_customer(self.customer_id)
        with self.assertRaises(LoanNotFoundError):
            self.service.get_loan(loan_id)
        self.assertEqual(self.service.list_transactions(), [])


class TestLoans(LedgerTestCase):

    def test_add_loan_records_collateral_transaction(self):
        loan_id = self._open_loan(items=(CHAIN, RING))
        loan = self.service.get_loan(loan_id)
        self.assertEqual(loan.net_principal, 0.0)
        self.assertEqual(loan.as_of_date, '2024-01-01')
        self.assertEqual(len(loan.collateral_items), 2)

        transactions = self.service.list_transactions(loan_id)
        self.assertEqual(len(transactions), 1)
        self.assertEqual(transactions[0].type, 'collateral')
        self.assertEqual(transactions[0].amount, 0)
        self.assertEqual(transactions[0].description, 'Gold Chain 10.5g [P91.6], Silver Ring 5g')

    def test_incomplete_items_skipped(self):
        loan_id = self._open_loan(items=(CHAIN, {'name': '', 'metal_type': 'gold', 'weight': 3}))
        self.assertEqual(len(self.service.get_loan(loan_id).collateral_items), 1)

    def test_add_loan_validation(self):
        with self.assertRaises(ValidationError):
            self.service.add_loan(self.customer_id, [], '2024-01-01')
        with self.assertRaises(ValidationError):
            self.service.add_loan(self.customer_id, [CHAIN], '')
        with self.assertRaises(ValidationError):
            self.service.add_loan(self.customer_id, [CHAIN], 'someday')
        with self.assertRaises(CustomerNotFoundError):
            self.service.add_loan(999, [CHAIN], '2024-01-01')
        with self.assertRaises(InvalidInterestBasisError):
            self.service.add_loan(self.customer_id, [CHAIN], '2024-01-01', interest_basis='weekly')
        self.assertEqual(self.service.list_loans(), [])

    def test_default_interest_rate_from_settings(self):
        self.service.update_rate('default_interest', 2.5)
        loan_id = self.service.add_loan(self.customer_id, [CHAIN], '2024-01-01')
        self.assertEqual(self.service.get_loan(loan_id).interest_rate, 2.5)

    def test_update_loan_syncs_collateral_transaction(self):
        loan_id = self._open_loan()
        self.service.update_loan(loan_id, collateral_items=[RING], loan_date='2024-01-05', interest_rate=18)
        loan = self.service.get_loan(loan_id)
        self.assertEqual(loan.interest_rate, 18)
        collateral_tx = self.service.list_transactions(loan_id)[0]
        self.assertEqual(collateral_tx.description, 'Silver Ring 5g')
        self.assertEqual(collateral_tx.date, '2024-01-05')

    def test_delete_loan(self):
        loan_id = self._open_loan()
        self.service.add_transaction(loan_id, 'debit', 5000, '2024-01-01')
        self.service.delete_loan(loan_id)
        with self.assertRaises(LoanNotFoundError):
            self.service.get_loan(loan_id)
        self.assertEqual(self.service.list_transactions(loan_id), [])


class TestTransactions(LedgerTestCase):

    def setUp(self):
        super().setUp()
        self.loan_id = self._open_loan(items=(CHAIN, RING))

    def test_debit_sets_net_principal(self):
        self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        loan = self.service.get_loan(self.loan_id)
        self.assertEqual(loan.net_principal, 10000.0)
        self.assertEqual(loan.as_of_date, '2024-01-01')
        self.assertEqual(loan.net_due, 10000.0)

    def test_repayment_after_interest(self):
        """Test that the stored principal reflects interest-first allocation."""
        self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        self.service.add_transaction(self.loan_id, 'credit', 1500, '2024-07-01')
        loan = self.service.get_loan(self.loan_id)
        self.assertEqual(self.service.update_loan_effective_principal(self.loan_id),
                         EffectivePrincipal(9098.36, '2024-07-01'))
        self.assertEqual((loan.net_principal, loan.as_of_date), (9098.36, '2024-07-01'))

        dues = self.service.loan_dues(self.loan_id, as_of_date='2025-01-01')
        self.assertEqual((dues.principal_due, dues.interest_due, dues.total_due),
                         (9098.36, 550.39, 9648.74))

    def test_stored_summary_is_overwritten(self):
        self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        self.db.update_loan_summary(self.loan_id, 1.0, '1999-01-01')
        self.service.update_loan_effective_principal(self.loan_id)
        loan = self.service.get_loan(self.loan_id)
        self.assertEqual((loan.net_principal, loan.as_of_date), (10000.0, '2024-01-01'))

    def test_delete_transaction_recomputes(self):
        self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        credit_id = self.service.add_transaction(self.loan_id, 'credit', 1500, '2024-07-01')
        self.service.delete_transaction(credit_id)
        loan = self.service.get_loan(self.loan_id)
        self.assertEqual((loan.net_principal, loan.as_of_date), (10000.0, '2024-01-01'))
        with self.assertRaises(TransactionNotFoundError):
            self.service.get_transaction(credit_id)

    def test_update_transaction_recomputes(self):
        debit_id = self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        self.service.update_transaction(debit_id, amount=4000)
        self.assertEqual(self.service.get_loan(self.loan_id).net_principal, 4000.0)
        self.service.update_transaction(debit_id, date='2024-02-01')
        self.assertEqual(self.service.get_loan(self.loan_id).as_of_date, '2024-02-01')

    def test_failed_recompute_rolls_back_insert(self):
        """Test that a transaction is not stored when the net principal can't be refreshed."""
        with mock.patch.object(self.service, 'update_loan_effective_principal',
                               side_effect=RuntimeError("recompute failed")):
            with self.assertRaises(RuntimeError):
                self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        self.assertEqual(len(self.service.list_transactions(self.loan_id)), 1)
        self.assertEqual(self.service.get_loan(self.loan_id).net_principal, 0.0)

    def test_failed_recompute_rolls_back_delete(self):
        debit_id = self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        with mock.patch.object(self.service, 'update_loan_effective_principal',
                               side_effect=RuntimeError("recompute failed")):
            with self.assertRaises(RuntimeError):
                self.service.delete_transaction(debit_id)
        self.assertEqual(self.service.get_transaction(debit_id).amount, 10000.0)
        self.assertEqual(self.service.get_loan(self.loan_id).net_principal, 10000.0)

    def test_invalid_amounts_rejected(self):
        for amount in (-5, 'abc', None, float('nan')):
            with self.assertRaises(ValidationError):
                self.service.add_transaction(self.loan_id, 'debit', amount, '2024-01-01')
        with self.assertRaises(ValidationError):
            self.service.add_transaction(self.loan_id, 'debit', 100, 'not-a-date')
        self.assertEqual(len(self.service.list_transactions(self.loan_id)), 1)

    def test_return_items(self):
        loan = self.service.get_loan(self.loan_id)
        chain = loan.collateral_items[0]
        tx_id = self.service.add_transaction(self.loan_id, 'return_items', 999, '2024-03-01',
                                             returned_item_ids=[chain.item_id])
        transaction = self.service.get_transaction(tx_id)
        self.assertEqual(transaction.amount, 0)
        self.assertEqual(transaction.description, 'Returned: Gold Chain 10.5g [P91.6]')
        self.assertEqual(transaction.returned_item_ids, (chain.item_id,))

        remaining = self.service.get_loan(self.loan_id).collateral_items
        self.assertEqual([item.name for item in remaining], ['Ring'])

    def test_update_loan_net_due(self):
        self.service.add_transaction(self.loan_id, 'debit', 10000, '2024-01-01')
        self.service.add_transaction(self.loan_id, 'credit', 1500, '2024-07-01')
        self.assertEqual(self.service.update_loan_net_due(self.loan_id), 8500.0)
        loan = self.service.get_loan(self.loan_id)
        self.assertEqual((loan.net_due, loan.net_date), (8500.0, '2024-07-01'))
        self.assertEqual(loan.net_principal, 9098.36)
        self.assertEqual(self.service.update_loan_net_due(self.loan_id, '2024-03-01'), 10000.0)


class TestSettingsAndDashboard(LedgerTestCase):

    def test_default_rates(self):
        rates = self.service.get_rates()
        self.assertEqual((rates.gold_rate, rates.silver_rate, rates.default_interest_rate),
                         (0.0, 0.0, 12.0))

    def test_update_rate(self):
        rates = self.service.update_rate('gold', '6500')
        self.assertEqual(rates.gold_rate, 6500.0)

    def test_update_rate_validation(self):
        for value in ('abc', -1, None):
            with self.assertRaises(ValidationError):
                self.service.update_rate('silver', value)
        with self.assertRaises(ValidationError):
            self.service.update_rate('platinum', 10)

    def test_interest_basis_setting(self):
        self.assertEqual(self.service.get_interest_basis(), 'annual')
        loan_id = self._open_loan(rate=2)
        self.service.add_transaction(loan_id, 'debit', 10000, '2024-01-01')
        self.service.set_interest_basis('monthly')
        self.assertEqual(self.service.loan_dues(loan_id, '2024-01-31').interest_due, 200.0)
        with self.assertRaises(InvalidInterestBasisError):
            self.service.set_interest_basis('fortnightly')

    def test_loan_basis_overrides_setting(self):
        loan_id = self.service.add_loan(self.customer_id, [CHAIN], '2024-01-01', interest_rate=2,
                                        interest_basis='monthly')
        self.service.add_transaction(loan_id, 'debit', 10000, '2024-01-01')
        schedule = self.service.loan_schedule(loan_id, '2024-01-31')
        self.assertEqual(schedule.today.interest_due, 200.0)

    def test_dashboard_summary(self):
        first = self._open_loan()
        second = self._open_loan()
        self.service.add_transaction(first, 'debit', 10000, '2024-01-01')
        self.service.add_transaction(second, 'debit', 2500.5, '2024-01-01')
        summary = self.service.dashboard_summary()
        self.assertEqual(summary, {
            'total_customers': 1,
            'total_loans': 2,
            'total_transactions': 4,
            'total_outstanding': 12500.5,
        })


if __name__ == '__main__':
    unittest.main()
