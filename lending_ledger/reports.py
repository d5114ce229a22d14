"""
Report generation module for Lending Ledger.
Builds tabular views of a loan's running dues and of the whole loan book.
"""
import pandas as pd

from lending_ledger.services.amortization import (
    calculate_loan_schedule,
    round_currency,
    summarize_transactions,
)
from lending_ledger.services.collateral import format_collateral_items, sanitize_description
from lending_ledger.services.ordering import sort_transactions, transaction_type
from lending_ledger.services.reconciler import remaining_collateral_labels

STATEMENT_COLUMNS = ["Transaction ID", "Type", "Amount", "Date", "Items", "Principal Due", "Interest Due"]
PORTFOLIO_COLUMNS = ["Loan ID", "Customer", "Interest Rate", "Collateral", "Principal Disbursed",
                     "Payments Received", "Principal Due", "Interest Due", "Total Due"]


def transaction_totals(transactions):
    """Credit, debit and net (debit minus credit) totals, unrounded."""
    total_credit, total_debit, _ = summarize_transactions(transactions)
    return {
        'total_credit': total_credit,
        'total_debit': total_debit,
        'net_amount': total_debit - total_credit,
    }


class ReportGenerator:
    def __init__(self, ledger_service):
        self.ledger = ledger_service

    def loan_statement_frame(self, loan_id, as_of_date=None):
        """One row per transaction with the dues right after it, then a TODAY row.

        The TODAY row projects interest to ``as_of_date`` and lists the
        collateral still held.
        """
        loan = self.ledger.get_loan(loan_id)
        transactions = self.ledger.list_transactions(loan_id)
        schedule = self.ledger.loan_schedule(loan_id, as_of_date)

        rows = []
        # entries line up one-to-one with the ordered transactions
        for transaction, entry in zip(sort_transactions(transactions), schedule.entries):
            rows.append({
                "Transaction ID": transaction.id,
                "Type": transaction_type(transaction).upper(),
                "Amount": round_currency(transaction.amount),
                "Date": transaction.date,
                "Items": sanitize_description(transaction.description) or "-",
                "Principal Due": entry.principal_due,
                "Interest Due": entry.interest_due,
            })

        remaining = remaining_collateral_labels(loan.collateral_items, transactions)
        rows.append({
            "Transaction ID": None,
            "Type": "TODAY",
            "Amount": None,
            "Date": schedule.today.date,
            "Items": ", ".join(remaining) if remaining else "-",
            "Principal Due": schedule.today.principal_due,
            "Interest Due": schedule.today.interest_due,
        })
        return pd.DataFrame(rows, columns=STATEMENT_COLUMNS)

    def portfolio_frame(self, as_of_date=None, customer_id=None):
        """Dues of every loan (optionally one customer's) with a TOTAL row."""
        customers = {c.id: c.name for c in self.ledger.list_customers()}
        report_data = []
        for loan in self.ledger.list_loans(customer_id):
            dues = self.ledger.loan_dues(loan.id, as_of_date)
            report_data.append({
                "Loan ID": loan.id,
                "Customer": customers.get(loan.customer_id, "Unknown"),
                "Interest Rate": loan.interest_rate,
                "Collateral": format_collateral_items(loan),
                "Principal Disbursed": dues.principal_disbursed,
                "Payments Received": dues.payments_received,
                "Principal Due": dues.principal_due,
                "Interest Due": dues.interest_due,
                "Total Due": dues.total_due,
            })

        df = pd.DataFrame(report_data)
        if df.empty:
            return pd.DataFrame(columns=PORTFOLIO_COLUMNS)

        money_columns = PORTFOLIO_COLUMNS[4:]
        sums = df[money_columns].sum()
        total_row = {col: '' for col in df.columns}
        total_row.update({col: round_currency(sums[col]) for col in money_columns})
        total_row["Customer"] = "TOTAL"
        return pd.concat([df, pd.DataFrame([total_row])], ignore_index=True)


def schedule_frame(loan, transactions, as_of_date=None, interest_basis=None):
    """Schedule entries as a frame; the last row is the as-of projection."""
    schedule = calculate_loan_schedule(loan, transactions, as_of_date, interest_basis)
    rows = [{"Date": e.date, "Principal Due": e.principal_due, "Interest Due": e.interest_due}
            for e in schedule.entries]
    rows.append({"Date": schedule.today.date, "Principal Due": schedule.today.principal_due,
                 "Interest Due": schedule.today.interest_due})
    return pd.DataFrame(rows, columns=["Date", "Principal Due", "Interest Due"])
