"""Database management module for Lending Ledger."""
import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime

import pandas as pd

from lending_ledger.config import DEFAULT_DB_NAME
from lending_ledger.exceptions import DatabaseError, TransactionError
from lending_ledger.logging_config import get_logger
from lending_ledger.models import CollateralItem, Customer, Loan, Transaction

logger = get_logger(__name__)


class DatabaseManager:
    """Handles all SQLite storage for customers, loans and their transactions.

    Every write commits immediately unless it runs inside ``transaction()``,
    in which case the block commits (or rolls back) as a whole.
    """

    def __init__(self, db_name=DEFAULT_DB_NAME):
        self.db_name = db_name
        try:
            self.conn = sqlite3.connect(db_name)
        except sqlite3.Error as e:
            raise DatabaseError(f"Could not open database: {e}", {'db_name': db_name})
        self._closed = False
        self._transaction_depth = 0
        self.create_tables()

    def close(self):
        """Close the database connection."""
        if getattr(self, 'conn', None) and not self._closed:
            self.conn.close()
            self._closed = True

    def _cursor(self):
        """Cursor whose rows can be read by column name."""
        cursor = self.conn.cursor()
        cursor.row_factory = sqlite3.Row
        return cursor

    def __del__(self):
        self.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _commit(self):
        if self._transaction_depth == 0:
            self.conn.commit()

    @contextmanager
    def transaction(self):
        """Context manager for atomic multi-step writes.

        Usage:
            with db.transaction():
                loan_id = db.add_loan(...)
                db.add_transaction(...)

        If any exception occurs, all writes in the block are rolled back.
        Nested blocks join the outermost one.
        """
        self._transaction_depth += 1
        try:
            yield
        except sqlite3.Error as e:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.conn.rollback()
            raise TransactionError(f"Transaction failed: {str(e)}")
        except Exception:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.conn.rollback()
            raise
        else:
            self._transaction_depth -= 1
            if self._transaction_depth == 0:
                self.conn.commit()

    def create_tables(self):
        cursor = self._cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS customers (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL,
                father_name TEXT DEFAULT '',
                address TEXT DEFAULT '',
                created_at TEXT
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS loans (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                customer_id INTEGER,
                interest_rate REAL DEFAULT 0,
                collateral_items TEXT DEFAULT '[]',
                net_principal REAL DEFAULT 0,
                as_of_date TEXT,
                net_due REAL,
                net_date TEXT,
                interest_basis TEXT,
                created_at TEXT,
                FOREIGN KEY(customer_id) REFERENCES customers(id)
            )
        """)
        # Ids are AUTOINCREMENT so they stay monotonic and usable as a same-day tie-break
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS transactions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                loan_id INTEGER,
                type TEXT NOT NULL,
                amount REAL DEFAULT 0,
                date TEXT,
                description TEXT DEFAULT '',
                note TEXT DEFAULT '',
                returned_item_ids TEXT DEFAULT '[]',
                FOREIGN KEY(loan_id) REFERENCES loans(id)
            )
        """)
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)
        self.conn.commit()

    # Row conversion
    @staticmethod
    def _row_to_customer(row):
        return Customer(id=row['id'], name=row['name'], father_name=row['father_name'] or "",
                        address=row['address'] or "")

    @staticmethod
    def _row_to_loan(row):
        try:
            raw_items = json.loads(row['collateral_items'] or "[]")
        except json.JSONDecodeError:
            logger.warning("Loan %s has unreadable collateral data", row['id'])
            raw_items = []
        return Loan(
            id=row['id'],
            customer_id=row['customer_id'],
            interest_rate=row['interest_rate'],
            collateral_items=[CollateralItem.from_dict(item) for item in raw_items],
            net_principal=row['net_principal'] or 0.0,
            as_of_date=row['as_of_date'],
            net_due=row['net_due'],
            net_date=row['net_date'],
            interest_basis=row['interest_basis'],
        )

    @staticmethod
    def _row_to_transaction(row):
        try:
            returned = tuple(json.loads(row['returned_item_ids'] or "[]"))
        except json.JSONDecodeError:
            returned = ()
        return Transaction(
            id=row['id'],
            loan_id=row['loan_id'],
            type=row['type'],
            amount=row['amount'],
            date=row['date'],
            description=row['description'] or "",
            note=row['note'] or "",
            returned_item_ids=returned,
        )

    @staticmethod
    def _items_json(items):
        return json.dumps([item.to_dict() for item in items])

    # Customer operations
    def add_customer(self, name, father_name="", address=""):
        cursor = self._cursor()
        cursor.execute(
            "INSERT INTO customers (name, father_name, address, created_at) VALUES (?, ?, ?, ?)",
            (name, father_name, address, datetime.now().strftime("%Y-%m-%d %H:%M:%S")))
        self._commit()
        return cursor.lastrowid

    def get_customer(self, customer_id):
        row = self._cursor().execute("SELECT * FROM customers WHERE id=?", (customer_id,)).fetchone()
        return self._row_to_customer(row) if row else None

    def get_customers(self):
        rows = self._cursor().execute("SELECT * FROM customers ORDER BY id").fetchall()
        return [self._row_to_customer(row) for row in rows]

    def update_customer(self, customer_id, name, father_name, address):
        self._cursor().execute("UPDATE customers SET name=?, father_name=?, address=? WHERE id=?",
                               (name, father_name, address, customer_id))
        self._commit()

    def delete_customer(self, customer_id):
        """Delete a customer together with their loans and transactions."""
        cursor = self._cursor()
        cursor.execute(
            "DELETE FROM transactions WHERE loan_id IN (SELECT id FROM loans WHERE customer_id=?)",
            (customer_id,))
        cursor.execute("DELETE FROM loans WHERE customer_id=?", (customer_id,))
        cursor.execute("DELETE FROM customers WHERE id=?", (customer_id,))
        self._commit()

    # Loan operations
    def add_loan(self, loan: Loan):
        cursor = self._cursor()
        cursor.execute("""
            INSERT INTO loans (
                customer_id, interest_rate, collateral_items, net_principal, as_of_date,
                net_due, net_date, interest_basis, created_at
            )
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (loan.customer_id, loan.interest_rate, self._items_json(loan.collateral_items),
              loan.net_principal, loan.as_of_date, loan.net_due, loan.net_date,
              loan.interest_basis, datetime.now().strftime("%Y-%m-%d %H:%M:%S")))
        self._commit()
        return cursor.lastrowid

    def get_loan(self, loan_id):
        row = self._cursor().execute("SELECT * FROM loans WHERE id=?", (loan_id,)).fetchone()
        return self._row_to_loan(row) if row else None

    def get_loans(self, customer_id=None):
        if customer_id is None:
            rows = self._cursor().execute("SELECT * FROM loans ORDER BY id").fetchall()
        else:
            rows = self._cursor().execute("SELECT * FROM loans WHERE customer_id=? ORDER BY id",
                                          (customer_id,)).fetchall()
        return [self._row_to_loan(row) for row in rows]

    def update_loan(self, loan: Loan):
        self._cursor().execute("""
            UPDATE loans SET customer_id=?, interest_rate=?, collateral_items=?, interest_basis=?
            WHERE id=?
        """, (loan.customer_id, loan.interest_rate, self._items_json(loan.collateral_items),
              loan.interest_basis, loan.id))
        self._commit()

    def update_loan_collateral(self, loan_id, items):
        self._cursor().execute("UPDATE loans SET collateral_items=? WHERE id=?",
                               (self._items_json(items), loan_id))
        self._commit()

    def update_loan_summary(self, loan_id, net_principal, as_of_date, net_due=None, net_date=None):
        """Overwrite the engine-derived fields of a loan."""
        self._cursor().execute("""
            UPDATE loans SET net_principal=?, as_of_date=?, net_due=?, net_date=? WHERE id=?
        """, (net_principal, as_of_date, net_due, net_date, loan_id))
        self._commit()

    def delete_loan(self, loan_id):
        """Delete a loan and all of its transactions."""
        cursor = self._cursor()
        cursor.execute("DELETE FROM transactions WHERE loan_id=?", (loan_id,))
        cursor.execute("DELETE FROM loans WHERE id=?", (loan_id,))
        self._commit()

    # Transaction operations
    def add_transaction(self, transaction: Transaction):
        cursor = self._cursor()
        cursor.execute("""
            INSERT INTO transactions (loan_id, type, amount, date, description, note, returned_item_ids)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (transaction.loan_id, transaction.type, transaction.amount, transaction.date,
              transaction.description, transaction.note,
              json.dumps(list(transaction.returned_item_ids))))
        self._commit()
        return cursor.lastrowid

    def get_transaction(self, transaction_id):
        row = self._cursor().execute("SELECT * FROM transactions WHERE id=?", (transaction_id,)).fetchone()
        return self._row_to_transaction(row) if row else None

    def get_transactions(self, loan_id=None):
        """Transactions (optionally of one loan) ordered by date, then id."""
        if loan_id is None:
            rows = self._cursor().execute("SELECT * FROM transactions ORDER BY date, id").fetchall()
        else:
            rows = self._cursor().execute("SELECT * FROM transactions WHERE loan_id=? ORDER BY date, id",
                                          (loan_id,)).fetchall()
        return [self._row_to_transaction(row) for row in rows]

    def get_transactions_df(self, loan_id=None, start_date=None, end_date=None):
        query = "SELECT * FROM transactions WHERE 1=1"
        params = []

        if loan_id is not None:
            query += " AND loan_id = ?"
            params.append(loan_id)
        if start_date:
            query += " AND date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND date <= ?"
            params.append(end_date)

        query += " ORDER BY date, id"

        return pd.read_sql_query(query, self.conn, params=tuple(params))

    def update_transaction(self, transaction: Transaction):
        self._cursor().execute("""
            UPDATE transactions SET loan_id=?, type=?, amount=?, date=?, description=?, note=?,
                returned_item_ids=?
            WHERE id=?
        """, (transaction.loan_id, transaction.type, transaction.amount, transaction.date,
              transaction.description, transaction.note,
              json.dumps(list(transaction.returned_item_ids)), transaction.id))
        self._commit()

    def delete_transaction(self, transaction_id):
        self._cursor().execute("DELETE FROM transactions WHERE id=?", (transaction_id,))
        self._commit()

    def count_rows(self, table):
        if table not in ("customers", "loans", "transactions"):
            raise DatabaseError(f"Unknown table '{table}'")
        return self._cursor().execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]

    # Settings operations
    def get_setting(self, key, default=None):
        row = self._cursor().execute("SELECT value FROM settings WHERE key=?", (key,)).fetchone()
        return row[0] if row else default

    def set_setting(self, key, value):
        self._cursor().execute("INSERT OR REPLACE INTO settings (key, value) VALUES (?, ?)", (key, str(value)))
        self._commit()
