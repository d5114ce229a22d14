"""Centralized configuration for Lending Ledger.

This module contains the default rates, day-count conventions and business
rule constants used across the ledger and the dues engine.
"""

# =============================================================================
# LOAN DEFAULTS
# =============================================================================

# Default interest rate in percent (applied when a loan is saved without one)
DEFAULT_INTEREST_RATE = 12.0

# Default metal rates per gram
DEFAULT_GOLD_RATE = 0.0
DEFAULT_SILVER_RATE = 0.0

# =============================================================================
# INTEREST CALCULATION
# =============================================================================

# "annual": rate is % per year over a 365-day year
# "monthly": rate is % per month, every month counted as 30 days
INTEREST_BASIS_ANNUAL = "annual"
INTEREST_BASIS_MONTHLY = "monthly"
INTEREST_BASES = (INTEREST_BASIS_ANNUAL, INTEREST_BASIS_MONTHLY)
DEFAULT_INTEREST_BASIS = INTEREST_BASIS_ANNUAL

DAYS_PER_YEAR = 365
DAYS_PER_MONTH = 30

# Monetary outputs are rounded half away from zero to this many places
CURRENCY_DECIMALS = 2

# =============================================================================
# TRANSACTION TYPES
# =============================================================================

TX_DEBIT = "debit"
TX_CREDIT = "credit"
TX_COLLATERAL = "collateral"
TX_RETURN_ITEMS = "return_items"

# Description prefix written on return_items transactions
RETURNED_PREFIX = "Returned:"

# =============================================================================
# STORAGE
# =============================================================================

DEFAULT_DB_NAME = "lending_ledger.db"
