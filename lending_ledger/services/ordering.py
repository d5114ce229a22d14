"""Chronological ordering of a loan's transactions.

Transactions are processed by date, and transactions sharing a date by their
numeric id. Records may be ``Transaction`` dataclasses or plain mappings with
either snake_case or the legacy camelCase keys.
"""
import math
from collections.abc import Mapping
from datetime import date, datetime, timezone

from dateutil.parser import isoparse

from lending_ledger.logging_config import get_logger

logger = get_logger(__name__)

MISSING = object()

# Unparseable dates sort before every real date and fall through to the id tie-break
EARLIEST_DATE = datetime.min


def field_value(record, *names, default=MISSING):
    """Read the first available field from a dataclass/object or a mapping."""
    for name in names:
        if isinstance(record, Mapping):
            if name in record:
                return record[name]
        elif hasattr(record, name):
            return getattr(record, name)
    return default


def coerce_number(value, fallback=0.0):
    """Convert to a finite float, substituting ``fallback`` for anything else."""
    if isinstance(value, bool):
        return float(value)
    try:
        number = float(value)
    except (TypeError, ValueError):
        if value not in (None, ""):
            logger.debug("Non-numeric value %r replaced with %s", value, fallback)
        return fallback
    if not math.isfinite(number):
        logger.debug("Non-finite value %r replaced with %s", value, fallback)
        return fallback
    return number


def parse_date(value):
    """Parse an ISO date/datetime into a naive datetime, or None if it can't be read.

    Timezone-aware values are converted to UTC before the zone is dropped so
    that day differences stay comparable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            parsed = isoparse(text)
        except (ValueError, OverflowError):
            logger.debug("Unparseable date %r", value)
            return None
    else:
        return None

    if parsed.tzinfo is not None:
        try:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        except OverflowError:
            logger.debug("Date %r out of range after UTC conversion", value)
            return None
    return parsed


def transaction_sort_key(transaction):
    """(date, id) key; bad dates become EARLIEST_DATE and bad ids become 0."""
    parsed = parse_date(field_value(transaction, 'date', default=None))
    tx_id = coerce_number(field_value(transaction, 'id', default=None), 0.0)
    return (parsed if parsed is not None else EARLIEST_DATE, tx_id)


def sort_transactions(transactions):
    """Return a new list of transactions in processing order.

    Sorted by date ascending, then id ascending (numeric). The input is left
    untouched.
    """
    return sorted(transactions or [], key=transaction_sort_key)


def transaction_type(transaction):
    """Normalised (lower-case, stripped) transaction type."""
    return str(field_value(transaction, 'type', default="") or "").strip().lower()
