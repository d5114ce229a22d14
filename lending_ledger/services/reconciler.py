"""Derive the durable summary fields of a loan from its dues schedule.

``compute_effective_principal`` gives the figures persisted on the loan
(net principal and the date the principal last moved). The collateral
helpers work out which pledged items are still held after ``return_items``
transactions.
"""
from lending_ledger.config import RETURNED_PREFIX, TX_RETURN_ITEMS
from lending_ledger.models import EffectivePrincipal
from lending_ledger.services.amortization import round_currency, today_iso
from lending_ledger.services.collateral import build_collateral_item_label
from lending_ledger.services.ordering import coerce_number, field_value, transaction_type


def _entry_principal(entry):
    return coerce_number(field_value(entry, 'principal_due', 'principalDue', default=0))


def _entry_date(entry):
    return field_value(entry, 'date', default=None)


def compute_effective_principal(schedule):
    """Net principal and the latest date the principal balance changed.

    The net principal is the today entry's principal (or the last entry's
    when there is no today entry). The as-of date is the last entry whose
    principal differs from the entry before it; a non-zero first entry
    counts as a change. Without any change the last entry's date is used.
    """
    entries = list(field_value(schedule, 'entries', default=()) or ())
    today = field_value(schedule, 'today', default=None)

    last_change_date = None
    previous = 0.0
    for entry in entries:
        principal = _entry_principal(entry)
        if principal != previous:
            last_change_date = _entry_date(entry)
        previous = principal

    if today is not None:
        final_principal = _entry_principal(today)
    elif entries:
        final_principal = _entry_principal(entries[-1])
    else:
        final_principal = 0.0

    as_of_date = (
        last_change_date
        or (_entry_date(entries[-1]) if entries else None)
        or (_entry_date(today) if today is not None else None)
        or today_iso()
    )
    return EffectivePrincipal(net_principal=round_currency(final_principal), as_of_date=as_of_date)


def format_returned_description(labels):
    """Description stored on a return_items transaction."""
    labels = [label for label in labels if label]
    if not labels:
        return RETURNED_PREFIX
    return f"{RETURNED_PREFIX} {', '.join(labels)}"


def _return_transactions(transactions):
    return [t for t in transactions or [] if transaction_type(t) == TX_RETURN_ITEMS]


def returned_labels_from_transactions(transactions):
    """Item labels listed in the descriptions of return_items transactions."""
    returned = set()
    for transaction in _return_transactions(transactions):
        description = str(field_value(transaction, 'description', default="") or "")
        _, sep, after = description.partition(':')
        listed = after if sep else description
        for label in listed.split(','):
            label = label.strip()
            if label:
                returned.add(label)
    return returned


def returned_item_ids_from_transactions(transactions):
    returned = set()
    for transaction in _return_transactions(transactions):
        ids = field_value(transaction, 'returned_item_ids', 'returnedItemIds', default=()) or ()
        returned.update(str(item_id) for item_id in ids)
    return returned


def reconcile_collateral_items(items, transactions):
    """Collateral items not yet returned.

    Items are matched by their stable ``item_id``. Return transactions
    recorded before ids existed only name items by label, so for those a
    label match counts as returned.
    """
    returned_ids = returned_item_ids_from_transactions(transactions)
    legacy_returns = [
        t for t in _return_transactions(transactions)
        if not field_value(t, 'returned_item_ids', 'returnedItemIds', default=())
    ]
    returned_labels = returned_labels_from_transactions(legacy_returns)
    if not returned_ids and not returned_labels:
        return list(items or [])

    remaining = []
    for item in items or []:
        item_id = field_value(item, 'item_id', 'itemId', default=None)
        if item_id is not None and str(item_id) in returned_ids:
            continue
        if build_collateral_item_label(item) in returned_labels:
            continue
        remaining.append(item)
    return remaining


def remaining_collateral_labels(items, transactions):
    return [build_collateral_item_label(item) for item in reconcile_collateral_items(items, transactions)]
