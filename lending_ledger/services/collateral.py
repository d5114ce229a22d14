"""Display labels for pledged collateral.

Labels look like ``Gold Chain 10.5g [P91.6]``. Older return transactions
identify the returned items by these labels, so the format must stay stable.
"""
import math
import re

from lending_ledger.services.ordering import coerce_number, field_value

NO_COLLATERAL = "No collateral"


def trim_trailing_zeros(value):
    """Shortest plain rendering of a number: 10.0 -> "10", 91.60 -> "91.6"."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return str(value or "")
    if not math.isfinite(number):
        return str(value or "")
    if number.is_integer():
        return str(int(number))
    text = repr(number)
    if 'e' in text or 'E' in text:
        text = f"{number:.6f}".rstrip('0').rstrip('.')
    return text


def format_purity_tag(purity):
    return f"[P{trim_trailing_zeros(purity)}]"


def _capitalize(text):
    return text[:1].upper() + text[1:]


def build_collateral_item_label(item):
    """Composite label: metal, name, weight and purity tag (zero parts omitted)."""
    metal = field_value(item, 'metal_type', 'metalType', default="") or ""
    name = field_value(item, 'name', default="") or ""
    weight = field_value(item, 'weight', default=0)
    purity = field_value(item, 'purity', default=0)

    parts = []
    if metal:
        parts.append(_capitalize(str(metal)))
    if name:
        parts.append(str(name))
    if coerce_number(weight) > 0:
        parts.append(f"{trim_trailing_zeros(weight)}g")
    if coerce_number(purity) > 0:
        parts.append(format_purity_tag(purity))
    return " ".join(parts).strip()


def format_collateral_items(loan):
    """Comma separated labels of a loan's collateral.

    Falls back to the single ``collateral`` record that very old loans carry.
    """
    items = field_value(loan, 'collateral_items', 'collateralItems', default=None) or []
    if items:
        return ", ".join(build_collateral_item_label(item) for item in items)

    legacy = field_value(loan, 'collateral', default=None)
    if legacy:
        parts = []
        item_name = field_value(legacy, 'item', default="")
        weight = field_value(legacy, 'weight', default=0)
        purity = field_value(legacy, 'purity', default=0)
        if item_name:
            parts.append(str(item_name))
        if coerce_number(weight) > 0:
            parts.append(f"{trim_trailing_zeros(weight)}g")
        if coerce_number(purity) > 0:
            parts.append(format_purity_tag(purity))
        return " ".join(parts).strip() or NO_COLLATERAL
    return NO_COLLATERAL


_EMPTY_ITEM = re.compile(r"\b0g\s*\(0%\)", re.IGNORECASE)


def sanitize_description(text):
    """Clean imported descriptions: drop empty "0g (0%)" fragments and stray commas."""
    if not text:
        return ""
    out = _EMPTY_ITEM.sub("", str(text))
    out = re.sub(r"\s{2,}", " ", out)
    out = re.sub(r"\s*,\s*,", ", ", out)
    out = re.sub(r"^[,\s]+|[,\s]+$", "", out)
    return out.strip()
