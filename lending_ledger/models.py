"""Records kept by the ledger and the value objects produced by the dues engine."""
import uuid
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional, Tuple

from lending_ledger.config import DEFAULT_INTEREST_RATE


def _first(data: Dict[str, Any], *keys, default=None):
    """Return the first key present in a mapping (snake_case or legacy camelCase)."""
    for key in keys:
        if key in data:
            return data[key]
    return default


@dataclass
class Customer:
    id: Optional[int]
    name: str
    father_name: str = ""
    address: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Customer':
        return cls(
            id=data.get('id'),
            name=data.get('name') or "",
            father_name=_first(data, 'father_name', 'fatherName', default="") or "",
            address=data.get('address') or "",
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CollateralItem:
    """A pledged piece of jewellery.

    ``item_id`` is a stable identifier so that returned items can be matched
    without rebuilding display labels.
    """
    name: str
    metal_type: str
    weight: float
    purity: float
    item_id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @property
    def net_weight(self) -> float:
        """Fine metal content in grams."""
        return self.weight * (self.purity / 100)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'CollateralItem':
        item_id = _first(data, 'item_id', 'itemId')
        return cls(
            name=data.get('name') or "",
            metal_type=_first(data, 'metal_type', 'metalType', default="") or "",
            weight=float(data.get('weight') or 0),
            purity=float(data.get('purity') or 0),
            item_id=item_id or uuid.uuid4().hex,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['net_weight'] = self.net_weight
        return data


@dataclass
class Loan:
    """A loan against collateral.

    ``net_principal`` and ``as_of_date`` are derived by the dues engine and
    overwritten every time the loan's transactions change. ``net_due`` and
    ``net_date`` mirror them for older readers.
    """
    id: Optional[int]
    customer_id: Optional[int]
    interest_rate: float = DEFAULT_INTEREST_RATE
    collateral_items: List[CollateralItem] = field(default_factory=list)
    net_principal: float = 0.0
    as_of_date: Optional[str] = None
    net_due: Optional[float] = None
    net_date: Optional[str] = None
    interest_basis: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Loan':
        items = _first(data, 'collateral_items', 'collateralItems', default=[]) or []
        return cls(
            id=data.get('id'),
            customer_id=_first(data, 'customer_id', 'customerId'),
            interest_rate=_first(data, 'interest_rate', 'interestRate', default=DEFAULT_INTEREST_RATE),
            collateral_items=[i if isinstance(i, CollateralItem) else CollateralItem.from_dict(i)
                              for i in items],
            net_principal=_first(data, 'net_principal', 'netPrincipal', default=0.0) or 0.0,
            as_of_date=_first(data, 'as_of_date', 'asOfDate'),
            net_due=_first(data, 'net_due', 'netDue'),
            net_date=_first(data, 'net_date', 'netDate'),
            interest_basis=_first(data, 'interest_basis', 'interestBasis'),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['collateral_items'] = [item.to_dict() for item in self.collateral_items]
        return data


@dataclass
class Transaction:
    """A ledger event on a loan.

    Only ``debit`` and ``credit`` move money; ``collateral`` and
    ``return_items`` carry a zero amount and document the pledged items.
    """
    id: Optional[int]
    loan_id: Optional[int]
    type: str
    amount: float
    date: str
    description: str = ""
    note: str = ""
    returned_item_ids: Tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        returned = _first(data, 'returned_item_ids', 'returnedItemIds', default=()) or ()
        return cls(
            id=data.get('id'),
            loan_id=_first(data, 'loan_id', 'loanId'),
            type=data.get('type') or "",
            amount=data.get('amount', 0),
            date=data.get('date') or "",
            description=data.get('description') or "",
            note=data.get('note') or "",
            returned_item_ids=tuple(returned),
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['returned_item_ids'] = list(self.returned_item_ids)
        return data


@dataclass
class Rates:
    gold_rate: float
    silver_rate: float
    default_interest_rate: float


@dataclass(frozen=True)
class ScheduleEntry:
    """Balances immediately after one transaction (or on the as-of date)."""
    date: str
    principal_due: float
    interest_due: float


@dataclass(frozen=True)
class LoanSchedule:
    entries: Tuple[ScheduleEntry, ...]
    today: ScheduleEntry


@dataclass(frozen=True)
class LoanDues:
    principal_disbursed: float
    payments_received: float
    principal_due: float
    interest_due: float
    total_due: float


@dataclass(frozen=True)
class EffectivePrincipal:
    net_principal: float
    as_of_date: str
