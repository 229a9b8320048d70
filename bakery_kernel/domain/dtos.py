"""
Data transfer objects returned across the library boundary.

Every DTO is a frozen dataclass detached from the ORM session.  ``to_dict()``
renders decimals as plain strings and dates as ISO text, so callers can
serialize results without ever meeting a float.
"""

from dataclasses import dataclass, fields, is_dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from bakery_kernel.db.types import decimal_to_str


def _to_primitive(value: Any) -> Any:
    if isinstance(value, Decimal):
        return decimal_to_str(value)
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: _to_primitive(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, (list, tuple)):
        return [_to_primitive(v) for v in value]
    if isinstance(value, dict):
        return {str(k): _to_primitive(v) for k, v in value.items()}
    return value


class _Serializable:
    def to_dict(self) -> dict[str, Any]:
        return _to_primitive(self)


# ---------------------------------------------------------------------------
# Stock
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ItemState(_Serializable):
    item_id: UUID
    code: str
    name: str
    unit: str
    quantity_on_hand: Decimal
    average_cost: Decimal
    display_average_cost: Decimal
    stock_value: Decimal
    min_level: Decimal
    opening_quantity: Decimal
    opening_cost: Decimal
    consumed_quantity: Decimal
    supplier: str | None
    last_restocked_at: datetime | None
    is_active: bool
    is_quarantined: bool
    quarantine_reason: str | None
    version: int

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_on_hand <= self.min_level


@dataclass(frozen=True)
class StockTransactionRecord(_Serializable):
    transaction_id: UUID
    item_id: UUID
    kind: str
    quantity: Decimal
    direction: int
    unit_cost: Decimal | None
    reason: str | None
    reference: str | None
    business_date: date
    occurred_at: datetime
    sequence: int
    quantity_after: Decimal
    average_cost_after: Decimal
    value_after: Decimal
    actor_id: str

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity * self.direction


@dataclass(frozen=True)
class PurchaseResult(_Serializable):
    transaction_id: UUID
    item_id: UUID
    new_quantity: Decimal
    new_average_cost: Decimal


@dataclass(frozen=True)
class ConsumptionResult(_Serializable):
    transaction_id: UUID
    item_id: UUID
    new_quantity: Decimal
    average_cost: Decimal


@dataclass(frozen=True)
class AdjustmentResult(_Serializable):
    transaction_id: UUID
    item_id: UUID
    new_quantity: Decimal


@dataclass(frozen=True)
class IngredientDeduction(_Serializable):
    item_id: UUID
    quantity: Decimal
    unit_cost: Decimal
    cost: Decimal
    new_quantity: Decimal
    transaction_id: UUID


@dataclass(frozen=True)
class ProductionResult(_Serializable):
    product_id: str
    produced_quantity: Decimal
    reference: str
    deductions: tuple[IngredientDeduction, ...]
    total_cost: Decimal


@dataclass(frozen=True)
class ValuationLine(_Serializable):
    item_id: UUID
    code: str
    quantity_on_hand: Decimal
    average_cost: Decimal
    value: Decimal


@dataclass(frozen=True)
class StockValuation(_Serializable):
    item_count: int
    total_value: Decimal
    lines: tuple[ValuationLine, ...]


# ---------------------------------------------------------------------------
# Ledger
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EntityBalance(_Serializable):
    entity_id: UUID
    kind: str
    name: str
    opening_balance: Decimal
    current_balance: Decimal
    is_active: bool
    is_quarantined: bool
    quarantine_reason: str | None
    version: int


@dataclass(frozen=True)
class LedgerTransactionRecord(_Serializable):
    transaction_id: UUID
    entity_id: UUID
    transaction_date: date
    recorded_at: datetime
    sequence: int
    debit: Decimal
    credit: Decimal
    running_balance: Decimal
    kind: str
    description: str | None
    reference: str | None
    related_order_id: str | None
    related_purchase_id: str | None
    payment_method: str | None
    actor_id: str


@dataclass(frozen=True)
class LedgerMutationResult(_Serializable):
    """Outcome of append/update/delete, after replay."""

    transaction_id: UUID
    entity_id: UUID
    current_balance: Decimal
    rewritten_count: int


# ---------------------------------------------------------------------------
# Day close
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DayLockInfo(_Serializable):
    lock_date: date
    scope: str
    state: str
    closed_by: str | None = None
    closed_at: datetime | None = None
    reopened_by: str | None = None
    reopened_at: datetime | None = None
    snapshot_item_count: int | None = None
    snapshot_total_value: Decimal | None = None

    @property
    def is_closed(self) -> bool:
        return self.state == "closed"


# ---------------------------------------------------------------------------
# Consistency
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ConsistencyViolation(_Serializable):
    resource_type: str
    resource_id: UUID
    invariant: str
    detail: str


@dataclass(frozen=True)
class ConsistencyReport(_Serializable):
    checked_items: int
    checked_entities: int
    violations: tuple[ConsistencyViolation, ...]

    @property
    def is_consistent(self) -> bool:
        return not self.violations
