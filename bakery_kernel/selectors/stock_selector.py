"""
Module: bakery_kernel.selectors.stock_selector
Responsibility: Read queries over stock items and the stock transaction log:
    item state, history, low-stock listing and valuation.
Architecture position: Kernel > Selectors.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from bakery_kernel.db.types import MONEY_DECIMAL_PLACES, ZERO, round_money
from bakery_kernel.domain.dtos import (
    ItemState,
    StockTransactionRecord,
    StockValuation,
    ValuationLine,
)
from bakery_kernel.exceptions import ItemNotFoundError
from bakery_kernel.models.stock import StockItem, StockTransaction
from bakery_kernel.selectors.base import BaseSelector


def item_to_state(
    item: StockItem, display_decimal_places: int = MONEY_DECIMAL_PLACES
) -> ItemState:
    return ItemState(
        item_id=item.id,
        code=item.code,
        name=item.name,
        unit=item.unit,
        quantity_on_hand=item.quantity_on_hand,
        average_cost=item.average_cost,
        display_average_cost=round_money(item.average_cost, display_decimal_places),
        stock_value=item.stock_value,
        min_level=item.min_level,
        opening_quantity=item.opening_quantity,
        opening_cost=item.opening_cost,
        consumed_quantity=item.consumed_quantity,
        supplier=item.supplier,
        last_restocked_at=item.last_restocked_at,
        is_active=item.is_active,
        is_quarantined=item.is_quarantined,
        quarantine_reason=item.quarantine_reason,
        version=item.version,
    )


def transaction_to_record(txn: StockTransaction) -> StockTransactionRecord:
    return StockTransactionRecord(
        transaction_id=txn.id,
        item_id=txn.item_id,
        kind=txn.kind,
        quantity=txn.quantity,
        direction=txn.direction,
        unit_cost=txn.unit_cost,
        reason=txn.reason,
        reference=txn.reference,
        business_date=txn.business_date,
        occurred_at=txn.occurred_at,
        sequence=txn.sequence,
        quantity_after=txn.quantity_after,
        average_cost_after=txn.average_cost_after,
        value_after=txn.value_after,
        actor_id=txn.actor_id,
    )


class StockSelector(BaseSelector[StockItem]):
    """Read-only stock queries returning frozen DTOs."""

    def __init__(self, session, display_decimal_places: int = MONEY_DECIMAL_PLACES):
        super().__init__(session)
        self._display_places = display_decimal_places

    def get_item_state(self, item_id: UUID) -> ItemState:
        item = self.session.get(StockItem, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))
        return item_to_state(item, self._display_places)

    def get_item_by_code(self, code: str) -> ItemState | None:
        item = self.session.execute(
            select(StockItem).where(StockItem.code == code)
        ).scalar_one_or_none()
        return item_to_state(item, self._display_places) if item else None

    def list_items(self, include_inactive: bool = False) -> list[ItemState]:
        stmt = select(StockItem).order_by(StockItem.code)
        if not include_inactive:
            stmt = stmt.where(StockItem.is_active.is_(True))
        return [
            item_to_state(item, self._display_places)
            for item in self.session.execute(stmt).scalars()
        ]

    def get_transaction_history(
        self,
        item_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[StockTransactionRecord]:
        """Stock log for one item in sequence order, optionally date-bounded."""
        if self.session.get(StockItem, item_id) is None:
            raise ItemNotFoundError(str(item_id))
        stmt = select(StockTransaction).where(StockTransaction.item_id == item_id)
        if start_date is not None:
            stmt = stmt.where(StockTransaction.business_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(StockTransaction.business_date <= end_date)
        stmt = stmt.order_by(StockTransaction.sequence)
        return [transaction_to_record(t) for t in self.session.execute(stmt).scalars()]

    def list_low_stock_items(self) -> list[ItemState]:
        """Active items at or below their reorder level."""
        # Decimal comparison happens in Python; columns hold decimal text
        return [state for state in self.list_items() if state.is_low_stock]

    def get_stock_valuation(self) -> StockValuation:
        """Exact stock value of each active item, rounded for display."""
        lines = tuple(
            ValuationLine(
                item_id=state.item_id,
                code=state.code,
                quantity_on_hand=state.quantity_on_hand,
                average_cost=state.average_cost,
                value=round_money(state.stock_value, self._display_places),
            )
            for state in self.list_items()
        )
        total = sum((line.value for line in lines), ZERO)
        return StockValuation(item_count=len(lines), total_value=total, lines=lines)
