"""
Module: bakery_kernel.models.stock
Responsibility: ORM persistence for stock items and their append-only
    transaction log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity_on_hand >= 0 (CHECK is not portable on string-backed decimals;
      the costing engine enforces it before every flush).
    - quantity_on_hand = opening_quantity + sum of signed transaction
      quantities, in sequence order.
    - StockTransaction rows are immutable (db/immutability.py).
    - version is an optimistic concurrency counter: a stale write raises
      StaleDataError, mapped to ConcurrencyConflictError by the services.

Failure modes:
    - IntegrityError on duplicate item code (uq_stock_item_code).
    - ImmutabilityViolationError on UPDATE/DELETE of a StockTransaction.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from bakery_kernel.db.base import Base, TrackedBase
from bakery_kernel.db.types import ZERO, UUIDString


class StockTransactionKind(str, Enum):
    """Kind of stock movement."""

    IN = "in"
    OUT = "out"
    ADJUSTMENT = "adjustment"


class StockItem(TrackedBase):
    """
    A stock-keeping unit: flour, butter, boxes.

    Contract:
        quantity_on_hand, average_cost and stock_value are derived state,
        mutated only by the costing engine in the same transaction that
        appends the matching StockTransaction.  Items are never deleted; deactivation is a flag.
    """

    __tablename__ = "stock_items"

    __table_args__ = (
        UniqueConstraint("code", name="uq_stock_item_code"),
        Index("idx_stock_item_active", "is_active"),
    )

    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit: Mapped[str] = mapped_column(String(20), nullable=False)

    quantity_on_hand: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    average_cost: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    # Unrounded cost of quantity_on_hand; average_cost is derived from it
    stock_value: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    min_level: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Opening position the log replays from
    opening_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    opening_cost: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    # Cumulative Out quantity
    consumed_quantity: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    supplier: Mapped[str | None] = mapped_column(String(200), nullable=True)
    last_restocked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_quarantined: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    quarantine_reason: Mapped[str | None] = mapped_column(
        String(1000), nullable=True
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<StockItem {self.code}: {self.quantity_on_hand} @ {self.average_cost}>"

    @property
    def is_low_stock(self) -> bool:
        """Low stock means at or below the reorder level."""
        return self.quantity_on_hand <= self.min_level


class StockTransaction(Base):
    """
    One immutable entry of the stock log.

    quantity is always the positive magnitude; direction carries the sign
    (+1 for In, -1 for Out, either for Adjustment).  quantity_after,
    average_cost_after and value_after snapshot the item state produced by
    this entry.
    """

    __tablename__ = "stock_transactions"

    __table_args__ = (
        UniqueConstraint("sequence", name="uq_stock_transaction_sequence"),
        Index("idx_stock_transaction_item_seq", "item_id", "sequence"),
        Index("idx_stock_transaction_date", "business_date"),
    )

    item_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("stock_items.id"),
        nullable=False,
    )

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    direction: Mapped[int] = mapped_column(Integer, nullable=False)

    # Purchases only
    unit_cost: Mapped[Decimal | None] = mapped_column(nullable=True)

    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    business_date: Mapped[date] = mapped_column(nullable=False)
    occurred_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False)

    quantity_after: Mapped[Decimal] = mapped_column(nullable=False)
    average_cost_after: Mapped[Decimal] = mapped_column(nullable=False)
    value_after: Mapped[Decimal] = mapped_column(nullable=False)

    actor_id: Mapped[str] = mapped_column(String(100), nullable=False)

    def __repr__(self) -> str:
        return f"<StockTransaction #{self.sequence} {self.kind} {self.signed_quantity}>"

    @property
    def signed_quantity(self) -> Decimal:
        return self.quantity * self.direction
