"""
Module: bakery_kernel.models.ledger
Responsibility: ORM persistence for customers/parties and their running
    balance ledgers.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Per entity, ordered by (transaction_date, sequence):
      running_balance_i = running_balance_{i-1} + debit_i - credit_i,
      starting from zero.  An opening balance is an ordinary first
      transaction of kind "opening".
    - current_balance equals the running_balance of the last transaction,
      or zero when there is none.
    - Exactly one of debit/credit is positive (service-enforced).

Failure modes:
    - StaleDataError on concurrent versioned writes to an entity.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from bakery_kernel.db.base import TrackedBase
from bakery_kernel.db.types import ZERO, UUIDString


class LedgerEntityKind(str, Enum):
    """Who the ledger belongs to."""

    CUSTOMER = "customer"
    PARTY = "party"


class LedgerTransactionKind(str, Enum):
    """Business origin of a ledger transaction."""

    SALE = "sale"
    PURCHASE = "purchase"
    PAYMENT_IN = "payment_in"
    PAYMENT_OUT = "payment_out"
    ADJUSTMENT = "adjustment"
    OPENING = "opening"


class LedgerEntity(TrackedBase):
    """
    A customer or supplier party with a running-balance ledger.

    current_balance is a cached projection.  It is only written by the
    running-balance recalculator.
    """

    __tablename__ = "ledger_entities"

    __table_args__ = (Index("idx_ledger_entity_kind", "kind"),)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)

    opening_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    current_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

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
        return f"<LedgerEntity {self.kind}:{self.name} balance={self.current_balance}>"


class LedgerTransaction(TrackedBase):
    """
    One ledger line for an entity.

    Mutable: debit, credit and transaction_date may be edited and the row may
    be deleted.  running_balance is derived and rewritten by replay only.
    created_by_id records the actor who appended the row.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        Index(
            "idx_ledger_transaction_order",
            "entity_id",
            "transaction_date",
            "sequence",
        ),
    )

    entity_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_entities.id"),
        nullable=False,
    )

    transaction_date: Mapped[date] = mapped_column(nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(nullable=False)
    sequence: Mapped[int] = mapped_column(nullable=False, unique=True)

    debit: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    credit: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    running_balance: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)

    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    description: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(200), nullable=True)
    related_order_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    related_purchase_id: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    payment_method: Mapped[str | None] = mapped_column(String(50), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<LedgerTransaction #{self.sequence} {self.transaction_date} "
            f"+{self.debit} -{self.credit} = {self.running_balance}>"
        )

    @property
    def actor_id(self) -> str:
        return self.created_by_id

    @property
    def net_amount(self) -> Decimal:
        return self.debit - self.credit
