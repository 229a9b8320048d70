"""
Module: bakery_kernel.models.day_lock
Responsibility: ORM persistence for the per-date, per-scope close/reopen
    state that gates stock and ledger mutations.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - At most one row per (lock_date, scope).  A date with no row is Open.
    - While state is CLOSED, no StockTransaction (stock scope) or
      LedgerTransaction (ledger scope) dated lock_date may be created,
      edited or deleted.

Failure modes:
    - IntegrityError on a concurrent duplicate insert of the same
      (lock_date, scope); the second closer retries and sees the row.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum

from sqlalchemy import Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from bakery_kernel.db.base import TrackedBase


class DayLockScope(str, Enum):
    """Which log a day lock gates."""

    STOCK = "stock"
    LEDGER = "ledger"


class DayLockState(str, Enum):
    """Open -> Closed -> Open (reopen) -> Closed ..."""

    OPEN = "open"
    CLOSED = "closed"


class DayLock(TrackedBase):
    """
    Close/reopen record for one business date and scope.

    Contract:
        closed_at/reopened_at come from the injected clock; closed_by and
        reopened_by are the caller-supplied actor ids.  For the stock scope
        a summary snapshot (item count, total stock value) is taken at close.
    """

    __tablename__ = "day_locks"

    __table_args__ = (
        UniqueConstraint("lock_date", "scope", name="uq_day_lock_date_scope"),
        Index("idx_day_lock_scope_state", "scope", "state"),
    )

    lock_date: Mapped[date] = mapped_column(nullable=False)
    scope: Mapped[str] = mapped_column(String(20), nullable=False)
    state: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DayLockState.OPEN.value
    )

    closed_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    reopened_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reopened_at: Mapped[datetime | None] = mapped_column(nullable=True)

    snapshot_item_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    snapshot_total_value: Mapped[Decimal | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<DayLock {self.scope} {self.lock_date}: {self.state}>"

    @property
    def is_closed(self) -> bool:
        return self.state == DayLockState.CLOSED.value

    def close(
        self,
        actor_id: str,
        closed_at: datetime,
        item_count: int | None = None,
        total_value: Decimal | None = None,
    ) -> None:
        """Close the day.

        Raises: ValueError if the day is already closed.
        Requires closed_at from the injected clock.
        """
        if self.is_closed:
            raise ValueError(f"Day {self.lock_date} ({self.scope}) is already closed")
        self.state = DayLockState.CLOSED.value
        self.closed_by = actor_id
        self.closed_at = closed_at
        self.snapshot_item_count = item_count
        self.snapshot_total_value = total_value

    def reopen(self, actor_id: str, reopened_at: datetime) -> None:
        """Reopen the day.

        Raises: ValueError if the day is not closed.
        """
        if not self.is_closed:
            raise ValueError(f"Day {self.lock_date} ({self.scope}) is not closed")
        self.state = DayLockState.OPEN.value
        self.reopened_by = actor_id
        self.reopened_at = reopened_at
