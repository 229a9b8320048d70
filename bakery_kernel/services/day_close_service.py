"""
DayCloseService -- business-day close/reopen lifecycle.

Responsibility:
    Closes and reopens business days per scope (stock, ledger) and answers
    whether a mutation dated on a given day is allowed.

Architecture position:
    Kernel > Services -- imperative shell.  Called by the orchestrator for
    close/reopen, and by the costing engine, recipe coordinator and ledger
    service before every log mutation.

Invariants enforced:
    - No StockTransaction or LedgerTransaction may be created, edited or
      deleted for a date whose DayLock of the same scope is Closed.
    - Close order: a day cannot be closed while an EARLIER day of the same
      scope has been reopened and is still open.  Days that were never
      closed carry no row and do not block.
    - Closed -> Open only through reopen_day, which records who and when.

Failure modes:
    - DayLockedError from ensure_open().
    - DayAlreadyClosedError / DayNotClosedError on invalid transitions.
    - DayCloseOrderError when an earlier reopened day is still open.
    - DayLockNotFoundError when reopening a day that was never closed.
"""

from datetime import date
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from bakery_kernel.domain.clock import Clock
from bakery_kernel.domain.dtos import DayLockInfo
from bakery_kernel.exceptions import (
    DayAlreadyClosedError,
    DayCloseOrderError,
    DayLockedError,
    DayLockNotFoundError,
    DayNotClosedError,
    ValidationError,
)
from bakery_kernel.logging_config import get_logger
from bakery_kernel.models.day_lock import DayLock, DayLockScope, DayLockState
from bakery_kernel.models.stock import StockItem
from bakery_kernel.services.base import BaseService

logger = get_logger("services.day_close")


def validate_scope(scope: str | DayLockScope) -> str:
    try:
        return DayLockScope(scope).value
    except ValueError as exc:
        raise ValidationError(f"Unknown day lock scope: {scope!r}", field="scope") from exc


class DayCloseService(BaseService[DayLock]):
    """
    Service for the DayLock state machine.

    Guarantees:
        - ``ensure_open()`` is the single gate every log mutation passes.
        - Close and reopen flush within the caller's transaction and
          return frozen ``DayLockInfo`` DTOs.
    """

    resource_type = "day_lock"

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def _to_dto(self, lock: DayLock) -> DayLockInfo:
        return DayLockInfo(
            lock_date=lock.lock_date,
            scope=lock.scope,
            state=lock.state,
            closed_by=lock.closed_by,
            closed_at=lock.closed_at,
            reopened_by=lock.reopened_by,
            reopened_at=lock.reopened_at,
            snapshot_item_count=lock.snapshot_item_count,
            snapshot_total_value=lock.snapshot_total_value,
        )

    def _get_lock_for_update(self, lock_date: date, scope: str) -> DayLock | None:
        return self.session.execute(
            select(DayLock)
            .where(DayLock.lock_date == lock_date, DayLock.scope == scope)
            .with_for_update()
        ).scalar_one_or_none()

    def _get_lock(self, lock_date: date, scope: str) -> DayLock | None:
        return self.session.execute(
            select(DayLock).where(DayLock.lock_date == lock_date, DayLock.scope == scope)
        ).scalar_one_or_none()

    def _stock_snapshot(self) -> tuple[int, Decimal]:
        items = self.session.execute(select(StockItem)).scalars().all()
        total = sum((item.stock_value for item in items), Decimal("0"))
        return len(items), total

    def is_closed(self, lock_date: date, scope: str | DayLockScope) -> bool:
        lock = self._get_lock(lock_date, validate_scope(scope))
        return lock is not None and lock.is_closed

    def ensure_open(self, lock_date: date, scope: str | DayLockScope) -> None:
        """
        Raise DayLockedError if ``lock_date`` is closed for ``scope``.
        """
        scope_value = validate_scope(scope)
        lock = self._get_lock(lock_date, scope_value)
        if lock is not None and lock.is_closed:
            logger.warning(
                "day_locked_violation",
                extra={"lock_date": str(lock_date), "scope": scope_value},
            )
            raise DayLockedError(str(lock_date), scope_value)

    def close_day(
        self,
        lock_date: date,
        scope: str | DayLockScope,
        closed_by: str,
    ) -> DayLockInfo:
        """
        Close ``lock_date`` for ``scope``.

        For the stock scope a summary snapshot (item count and total stock
        value at the current average costs) is recorded on the lock row.

        Raises:
            DayAlreadyClosedError: If the day is already closed.
            DayCloseOrderError: If an earlier reopened day is still open.
        """
        scope_value = validate_scope(scope)

        earlier_open = self.session.execute(
            select(DayLock.lock_date)
            .where(
                DayLock.scope == scope_value,
                DayLock.lock_date < lock_date,
                DayLock.state == DayLockState.OPEN.value,
            )
            .order_by(DayLock.lock_date)
            .limit(1)
        ).scalar_one_or_none()
        if earlier_open is not None:
            logger.warning(
                "day_close_order_violation",
                extra={
                    "lock_date": str(lock_date),
                    "scope": scope_value,
                    "open_date": str(earlier_open),
                },
            )
            raise DayCloseOrderError(str(lock_date), scope_value, str(earlier_open))

        lock = self._get_lock_for_update(lock_date, scope_value)
        if lock is None:
            lock = DayLock(
                lock_date=lock_date,
                scope=scope_value,
                state=DayLockState.OPEN.value,
                created_by_id=closed_by,
            )
            self.session.add(lock)
        elif lock.is_closed:
            raise DayAlreadyClosedError(str(lock_date), scope_value)

        item_count: int | None = None
        total_value: Decimal | None = None
        if scope_value == DayLockScope.STOCK.value:
            item_count, total_value = self._stock_snapshot()

        lock.close(closed_by, self._clock.now(), item_count, total_value)
        lock.updated_by_id = closed_by
        self._flush(f"{scope_value}:{lock_date}")

        logger.info(
            "day_closed",
            extra={
                "lock_date": str(lock_date),
                "scope": scope_value,
                "closed_by": closed_by,
                "snapshot_item_count": item_count,
                "snapshot_total_value": total_value,
            },
        )
        return self._to_dto(lock)

    def reopen_day(
        self,
        lock_date: date,
        scope: str | DayLockScope,
        reopened_by: str,
    ) -> DayLockInfo:
        """
        Reopen a closed day so corrections can be recorded.

        Raises:
            DayLockNotFoundError: If the day was never closed.
            DayNotClosedError: If the day is open.
        """
        scope_value = validate_scope(scope)
        lock = self._get_lock_for_update(lock_date, scope_value)
        if lock is None:
            raise DayLockNotFoundError(str(lock_date), scope_value)
        if not lock.is_closed:
            raise DayNotClosedError(str(lock_date), scope_value)

        lock.reopen(reopened_by, self._clock.now())
        lock.updated_by_id = reopened_by
        self._flush(f"{scope_value}:{lock_date}")

        logger.info(
            "day_reopened",
            extra={
                "lock_date": str(lock_date),
                "scope": scope_value,
                "reopened_by": reopened_by,
            },
        )
        return self._to_dto(lock)

    def get_day_lock(self, lock_date: date, scope: str | DayLockScope) -> DayLockInfo:
        """State of a day; a day with no row is reported as open."""
        scope_value = validate_scope(scope)
        lock = self._get_lock(lock_date, scope_value)
        if lock is None:
            return DayLockInfo(
                lock_date=lock_date, scope=scope_value, state=DayLockState.OPEN.value
            )
        return self._to_dto(lock)
