"""
CostingEngine -- weighted-average costing over the stock transaction log.

Responsibility:
    Registers stock items and records purchases, consumptions and
    adjustments.  Each mutation updates the item's quantity_on_hand /
    average_cost AND appends the matching StockTransaction in the same
    flush, so the projection and its log can never disagree.

Architecture position:
    Kernel > Services -- imperative shell over domain/costing.py.
    Called by the OperationsOrchestrator (which holds the item lock and
    owns the transaction) and by RecipeConsumptionCoordinator.

Invariants enforced:
    - quantity_on_hand >= 0 after every operation; a rejected outflow
      leaves the item untouched.
    - Purchases re-weight average_cost; consumptions and adjustments never
      change it.
    - Every mutation is dated and passes the stock-scope day lock.
    - Quarantined and inactive items accept no writes.

Failure modes:
    - ValidationError: non-positive quantity or cost, zero adjustment,
      missing adjustment reason, duplicate item code.
    - ItemNotFoundError / ItemInactiveError / RecordQuarantinedError.
    - InsufficientStockError{item_id, required, available}.
    - DayLockedError when the business date is closed.
    - ConcurrencyConflictError on a stale versioned write.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from bakery_kernel.db.types import COST_DECIMAL_PLACES, MONEY_DECIMAL_PLACES, ZERO, to_decimal
from bakery_kernel.domain.clock import Clock
from bakery_kernel.domain.costing import (
    NegativeStockError,
    StockPosition,
    apply_adjustment,
    apply_outflow,
    apply_purchase,
)
from bakery_kernel.domain.dtos import (
    AdjustmentResult,
    ConsumptionResult,
    ItemState,
    PurchaseResult,
)
from bakery_kernel.domain.events import DomainEvent, LowStockDetected
from bakery_kernel.exceptions import (
    InsufficientStockError,
    ItemInactiveError,
    ItemNotFoundError,
    RecordQuarantinedError,
    ValidationError,
)
from bakery_kernel.invariants import KernelInvariant
from bakery_kernel.logging_config import get_logger
from bakery_kernel.models.day_lock import DayLockScope
from bakery_kernel.models.stock import StockItem, StockTransaction, StockTransactionKind
from bakery_kernel.selectors.stock_selector import item_to_state
from bakery_kernel.services.base import BaseService
from bakery_kernel.services.day_close_service import DayCloseService
from bakery_kernel.services.sequence_service import SequenceService

logger = get_logger("services.costing")


def parse_positive(value, field: str) -> Decimal:
    """Parse a strictly positive decimal, raising ValidationError otherwise."""
    amount = parse_decimal(value, field)
    if amount <= ZERO:
        raise ValidationError(f"{field} must be positive, got {amount}", field=field)
    return amount


def parse_non_negative(value, field: str) -> Decimal:
    amount = parse_decimal(value, field)
    if amount < ZERO:
        raise ValidationError(f"{field} must not be negative, got {amount}", field=field)
    return amount


def parse_decimal(value, field: str) -> Decimal:
    try:
        return to_decimal(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"Invalid {field}: {exc}", field=field) from exc


class CostingEngine(BaseService[StockItem]):
    """
    Service owning every write to stock items and the stock log.

    Events (LowStockDetected) are collected in ``pending_events``; the
    orchestrator publishes them after commit.
    """

    resource_type = "stock_item"

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cost_decimal_places: int = COST_DECIMAL_PLACES,
        display_decimal_places: int = MONEY_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._cost_places = cost_decimal_places
        self._display_places = display_decimal_places
        self._sequences = SequenceService(session)
        self._days = DayCloseService(session, self._clock)
        self.pending_events: list[DomainEvent] = []

    # ------------------------------------------------------------------
    # Item lifecycle
    # ------------------------------------------------------------------

    def register_item(
        self,
        code: str,
        name: str,
        unit: str,
        *,
        actor_id: str,
        opening_quantity=ZERO,
        opening_cost=ZERO,
        min_level=ZERO,
        supplier: str | None = None,
    ) -> ItemState:
        """
        Create a stock item with its opening position.

        The opening position is the replay origin of the stock log; it is
        not itself a transaction.
        """
        if not code or not code.strip():
            raise ValidationError("Item code is required", field="code")
        if not name or not name.strip():
            raise ValidationError("Item name is required", field="name")
        if not unit or not unit.strip():
            raise ValidationError("Item unit is required", field="unit")
        quantity = parse_non_negative(opening_quantity, "opening_quantity")
        cost = parse_non_negative(opening_cost, "opening_cost")
        level = parse_non_negative(min_level, "min_level")

        existing = self.session.execute(
            select(StockItem.id).where(StockItem.code == code.strip())
        ).scalar_one_or_none()
        if existing is not None:
            raise ValidationError(f"Item code already registered: {code}", field="code")

        item = StockItem(
            code=code.strip(),
            name=name.strip(),
            unit=unit.strip(),
            quantity_on_hand=quantity,
            average_cost=cost,
            stock_value=quantity * cost,
            min_level=level,
            opening_quantity=quantity,
            opening_cost=cost,
            consumed_quantity=ZERO,
            supplier=supplier,
            is_active=True,
            is_quarantined=False,
            created_by_id=actor_id,
        )
        self.session.add(item)
        self._flush(item.code)

        logger.info(
            "stock_item_registered",
            extra={
                "item_id": str(item.id),
                "item_code": item.code,
                "opening_quantity": quantity,
                "opening_cost": cost,
            },
        )
        return item_to_state(item, self._display_places)

    def deactivate_item(self, item_id: UUID, *, actor_id: str) -> ItemState:
        item = self._get_item_for_update(item_id, allow_quarantined=True)
        if item.is_active:
            item.is_active = False
            item.updated_by_id = actor_id
            self._flush(item_id)
            logger.info("stock_item_deactivated", extra={"item_id": str(item_id)})
        return item_to_state(item, self._display_places)

    # ------------------------------------------------------------------
    # Locking helpers
    # ------------------------------------------------------------------

    def _get_item_for_update(
        self,
        item_id: UUID,
        *,
        allow_quarantined: bool = False,
        allow_inactive: bool = True,
    ) -> StockItem:
        item = self.session.execute(
            select(StockItem)
            .where(StockItem.id == item_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if item is None:
            raise ItemNotFoundError(str(item_id))
        if item.is_quarantined and not allow_quarantined:
            raise RecordQuarantinedError(self.resource_type, str(item_id), item.quarantine_reason)
        if not item.is_active and not allow_inactive:
            raise ItemInactiveError(str(item_id))
        return item

    def load_for_mutation(self, item_id: UUID) -> StockItem:
        """Locked, writable item: exists, active and not quarantined."""
        return self._get_item_for_update(item_id, allow_inactive=False)

    # ------------------------------------------------------------------
    # Log append
    # ------------------------------------------------------------------

    def _append(
        self,
        item: StockItem,
        kind: StockTransactionKind,
        quantity: Decimal,
        direction: int,
        position: StockPosition,
        business_date: date,
        actor_id: str,
        unit_cost: Decimal | None = None,
        reason: str | None = None,
        reference: str | None = None,
    ) -> StockTransaction:
        txn = StockTransaction(
            id=uuid4(),
            item_id=item.id,
            kind=kind.value,
            quantity=quantity,
            direction=direction,
            unit_cost=unit_cost,
            reason=reason,
            reference=reference,
            business_date=business_date,
            occurred_at=self._clock.now(),
            sequence=self._sequences.next_value(SequenceService.STOCK_TRANSACTION),
            quantity_after=position.quantity,
            average_cost_after=position.average_cost,
            value_after=position.value,
            actor_id=actor_id,
        )
        item.quantity_on_hand = position.quantity
        item.average_cost = position.average_cost
        item.stock_value = position.value
        item.updated_by_id = actor_id
        self.session.add(txn)
        return txn

    def _check_low_stock(self, item: StockItem) -> None:
        if item.quantity_on_hand <= item.min_level:
            logger.info(
                "low_stock_detected",
                extra={
                    "item_id": str(item.id),
                    "quantity_on_hand": item.quantity_on_hand,
                    "min_level": item.min_level,
                },
            )
            self.pending_events.append(
                LowStockDetected(
                    occurred_at=self._clock.now(),
                    item_id=item.id,
                    item_code=item.code,
                    quantity_on_hand=item.quantity_on_hand,
                    min_level=item.min_level,
                )
            )

    def _current_position(self, item: StockItem) -> StockPosition:
        return StockPosition(item.quantity_on_hand, item.average_cost, item.stock_value)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def record_purchase(
        self,
        item_id: UUID,
        quantity,
        unit_cost,
        *,
        actor_id: str,
        business_date: date | None = None,
        supplier: str | None = None,
        reference: str | None = None,
        reason: str | None = None,
    ) -> PurchaseResult:
        """
        Receive ``quantity`` at ``unit_cost`` and re-weight the average.

        Postconditions:
            stock_value grows by q*c exactly and the new average is
            stock_value / (Q + q), rounded to cost precision;
            last_restocked_at is the clock time; supplier is updated when
            given.
        """
        qty = parse_positive(quantity, "quantity")
        cost = parse_positive(unit_cost, "unit_cost")
        business_date = business_date or self._clock.today()

        item = self.load_for_mutation(item_id)
        self._days.ensure_open(business_date, DayLockScope.STOCK)

        position = apply_purchase(
            self._current_position(item), qty, cost, self._cost_places
        )
        txn = self._append(
            item,
            StockTransactionKind.IN,
            qty,
            1,
            position,
            business_date,
            actor_id,
            unit_cost=cost,
            reason=reason or "Purchase",
            reference=reference,
        )
        if supplier:
            item.supplier = supplier
        item.last_restocked_at = txn.occurred_at
        self._flush(item_id)

        logger.info(
            "purchase_recorded",
            extra={
                "item_id": str(item_id),
                "quantity": qty,
                "unit_cost": cost,
                "new_quantity": position.quantity,
                "new_average_cost": position.average_cost,
                "sequence": txn.sequence,
            },
        )
        return PurchaseResult(
            transaction_id=txn.id,
            item_id=item.id,
            new_quantity=position.quantity,
            new_average_cost=position.average_cost,
        )

    def apply_consumption(
        self,
        item: StockItem,
        quantity: Decimal,
        *,
        actor_id: str,
        business_date: date,
        reason: str,
        reference: str | None = None,
    ) -> StockTransaction:
        """
        Deduct ``quantity`` from an item already locked by the caller.

        Raises:
            InsufficientStockError: if quantity exceeds quantity_on_hand.
        """
        try:
            position = apply_outflow(self._current_position(item), quantity)
        except NegativeStockError as exc:
            logger.warning(
                "insufficient_stock_rejected",
                extra={
                    "item_id": str(item.id),
                    "required": exc.required,
                    "available": exc.available,
                    "invariant": KernelInvariant.NON_NEGATIVE_STOCK.value,
                },
            )
            raise InsufficientStockError(str(item.id), exc.required, exc.available) from exc

        txn = self._append(
            item,
            StockTransactionKind.OUT,
            quantity,
            -1,
            position,
            business_date,
            actor_id,
            reason=reason,
            reference=reference,
        )
        item.consumed_quantity = item.consumed_quantity + quantity
        self._check_low_stock(item)
        return txn

    def record_consumption(
        self,
        item_id: UUID,
        quantity,
        *,
        actor_id: str,
        business_date: date | None = None,
        reason: str | None = None,
        reference: str | None = None,
    ) -> ConsumptionResult:
        """
        Consume ``quantity`` at the current average cost.

        Raises:
            InsufficientStockError: quantity exceeds quantity_on_hand.  The
                item and the log are left untouched.
        """
        qty = parse_positive(quantity, "quantity")
        business_date = business_date or self._clock.today()

        item = self.load_for_mutation(item_id)
        self._days.ensure_open(business_date, DayLockScope.STOCK)

        txn = self.apply_consumption(
            item,
            qty,
            actor_id=actor_id,
            business_date=business_date,
            reason=reason or "Consumption",
            reference=reference,
        )
        self._flush(item_id)

        logger.info(
            "consumption_recorded",
            extra={
                "item_id": str(item_id),
                "quantity": qty,
                "new_quantity": item.quantity_on_hand,
                "average_cost": item.average_cost,
                "sequence": txn.sequence,
            },
        )
        return ConsumptionResult(
            transaction_id=txn.id,
            item_id=item.id,
            new_quantity=item.quantity_on_hand,
            average_cost=item.average_cost,
        )

    def record_adjustment(
        self,
        item_id: UUID,
        signed_quantity,
        reason: str,
        *,
        actor_id: str,
        business_date: date | None = None,
        reference: str | None = None,
    ) -> AdjustmentResult:
        """
        Correct the quantity on hand (stock count, spoilage, found stock).

        Average cost is never changed by an adjustment.

        Raises:
            ValidationError: zero quantity or missing reason.
            InsufficientStockError: a negative adjustment exceeds stock.
        """
        delta = parse_decimal(signed_quantity, "signed_quantity")
        if delta == ZERO:
            raise ValidationError("Adjustment quantity must not be zero", field="signed_quantity")
        if not reason or not reason.strip():
            raise ValidationError("Adjustment reason is required", field="reason")
        business_date = business_date or self._clock.today()

        item = self.load_for_mutation(item_id)
        self._days.ensure_open(business_date, DayLockScope.STOCK)

        try:
            position = apply_adjustment(self._current_position(item), delta)
        except NegativeStockError as exc:
            logger.warning(
                "insufficient_stock_rejected",
                extra={
                    "item_id": str(item_id),
                    "required": exc.required,
                    "available": exc.available,
                    "invariant": KernelInvariant.NON_NEGATIVE_STOCK.value,
                },
            )
            raise InsufficientStockError(str(item_id), exc.required, exc.available) from exc

        direction = 1 if delta > ZERO else -1
        txn = self._append(
            item,
            StockTransactionKind.ADJUSTMENT,
            abs(delta),
            direction,
            position,
            business_date,
            actor_id,
            reason=reason.strip(),
            reference=reference,
        )
        if direction < 0:
            self._check_low_stock(item)
        self._flush(item_id)

        logger.info(
            "adjustment_recorded",
            extra={
                "item_id": str(item_id),
                "signed_quantity": delta,
                "new_quantity": position.quantity,
                "sequence": txn.sequence,
            },
        )
        return AdjustmentResult(
            transaction_id=txn.id,
            item_id=item.id,
            new_quantity=position.quantity,
        )
