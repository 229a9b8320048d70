"""
ConsistencyChecker -- re-derives projections from their logs and compares.

Responsibility:
    Verifies that every stock item's quantity_on_hand, average_cost and
    stock_value, and every ledger entity's running balances and
    current_balance, equal what a replay of the underlying log produces.
    Manages the quarantine flag that blocks writes to a record found
    inconsistent.

Architecture position:
    Kernel > Services.  Called by the orchestrator's verify_* operations.
    Verification itself is read-only; quarantine/release are the only
    writes and run in their own transaction.

Invariants enforced:
    - Stock: replay of opening position + log in sequence order never goes
      negative; each row's quantity_after, average_cost_after and
      value_after match the replay; the item's live state matches the
      final position; consumed_quantity equals the sum of Out quantities.
    - Ledger: stored running balances match the fold; current_balance
      matches the last one; every row has exactly one positive side.

Failure modes:
    - None raised by the check methods; violations are returned.  The
      orchestrator turns them into ConsistencyError and quarantines.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from bakery_kernel.db.types import COST_DECIMAL_PLACES, ZERO
from bakery_kernel.domain.clock import Clock
from bakery_kernel.domain.costing import (
    NegativeStockError,
    StockMovement,
    StockPosition,
    apply_movement,
)
from bakery_kernel.domain.dtos import ConsistencyViolation
from bakery_kernel.domain.running_balance import (
    LedgerLine,
    first_divergence,
    fold_running_balances,
)
from bakery_kernel.exceptions import EntityNotFoundError, ItemNotFoundError, ValidationError
from bakery_kernel.invariants import KernelInvariant
from bakery_kernel.logging_config import get_logger
from bakery_kernel.models.ledger import LedgerEntity
from bakery_kernel.models.stock import StockItem, StockTransaction, StockTransactionKind
from bakery_kernel.selectors.ledger_selector import ordered_transactions_stmt
from bakery_kernel.services.base import BaseService

logger = get_logger("services.consistency")

STOCK_ITEM = "stock_item"
LEDGER_ENTITY = "ledger_entity"


def _movement(txn: StockTransaction) -> StockMovement:
    unit_cost = txn.unit_cost if txn.kind == StockTransactionKind.IN.value else None
    return StockMovement(signed_quantity=txn.signed_quantity, unit_cost=unit_cost)


class ConsistencyChecker(BaseService[StockItem]):
    """Replay-based verification and quarantine management."""

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        cost_decimal_places: int = COST_DECIMAL_PLACES,
    ):
        super().__init__(session, clock)
        self._cost_places = cost_decimal_places

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def check_item(self, item_id: UUID) -> list[ConsistencyViolation]:
        item = self.session.get(StockItem, item_id)
        if item is None:
            raise ItemNotFoundError(str(item_id))

        violations: list[ConsistencyViolation] = []

        def violation(invariant: KernelInvariant, detail: str) -> None:
            violations.append(
                ConsistencyViolation(STOCK_ITEM, item.id, invariant.value, detail)
            )

        transactions = self.session.execute(
            select(StockTransaction)
            .where(StockTransaction.item_id == item_id)
            .order_by(StockTransaction.sequence)
        ).scalars().all()

        position = StockPosition(item.opening_quantity, item.opening_cost)
        consumed = ZERO
        for txn in transactions:
            try:
                position = apply_movement(position, _movement(txn), self._cost_places)
            except NegativeStockError as exc:
                violation(
                    KernelInvariant.NON_NEGATIVE_STOCK,
                    f"sequence {txn.sequence} requires {exc.required} "
                    f"with only {exc.available} on hand",
                )
                return violations
            if txn.kind == StockTransactionKind.OUT.value:
                consumed += txn.quantity
            if txn.quantity_after != position.quantity:
                violation(
                    KernelInvariant.STOCK_REPLAY,
                    f"sequence {txn.sequence} recorded quantity {txn.quantity_after}, "
                    f"replay gives {position.quantity}",
                )
            if txn.average_cost_after != position.average_cost:
                violation(
                    KernelInvariant.WEIGHTED_AVERAGE,
                    f"sequence {txn.sequence} recorded average cost "
                    f"{txn.average_cost_after}, replay gives {position.average_cost}",
                )
            if txn.value_after != position.value:
                violation(
                    KernelInvariant.WEIGHTED_AVERAGE,
                    f"sequence {txn.sequence} recorded value "
                    f"{txn.value_after}, replay gives {position.value}",
                )

        if item.quantity_on_hand < ZERO:
            violation(
                KernelInvariant.NON_NEGATIVE_STOCK,
                f"quantity_on_hand is {item.quantity_on_hand}",
            )
        if item.quantity_on_hand != position.quantity:
            violation(
                KernelInvariant.STOCK_REPLAY,
                f"quantity_on_hand {item.quantity_on_hand} != replay {position.quantity}",
            )
        if item.average_cost != position.average_cost:
            violation(
                KernelInvariant.WEIGHTED_AVERAGE,
                f"average_cost {item.average_cost} != replay {position.average_cost}",
            )
        if item.stock_value != position.value:
            violation(
                KernelInvariant.WEIGHTED_AVERAGE,
                f"stock_value {item.stock_value} != replay {position.value}",
            )
        if item.consumed_quantity != consumed:
            violation(
                KernelInvariant.STOCK_REPLAY,
                f"consumed_quantity {item.consumed_quantity} != log total {consumed}",
            )
        return violations

    # ------------------------------------------------------------------
    # Ledger
    # ------------------------------------------------------------------

    def check_entity(self, entity_id: UUID) -> list[ConsistencyViolation]:
        entity = self.session.get(LedgerEntity, entity_id)
        if entity is None:
            raise EntityNotFoundError(str(entity_id))

        violations: list[ConsistencyViolation] = []
        transactions = self.session.execute(
            ordered_transactions_stmt(entity_id)
        ).scalars().all()

        for txn in transactions:
            if txn.debit < ZERO or txn.credit < ZERO or (
                (txn.debit > ZERO) == (txn.credit > ZERO)
            ):
                violations.append(
                    ConsistencyViolation(
                        LEDGER_ENTITY,
                        entity.id,
                        KernelInvariant.RUNNING_BALANCE.value,
                        f"sequence {txn.sequence} has debit {txn.debit} "
                        f"and credit {txn.credit}",
                    )
                )

        expected = fold_running_balances(
            LedgerLine(t.debit, t.credit) for t in transactions
        )
        stored = [t.running_balance for t in transactions]
        divergence = first_divergence(stored, expected)
        if divergence is not None:
            violations.append(
                ConsistencyViolation(
                    LEDGER_ENTITY,
                    entity.id,
                    KernelInvariant.RUNNING_BALANCE.value,
                    f"sequence {transactions[divergence].sequence} stores "
                    f"{stored[divergence]}, replay gives {expected[divergence]}",
                )
            )

        last = expected[-1] if expected else ZERO
        if entity.current_balance != last:
            violations.append(
                ConsistencyViolation(
                    LEDGER_ENTITY,
                    entity.id,
                    KernelInvariant.CURRENT_BALANCE.value,
                    f"current_balance {entity.current_balance} != replay {last}",
                )
            )
        return violations

    def all_item_ids(self) -> list[UUID]:
        return list(
            self.session.execute(select(StockItem.id).order_by(StockItem.code)).scalars()
        )

    def all_entity_ids(self) -> list[UUID]:
        return list(
            self.session.execute(
                select(LedgerEntity.id).order_by(LedgerEntity.name)
            ).scalars()
        )

    # ------------------------------------------------------------------
    # Quarantine
    # ------------------------------------------------------------------

    def _record(self, resource_type: str, resource_id: UUID) -> StockItem | LedgerEntity:
        if resource_type == STOCK_ITEM:
            record = self.session.get(StockItem, resource_id)
            if record is None:
                raise ItemNotFoundError(str(resource_id))
        elif resource_type == LEDGER_ENTITY:
            record = self.session.get(LedgerEntity, resource_id)
            if record is None:
                raise EntityNotFoundError(str(resource_id))
        else:
            raise ValidationError(
                f"Unknown resource type: {resource_type!r}", field="resource_type"
            )
        return record

    def quarantine(
        self,
        resource_type: str,
        resource_id: UUID,
        reason: str,
        *,
        actor_id: str = "consistency_checker",
    ) -> None:
        record = self._record(resource_type, resource_id)
        record.is_quarantined = True
        record.quarantine_reason = reason[:1000]
        record.updated_by_id = actor_id
        self._flush(resource_id)
        logger.critical(
            "record_quarantined",
            extra={
                "resource_type": resource_type,
                "resource_id": str(resource_id),
                "reason": reason,
            },
        )

    def release_quarantine(
        self,
        resource_type: str,
        resource_id: UUID,
        *,
        actor_id: str,
    ) -> bool:
        """Clear the quarantine flag; returns False if it was not set."""
        record = self._record(resource_type, resource_id)
        if not record.is_quarantined:
            return False
        record.is_quarantined = False
        record.quarantine_reason = None
        record.updated_by_id = actor_id
        self._flush(resource_id)
        logger.warning(
            "quarantine_released",
            extra={
                "resource_type": resource_type,
                "resource_id": str(resource_id),
                "released_by": actor_id,
            },
        )
        return True
