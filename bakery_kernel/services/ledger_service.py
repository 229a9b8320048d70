"""
LedgerService -- the customer/party ledger transaction log.

Responsibility:
    Registers ledger entities and appends, edits and deletes their
    transactions.  Every mutation is followed, in the same flush sequence,
    by an incremental running-balance replay from the earliest position it
    affected.

Architecture position:
    Kernel > Services.  Called by the OperationsOrchestrator, which holds
    the entity lock (and the day locks of every date touched) and owns the
    transaction.

Invariants enforced:
    - Exactly one of debit / credit is positive; neither is negative.
    - running_balance is never settable through this API.
    - Mutations dated inside a closed ledger day are rejected, for both the
      old and the new date of an edit.
    - A non-zero opening balance is an ordinary first transaction of kind
      "opening", so the replay law holds without special cases.

Failure modes:
    - ValidationError, EntityNotFoundError, EntityInactiveError,
      LedgerTransactionNotFoundError, RecordQuarantinedError.
    - DayLockedError for closed dates.
    - ConcurrencyConflictError on a stale versioned write.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.orm import Session

from bakery_kernel.db.types import ZERO
from bakery_kernel.domain.clock import Clock
from bakery_kernel.domain.dtos import EntityBalance, LedgerMutationResult
from bakery_kernel.exceptions import (
    EntityInactiveError,
    EntityNotFoundError,
    LedgerTransactionNotFoundError,
    RecordQuarantinedError,
    ValidationError,
)
from bakery_kernel.logging_config import get_logger
from bakery_kernel.models.day_lock import DayLockScope
from bakery_kernel.models.ledger import (
    LedgerEntity,
    LedgerEntityKind,
    LedgerTransaction,
    LedgerTransactionKind,
)
from bakery_kernel.selectors.ledger_selector import entity_to_balance
from bakery_kernel.services.base import BaseService
from bakery_kernel.services.costing_engine import parse_decimal, parse_non_negative
from bakery_kernel.services.day_close_service import DayCloseService
from bakery_kernel.services.running_balance_service import RunningBalanceRecalculator
from bakery_kernel.services.sequence_service import SequenceService

logger = get_logger("services.ledger")


def _validate_amounts(debit, credit) -> tuple[Decimal, Decimal]:
    debit_amount = parse_non_negative(debit, "debit")
    credit_amount = parse_non_negative(credit, "credit")
    if (debit_amount > ZERO) == (credit_amount > ZERO):
        raise ValidationError(
            "Exactly one of debit or credit must be positive "
            f"(debit={debit_amount}, credit={credit_amount})",
            field="debit",
        )
    return debit_amount, credit_amount


def _validate_kind(kind: str | LedgerTransactionKind) -> str:
    try:
        return LedgerTransactionKind(kind).value
    except ValueError as exc:
        raise ValidationError(f"Unknown ledger transaction kind: {kind!r}", field="kind") from exc


class LedgerService(BaseService[LedgerEntity]):
    """Append / update / delete of ledger transactions with replay."""

    resource_type = "ledger_entity"

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)
        self._sequences = SequenceService(session)
        self._days = DayCloseService(session, self._clock)
        self._recalculator = RunningBalanceRecalculator(session, self._clock)

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def register_entity(
        self,
        kind: str | LedgerEntityKind,
        name: str,
        *,
        actor_id: str,
        opening_balance=ZERO,
        opening_date: date | None = None,
    ) -> EntityBalance:
        try:
            kind_value = LedgerEntityKind(kind).value
        except ValueError as exc:
            raise ValidationError(f"Unknown entity kind: {kind!r}", field="kind") from exc
        if not name or not name.strip():
            raise ValidationError("Entity name is required", field="name")
        opening = parse_decimal(opening_balance, "opening_balance")

        entity = LedgerEntity(
            id=uuid4(),
            kind=kind_value,
            name=name.strip(),
            opening_balance=opening,
            current_balance=ZERO,
            is_active=True,
            is_quarantined=False,
            created_by_id=actor_id,
        )
        self.session.add(entity)
        self._flush(entity.id)

        if opening != ZERO:
            self._insert(
                entity,
                opening_date or self._clock.today(),
                opening if opening > ZERO else ZERO,
                -opening if opening < ZERO else ZERO,
                LedgerTransactionKind.OPENING.value,
                actor_id=actor_id,
                description="Opening balance",
            )

        logger.info(
            "ledger_entity_registered",
            extra={
                "entity_id": str(entity.id),
                "kind": kind_value,
                "opening_balance": opening,
            },
        )
        return entity_to_balance(entity)

    def deactivate_entity(self, entity_id: UUID, *, actor_id: str) -> EntityBalance:
        entity = self._get_entity_for_update(entity_id, allow_inactive=True)
        if entity.is_active:
            entity.is_active = False
            entity.updated_by_id = actor_id
            self._flush(entity_id)
            logger.info("ledger_entity_deactivated", extra={"entity_id": str(entity_id)})
        return entity_to_balance(entity)

    def _get_entity_for_update(
        self, entity_id: UUID, *, allow_inactive: bool = False
    ) -> LedgerEntity:
        entity = self.session.execute(
            select(LedgerEntity)
            .where(LedgerEntity.id == entity_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if entity is None:
            raise EntityNotFoundError(str(entity_id))
        if entity.is_quarantined:
            raise RecordQuarantinedError(
                self.resource_type, str(entity_id), entity.quarantine_reason
            )
        if not entity.is_active and not allow_inactive:
            raise EntityInactiveError(str(entity_id))
        return entity

    def _get_transaction(self, transaction_id: UUID) -> LedgerTransaction:
        txn = self.session.get(LedgerTransaction, transaction_id)
        if txn is None:
            raise LedgerTransactionNotFoundError(str(transaction_id))
        return txn

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _insert(
        self,
        entity: LedgerEntity,
        transaction_date: date,
        debit: Decimal,
        credit: Decimal,
        kind: str,
        *,
        actor_id: str,
        description: str | None = None,
        reference: str | None = None,
        related_order_id: str | None = None,
        related_purchase_id: str | None = None,
        payment_method: str | None = None,
    ) -> LedgerMutationResult:
        self._days.ensure_open(transaction_date, DayLockScope.LEDGER)
        txn = LedgerTransaction(
            id=uuid4(),
            entity_id=entity.id,
            transaction_date=transaction_date,
            recorded_at=self._clock.now(),
            sequence=self._sequences.next_value(SequenceService.LEDGER_TRANSACTION),
            debit=debit,
            credit=credit,
            running_balance=ZERO,
            kind=kind,
            description=description,
            reference=reference,
            related_order_id=related_order_id,
            related_purchase_id=related_purchase_id,
            payment_method=payment_method,
            created_by_id=actor_id,
        )
        self.session.add(txn)
        self._flush(entity.id)

        current, rewritten = self._recalculator.recalculate_from(
            entity.id, (txn.transaction_date, txn.sequence)
        )
        logger.info(
            "ledger_transaction_appended",
            extra={
                "entity_id": str(entity.id),
                "transaction_id": str(txn.id),
                "transaction_date": str(transaction_date),
                "debit": debit,
                "credit": credit,
                "sequence": txn.sequence,
                "current_balance": current,
            },
        )
        return LedgerMutationResult(
            transaction_id=txn.id,
            entity_id=entity.id,
            current_balance=current,
            rewritten_count=rewritten,
        )

    def append(
        self,
        entity_id: UUID,
        transaction_date: date,
        debit,
        credit,
        kind: str | LedgerTransactionKind,
        *,
        actor_id: str,
        description: str | None = None,
        reference: str | None = None,
        related_order_id: str | None = None,
        related_purchase_id: str | None = None,
        payment_method: str | None = None,
    ) -> LedgerMutationResult:
        """
        Insert a transaction at its (date, sequence) position and replay
        every later transaction of the entity.
        """
        debit_amount, credit_amount = _validate_amounts(debit, credit)
        kind_value = _validate_kind(kind)
        entity = self._get_entity_for_update(entity_id)
        return self._insert(
            entity,
            transaction_date,
            debit_amount,
            credit_amount,
            kind_value,
            actor_id=actor_id,
            description=description,
            reference=reference,
            related_order_id=related_order_id,
            related_purchase_id=related_purchase_id,
            payment_method=payment_method,
        )

    def update(
        self,
        transaction_id: UUID,
        *,
        actor_id: str,
        debit=None,
        credit=None,
        transaction_date: date | None = None,
        description: str | None = None,
        reference: str | None = None,
        payment_method: str | None = None,
    ) -> LedgerMutationResult:
        """
        Edit amounts, date or descriptive fields of a transaction.

        Both the old and the new date must be open.  Replay starts from the
        earlier of the old and new positions.
        """
        txn = self._get_transaction(transaction_id)
        entity = self._get_entity_for_update(txn.entity_id)

        new_debit, new_credit = _validate_amounts(
            txn.debit if debit is None else debit,
            txn.credit if credit is None else credit,
        )
        old_date = txn.transaction_date
        new_date = transaction_date or old_date
        self._days.ensure_open(old_date, DayLockScope.LEDGER)
        if new_date != old_date:
            self._days.ensure_open(new_date, DayLockScope.LEDGER)

        txn.debit = new_debit
        txn.credit = new_credit
        txn.transaction_date = new_date
        if description is not None:
            txn.description = description
        if reference is not None:
            txn.reference = reference
        if payment_method is not None:
            txn.payment_method = payment_method
        txn.updated_by_id = actor_id
        self._flush(entity.id)

        # Sequence is unchanged, so the earlier of the two keys bounds the replay
        position = (min(old_date, new_date), txn.sequence)
        current, rewritten = self._recalculator.recalculate_from(entity.id, position)

        logger.info(
            "ledger_transaction_updated",
            extra={
                "entity_id": str(entity.id),
                "transaction_id": str(transaction_id),
                "old_date": str(old_date),
                "new_date": str(new_date),
                "debit": new_debit,
                "credit": new_credit,
                "current_balance": current,
            },
        )
        return LedgerMutationResult(
            transaction_id=txn.id,
            entity_id=entity.id,
            current_balance=current,
            rewritten_count=rewritten,
        )

    def delete(self, transaction_id: UUID, *, actor_id: str) -> LedgerMutationResult:
        """Remove a transaction and replay everything after its position."""
        txn = self._get_transaction(transaction_id)
        entity = self._get_entity_for_update(txn.entity_id)
        self._days.ensure_open(txn.transaction_date, DayLockScope.LEDGER)

        position = (txn.transaction_date, txn.sequence)
        self.session.delete(txn)
        self._flush(entity.id)

        current, rewritten = self._recalculator.recalculate_from(entity.id, position)
        logger.info(
            "ledger_transaction_deleted",
            extra={
                "entity_id": str(entity.id),
                "transaction_id": str(transaction_id),
                "transaction_date": str(position[0]),
                "deleted_by": actor_id,
                "current_balance": current,
            },
        )
        return LedgerMutationResult(
            transaction_id=transaction_id,
            entity_id=entity.id,
            current_balance=current,
            rewritten_count=rewritten,
        )

    def recalculate(self, entity_id: UUID) -> Decimal:
        """Full replay; returns the recomputed current balance."""
        self._get_entity_for_update(entity_id, allow_inactive=True)
        current, _ = self._recalculator.recalculate(entity_id)
        return current
