"""
Module: bakery_kernel.selectors.ledger_selector
Responsibility: Read queries over ledger entities and their transactions,
    in the (transaction_date, sequence) order the running balance is
    defined over.
Architecture position: Kernel > Selectors.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from bakery_kernel.domain.dtos import EntityBalance, LedgerTransactionRecord
from bakery_kernel.exceptions import EntityNotFoundError
from bakery_kernel.models.ledger import LedgerEntity, LedgerTransaction
from bakery_kernel.selectors.base import BaseSelector


def entity_to_balance(entity: LedgerEntity) -> EntityBalance:
    return EntityBalance(
        entity_id=entity.id,
        kind=entity.kind,
        name=entity.name,
        opening_balance=entity.opening_balance,
        current_balance=entity.current_balance,
        is_active=entity.is_active,
        is_quarantined=entity.is_quarantined,
        quarantine_reason=entity.quarantine_reason,
        version=entity.version,
    )


def ledger_transaction_to_record(txn: LedgerTransaction) -> LedgerTransactionRecord:
    return LedgerTransactionRecord(
        transaction_id=txn.id,
        entity_id=txn.entity_id,
        transaction_date=txn.transaction_date,
        recorded_at=txn.recorded_at,
        sequence=txn.sequence,
        debit=txn.debit,
        credit=txn.credit,
        running_balance=txn.running_balance,
        kind=txn.kind,
        description=txn.description,
        reference=txn.reference,
        related_order_id=txn.related_order_id,
        related_purchase_id=txn.related_purchase_id,
        payment_method=txn.payment_method,
        actor_id=txn.actor_id,
    )


def ordered_transactions_stmt(entity_id: UUID):
    """The canonical replay order of an entity's ledger."""
    return (
        select(LedgerTransaction)
        .where(LedgerTransaction.entity_id == entity_id)
        .order_by(LedgerTransaction.transaction_date, LedgerTransaction.sequence)
    )


class LedgerSelector(BaseSelector[LedgerEntity]):
    """Read-only ledger queries returning frozen DTOs."""

    def get_entity_balance(self, entity_id: UUID) -> EntityBalance:
        entity = self.session.get(LedgerEntity, entity_id)
        if entity is None:
            raise EntityNotFoundError(str(entity_id))
        return entity_to_balance(entity)

    def list_entities(self, kind: str | None = None) -> list[EntityBalance]:
        stmt = select(LedgerEntity).order_by(LedgerEntity.name)
        if kind is not None:
            stmt = stmt.where(LedgerEntity.kind == kind)
        return [entity_to_balance(e) for e in self.session.execute(stmt).scalars()]

    def get_ledger_history(
        self,
        entity_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[LedgerTransactionRecord]:
        if self.session.get(LedgerEntity, entity_id) is None:
            raise EntityNotFoundError(str(entity_id))
        stmt = ordered_transactions_stmt(entity_id)
        if start_date is not None:
            stmt = stmt.where(LedgerTransaction.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerTransaction.transaction_date <= end_date)
        return [
            ledger_transaction_to_record(t) for t in self.session.execute(stmt).scalars()
        ]
