"""
RunningBalanceRecalculator -- replay of per-entity running balances.

Responsibility:
    Re-derives ``running_balance`` on ledger transactions and the cached
    ``current_balance`` on the entity by folding debit - credit in
    (transaction_date, sequence) order.

Architecture position:
    Kernel > Services.  Invoked by LedgerService after every append,
    update and delete (incremental form), and by the orchestrator and
    consistency tooling (full form).

Invariants enforced:
    - running_balance_i = running_balance_{i-1} + debit_i - credit_i,
      starting from zero.
    - current_balance = running_balance of the last transaction, zero
      when the ledger is empty.
    - Only rows whose stored value differs are rewritten.
    - Running balances are derived data; replay may rewrite them inside a
      closed day because no transaction is created, edited or deleted.

Failure modes:
    - ConsistencyError if the stored balances still disagree with the fold
      after a full recalculation flush.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from bakery_kernel.db.types import ZERO
from bakery_kernel.domain.clock import Clock
from bakery_kernel.domain.running_balance import (
    LedgerLine,
    first_divergence,
    fold_running_balances,
)
from bakery_kernel.exceptions import ConsistencyError, EntityNotFoundError
from bakery_kernel.invariants import KernelInvariant
from bakery_kernel.logging_config import get_logger
from bakery_kernel.models.ledger import LedgerEntity, LedgerTransaction
from bakery_kernel.selectors.ledger_selector import ordered_transactions_stmt
from bakery_kernel.services.base import BaseService

logger = get_logger("services.running_balance")

LedgerPosition = tuple[date, int]


class RunningBalanceRecalculator(BaseService[LedgerEntity]):
    """Full and incremental running-balance replay."""

    resource_type = "ledger_entity"

    def __init__(self, session: Session, clock: Clock | None = None):
        super().__init__(session, clock)

    def _get_entity(self, entity_id: UUID) -> LedgerEntity:
        entity = self.session.get(LedgerEntity, entity_id)
        if entity is None:
            raise EntityNotFoundError(str(entity_id))
        return entity

    def _rewrite(
        self,
        transactions: list[LedgerTransaction],
        balances: list[Decimal],
    ) -> int:
        rewritten = 0
        for txn, balance in zip(transactions, balances):
            if txn.running_balance != balance:
                txn.running_balance = balance
                rewritten += 1
        return rewritten

    def recalculate(self, entity_id: UUID) -> tuple[Decimal, int]:
        """
        Full replay from the first transaction.

        Returns:
            (current_balance, rewritten_count)

        Raises:
            ConsistencyError: if the flushed balances disagree with the fold.
        """
        entity = self._get_entity(entity_id)
        transactions = list(
            self.session.execute(
                ordered_transactions_stmt(entity_id).execution_options(
                    populate_existing=True
                )
            ).scalars()
        )
        balances = fold_running_balances(
            LedgerLine(t.debit, t.credit) for t in transactions
        )
        rewritten = self._rewrite(transactions, balances)
        current = balances[-1] if balances else ZERO
        if entity.current_balance != current:
            entity.current_balance = current
        self._flush(entity_id)

        stored = list(
            self.session.execute(
                select(LedgerTransaction.running_balance)
                .where(LedgerTransaction.entity_id == entity_id)
                .order_by(LedgerTransaction.transaction_date, LedgerTransaction.sequence)
            ).scalars()
        )
        divergence = first_divergence(stored, balances)
        if divergence is not None:
            logger.critical(
                "running_balance_verification_failed",
                extra={
                    "entity_id": str(entity_id),
                    "position": divergence,
                    "invariant": KernelInvariant.RUNNING_BALANCE.value,
                },
            )
            raise ConsistencyError(
                self.resource_type,
                str(entity_id),
                f"running balance at position {divergence} did not persist",
            )

        logger.info(
            "running_balance_recalculated",
            extra={
                "entity_id": str(entity_id),
                "transaction_count": len(transactions),
                "rewritten_count": rewritten,
                "current_balance": current,
                "mode": "full",
            },
        )
        return current, rewritten

    def recalculate_from(
        self, entity_id: UUID, position: LedgerPosition
    ) -> tuple[Decimal, int]:
        """
        Incremental replay of every transaction at or after ``position``.

        ``position`` is a (transaction_date, sequence) key.  The fold starts
        from the running balance of the last transaction strictly before
        it, so prefix rows are neither read in full nor rewritten.

        Returns:
            (current_balance, rewritten_count)
        """
        entity = self._get_entity(entity_id)
        from_date, from_sequence = position

        before = or_(
            LedgerTransaction.transaction_date < from_date,
            and_(
                LedgerTransaction.transaction_date == from_date,
                LedgerTransaction.sequence < from_sequence,
            ),
        )
        predecessor = self.session.execute(
            select(LedgerTransaction)
            .where(LedgerTransaction.entity_id == entity_id, before)
            .order_by(
                LedgerTransaction.transaction_date.desc(),
                LedgerTransaction.sequence.desc(),
            )
            .limit(1)
        ).scalar_one_or_none()
        starting_balance = predecessor.running_balance if predecessor else ZERO

        suffix = list(
            self.session.execute(
                ordered_transactions_stmt(entity_id)
                .where(~before)
                .execution_options(populate_existing=True)
            ).scalars()
        )
        balances = fold_running_balances(
            (LedgerLine(t.debit, t.credit) for t in suffix), starting_balance
        )
        rewritten = self._rewrite(suffix, balances)
        current = balances[-1] if balances else starting_balance
        if entity.current_balance != current:
            entity.current_balance = current
        self._flush(entity_id)

        logger.info(
            "running_balance_recalculated",
            extra={
                "entity_id": str(entity_id),
                "from_date": str(from_date),
                "from_sequence": from_sequence,
                "transaction_count": len(suffix),
                "rewritten_count": rewritten,
                "current_balance": current,
                "mode": "incremental",
            },
        )
        return current, rewritten
