"""Domain models for the bakery kernel."""

from bakery_kernel.models.day_lock import DayLock, DayLockScope, DayLockState
from bakery_kernel.models.ledger import (
    LedgerEntity,
    LedgerEntityKind,
    LedgerTransaction,
    LedgerTransactionKind,
)
from bakery_kernel.models.sequence import SequenceCounter
from bakery_kernel.models.stock import (
    StockItem,
    StockTransaction,
    StockTransactionKind,
)

__all__ = [
    "DayLock",
    "DayLockScope",
    "DayLockState",
    "LedgerEntity",
    "LedgerEntityKind",
    "LedgerTransaction",
    "LedgerTransactionKind",
    "SequenceCounter",
    "StockItem",
    "StockTransaction",
    "StockTransactionKind",
]
