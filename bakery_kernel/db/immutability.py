"""
ORM-Level Immutability Enforcement for the stock transaction log.

===============================================================================
WHY THIS EXISTS
===============================================================================

quantity_on_hand and average_cost are projections of the stock transaction
log.  If a log row could be edited or removed, the projection could no longer
be re-derived and the consistency checker would have nothing trustworthy to
compare against.  Corrections are therefore recorded as new Adjustment rows.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database:

    session.flush()
         |
         v
    [before_update event] --> _check_stock_transaction_immutability()
         |                                      |
         v                                      v
    [before_delete event] --> _check_stock_transaction_delete()
         |                                      |
         v                                      v
    SQL sent to database         ImmutabilityViolationError

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable          | Why
------------------|-------------------------|--------------------------------
StockTransaction  | ALWAYS (from creation)  | Source of truth for stock state

Ledger transactions are deliberately NOT protected: edit and delete are
supported operations followed by a running-balance replay.
"""

from sqlalchemy import event

from bakery_kernel.exceptions import ImmutabilityViolationError
from bakery_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_stock_transaction_immutability(mapper, connection, target):
    """Prevent any updates to StockTransaction records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockTransaction",
            "entity_id": str(target.id),
            "db_operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason="Stock transactions are immutable; record an adjustment instead",
    )


def _check_stock_transaction_delete(mapper, connection, target):
    """Prevent deletion of StockTransaction records."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": "StockTransaction",
            "entity_id": str(target.id),
            "db_operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="StockTransaction",
        entity_id=str(target.id),
        reason="Stock transactions cannot be deleted",
    )


def register_immutability_listeners():
    """
    Register immutability enforcement event listeners (idempotent).

    Call this after models are imported but before any database
    operations begin.  create_tables() does it for you.
    """
    from bakery_kernel.models.stock import StockTransaction

    if not event.contains(
        StockTransaction, "before_update", _check_stock_transaction_immutability
    ):
        event.listen(
            StockTransaction, "before_update", _check_stock_transaction_immutability
        )
    if not event.contains(
        StockTransaction, "before_delete", _check_stock_transaction_delete
    ):
        event.listen(
            StockTransaction, "before_delete", _check_stock_transaction_delete
        )


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that deliberately corrupt the log to
    exercise the consistency checker.
    """
    from bakery_kernel.models.stock import StockTransaction

    _safe_remove_listener(
        StockTransaction, "before_update", _check_stock_transaction_immutability
    )
    _safe_remove_listener(
        StockTransaction, "before_delete", _check_stock_transaction_delete
    )
