"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every write service.  Services receive a SQLAlchemy ``Session`` and use
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back themselves.  The OperationsOrchestrator
    (or a test harness) owns commit/rollback, which is what lets an item
    update and its log entry land atomically.

Failure modes:
    - StaleDataError raised by a versioned flush is translated into
      ConcurrencyConflictError by ``_flush``.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from bakery_kernel.db.base import Base
from bakery_kernel.domain.clock import Clock, SystemClock
from bakery_kernel.exceptions import ConcurrencyConflictError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide read-model queries; those live in selectors/.
    """

    resource_type: str = "record"

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()

    def _flush(self, resource_id: object = None) -> None:
        """Flush pending changes, mapping a stale versioned write to a conflict."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrencyConflictError(
                self.resource_type, str(resource_id), reason="stale version"
            ) from exc
