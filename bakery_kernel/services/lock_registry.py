"""
RowLockRegistry -- in-process per-record serialization.

Responsibility:
    Gives every (resource_type, resource_id) pair its own re-entrant lock so
    that mutations of one stock item, one ledger entity or one business day
    run strictly one after another inside this process, while different
    records proceed in parallel.

Architecture position:
    Kernel > Services.  Used by the OperationsOrchestrator, which takes
    locks BEFORE opening the database transaction and releases them AFTER
    commit or rollback.  Database row locks and optimistic versions remain
    the guard across processes.

Invariants enforced:
    - Multi-key acquisition is in sorted key order, so two callers holding
      overlapping sets cannot deadlock.
    - Every acquisition is bounded by a timeout; a caller never waits
      forever.
    - A key stays in the registry only while some caller holds or waits
      for it, so the table is bounded by the number of in-flight
      operations rather than by every record ever touched.

Failure modes:
    - ConcurrencyConflictError(resource_type, resource_id) on timeout.  All
      locks already taken by the failed call are released first.
"""

import threading
import time
from contextlib import contextmanager
from typing import Iterable, Iterator

from bakery_kernel.exceptions import ConcurrencyConflictError
from bakery_kernel.logging_config import get_logger

logger = get_logger("services.lock_registry")

LockKey = tuple[str, str]


def item_key(item_id: object) -> LockKey:
    return ("stock_item", str(item_id))


def entity_key(entity_id: object) -> LockKey:
    return ("ledger_entity", str(entity_id))


def day_key(scope: str, lock_date: object) -> LockKey:
    return ("day_lock", f"{scope}:{lock_date}")


class _Slot:
    """A lock plus the number of callers holding or waiting for it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.RLock()
        self.users = 0


class RowLockRegistry:
    """Registry of named re-entrant locks with bounded acquisition."""

    def __init__(self, timeout_seconds: float = 3.0):
        self._timeout = timeout_seconds
        self._guard = threading.Lock()
        self._slots: dict[LockKey, _Slot] = {}

    def __len__(self) -> int:
        """Number of keys currently held or waited on."""
        with self._guard:
            return len(self._slots)

    def _checkout(self, key: LockKey) -> _Slot:
        with self._guard:
            slot = self._slots.get(key)
            if slot is None:
                slot = self._slots[key] = _Slot()
            slot.users += 1
            return slot

    def _checkin(self, key: LockKey, slot: _Slot) -> None:
        # The last user out evicts the slot
        with self._guard:
            slot.users -= 1
            if slot.users == 0:
                del self._slots[key]

    @contextmanager
    def hold(
        self,
        keys: Iterable[LockKey],
        timeout_seconds: float | None = None,
    ) -> Iterator[tuple[LockKey, ...]]:
        """
        Acquire every key in sorted order and hold them for the block.

        Yields the ordered tuple of keys held.
        """
        timeout = self._timeout if timeout_seconds is None else timeout_seconds
        ordered = tuple(sorted(set(keys)))
        checked_out: list[tuple[LockKey, _Slot]] = []
        acquired: list[threading.RLock] = []
        try:
            for key in ordered:
                slot = self._checkout(key)
                checked_out.append((key, slot))
                started = time.monotonic()
                if not slot.lock.acquire(timeout=timeout):
                    logger.warning(
                        "lock_timeout",
                        extra={
                            "resource_type": key[0],
                            "resource_id": key[1],
                            "timeout_seconds": timeout,
                        },
                    )
                    raise ConcurrencyConflictError(key[0], key[1])
                acquired.append(slot.lock)
                logger.debug(
                    "lock_acquired",
                    extra={
                        "resource_type": key[0],
                        "resource_id": key[1],
                        "wait_ms": round((time.monotonic() - started) * 1000, 2),
                    },
                )
            yield ordered
        finally:
            for lock in reversed(acquired):
                lock.release()
            for key, slot in reversed(checked_out):
                self._checkin(key, slot)
