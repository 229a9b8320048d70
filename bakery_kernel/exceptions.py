"""
Typed Exception Hierarchy for the Bakery Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (HTTP handlers, batch jobs, tests) must react to failures precisely:
show the shortage to the baker, ask the accountant to reopen a day, retry a
lock timeout. Parsing message strings for that is fragile, so:

  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example:
    try:
        orchestrator.record_consumption(item_id, Decimal("20"))
    except InsufficientStockError as e:
        api_response(code=e.code, required=str(e.required),
                     available=str(e.available))

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    BakeryKernelError (base)
    |
    +-- ValidationError
    |   +-- ItemInactiveError
    |   +-- EntityInactiveError
    |
    +-- NotFoundError
    |   +-- ItemNotFoundError
    |   +-- EntityNotFoundError
    |   +-- LedgerTransactionNotFoundError
    |   +-- DayLockNotFoundError
    |
    +-- InsufficientStockError
    |
    +-- DayLockError
    |   +-- DayLockedError
    |   +-- DayAlreadyClosedError
    |   +-- DayNotClosedError
    |   +-- DayCloseOrderError
    |
    +-- ConcurrencyConflictError        (the ONLY retryable category)
    |
    +-- ConsistencyError                (critical, never retried)
    |   +-- RecordQuarantinedError
    |
    +-- ImmutabilityViolationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category      | Code                         | When Raised
--------------|------------------------------|----------------------------------
Validation    | VALIDATION_ERROR             | Non-positive quantity/cost, bad field
              | ITEM_INACTIVE                | Mutation on a deactivated item
              | ENTITY_INACTIVE              | Mutation on a deactivated entity
--------------|------------------------------|----------------------------------
Not found     | ITEM_NOT_FOUND               | Unknown stock item
              | ENTITY_NOT_FOUND             | Unknown customer/party
              | LEDGER_TRANSACTION_NOT_FOUND | Unknown ledger transaction
              | DAY_LOCK_NOT_FOUND           | Reopen of a day never closed
--------------|------------------------------|----------------------------------
Stock         | INSUFFICIENT_STOCK           | Out/adjustment exceeds on-hand
--------------|------------------------------|----------------------------------
Day close     | DAY_LOCKED                   | Mutation dated inside closed day
              | DAY_ALREADY_CLOSED           | Close of a closed day
              | DAY_NOT_CLOSED               | Reopen of an open day
              | DAY_CLOSE_ORDER              | Close while an earlier day is open
--------------|------------------------------|----------------------------------
Concurrency   | CONCURRENCY_CONFLICT         | Lock timeout / stale version
--------------|------------------------------|----------------------------------
Consistency   | CONSISTENCY_ERROR            | Derived aggregate disagrees with log
              | RECORD_QUARANTINED           | Write to a quarantined record
--------------|------------------------------|----------------------------------
Immutability  | IMMUTABILITY_VIOLATION       | Edit/delete of a stock transaction

===============================================================================
RETRY POLICY
===============================================================================

`retryable` is a class attribute.  Only ConcurrencyConflictError sets it;
the orchestrator retries those a bounded number of times.  Everything else
is terminal for the request and must be shown to the caller as-is.
"""

from decimal import Decimal


class BakeryKernelError(Exception):
    """
    Base exception for all bakery kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BAKERY_KERNEL_ERROR"
    retryable: bool = False


# Validation


class ValidationError(BakeryKernelError):
    """Malformed input: non-positive quantity or cost, missing field."""

    code: str = "VALIDATION_ERROR"

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class ItemInactiveError(ValidationError):
    """Stock item has been soft-deactivated."""

    code: str = "ITEM_INACTIVE"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Stock item {item_id} is inactive", field="item_id")


class EntityInactiveError(ValidationError):
    """Ledger entity has been soft-deactivated."""

    code: str = "ENTITY_INACTIVE"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Ledger entity {entity_id} is inactive", field="entity_id")


# Lookup


class NotFoundError(BakeryKernelError):
    """Base exception for unknown identifiers."""

    code: str = "NOT_FOUND"


class ItemNotFoundError(NotFoundError):
    """Stock item with given ID was not found."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Stock item not found: {item_id}")


class EntityNotFoundError(NotFoundError):
    """Customer or party with given ID was not found."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"Ledger entity not found: {entity_id}")


class LedgerTransactionNotFoundError(NotFoundError):
    """Ledger transaction with given ID was not found."""

    code: str = "LEDGER_TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = transaction_id
        super().__init__(f"Ledger transaction not found: {transaction_id}")


class DayLockNotFoundError(NotFoundError):
    """No day lock row exists for the date and scope."""

    code: str = "DAY_LOCK_NOT_FOUND"

    def __init__(self, lock_date: str, scope: str):
        self.lock_date = lock_date
        self.scope = scope
        super().__init__(f"No {scope} day lock recorded for {lock_date}")


# Stock


class InsufficientStockError(BakeryKernelError):
    """
    Requested quantity exceeds quantity on hand.

    For multi-ingredient production the first shortage populates
    item_id/required/available and `shortages` lists every one of them as
    (item_id, required, available) tuples.
    """

    code: str = "INSUFFICIENT_STOCK"

    def __init__(
        self,
        item_id: str,
        required: Decimal,
        available: Decimal,
        shortages: tuple[tuple[str, Decimal, Decimal], ...] | None = None,
    ):
        self.item_id = item_id
        self.required = required
        self.available = available
        self.shortages = shortages or ((item_id, required, available),)
        super().__init__(
            f"Insufficient stock for item {item_id}: "
            f"required {required}, available {available}"
        )


# Day close


class DayLockError(BakeryKernelError):
    """Base exception for day-close errors."""

    code: str = "DAY_LOCK_ERROR"


class DayLockedError(DayLockError):
    """Mutation attempted against a closed day."""

    code: str = "DAY_LOCKED"

    def __init__(self, lock_date: str, scope: str):
        self.lock_date = lock_date
        self.scope = scope
        super().__init__(f"The {scope} day {lock_date} is closed")


class DayAlreadyClosedError(DayLockError):
    """Day is already closed."""

    code: str = "DAY_ALREADY_CLOSED"

    def __init__(self, lock_date: str, scope: str):
        self.lock_date = lock_date
        self.scope = scope
        super().__init__(f"The {scope} day {lock_date} is already closed")


class DayNotClosedError(DayLockError):
    """Reopen attempted on a day that is open."""

    code: str = "DAY_NOT_CLOSED"

    def __init__(self, lock_date: str, scope: str):
        self.lock_date = lock_date
        self.scope = scope
        super().__init__(f"The {scope} day {lock_date} is not closed")


class DayCloseOrderError(DayLockError):
    """An earlier day of the same scope is still open (reopened)."""

    code: str = "DAY_CLOSE_ORDER"

    def __init__(self, lock_date: str, scope: str, open_date: str):
        self.lock_date = lock_date
        self.scope = scope
        self.open_date = open_date
        super().__init__(
            f"Cannot close {scope} day {lock_date}: "
            f"earlier day {open_date} is open"
        )


# Concurrency


class ConcurrencyConflictError(BakeryKernelError):
    """Lock acquisition timed out or a versioned write went stale."""

    code: str = "CONCURRENCY_CONFLICT"
    retryable: bool = True

    def __init__(self, resource_type: str, resource_id: str, reason: str = "lock timeout"):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(
            f"Concurrency conflict on {resource_type} {resource_id}: {reason}"
        )


# Consistency


class ConsistencyError(BakeryKernelError):
    """
    A derived aggregate disagrees with the log that should produce it.

    Indicates log corruption.  Never retried; the record is quarantined.
    """

    code: str = "CONSISTENCY_ERROR"

    def __init__(self, resource_type: str, resource_id: str, detail: str):
        self.resource_type = resource_type
        self.resource_id = resource_id
        self.detail = detail
        super().__init__(
            f"Consistency violation on {resource_type} {resource_id}: {detail}"
        )


class RecordQuarantinedError(ConsistencyError):
    """Write blocked because the record failed a consistency check."""

    code: str = "RECORD_QUARANTINED"

    def __init__(self, resource_type: str, resource_id: str, detail: str | None = None):
        super().__init__(
            resource_type,
            resource_id,
            detail or "record is quarantined until resolved out of band",
        )


# Immutability


class ImmutabilityViolationError(BakeryKernelError):
    """Attempted to modify or delete an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )
