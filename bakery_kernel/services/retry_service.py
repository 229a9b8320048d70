"""
ConflictRetryService -- bounded retry of concurrency conflicts.

Responsibility:
    Re-runs a whole unit of work (locks, transaction, services) when it
    fails with ConcurrencyConflictError, the only retryable error category.

Invariants enforced:
    MAX_RETRIES -- Safety limit (10) prevents infinite retry loops no matter
    what the configuration says.
    Only errors whose class sets ``retryable = True`` are retried.
    Validation, stock, day-lock and consistency errors surface on the first
    attempt.

Failure modes:
    - The last ConcurrencyConflictError is re-raised once attempts run out.
"""

import time
from typing import Callable, TypeVar

from bakery_kernel.exceptions import BakeryKernelError
from bakery_kernel.logging_config import get_logger

logger = get_logger("services.retry")

T = TypeVar("T")

MAX_RETRIES = 10


class ConflictRetryService:
    """
    Runs a callable, retrying retryable kernel errors with linear backoff.

    Usage:
        retry = ConflictRetryService(max_retries=3, backoff_seconds=0.05)
        result = retry.run("record_purchase", lambda: do_work())
    """

    def __init__(
        self,
        max_retries: int = 3,
        backoff_seconds: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._max_retries = min(max_retries, MAX_RETRIES)
        self._backoff = backoff_seconds
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self._max_retries

    def run(self, operation: str, fn: Callable[[], T]) -> T:
        attempt = 0
        while True:
            try:
                return fn()
            except BakeryKernelError as exc:
                if not exc.retryable or attempt >= self._max_retries:
                    if exc.retryable:
                        logger.warning(
                            "retry_exhausted",
                            extra={
                                "operation_name": operation,
                                "attempts": attempt + 1,
                                "error_code": exc.code,
                            },
                        )
                    raise
                attempt += 1
                delay = self._backoff * attempt
                logger.warning(
                    "retry_initiated",
                    extra={
                        "operation_name": operation,
                        "attempt": attempt,
                        "max_retries": self._max_retries,
                        "delay_seconds": delay,
                        "error_code": exc.code,
                    },
                )
                if delay > 0:
                    self._sleep(delay)
