"""
Unit tests for RowLockRegistry and ConflictRetryService.
"""

import threading
from datetime import date
from uuid import UUID

import pytest

from bakery_kernel.exceptions import (
    ConcurrencyConflictError,
    InsufficientStockError,
    ValidationError,
)
from bakery_kernel.services.lock_registry import (
    RowLockRegistry,
    day_key,
    entity_key,
    item_key,
)
from bakery_kernel.services.retry_service import MAX_RETRIES, ConflictRetryService


class TestLockKeys:
    def test_keys_are_typed(self):
        item_id = UUID(int=1)
        assert item_key(item_id) == ("stock_item", str(item_id))
        assert entity_key(item_id)[0] == "ledger_entity"
        assert day_key("stock", date(2024, 3, 15))[1].endswith("2024-03-15")

    def test_same_date_different_scope_differs(self):
        assert day_key("stock", date(2024, 1, 1)) != day_key("ledger", date(2024, 1, 1))


class TestRowLockRegistry:
    def test_keys_are_sorted_and_deduplicated(self):
        registry = RowLockRegistry()
        b, a = item_key(UUID(int=2)), item_key(UUID(int=1))
        with registry.hold([b, a, b]) as held:
            assert held == (a, b)

    def test_reentrant_in_same_thread(self):
        registry = RowLockRegistry()
        key = item_key(UUID(int=1))
        with registry.hold([key]):
            with registry.hold([key]):
                pass

    def test_timeout_raises_conflict(self):
        registry = RowLockRegistry(timeout_seconds=0.05)
        key = item_key(UUID(int=1))
        acquired = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold([key]):
                acquired.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert acquired.wait(5)
            with pytest.raises(ConcurrencyConflictError) as exc_info:
                with registry.hold([key]):
                    pass
            assert exc_info.value.retryable is True
        finally:
            release.set()
            thread.join()
        assert len(registry) == 0

    def test_released_after_exception(self):
        registry = RowLockRegistry(timeout_seconds=0.05)
        key = item_key(UUID(int=1))
        with pytest.raises(RuntimeError):
            with registry.hold([key]):
                raise RuntimeError("boom")

        result = []

        def other_thread():
            with registry.hold([key]) as held:
                result.append(held)

        thread = threading.Thread(target=other_thread)
        thread.start()
        thread.join()
        assert result == [(key,)]

    def test_idle_keys_are_evicted(self):
        registry = RowLockRegistry()
        keys = [item_key(UUID(int=n)) for n in range(50)] + [day_key("stock", date(2024, 3, 15))]
        with registry.hold(keys):
            assert len(registry) == len(keys)
        assert len(registry) == 0

    def test_nested_hold_keeps_key_until_outer_exit(self):
        registry = RowLockRegistry()
        key = item_key(UUID(int=1))
        with registry.hold([key]):
            with registry.hold([key]):
                pass
            assert len(registry) == 1
        assert len(registry) == 0


class TestConflictRetryService:
    def test_returns_first_success(self):
        service = ConflictRetryService(sleep=lambda s: None)
        assert service.run("op", lambda: 42) == 42

    def test_retries_conflicts_then_succeeds(self):
        attempts = []

        def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise ConcurrencyConflictError("stock_item", "x")
            return "ok"

        service = ConflictRetryService(max_retries=3, sleep=lambda s: None)
        assert service.run("op", flaky) == "ok"
        assert len(attempts) == 3

    def test_exhaustion_reraises_conflict(self):
        attempts = []

        def always_conflict():
            attempts.append(1)
            raise ConcurrencyConflictError("stock_item", "x")

        service = ConflictRetryService(max_retries=2, sleep=lambda s: None)
        with pytest.raises(ConcurrencyConflictError):
            service.run("op", always_conflict)
        assert len(attempts) == 3

    @pytest.mark.parametrize(
        "error",
        [
            ValidationError("bad"),
            InsufficientStockError("x", 2, 1),
        ],
    )
    def test_non_retryable_errors_are_not_retried(self, error):
        attempts = []

        def fail():
            attempts.append(1)
            raise error

        service = ConflictRetryService(max_retries=5, sleep=lambda s: None)
        with pytest.raises(type(error)):
            service.run("op", fail)
        assert len(attempts) == 1

    def test_backoff_is_linear(self):
        delays = []

        def always_conflict():
            raise ConcurrencyConflictError("stock_item", "x")

        service = ConflictRetryService(
            max_retries=3, backoff_seconds=0.1, sleep=delays.append
        )
        with pytest.raises(ConcurrencyConflictError):
            service.run("op", always_conflict)
        assert delays == pytest.approx([0.1, 0.2, 0.3])

    def test_max_retries_is_capped(self):
        assert ConflictRetryService(max_retries=1000).max_retries == MAX_RETRIES
