"""
Concurrency tests through OperationsOrchestrator.

Threads share one orchestrator (and so one lock registry) and each runs its
own transactions.  Barriers line the threads up so the calls really
overlap.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace
from datetime import date
from decimal import Decimal
from threading import Barrier, Event as ThreadEvent

import pytest

from bakery_kernel.domain.dtos import ProductionResult
from bakery_kernel.domain.recipe import IngredientRequirement
from bakery_kernel.domain.running_balance import LedgerLine, fold_running_balances
from bakery_kernel.exceptions import ConcurrencyConflictError, InsufficientStockError
from bakery_kernel.services.lock_registry import RowLockRegistry, item_key
from bakery_kernel.services.orchestrator import OperationsOrchestrator
from tests.conftest import TEST_ACTOR_ID

pytestmark = [pytest.mark.slow_locks]

THREADS = 8


def run_together(count: int, fn):
    """Run fn(index) on ``count`` threads released by one barrier."""
    barrier = Barrier(count)

    def worker(index):
        barrier.wait(timeout=10)
        try:
            return fn(index)
        except Exception as exc:
            return exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(worker, range(count)))


class TestSameItemConcurrency:
    def test_parallel_purchases_all_land(self, orchestrator):
        item = orchestrator.register_item("FLOUR", "Flour", "kg", actor_id=TEST_ACTOR_ID)
        results = run_together(
            THREADS,
            lambda i: orchestrator.record_purchase(item.item_id, "1", "2", actor_id=f"t{i}"),
        )
        assert not [r for r in results if isinstance(r, Exception)]
        state = orchestrator.get_item_state(item.item_id)
        assert state.quantity_on_hand == Decimal(THREADS)
        assert state.average_cost == Decimal("2")
        orchestrator.verify_item(item.item_id)

    def test_no_oversell(self, orchestrator):
        item = orchestrator.register_item(
            "BUTTER", "Butter", "kg", actor_id=TEST_ACTOR_ID,
            opening_quantity="5", opening_cost="8",
        )
        results = run_together(
            THREADS,
            lambda i: orchestrator.record_consumption(item.item_id, "1", actor_id=f"t{i}"),
        )
        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 5
        assert all(isinstance(f, InsufficientStockError) for f in failures)
        assert orchestrator.get_item_state(item.item_id).quantity_on_hand == Decimal("0")
        orchestrator.verify_item(item.item_id)

    def test_mixed_purchases_and_consumption_replay(self, orchestrator):
        item = orchestrator.register_item(
            "SUGAR", "Sugar", "kg", actor_id=TEST_ACTOR_ID,
            opening_quantity="20", opening_cost="1",
        )

        def work(i):
            if i % 2:
                return orchestrator.record_purchase(item.item_id, "2", str(i + 1), actor_id=f"t{i}")
            return orchestrator.record_consumption(item.item_id, "3", actor_id=f"t{i}")

        results = run_together(THREADS, work)
        assert not [r for r in results if isinstance(r, Exception)]
        # Whatever the interleaving, the stored state is the replay of the log
        orchestrator.verify_item(item.item_id)
        history = orchestrator.get_transaction_history(item.item_id)
        assert [h.sequence for h in history] == sorted(h.sequence for h in history)

    def test_production_races_consumption_of_shared_ingredient(self, orchestrator):
        flour = orchestrator.register_item(
            "FLOUR", "Flour", "kg", actor_id=TEST_ACTOR_ID,
            opening_quantity="10", opening_cost="1",
        )
        butter = orchestrator.register_item(
            "BUTTER", "Butter", "kg", actor_id=TEST_ACTOR_ID,
            opening_quantity="5", opening_cost="8",
        )
        recipe = [
            IngredientRequirement(flour.item_id, Decimal("1")),
            IngredientRequirement(butter.item_id, Decimal("1")),
        ]

        def work(i):
            if i % 2:
                return orchestrator.record_production("loaf", "1", recipe, actor_id=f"t{i}")
            return orchestrator.record_consumption(butter.item_id, "1", actor_id=f"t{i}")

        results = run_together(THREADS, work)
        failures = [r for r in results if isinstance(r, Exception)]
        produced = [r for r in results if isinstance(r, ProductionResult)]
        assert all(isinstance(f, InsufficientStockError) for f in failures)
        # Every call wants one unit of butter and only five exist
        assert len(failures) == THREADS - 5

        butter_history = orchestrator.get_transaction_history(butter.item_id)
        assert all(h.quantity_after >= Decimal("0") for h in butter_history)
        assert orchestrator.get_item_state(butter.item_id).quantity_on_hand == Decimal("0")
        assert orchestrator.get_item_state(flour.item_id).quantity_on_hand == Decimal(10 - len(produced))
        orchestrator.verify_item(flour.item_id)
        orchestrator.verify_item(butter.item_id)


class TestLedgerConcurrency:
    def test_parallel_appends_keep_running_balance(self, orchestrator):
        entity = orchestrator.register_entity("customer", "Corner Cafe", actor_id=TEST_ACTOR_ID)

        def work(i):
            return orchestrator.append_ledger_transaction(
                entity.entity_id,
                date(2024, 3, 1 + (i % 3)),
                debit=str(i + 1),
                kind="sale",
                actor_id=f"t{i}",
            )

        results = run_together(THREADS, work)
        assert not [r for r in results if isinstance(r, Exception)]

        history = orchestrator.get_ledger_history(entity.entity_id)
        expected = fold_running_balances(LedgerLine(h.debit, h.credit) for h in history)
        assert [h.running_balance for h in history] == expected
        assert expected[-1] == Decimal(sum(range(1, THREADS + 1)))
        orchestrator.verify_entity(entity.entity_id)


class TestLockTimeout:
    def test_held_lock_times_out_with_conflict(
        self, session_factory, test_config, deterministic_clock, event_sink
    ):
        registry = RowLockRegistry(timeout_seconds=0.05)
        orchestrator = OperationsOrchestrator(
            replace(test_config, max_conflict_retries=1),
            session_factory=session_factory,
            clock=deterministic_clock,
            event_sink=event_sink,
            lock_registry=registry,
        )
        item = orchestrator.register_item("FLOUR", "Flour", "kg", actor_id=TEST_ACTOR_ID)

        holding = ThreadEvent()
        release = ThreadEvent()

        def hold_item_lock():
            with registry.hold([item_key(item.item_id)]):
                holding.set()
                release.wait(10)

        with ThreadPoolExecutor(max_workers=1) as pool:
            future = pool.submit(hold_item_lock)
            assert holding.wait(10)
            try:
                with pytest.raises(ConcurrencyConflictError):
                    orchestrator.record_purchase(item.item_id, "1", "1", actor_id=TEST_ACTOR_ID)
            finally:
                release.set()
            future.result()

        # Nothing was written by the timed-out call
        assert orchestrator.get_item_state(item.item_id).quantity_on_hand == Decimal("0")
