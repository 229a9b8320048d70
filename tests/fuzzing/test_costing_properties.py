"""
Hypothesis property tests for costing and running balances.

Pure-domain properties run with many examples; the database-backed
property uses a handful, since every example writes real transactions.
"""

from decimal import Decimal
from uuid import uuid4

from hypothesis import HealthCheck, assume, given, settings
from hypothesis import strategies as st

from bakery_kernel.db.types import round_cost
from bakery_kernel.domain.costing import (
    NegativeStockError,
    StockMovement,
    StockPosition,
    apply_purchase,
    replay_positions,
)
from bakery_kernel.domain.running_balance import LedgerLine, fold_running_balances
from bakery_kernel.exceptions import InsufficientStockError
from tests.conftest import TEST_ACTOR_ID

ZERO = Decimal("0")

quantities = st.decimals(
    min_value=Decimal("0.001"), max_value=Decimal("10000"), places=3,
    allow_nan=False, allow_infinity=False,
)
costs = st.decimals(
    min_value=Decimal("0.01"), max_value=Decimal("1000"), places=2,
    allow_nan=False, allow_infinity=False,
)
amounts = st.decimals(
    min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2,
    allow_nan=False, allow_infinity=False,
)

movements = st.lists(
    st.one_of(
        st.builds(StockMovement, quantities, costs),
        st.builds(lambda q: StockMovement(-q), quantities),
        st.builds(StockMovement, quantities),
    ),
    max_size=30,
)


class TestWeightedAverageProperties:
    @given(q0=quantities, c0=costs, q=quantities, c=costs)
    @settings(max_examples=200, deadline=None)
    def test_average_between_inputs(self, q0, c0, q, c):
        position = apply_purchase(StockPosition(q0, c0), q, c)
        low, high = min(c0, c), max(c0, c)
        assert round_cost(low) <= position.average_cost <= round_cost(high)

    @given(q0=quantities, c0=costs, q=quantities, c=costs)
    @settings(max_examples=200, deadline=None)
    def test_matches_formula(self, q0, c0, q, c):
        position = apply_purchase(StockPosition(q0, c0), q, c)
        assert position.quantity == q0 + q
        assert position.average_cost == round_cost((q0 * c0 + q * c) / (q0 + q))

    @given(q=quantities, c=costs, stale_cost=costs)
    @settings(max_examples=100, deadline=None)
    def test_empty_position_ignores_previous_cost(self, q, c, stale_cost):
        position = apply_purchase(StockPosition(ZERO, stale_cost), q, c)
        assert position.average_cost == round_cost(c)

    @given(
        opening=st.tuples(quantities, costs),
        batch=st.lists(st.tuples(quantities, costs), min_size=2, max_size=8),
        data=st.data(),
    )
    @settings(max_examples=200, deadline=None)
    def test_purchase_order_does_not_matter(self, opening, batch, data):
        q0, c0 = opening
        reordered = data.draw(st.permutations(batch))

        def receive(purchases):
            position = StockPosition(q0, c0)
            for quantity, cost in purchases:
                position = apply_purchase(position, quantity, cost)
            return position

        first, second = receive(batch), receive(reordered)
        total_quantity = q0 + sum(q for q, _ in batch)
        total_value = q0 * c0 + sum(q * c for q, c in batch)
        assert first == second
        assert first.quantity == total_quantity
        assert first.average_cost == round_cost(total_value / total_quantity)


class TestReplayProperties:
    @given(log=movements)
    @settings(max_examples=200, deadline=None)
    def test_replay_never_negative(self, log):
        try:
            positions = replay_positions(StockPosition(ZERO, ZERO), log)
        except NegativeStockError:
            return
        assert all(p.quantity >= ZERO for p in positions)

    @given(log=movements)
    @settings(max_examples=200, deadline=None)
    def test_outflows_keep_average(self, log):
        try:
            positions = replay_positions(StockPosition(ZERO, ZERO), log)
        except NegativeStockError:
            return
        previous = StockPosition(ZERO, ZERO)
        for movement, position in zip(log, positions):
            if movement.unit_cost is None:
                assert position.average_cost == previous.average_cost
            previous = position


class TestRunningBalanceProperties:
    @given(
        lines=st.lists(
            st.one_of(
                st.builds(lambda a: LedgerLine(a, ZERO), amounts),
                st.builds(lambda a: LedgerLine(ZERO, a), amounts),
            ),
            max_size=40,
        )
    )
    @settings(max_examples=200, deadline=None)
    def test_last_balance_is_net(self, lines):
        balances = fold_running_balances(lines)
        net = sum((line.debit - line.credit for line in lines), ZERO)
        assert (balances[-1] if balances else ZERO) == net

    @given(
        lines=st.lists(st.builds(lambda a: LedgerLine(a, ZERO), amounts), min_size=2, max_size=20),
        split=st.integers(min_value=1, max_value=19),
    )
    @settings(max_examples=100, deadline=None)
    def test_incremental_fold_equals_full_fold(self, lines, split):
        assume(split < len(lines))
        full = fold_running_balances(lines)
        prefix = fold_running_balances(lines[:split])
        suffix = fold_running_balances(lines[split:], prefix[-1])
        assert prefix + suffix == full


class TestEngineProperties:
    @given(
        operations=st.lists(
            st.tuples(st.sampled_from(["buy", "use", "adjust"]), quantities, costs),
            min_size=1,
            max_size=12,
        )
    )
    @settings(
        max_examples=15,
        deadline=None,
        suppress_health_check=[HealthCheck.function_scoped_fixture],
    )
    def test_stored_state_matches_replay(self, orchestrator, operations):
        item = orchestrator.register_item(
            f"ITEM-{uuid4().hex[:12]}",
            "Fuzzed", "kg", actor_id=TEST_ACTOR_ID,
        )
        for kind, quantity, cost in operations:
            try:
                if kind == "buy":
                    orchestrator.record_purchase(item.item_id, quantity, cost, actor_id=TEST_ACTOR_ID)
                elif kind == "use":
                    orchestrator.record_consumption(item.item_id, quantity, actor_id=TEST_ACTOR_ID)
                else:
                    orchestrator.record_adjustment(
                        item.item_id, -quantity, "Count", actor_id=TEST_ACTOR_ID
                    )
            except InsufficientStockError:
                pass

        state = orchestrator.get_item_state(item.item_id)
        assert state.quantity_on_hand >= ZERO
        orchestrator.verify_item(item.item_id)
