"""
Tests for CostingEngine (purchases, consumption, adjustments).

Runs against a single session; the orchestrator's locking and retry
behaviour is covered in tests/integration and tests/concurrency.
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from bakery_kernel.domain.events import LowStockDetected
from bakery_kernel.exceptions import (
    DayLockedError,
    InsufficientStockError,
    ItemInactiveError,
    ItemNotFoundError,
    RecordQuarantinedError,
    ValidationError,
)
from bakery_kernel.models.stock import StockItem, StockTransaction
from bakery_kernel.selectors.stock_selector import StockSelector
from tests.conftest import TEST_ACTOR_ID, TEST_DATE


def log_count(session, item_id) -> int:
    return session.execute(
        select(func.count()).select_from(StockTransaction).where(
            StockTransaction.item_id == item_id
        )
    ).scalar_one()


class TestRegisterItem:
    def test_opening_position(self, create_item):
        state = create_item("SUGAR", opening_quantity="4", opening_cost="1.10")
        assert state.quantity_on_hand == Decimal("4")
        assert state.average_cost == Decimal("1.10")
        assert state.opening_quantity == Decimal("4")
        assert state.consumed_quantity == Decimal("0")

    def test_opening_is_not_a_transaction(self, session, create_item):
        state = create_item("SUGAR", opening_quantity="4", opening_cost="1.10")
        assert log_count(session, state.item_id) == 0

    def test_duplicate_code_rejected(self, create_item):
        create_item("SUGAR")
        with pytest.raises(ValidationError, match="already registered"):
            create_item("SUGAR")

    @pytest.mark.parametrize("field", ["code", "name", "unit"])
    def test_blank_fields_rejected(self, costing_engine, field):
        values = {"code": "X", "name": "X", "unit": "kg"}
        values[field] = "  "
        with pytest.raises(ValidationError):
            costing_engine.register_item(
                values["code"], values["name"], values["unit"], actor_id=TEST_ACTOR_ID
            )

    def test_negative_opening_rejected(self, create_item):
        with pytest.raises(ValidationError):
            create_item("SUGAR", opening_quantity="-1")


class TestRecordPurchase:
    def test_weighted_average(self, costing_engine, create_item):
        flour = create_item()
        costing_engine.record_purchase(flour.item_id, "10", "2.00", actor_id=TEST_ACTOR_ID)
        result = costing_engine.record_purchase(
            flour.item_id, "5", "4.00", actor_id=TEST_ACTOR_ID
        )
        assert result.new_quantity == Decimal("15")
        assert result.new_average_cost == Decimal("2.666666667")

    def test_purchase_order_does_not_change_average(self, session, costing_engine, create_item):
        batch = [("7", "4.29"), ("2", "2.47"), ("2", "5.65"), ("7", "0.61")]
        forward = create_item("FLOUR")
        backward = create_item("SUGAR")
        for quantity, cost in batch:
            costing_engine.record_purchase(forward.item_id, quantity, cost, actor_id=TEST_ACTOR_ID)
        for quantity, cost in reversed(batch):
            costing_engine.record_purchase(backward.item_id, quantity, cost, actor_id=TEST_ACTOR_ID)

        first = StockSelector(session).get_item_state(forward.item_id)
        second = StockSelector(session).get_item_state(backward.item_id)
        assert first.average_cost == second.average_cost == Decimal("2.807777778")
        assert first.stock_value == second.stock_value == Decimal("50.54")

    def test_consumption_moves_exact_value(self, session, costing_engine, create_item):
        flour = create_item()
        costing_engine.record_purchase(flour.item_id, "10", "2.00", actor_id=TEST_ACTOR_ID)
        costing_engine.record_purchase(flour.item_id, "5", "4.00", actor_id=TEST_ACTOR_ID)
        result = costing_engine.record_consumption(flour.item_id, "3", actor_id=TEST_ACTOR_ID)

        txn = session.get(StockTransaction, result.transaction_id)
        assert txn.value_after == Decimal("32")
        assert txn.average_cost_after == Decimal("2.666666667")

    def test_appends_one_log_row(self, session, costing_engine, create_item):
        flour = create_item()
        result = costing_engine.record_purchase(
            flour.item_id, "10", "2.00", actor_id=TEST_ACTOR_ID, reference="PO-1"
        )
        txn = session.get(StockTransaction, result.transaction_id)
        assert txn.kind == "in"
        assert txn.direction == 1
        assert txn.unit_cost == Decimal("2.00")
        assert txn.quantity_after == Decimal("10")
        assert txn.business_date == TEST_DATE
        assert txn.reference == "PO-1"
        assert txn.actor_id == TEST_ACTOR_ID

    def test_supplier_and_restock_time(self, session, costing_engine, create_item, deterministic_clock):
        flour = create_item()
        costing_engine.record_purchase(
            flour.item_id, "1", "1", actor_id=TEST_ACTOR_ID, supplier="Mill Co"
        )
        item = session.get(StockItem, flour.item_id)
        assert item.supplier == "Mill Co"
        assert item.last_restocked_at is not None

    @pytest.mark.parametrize("quantity,cost", [("0", "1"), ("-1", "1"), ("1", "0"), ("1", "-2")])
    def test_non_positive_inputs_rejected(self, costing_engine, create_item, quantity, cost):
        flour = create_item()
        with pytest.raises(ValidationError):
            costing_engine.record_purchase(flour.item_id, quantity, cost, actor_id=TEST_ACTOR_ID)

    def test_float_rejected(self, costing_engine, create_item):
        flour = create_item()
        with pytest.raises(ValidationError):
            costing_engine.record_purchase(flour.item_id, 1.5, "2", actor_id=TEST_ACTOR_ID)

    def test_unknown_item(self, costing_engine):
        with pytest.raises(ItemNotFoundError):
            costing_engine.record_purchase(uuid4(), "1", "1", actor_id=TEST_ACTOR_ID)

    def test_inactive_item_rejected(self, costing_engine, create_item):
        flour = create_item()
        costing_engine.deactivate_item(flour.item_id, actor_id=TEST_ACTOR_ID)
        with pytest.raises(ItemInactiveError):
            costing_engine.record_purchase(flour.item_id, "1", "1", actor_id=TEST_ACTOR_ID)

    def test_quarantined_item_rejected(self, session, costing_engine, create_item):
        flour = create_item()
        item = session.get(StockItem, flour.item_id)
        item.is_quarantined = True
        item.quarantine_reason = "drift"
        session.flush()
        with pytest.raises(RecordQuarantinedError):
            costing_engine.record_purchase(flour.item_id, "1", "1", actor_id=TEST_ACTOR_ID)

    def test_closed_day_rejected(self, costing_engine, create_item, day_close_service):
        flour = create_item()
        day_close_service.close_day(TEST_DATE, "stock", TEST_ACTOR_ID)
        with pytest.raises(DayLockedError):
            costing_engine.record_purchase(flour.item_id, "1", "1", actor_id=TEST_ACTOR_ID)

    def test_other_day_still_open(self, costing_engine, create_item, day_close_service):
        flour = create_item()
        day_close_service.close_day(TEST_DATE, "stock", TEST_ACTOR_ID)
        result = costing_engine.record_purchase(
            flour.item_id, "1", "1", actor_id=TEST_ACTOR_ID, business_date=date(2024, 3, 16)
        )
        assert result.new_quantity == Decimal("1")


class TestRecordConsumption:
    def test_keeps_average_cost(self, costing_engine, create_item):
        flour = create_item()
        costing_engine.record_purchase(flour.item_id, "10", "2.00", actor_id=TEST_ACTOR_ID)
        costing_engine.record_purchase(flour.item_id, "5", "4.00", actor_id=TEST_ACTOR_ID)
        result = costing_engine.record_consumption(flour.item_id, "3", actor_id=TEST_ACTOR_ID)
        assert result.new_quantity == Decimal("12")
        assert result.average_cost == Decimal("2.666666667")

    def test_consume_to_zero(self, costing_engine, create_item):
        flour = create_item(opening_quantity="3", opening_cost="1")
        result = costing_engine.record_consumption(flour.item_id, "3", actor_id=TEST_ACTOR_ID)
        assert result.new_quantity == Decimal("0")

    def test_insufficient_stock_leaves_state(self, session, costing_engine, create_item):
        flour = create_item(opening_quantity="12", opening_cost="1")
        with pytest.raises(InsufficientStockError) as exc_info:
            costing_engine.record_consumption(flour.item_id, "20", actor_id=TEST_ACTOR_ID)
        assert exc_info.value.required == Decimal("20")
        assert exc_info.value.available == Decimal("12")
        assert log_count(session, flour.item_id) == 0
        assert session.get(StockItem, flour.item_id).quantity_on_hand == Decimal("12")

    def test_consumed_quantity_accumulates(self, session, costing_engine, create_item):
        flour = create_item(opening_quantity="10", opening_cost="1")
        costing_engine.record_consumption(flour.item_id, "2", actor_id=TEST_ACTOR_ID)
        costing_engine.record_consumption(flour.item_id, "3.5", actor_id=TEST_ACTOR_ID)
        assert session.get(StockItem, flour.item_id).consumed_quantity == Decimal("5.5")

    def test_low_stock_event_collected(self, costing_engine, create_item):
        flour = create_item(opening_quantity="10", opening_cost="1", min_level="5")
        costing_engine.record_consumption(flour.item_id, "4", actor_id=TEST_ACTOR_ID)
        assert costing_engine.pending_events == []
        costing_engine.record_consumption(flour.item_id, "1", actor_id=TEST_ACTOR_ID)
        events = costing_engine.pending_events
        assert len(events) == 1
        assert isinstance(events[0], LowStockDetected)
        assert events[0].quantity_on_hand == Decimal("5")


class TestRecordAdjustment:
    def test_positive_adjustment_keeps_cost(self, costing_engine, create_item, session):
        flour = create_item(opening_quantity="10", opening_cost="2")
        result = costing_engine.record_adjustment(
            flour.item_id, "2", "Stock count", actor_id=TEST_ACTOR_ID
        )
        assert result.new_quantity == Decimal("12")
        assert session.get(StockItem, flour.item_id).average_cost == Decimal("2")

    def test_negative_adjustment(self, session, costing_engine, create_item):
        flour = create_item(opening_quantity="10", opening_cost="2")
        result = costing_engine.record_adjustment(
            flour.item_id, "-4", "Spoilage", actor_id=TEST_ACTOR_ID
        )
        txn = session.get(StockTransaction, result.transaction_id)
        assert txn.kind == "adjustment"
        assert txn.direction == -1
        assert txn.quantity == Decimal("4")
        assert result.new_quantity == Decimal("6")

    def test_negative_adjustment_beyond_stock(self, costing_engine, create_item):
        flour = create_item(opening_quantity="1", opening_cost="2")
        with pytest.raises(InsufficientStockError):
            costing_engine.record_adjustment(flour.item_id, "-2", "Spoilage", actor_id=TEST_ACTOR_ID)

    def test_zero_rejected(self, costing_engine, create_item):
        flour = create_item()
        with pytest.raises(ValidationError, match="zero"):
            costing_engine.record_adjustment(flour.item_id, "0", "Count", actor_id=TEST_ACTOR_ID)

    def test_reason_required(self, costing_engine, create_item):
        flour = create_item()
        with pytest.raises(ValidationError, match="reason"):
            costing_engine.record_adjustment(flour.item_id, "1", " ", actor_id=TEST_ACTOR_ID)

    def test_adjustment_does_not_count_as_consumption(self, session, costing_engine, create_item):
        flour = create_item(opening_quantity="5", opening_cost="1")
        costing_engine.record_adjustment(flour.item_id, "-1", "Spoilage", actor_id=TEST_ACTOR_ID)
        assert session.get(StockItem, flour.item_id).consumed_quantity == Decimal("0")


class TestStockSelector:
    def test_display_cost_rounded(self, session, costing_engine, create_item):
        flour = create_item()
        costing_engine.record_purchase(flour.item_id, "10", "2.00", actor_id=TEST_ACTOR_ID)
        costing_engine.record_purchase(flour.item_id, "5", "4.00", actor_id=TEST_ACTOR_ID)
        state = StockSelector(session).get_item_state(flour.item_id)
        assert state.average_cost == Decimal("2.666666667")
        assert state.display_average_cost == Decimal("2.67")

    def test_history_in_sequence_order(self, session, costing_engine, create_item):
        flour = create_item()
        costing_engine.record_purchase(flour.item_id, "10", "2", actor_id=TEST_ACTOR_ID)
        costing_engine.record_consumption(flour.item_id, "1", actor_id=TEST_ACTOR_ID)
        costing_engine.record_adjustment(flour.item_id, "-1", "Count", actor_id=TEST_ACTOR_ID)
        history = StockSelector(session).get_transaction_history(flour.item_id)
        assert [h.kind for h in history] == ["in", "out", "adjustment"]
        assert [h.sequence for h in history] == sorted(h.sequence for h in history)
        assert [h.signed_quantity for h in history] == [Decimal("10"), Decimal("-1"), Decimal("-1")]

    def test_history_date_filter(self, session, costing_engine, create_item):
        flour = create_item()
        costing_engine.record_purchase(flour.item_id, "1", "2", actor_id=TEST_ACTOR_ID)
        costing_engine.record_purchase(
            flour.item_id, "1", "2", actor_id=TEST_ACTOR_ID, business_date=date(2024, 3, 20)
        )
        history = StockSelector(session).get_transaction_history(
            flour.item_id, start_date=date(2024, 3, 16)
        )
        assert len(history) == 1

    def test_low_stock_listing(self, session, create_item):
        create_item("FLOUR", opening_quantity="1", opening_cost="1", min_level="5")
        create_item("SUGAR", opening_quantity="10", opening_cost="1", min_level="5")
        low = StockSelector(session).list_low_stock_items()
        assert [s.code for s in low] == ["FLOUR"]

    def test_valuation(self, session, create_item):
        create_item("FLOUR", opening_quantity="10", opening_cost="2.5")
        create_item("SUGAR", opening_quantity="4", opening_cost="1.25")
        valuation = StockSelector(session).get_stock_valuation()
        assert valuation.item_count == 2
        assert valuation.total_value == Decimal("30.00")
