"""
Unit tests for decimal handling.

Verifies:
- Float and boolean inputs are rejected
- Cost and display rounding are ROUND_HALF_UP at their own precision
- Storage rendering is plain notation, never scientific
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from bakery_kernel.db.types import (
    COST_DECIMAL_PLACES,
    DecimalString,
    UUIDString,
    decimal_to_str,
    round_cost,
    round_money,
    to_decimal,
)


class TestToDecimal:
    def test_string_input(self):
        assert to_decimal("2.50") == Decimal("2.50")

    def test_string_with_whitespace(self):
        assert to_decimal("  10 ") == Decimal("10")

    def test_int_input(self):
        assert to_decimal(7) == Decimal("7")

    def test_decimal_passthrough(self):
        value = Decimal("3.333")
        assert to_decimal(value) is value

    def test_float_rejected(self):
        with pytest.raises(ValueError, match="Float"):
            to_decimal(2.5)

    def test_bool_rejected(self):
        with pytest.raises(TypeError):
            to_decimal(True)

    def test_garbage_string_rejected(self):
        with pytest.raises(ValueError, match="Not a decimal"):
            to_decimal("ten")

    @pytest.mark.parametrize("raw", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_rejected(self, raw):
        with pytest.raises(ValueError, match="finite"):
            to_decimal(raw)

    def test_unsupported_type_rejected(self):
        with pytest.raises(TypeError):
            to_decimal([1])


class TestRounding:
    def test_cost_precision_is_nine_places(self):
        assert COST_DECIMAL_PLACES == 9
        assert round_cost(Decimal("40") / Decimal("15")) == Decimal("2.666666667")

    def test_display_rounds_half_up(self):
        assert round_money(Decimal("2.665")) == Decimal("2.67")
        assert round_money(Decimal("2.664999")) == Decimal("2.66")

    def test_custom_places(self):
        assert round_money(Decimal("1.23456"), 3) == Decimal("1.235")


class TestDecimalToStr:
    def test_plain_notation(self):
        assert decimal_to_str(Decimal("1E+3")) == "1000"
        assert decimal_to_str(Decimal("1E-7")) == "0.0000001"

    def test_negative_zero(self):
        assert decimal_to_str(Decimal("-0")) == "0"

    def test_none(self):
        assert decimal_to_str(None) is None


class TestDecimalString:
    def test_bind_and_result(self):
        column_type = DecimalString()
        stored = column_type.process_bind_param(Decimal("2.666666667"), None)
        assert stored == "2.666666667"
        assert column_type.process_result_value(stored, None) == Decimal("2.666666667")

    def test_bind_rejects_float(self):
        with pytest.raises(ValueError):
            DecimalString().process_bind_param(0.1, None)

    def test_none_passthrough(self):
        column_type = DecimalString()
        assert column_type.process_bind_param(None, None) is None
        assert column_type.process_result_value(None, None) is None


class TestUUIDString:
    def test_round_trip(self):
        column_type = UUIDString()
        value = uuid4()
        stored = column_type.process_bind_param(value, None)
        assert stored == str(value)
        assert column_type.process_result_value(stored, None) == value

    def test_none_passthrough(self):
        assert UUIDString().process_bind_param(None, None) is None
        assert UUIDString().process_result_value(None, None) is None
