"""
Module: bakery_kernel.db.types
Responsibility: Decimal value handling for every quantity, cost and money
    column.  Centralizes parsing, precision and rounding so that models,
    domain math and services agree on one representation.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats anywhere.  to_decimal() rejects float input outright and
      rejects NaN / infinity, so binary floating point can never enter a
      balance or an average cost.
    - Persistence as decimal strings.  DecimalString stores the exact
      textual representation so no driver (SQLite REAL affinity, numeric
      coercion) can round a stored value behind our back.
    - round_money() / round_cost() are the ONLY sanctioned rounding helpers.

Failure modes:
    - ValueError on float input, non-numeric strings, NaN or infinity.
    - TypeError on unsupported input types.
"""

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from uuid import UUID

from sqlalchemy import String
from sqlalchemy.types import TypeDecorator

# Rounding constants
COST_DECIMAL_PLACES = 9
MONEY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP

ZERO = Decimal("0")


def to_decimal(value: Decimal | int | str) -> Decimal:
    """
    Convert a caller-supplied number into a finite Decimal.

    Preconditions: value is a Decimal, int, or numeric string.
    Postconditions: Returns a finite Decimal equal to the input.

    Raises:
        ValueError: If value is a float, non-numeric, NaN or infinite.
        TypeError: If value is of an unsupported type.
    """
    if isinstance(value, bool):
        raise TypeError("Boolean is not a decimal quantity")
    if isinstance(value, float):
        raise ValueError(
            f"Float value {value!r} rejected; pass a Decimal or a string"
        )
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation as exc:
            raise ValueError(f"Not a decimal number: {value!r}") from exc
    else:
        raise TypeError(f"Unsupported decimal input type: {type(value).__name__}")

    if not result.is_finite():
        raise ValueError(f"Decimal value must be finite, got {value!r}")
    return result


def _quantizer(decimal_places: int) -> Decimal:
    return Decimal(1).scaleb(-decimal_places)


def round_money(
    value: Decimal,
    decimal_places: int = MONEY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """
    Round a monetary or display value to specified decimal places.

    Args:
        value: The Decimal value to round.
        decimal_places: Number of decimal places to round to.
        rounding: Rounding mode (default: ROUND_HALF_UP).

    Returns:
        Rounded Decimal value.
    """
    return value.quantize(_quantizer(decimal_places), rounding=rounding)


def round_cost(
    value: Decimal,
    decimal_places: int = COST_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a stored average cost to the internal cost precision."""
    return value.quantize(_quantizer(decimal_places), rounding=rounding)


def decimal_to_str(value: Decimal | None) -> str | None:
    """Render a Decimal in plain (non-scientific) notation."""
    if value is None:
        return None
    if value == 0:
        # Negative zero renders as zero
        value = abs(value)
    return format(value, "f")


class DecimalString(TypeDecorator):
    """
    Decimal type stored as a plain-notation string.

    Contract:
        Transparently converts between Python Decimal and its exact textual
        representation (e.g., "2.666666667").

    Guarantees:
        - process_bind_param: Decimal -> str on INSERT/UPDATE; floats rejected.
        - process_result_value: str -> Decimal on SELECT.
        - cache_ok=True enables SQLAlchemy statement caching.
    """

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        """Convert Decimal to string when storing."""
        if value is None:
            return None
        return decimal_to_str(to_decimal(value))

    def process_result_value(self, value, dialect):
        """Convert string back to Decimal when loading."""
        if value is None:
            return None
        return Decimal(value)


class UUIDString(TypeDecorator):
    """UUID kept as its 36-character text form so SQLite and PostgreSQL agree."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)
