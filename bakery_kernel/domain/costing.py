"""
Weighted-average costing -- pure functions over stock positions.

Responsibility:
    Computes the (quantity, average_cost, value) position produced by
    purchases, consumptions and adjustments, and replays a whole stock log
    from its opening position.  Used by the costing engine for live
    mutations and by the consistency checker for verification, so both
    paths share one rounding rule.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - value is the unrounded cost of the quantity on hand.  A purchase
      (q, c) adds q*c to it exactly; average_cost is value / quantity
      rounded to the cost precision.  Rounding is applied to the average
      only, never carried into the next purchase, so a set of purchases
      yields (sum(q*c) + Q0*C0) / (sum(q) + Q0) in any order.
    - Outflows and adjustments move value at the current unit value and
      never change the average cost.
    - An empty position has zero value.
    - No position may have a negative quantity.

Failure modes:
    - NegativeStockError when an outflow or negative adjustment exceeds the
      quantity available.  The service layer translates it into
      InsufficientStockError.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable

from bakery_kernel.db.types import COST_DECIMAL_PLACES, ZERO, round_cost


class NegativeStockError(ValueError):
    """An outflow would drive quantity below zero."""

    def __init__(self, required: Decimal, available: Decimal):
        self.required = required
        self.available = available
        super().__init__(f"required {required}, available {available}")


@dataclass(frozen=True)
class StockPosition:
    """
    Quantity on hand, its weighted-average unit cost and its exact value.

    value defaults to quantity * average_cost, which is how an opening
    position is priced.
    """

    quantity: Decimal
    average_cost: Decimal
    value: Decimal | None = None

    def __post_init__(self):
        if self.value is None:
            object.__setattr__(self, "value", self.quantity * self.average_cost)


@dataclass(frozen=True)
class StockMovement:
    """
    One signed movement as seen by the replay.

    unit_cost is set for purchases only; an inflow without a cost is an
    adjustment and keeps the average.
    """

    signed_quantity: Decimal
    unit_cost: Decimal | None = None


def weighted_average(
    value: Decimal,
    quantity: Decimal,
    cost_decimal_places: int = COST_DECIMAL_PLACES,
) -> Decimal:
    """
    Average unit cost of ``quantity`` units worth ``value`` in total.

    Preconditions: quantity > 0.
    """
    return round_cost(value / quantity, cost_decimal_places)


def apply_purchase(
    position: StockPosition,
    quantity: Decimal,
    unit_cost: Decimal,
    cost_decimal_places: int = COST_DECIMAL_PLACES,
) -> StockPosition:
    total = position.quantity + quantity
    value = position.value + quantity * unit_cost
    return StockPosition(
        quantity=total,
        average_cost=weighted_average(value, total, cost_decimal_places),
        value=value,
    )


def _rescaled(position: StockPosition, quantity: Decimal) -> StockPosition:
    # Same unit value, new quantity
    if quantity == ZERO:
        value = ZERO
    elif position.quantity == ZERO:
        value = quantity * position.average_cost
    else:
        value = position.value * quantity / position.quantity
    return StockPosition(
        quantity=quantity, average_cost=position.average_cost, value=value
    )


def apply_outflow(position: StockPosition, quantity: Decimal) -> StockPosition:
    """
    Remove ``quantity`` at the current average cost.

    Raises:
        NegativeStockError: if quantity exceeds the position.
    """
    if quantity > position.quantity:
        raise NegativeStockError(quantity, position.quantity)
    return _rescaled(position, position.quantity - quantity)


def apply_adjustment(position: StockPosition, signed_quantity: Decimal) -> StockPosition:
    """Quantity-only correction; negative adjustments obey the outflow rule."""
    if signed_quantity < ZERO:
        return apply_outflow(position, -signed_quantity)
    return _rescaled(position, position.quantity + signed_quantity)


def apply_movement(
    position: StockPosition,
    movement: StockMovement,
    cost_decimal_places: int = COST_DECIMAL_PLACES,
) -> StockPosition:
    if movement.unit_cost is not None and movement.signed_quantity > ZERO:
        return apply_purchase(
            position, movement.signed_quantity, movement.unit_cost, cost_decimal_places
        )
    return apply_adjustment(position, movement.signed_quantity)


def replay_positions(
    opening: StockPosition,
    movements: Iterable[StockMovement],
    cost_decimal_places: int = COST_DECIMAL_PLACES,
) -> list[StockPosition]:
    """
    Positions after each movement, in order.

    Raises:
        NegativeStockError: if the log ever drives quantity below zero.
    """
    positions: list[StockPosition] = []
    position = opening
    for movement in movements:
        position = apply_movement(position, movement, cost_decimal_places)
        positions.append(position)
    return positions
