"""
Recipe requirements and the RecipeProvider port.

Recipes are owned by the product catalogue, outside the kernel.  The kernel
only reads them, through RecipeProvider, to turn "bake 20 croissants" into
per-ingredient stock requirements.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping, Protocol
from uuid import UUID

from bakery_kernel.db.types import ZERO


@dataclass(frozen=True)
class IngredientRequirement:
    """Quantity of one stock item needed per unit of product."""

    item_id: UUID
    quantity: Decimal


class RecipeProvider(Protocol):
    """Pluggable interface for recipe lookups."""

    def get_ingredients(self, product_id: str) -> tuple[IngredientRequirement, ...]:
        """Ingredients per single unit of product; empty when unknown."""
        ...


class StaticRecipeProvider:
    """RecipeProvider backed by an in-memory mapping."""

    def __init__(
        self,
        recipes: Mapping[str, Iterable[IngredientRequirement]] | None = None,
    ):
        self._recipes = {
            product_id: tuple(lines) for product_id, lines in (recipes or {}).items()
        }

    def set_recipe(
        self, product_id: str, lines: Iterable[IngredientRequirement]
    ) -> None:
        self._recipes[product_id] = tuple(lines)

    def get_ingredients(self, product_id: str) -> tuple[IngredientRequirement, ...]:
        return self._recipes.get(product_id, ())


def aggregate_requirements(
    requirements: Iterable[IngredientRequirement],
    produced_quantity: Decimal,
) -> dict[UUID, Decimal]:
    """
    Total required quantity per item for a production run.

    Duplicate lines for one item are summed.  Items are returned in sorted
    id order, the order locks are taken in.

    Raises:
        ValueError: if a recipe quantity is not positive.
    """
    totals: dict[UUID, Decimal] = {}
    for line in requirements:
        if line.quantity <= ZERO:
            raise ValueError(
                f"Recipe quantity for item {line.item_id} must be positive, "
                f"got {line.quantity}"
            )
        totals[line.item_id] = totals.get(line.item_id, ZERO) + (
            line.quantity * produced_quantity
        )
    return {item_id: totals[item_id] for item_id in sorted(totals, key=str)}
