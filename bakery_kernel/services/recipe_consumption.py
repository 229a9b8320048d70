"""
RecipeConsumptionCoordinator -- all-or-nothing ingredient deduction.

Responsibility:
    Turns a production run (product, quantity) into one consumption per
    ingredient and applies them as a single unit: either every ingredient
    is deducted or none is.

Architecture position:
    Kernel > Services.  Delegates each deduction to CostingEngine so the
    weighted-average and day-lock rules stay in one place.  The
    orchestrator holds the in-process locks for every ingredient item
    across both phases.

Invariants enforced:
    - Phase 1 loads and row-locks every ingredient item (sorted id order)
      and computes all shortages before anything is written.
    - Phase 2 runs only when phase 1 found no shortage.
    - Duplicate recipe lines for one item are summed before validation.

Failure modes:
    - ValidationError: non-positive production quantity or recipe line,
      or no recipe found for the product.
    - InsufficientStockError naming the first short ingredient, with
      ``shortages`` listing every short ingredient.  Nothing is written.
    - Any error from phase 2 propagates and the caller's transaction
      rolls back every deduction already flushed.
"""

from datetime import date
from decimal import Decimal
from typing import Iterable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from bakery_kernel.db.types import ZERO
from bakery_kernel.domain.clock import Clock
from bakery_kernel.domain.dtos import IngredientDeduction, ProductionResult
from bakery_kernel.domain.recipe import (
    IngredientRequirement,
    RecipeProvider,
    aggregate_requirements,
)
from bakery_kernel.exceptions import InsufficientStockError, ValidationError
from bakery_kernel.invariants import KernelInvariant
from bakery_kernel.logging_config import get_logger
from bakery_kernel.models.day_lock import DayLockScope
from bakery_kernel.models.stock import StockItem
from bakery_kernel.services.base import BaseService
from bakery_kernel.services.costing_engine import CostingEngine, parse_positive
from bakery_kernel.services.day_close_service import DayCloseService

logger = get_logger("services.recipe")

PRODUCTION_REASON = "Production consumption"


def resolve_requirements(
    product_id: str,
    produced_quantity: Decimal,
    ingredient_requirements: Iterable[IngredientRequirement] | None,
    recipes: RecipeProvider | None,
) -> dict[UUID, Decimal]:
    """
    Total quantity per ingredient item for the run, in lock order.

    Falls back to the RecipeProvider when no explicit requirements are
    given.
    """
    if ingredient_requirements is None:
        lines = recipes.get_ingredients(product_id) if recipes is not None else ()
    else:
        lines = tuple(ingredient_requirements)
    if not lines:
        raise ValidationError(
            f"No recipe found for product {product_id}", field="product_id"
        )
    try:
        return aggregate_requirements(lines, produced_quantity)
    except ValueError as exc:
        raise ValidationError(str(exc), field="ingredient_requirements") from exc


class RecipeConsumptionCoordinator(BaseService[StockItem]):
    """Two-phase validate-all-then-apply-all production consumption."""

    resource_type = "production"

    def __init__(
        self,
        session: Session,
        engine: CostingEngine,
        recipes: RecipeProvider | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session, clock)
        self._engine = engine
        self._recipes = recipes
        self._days = DayCloseService(session, self._clock)

    def record_production(
        self,
        product_id: str,
        produced_quantity,
        ingredient_requirements: Iterable[IngredientRequirement] | None = None,
        *,
        actor_id: str,
        business_date: date | None = None,
        batch_id: str | None = None,
    ) -> ProductionResult:
        quantity = parse_positive(produced_quantity, "produced_quantity")
        requirements = resolve_requirements(
            product_id, quantity, ingredient_requirements, self._recipes
        )
        business_date = business_date or self._clock.today()
        reference = f"Production-{product_id}-{batch_id or uuid4().hex[:12]}"

        # Phase 1: lock and validate every ingredient
        items = {
            item_id: self._engine.load_for_mutation(item_id) for item_id in requirements
        }
        self._days.ensure_open(business_date, DayLockScope.STOCK)

        shortages = tuple(
            (str(item_id), required, items[item_id].quantity_on_hand)
            for item_id, required in requirements.items()
            if required > items[item_id].quantity_on_hand
        )
        if shortages:
            first_id, required, available = shortages[0]
            logger.warning(
                "production_rejected",
                extra={
                    "product_id": product_id,
                    "produced_quantity": quantity,
                    "shortage_count": len(shortages),
                    "first_shortage_item_id": first_id,
                    "required": required,
                    "available": available,
                    "invariant": KernelInvariant.ALL_OR_NOTHING.value,
                },
            )
            raise InsufficientStockError(first_id, required, available, shortages)

        # Phase 2: apply every deduction
        deductions: list[IngredientDeduction] = []
        total_cost = ZERO
        for item_id, required in requirements.items():
            item = items[item_id]
            unit_cost = item.average_cost
            txn = self._engine.apply_consumption(
                item,
                required,
                actor_id=actor_id,
                business_date=business_date,
                reason=PRODUCTION_REASON,
                reference=reference,
            )
            cost = required * unit_cost
            total_cost += cost
            deductions.append(
                IngredientDeduction(
                    item_id=item_id,
                    quantity=required,
                    unit_cost=unit_cost,
                    cost=cost,
                    new_quantity=item.quantity_on_hand,
                    transaction_id=txn.id,
                )
            )
        self._flush(product_id)

        logger.info(
            "production_recorded",
            extra={
                "product_id": product_id,
                "produced_quantity": quantity,
                "ingredient_count": len(deductions),
                "total_cost": total_cost,
                "reference": reference,
            },
        )
        return ProductionResult(
            product_id=product_id,
            produced_quantity=quantity,
            reference=reference,
            deductions=tuple(deductions),
            total_cost=total_cost,
        )
