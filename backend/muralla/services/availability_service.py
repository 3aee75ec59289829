# Overview: Read-only "can we sell N of this?" checks, dispatched by fulfillment type.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from ..extensions import db
from ..errors import Shortfall, format_quantity
from ..models import Product, Recipe, RecipeLine, FulfillmentType
from ..validation import require_positive_int
from .recipe_service import resolve_default_recipe
from .stock_service import to_stock_units


@dataclass(frozen=True)
class AvailabilityResult:
    available: bool
    reason: str | None = None

    def to_dict(self) -> dict:
        return {"available": self.available, "reason": self.reason}


@dataclass(frozen=True)
class IngredientRequirement:
    """
    What `quantity` units of output need from one ingredient.

    `units` is the whole-unit decrement, rounded once over the summed lines.
    `line_units` splits those units across the recipe lines (same order as
    `lines`) so each line keeps its own consumption record.
    """
    ingredient: Product
    lines: tuple[RecipeLine, ...]
    line_required: tuple[Decimal, ...]
    required: Decimal
    units: int
    line_units: tuple[int, ...]

    @property
    def needed_on_hand(self) -> Decimal:
        # CEILING/HALF_UP can take more than the exact figure; FLOOR never does
        return max(self.required, Decimal(self.units))


def recipe_requirements(recipe: Recipe, quantity: int) -> list[IngredientRequirement]:
    """
    One IngredientRequirement per ingredient for `quantity` units of output.

    Optional lines are skipped; an ingredient listed on several lines is summed,
    in first-appearance order.
    """
    grouped: dict[int, list[tuple[RecipeLine, Decimal]]] = {}
    for line in recipe.required_lines():
        grouped.setdefault(line.ingredient_id, []).append(
            (line, Decimal(line.quantity_per_unit) * quantity)
        )

    requirements = []
    for entries in grouped.values():
        # Cumulative rounding: the per-line units always add up to the rounded total
        line_units = []
        running = Decimal("0")
        allocated = 0
        for _, required in entries:
            running += required
            cumulative = to_stock_units(running)
            line_units.append(cumulative - allocated)
            allocated = cumulative
        requirements.append(
            IngredientRequirement(
                ingredient=entries[0][0].ingredient,
                lines=tuple(line for line, _ in entries),
                line_required=tuple(required for _, required in entries),
                required=running,
                units=allocated,
                line_units=tuple(line_units),
            )
        )
    return requirements


def shortfalls_for(requirements: list[IngredientRequirement]) -> list[Shortfall]:
    shortfalls = []
    for req in requirements:
        if req.ingredient.on_hand_quantity < req.needed_on_hand:
            shortfalls.append(
                Shortfall(
                    product_id=req.ingredient.id,
                    product_name=req.ingredient.name,
                    available=req.ingredient.on_hand_quantity,
                    required=req.needed_on_hand,
                )
            )
    return shortfalls


def find_recipe_shortfalls(recipe: Recipe, quantity: int) -> list[Shortfall]:
    """Every required ingredient whose on-hand quantity cannot cover `quantity` units."""
    return shortfalls_for(recipe_requirements(recipe, quantity))


def _check_stocked(product: Product, quantity: int) -> AvailabilityResult:
    if product.on_hand_quantity < quantity:
        return AvailabilityResult(
            False,
            f"Insufficient stock. Available: {product.on_hand_quantity}, Required: {quantity}",
        )
    return AvailabilityResult(True)


def _check_made_to_order(product: Product, quantity: int) -> AvailabilityResult:
    resolution = resolve_default_recipe(product.id, product.tenant_id)
    if resolution is None:
        return AvailabilityResult(False, "No recipe configured")

    shortfalls = find_recipe_shortfalls(resolution.recipe, quantity)
    if shortfalls:
        first = shortfalls[0]
        return AvailabilityResult(
            False,
            f"Insufficient ingredient: {first.product_name}. "
            f"Available: {first.available}, Required: {format_quantity(first.required)}",
        )
    return AvailabilityResult(True)


def _check_service(product: Product, quantity: int) -> AvailabilityResult:
    return AvailabilityResult(True)


_AVAILABILITY_CHECKS: dict[FulfillmentType, Callable[[Product, int], AvailabilityResult]] = {
    FulfillmentType.PRE_STOCKED: _check_stocked,
    FulfillmentType.MANUFACTURED: _check_stocked,
    FulfillmentType.MADE_TO_ORDER: _check_made_to_order,
    FulfillmentType.SERVICE: _check_service,
}

_missing = set(FulfillmentType) - set(_AVAILABILITY_CHECKS)
if _missing:
    raise RuntimeError(f"availability checks missing for: {sorted(t.value for t in _missing)}")


def check_availability(product_id: int, quantity: int, tenant_id: int) -> AvailabilityResult:
    """
    Whether `quantity` units of the product could be sold right now.

    Pure read: no locks, no writes. An unknown product is reported in the
    result rather than raised.
    """
    quantity = require_positive_int(quantity, "quantity")

    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        return AvailabilityResult(False, "Product not found")
    if not product.is_active:
        return AvailabilityResult(False, "Product is inactive")

    return _AVAILABILITY_CHECKS[product.fulfillment_type](product, quantity)
