# Overview: Pure cost arithmetic for sales, recipe estimates and production batches.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation

"""
Costing rules (authoritative)

- All money and cost math is Decimal; floats are converted through str() so
  0.1 stays 0.1.
- Sale amounts are quantized to 2 places (half-up); costs to 4 places.
- Batch: total_cost = ingredient_cost + labor_cost + overhead_cost (missing -> 0)
         cost_per_unit = total_cost / actual_quantity, or 0 when actual_quantity <= 0
- A NULL cost basis counts as 0.
"""

MONEY_QUANT = Decimal("0.01")
COST_QUANT = Decimal("0.0001")
ZERO = Decimal("0")


def to_decimal(value, *, default: Decimal | None = ZERO) -> Decimal | None:
    if value is None:
        return default
    if isinstance(value, Decimal):
        return value
    if isinstance(value, bool):
        raise TypeError("boolean is not a numeric amount")
    if isinstance(value, float):
        return Decimal(str(value))
    try:
        return Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as exc:
        raise TypeError(f"not a numeric amount: {value!r}") from exc


def quantize_money(value) -> Decimal:
    return to_decimal(value).quantize(MONEY_QUANT, rounding=ROUND_HALF_UP)


def quantize_cost(value) -> Decimal:
    return to_decimal(value).quantize(COST_QUANT, rounding=ROUND_HALF_UP)


def line_cost(unit_cost, quantity) -> Decimal:
    """Cost basis x quantity; quantity may be fractional (recipe math)."""
    return quantize_cost(to_decimal(unit_cost) * to_decimal(quantity))


@dataclass(frozen=True)
class BatchCost:
    ingredient_cost: Decimal
    labor_cost: Decimal
    overhead_cost: Decimal
    total_cost: Decimal
    cost_per_unit: Decimal

    def to_dict(self) -> dict:
        return {
            "ingredient_cost": str(self.ingredient_cost),
            "labor_cost": str(self.labor_cost),
            "overhead_cost": str(self.overhead_cost),
            "total_cost": str(self.total_cost),
            "cost_per_unit": str(self.cost_per_unit),
        }


def compute_batch_cost(ingredient_cost, actual_quantity: int, labor_cost=None, overhead_cost=None) -> BatchCost:
    ingredient = to_decimal(ingredient_cost)
    labor = to_decimal(labor_cost)
    overhead = to_decimal(overhead_cost)

    total = ingredient + labor + overhead
    if actual_quantity and actual_quantity > 0:
        per_unit = total / Decimal(actual_quantity)
    else:
        per_unit = ZERO

    return BatchCost(
        ingredient_cost=quantize_cost(ingredient),
        labor_cost=quantize_cost(labor),
        overhead_cost=quantize_cost(overhead),
        total_cost=quantize_cost(total),
        cost_per_unit=quantize_cost(per_unit),
    )


def estimate_recipe_cost(recipe) -> Decimal:
    """Cost of ONE unit of output from current ingredient cost bases. Optional lines excluded."""
    total = ZERO
    for line in recipe.required_lines():
        total += to_decimal(line.ingredient.unit_cost) * to_decimal(line.quantity_per_unit)
    return quantize_cost(total)
