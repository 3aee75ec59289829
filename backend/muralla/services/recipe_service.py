# Overview: Recipe resolution and management; bill-of-materials reads for sales and production.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Mapping

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import InvalidInputError, NotFoundError
from ..models import Product, Recipe, RecipeLine, FulfillmentType
from ..validation import require_amount, require_positive_int, require_text, optional_text
from .costing_service import estimate_recipe_cost
from .unit_of_work import UnitOfWork
"""
Recipe Resolution Rules (authoritative)

- A product's working recipe is its active default recipe.
- create_recipe(is_default=True) clears the flag on the product's other recipes,
  so normally there is exactly one.
- If several active defaults exist anyway, the most recently created wins
  (created_at desc, id desc). The losers are reported in
  RecipeResolution.conflicting_ids and logged as a data-quality warning.
"""


@dataclass(frozen=True)
class RecipeResolution:
    recipe: Recipe
    conflicting_ids: tuple[int, ...] = ()

    @property
    def is_ambiguous(self) -> bool:
        return bool(self.conflicting_ids)


def resolve_default_recipe(product_id: int, tenant_id: int, *, session=None) -> RecipeResolution | None:
    session = session if session is not None else db.session
    candidates = (
        session.query(Recipe)
        .filter(
            Recipe.tenant_id == tenant_id,
            Recipe.product_id == product_id,
            Recipe.is_active.is_(True),
            Recipe.is_default.is_(True),
        )
        .order_by(Recipe.created_at.desc(), Recipe.id.desc())
        .all()
    )
    if not candidates:
        return None

    chosen, others = candidates[0], candidates[1:]
    resolution = RecipeResolution(recipe=chosen, conflicting_ids=tuple(r.id for r in others))
    if resolution.is_ambiguous:
        current_app.logger.warning(
            "Product %s (tenant %s) has %d active default recipes; using recipe %s, ignoring %s",
            product_id, tenant_id, len(candidates), chosen.id, list(resolution.conflicting_ids),
        )
    return resolution


def get_recipe(recipe_id: int, tenant_id: int, *, session=None) -> Recipe:
    session = session if session is not None else db.session
    recipe = session.query(Recipe).filter_by(id=recipe_id, tenant_id=tenant_id).first()
    if recipe is None:
        raise NotFoundError("Recipe", recipe_id)
    return recipe


def list_product_recipes(product_id: int, tenant_id: int, *, include_inactive: bool = False) -> list[Recipe]:
    q = db.session.query(Recipe).filter_by(tenant_id=tenant_id, product_id=product_id)
    if not include_inactive:
        q = q.filter(Recipe.is_active.is_(True))
    return q.order_by(Recipe.is_default.desc(), Recipe.version.desc()).all()


def create_recipe(
    *,
    tenant_id: int,
    product_id: int,
    name: str,
    is_default: bool = False,
    instructions: str | None = None,
    lines: Iterable[Mapping] = (),
) -> Recipe:
    """
    Create a recipe for `product_id`, optionally with lines
    ({ingredient_id, quantity_per_unit, unit_of_measure?, is_optional?, notes?}).
    """
    name = require_text(name, "name", max_length=255)
    lines = list(lines)

    with UnitOfWork(tenant_id) as uow:
        product = uow.get(Product, product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        if product.fulfillment_type == FulfillmentType.SERVICE:
            raise InvalidInputError("SERVICE products cannot have recipes", details={"product_id": product_id})

        latest_version = (
            uow.query(Recipe)
            .filter(Recipe.product_id == product_id)
            .with_entities(func.max(Recipe.version))
            .scalar()
        )

        if is_default:
            for other in uow.query(Recipe).filter(Recipe.product_id == product_id, Recipe.is_default.is_(True)):
                other.is_default = False

        recipe = Recipe(
            tenant_id=tenant_id,
            product_id=product_id,
            name=name,
            version=(latest_version or 0) + 1,
            instructions=optional_text(instructions),
            is_active=True,
            is_default=bool(is_default),
        )
        uow.add(recipe)
        uow.flush()

        for raw in lines:
            _add_line(uow, recipe, **raw)

    return recipe


def add_recipe_line(
    *,
    tenant_id: int,
    recipe_id: int,
    ingredient_id: int,
    quantity_per_unit,
    unit_of_measure: str = "unit",
    is_optional: bool = False,
    notes: str | None = None,
) -> RecipeLine:
    with UnitOfWork(tenant_id) as uow:
        recipe = uow.get(Recipe, recipe_id)
        if recipe is None:
            raise NotFoundError("Recipe", recipe_id)
        line = _add_line(
            uow,
            recipe,
            ingredient_id=ingredient_id,
            quantity_per_unit=quantity_per_unit,
            unit_of_measure=unit_of_measure,
            is_optional=is_optional,
            notes=notes,
        )
    return line


def _add_line(
    uow: UnitOfWork,
    recipe: Recipe,
    *,
    ingredient_id,
    quantity_per_unit,
    unit_of_measure: str = "unit",
    is_optional: bool = False,
    notes: str | None = None,
) -> RecipeLine:
    ingredient_id = require_positive_int(ingredient_id, "ingredient_id")
    quantity = require_amount(quantity_per_unit, "quantity_per_unit", minimum=None)
    if quantity <= 0:
        raise InvalidInputError("quantity_per_unit must be > 0")

    ingredient = uow.get(Product, ingredient_id)
    if ingredient is None:
        raise NotFoundError("Product", ingredient_id, message="Ingredient not found")
    if ingredient.id == recipe.product_id:
        raise InvalidInputError("a recipe cannot consume its own product")
    if not ingredient.fulfillment_type.holds_stock:
        raise InvalidInputError(
            "ingredients must be PRE_STOCKED or MANUFACTURED products",
            details={"ingredient_id": ingredient_id, "fulfillment_type": ingredient.fulfillment_type.value},
        )

    position = max((line.position for line in recipe.lines), default=0) + 1
    line = RecipeLine(
        recipe=recipe,
        ingredient_id=ingredient.id,
        position=position,
        quantity_per_unit=quantity,
        unit_of_measure=require_text(unit_of_measure, "unit_of_measure", max_length=16),
        is_optional=bool(is_optional),
        notes=optional_text(notes, max_length=255),
    )
    uow.add(line)
    uow.flush()
    return line


def get_projected_inventory(product_id: int, tenant_id: int) -> dict:
    """
    How many units of `product_id` current ingredient stock could make.

    can_make = min(floor(available / quantity_per_unit)) over required lines;
    the line giving the minimum is the limiting ingredient.
    """
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    resolution = resolve_default_recipe(product_id, tenant_id) if product else None

    if product is None or resolution is None:
        return {
            "product_id": product_id,
            "product_name": product.name if product else None,
            "can_make": 0,
            "limiting_ingredient": None,
            "recipe": None,
        }

    recipe = resolution.recipe
    can_make = None
    limiting = None
    for line in recipe.required_lines():
        available = line.ingredient.on_hand_quantity
        per_unit = Decimal(line.quantity_per_unit)
        makeable = int(Decimal(available) // per_unit)
        if can_make is None or makeable < can_make:
            can_make = makeable
            limiting = {
                "id": line.ingredient.id,
                "name": line.ingredient.name,
                "available": available,
                "required": str(per_unit.normalize()),
            }

    return {
        "product_id": product.id,
        "product_name": product.name,
        "can_make": can_make or 0,
        "limiting_ingredient": limiting,
        "estimated_unit_cost": str(estimate_recipe_cost(recipe)),
        "recipe": {
            "id": recipe.id,
            "name": recipe.name,
            "ingredients": [
                {
                    "id": line.ingredient.id,
                    "name": line.ingredient.name,
                    "required": str(Decimal(line.quantity_per_unit).normalize()),
                    "available": line.ingredient.on_hand_quantity,
                    "unit": line.unit_of_measure,
                    "is_optional": line.is_optional,
                }
                for line in recipe.lines
            ],
        },
    }


def _load_recipe(uow: UnitOfWork, recipe_id: int, *, lock: bool = False) -> Recipe:
    recipe = uow.get(Recipe, recipe_id, lock=lock)
    if recipe is None:
        raise NotFoundError("Recipe", recipe_id)
    return recipe


def _load_line(uow: UnitOfWork, recipe: Recipe, line_id: int) -> RecipeLine:
    line = uow.session.query(RecipeLine).filter_by(id=line_id, recipe_id=recipe.id).first()
    if line is None:
        raise NotFoundError("RecipeLine", line_id)
    return line


def set_default_recipe(*, tenant_id: int, recipe_id: int) -> Recipe:
    """Make `recipe_id` the product's only default recipe."""
    with UnitOfWork(tenant_id) as uow:
        recipe = _load_recipe(uow, recipe_id, lock=True)
        if not recipe.is_active:
            raise InvalidInputError("Cannot make an inactive recipe the default", details={"recipe_id": recipe.id})

        for other in uow.query(Recipe).filter(
            Recipe.product_id == recipe.product_id,
            Recipe.id != recipe.id,
            Recipe.is_default.is_(True),
        ):
            other.is_default = False
        recipe.is_default = True

    current_app.logger.info("Recipe %s is now the default for product %s (tenant %s)",
                            recipe.id, recipe.product_id, tenant_id)
    return recipe


def deactivate_recipe(*, tenant_id: int, recipe_id: int) -> Recipe:
    """
    Soft-delete a recipe. It also stops being the default, so a MADE_TO_ORDER
    product left without another default can no longer be sold.
    """
    with UnitOfWork(tenant_id) as uow:
        recipe = _load_recipe(uow, recipe_id, lock=True)
        recipe.is_active = False
        recipe.is_default = False
    return recipe


def update_recipe_line(
    *,
    tenant_id: int,
    recipe_id: int,
    line_id: int,
    quantity_per_unit=None,
    unit_of_measure: str | None = None,
    is_optional: bool | None = None,
    notes: str | None = None,
) -> RecipeLine:
    """Change the given fields of one line; arguments left as None are kept."""
    with UnitOfWork(tenant_id) as uow:
        recipe = _load_recipe(uow, recipe_id)
        line = _load_line(uow, recipe, line_id)

        if quantity_per_unit is not None:
            quantity = require_amount(quantity_per_unit, "quantity_per_unit", minimum=None)
            if quantity <= 0:
                raise InvalidInputError("quantity_per_unit must be > 0")
            line.quantity_per_unit = quantity
        if unit_of_measure is not None:
            line.unit_of_measure = require_text(unit_of_measure, "unit_of_measure", max_length=16)
        if is_optional is not None:
            line.is_optional = bool(is_optional)
        if notes is not None:
            line.notes = optional_text(notes, max_length=255)
    return line


def remove_recipe_line(*, tenant_id: int, recipe_id: int, line_id: int) -> None:
    with UnitOfWork(tenant_id) as uow:
        recipe = _load_recipe(uow, recipe_id)
        line = _load_line(uow, recipe, line_id)
        recipe.lines.remove(line)


def duplicate_recipe(*, tenant_id: int, recipe_id: int) -> Recipe:
    """
    Copy a recipe and its lines as the product's next version.

    The copy is active but not the default; promote it with set_default_recipe.
    """
    with UnitOfWork(tenant_id) as uow:
        original = _load_recipe(uow, recipe_id)
        latest_version = (
            uow.query(Recipe)
            .filter(Recipe.product_id == original.product_id)
            .with_entities(func.max(Recipe.version))
            .scalar()
        )
        version = (latest_version or 0) + 1

        copy = Recipe(
            tenant_id=tenant_id,
            product_id=original.product_id,
            name=f"{original.name} v{version}"[:255],
            version=version,
            instructions=original.instructions,
            is_active=True,
            is_default=False,
        )
        for line in original.lines:
            copy.lines.append(
                RecipeLine(
                    ingredient_id=line.ingredient_id,
                    position=line.position,
                    quantity_per_unit=line.quantity_per_unit,
                    unit_of_measure=line.unit_of_measure,
                    is_optional=line.is_optional,
                    notes=line.notes,
                )
            )
        uow.add(copy)
    return copy


def get_all_projected_inventory(tenant_id: int) -> list[dict]:
    """Projected inventory for every active product that has an active default recipe."""
    product_ids = [
        row.id
        for row in (
            db.session.query(Product.id)
            .join(Recipe, Recipe.product_id == Product.id)
            .filter(
                Product.tenant_id == tenant_id,
                Product.is_active.is_(True),
                Recipe.tenant_id == tenant_id,
                Recipe.is_active.is_(True),
                Recipe.is_default.is_(True),
            )
            .distinct()
            .order_by(Product.id)
            .all()
        )
    ]
    return [get_projected_inventory(product_id, tenant_id) for product_id in product_ids]
