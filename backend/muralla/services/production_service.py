# Overview: Production batch lifecycle (plan, start, complete, cancel) with ingredient consumption and costing.

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientStockError, InvalidInputError, InvalidStateError, NotFoundError
from ..models import (
    Product,
    Recipe,
    Tenant,
    ProductionBatch,
    BatchStatus,
    MovementType,
    ReferenceType,
)
from ..time_utils import apply_date_range, utcnow
from ..validation import require_amount, require_positive_int, optional_text
from .availability_service import find_recipe_shortfalls, recipe_requirements, shortfalls_for
from .concurrency import lock_for_update, run_with_retry
from .costing_service import ZERO, compute_batch_cost, line_cost, quantize_cost, to_decimal
from .document_service import next_batch_number
from .ledger_service import append_movement, movements_for_reference
from .stock_service import put_stock, take_stock
from .unit_of_work import UnitOfWork
"""
Production Batch Invariants (authoritative)

- Legal transitions: PLANNED -> IN_PROGRESS -> COMPLETED, PLANNED|IN_PROGRESS -> CANCELLED.
  Anything else raises InvalidStateError and leaves the persisted status unchanged.
- Ingredients are checked at creation and re-checked, with rows locked, when
  production starts. Every shortfall is reported together.
- Starting consumes, per ingredient, to_stock_units of its summed requirement
  (qty_per_unit x planned_quantity over its required lines), rounded once, with
  one PRODUCTION_INPUT movement each.
- Completing adds actual_quantity to the target product, overwrites its unit_cost
  with the batch cost_per_unit and writes one PRODUCTION_OUTPUT movement.
- Cancelling an IN_PROGRESS batch returns exactly what its PRODUCTION_INPUT
  movements took, as ADJUSTMENT movements.
"""


def _require_transition(batch: ProductionBatch, target: BatchStatus) -> None:
    if not batch.can_transition_to(target):
        raise InvalidStateError(batch.status.value, target.value)


def _load_batch(uow: UnitOfWork, batch_id: int) -> ProductionBatch:
    batch = uow.get(ProductionBatch, batch_id, lock=True)
    if batch is None:
        raise NotFoundError("ProductionBatch", batch_id)
    return batch


def _lock_ingredients(uow: UnitOfWork, recipe: Recipe) -> None:
    ingredient_ids = sorted({line.ingredient_id for line in recipe.required_lines()})
    if ingredient_ids:
        lock_for_update(
            uow.query(Product).filter(Product.id.in_(ingredient_ids)).order_by(Product.id)
        ).all()


def create_batch(
    *,
    tenant_id: int,
    recipe_id: int,
    product_id: int,
    planned_quantity: int,
    notes: str | None = None,
    created_by_id: int | None = None,
) -> ProductionBatch:
    """
    Plan a batch. Nothing is consumed yet.

    Raises:
        InvalidInputError: bad quantity, inactive recipe, recipe/product mismatch
        NotFoundError: recipe or product missing in this tenant
        InsufficientStockError: lists every short ingredient
    """
    planned_quantity = require_positive_int(planned_quantity, "planned_quantity")
    notes = optional_text(notes)

    def _create() -> ProductionBatch:
        with UnitOfWork(tenant_id) as uow:
            tenant = uow.session.query(Tenant).filter_by(id=tenant_id).first()
            if tenant is None:
                raise NotFoundError("Tenant", tenant_id)

            recipe = uow.get(Recipe, recipe_id)
            if recipe is None:
                raise NotFoundError("Recipe", recipe_id)
            product = uow.get(Product, product_id)
            if product is None:
                raise NotFoundError("Product", product_id)

            if not recipe.is_active:
                raise InvalidInputError("Recipe is inactive", details={"recipe_id": recipe.id})
            if recipe.product_id != product.id:
                raise InvalidInputError(
                    "Recipe does not produce this product",
                    details={"recipe_id": recipe.id, "product_id": product.id},
                )
            if not product.fulfillment_type.holds_stock:
                raise InvalidInputError(
                    f"{product.fulfillment_type.value} products cannot be produced in batches",
                    details={"product_id": product.id},
                )

            shortfalls = find_recipe_shortfalls(recipe, planned_quantity)
            if shortfalls:
                raise InsufficientStockError(shortfalls)

            batch = ProductionBatch(
                tenant_id=tenant_id,
                batch_number=next_batch_number(uow, tz_name=tenant.timezone),
                recipe_id=recipe.id,
                product_id=product.id,
                planned_quantity=planned_quantity,
                status=BatchStatus.PLANNED,
                notes=notes,
                created_by_id=created_by_id,
            )
            uow.add(batch)
        return batch

    # Two first-of-the-day creations can race on the sequence insert
    batch = run_with_retry(_create, retry_on=(IntegrityError,))
    current_app.logger.info(
        "Batch %s planned for tenant %s: product %s x%s",
        batch.batch_number, tenant_id, product_id, planned_quantity,
    )
    return batch


def start_production(*, tenant_id: int, batch_id: int) -> ProductionBatch:
    with UnitOfWork(tenant_id) as uow:
        batch = _load_batch(uow, batch_id)
        _require_transition(batch, BatchStatus.IN_PROGRESS)

        recipe = uow.get(Recipe, batch.recipe_id)
        if recipe is None:
            raise NotFoundError("Recipe", batch.recipe_id)

        _lock_ingredients(uow, recipe)
        requirements = recipe_requirements(recipe, batch.planned_quantity)
        shortfalls = shortfalls_for(requirements)
        if shortfalls:
            raise InsufficientStockError(shortfalls)

        ingredient_cost = ZERO
        for req in requirements:
            ingredient = req.ingredient
            cost = line_cost(ingredient.unit_cost, req.required)

            take_stock(uow, ingredient, req.units, required=req.needed_on_hand)
            append_movement(
                uow,
                product_id=ingredient.id,
                movement_type=MovementType.PRODUCTION_INPUT,
                quantity=-req.units,
                reference_type=ReferenceType.PRODUCTION_BATCH,
                reference_id=batch.id,
                cost=cost,
                note=f"Consumed for batch {batch.batch_number}",
                created_by_id=batch.created_by_id,
            )
            ingredient_cost += cost

        batch.ingredient_cost = quantize_cost(ingredient_cost)
        batch.status = BatchStatus.IN_PROGRESS
        batch.started_at = utcnow()

    current_app.logger.info(
        "Batch %s started (tenant %s): ingredient cost %s",
        batch.batch_number, tenant_id, batch.ingredient_cost,
    )
    return batch


def complete_production(
    *,
    tenant_id: int,
    batch_id: int,
    actual_quantity: int,
    labor_cost=None,
    overhead_cost=None,
) -> ProductionBatch:
    actual_quantity = require_positive_int(actual_quantity, "actual_quantity")
    labor = require_amount(labor_cost, "labor_cost", allow_none=True)
    overhead = require_amount(overhead_cost, "overhead_cost", allow_none=True)

    with UnitOfWork(tenant_id) as uow:
        batch = _load_batch(uow, batch_id)
        _require_transition(batch, BatchStatus.COMPLETED)

        product = uow.get(Product, batch.product_id, lock=True)
        if product is None:
            raise NotFoundError("Product", batch.product_id)

        cost = compute_batch_cost(batch.ingredient_cost, actual_quantity, labor, overhead)

        put_stock(uow, product, actual_quantity)
        product.unit_cost = cost.cost_per_unit
        append_movement(
            uow,
            product_id=product.id,
            movement_type=MovementType.PRODUCTION_OUTPUT,
            quantity=actual_quantity,
            reference_type=ReferenceType.PRODUCTION_BATCH,
            reference_id=batch.id,
            cost=cost.total_cost,
            note=f"Production batch {batch.batch_number} completed",
            created_by_id=batch.created_by_id,
        )

        batch.actual_quantity = actual_quantity
        batch.ingredient_cost = cost.ingredient_cost
        batch.labor_cost = cost.labor_cost
        batch.overhead_cost = cost.overhead_cost
        batch.total_cost = cost.total_cost
        batch.cost_per_unit = cost.cost_per_unit
        batch.status = BatchStatus.COMPLETED
        batch.completed_at = utcnow()

    current_app.logger.info(
        "Batch %s completed (tenant %s): %s units, cost per unit %s",
        batch.batch_number, tenant_id, actual_quantity, batch.cost_per_unit,
    )
    return batch


def cancel_batch(*, tenant_id: int, batch_id: int, reason: str | None = None) -> ProductionBatch:
    """
    Cancel a PLANNED or IN_PROGRESS batch.

    An IN_PROGRESS batch gets back every ingredient unit its start consumed.
    """
    reason = optional_text(reason, max_length=500) or "Not specified"

    with UnitOfWork(tenant_id) as uow:
        batch = _load_batch(uow, batch_id)
        _require_transition(batch, BatchStatus.CANCELLED)

        if batch.status == BatchStatus.IN_PROGRESS:
            consumed: dict[int, int] = defaultdict(int)
            costs: dict[int, Decimal] = defaultdict(lambda: ZERO)
            for movement in movements_for_reference(
                tenant_id=tenant_id,
                reference_type=ReferenceType.PRODUCTION_BATCH,
                reference_id=batch.id,
                movement_type=MovementType.PRODUCTION_INPUT,
                session=uow.session,
            ):
                consumed[movement.product_id] += -movement.quantity
                costs[movement.product_id] += to_decimal(movement.cost)

            for ingredient_id in sorted(consumed):
                ingredient = uow.get(Product, ingredient_id, lock=True)
                if ingredient is None:
                    raise NotFoundError("Product", ingredient_id)
                units = consumed[ingredient_id]
                put_stock(uow, ingredient, units)
                append_movement(
                    uow,
                    product_id=ingredient.id,
                    movement_type=MovementType.ADJUSTMENT,
                    quantity=units,
                    reference_type=ReferenceType.PRODUCTION_BATCH,
                    reference_id=batch.id,
                    cost=quantize_cost(costs[ingredient_id]),
                    note=f"Returned from cancelled batch {batch.batch_number}. Reason: {reason}",
                    created_by_id=batch.created_by_id,
                )

        cancel_note = f"Cancelled: {reason}"
        batch.notes = f"{batch.notes}\n\n{cancel_note}" if batch.notes else cancel_note
        batch.status = BatchStatus.CANCELLED
        batch.cancelled_at = utcnow()

    current_app.logger.info("Batch %s cancelled (tenant %s): %s", batch.batch_number, tenant_id, reason)
    return batch


def get_batch(batch_id: int, tenant_id: int) -> ProductionBatch:
    batch = db.session.query(ProductionBatch).filter_by(id=batch_id, tenant_id=tenant_id).first()
    if batch is None:
        raise NotFoundError("ProductionBatch", batch_id)
    return batch


def _parse_status(value) -> BatchStatus:
    if isinstance(value, BatchStatus):
        return value
    try:
        return BatchStatus(str(value).strip().upper())
    except ValueError:
        raise InvalidInputError(f"status must be one of {', '.join(s.value for s in BatchStatus)}")


def list_batches(
    *,
    tenant_id: int,
    status=None,
    product_id: int | None = None,
    start_date=None,
    end_date=None,
) -> list[ProductionBatch]:
    q = db.session.query(ProductionBatch).filter_by(tenant_id=tenant_id)
    if status is not None:
        q = q.filter(ProductionBatch.status == _parse_status(status))
    if product_id is not None:
        q = q.filter(ProductionBatch.product_id == product_id)
    q = apply_date_range(q, ProductionBatch.created_at, start_date, end_date)
    return q.order_by(ProductionBatch.created_at.desc(), ProductionBatch.id.desc()).all()


def get_production_stats(*, tenant_id: int, start_date=None, end_date=None) -> dict:
    """Completed batches only: units produced, total cost, average cost per unit, per-product breakdown."""
    q = db.session.query(ProductionBatch).filter_by(tenant_id=tenant_id, status=BatchStatus.COMPLETED)
    batches = apply_date_range(q, ProductionBatch.completed_at, start_date, end_date).all()

    total_units = sum(b.actual_quantity or 0 for b in batches)
    total_cost = sum((to_decimal(b.total_cost) for b in batches), ZERO)

    by_product: dict[int, dict] = {}
    for batch in batches:
        entry = by_product.setdefault(
            batch.product_id,
            {
                "product_name": batch.product.name if batch.product else None,
                "batches": 0,
                "units_produced": 0,
                "total_cost": ZERO,
            },
        )
        entry["batches"] += 1
        entry["units_produced"] += batch.actual_quantity or 0
        entry["total_cost"] += to_decimal(batch.total_cost)

    return {
        "total_batches": len(batches),
        "total_units_produced": total_units,
        "total_cost": quantize_cost(total_cost),
        "average_cost_per_unit": quantize_cost(total_cost / total_units) if total_units else quantize_cost(ZERO),
        "by_product": by_product,
    }
