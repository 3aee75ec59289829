# Overview: Stock ledger writes and reads; append-only ProductMovement rows and reconciliation.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func

from ..extensions import db
from ..errors import NotFoundError
from ..models import Product, ProductMovement, MovementType, ReferenceType
from .unit_of_work import UnitOfWork
"""
Stock Ledger Invariants (authoritative)

- Append-only: movements are never updated or deleted.
- Each movement is written in the same DB transaction as the on-hand change it records.
- For every product: SUM(quantity) == on_hand_quantity - opening_quantity.
"""


def append_movement(
    uow: UnitOfWork,
    *,
    product_id: int,
    movement_type: MovementType,
    quantity: int,
    reference_type: ReferenceType,
    reference_id: int | None = None,
    cost=None,
    note: str | None = None,
    created_by_id: int | None = None,
) -> ProductMovement:
    movement = ProductMovement(
        tenant_id=uow.tenant_id,
        product_id=product_id,
        type=movement_type,
        quantity=quantity,
        reference_type=reference_type,
        reference_id=reference_id,
        cost=cost,
        note=note[:255] if note else None,
        created_by_id=created_by_id,
    )
    uow.add(movement)
    uow.flush()  # ensures movement.id is assigned without committing
    return movement


def list_movements(*, tenant_id: int, product_id: int, limit: int = 200) -> list[ProductMovement]:
    _require_product(tenant_id, product_id)
    return (
        db.session.query(ProductMovement)
        .filter_by(tenant_id=tenant_id, product_id=product_id)
        .order_by(ProductMovement.created_at.desc(), ProductMovement.id.desc())
        .limit(limit)
        .all()
    )


def movements_for_reference(
    *,
    tenant_id: int,
    reference_type: ReferenceType,
    reference_id: int,
    movement_type: MovementType | None = None,
    session=None,
) -> list[ProductMovement]:
    session = session if session is not None else db.session
    q = session.query(ProductMovement).filter_by(
        tenant_id=tenant_id,
        reference_type=reference_type,
        reference_id=reference_id,
    )
    if movement_type is not None:
        q = q.filter(ProductMovement.type == movement_type)
    return q.order_by(ProductMovement.id.asc()).all()


def ledger_balance(*, tenant_id: int, product_id: int) -> int:
    value = (
        db.session.query(func.coalesce(func.sum(ProductMovement.quantity), 0))
        .filter(
            ProductMovement.tenant_id == tenant_id,
            ProductMovement.product_id == product_id,
        )
        .scalar()
    )
    return int(value or 0)


def reconcile_product(*, tenant_id: int, product_id: int) -> dict:
    """
    Compare the catalog quantity with the ledger.

    balanced is True when SUM(movements) == on_hand_quantity - opening_quantity.
    """
    product = _require_product(tenant_id, product_id)
    ledger_sum = ledger_balance(tenant_id=tenant_id, product_id=product_id)
    expected = product.on_hand_quantity - product.opening_quantity
    discrepancy = expected - ledger_sum

    if discrepancy:
        current_app.logger.warning(
            "Ledger discrepancy for product %s (tenant %s): on_hand=%s opening=%s ledger=%s",
            product.id, tenant_id, product.on_hand_quantity, product.opening_quantity, ledger_sum,
        )

    return {
        "tenant_id": tenant_id,
        "product_id": product.id,
        "sku": product.sku,
        "on_hand_quantity": product.on_hand_quantity,
        "opening_quantity": product.opening_quantity,
        "ledger_sum": ledger_sum,
        "discrepancy": discrepancy,
        "balanced": discrepancy == 0,
    }


def _require_product(tenant_id: int, product_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise NotFoundError("Product", product_id)
    return product
