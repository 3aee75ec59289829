# Overview: Product catalog operations: creation, manual stock adjustments, soft deactivation.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import ConflictError, InvalidInputError, NotFoundError
from ..models import Product, FulfillmentType, MovementType, ReferenceType
from ..validation import require_amount, require_int, require_text, optional_text
from .costing_service import line_cost
from .ledger_service import append_movement
from .stock_service import put_stock, take_stock
from .tenant_service import get_tenant
from .unit_of_work import UnitOfWork


def _parse_fulfillment_type(value) -> FulfillmentType:
    if isinstance(value, FulfillmentType):
        return value
    try:
        return FulfillmentType(str(value).strip().upper())
    except ValueError:
        allowed = ", ".join(t.value for t in FulfillmentType)
        raise InvalidInputError(f"fulfillment_type must be one of {allowed}")


def create_product(
    *,
    tenant_id: int,
    sku: str,
    name: str,
    fulfillment_type=FulfillmentType.PRE_STOCKED,
    unit_price=0,
    unit_cost=None,
    initial_quantity: int = 0,
    unit_of_measure: str = "unit",
    description: str | None = None,
) -> Product:
    """
    Create a catalog product.

    initial_quantity seeds on_hand_quantity and opening_quantity without a
    ledger movement; every later change goes through the ledger.
    """
    get_tenant(tenant_id)
    ftype = _parse_fulfillment_type(fulfillment_type)
    initial_quantity = require_int(initial_quantity, "initial_quantity", minimum=0)
    if initial_quantity and not ftype.holds_stock:
        raise InvalidInputError(f"{ftype.value} products cannot hold stock")

    product = Product(
        tenant_id=tenant_id,
        sku=require_text(sku, "sku", max_length=64).upper(),
        name=require_text(name, "name", max_length=255),
        description=optional_text(description),
        fulfillment_type=ftype,
        unit_price=require_amount(unit_price, "unit_price"),
        unit_cost=require_amount(unit_cost, "unit_cost", allow_none=True),
        unit_of_measure=require_text(unit_of_measure, "unit_of_measure", max_length=16),
        on_hand_quantity=initial_quantity,
        opening_quantity=initial_quantity,
        is_active=True,
    )
    db.session.add(product)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"SKU {product.sku!r} already exists", details={"sku": product.sku})
    return product


def get_product(product_id: int, tenant_id: int) -> Product:
    product = db.session.query(Product).filter_by(id=product_id, tenant_id=tenant_id).first()
    if product is None:
        raise NotFoundError("Product", product_id)
    return product


def get_product_by_sku(sku: str, tenant_id: int) -> Product:
    product = db.session.query(Product).filter_by(tenant_id=tenant_id, sku=sku.strip().upper()).first()
    if product is None:
        raise NotFoundError("Product", sku)
    return product


def list_products(*, tenant_id: int, fulfillment_type=None, include_inactive: bool = False) -> list[Product]:
    q = db.session.query(Product).filter_by(tenant_id=tenant_id)
    if fulfillment_type is not None:
        q = q.filter(Product.fulfillment_type == _parse_fulfillment_type(fulfillment_type))
    if not include_inactive:
        q = q.filter(Product.is_active.is_(True))
    return q.order_by(Product.name.asc(), Product.id.asc()).all()


def adjust_stock(
    *,
    tenant_id: int,
    product_id: int,
    quantity_delta: int,
    note: str | None = None,
    created_by_id: int | None = None,
) -> Product:
    """
    Manual stock correction (receiving, shrinkage, physical counts).

    Writes one ADJUSTMENT movement; rejected if it would make on-hand negative.
    """
    quantity_delta = require_int(quantity_delta, "quantity_delta")
    if quantity_delta == 0:
        raise InvalidInputError("quantity_delta must be non-zero")

    with UnitOfWork(tenant_id) as uow:
        product = uow.get(Product, product_id, lock=True)
        if product is None:
            raise NotFoundError("Product", product_id)
        if not product.fulfillment_type.holds_stock:
            raise InvalidInputError(
                f"{product.fulfillment_type.value} products do not hold stock",
                details={"product_id": product_id},
            )

        if quantity_delta > 0:
            put_stock(uow, product, quantity_delta)
        else:
            take_stock(uow, product, -quantity_delta)

        append_movement(
            uow,
            product_id=product.id,
            movement_type=MovementType.ADJUSTMENT,
            quantity=quantity_delta,
            reference_type=ReferenceType.MANUAL,
            cost=line_cost(product.unit_cost, abs(quantity_delta)),
            note=optional_text(note, max_length=255) or "Manual adjustment",
            created_by_id=created_by_id,
        )
    return product


def deactivate_product(*, tenant_id: int, product_id: int) -> Product:
    with UnitOfWork(tenant_id) as uow:
        product = uow.get(Product, product_id, lock=True)
        if product is None:
            raise NotFoundError("Product", product_id)
        product.is_active = False
    return product

