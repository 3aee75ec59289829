# Overview: Sale processing with per-fulfillment-type stock effects; sales reads and stats.

from __future__ import annotations

from collections import defaultdict
from decimal import Decimal
from typing import Callable

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import InsufficientStockError, InvalidInputError, NotFoundError
from ..models import (
    Product,
    FulfillmentType,
    Tenant,
    Transaction,
    TransactionItem,
    IngredientConsumption,
    MovementType,
    ReferenceType,
)
from ..time_utils import apply_date_range
from ..validation import SaleItemInput, parse_sale_items, normalize_payment_method, optional_text
from .availability_service import recipe_requirements, shortfalls_for
from .concurrency import lock_for_update
from .costing_service import line_cost, quantize_money
from .ledger_service import append_movement
from .recipe_service import resolve_default_recipe
from .stock_service import take_stock
from .unit_of_work import UnitOfWork
"""
Sale Invariants (authoritative)

- A sale is all-or-nothing: the transaction, its items, every stock decrement,
  every ledger movement and every ingredient consumption commit together or
  not at all.
- PRE_STOCKED / MANUFACTURED stock is decremented with a conditional update at
  write time; an earlier availability check is advisory only.
- MADE_TO_ORDER checks every required ingredient before consuming any. Each
  ingredient is rounded to whole units once, over all its lines, and the check
  compares on-hand with that same figure.
- SERVICE lines have no stock effect.
- Every product row the sale touches, recipe ingredients included, is locked up
  front in one id-ordered query.
- tax = subtotal x tenant.tax_rate_bps / 10000; total = subtotal + tax.
"""


def _sell_stocked(uow: UnitOfWork, sale: Transaction, item: TransactionItem, product: Product) -> None:
    take_stock(uow, product, item.quantity)
    append_movement(
        uow,
        product_id=product.id,
        movement_type=MovementType.SALE,
        quantity=-item.quantity,
        reference_type=ReferenceType.TRANSACTION,
        reference_id=sale.id,
        cost=line_cost(product.unit_cost, item.quantity),
        note=f"Sale #{sale.id}",
        created_by_id=sale.created_by_id,
    )


def _sell_made_to_order(uow: UnitOfWork, sale: Transaction, item: TransactionItem, product: Product) -> None:
    resolution = resolve_default_recipe(product.id, uow.tenant_id, session=uow.session)
    if resolution is None:
        raise NotFoundError(
            "Recipe",
            None,
            message=f"No recipe configured for MADE_TO_ORDER product: {product.name}",
        )
    recipe = resolution.recipe

    # Ingredient rows were locked with the sale's products in _lock_sale_rows
    requirements = recipe_requirements(recipe, item.quantity)
    shortfalls = shortfalls_for(requirements)
    if shortfalls:
        raise InsufficientStockError(shortfalls)

    for req in requirements:
        ingredient = req.ingredient
        take_stock(uow, ingredient, req.units, required=req.needed_on_hand)

        for line, required, units in zip(req.lines, req.line_required, req.line_units):
            cost = line_cost(ingredient.unit_cost, required)
            uow.add(
                IngredientConsumption(
                    tenant_id=uow.tenant_id,
                    transaction_id=sale.id,
                    transaction_item_id=item.id,
                    product_id=product.id,
                    recipe_id=recipe.id,
                    ingredient_id=ingredient.id,
                    quantity_required=required,
                    quantity_deducted=units,
                    unit_of_measure=line.unit_of_measure,
                    cost=cost,
                )
            )
            append_movement(
                uow,
                product_id=ingredient.id,
                movement_type=MovementType.SALE_CONSUMPTION,
                quantity=-units,
                reference_type=ReferenceType.TRANSACTION,
                reference_id=sale.id,
                cost=cost,
                note=f"Sale #{sale.id}: {product.name} x{item.quantity}",
                created_by_id=sale.created_by_id,
            )


def _sell_service(uow: UnitOfWork, sale: Transaction, item: TransactionItem, product: Product) -> None:
    return None


_SALE_HANDLERS: dict[FulfillmentType, Callable[[UnitOfWork, Transaction, TransactionItem, Product], None]] = {
    FulfillmentType.PRE_STOCKED: _sell_stocked,
    FulfillmentType.MANUFACTURED: _sell_stocked,
    FulfillmentType.MADE_TO_ORDER: _sell_made_to_order,
    FulfillmentType.SERVICE: _sell_service,
}

_missing = set(FulfillmentType) - set(_SALE_HANDLERS)
if _missing:
    raise RuntimeError(f"sale handlers missing for: {sorted(t.value for t in _missing)}")


def compute_totals(items: list[SaleItemInput], tax_rate_bps: int) -> dict[str, Decimal]:
    subtotal = sum((item.line_total for item in items), Decimal("0"))
    discount = sum((item.discount for item in items), Decimal("0"))
    tax = subtotal * Decimal(tax_rate_bps) / Decimal(10000)
    return {
        "subtotal": quantize_money(subtotal),
        "discount": quantize_money(discount),
        "tax": quantize_money(tax),
        "total": quantize_money(subtotal) + quantize_money(tax),
    }


def _find_by_idempotency_key(tenant_id: int, idempotency_key: str) -> Transaction | None:
    return (
        db.session.query(Transaction)
        .filter_by(tenant_id=tenant_id, idempotency_key=idempotency_key)
        .first()
    )


def _lock_sale_rows(uow: UnitOfWork, items: list[SaleItemInput]) -> dict[int, Product]:
    """
    Lock every product the sale touches, recipe ingredients included, in one
    id-ordered pass so concurrent sales always acquire rows in the same order.

    Returns the sold products by id; ids missing from the tenant are absent.
    """
    product_ids = {item.product_id for item in items}
    products = uow.query(Product).filter(Product.id.in_(product_ids)).all()

    row_ids = set(product_ids)
    for product in products:
        if product.fulfillment_type != FulfillmentType.MADE_TO_ORDER:
            continue
        resolution = resolve_default_recipe(product.id, uow.tenant_id, session=uow.session)
        if resolution is not None:
            row_ids.update(line.ingredient_id for line in resolution.recipe.required_lines())

    rows = lock_for_update(
        uow.query(Product).filter(Product.id.in_(sorted(row_ids))).order_by(Product.id)
    ).all()
    return {row.id: row for row in rows if row.id in product_ids}


def process_sale(
    *,
    tenant_id: int,
    items,
    customer_id: int | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
    created_by_id: int | None = None,
    idempotency_key: str | None = None,
) -> Transaction:
    """
    Record a sale and apply its stock effects in one unit of work.

    items: [{product_id, product_name, quantity, unit_price, discount?}, ...]

    Raises:
        InvalidInputError: malformed items, unknown payment method, inactive product
        NotFoundError: product missing or in another tenant; MADE_TO_ORDER product without recipe
        InsufficientStockError: any product or ingredient short; nothing is persisted
    """
    parsed = parse_sale_items(items)
    method = normalize_payment_method(payment_method)
    idempotency_key = optional_text(idempotency_key, max_length=128)

    if idempotency_key:
        existing = _find_by_idempotency_key(tenant_id, idempotency_key)
        if existing is not None:
            current_app.logger.info(
                "Sale replay for idempotency key %r (tenant %s) -> transaction %s",
                idempotency_key, tenant_id, existing.id,
            )
            return existing

    try:
        with UnitOfWork(tenant_id) as uow:
            tenant = db.session.query(Tenant).filter_by(id=tenant_id).first()
            if tenant is None:
                raise NotFoundError("Tenant", tenant_id)

            totals = compute_totals(parsed, tenant.tax_rate_bps)
            sale = Transaction(
                tenant_id=tenant_id,
                type="SALE",
                status="COMPLETED",
                customer_id=customer_id,
                subtotal=totals["subtotal"],
                tax=totals["tax"],
                discount=totals["discount"],
                total=totals["total"],
                payment_method=method,
                payment_status="PAID",
                notes=optional_text(notes),
                created_by_id=created_by_id,
                idempotency_key=idempotency_key,
            )
            uow.add(sale)
            uow.flush()

            locked = _lock_sale_rows(uow, parsed)

            for position, line in enumerate(parsed, start=1):
                product = locked.get(line.product_id)
                if product is None:
                    raise NotFoundError("Product", line.product_id)
                if not product.is_active:
                    raise InvalidInputError(
                        f"Product is inactive: {product.name}",
                        details={"product_id": product.id},
                    )

                item = TransactionItem(
                    transaction_id=sale.id,
                    position=position,
                    product_id=product.id,
                    product_name=line.product_name,
                    quantity=line.quantity,
                    unit_price=quantize_money(line.unit_price),
                    discount=quantize_money(line.discount),
                    total_price=quantize_money(line.line_total),
                )
                uow.add(item)
                uow.flush()

                _SALE_HANDLERS[product.fulfillment_type](uow, sale, item, product)
    except IntegrityError:
        # Concurrent call with the same key won the insert
        if idempotency_key:
            existing = _find_by_idempotency_key(tenant_id, idempotency_key)
            if existing is not None:
                return existing
        raise

    current_app.logger.info(
        "Sale %s recorded for tenant %s: %d item(s), total %s",
        sale.id, tenant_id, len(parsed), sale.total,
    )
    return sale


def get_sale(transaction_id: int, tenant_id: int) -> Transaction:
    sale = (
        db.session.query(Transaction)
        .filter_by(id=transaction_id, tenant_id=tenant_id, type="SALE")
        .first()
    )
    if sale is None:
        raise NotFoundError("Transaction", transaction_id)
    return sale


def list_sales(
    *,
    tenant_id: int,
    customer_id: int | None = None,
    status: str | None = None,
    start_date=None,
    end_date=None,
    limit: int | None = None,
) -> list[Transaction]:
    q = db.session.query(Transaction).filter_by(tenant_id=tenant_id, type="SALE")
    if customer_id is not None:
        q = q.filter(Transaction.customer_id == customer_id)
    if status:
        q = q.filter(Transaction.status == status.upper())
    q = apply_date_range(q, Transaction.created_at, start_date, end_date)
    q = q.order_by(Transaction.created_at.desc(), Transaction.id.desc())
    if limit:
        q = q.limit(limit)
    return q.all()


def get_sales_stats(*, tenant_id: int, start_date=None, end_date=None) -> dict:
    """
    Aggregate completed sales: totals, per fulfillment type, and the top 10
    products by revenue.
    """
    q = db.session.query(Transaction).filter_by(tenant_id=tenant_id, type="SALE", status="COMPLETED")
    sales = apply_date_range(q, Transaction.created_at, start_date, end_date).all()

    product_ids = {item.product_id for sale in sales for item in sale.items}
    types = {}
    if product_ids:
        types = dict(
            db.session.query(Product.id, Product.fulfillment_type)
            .filter(Product.tenant_id == tenant_id, Product.id.in_(product_ids))
            .all()
        )

    total_revenue = sum((Decimal(sale.total) for sale in sales), Decimal("0"))
    total_items = 0
    by_type: dict[str, dict] = {}
    per_product: dict[int, dict] = defaultdict(
        lambda: {"product_id": None, "product_name": None, "quantity_sold": 0, "revenue": Decimal("0")}
    )

    for sale in sales:
        for item in sale.items:
            total_items += item.quantity
            ftype = types.get(item.product_id)
            key = ftype.value if ftype is not None else "UNKNOWN"
            bucket = by_type.setdefault(key, {"sales": 0, "quantity": 0, "revenue": Decimal("0")})
            bucket["sales"] += 1
            bucket["quantity"] += item.quantity
            bucket["revenue"] += Decimal(item.total_price)

            entry = per_product[item.product_id]
            entry["product_id"] = item.product_id
            entry["product_name"] = entry["product_name"] or item.product_name
            entry["quantity_sold"] += item.quantity
            entry["revenue"] += Decimal(item.total_price)

    top_products = sorted(per_product.values(), key=lambda e: e["revenue"], reverse=True)[:10]

    return {
        "total_sales": len(sales),
        "total_revenue": quantize_money(total_revenue),
        "total_items": total_items,
        "average_order_value": quantize_money(total_revenue / len(sales)) if sales else Decimal("0.00"),
        "by_fulfillment_type": by_type,
        "top_products": top_products,
    }
