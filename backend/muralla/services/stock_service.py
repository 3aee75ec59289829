# Overview: On-hand quantity mutations; the only code that writes Product.on_hand_quantity.

from __future__ import annotations

from decimal import Decimal, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP

from flask import current_app
from sqlalchemy import update

from ..errors import InsufficientStockError, Shortfall
from ..models import Product
from .unit_of_work import UnitOfWork
"""
Stock Invariants (authoritative)

- on_hand_quantity is a whole number and never negative.
- Decrements are conditional: UPDATE ... WHERE on_hand_quantity >= n. A zero
  affected-row count is an InsufficientStockError, so two writers racing past
  an earlier availability check cannot both succeed.
- Fractional recipe quantities become whole units through one rounding policy
  (config STOCK_ROUNDING): FLOOR (default), CEILING or HALF_UP.
"""

ROUNDING_MODES = {
    "FLOOR": ROUND_FLOOR,
    "CEILING": ROUND_CEILING,
    "HALF_UP": ROUND_HALF_UP,
}


def rounding_policy() -> str:
    policy = str(current_app.config.get("STOCK_ROUNDING", "FLOOR")).upper()
    if policy not in ROUNDING_MODES:
        raise ValueError(f"unknown STOCK_ROUNDING policy {policy!r}")
    return policy


def to_stock_units(quantity, policy: str | None = None) -> int:
    """Whole stock units for a (possibly fractional) quantity."""
    mode = ROUNDING_MODES[(policy or rounding_policy()).upper()]
    return int(Decimal(quantity).to_integral_value(rounding=mode))


def current_on_hand(uow: UnitOfWork, product_id: int) -> int:
    value = (
        uow.session.query(Product.on_hand_quantity)
        .filter(Product.id == product_id, Product.tenant_id == uow.tenant_id)
        .scalar()
    )
    return int(value or 0)


def take_stock(uow: UnitOfWork, product: Product, units: int, *, required=None) -> None:
    """
    Remove `units` whole units from `product`.

    `required` is the figure reported in the error when the decrement fails
    (the fractional recipe quantity, if there is one); defaults to `units`.
    """
    uow.ensure_active()
    if units < 0:
        raise ValueError("units must be >= 0")
    if units == 0:
        return

    stmt = (
        update(Product)
        .where(
            Product.id == product.id,
            Product.tenant_id == uow.tenant_id,
            Product.on_hand_quantity >= units,
        )
        .values(on_hand_quantity=Product.on_hand_quantity - units)
        .execution_options(synchronize_session="fetch")
    )
    result = uow.session.execute(stmt)
    if result.rowcount != 1:
        raise InsufficientStockError([
            Shortfall(
                product_id=product.id,
                product_name=product.name,
                available=current_on_hand(uow, product.id),
                required=Decimal(required if required is not None else units),
            )
        ])


def put_stock(uow: UnitOfWork, product: Product, units: int) -> None:
    """Add `units` whole units to `product`."""
    uow.ensure_active()
    if units < 0:
        raise ValueError("units must be >= 0")
    if units == 0:
        return

    stmt = (
        update(Product)
        .where(Product.id == product.id, Product.tenant_id == uow.tenant_id)
        .values(on_hand_quantity=Product.on_hand_quantity + units)
        .execution_options(synchronize_session="fetch")
    )
    result = uow.session.execute(stmt)
    if result.rowcount != 1:
        raise RuntimeError(f"stock increment matched {result.rowcount} rows for product {product.id}")
