from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping

from .errors import InvalidInputError
from .models import PAYMENT_METHODS


# Maximum amount per price/cost field; keeps Numeric(14, x) columns from overflowing
MAX_AMOUNT = Decimal("9999999999.99")


def require_int(value: Any, field: str, *, minimum: int | None = None) -> int:
    """
    Strict integer coercion.

    Accepts ints (not bools) and plain digit strings. Rejects floats,
    decimals, and scientific notation so "2.5" units never become 2.
    """
    if isinstance(value, bool) or value is None:
        raise InvalidInputError(f"{field} must be an integer")

    if isinstance(value, int):
        result = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise InvalidInputError(f"{field} must be an integer")
        if 'e' in stripped.lower():
            raise InvalidInputError(f"{field} must be a plain integer (scientific notation not allowed)")
        if '.' in stripped:
            raise InvalidInputError(f"{field} must be an integer (no decimals)")
        try:
            result = int(stripped)
        except ValueError:
            raise InvalidInputError(f"{field} must be an integer")
    elif isinstance(value, float):
        raise InvalidInputError(f"{field} must be an integer, not a decimal")
    else:
        raise InvalidInputError(f"{field} must be an integer")

    if minimum is not None and result < minimum:
        raise InvalidInputError(f"{field} must be >= {minimum}", details={"field": field, "value": result})
    return result


def require_positive_int(value: Any, field: str) -> int:
    return require_int(value, field, minimum=1)


def require_amount(
    value: Any,
    field: str,
    *,
    minimum: Decimal | int | None = 0,
    allow_none: bool = False,
) -> Decimal | None:
    """Decimal money/cost amount. Floats go through str() to avoid binary noise."""
    if value is None:
        if allow_none:
            return None
        raise InvalidInputError(f"{field} is required")
    if isinstance(value, bool):
        raise InvalidInputError(f"{field} must be a number")

    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        elif isinstance(value, str):
            amount = Decimal(value.strip())
        else:
            amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidInputError(f"{field} must be a number")

    if not amount.is_finite():
        raise InvalidInputError(f"{field} must be a finite number")
    if minimum is not None and amount < Decimal(minimum):
        raise InvalidInputError(f"{field} must be >= {minimum}", details={"field": field, "value": str(amount)})
    if amount > MAX_AMOUNT:
        raise InvalidInputError(f"{field} cannot exceed {MAX_AMOUNT}")
    return amount


def require_text(value: Any, field: str, *, max_length: int | None = None) -> str:
    if value is None:
        raise InvalidInputError(f"{field} is required")
    text = str(value).strip()
    if not text:
        raise InvalidInputError(f"{field} cannot be blank")
    if max_length and len(text) > max_length:
        raise InvalidInputError(f"{field} exceeds max length {max_length}")
    return text


def optional_text(value: Any, *, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        raise InvalidInputError(f"text exceeds max length {max_length}")
    return text


@dataclass(frozen=True)
class SaleItemInput:
    product_id: int
    product_name: str
    quantity: int
    unit_price: Decimal
    discount: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.quantity * self.unit_price - self.discount


def parse_sale_items(items: Iterable[Mapping[str, Any]] | None) -> list[SaleItemInput]:
    """
    Validate raw sale items ({product_id, product_name, quantity, unit_price, discount?}).

    Raises InvalidInputError naming the offending item position (1-based).
    """
    if items is None:
        raise InvalidInputError("items are required")
    items = list(items)
    if not items:
        raise InvalidInputError("items cannot be empty")

    parsed: list[SaleItemInput] = []
    for position, raw in enumerate(items, start=1):
        if not isinstance(raw, Mapping):
            raise InvalidInputError(f"item {position} must be an object")
        try:
            item = SaleItemInput(
                product_id=require_positive_int(raw.get("product_id"), "product_id"),
                product_name=require_text(raw.get("product_name"), "product_name", max_length=255),
                quantity=require_positive_int(raw.get("quantity"), "quantity"),
                unit_price=require_amount(raw.get("unit_price"), "unit_price"),
                discount=require_amount(raw.get("discount"), "discount", allow_none=True) or Decimal("0"),
            )
            if item.line_total < 0:
                raise InvalidInputError("discount cannot exceed quantity x unit_price")
            parsed.append(item)
        except InvalidInputError as exc:
            raise InvalidInputError(
                f"item {position}: {exc.message}",
                details={"item": position, **exc.details},
            ) from exc
    return parsed


def normalize_payment_method(value: Any) -> str | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    method = str(value).strip().upper()
    if method not in PAYMENT_METHODS:
        raise InvalidInputError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": value},
        )
    return method
