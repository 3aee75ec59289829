# Overview: Error taxonomy shared by the sales and production services.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


class MurallaError(Exception):
    """Base class for core errors. `details` is JSON-friendly structured context."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(MurallaError):
    """Referenced product, recipe, sale or batch is missing or belongs to another tenant."""

    def __init__(self, entity: str, entity_id, message: str | None = None):
        super().__init__(
            message or f"{entity} not found",
            details={"entity": entity, "entity_id": entity_id},
        )
        self.entity = entity
        self.entity_id = entity_id


@dataclass(frozen=True)
class Shortfall:
    product_id: int
    product_name: str
    available: int
    required: Decimal

    def describe(self) -> str:
        return f"{self.product_name} (available {self.available}, required {format_quantity(self.required)})"

    def to_dict(self) -> dict:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "available": self.available,
            "required": str(format_quantity(self.required)),
        }


class InsufficientStockError(MurallaError):
    """One or more products lack on-hand quantity. Lists every shortfall found."""

    def __init__(self, shortfalls: list[Shortfall], message: str | None = None):
        if not message:
            message = "Insufficient stock: " + ", ".join(s.describe() for s in shortfalls)
        super().__init__(message, details={"shortfalls": [s.to_dict() for s in shortfalls]})
        self.shortfalls = list(shortfalls)

    @property
    def product_name(self) -> str:
        return self.shortfalls[0].product_name

    @property
    def available(self) -> int:
        return self.shortfalls[0].available

    @property
    def required(self) -> Decimal:
        return self.shortfalls[0].required


class InvalidStateError(MurallaError):
    """Operation attempted on a batch whose status does not allow it."""

    def __init__(self, current_status: str, attempted_status: str, message: str | None = None):
        super().__init__(
            message or f"Cannot transition batch from {current_status} to {attempted_status}",
            details={"current_status": current_status, "attempted_status": attempted_status},
        )
        self.current_status = current_status
        self.attempted_status = attempted_status


class InvalidInputError(MurallaError, ValueError):
    """400-level input problem."""


class ConflictError(InvalidInputError):
    """409-level business rule conflict (e.g., duplicate SKU)."""


def format_quantity(value) -> Decimal | int:
    # 0.6000 -> 0.6, 20.0000 -> 20
    if isinstance(value, Decimal):
        normalized = value.normalize()
        if normalized == normalized.to_integral_value():
            return int(normalized)
        return normalized
    return value
