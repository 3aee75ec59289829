from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class MovementType(str, enum.Enum):
    SALE = "SALE"
    SALE_CONSUMPTION = "SALE_CONSUMPTION"
    PRODUCTION_INPUT = "PRODUCTION_INPUT"
    PRODUCTION_OUTPUT = "PRODUCTION_OUTPUT"
    ADJUSTMENT = "ADJUSTMENT"


class ReferenceType(str, enum.Enum):
    TRANSACTION = "TRANSACTION"
    PRODUCTION_BATCH = "PRODUCTION_BATCH"
    MANUAL = "MANUAL"


class ProductMovement(db.Model):
    """
    Stock ledger row: one signed quantity change of one product.

    Append-only. Written in the same DB transaction as the on-hand update it
    records, so SUM(quantity) per product always equals
    on_hand_quantity - opening_quantity.
    """
    __tablename__ = "product_movements"
    __table_args__ = (
        db.Index("ix_product_movements_tenant_product_created", "tenant_id", "product_id", "created_at"),
        db.Index("ix_product_movements_reference", "reference_type", "reference_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    type = db.Column(
        db.Enum(MovementType, name="movement_type", native_enum=False, length=32),
        nullable=False,
        index=True,
    )

    # Signed whole units: negative leaves stock, positive enters it
    quantity = db.Column(db.Integer, nullable=False)

    reference_type = db.Column(
        db.Enum(ReferenceType, name="movement_reference_type", native_enum=False, length=32),
        nullable=False,
    )
    reference_id = db.Column(db.Integer, nullable=True)

    # Cost at the time of the movement (cost basis x quantity)
    cost = db.Column(db.Numeric(14, 4), nullable=True)

    note = db.Column(db.String(255), nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "type": self.type.value,
            "quantity": self.quantity,
            "reference_type": self.reference_type.value,
            "reference_id": self.reference_id,
            "cost": str(self.cost) if self.cost is not None else None,
            "note": self.note,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
