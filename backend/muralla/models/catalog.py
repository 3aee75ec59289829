from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class FulfillmentType(str, enum.Enum):
    """How a sold unit is fulfilled; decides the stock strategy at sale time."""
    PRE_STOCKED = "PRE_STOCKED"
    MANUFACTURED = "MANUFACTURED"
    MADE_TO_ORDER = "MADE_TO_ORDER"
    SERVICE = "SERVICE"

    @property
    def holds_stock(self) -> bool:
        return self in (FulfillmentType.PRE_STOCKED, FulfillmentType.MANUFACTURED)


class Product(db.Model):
    """
    Product catalog entry.

    MULTI-TENANT: SKUs are unique within a tenant: UniqueConstraint("tenant_id", "sku").

    STOCK:
    - on_hand_quantity is the current whole-unit quantity. It only moves through
      conditional updates in stock_service, each paired with a ProductMovement.
    - opening_quantity is the seed quantity at creation. The ledger invariant is
      SUM(movements.quantity) == on_hand_quantity - opening_quantity.
    - SERVICE products never hold stock.

    unit_cost is the cost basis. Completed production batches overwrite it with
    the batch's realized cost per unit.

    Products are never deleted; is_active=False is a soft deactivation.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sku", name="uq_products_tenant_sku"),
        db.CheckConstraint("on_hand_quantity >= 0", name="ck_products_on_hand_non_negative"),
        db.Index("ix_products_tenant_name", "tenant_id", "name"),
        db.Index("ix_products_tenant_active", "tenant_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    sku = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)

    fulfillment_type = db.Column(
        db.Enum(FulfillmentType, name="fulfillment_type", native_enum=False, length=32),
        nullable=False,
        default=FulfillmentType.PRE_STOCKED,
        index=True,
    )

    on_hand_quantity = db.Column(db.Integer, nullable=False, default=0)
    opening_quantity = db.Column(db.Integer, nullable=False, default=0)

    unit_cost = db.Column(db.Numeric(14, 4), nullable=True)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    unit_of_measure = db.Column(db.String(16), nullable=False, default="unit")

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    tenant = db.relationship("Tenant", backref=db.backref("products", lazy=True))

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r} tenant_id={self.tenant_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "sku": self.sku,
            "name": self.name,
            "description": self.description,
            "fulfillment_type": self.fulfillment_type.value,
            "on_hand_quantity": self.on_hand_quantity,
            "opening_quantity": self.opening_quantity,
            "unit_cost": str(self.unit_cost) if self.unit_cost is not None else None,
            "unit_price": str(self.unit_price) if self.unit_price is not None else None,
            "unit_of_measure": self.unit_of_measure,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
