from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


PAYMENT_METHODS = ("CASH", "CARD", "TRANSFER", "OTHER")


def _money(value) -> str | None:
    return str(value) if value is not None else None


class Transaction(db.Model):
    """
    Sale transaction (type=SALE).

    Created atomically with its items and every downstream stock effect in one
    unit of work. Immutable afterwards except for status changes.

    IDEMPOTENCY: idempotency_key is optional and unique per tenant. A retried
    call carrying the same key returns the existing transaction.
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "idempotency_key", name="uq_transactions_tenant_idempotency"),
        db.Index("ix_transactions_tenant_type_created", "tenant_id", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    type = db.Column(db.String(16), nullable=False, default="SALE", index=True)
    status = db.Column(db.String(16), nullable=False, default="COMPLETED", index=True)

    # Customers live outside this core; kept as an opaque reference
    customer_id = db.Column(db.Integer, nullable=True, index=True)

    subtotal = db.Column(db.Numeric(14, 2), nullable=False)
    tax = db.Column(db.Numeric(14, 2), nullable=False)
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total = db.Column(db.Numeric(14, 2), nullable=False)

    payment_method = db.Column(db.String(16), nullable=True)
    payment_status = db.Column(db.String(16), nullable=False, default="PAID")

    notes = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)
    idempotency_key = db.Column(db.String(128), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    tenant = db.relationship("Tenant")
    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        order_by="TransactionItem.position",
        lazy="selectin",
    )
    ingredient_consumptions = db.relationship(
        "IngredientConsumption",
        back_populates="transaction",
        order_by="IngredientConsumption.id",
        lazy="selectin",
    )

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "type": self.type,
            "status": self.status,
            "customer_id": self.customer_id,
            "subtotal": _money(self.subtotal),
            "tax": _money(self.tax),
            "discount": _money(self.discount),
            "total": _money(self.total),
            "payment_method": self.payment_method,
            "payment_status": self.payment_status,
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "idempotency_key": self.idempotency_key,
            "created_at": to_utc_z(self.created_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["ingredient_consumptions"] = [c.to_dict() for c in self.ingredient_consumptions]
        return data


class TransactionItem(db.Model):
    """Sale line. product_name is a snapshot taken at sale time, not re-derived from the catalog."""
    __tablename__ = "transaction_items"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_transaction_items_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    product_name = db.Column(db.String(255), nullable=False)

    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(db.Numeric(14, 2), nullable=False)
    discount = db.Column(db.Numeric(14, 2), nullable=False, default=0)
    total_price = db.Column(db.Numeric(14, 2), nullable=False)

    transaction = db.relationship("Transaction", back_populates="items")
    product = db.relationship("Product")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "position": self.position,
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "unit_price": _money(self.unit_price),
            "discount": _money(self.discount),
            "total_price": _money(self.total_price),
        }


class IngredientConsumption(db.Model):
    """
    Traceability row for MADE_TO_ORDER sales: which ingredient was taken, for
    which sold product, under which recipe. Never mutated after creation.

    quantity_required is the fractional recipe math; quantity_deducted is the
    whole-unit amount actually removed from stock under the rounding policy.
    """
    __tablename__ = "ingredient_consumptions"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    transaction_id = db.Column(db.Integer, db.ForeignKey("transactions.id"), nullable=False, index=True)
    transaction_item_id = db.Column(db.Integer, db.ForeignKey("transaction_items.id"), nullable=False)

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False)
    recipe_id = db.Column(db.Integer, db.ForeignKey("recipes.id"), nullable=False)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    quantity_required = db.Column(db.Numeric(14, 4), nullable=False)
    quantity_deducted = db.Column(db.Integer, nullable=False)
    unit_of_measure = db.Column(db.String(16), nullable=False, default="unit")
    cost = db.Column(db.Numeric(14, 4), nullable=False, default=0)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", back_populates="ingredient_consumptions")
    ingredient = db.relationship("Product", foreign_keys=[ingredient_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "transaction_item_id": self.transaction_item_id,
            "product_id": self.product_id,
            "recipe_id": self.recipe_id,
            "ingredient_id": self.ingredient_id,
            "quantity_required": str(self.quantity_required),
            "quantity_deducted": self.quantity_deducted,
            "unit_of_measure": self.unit_of_measure,
            "cost": _money(self.cost),
            "created_at": to_utc_z(self.created_at),
        }
