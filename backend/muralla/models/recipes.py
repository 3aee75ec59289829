from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class Recipe(db.Model):
    """
    Bill of materials for the product it produces.

    Resolution rule: a product's recipe for sales and availability is its
    active default recipe. At most one should exist; when several do, the
    resolver picks the most recently created and reports the rest.
    """
    __tablename__ = "recipes"
    __table_args__ = (
        db.Index("ix_recipes_tenant_product_default", "tenant_id", "product_id", "is_active", "is_default"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    version = db.Column(db.Integer, nullable=False, default=1)
    instructions = db.Column(db.Text, nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_default = db.Column(db.Boolean, nullable=False, default=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product", foreign_keys=[product_id])
    lines = db.relationship(
        "RecipeLine",
        back_populates="recipe",
        order_by="RecipeLine.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Recipe id={self.id} product_id={self.product_id} name={self.name!r} v{self.version}>"

    def required_lines(self) -> list["RecipeLine"]:
        """Lines that are checked and consumed; optional lines are informational only."""
        return [line for line in self.lines if not line.is_optional]

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "product_id": self.product_id,
            "name": self.name,
            "version": self.version,
            "instructions": self.instructions,
            "is_active": self.is_active,
            "is_default": self.is_default,
            "created_at": to_utc_z(self.created_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class RecipeLine(db.Model):
    __tablename__ = "recipe_lines"
    __table_args__ = (
        db.UniqueConstraint("recipe_id", "position", name="uq_recipe_lines_recipe_position"),
        db.CheckConstraint("quantity_per_unit > 0", name="ck_recipe_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    recipe_id = db.Column(db.Integer, db.ForeignKey("recipes.id"), nullable=False, index=True)
    ingredient_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    position = db.Column(db.Integer, nullable=False)

    # Per ONE unit of output; fractional (e.g. 0.2 L of milk per latte)
    quantity_per_unit = db.Column(db.Numeric(12, 4), nullable=False)
    unit_of_measure = db.Column(db.String(16), nullable=False, default="unit")

    is_optional = db.Column(db.Boolean, nullable=False, default=False)
    notes = db.Column(db.String(255), nullable=True)

    recipe = db.relationship("Recipe", back_populates="lines")
    ingredient = db.relationship("Product", foreign_keys=[ingredient_id], lazy="joined")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "recipe_id": self.recipe_id,
            "ingredient_id": self.ingredient_id,
            "ingredient_name": self.ingredient.name if self.ingredient else None,
            "position": self.position,
            "quantity_per_unit": str(self.quantity_per_unit),
            "unit_of_measure": self.unit_of_measure,
            "is_optional": self.is_optional,
            "notes": self.notes,
        }
