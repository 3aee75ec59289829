from __future__ import annotations

import enum

from ..extensions import db
from ..time_utils import to_utc_z


class BatchStatus(str, enum.Enum):
    PLANNED = "PLANNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETED, BatchStatus.CANCELLED)


# Only these edges exist; everything else is an InvalidStateError.
BATCH_TRANSITIONS: dict[BatchStatus, frozenset[BatchStatus]] = {
    BatchStatus.PLANNED: frozenset({BatchStatus.IN_PROGRESS, BatchStatus.CANCELLED}),
    BatchStatus.IN_PROGRESS: frozenset({BatchStatus.COMPLETED, BatchStatus.CANCELLED}),
    BatchStatus.COMPLETED: frozenset(),
    BatchStatus.CANCELLED: frozenset(),
}


def _cost(value) -> str | None:
    return str(value) if value is not None else None


class ProductionBatch(db.Model):
    """
    Manufacturing run of a recipe's product.

    LIFECYCLE: PLANNED -> IN_PROGRESS -> COMPLETED, or PLANNED|IN_PROGRESS -> CANCELLED.
    Batches are never deleted; CANCELLED is terminal.

    Cost fields stay NULL until computed: ingredient_cost at start, the rest at completion.
    """
    __tablename__ = "production_batches"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "batch_number", name="uq_production_batches_tenant_number"),
        db.CheckConstraint("planned_quantity > 0", name="ck_production_batches_planned_positive"),
        db.Index("ix_production_batches_tenant_status_created", "tenant_id", "status", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(db.Integer, db.ForeignKey("tenants.id"), nullable=False, index=True)

    # Human-readable: BATCH-YYMMDD-NNNN
    batch_number = db.Column(db.String(32), nullable=False)

    recipe_id = db.Column(db.Integer, db.ForeignKey("recipes.id"), nullable=False, index=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)

    planned_quantity = db.Column(db.Integer, nullable=False)
    actual_quantity = db.Column(db.Integer, nullable=True)

    status = db.Column(
        db.Enum(BatchStatus, name="batch_status", native_enum=False, length=16),
        nullable=False,
        default=BatchStatus.PLANNED,
        index=True,
    )

    ingredient_cost = db.Column(db.Numeric(14, 4), nullable=True)
    labor_cost = db.Column(db.Numeric(14, 4), nullable=True)
    overhead_cost = db.Column(db.Numeric(14, 4), nullable=True)
    total_cost = db.Column(db.Numeric(14, 4), nullable=True)
    cost_per_unit = db.Column(db.Numeric(14, 4), nullable=True)

    started_at = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    cancelled_at = db.Column(db.DateTime(timezone=True), nullable=True)

    notes = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    recipe = db.relationship("Recipe")
    product = db.relationship("Product")

    def __repr__(self) -> str:
        return f"<ProductionBatch id={self.id} number={self.batch_number!r} status={self.status.value}>"

    def can_transition_to(self, target: BatchStatus) -> bool:
        return target in BATCH_TRANSITIONS[self.status]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "batch_number": self.batch_number,
            "recipe_id": self.recipe_id,
            "product_id": self.product_id,
            "planned_quantity": self.planned_quantity,
            "actual_quantity": self.actual_quantity,
            "status": self.status.value,
            "ingredient_cost": _cost(self.ingredient_cost),
            "labor_cost": _cost(self.labor_cost),
            "overhead_cost": _cost(self.overhead_cost),
            "total_cost": _cost(self.total_cost),
            "cost_per_unit": _cost(self.cost_per_unit),
            "started_at": to_utc_z(self.started_at),
            "completed_at": to_utc_z(self.completed_at),
            "cancelled_at": to_utc_z(self.cancelled_at),
            "notes": self.notes,
            "created_by_id": self.created_by_id,
            "created_at": to_utc_z(self.created_at),
        }
