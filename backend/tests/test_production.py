"""
Production batches: planning checks, state machine legality, ingredient
consumption, cost rollup, cancellation restitution and batch numbering.
"""

import re
from datetime import datetime
from decimal import Decimal

import pytest

from muralla.errors import InsufficientStockError, InvalidInputError, InvalidStateError, MurallaError, NotFoundError
from muralla.models import BatchStatus, FulfillmentType, MovementType, Product, ProductionBatch, ProductMovement
from muralla.services import catalog_service, production_service, recipe_service
from muralla.services.document_service import DocumentSequenceError, next_batch_number, next_sequence_number
from muralla.services.ledger_service import reconcile_product
from muralla.services.unit_of_work import UnitOfWork


def _on_hand(db_session, product_id):
    return db_session.get(Product, product_id).on_hand_quantity


def _plan(tenant, setup, quantity=10, notes=None):
    return production_service.create_batch(
        tenant_id=tenant.id,
        recipe_id=setup["recipe"].id,
        product_id=setup["bread"].id,
        planned_quantity=quantity,
        notes=notes,
    )


# =============================================================================
# CREATE
# =============================================================================


class TestCreateBatch:

    def test_creates_planned_batch_without_consuming(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup)

        assert batch.status == BatchStatus.PLANNED
        assert batch.planned_quantity == 10
        assert batch.ingredient_cost is None
        assert batch.total_cost is None
        assert re.fullmatch(r"BATCH-\d{6}-0001", batch.batch_number)
        assert _on_hand(db_session, bread_setup["flour"].id) == 25
        assert db_session.query(ProductMovement).count() == 0

    def test_insufficient_flour_fails(self, tenant, bread_setup, db_session):
        catalog_service.adjust_stock(tenant_id=tenant.id, product_id=bread_setup["flour"].id, quantity_delta=-10)

        with pytest.raises(InsufficientStockError) as exc:
            _plan(tenant, bread_setup)

        assert len(exc.value.shortfalls) == 1
        shortfall = exc.value.shortfalls[0]
        assert (shortfall.product_name, shortfall.available, shortfall.required) == ("Flour", 15, 20)
        assert db_session.query(ProductionBatch).count() == 0

    def test_lists_every_short_ingredient(self, tenant, make_product, make_recipe):
        flour = make_product(tenant, "FLOUR", name="Flour", quantity=5)
        butter = make_product(tenant, "BUTTER", name="Butter", quantity=0)
        croissant = make_product(tenant, "CROISSANT", fulfillment_type=FulfillmentType.MANUFACTURED)
        recipe = make_recipe(tenant, croissant, [(flour, "1"), (butter, "0.5")])

        with pytest.raises(InsufficientStockError) as exc:
            production_service.create_batch(
                tenant_id=tenant.id, recipe_id=recipe.id, product_id=croissant.id, planned_quantity=10,
            )

        assert [s.product_name for s in exc.value.shortfalls] == ["Flour", "Butter"]
        assert "Flour (available 5, required 10)" in exc.value.message
        assert "Butter (available 0, required 5)" in exc.value.message

    @pytest.mark.parametrize("quantity", [0, -3, "2.5"])
    def test_planned_quantity_must_be_positive(self, tenant, bread_setup, quantity):
        with pytest.raises(InvalidInputError):
            _plan(tenant, bread_setup, quantity=quantity)

    def test_recipe_must_produce_the_product(self, tenant, bread_setup, make_product):
        other = make_product(tenant, "BAGUETTE", fulfillment_type=FulfillmentType.MANUFACTURED)
        with pytest.raises(InvalidInputError):
            production_service.create_batch(
                tenant_id=tenant.id, recipe_id=bread_setup["recipe"].id, product_id=other.id, planned_quantity=1,
            )

    def test_inactive_recipe_rejected(self, tenant, bread_setup):
        recipe_service.deactivate_recipe(tenant_id=tenant.id, recipe_id=bread_setup["recipe"].id)
        with pytest.raises(InvalidInputError):
            _plan(tenant, bread_setup, quantity=1)

    def test_recipe_of_other_tenant_not_found(self, other_tenant, bread_setup):
        with pytest.raises(NotFoundError):
            production_service.create_batch(
                tenant_id=other_tenant.id,
                recipe_id=bread_setup["recipe"].id,
                product_id=bread_setup["bread"].id,
                planned_quantity=1,
            )

    def test_batch_numbers_increment_per_day(self, tenant, bread_setup):
        first = _plan(tenant, bread_setup, quantity=1)
        second = _plan(tenant, bread_setup, quantity=1)

        assert first.batch_number.endswith("-0001")
        assert second.batch_number.endswith("-0002")
        assert first.batch_number[:12] == second.batch_number[:12]

    def test_batch_numbers_are_per_tenant(self, tenant, other_tenant, make_product, make_recipe, bread_setup):
        _plan(tenant, bread_setup, quantity=1)
        flour_b = make_product(other_tenant, "FLOUR", quantity=10)
        bread_b = make_product(other_tenant, "BREAD", fulfillment_type=FulfillmentType.MANUFACTURED)
        recipe_b = make_recipe(other_tenant, bread_b, [(flour_b, "1")])

        batch_b = production_service.create_batch(
            tenant_id=other_tenant.id, recipe_id=recipe_b.id, product_id=bread_b.id, planned_quantity=1,
        )
        assert batch_b.batch_number.endswith("-0001")

    def test_batch_date_uses_tenant_timezone(self, tenant, db_session):
        # 02:00 UTC on 18 April is still 17 April in Santiago
        instant = datetime(2026, 4, 18, 2, 0)
        with UnitOfWork(tenant.id) as uow:
            local = next_batch_number(uow, tz_name="America/Santiago", now=instant)
            utc = next_batch_number(uow, tz_name="UTC", now=instant)
        assert local == "BATCH-260417-0001"
        assert utc == "BATCH-260418-0001"

    def test_empty_sequence_key_is_rejected(self, tenant):
        with pytest.raises(MurallaError) as exc:
            with UnitOfWork(tenant.id) as uow:
                next_sequence_number(uow, "")
        assert isinstance(exc.value, DocumentSequenceError)
        assert exc.value.message == "sequence_key is required"


# =============================================================================
# START
# =============================================================================


class TestStartProduction:

    def test_consumes_ingredients_and_sets_cost(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup)

        started = production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        assert started.status == BatchStatus.IN_PROGRESS
        assert started.started_at is not None
        assert started.ingredient_cost == Decimal("50")
        assert _on_hand(db_session, bread_setup["flour"].id) == 5

        movement = db_session.query(ProductMovement).filter_by(product_id=bread_setup["flour"].id).one()
        assert movement.type == MovementType.PRODUCTION_INPUT
        assert movement.quantity == -20
        assert movement.reference_id == batch.id
        assert movement.cost == Decimal("50")

    def test_revalidates_stock_at_start(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup)
        catalog_service.adjust_stock(tenant_id=tenant.id, product_id=bread_setup["flour"].id, quantity_delta=-10)

        with pytest.raises(InsufficientStockError):
            production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        assert db_session.get(ProductionBatch, batch.id).status == BatchStatus.PLANNED
        assert _on_hand(db_session, bread_setup["flour"].id) == 15

    def test_start_twice_is_invalid(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup)
        production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        with pytest.raises(InvalidStateError) as exc:
            production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        assert exc.value.message == "Cannot transition batch from IN_PROGRESS to IN_PROGRESS"
        assert db_session.get(ProductionBatch, batch.id).status == BatchStatus.IN_PROGRESS
        assert _on_hand(db_session, bread_setup["flour"].id) == 5

    def test_unknown_batch(self, tenant):
        with pytest.raises(NotFoundError):
            production_service.start_production(tenant_id=tenant.id, batch_id=9999)

    def test_fractional_lines_follow_rounding_policy(self, app, tenant, make_product, make_recipe, db_session,
                                                    monkeypatch):
        salt = make_product(tenant, "SALT", quantity=10, unit_cost="1")
        pretzel = make_product(tenant, "PRETZEL", fulfillment_type=FulfillmentType.MANUFACTURED)
        recipe = make_recipe(tenant, pretzel, [(salt, "0.25")])
        monkeypatch.setitem(app.config, "STOCK_ROUNDING", "HALF_UP")

        batch = production_service.create_batch(
            tenant_id=tenant.id, recipe_id=recipe.id, product_id=pretzel.id, planned_quantity=6,
        )
        started = production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        # 6 x 0.25 = 1.5 -> 2 units; cost still follows the exact quantity
        assert _on_hand(db_session, salt.id) == 8
        assert started.ingredient_cost == Decimal("1.5")

    def test_repeated_ingredient_is_rounded_once(self, app, tenant, make_product, make_recipe, db_session,
                                                 monkeypatch):
        salt = make_product(tenant, "SALT", quantity=1, unit_cost="1")
        pretzel = make_product(tenant, "PRETZEL", fulfillment_type=FulfillmentType.MANUFACTURED)
        recipe = make_recipe(tenant, pretzel, [(salt, "0.3"), (salt, "0.3")])
        monkeypatch.setitem(app.config, "STOCK_ROUNDING", "CEILING")

        batch = production_service.create_batch(
            tenant_id=tenant.id, recipe_id=recipe.id, product_id=pretzel.id, planned_quantity=1,
        )
        started = production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        # 0.3 + 0.3 = 0.6 -> 1 unit, not 1 + 1
        assert _on_hand(db_session, salt.id) == 0
        assert started.ingredient_cost == Decimal("0.6")
        inputs = db_session.query(ProductMovement).filter_by(
            product_id=salt.id, type=MovementType.PRODUCTION_INPUT,
        ).all()
        assert [m.quantity for m in inputs] == [-1]

        production_service.cancel_batch(tenant_id=tenant.id, batch_id=batch.id)
        assert _on_hand(db_session, salt.id) == 1
        assert reconcile_product(tenant_id=tenant.id, product_id=salt.id)["balanced"]


# =============================================================================
# COMPLETE
# =============================================================================


class TestCompleteProduction:

    def test_cost_rollup_and_output_stock(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup)
        production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        done = production_service.complete_production(
            tenant_id=tenant.id, batch_id=batch.id, actual_quantity=8, labor_cost=10, overhead_cost=5,
        )

        assert done.status == BatchStatus.COMPLETED
        assert done.completed_at is not None
        assert done.actual_quantity == 8
        assert done.total_cost == Decimal("65")
        assert done.cost_per_unit == Decimal("8.125")
        assert done.total_cost == done.ingredient_cost + done.labor_cost + done.overhead_cost

        bread = db_session.get(Product, bread_setup["bread"].id)
        assert bread.on_hand_quantity == 8
        assert bread.unit_cost == Decimal("8.125")

        output = (
            db_session.query(ProductMovement)
            .filter_by(product_id=bread.id, type=MovementType.PRODUCTION_OUTPUT)
            .one()
        )
        assert output.quantity == 8
        assert output.cost == Decimal("65")

    def test_missing_labor_and_overhead_count_as_zero(self, tenant, bread_setup):
        batch = _plan(tenant, bread_setup)
        production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        done = production_service.complete_production(tenant_id=tenant.id, batch_id=batch.id, actual_quantity=10)

        assert done.total_cost == Decimal("50")
        assert done.cost_per_unit == Decimal("5")

    def test_complete_planned_batch_is_invalid(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup)

        with pytest.raises(InvalidStateError):
            production_service.complete_production(tenant_id=tenant.id, batch_id=batch.id, actual_quantity=5)

        assert db_session.get(ProductionBatch, batch.id).status == BatchStatus.PLANNED
        assert _on_hand(db_session, bread_setup["bread"].id) == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"actual_quantity": 0},
            {"actual_quantity": 5, "labor_cost": -1},
            {"actual_quantity": 5, "overhead_cost": "-0.01"},
        ],
    )
    def test_invalid_completion_input(self, tenant, bread_setup, db_session, kwargs):
        batch = _plan(tenant, bread_setup)
        production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        with pytest.raises(InvalidInputError):
            production_service.complete_production(tenant_id=tenant.id, batch_id=batch.id, **kwargs)

        assert db_session.get(ProductionBatch, batch.id).status == BatchStatus.IN_PROGRESS


# =============================================================================
# CANCEL
# =============================================================================


class TestCancelBatch:

    def test_cancel_in_progress_restores_ingredients(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup, notes="Morning run")
        production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)

        cancelled = production_service.cancel_batch(tenant_id=tenant.id, batch_id=batch.id, reason="machine failure")

        assert cancelled.status == BatchStatus.CANCELLED
        assert cancelled.cancelled_at is not None
        assert "machine failure" in cancelled.notes
        assert cancelled.notes.startswith("Morning run")
        assert _on_hand(db_session, bread_setup["flour"].id) == 25

        adjustment = (
            db_session.query(ProductMovement)
            .filter_by(product_id=bread_setup["flour"].id, type=MovementType.ADJUSTMENT)
            .one()
        )
        assert adjustment.quantity == 20
        assert adjustment.reference_id == batch.id
        assert batch.batch_number in adjustment.note
        assert reconcile_product(tenant_id=tenant.id, product_id=bread_setup["flour"].id)["balanced"]

    def test_cancel_planned_has_no_stock_effect(self, tenant, bread_setup, db_session):
        batch = _plan(tenant, bread_setup)

        cancelled = production_service.cancel_batch(tenant_id=tenant.id, batch_id=batch.id)

        assert cancelled.status == BatchStatus.CANCELLED
        assert cancelled.notes == "Cancelled: Not specified"
        assert db_session.query(ProductMovement).count() == 0

    @pytest.mark.parametrize("finish", ["complete", "cancel"])
    def test_terminal_batches_cannot_be_cancelled(self, tenant, bread_setup, db_session, finish):
        batch = _plan(tenant, bread_setup)
        if finish == "complete":
            production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)
            production_service.complete_production(tenant_id=tenant.id, batch_id=batch.id, actual_quantity=10)
        else:
            production_service.cancel_batch(tenant_id=tenant.id, batch_id=batch.id)
        status_before = db_session.get(ProductionBatch, batch.id).status

        with pytest.raises(InvalidStateError):
            production_service.cancel_batch(tenant_id=tenant.id, batch_id=batch.id)

        assert db_session.get(ProductionBatch, batch.id).status == status_before

    def test_cancelled_batch_cannot_start(self, tenant, bread_setup):
        batch = _plan(tenant, bread_setup)
        production_service.cancel_batch(tenant_id=tenant.id, batch_id=batch.id)

        with pytest.raises(InvalidStateError):
            production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)


# =============================================================================
# READS
# =============================================================================


class TestBatchReads:

    def test_get_batch_is_tenant_scoped(self, tenant, other_tenant, bread_setup):
        batch = _plan(tenant, bread_setup, quantity=1)
        assert production_service.get_batch(batch.id, tenant.id).id == batch.id
        with pytest.raises(NotFoundError):
            production_service.get_batch(batch.id, other_tenant.id)

    def test_list_batches_filters(self, tenant, bread_setup):
        first = _plan(tenant, bread_setup, quantity=1)
        second = _plan(tenant, bread_setup, quantity=1)
        production_service.start_production(tenant_id=tenant.id, batch_id=second.id)

        assert [b.id for b in production_service.list_batches(tenant_id=tenant.id)] == [second.id, first.id]
        in_progress = production_service.list_batches(tenant_id=tenant.id, status="IN_PROGRESS")
        assert [b.id for b in in_progress] == [second.id]

    def test_malformed_date_is_invalid_input(self, tenant, bread_setup):
        with pytest.raises(InvalidInputError) as exc:
            production_service.list_batches(tenant_id=tenant.id, end_date="not-a-date")
        assert exc.value.details == {"end_date": "not-a-date"}

        with pytest.raises(InvalidInputError) as exc:
            production_service.get_production_stats(tenant_id=tenant.id, start_date="31/12/2026")
        assert exc.value.message == "start_date must be an ISO date or datetime"

    def test_production_stats(self, tenant, bread_setup):
        one = _plan(tenant, bread_setup, quantity=5)
        production_service.start_production(tenant_id=tenant.id, batch_id=one.id)
        production_service.complete_production(tenant_id=tenant.id, batch_id=one.id, actual_quantity=5, labor_cost=5)

        two = _plan(tenant, bread_setup, quantity=5)
        production_service.start_production(tenant_id=tenant.id, batch_id=two.id)
        production_service.complete_production(tenant_id=tenant.id, batch_id=two.id, actual_quantity=5)

        # Ignored: not completed
        _plan(tenant, bread_setup, quantity=1)

        stats = production_service.get_production_stats(tenant_id=tenant.id)

        # 10 flour x 2.5 = 25 per batch, plus 5 labor on the first
        assert stats["total_batches"] == 2
        assert stats["total_units_produced"] == 10
        assert stats["total_cost"] == Decimal("55")
        assert stats["average_cost_per_unit"] == Decimal("5.5")
        entry = stats["by_product"][bread_setup["bread"].id]
        assert entry["batches"] == 2
        assert entry["units_produced"] == 10
        assert entry["product_name"] == "Bread"
