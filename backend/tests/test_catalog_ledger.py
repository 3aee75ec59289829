"""
Catalog operations, tenants and the stock ledger.

Every on-hand change must be explained by a movement:
SUM(movements) == on_hand_quantity - opening_quantity.
"""

import pytest

from muralla.errors import ConflictError, InsufficientStockError, InvalidInputError, NotFoundError
from muralla.models import FulfillmentType, MovementType, Product, ProductMovement, ReferenceType
from muralla.services import catalog_service, ledger_service, production_service, sales_service, tenant_service


def _sell(tenant, product, quantity):
    return sales_service.process_sale(
        tenant_id=tenant.id,
        items=[{
            "product_id": product.id,
            "product_name": product.name,
            "quantity": quantity,
            "unit_price": "100",
        }],
    )


class TestTenants:

    def test_duplicate_code_conflicts(self, tenant):
        with pytest.raises(ConflictError):
            tenant_service.create_tenant(name="Copy", code="muralla")

    def test_defaults_from_config(self, app, db_session):
        t = tenant_service.create_tenant(name="Plain")
        assert t.tax_rate_bps == app.config["DEFAULT_TAX_RATE_BPS"]
        assert t.timezone == app.config["DEFAULT_TENANT_TIMEZONE"]

    @pytest.mark.parametrize("bps", [-1, "1900", True])
    def test_bad_tax_rate(self, db_session, bps):
        with pytest.raises(InvalidInputError):
            tenant_service.create_tenant(name="Bad", tax_rate_bps=bps)

    def test_unknown_tenant(self, db_session):
        with pytest.raises(NotFoundError):
            tenant_service.get_tenant(999)


class TestProducts:

    def test_sku_is_normalized(self, tenant, make_product):
        beans = make_product(tenant, " beans-1 ", name="Beans")
        assert beans.sku == "BEANS-1"
        assert catalog_service.get_product_by_sku("beans-1", tenant.id).id == beans.id

    def test_duplicate_sku_conflicts(self, tenant, make_product):
        make_product(tenant, "BEANS")
        with pytest.raises(ConflictError):
            make_product(tenant, "beans")

    def test_same_sku_in_two_tenants(self, tenant, other_tenant, make_product):
        a = make_product(tenant, "BEANS")
        b = make_product(other_tenant, "BEANS")
        assert a.id != b.id

    def test_service_cannot_start_with_stock(self, tenant, make_product):
        with pytest.raises(InvalidInputError):
            make_product(tenant, "DELIVERY", fulfillment_type=FulfillmentType.SERVICE, quantity=3)

    def test_fulfillment_type_from_string(self, tenant, make_product):
        latte = make_product(tenant, "LATTE", fulfillment_type="made_to_order")
        assert latte.fulfillment_type == FulfillmentType.MADE_TO_ORDER

    def test_unknown_fulfillment_type(self, tenant, make_product):
        with pytest.raises(InvalidInputError):
            make_product(tenant, "X", fulfillment_type="DROPSHIP")

    def test_opening_quantity_has_no_movement(self, tenant, make_product):
        beans = make_product(tenant, "BEANS", quantity=12)
        assert beans.opening_quantity == 12
        assert ledger_service.list_movements(tenant_id=tenant.id, product_id=beans.id) == []
        assert ledger_service.reconcile_product(tenant_id=tenant.id, product_id=beans.id)["balanced"]

    def test_list_products_hides_inactive(self, tenant, make_product):
        beans = make_product(tenant, "BEANS", name="Beans")
        make_product(tenant, "TEA", name="Tea")
        catalog_service.deactivate_product(tenant_id=tenant.id, product_id=beans.id)

        assert [p.name for p in catalog_service.list_products(tenant_id=tenant.id)] == ["Tea"]
        everything = catalog_service.list_products(tenant_id=tenant.id, include_inactive=True)
        assert [p.name for p in everything] == ["Beans", "Tea"]

    def test_get_product_other_tenant(self, tenant, other_tenant, make_product):
        beans = make_product(tenant, "BEANS")
        with pytest.raises(NotFoundError):
            catalog_service.get_product(beans.id, other_tenant.id)


class TestAdjustStock:

    def test_positive_adjustment_writes_movement(self, tenant, make_product, db_session):
        beans = make_product(tenant, "BEANS", quantity=2, unit_cost="3")
        catalog_service.adjust_stock(tenant_id=tenant.id, product_id=beans.id, quantity_delta=5, note="Delivery")

        assert db_session.get(Product, beans.id).on_hand_quantity == 7
        (movement,) = ledger_service.list_movements(tenant_id=tenant.id, product_id=beans.id)
        assert movement.type == MovementType.ADJUSTMENT
        assert movement.reference_type == ReferenceType.MANUAL
        assert movement.quantity == 5
        assert movement.note == "Delivery"

    def test_cannot_go_negative(self, tenant, make_product, db_session):
        beans = make_product(tenant, "BEANS", quantity=2)

        with pytest.raises(InsufficientStockError) as exc:
            catalog_service.adjust_stock(tenant_id=tenant.id, product_id=beans.id, quantity_delta=-3)

        assert exc.value.available == 2
        assert db_session.get(Product, beans.id).on_hand_quantity == 2
        assert ledger_service.list_movements(tenant_id=tenant.id, product_id=beans.id) == []

    def test_zero_delta_rejected(self, tenant, make_product):
        beans = make_product(tenant, "BEANS", quantity=2)
        with pytest.raises(InvalidInputError):
            catalog_service.adjust_stock(tenant_id=tenant.id, product_id=beans.id, quantity_delta=0)

    def test_service_has_no_stock(self, tenant, make_product):
        delivery = make_product(tenant, "DELIVERY", fulfillment_type=FulfillmentType.SERVICE)
        with pytest.raises(InvalidInputError):
            catalog_service.adjust_stock(tenant_id=tenant.id, product_id=delivery.id, quantity_delta=1)


class TestLedger:

    def test_reconciles_after_mixed_operations(self, tenant, bread_setup, latte, make_product, db_session):
        beans = make_product(tenant, "BEANS", quantity=10)
        _sell(tenant, beans, 3)
        catalog_service.adjust_stock(tenant_id=tenant.id, product_id=beans.id, quantity_delta=4)
        _sell(tenant, latte["latte"], 4)

        batch = production_service.create_batch(
            tenant_id=tenant.id,
            recipe_id=bread_setup["recipe"].id,
            product_id=bread_setup["bread"].id,
            planned_quantity=5,
        )
        production_service.start_production(tenant_id=tenant.id, batch_id=batch.id)
        production_service.complete_production(tenant_id=tenant.id, batch_id=batch.id, actual_quantity=5)
        _sell(tenant, bread_setup["bread"], 2)

        for product in (beans, latte["milk"], latte["syrup"], bread_setup["flour"], bread_setup["bread"]):
            report = ledger_service.reconcile_product(tenant_id=tenant.id, product_id=product.id)
            assert report["balanced"], report

        assert ledger_service.ledger_balance(tenant_id=tenant.id, product_id=beans.id) == 1
        assert ledger_service.ledger_balance(tenant_id=tenant.id, product_id=bread_setup["bread"].id) == 3
        # Every movement type is written by some operation
        assert {m.type for m in db_session.query(ProductMovement)} == set(MovementType)

    def test_discrepancy_is_reported_and_logged(self, tenant, make_product, db_session, caplog):
        beans = make_product(tenant, "BEANS", quantity=10)
        # Out-of-band write that bypasses the ledger
        db_session.get(Product, beans.id).on_hand_quantity = 7
        db_session.commit()

        report = ledger_service.reconcile_product(tenant_id=tenant.id, product_id=beans.id)

        assert report["balanced"] is False
        assert report["discrepancy"] == -3
        assert "Ledger discrepancy" in caplog.text

    def test_movements_newest_first(self, tenant, make_product):
        beans = make_product(tenant, "BEANS", quantity=10)
        catalog_service.adjust_stock(tenant_id=tenant.id, product_id=beans.id, quantity_delta=1)
        catalog_service.adjust_stock(tenant_id=tenant.id, product_id=beans.id, quantity_delta=-2)

        quantities = [m.quantity for m in ledger_service.list_movements(tenant_id=tenant.id, product_id=beans.id)]
        assert quantities == [-2, 1]

    def test_movements_of_other_tenant_product(self, tenant, other_tenant, make_product):
        beans = make_product(tenant, "BEANS", quantity=10)
        with pytest.raises(NotFoundError):
            ledger_service.list_movements(tenant_id=other_tenant.id, product_id=beans.id)
