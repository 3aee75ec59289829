"""
Pytest fixtures for Muralla core tests.

Provides the application on in-memory SQLite, a per-test table wipe, two
tenants for isolation checks, and small product/recipe factories.
"""

import pytest
from decimal import Decimal

from muralla import create_app
from muralla.extensions import db
from muralla.models import FulfillmentType
from muralla.services import catalog_service, recipe_service, tenant_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_ROUNDING': 'FLOOR',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def tenant(db_session):
    """Tenant A: 19% VAT, Santiago time."""
    return tenant_service.create_tenant(name="Cafe Muralla", code="MURALLA", tax_rate_bps=1900, timezone="America/Santiago")


@pytest.fixture(scope='function')
def other_tenant(db_session):
    """Tenant B, used to prove nothing crosses tenant boundaries."""
    return tenant_service.create_tenant(name="Otro Cafe", code="OTRO", tax_rate_bps=1900, timezone="UTC")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(tenant, sku, **overrides) -> Product."""
    def _make(tenant, sku, name=None, fulfillment_type=FulfillmentType.PRE_STOCKED, quantity=0,
              unit_cost=None, unit_price=0):
        return catalog_service.create_product(
            tenant_id=tenant.id,
            sku=sku,
            name=name or sku.title(),
            fulfillment_type=fulfillment_type,
            initial_quantity=quantity,
            unit_cost=unit_cost,
            unit_price=unit_price,
        )
    return _make


@pytest.fixture(scope='function')
def make_recipe(db_session):
    """Factory: make_recipe(tenant, product, [(ingredient, qty_per_unit[, optional]), ...]) -> default Recipe."""
    def _make(tenant, product, lines, name=None, is_default=True):
        return recipe_service.create_recipe(
            tenant_id=tenant.id,
            product_id=product.id,
            name=name or f"{product.name} recipe",
            is_default=is_default,
            lines=[
                {
                    "ingredient_id": line[0].id,
                    "quantity_per_unit": Decimal(str(line[1])),
                    "is_optional": line[2] if len(line) > 2 else False,
                }
                for line in lines
            ],
        )
    return _make


@pytest.fixture(scope='function')
def latte(tenant, make_product, make_recipe):
    """MADE_TO_ORDER Latte: 0.2 Milk per unit (Milk stock 1), optional Syrup 1 per unit (stock 0)."""
    milk = make_product(tenant, "MILK", name="Milk", quantity=1, unit_cost="1000")
    syrup = make_product(tenant, "SYRUP", name="Syrup", quantity=0, unit_cost="50")
    latte = make_product(tenant, "LATTE", name="Latte", fulfillment_type=FulfillmentType.MADE_TO_ORDER, unit_price="3500")
    recipe = make_recipe(tenant, latte, [(milk, "0.2"), (syrup, "1", True)])
    return {"milk": milk, "syrup": syrup, "latte": latte, "recipe": recipe}


@pytest.fixture(scope='function')
def bread_setup(tenant, make_product, make_recipe):
    """MANUFACTURED Bread: 2 Flour per unit; Flour stock 25 at cost 2.5."""
    flour = make_product(tenant, "FLOUR", name="Flour", quantity=25, unit_cost="2.5")
    bread = make_product(tenant, "BREAD", name="Bread", fulfillment_type=FulfillmentType.MANUFACTURED, unit_price="1200")
    recipe = make_recipe(tenant, bread, [(flour, "2")])
    return {"flour": flour, "bread": bread, "recipe": recipe}

