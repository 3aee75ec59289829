"""
Threaded races on a file-backed SQLite database.

Each worker runs in its own app context (and so its own session). SQLite
serialises writers, so a loser may see OperationalError ("database is
locked") instead of InsufficientStockError; both count as a refusal.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from muralla import create_app
from muralla.errors import InsufficientStockError
from muralla.extensions import db
from muralla.models import FulfillmentType, Product
from muralla.services import catalog_service, ledger_service, production_service, recipe_service, sales_service, tenant_service


@pytest.fixture
def file_app(tmp_path):
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'concurrency.db'}",
    })
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def _run_threads(app, targets):
    results = []
    lock = threading.Lock()

    def worker(target):
        with app.app_context():
            try:
                value = target()
                with lock:
                    results.append(value)
            except (InsufficientStockError, OperationalError) as exc:
                with lock:
                    results.append(exc)
            finally:
                db.session.remove()

    threads = [threading.Thread(target=worker, args=(t,)) for t in targets]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return results


def test_concurrent_sales_cannot_oversell(file_app):
    with file_app.app_context():
        tenant = tenant_service.create_tenant(name="Race Cafe", code="RACE")
        beans = catalog_service.create_product(
            tenant_id=tenant.id, sku="BEANS", name="Beans", initial_quantity=10, unit_price="1000",
        )
        tenant_id, product_id = tenant.id, beans.id

    def sell():
        return sales_service.process_sale(
            tenant_id=tenant_id,
            items=[{"product_id": product_id, "product_name": "Beans", "quantity": 6, "unit_price": "1000"}],
        ).id

    results = _run_threads(file_app, [sell, sell])

    successes = [r for r in results if isinstance(r, int)]
    assert len(results) == 2
    assert len(successes) <= 1

    with file_app.app_context():
        on_hand = db.session.get(Product, product_id).on_hand_quantity
        assert on_hand >= 0
        assert on_hand == 10 - 6 * len(successes)
        assert ledger_service.reconcile_product(tenant_id=tenant_id, product_id=product_id)["balanced"]


def test_concurrent_batch_numbers_are_unique(file_app):
    with file_app.app_context():
        tenant = tenant_service.create_tenant(name="Race Bakery", code="BAKE")
        flour = catalog_service.create_product(
            tenant_id=tenant.id, sku="FLOUR", name="Flour", initial_quantity=100,
        )
        bread = catalog_service.create_product(
            tenant_id=tenant.id, sku="BREAD", name="Bread", fulfillment_type=FulfillmentType.MANUFACTURED,
        )
        recipe = recipe_service.create_recipe(
            tenant_id=tenant.id,
            product_id=bread.id,
            name="Bread",
            is_default=True,
            lines=[{"ingredient_id": flour.id, "quantity_per_unit": "1"}],
        )
        ids = (tenant.id, recipe.id, bread.id)

    def plan():
        return production_service.create_batch(
            tenant_id=ids[0], recipe_id=ids[1], product_id=ids[2], planned_quantity=1,
        ).batch_number

    results = _run_threads(file_app, [plan] * 5)

    numbers = [r for r in results if isinstance(r, str)]
    assert numbers
    assert len(numbers) == len(set(numbers))
