# Overview: Flask CLI command groups for bootstrap, catalog, sales, production and ledger inspection.

# backend/muralla/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migration-managed databases).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Tenants:
# - python -m flask tenants create --name "Cafe Muralla" --code MURALLA [--tax-rate-bps 1900] [--timezone America/Santiago]
# - python -m flask tenants list
#
# Catalog:
# - python -m flask products create --tenant-id 1 --sku FLOUR --name "Flour" --type PRE_STOCKED --quantity 50 --unit-cost 1.2
# - python -m flask products adjust --tenant-id 1 --product-id 3 --delta -2 --note "Spoiled"
# - python -m flask products list --tenant-id 1 [--type MADE_TO_ORDER] [--all]
#
# Recipes:
# - python -m flask recipes create --tenant-id 1 --product-id 5 --name "Latte" --default
# - python -m flask recipes add-line --tenant-id 1 --recipe-id 2 --ingredient-id 3 --quantity 0.2 [--unit L] [--optional]
# - python -m flask recipes list --tenant-id 1 --product-id 5 [--all]
# - python -m flask recipes update-line --tenant-id 1 --recipe-id 2 --line-id 7 [--quantity 0.25] [--unit L] [--optional|--required]
# - python -m flask recipes remove-line --tenant-id 1 --recipe-id 2 --line-id 7
# - python -m flask recipes set-default --tenant-id 1 --recipe-id 3
# - python -m flask recipes deactivate --tenant-id 1 --recipe-id 2
# - python -m flask recipes duplicate --tenant-id 1 --recipe-id 2
# - python -m flask recipes projected --tenant-id 1 [--product-id 5]
#
# Sales:
# - python -m flask sales check --tenant-id 1 --product-id 5 --quantity 3
# - python -m flask sales stats --tenant-id 1 [--start 2026-01-01] [--end 2026-01-31]
#
# Production:
# - python -m flask production create --tenant-id 1 --recipe-id 4 --product-id 7 --quantity 10
# - python -m flask production start --tenant-id 1 --batch-id 1
# - python -m flask production complete --tenant-id 1 --batch-id 1 --actual 8 [--labor 10] [--overhead 5]
# - python -m flask production cancel --tenant-id 1 --batch-id 1 [--reason "machine failure"]
# - python -m flask production list --tenant-id 1 [--status IN_PROGRESS]
# - python -m flask production stats --tenant-id 1
#
# Ledger:
# - python -m flask ledger movements --tenant-id 1 --product-id 3 [--limit 50]
# - python -m flask ledger reconcile --tenant-id 1 [--product-id 3]

import json

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .errors import MurallaError
from .models import FulfillmentType, BatchStatus
from .services import (
    availability_service,
    catalog_service,
    ledger_service,
    production_service,
    recipe_service,
    sales_service,
    tenant_service,
)


def _fail(exc: MurallaError) -> None:
    current_app.logger.warning("CLI command failed: %s", exc.message)
    click.echo(f"FAIL {exc.message}")
    for key, value in exc.details.items():
        click.echo(f"     {key}: {value}")


def _echo_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


# =============================================================================
# SYSTEM
# =============================================================================

@click.group('system')
def system_group():
    """Database bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Database tables created")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete. Run 'python -m flask tenants create' next.")


# =============================================================================
# TENANTS (MULTI-TENANT)
# =============================================================================

@click.group('tenants')
def tenants_group():
    """Tenant management commands."""


@tenants_group.command('create')
@click.option('--name', required=True, help='Business name')
@click.option('--code', help='Short code (unique)')
@click.option('--tax-rate-bps', type=int, help='Sales tax in basis points (1900 = 19%)')
@click.option('--timezone', 'tz_name', help='IANA timezone for batch numbering')
@with_appcontext
def create_tenant_cli(name, code, tax_rate_bps, tz_name):
    """Create a new tenant."""
    try:
        tenant = tenant_service.create_tenant(name=name, code=code, tax_rate_bps=tax_rate_bps, timezone=tz_name)
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Created tenant: {tenant.name} (ID: {tenant.id}, Code: {tenant.code or '-'})")


@tenants_group.command('list')
@with_appcontext
def list_tenants_cli():
    """List all tenants."""
    tenants = tenant_service.list_tenants()
    if not tenants:
        click.echo("No tenants found.")
        return

    click.echo("\n" + "="*80)
    click.echo(f"{'ID':<5} {'Name':<30} {'Code':<12} {'Tax bps':<8} {'Timezone':<20} {'Active'}")
    click.echo("="*80)
    for t in tenants:
        active_str = "Yes" if t.is_active else "No"
        click.echo(f"{t.id:<5} {t.name:<30} {t.code or '-':<12} {t.tax_rate_bps:<8} {t.timezone:<20} {active_str}")
    click.echo("="*80 + "\n")


# =============================================================================
# PRODUCTS
# =============================================================================

@click.group('products')
def products_group():
    """Product catalog commands."""


@products_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--type', 'fulfillment_type', type=click.Choice([t.value for t in FulfillmentType]), default='PRE_STOCKED')
@click.option('--price', 'unit_price', default='0', help='Unit sale price')
@click.option('--unit-cost', default=None, help='Cost basis per unit')
@click.option('--quantity', 'initial_quantity', type=int, default=0, help='Opening stock')
@click.option('--unit', 'unit_of_measure', default='unit')
@with_appcontext
def create_product_cli(tenant_id, sku, name, fulfillment_type, unit_price, unit_cost, initial_quantity, unit_of_measure):
    """Create a product."""
    try:
        product = catalog_service.create_product(
            tenant_id=tenant_id,
            sku=sku,
            name=name,
            fulfillment_type=fulfillment_type,
            unit_price=unit_price,
            unit_cost=unit_cost,
            initial_quantity=initial_quantity,
            unit_of_measure=unit_of_measure,
        )
    except MurallaError as e:
        _fail(e)
        return
    click.echo(
        f"PASS Created product: {product.name} (ID: {product.id}, SKU: {product.sku}, "
        f"{product.fulfillment_type.value}, on hand {product.on_hand_quantity})"
    )


@products_group.command('adjust')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--delta', type=int, required=True, help='Signed whole units')
@click.option('--note', default=None)
@with_appcontext
def adjust_product_cli(tenant_id, product_id, delta, note):
    """Manually adjust on-hand stock (writes an ADJUSTMENT movement)."""
    try:
        product = catalog_service.adjust_stock(
            tenant_id=tenant_id, product_id=product_id, quantity_delta=delta, note=note,
        )
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS {product.name}: on hand now {product.on_hand_quantity}")


@products_group.command('list')
@click.option('--tenant-id', type=int, required=True)
@click.option('--type', 'fulfillment_type', type=click.Choice([t.value for t in FulfillmentType]), default=None)
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive products')
@with_appcontext
def list_products_cli(tenant_id, fulfillment_type, include_inactive):
    """List products of a tenant."""
    products = catalog_service.list_products(
        tenant_id=tenant_id, fulfillment_type=fulfillment_type, include_inactive=include_inactive,
    )
    if not products:
        click.echo("No products found.")
        return

    click.echo("\n" + "="*96)
    click.echo(f"{'ID':<5} {'SKU':<14} {'Name':<28} {'Type':<14} {'On hand':<8} {'Cost':<12} {'Price'}")
    click.echo("="*96)
    for p in products:
        cost = str(p.unit_cost) if p.unit_cost is not None else '-'
        click.echo(
            f"{p.id:<5} {p.sku:<14} {p.name[:28]:<28} {p.fulfillment_type.value:<14} "
            f"{p.on_hand_quantity:<8} {cost:<12} {p.unit_price}"
        )
    click.echo("="*96 + "\n")


# =============================================================================
# RECIPES
# =============================================================================

@click.group('recipes')
def recipes_group():
    """Recipe (bill of materials) commands."""


@recipes_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, required=True, help='Product the recipe produces')
@click.option('--name', required=True)
@click.option('--default', 'is_default', is_flag=True, help='Make this the default recipe')
@with_appcontext
def create_recipe_cli(tenant_id, product_id, name, is_default):
    """Create an empty recipe; add lines with `recipes add-line`."""
    try:
        recipe = recipe_service.create_recipe(
            tenant_id=tenant_id, product_id=product_id, name=name, is_default=is_default,
        )
    except MurallaError as e:
        _fail(e)
        return
    flag = " [default]" if recipe.is_default else ""
    click.echo(f"PASS Created recipe: {recipe.name} v{recipe.version} (ID: {recipe.id}){flag}")


@recipes_group.command('add-line')
@click.option('--tenant-id', type=int, required=True)
@click.option('--recipe-id', type=int, required=True)
@click.option('--ingredient-id', type=int, required=True)
@click.option('--quantity', required=True, help='Quantity per ONE unit of output (decimal)')
@click.option('--unit', 'unit_of_measure', default='unit')
@click.option('--optional', 'is_optional', is_flag=True)
@with_appcontext
def add_recipe_line_cli(tenant_id, recipe_id, ingredient_id, quantity, unit_of_measure, is_optional):
    """Add an ingredient line to a recipe."""
    try:
        line = recipe_service.add_recipe_line(
            tenant_id=tenant_id,
            recipe_id=recipe_id,
            ingredient_id=ingredient_id,
            quantity_per_unit=quantity,
            unit_of_measure=unit_of_measure,
            is_optional=is_optional,
        )
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Line {line.position}: ingredient {line.ingredient_id} x {line.quantity_per_unit} {line.unit_of_measure}")


@recipes_group.command('list')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--all', 'include_inactive', is_flag=True, help='Include inactive recipes')
@with_appcontext
def list_recipes_cli(tenant_id, product_id, include_inactive):
    """List a product's recipes, default first."""
    recipes = recipe_service.list_product_recipes(product_id, tenant_id, include_inactive=include_inactive)
    if not recipes:
        click.echo("No recipes found.")
        return
    for r in recipes:
        flags = ", ".join(f for f, on in (("default", r.is_default), ("inactive", not r.is_active)) if on)
        click.echo(f"{r.id:<5} v{r.version:<4} {r.name[:40]:<40} {len(r.lines)} line(s) {flags}")


@recipes_group.command('update-line')
@click.option('--tenant-id', type=int, required=True)
@click.option('--recipe-id', type=int, required=True)
@click.option('--line-id', type=int, required=True)
@click.option('--quantity', default=None, help='New quantity per unit of output')
@click.option('--unit', 'unit_of_measure', default=None)
@click.option('--optional/--required', 'is_optional', default=None)
@with_appcontext
def update_recipe_line_cli(tenant_id, recipe_id, line_id, quantity, unit_of_measure, is_optional):
    """Change quantity, unit or optional flag of a recipe line."""
    try:
        line = recipe_service.update_recipe_line(
            tenant_id=tenant_id,
            recipe_id=recipe_id,
            line_id=line_id,
            quantity_per_unit=quantity,
            unit_of_measure=unit_of_measure,
            is_optional=is_optional,
        )
    except MurallaError as e:
        _fail(e)
        return
    optional = " (optional)" if line.is_optional else ""
    click.echo(f"PASS Line {line.position}: ingredient {line.ingredient_id} x {line.quantity_per_unit} {line.unit_of_measure}{optional}")


@recipes_group.command('remove-line')
@click.option('--tenant-id', type=int, required=True)
@click.option('--recipe-id', type=int, required=True)
@click.option('--line-id', type=int, required=True)
@with_appcontext
def remove_recipe_line_cli(tenant_id, recipe_id, line_id):
    """Delete a line from a recipe."""
    try:
        recipe_service.remove_recipe_line(tenant_id=tenant_id, recipe_id=recipe_id, line_id=line_id)
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Removed line {line_id} from recipe {recipe_id}")


@recipes_group.command('set-default')
@click.option('--tenant-id', type=int, required=True)
@click.option('--recipe-id', type=int, required=True)
@with_appcontext
def set_default_recipe_cli(tenant_id, recipe_id):
    """Make a recipe its product's default."""
    try:
        recipe = recipe_service.set_default_recipe(tenant_id=tenant_id, recipe_id=recipe_id)
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS {recipe.name} (ID: {recipe.id}) is now the default for product {recipe.product_id}")


@recipes_group.command('deactivate')
@click.option('--tenant-id', type=int, required=True)
@click.option('--recipe-id', type=int, required=True)
@with_appcontext
def deactivate_recipe_cli(tenant_id, recipe_id):
    """Deactivate a recipe (it also stops being the default)."""
    try:
        recipe = recipe_service.deactivate_recipe(tenant_id=tenant_id, recipe_id=recipe_id)
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Deactivated recipe {recipe.name} (ID: {recipe.id})")


@recipes_group.command('duplicate')
@click.option('--tenant-id', type=int, required=True)
@click.option('--recipe-id', type=int, required=True)
@with_appcontext
def duplicate_recipe_cli(tenant_id, recipe_id):
    """Copy a recipe as the product's next version (not default)."""
    try:
        recipe = recipe_service.duplicate_recipe(tenant_id=tenant_id, recipe_id=recipe_id)
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Created recipe: {recipe.name} (ID: {recipe.id}, version {recipe.version})")


@recipes_group.command('projected')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, default=None, help='One product (default: every product with a recipe)')
@with_appcontext
def projected_cli(tenant_id, product_id):
    """How many units current ingredient stock can make."""
    if product_id is None:
        _echo_json(recipe_service.get_all_projected_inventory(tenant_id))
    else:
        _echo_json(recipe_service.get_projected_inventory(product_id, tenant_id))


# =============================================================================
# SALES
# =============================================================================

@click.group('sales')
def sales_group():
    """Sales inspection commands."""


@sales_group.command('check')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@with_appcontext
def check_cli(tenant_id, product_id, quantity):
    """Check whether a quantity of a product can be sold now."""
    try:
        result = availability_service.check_availability(product_id, quantity, tenant_id)
    except MurallaError as e:
        _fail(e)
        return
    if result.available:
        click.echo("PASS Available")
    else:
        click.echo(f"FAIL Unavailable: {result.reason}")


@sales_group.command('stats')
@click.option('--tenant-id', type=int, required=True)
@click.option('--start', 'start_date', default=None, help='ISO date/datetime (inclusive)')
@click.option('--end', 'end_date', default=None, help='ISO date/datetime (inclusive)')
@with_appcontext
def sales_stats_cli(tenant_id, start_date, end_date):
    """Sales totals, per fulfillment type and top products."""
    _echo_json(sales_service.get_sales_stats(tenant_id=tenant_id, start_date=start_date, end_date=end_date))


# =============================================================================
# PRODUCTION
# =============================================================================

@click.group('production')
def production_group():
    """Production batch commands."""


@production_group.command('create')
@click.option('--tenant-id', type=int, required=True)
@click.option('--recipe-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', 'planned_quantity', type=int, required=True)
@click.option('--notes', default=None)
@with_appcontext
def create_batch_cli(tenant_id, recipe_id, product_id, planned_quantity, notes):
    """Plan a production batch."""
    try:
        batch = production_service.create_batch(
            tenant_id=tenant_id,
            recipe_id=recipe_id,
            product_id=product_id,
            planned_quantity=planned_quantity,
            notes=notes,
        )
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Planned batch {batch.batch_number} (ID: {batch.id}) x{batch.planned_quantity}")


@production_group.command('start')
@click.option('--tenant-id', type=int, required=True)
@click.option('--batch-id', type=int, required=True)
@with_appcontext
def start_batch_cli(tenant_id, batch_id):
    """Start a PLANNED batch (consumes ingredients)."""
    try:
        batch = production_service.start_production(tenant_id=tenant_id, batch_id=batch_id)
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Batch {batch.batch_number} IN_PROGRESS, ingredient cost {batch.ingredient_cost}")


@production_group.command('complete')
@click.option('--tenant-id', type=int, required=True)
@click.option('--batch-id', type=int, required=True)
@click.option('--actual', 'actual_quantity', type=int, required=True, help='Units actually produced')
@click.option('--labor', 'labor_cost', default=None)
@click.option('--overhead', 'overhead_cost', default=None)
@with_appcontext
def complete_batch_cli(tenant_id, batch_id, actual_quantity, labor_cost, overhead_cost):
    """Complete an IN_PROGRESS batch (adds output stock, sets cost basis)."""
    try:
        batch = production_service.complete_production(
            tenant_id=tenant_id,
            batch_id=batch_id,
            actual_quantity=actual_quantity,
            labor_cost=labor_cost,
            overhead_cost=overhead_cost,
        )
    except MurallaError as e:
        _fail(e)
        return
    click.echo(
        f"PASS Batch {batch.batch_number} COMPLETED: {batch.actual_quantity} units, "
        f"total cost {batch.total_cost}, per unit {batch.cost_per_unit}"
    )


@production_group.command('cancel')
@click.option('--tenant-id', type=int, required=True)
@click.option('--batch-id', type=int, required=True)
@click.option('--reason', default=None)
@with_appcontext
def cancel_batch_cli(tenant_id, batch_id, reason):
    """Cancel a batch; an IN_PROGRESS batch gets its ingredients back."""
    try:
        batch = production_service.cancel_batch(tenant_id=tenant_id, batch_id=batch_id, reason=reason)
    except MurallaError as e:
        _fail(e)
        return
    click.echo(f"PASS Batch {batch.batch_number} CANCELLED")


@production_group.command('list')
@click.option('--tenant-id', type=int, required=True)
@click.option('--status', type=click.Choice([s.value for s in BatchStatus]), default=None)
@click.option('--product-id', type=int, default=None)
@with_appcontext
def list_batches_cli(tenant_id, status, product_id):
    """List batches, newest first."""
    batches = production_service.list_batches(tenant_id=tenant_id, status=status, product_id=product_id)
    if not batches:
        click.echo("No batches found.")
        return

    click.echo("\n" + "="*84)
    click.echo(f"{'ID':<5} {'Number':<20} {'Product':<8} {'Planned':<8} {'Actual':<8} {'Status':<12} {'Cost/unit'}")
    click.echo("="*84)
    for b in batches:
        actual = b.actual_quantity if b.actual_quantity is not None else '-'
        per_unit = b.cost_per_unit if b.cost_per_unit is not None else '-'
        click.echo(
            f"{b.id:<5} {b.batch_number:<20} {b.product_id:<8} {b.planned_quantity:<8} "
            f"{actual!s:<8} {b.status.value:<12} {per_unit}"
        )
    click.echo("="*84 + "\n")


@production_group.command('stats')
@click.option('--tenant-id', type=int, required=True)
@click.option('--start', 'start_date', default=None)
@click.option('--end', 'end_date', default=None)
@with_appcontext
def production_stats_cli(tenant_id, start_date, end_date):
    """Completed-batch totals and per-product breakdown."""
    _echo_json(production_service.get_production_stats(tenant_id=tenant_id, start_date=start_date, end_date=end_date))


# =============================================================================
# LEDGER
# =============================================================================

@click.group('ledger')
def ledger_group():
    """Stock ledger inspection commands."""


@ledger_group.command('movements')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--limit', type=int, default=50)
@with_appcontext
def movements_cli(tenant_id, product_id, limit):
    """Recent movements of a product, newest first."""
    try:
        movements = ledger_service.list_movements(tenant_id=tenant_id, product_id=product_id, limit=limit)
    except MurallaError as e:
        _fail(e)
        return
    if not movements:
        click.echo("No movements found.")
        return
    for m in movements:
        ref = f"{m.reference_type.value}#{m.reference_id}" if m.reference_id else m.reference_type.value
        click.echo(f"{m.id:<6} {m.type.value:<18} {m.quantity:>+7} {ref:<22} {m.note or ''}")


@ledger_group.command('reconcile')
@click.option('--tenant-id', type=int, required=True)
@click.option('--product-id', type=int, default=None, help='Reconcile one product (default: all stocked products)')
@with_appcontext
def reconcile_cli(tenant_id, product_id):
    """Compare on-hand quantities with the ledger."""
    try:
        if product_id:
            product_ids = [product_id]
        else:
            product_ids = [
                p.id for p in catalog_service.list_products(tenant_id=tenant_id, include_inactive=True)
                if p.fulfillment_type.holds_stock
            ]
        results = [ledger_service.reconcile_product(tenant_id=tenant_id, product_id=pid) for pid in product_ids]
    except MurallaError as e:
        _fail(e)
        return

    unbalanced = [r for r in results if not r["balanced"]]
    for r in results:
        status = "PASS" if r["balanced"] else "FAIL"
        click.echo(
            f"{status} {r['sku']}: on hand {r['on_hand_quantity']}, opening {r['opening_quantity']}, "
            f"ledger {r['ledger_sum']:+d}, discrepancy {r['discrepancy']}"
        )
    click.echo(f"\n{len(results) - len(unbalanced)}/{len(results)} products balanced")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(tenants_group)  # Multi-tenant root
    app.cli.add_command(products_group)
    app.cli.add_command(recipes_group)
    app.cli.add_command(sales_group)
    app.cli.add_command(production_group)
    app.cli.add_command(ledger_group)
