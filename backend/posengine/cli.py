# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/posengine/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Organization management (MULTI-TENANT):
# - python -m flask orgs list
#   List all organizations.
# - python -m flask orgs create --name "Acme Corp" --code "ACME"
#   Create a new organization (tenant).
# - python -m flask orgs add-store --org-id 1 --name "Main Store" --code "MAIN"
#   Add a store to an organization.
#
# Register inspection/bootstrap:
# - python -m flask registers create --org-id 1 --store-id 1 --code "REG-01" --name "Front Counter 1"
#   Create a new POS register.
# - python -m flask registers list --org-id 1 --store-id 1
#   List registers with their open shift (use --all to include inactive).
#
# Shift inspection:
# - python -m flask shifts list --org-id 1 --register-id 1 --limit 20
#   List recent shifts, newest first.
#
# Catalog bootstrap:
# - python -m flask catalog add-product --org-id 1 --sku "COLA-05" --name "Cola 0.5L" --price 1.50
# - python -m flask catalog set-price --org-id 1 --store-id 1 --product-id 1 --price 1.45
# - python -m flask catalog set-cost --org-id 1 --product-id 1 --cost 0.80
# - python -m flask catalog adjust-stock --org-id 1 --store-id 1 --product-id 1 --qty 24 --note "Initial count"
#
# Compliance:
# - python -m flask compliance set --org-id 1 --store-id 1 --mode ADAPTER --provider stub --enable
#   Configure fiscal receipts for a store.

from decimal import InvalidOperation

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Organization, Store, Product, StorePrice, ProductCost, RegisterShift
from .models.enums import BASE_VARIANT_KEY, KkmMode
from .money import to_cents, format_cents
from .services.errors import PosError


def _cents_option(value):
    try:
        return to_cents(value)
    except (ValueError, InvalidOperation):
        raise click.BadParameter(f"not a money amount: {value}")


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


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

    click.echo("PASS Database reset complete.")


@click.group('orgs')
def orgs_group():
    """Organization (tenant) management commands."""


@orgs_group.command('list')
@with_appcontext
def list_orgs():
    orgs = db.session.query(Organization).order_by(Organization.id).all()
    if not orgs:
        click.echo("No organizations found.")
        return

    click.echo(f"\n{'ID':<6} {'Code':<12} {'Name':<40} {'Active':<6}")
    click.echo("-" * 70)
    for org in orgs:
        click.echo(f"{org.id:<6} {(org.code or '-'):<12} {org.name:<40} {'yes' if org.is_active else 'no':<6}")


@orgs_group.command('create')
@click.option('--name', required=True, help='Organization name')
@click.option('--code', help='Short unique code')
@with_appcontext
def create_org(name, code):
    """Create a new organization (tenant)."""
    if code and db.session.query(Organization).filter_by(code=code).first():
        raise click.ClickException(f"Organization code already exists: {code}")

    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.commit()
    click.echo(f"PASS Created organization: {org.name} (ID: {org.id})")


@orgs_group.command('add-store')
@click.option('--org-id', type=int, required=True)
@click.option('--name', required=True)
@click.option('--code', help='Store code, unique within the organization')
@with_appcontext
def add_store(org_id, name, code):
    org = db.session.get(Organization, org_id)
    if org is None:
        raise click.ClickException(f"Organization not found: {org_id}")

    store = Store(org_id=org.id, name=name, code=code, is_active=True)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Org: {org.name})")


@click.group('registers')
def registers_group():
    """Register inspection and bootstrap commands."""


@registers_group.command('create')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--code', required=True, help='Register code, unique per store')
@click.option('--name', required=True, help='Register name')
@with_appcontext
def create_register_cli(org_id, store_id, code, name):
    """
    Create a new POS register.

    Example:
        flask registers create --org-id 1 --store-id 1 --code REG-01 --name "Front Counter 1"
    """
    from .services import register_service

    try:
        register = register_service.create_register(org_id, store_id, code, name, actor_id=None)
    except PosError as e:
        raise click.ClickException(f"{e.message_key} {e.details or ''}".strip())

    click.echo(f"PASS Created register: {register.code} - {register.name}")
    click.echo(f"   Store ID: {register.store_id}")


@registers_group.command('list')
@click.option('--org-id', type=int, required=True, help='Organization ID')
@click.option('--store-id', type=int, help='Filter by store ID')
@click.option('--all', 'show_all', is_flag=True, help='Show inactive registers too')
@with_appcontext
def list_registers_cli(org_id, store_id, show_all):
    """
    List registers.

    Example:
        flask registers list --org-id 1
        flask registers list --org-id 1 --store-id 1 --all
    """
    from .services import register_service

    registers = register_service.list_registers(org_id, store_id=store_id, include_inactive=show_all)
    if not registers:
        click.echo("No registers found.")
        return

    click.echo(f"\n{'ID':<6} {'Code':<10} {'Name':<30} {'Store':<6} {'Active':<7} {'Open shift':<10}")
    click.echo("-" * 75)
    for register in registers:
        open_shift = register.get("open_shift")
        click.echo(
            f"{register['id']:<6} {register['code']:<10} {register['name']:<30} "
            f"{register['store_id']:<6} {'yes' if register['is_active'] else 'no':<7} "
            f"{(open_shift['id'] if open_shift else '-')!s:<10}"
        )


@click.group('shifts')
def shifts_group():
    """Shift inspection commands."""


@shifts_group.command('list')
@click.option('--org-id', type=int, required=True)
@click.option('--register-id', type=int, help='Filter by register ID')
@click.option('--status', type=click.Choice(['OPEN', 'CLOSED']), help='Filter by status')
@click.option('--limit', type=int, default=20, help='Max shifts to show')
@with_appcontext
def list_shifts_cli(org_id, register_id, status, limit):
    query = db.session.query(RegisterShift).filter_by(org_id=org_id)
    if register_id:
        query = query.filter_by(register_id=register_id)
    if status:
        query = query.filter_by(status=status)

    shifts = query.order_by(RegisterShift.opened_at.desc(), RegisterShift.id.desc()).limit(limit).all()
    if not shifts:
        click.echo("No shifts found.")
        return

    click.echo(f"\n{'ID':<6} {'Register':<9} {'Status':<7} {'Opening':>12} {'Expected':>12} {'Discrepancy':>12}")
    click.echo("-" * 64)
    for shift in shifts:
        expected = format_cents(shift.expected_cash_cents) if shift.expected_cash_cents is not None else "-"
        discrepancy = format_cents(shift.discrepancy_cents) if shift.discrepancy_cents is not None else "-"
        click.echo(
            f"{shift.id:<6} {shift.register_id:<9} {shift.status:<7} "
            f"{format_cents(shift.opening_cash_cents):>12} {expected:>12} {discrepancy:>12}"
        )


@click.group('catalog')
def catalog_group():
    """Catalog and stock bootstrap commands."""


@catalog_group.command('add-product')
@click.option('--org-id', type=int, required=True)
@click.option('--sku', required=True)
@click.option('--name', required=True)
@click.option('--price', help='Base price in major units, e.g. 1.50')
@with_appcontext
def add_product(org_id, sku, name, price):
    if db.session.query(Product).filter_by(org_id=org_id, sku=sku).first():
        raise click.ClickException(f"SKU already exists: {sku}")

    product = Product(
        org_id=org_id,
        sku=sku,
        name=name,
        base_price_cents=_cents_option(price) if price is not None else None,
    )
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {product.sku} - {product.name} (ID: {product.id})")


@catalog_group.command('set-price')
@click.option('--org-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--price', required=True, help='Store price in major units')
@with_appcontext
def set_price(org_id, store_id, product_id, price):
    """Set a store-level price override for the base variant."""
    row = db.session.query(StorePrice).filter_by(
        org_id=org_id, store_id=store_id, product_id=product_id, variant_key=BASE_VARIANT_KEY
    ).first()
    if row is None:
        row = StorePrice(org_id=org_id, store_id=store_id, product_id=product_id, variant_key=BASE_VARIANT_KEY)
        db.session.add(row)
    row.price_cents = _cents_option(price)
    db.session.commit()
    click.echo(f"PASS Store {store_id} price for product {product_id}: {format_cents(row.price_cents)}")


@catalog_group.command('set-cost')
@click.option('--org-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--cost', required=True, help='Average unit cost in major units')
@with_appcontext
def set_cost(org_id, product_id, cost):
    row = db.session.query(ProductCost).filter_by(
        org_id=org_id, product_id=product_id, variant_key=BASE_VARIANT_KEY
    ).first()
    if row is None:
        row = ProductCost(org_id=org_id, product_id=product_id, variant_key=BASE_VARIANT_KEY)
        db.session.add(row)
    row.avg_cost_cents = _cents_option(cost)
    db.session.commit()
    click.echo(f"PASS Cost for product {product_id}: {format_cents(row.avg_cost_cents)}")


@catalog_group.command('adjust-stock')
@click.option('--org-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--qty', type=int, required=True, help='Signed quantity delta')
@click.option('--note', help='Reason for the adjustment')
@with_appcontext
def adjust_stock_cli(org_id, store_id, product_id, qty, note):
    from .services.inventory_service import adjust_stock, get_quantity_on_hand

    adjust_stock(org_id, store_id, product_id, qty, note=note)
    on_hand = get_quantity_on_hand(store_id, product_id)
    click.echo(f"PASS Adjusted product {product_id} by {qty:+d}; on hand: {on_hand}")


@click.group('compliance')
def compliance_group():
    """Fiscal compliance settings."""


@compliance_group.command('set')
@click.option('--org-id', type=int, required=True)
@click.option('--store-id', type=int, required=True)
@click.option('--mode', type=click.Choice([m.value for m in KkmMode]), default=KkmMode.OFF.value)
@click.option('--provider', help='Fiscal adapter provider key')
@click.option('--enable/--disable', default=False)
@with_appcontext
def set_compliance(org_id, store_id, mode, provider, enable):
    from .services.compliance_service import upsert_compliance_profile

    try:
        profile = upsert_compliance_profile(
            org_id, store_id, enable_kkm=enable, kkm_mode=mode, kkm_provider_key=provider
        )
    except PosError as e:
        raise click.ClickException(e.message_key)

    click.echo(
        f"PASS Store {store_id}: kkm {'enabled' if profile.enable_kkm else 'disabled'}, "
        f"mode {profile.kkm_mode}, provider {profile.kkm_provider_key or '-'}"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orgs_group)  # Multi-tenant organization management
    app.cli.add_command(registers_group)
    app.cli.add_command(shifts_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(compliance_group)
