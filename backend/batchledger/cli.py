# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/batchledger/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to batchledger (PowerShell: $env:FLASK_APP="batchledger").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (idempotent).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Catalog bootstrap:
# - python -m flask catalog add-store --name "Main Street" --code MAIN
# - python -m flask catalog add-product --sku MILK-1L --name "Milk 1L"
#
# Batch inventory:
# - python -m flask batches receive --store-id 1 --product-id 1 --quantity 24 --expiry 2026-12-01 --cost-cents 85
#   Receive a delivery as a new batch.
# - python -m flask batches import stock.xlsx
#   Create batches from a CSV/JSON/Excel file; exits 1 if any row failed.
# - python -m flask batches expired [--store-id 1]
#   List expired batches that still hold stock (these block sales).
# - python -m flask batches expiring [--days 30] [--store-id 1]
# - python -m flask batches low-stock [--store-id 1]
# - python -m flask batches history 42
#   Audit history of one batch, oldest first.
# - python -m flask batches reconcile --store-id 1 --product-id 1
#   Verify audit chains against batch quantities; exits 1 on mismatch.
# - python -m flask batches write-off-expired --store-id 1 --product-id 1 --user-id 7

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import InventoryBatch, Product, Store
from .services import (
    audit_service,
    batch_service,
    import_service,
    inventory_service,
    restock_service,
)
from .services.errors import BatchLedgerError
from .time_utils import to_iso_date


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables (existing tables are left untouched)."""
    db.create_all()
    click.echo("PASS Database schema created")


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
    click.echo("BUILD  Recreating schema...")
    db.create_all()
    click.echo("PASS Database reset complete")


@click.group('catalog')
def catalog_group():
    """Store and product bootstrap commands."""


@catalog_group.command('add-store')
@click.option('--name', required=True)
@click.option('--code', default=None)
@with_appcontext
def add_store(name, code):
    store = Store(name=name, code=code)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id})")


@catalog_group.command('add-product')
@click.option('--sku', required=True)
@click.option('--name', required=True)
@with_appcontext
def add_product(sku, name):
    if db.session.query(Product).filter_by(sku=sku).first():
        raise click.ClickException(f"Product with SKU {sku!r} already exists")
    product = Product(sku=sku, name=name)
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {product.name} (ID: {product.id}, SKU: {product.sku})")


@click.group('batches')
def batches_group():
    """Batch inventory inspection and maintenance."""


def _echo_batch(batch: InventoryBatch) -> None:
    click.echo(
        f"  #{batch.id:<6} {batch.batch_number:<28} store={batch.store_id:<4} "
        f"product={batch.product_id:<6} qty={batch.quantity:<6} "
        f"expiry={to_iso_date(batch.expiry_date) or '-'}"
    )


@batches_group.command('receive')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--batch-number', default=None)
@click.option('--expiry', 'expiry_date', default=None, help='YYYY-MM-DD')
@click.option('--cost-cents', 'cost_per_unit_cents', type=int, default=None)
@with_appcontext
def receive(store_id, product_id, quantity, batch_number, expiry_date, cost_per_unit_cents):
    try:
        batch = restock_service.receive_batch(
            store_id=store_id,
            product_id=product_id,
            quantity=quantity,
            batch_number=batch_number,
            cost_per_unit_cents=cost_per_unit_cents,
            expiry_date=expiry_date,
        )
    except BatchLedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Received batch {batch.batch_number} (ID: {batch.id}) qty={batch.quantity}")


@batches_group.command('import')
@click.argument('path', type=click.Path(exists=True, dir_okay=False))
@with_appcontext
def import_file(path):
    """Create batches from a CSV, JSON or Excel file."""
    try:
        with open(path, 'rb') as fh:
            rows = import_service.read_upload_rows(fh, path)
    except BatchLedgerError as e:
        raise click.ClickException(str(e))

    result = import_service.import_batch_records(rows)
    click.echo(f"PASS Created {len(result.created)} batch(es)")
    for error in result.errors:
        click.echo(f"FAIL row {error.row_number}: {error.message}")
    for warning in result.warnings:
        click.echo(f"WARN row {warning.row_number}: {warning.message}")
    if result.errors:
        raise SystemExit(1)


@batches_group.command('expired')
@click.option('--store-id', type=int, default=None)
@with_appcontext
def list_expired(store_id):
    batches = inventory_service.list_expired_batches(store_id=store_id)
    if not batches:
        click.echo("PASS No expired stock")
        return
    click.echo(f"WARN {len(batches)} expired batch(es) still holding stock:")
    for batch in batches:
        _echo_batch(batch)


@batches_group.command('expiring')
@click.option('--days', type=int, default=None, help='Window in days (default EXPIRING_SOON_DAYS)')
@click.option('--store-id', type=int, default=None)
@with_appcontext
def list_expiring(days, store_id):
    batches = inventory_service.list_expiring_batches(days=days, store_id=store_id)
    totals = inventory_service.summarize_expiry_value(batches)
    click.echo(f"{totals['batch_count']} batch(es), {totals['units']} unit(s) expiring soon")
    for batch in batches:
        _echo_batch(batch)


@batches_group.command('low-stock')
@click.option('--store-id', type=int, default=None)
@with_appcontext
def low_stock(store_id):
    rows = inventory_service.list_low_stock(store_id=store_id)
    if not rows:
        click.echo("PASS No lines at or below minimum level")
        return
    for row in rows:
        click.echo(
            f"  store={row['store_id']:<4} product={row['product_id']:<6} "
            f"on_hand={row['total_quantity']:<6} minimum={row['minimum_level']}"
        )


@batches_group.command('history')
@click.argument('batch_id', type=int)
@with_appcontext
def history(batch_id):
    try:
        entries = audit_service.history(batch_id)
    except BatchLedgerError as e:
        raise click.ClickException(str(e))
    if not entries:
        click.echo(f"Batch {batch_id} has no recorded mutations")
        return
    for entry in entries:
        click.echo(
            f"  {entry.sequence:>4}  {entry.action:<10} {entry.quantity_before:>6} -> "
            f"{entry.quantity_after:<6} user={entry.user_id} {entry.details or ''}"
        )


@batches_group.command('reconcile')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@with_appcontext
def reconcile(store_id, product_id):
    """Check every batch on the line against its audit chain."""
    problems = audit_service.reconcile_line(store_id, product_id)
    total = inventory_service.get_total_quantity(store_id, product_id)
    if problems:
        for problem in problems:
            click.echo(f"FAIL {problem}")
        raise SystemExit(1)
    click.echo(f"PASS Line store={store_id} product={product_id} reconciles (on hand: {total})")


@batches_group.command('write-off-expired')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--user-id', type=int, default=None)
@with_appcontext
def write_off_expired(store_id, product_id, user_id):
    try:
        batches = batch_service.write_off_expired(store_id, product_id, user_id)
    except BatchLedgerError as e:
        raise click.ClickException(str(e))
    click.echo(f"PASS Wrote off {len(batches)} expired batch(es)")
    for batch in batches:
        _echo_batch(batch)


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(catalog_group)
    app.cli.add_command(batches_group)
