# Overview: Flask CLI command groups for bootstrap, inspection, and maintenance.

# backend/smartpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Create a demo store, employees, products, batches, stock rows and loyalty settings.
#
# Orders maintenance:
# - python -m flask orders release-stale [--grace-minutes 30] [--store-id 1]
#   Cancel PENDING QR orders whose QR expired longer ago than the grace period
#   and give their reserved stock back. Safe to run from cron.
#
# Stock inspection:
# - python -m flask stock show --store-id 1 --product-id 1
#   Print quantity, reserved, sellable and available plus the FEFO batch order.

from datetime import timedelta

import click
from flask import current_app
from flask.cli import with_appcontext

from .extensions import db
from .models import Batch, Employee, LoyaltySetting, Product, Stock, Store
from .services import OrderEngine
from .time_utils import utctoday


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed-demo' to load demo data.")


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """
    Idempotent demo bootstrap.

    Creates:
    - Store "Demo Store" (code DEMO)
    - Employees: two active cashiers (one sells, the other reviews refunds)
    - Products with stock rows; one batch-tracked product with a near-expiry and
      a long-dated batch so FEFO can be seen at work
    - Active loyalty program (1 point = 100, 20,000 spent = 1 point)
    """
    store = db.session.query(Store).filter_by(code="DEMO").first()
    if store:
        click.echo(f"PASS Demo store already exists (ID: {store.id})")
        return

    store = Store(name="Demo Store", code="DEMO", address="1 Demo Street")
    db.session.add(store)
    db.session.flush()

    for name in ("Cashier One", "Cashier Two"):
        db.session.add(Employee(store_id=store.id, full_name=name, is_active=True))

    today = utctoday()
    catalog = [
        # sku, name, price, cost, tax_rate, stock, batches
        ("MILK-1L", "Fresh milk 1L", 32000, 25000, 5, None, [
            ("LOT-A", 20, today + timedelta(days=3)),
            ("LOT-B", 40, today + timedelta(days=30)),
        ]),
        ("RICE-5KG", "Rice 5kg", 120000, 95000, 10, 50, []),
        ("WATER-500", "Mineral water 500ml", 6000, 3500, -1, 200, []),
    ]
    for sku, name, price, cost, tax_rate, qty, batches in catalog:
        product = Product(
            store_id=store.id,
            sku=sku,
            name=name,
            price=price,
            cost_price=cost,
            tax_rate=tax_rate,
            is_active=True,
        )
        db.session.add(product)
        db.session.flush()

        if batches:
            qty = 0
            for batch_no, batch_qty, expiry in batches:
                db.session.add(Batch(
                    product_id=product.id,
                    batch_no=batch_no,
                    quantity=batch_qty,
                    reserved=0,
                    expiry_date=expiry,
                ))
                qty += batch_qty
        db.session.add(Stock(store_id=store.id, product_id=product.id, quantity=qty, reserved=0))

    db.session.add(LoyaltySetting(
        store_id=store.id,
        is_active=True,
        vnd_per_point=100,
        vnd_per_earned_point=20000,
        min_order_value=0,
        min_redeem_points=10,
    ))
    db.session.commit()
    click.echo(f"PASS Seeded demo store {store.name} (ID: {store.id}) with {len(catalog)} products")


@click.group('orders')
def orders_group():
    """Order maintenance commands."""


@orders_group.command('release-stale')
@click.option('--grace-minutes', type=int, default=None, help='Minutes past QR expiry (default: STALE_QR_GRACE_MINUTES)')
@click.option('--store-id', type=int, default=None, help='Limit to one store')
@with_appcontext
def release_stale(grace_minutes, store_id):
    """Cancel expired, unpaid QR orders and release their reserved stock."""
    if grace_minutes is None:
        grace_minutes = current_app.config["STALE_QR_GRACE_MINUTES"]

    engine = OrderEngine.from_config(db.session, current_app.config)
    released = engine.payments.release_stale(grace_minutes, store_id=store_id)

    if not released:
        click.echo("PASS No stale QR orders")
        return
    for order_id in released:
        click.echo(f"  - released order {order_id}")
    click.echo(f"PASS Released {len(released)} stale QR orders")


@click.group('stock')
def stock_group():
    """Stock inspection commands."""


@stock_group.command('show')
@click.option('--store-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@with_appcontext
def show_stock(store_id, product_id):
    """Print the stock level and FEFO batch order of one product."""
    engine = OrderEngine.from_config(db.session, current_app.config)
    level = engine.ledger.get_level(store_id, product_id)

    click.echo(f"Product {product_id} @ store {store_id}")
    click.echo(f"  quantity:  {level.quantity}")
    click.echo(f"  reserved:  {level.reserved}")
    click.echo(f"  sellable:  {level.sellable}")
    click.echo(f"  available: {level.available}")

    batches = db.session.query(Batch).filter_by(product_id=product_id).all()
    eligible = engine.allocator.eligible(batches)
    if not batches:
        return
    click.echo("  batches (FEFO order, expired excluded):")
    for batch in eligible:
        click.echo(
            f"    [{batch.id}] {batch.batch_no}: qty={batch.quantity} reserved={batch.reserved} "
            f"expiry={batch.expiry_date or '-'}"
        )
    expired = [b for b in batches if b not in eligible]
    for batch in expired:
        click.echo(f"    [{batch.id}] {batch.batch_no}: EXPIRED {batch.expiry_date} (qty={batch.quantity})")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(stock_group)
