# Overview: Flask CLI command groups for bootstrap, catalog setup and drawer inspection.

# backend/pdv/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (use `flask db upgrade` for migrated databases).
#
# Catalog and people:
# - python -m flask stores create --name "Loja Centro" --code CENTRO
# - python -m flask users create --store-id 1 --username caixa1 --full-name "Caixa 1"
# - python -m flask products create --store-id 1 --code 789100 --name "Cafe 500g" --price "18,90" --stock 20
#
# Inventory:
# - python -m flask inventory adjust --product-id 1 --delta -3 --note "Breakage"
#   Apply a signed stock adjustment (journaled as ADJUST).
#
# Cash sessions:
# - python -m flask sessions summary --session-id 1
#   Print running balance, totals per kind and per payment method.

import click
from flask import current_app
from flask.cli import with_appcontext

from .errors import PdvError
from .extensions import db
from .models import Product, Store, User
from .money import format_currency, parse_amount
from .services import cash_session_service, inventory_service


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables for a fresh database."""
    db.create_all()
    click.echo("PASS Database tables created")


@click.group('stores')
def stores_group():
    """Store management commands."""


@stores_group.command('create')
@click.option('--name', required=True, help='Store name')
@click.option('--code', required=True, help='Unique store code')
@with_appcontext
def create_store_cli(name, code):
    """Create a store."""
    if db.session.query(Store).filter_by(code=code).first():
        click.echo(f"FAIL Store code already exists: {code}")
        return

    store = Store(name=name, code=code)
    db.session.add(store)
    db.session.commit()
    click.echo(f"PASS Created store: {store.name} (ID: {store.id}, Code: {store.code})")


@click.group('users')
def users_group():
    """Operator management commands."""


@users_group.command('create')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--username', required=True, help='Username')
@click.option('--full-name', default=None, help='Display name')
@with_appcontext
def create_user_cli(store_id, username, full_name):
    """Create an operator."""
    if db.session.get(Store, store_id) is None:
        click.echo(f"FAIL Store not found: {store_id}")
        return
    if db.session.query(User).filter_by(username=username).first():
        click.echo(f"FAIL Username already exists: {username}")
        return

    user = User(store_id=store_id, username=username, full_name=full_name)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user: {user.username} (ID: {user.id})")


@click.group('products')
def products_group():
    """Product catalog commands."""


@products_group.command('create')
@click.option('--store-id', type=int, required=True, help='Store ID')
@click.option('--code', required=True, help='Product code (unique per store)')
@click.option('--name', required=True, help='Product name')
@click.option('--price', required=True, help='Unit price, e.g. "18,90"')
@click.option('--stock', type=int, default=0, show_default=True, help='Initial stock')
@click.option('--min-stock', type=int, default=0, show_default=True, help='Minimum stock level')
@with_appcontext
def create_product_cli(store_id, code, name, price, stock, min_stock):
    """Create a product."""
    if db.session.get(Store, store_id) is None:
        click.echo(f"FAIL Store not found: {store_id}")
        return
    try:
        price_cents = parse_amount(price)
    except PdvError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    if db.session.query(Product).filter_by(store_id=store_id, code=code).first():
        click.echo(f"FAIL Product code already exists in store {store_id}: {code}")
        return

    product = Product(
        store_id=store_id,
        code=code,
        name=name,
        price_cents=price_cents,
        stock=stock,
        min_stock=min_stock,
    )
    db.session.add(product)
    db.session.commit()

    symbol = current_app.config.get("PDV_CURRENCY_SYMBOL", "R$")
    click.echo(f"PASS Created product: {product.code} - {product.name}")
    click.echo(f"   Price: {format_currency(product.price_cents, symbol)}")
    click.echo(f"   Stock: {product.stock}")
    click.echo(f"   Product ID: {product.id}")


@click.group('inventory')
def inventory_group():
    """Stock commands."""


@inventory_group.command('adjust')
@click.option('--product-id', type=int, required=True, help='Product ID')
@click.option('--delta', type=int, required=True, help='Signed quantity change')
@click.option('--note', default=None, help='Reason for the adjustment')
@click.option('--user-id', type=int, default=None, help='Acting user ID')
@with_appcontext
def adjust_inventory_cli(product_id, delta, note, user_id):
    """Apply a manual stock adjustment."""
    try:
        adjustment = inventory_service.adjust_stock(product_id, delta, note=note, user_id=user_id)
    except PdvError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    click.echo(f"PASS Adjusted product {product_id} by {delta:+d}; stock now {adjustment.stock_after}")


@click.group('sessions')
def sessions_group():
    """Cash session inspection commands."""


@sessions_group.command('summary')
@click.option('--session-id', type=int, required=True, help='Cash session ID')
@with_appcontext
def session_summary_cli(session_id):
    """Print a cash session summary."""
    try:
        summary = cash_session_service.get_session_summary(session_id)
    except PdvError as e:
        click.echo(f"FAIL Error: {e.message}")
        return

    symbol = current_app.config.get("PDV_CURRENCY_SYMBOL", "R$")
    session = summary["session"]

    click.echo(f"Session {session['id']} ({session['status']}) operator {session['operator_id']}")
    click.echo(f"   Opening:  {format_currency(session['opening_balance_cents'], symbol)}")
    click.echo(f"   Balance:  {format_currency(summary['running_balance_cents'], symbol)}")
    for kind, total in sorted(summary["totals_by_kind"].items()):
        click.echo(f"   {kind:<14}{format_currency(total, symbol)}")
    for method, total in sorted(summary["payment_method_totals"].items()):
        click.echo(f"   [{method}] {format_currency(total, symbol)}")
    click.echo(f"   Sales: {summary['sales_count']} (cancelled: {summary['cancelled_sales_count']})")
    if summary["is_closed"]:
        click.echo(f"   Variance: {format_currency(summary['variance_cents'], symbol)}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(stores_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(sessions_group)
