# Overview: Flask CLI command groups for bootstrap, wallet ledger checks and order inspection.

# backend/fulfillment/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap:
# - python -m flask system init-db
#   Create all tables (idempotent).
# - python -m flask system seed-demo
#   Create a demo tenant, provider, catalog, customer and two agents.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Wallet ledger:
# - python -m flask wallet replay [--user-id 7]
#   Replay ledgers and report wallets whose cached balance drifted.
# - python -m flask wallet rebuild [--user-id 7]
#   Overwrite cached balances with the ledger replay.
#
# Orders:
# - python -m flask orders show 12
# - python -m flask orders timeline 12

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import (
    CatalogAddon,
    CatalogItem,
    Customer,
    DeliveryAgent,
    Provider,
    Tenant,
    Wallet,
)
from .services import order_service, timeline_service, wallet_service
from .services.errors import FulfillmentError
from .time_utils import to_utc_z


@click.group('system')
def system_group():
    """System bootstrap commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables that do not exist yet."""
    db.create_all()
    click.echo("PASS Tables created.")


@system_group.command('reset-db')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def reset_db(yes):
    """
    DANGER: Drop all tables and recreate schema.

    This will DELETE ALL DATA, including wallet ledgers!
    """
    if not yes:
        click.confirm("WARN This will DELETE ALL DATA. Are you sure?", abort=True)

    click.echo("DELETE  Dropping all tables...")
    db.drop_all()

    click.echo("BUILD  Creating all tables...")
    db.create_all()

    click.echo("PASS Database reset complete.")


@system_group.command('seed-demo')
@click.option('--tenant-code', default='DEMO', help='Tenant code')
@with_appcontext
def seed_demo(tenant_code):
    """Create demo reference data. Safe to re-run."""
    tenant = db.session.query(Tenant).filter_by(code=tenant_code).first()
    if tenant:
        click.echo(f"SKIP  Tenant {tenant_code} already exists (id={tenant.id})")
        return

    tenant = Tenant(name="Demo Marketplace", code=tenant_code)
    db.session.add(tenant)
    db.session.flush()

    provider = Provider(tenant_id=tenant.id, name="Demo Kitchen", kind="restaurant")
    db.session.add(provider)
    db.session.flush()

    biryani = CatalogItem(provider_id=provider.id, name="Veg Biryani", price_cents=10000)
    lassi = CatalogItem(provider_id=provider.id, name="Sweet Lassi", price_cents=5000)
    db.session.add_all([biryani, lassi])
    db.session.flush()
    db.session.add(CatalogAddon(item_id=biryani.id, name="Extra Raita", price_cents=2000))

    customer = Customer(tenant_id=tenant.id, name="Demo Customer", phone="9999999999")
    db.session.add(customer)
    db.session.add_all([
        DeliveryAgent(tenant_id=tenant.id, name="Agent One"),
        DeliveryAgent(tenant_id=tenant.id, name="Agent Two"),
    ])
    db.session.commit()

    click.echo(f"PASS Seeded tenant {tenant.code} (id={tenant.id}), provider id={provider.id}, customer id={customer.id}")


@click.group('wallet')
def wallet_group():
    """Wallet ledger verification and repair."""


def _wallet_user_ids(user_id):
    if user_id:
        return [user_id]
    return [row.user_id for row in db.session.query(Wallet.user_id).order_by(Wallet.user_id).all()]


@wallet_group.command('replay')
@click.option('--user-id', type=int, help='Only replay this user')
@with_appcontext
def replay_wallets(user_id):
    """Report wallets whose cached balance differs from the ledger."""
    drifted = 0
    checked = 0
    for uid in _wallet_user_ids(user_id):
        try:
            result = wallet_service.replay_balance(uid)
        except FulfillmentError as e:
            raise click.ClickException(str(e))
        checked += 1
        if not result["in_sync"]:
            drifted += 1
            click.echo(
                f"DRIFT user={uid} cached={result['cached_balance_cents']} "
                f"ledger={result['ledger_balance_cents']} entries={result['entry_count']}"
            )
    click.echo(f"Checked {checked} wallet(s); {drifted} drifted.")


@wallet_group.command('rebuild')
@click.option('--user-id', type=int, help='Only rebuild this user')
@with_appcontext
def rebuild_wallets(user_id):
    """Overwrite cached balances with the ledger replay."""
    for uid in _wallet_user_ids(user_id):
        try:
            wallet = wallet_service.rebuild_balance(uid)
        except FulfillmentError as e:
            raise click.ClickException(str(e))
        click.echo(f"user={uid} balance={wallet.balance_cents}")


@click.group('orders')
def orders_group():
    """Order inspection."""


@orders_group.command('show')
@click.argument('order_id', type=int)
@with_appcontext
def show_order(order_id):
    try:
        order = order_service.get_order(order_id)
    except FulfillmentError as e:
        raise click.ClickException(str(e))

    click.echo(f"{order.order_number}  status={order.status}  agent={order.assigned_agent_id or '-'} ({order.agent_status or '-'})")
    for item in order.items:
        click.echo(f"  {item.quantity} x {item.name} @ {item.unit_price_cents} = {item.line_total_cents}")
    click.echo(
        f"  subtotal={order.subtotal_cents} discount={order.discount_cents} "
        f"delivery={order.delivery_charge_cents} surcharge={order.surcharge_cents} "
        f"final={order.final_amount_cents}"
    )


@orders_group.command('timeline')
@click.argument('order_id', type=int)
@with_appcontext
def show_timeline(order_id):
    try:
        events = timeline_service.get_order_timeline(order_id)
    except FulfillmentError as e:
        raise click.ClickException(str(e))

    for ev in events:
        click.echo(f"{to_utc_z(ev.time)}  {ev.label:<18} {ev.description}")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(wallet_group)
    app.cli.add_command(orders_group)
