# Overview: Flask CLI command groups for bootstrap, data entry, and maintenance.

# backend/gasline/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init [--admin-email admin@gasline.local --admin-password "Password123"]
#   Create all tables and (optionally) the first admin account.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Agencies and agents:
# - python -m flask agencies create --name "City Gas" --email citygas@example.com --city Pune
# - python -m flask agencies list
# - python -m flask agents create --agency-id 1 --name "Ravi" --email ravi@example.com --phone 9876543210
# - python -m flask agents status 3 online
#
# Catalog and stock:
# - python -m flask products create --name "LPG Cylinder" --unit cylinder --category lpg
# - python -m flask inventory receive --agency-id 1 --product-id 1 --quantity 50 [--variant 14.2kg --price 850.00]
#
# Users:
# - python -m flask users create --email owner@example.com --role agency_owner --agency-id 1 --password "Password123"
#
# Orders:
# - python -m flask orders cancel 42 --reason "Customer unreachable"
#   Cancel as the system actor; stock is restored.
#
# Maintenance:
# - python -m flask maintenance cleanup-login-otps
# - python -m flask maintenance cleanup-sessions --retention-days 30

import click
from flask.cli import with_appcontext

from .errors import ServiceError
from .extensions import db
from .models import Agency, DeliveryAgent, Product
from .models.agencies import AGENT_STATUSES
from .models.auth import USER_ROLES, ROLE_ADMIN
from .services import agent_service, auth_service, inventory_service, maintenance_service
from .services.order_service import get_state_machine
from .services.visibility_service import Caller
from .time_utils import utcnow
from .validation import normalize_email


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@click.option('--admin-email', default=None, help='Create an admin account with this email')
@click.option('--admin-password', default=None, help='Password for the admin account')
@with_appcontext
def init_system(admin_email, admin_password):
    """Create tables and optionally the first admin account. Idempotent."""
    click.echo("START Initializing Gasline...")
    db.create_all()
    click.echo("PASS Tables created")

    if admin_email:
        try:
            user = auth_service.create_user(admin_email, ROLE_ADMIN, name="Administrator", password=admin_password)
            click.echo(f"PASS Created admin: {user.email} (ID: {user.id})")
        except ServiceError as e:
            click.echo(f"SKIP Admin not created: {e.message}")

    click.echo("DONE System initialized")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system init' to initialize.")


@click.group('agencies')
def agencies_group():
    """Agency management commands."""


@agencies_group.command('create')
@click.option('--name', prompt=True, help='Agency name')
@click.option('--email', prompt=True, help='Agency email')
@click.option('--phone', default=None)
@click.option('--city', default=None)
@click.option('--inactive', is_flag=True, help='Create the agency as inactive')
@with_appcontext
def create_agency_cli(name, email, phone, city, inactive):
    try:
        email = normalize_email(email)
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    if db.session.query(Agency).filter_by(email=email).first():
        click.echo(f"FAIL Agency with email {email} already exists")
        return
    agency = Agency(name=name, email=email, phone=phone, city=city,
                    status="inactive" if inactive else "active")
    db.session.add(agency)
    db.session.commit()
    click.echo(f"PASS Created agency: {agency.name} (ID: {agency.id}, status: {agency.status})")


@agencies_group.command('list')
@with_appcontext
def list_agencies_cli():
    agencies = db.session.query(Agency).order_by(Agency.id).all()
    if not agencies:
        click.echo("No agencies found.")
        return
    click.echo(f"{'ID':<5} {'Name':<30} {'City':<20} {'Status':<10} Agents")
    click.echo("-" * 80)
    for agency in agencies:
        click.echo(f"{agency.id:<5} {agency.name:<30} {(agency.city or '-'):<20} {agency.status:<10} {len(agency.agents)}")


@click.group('agents')
def agents_group():
    """Delivery agent commands."""


@agents_group.command('create')
@click.option('--agency-id', type=int, prompt=True)
@click.option('--name', prompt=True)
@click.option('--email', prompt=True)
@click.option('--phone', prompt=True)
@click.option('--vehicle-number', default=None)
@with_appcontext
def create_agent_cli(agency_id, name, email, phone, vehicle_number):
    """Register a delivery agent. The agent signs in with a login OTP sent to --email."""
    if db.session.get(Agency, agency_id) is None:
        click.echo(f"FAIL Agency ID {agency_id} not found")
        return
    try:
        email = normalize_email(email)
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    if db.session.query(DeliveryAgent).filter(
        db.or_(DeliveryAgent.email == email, DeliveryAgent.phone == phone)
    ).first():
        click.echo("FAIL An agent with this email or phone already exists")
        return
    agent = DeliveryAgent(agency_id=agency_id, name=name, email=email, phone=phone,
                          vehicle_number=vehicle_number, joined_at=utcnow())
    db.session.add(agent)
    db.session.commit()
    click.echo(f"PASS Created agent: {agent.name} (ID: {agent.id}) for agency {agency_id}")


@agents_group.command('status')
@click.argument('agent_id', type=int)
@click.argument('status', type=click.Choice(AGENT_STATUSES))
@with_appcontext
def agent_status_cli(agent_id, status):
    """Set a delivery agent online or offline."""
    try:
        agent = agent_service.update_agent_status(agent_id, status, Caller.system())
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS {agent.name} is now {agent.status}")


@click.group('products')
def products_group():
    """Catalog commands."""


@products_group.command('create')
@click.option('--name', prompt=True)
@click.option('--unit', default=None)
@click.option('--category', type=click.Choice(['lpg', 'accessories']), default='lpg', show_default=True)
@with_appcontext
def create_product_cli(name, unit, category):
    product = Product(name=name, unit=unit, category=category, is_active=True)
    db.session.add(product)
    db.session.commit()
    click.echo(f"PASS Created product: {product.name} (ID: {product.id})")


@click.group('inventory')
def inventory_group():
    """Agency stock commands."""


@inventory_group.command('receive')
@click.option('--agency-id', type=int, required=True)
@click.option('--product-id', type=int, required=True)
@click.option('--quantity', type=int, required=True)
@click.option('--variant', 'variant_label', default=None, help='Variant label, e.g. 14.2kg')
@click.option('--price', default=None, help='Variant unit price, e.g. 850.00')
@with_appcontext
def receive_inventory_cli(agency_id, product_id, quantity, variant_label, price):
    try:
        record = inventory_service.receive_stock(
            agency_id, product_id, quantity, variant_label=variant_label, price=price
        )
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    available = inventory_service.get_available_stock(agency_id, product_id, variant_label)
    click.echo(f"PASS Received {quantity} (record {record.id}); available now: {available}")


@click.group('users')
def users_group():
    """User bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--role', type=click.Choice(list(USER_ROLES)), prompt=True, help='Role')
@click.option('--name', default=None)
@click.option('--agency-id', type=int, default=None, help='Required for agency_owner')
@click.option('--password', default=None, help='Required for admin and agency_owner')
@with_appcontext
def create_user_cli(email, role, name, agency_id, password):
    """Create an account. Passwords are hashed with bcrypt."""
    try:
        user = auth_service.create_user(email, role, name=name, password=password, agency_id=agency_id)
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Created user: {user.email} with role '{user.role}' (ID: {user.id})")


@click.group('orders')
def orders_group():
    """Order operations."""


@orders_group.command('cancel')
@click.argument('order_id', type=int)
@click.option('--reason', required=True)
@with_appcontext
def cancel_order_cli(order_id, reason):
    """Cancel an order as the system actor (restores stock)."""
    try:
        order = get_state_machine().cancel(order_id, reason, Caller.system())
    except ServiceError as e:
        click.echo(f"FAIL {e.message}")
        return
    click.echo(f"PASS Cancelled {order.order_number}")


@click.group('maintenance')
def maintenance_group():
    """Maintenance commands."""


@maintenance_group.command('cleanup-login-otps')
@with_appcontext
def cleanup_login_otps_cli():
    deleted = maintenance_service.cleanup_login_otps()
    click.echo(f"Deleted {deleted} used or expired login OTPs.")


@maintenance_group.command('cleanup-sessions')
@click.option('--retention-days', type=int, default=30, show_default=True)
@with_appcontext
def cleanup_sessions_cli(retention_days):
    deleted = maintenance_service.cleanup_sessions(retention_days=retention_days)
    click.echo(f"Deleted {deleted} session tokens older than {retention_days} days.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(agencies_group)
    app.cli.add_command(agents_group)
    app.cli.add_command(products_group)
    app.cli.add_command(inventory_group)
    app.cli.add_command(users_group)
    app.cli.add_command(orders_group)
    app.cli.add_command(maintenance_group)
