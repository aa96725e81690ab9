# Overview: Flask CLI command groups for bootstrap and scheduled jobs.

# backend/bodega/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates the tables if missing and the default operators.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Operators:
# - python -m flask users list
# - python -m flask users create --username ana --password "Password123!" --role seller
#
# Scheduled jobs:
# - python -m flask credits mark-overdue [--today 2026-01-31]
#   Daily overdue sweep (cron it once a day after midnight, business timezone).
# - python -m flask inventory verify
#   Compare each product's stock with the replay of its movements.

import click
from flask.cli import with_appcontext

from .errors import BodegaError
from .extensions import db
from .models import Product, User
from .services import credit_service, inventory_service
from .services.auth_service import create_user
from .time_utils import parse_iso_date

DEFAULT_PASSWORD = "Password123!"
DEFAULT_USERS = (
    ("admin", "admin"),
    ("manager", "manager"),
    ("seller", "seller"),
)


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create missing tables and the default operators.

    Users: admin / manager / seller, all with password "Password123!".

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing bodega...")

    db.create_all()
    click.echo("PASS Schema ready")

    for username, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"PASS User exists: {username}")
            continue
        create_user(username=username, password=DEFAULT_PASSWORD, role=role)
        click.echo(f"PASS Created user: {username} (role '{role}')")

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


@click.group('users')
def users_group():
    """Operator accounts."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(['admin', 'manager', 'seller']), prompt=True, help='Role')
@with_appcontext
def create_user_cli(username, password, role):
    """
    Create an operator.

    Password: 8+ chars, uppercase, lowercase, digit and special character.
    """
    try:
        user = create_user(username=username, password=password, role=role)
    except BodegaError as e:
        click.echo(f"FAIL {e.message}")
        for detail in e.details:
            click.echo(f"     - {detail}")
        raise SystemExit(1)

    click.echo(f"PASS Created user: {user.username} with role '{user.role}'")
    click.echo("SECURITY Password securely hashed with bcrypt")


@users_group.command('list')
@with_appcontext
def list_users():
    users = db.session.query(User).order_by(User.id.asc()).all()
    if not users:
        click.echo("No users. Run 'python -m flask system init' first.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.username:<20} {user.role:<8} {status}")


@click.group('credits')
def credits_group():
    """Credit ledger jobs."""


@credits_group.command('mark-overdue')
@click.option('--today', 'today_str', default=None, help='Override "today" (YYYY-MM-DD)')
@with_appcontext
def mark_overdue_cli(today_str):
    """Flag ACTIVE credits past their due date as OVERDUE."""
    try:
        today = parse_iso_date(today_str) if today_str else None
    except ValueError:
        raise click.BadParameter("must be YYYY-MM-DD", param_hint="--today")

    credits = credit_service.mark_overdue(today)
    click.echo(f"PASS {len(credits)} credit(s) marked OVERDUE")
    for credit in credits:
        click.echo(f"     credit {credit.id}: client {credit.client_id}, due {credit.due_date.isoformat()}, balance {credit.balance}")


@click.group('inventory')
def inventory_group():
    """Inventory ledger checks."""


@inventory_group.command('verify')
@with_appcontext
def verify_inventory():
    """Report products whose stored stock differs from their movement replay."""
    mismatches = 0
    for product in db.session.query(Product).order_by(Product.id.asc()).all():
        replayed = inventory_service.replay_stock(product.id)
        if replayed != product.stock_quantity:
            mismatches += 1
            click.echo(f"FAIL {product.sku}: stored {product.stock_quantity}, replayed {replayed}")

    if mismatches:
        raise SystemExit(1)
    click.echo("PASS Stock matches movement history for every product")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(credits_group)
    app.cli.add_command(inventory_group)
