# Overview: Flask CLI command groups for bootstrap, catalog setup and stock maintenance.

# backend/retailpos/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Apply the schema: python -m flask db upgrade
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Idempotent bootstrap: creates the default admin and cashier users.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
#
# Users:
# - python -m flask users create --username cashier2 --email c2@retailpos.local --password "Password123!"
# - python -m flask users list
#
# Catalog and customers:
# - python -m flask products create --sku WID-1 --name Widget --price-cents 1000 --opening-stock 25
# - python -m flask customers create --name "Jane Doe" --phone 555-0100 --loyalty
#
# Stock maintenance:
# - python -m flask stock reconcile [--fix]
#   Compare stored stock quantities with the movement ledger (and repair with --fix).

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User
from .services.auth_service import create_user, PasswordValidationError
from .services import customers_service
from .services import inventory_service
from .services import products_service
from .validation import AuthenticationError, ValidationError


DEFAULT_PASSWORD = "Password123!"


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Initialize RetailPOS: default operator accounts.

    Creates:
    - Users: admin/admin@retailpos.local, cashier/cashier@retailpos.local
    - All passwords default to: "Password123!"

    SECURITY: Change passwords immediately in production!
    """
    click.echo("START Initializing RetailPOS...")

    for username, email in (("admin", "admin@retailpos.local"), ("cashier", "cashier@retailpos.local")):
        if db.session.query(User).filter_by(username=username).first():
            click.echo(f"WARN  User '{username}' already exists, skipping...")
            continue
        try:
            create_user(username=username, email=email, password=DEFAULT_PASSWORD)
            click.echo(f"PASS Created user: {username} ({email})")
        except (PasswordValidationError, ValueError) as e:
            click.echo(f"FAIL Failed to create user '{username}': {str(e)}")

    click.echo("\nDONE RetailPOS initialized.")
    click.echo("Default Credentials (CHANGE IN PRODUCTION!):")
    click.echo(f"   admin   / {DEFAULT_PASSWORD}")
    click.echo(f"   cashier / {DEFAULT_PASSWORD}")


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
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--username', prompt=True, help='Username')
@click.option('--email', prompt=True, help='Email address')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@with_appcontext
def create_user_cli(username, email, password):
    """
    Create an operator account.

    Password must meet strength requirements:
    - Minimum 8 characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character
    """
    try:
        user = create_user(username=username, email=email, password=password)
        click.echo(f"PASS Created user: {user.username} ({user.email}) ID: {user.id}")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
        click.echo("Requirements: 8+ chars, uppercase, lowercase, digit, special char")
    except ValueError as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@with_appcontext
def list_users():
    """List all operator accounts."""
    users = db.session.query(User).order_by(User.id).all()
    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*70)
    click.echo(f"{'ID':<5} {'Username':<20} {'Email':<35} {'Active'}")
    click.echo("="*70)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.username:<20} {user.email:<35} {active_str}")
    click.echo("="*70 + "\n")


def _acting_user_id(username: str) -> int | None:
    user = db.session.query(User).filter_by(username=username).first()
    return user.id if user else None


@click.group('products')
def products_group():
    """Catalog setup commands."""


@products_group.command('create')
@click.option('--sku', required=True, help='Unique SKU')
@click.option('--name', required=True, help='Display name')
@click.option('--price-cents', type=int, required=True, help='List price in cents')
@click.option('--barcode', default=None, help='Unique barcode')
@click.option('--cost-price-cents', type=int, default=None, help='Unit cost in cents')
@click.option('--min-stock', type=int, default=None, help='Low-stock threshold')
@click.option('--opening-stock', type=int, default=0, help='Opening stock, posted as an "in" movement')
@click.option('--as-user', 'as_user', default='admin', help='Operator recorded on the opening movement')
@with_appcontext
def create_product_cli(sku, name, price_cents, barcode, cost_price_cents, min_stock, opening_stock, as_user):
    """Create a catalog product."""
    try:
        product = products_service.create_product(
            sku=sku,
            name=name,
            price_cents=price_cents,
            user_id=_acting_user_id(as_user),
            barcode=barcode,
            cost_price_cents=cost_price_cents,
            min_stock_level=min_stock,
            opening_stock=opening_stock,
        )
        click.echo(f"PASS Created product {product.sku} (ID: {product.id}) stock={product.stock_quantity}")
    except AuthenticationError:
        click.echo(f"FAIL Unknown or inactive user '{as_user}'. Opening stock needs an acting user.")
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")


@click.group('customers')
def customers_group():
    """Customer setup commands."""


@customers_group.command('create')
@click.option('--name', required=True, help='Customer name')
@click.option('--phone', required=True, help='Phone number')
@click.option('--email', default=None, help='Email address')
@click.option('--loyalty/--no-loyalty', default=False, help='Enroll in loyalty points')
@with_appcontext
def create_customer_cli(name, phone, email, loyalty):
    """Register a customer."""
    try:
        customer = customers_service.create_customer(
            name=name, phone=phone, email=email, loyalty_enabled=loyalty,
        )
        click.echo(f"PASS Created customer {customer.name} (ID: {customer.id})")
    except ValidationError as e:
        click.echo(f"FAIL {str(e)}")


@click.group('stock')
def stock_group():
    """Stock ledger maintenance commands."""


@stock_group.command('reconcile')
@click.option('--fix', is_flag=True, help='Overwrite stored quantities with ledger sums')
@with_appcontext
def reconcile_stock(fix):
    """Report products whose stored stock differs from the movement ledger."""
    drift = inventory_service.reconcile_stock_quantities(fix=fix)
    if not drift:
        click.echo("PASS Stock quantities match the ledger.")
        return

    for row in drift:
        click.echo(
            f"DRIFT {row['sku']:<20} stored={row['stock_quantity']:<8} ledger={row['ledger_quantity']}"
        )
    if fix:
        click.echo(f"PASS Repaired {len(drift)} product(s).")
    else:
        click.echo(f"WARN {len(drift)} product(s) drift. Re-run with --fix to repair.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(products_group)
    app.cli.add_command(customers_group)
    app.cli.add_command(stock_group)
