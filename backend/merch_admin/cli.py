# Overview: Flask CLI command groups for bootstrap, demo data and user management.

# backend/merch_admin/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to "merch_admin:create_app".
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init
#   Create tables (if missing) and the default admin/manager/staff accounts.
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed-demo
#   Categories, products with sizes, stands with assigned stock and a few orders.
#
# Users:
# - python -m flask users list [--role manager]
# - python -m flask users create --email ops@merch.local --password "Password123" --role manager

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import User, Product, Stand
from .services import users_service, products_service, stands_service, orders_service
from .services.auth_service import PasswordValidationError
from .services.orders_service import OrderItemInput
from .validation import ConflictError

DEFAULT_PASSWORD = "Password123"

DEFAULT_USERS = [
    ("admin@merch.local", "Admin", "admin"),
    ("manager@merch.local", "Manager", "manager"),
    ("staff@merch.local", "Stand Staff", "staff"),
]


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init')
@with_appcontext
def init_system():
    """
    Create missing tables and default accounts (idempotent).

    All default passwords are "Password123". Change them in production!
    """
    click.echo("START Initializing merch admin...")
    db.create_all()
    click.echo("PASS Tables ready")

    for email, full_name, role in DEFAULT_USERS:
        if db.session.query(User).filter_by(email=email).first():
            click.echo(f"WARN  User '{email}' already exists, skipping...")
            continue
        try:
            users_service.create_user(email=email, full_name=full_name, role=role, password=DEFAULT_PASSWORD)
            click.echo(f"PASS Created user: {email} with role '{role}'")
        except (PasswordValidationError, ConflictError, users_service.UserError) as e:
            click.echo(f"FAIL Failed to create user '{email}': {str(e)}")

    click.echo("\nDefault Credentials (CHANGE IN PRODUCTION!):")
    for email, _, role in DEFAULT_USERS:
        click.echo(f"   {role:<8} -> {email} / {DEFAULT_PASSWORD}")


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


DEMO_CATALOG = [
    # (category, name, description, [(size, quantity, price_cents)])
    ("Apparel", "Tour T-Shirt", "Black cotton tee with tour dates",
     [("S", 40, 2500), ("M", 60, 2500), ("L", 50, 2500), ("XL", 20, 2800)]),
    ("Apparel", "Hoodie", "Heavyweight hoodie, embroidered logo",
     [("M", 25, 5500), ("L", 25, 5500), ("XL", 10, 5800)]),
    ("Accessories", "Snapback Cap", "Adjustable cap",
     [("One Size", 80, 2000)]),
    ("Accessories", "Tote Bag", "Canvas tote",
     [("One Size", 4, 1500)]),
    ("Prints", "Event Poster", "Limited run screen print, 50x70",
     [("50x70", 30, 1800)]),
]

DEMO_STANDS = [
    ("Main Entrance", "Gate A", "16:00 - 02:00"),
    ("Stage Left", "Field, next to FOH", "17:00 - 01:00"),
]


@system_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Load a small demo catalog, two stands with stock and a few orders."""
    if db.session.query(Product).count() or db.session.query(Stand).count():
        click.echo("WARN  Catalog or stands already present, skipping demo seed.")
        return

    categories = {}
    products = []
    for category_name, name, description, sizes in DEMO_CATALOG:
        if category_name not in categories:
            categories[category_name] = products_service.create_category(name=category_name)
        product = products_service.create_product(
            patch={"name": name, "description": description, "category_id": categories[category_name].id},
            variants=[{"size": s, "quantity": q, "price_cents": p} for s, q, p in sizes],
        )
        products.append(product)
        click.echo(f"PASS Product: {product.name} ({len(product.variants)} sizes)")

    stands = []
    for name, location, hours in DEMO_STANDS:
        stand = stands_service.create_stand(patch={"name": name, "location": location, "operating_hours": hours})
        stands.append(stand)
        click.echo(f"PASS Stand: {stand.name} ({stand.qr_code_value})")

    variants = [v for p in products for v in p.variants]
    for index, stand in enumerate(stands):
        assignments = [
            {"product_variant_id": v.id, "quantity": max(1, v.quantity // (len(stands) + 1))}
            for v in variants[index::len(stands)]
        ]
        stands_service.assign_stock(stand.id, assignments)
    click.echo("PASS Stand stock assigned")

    tee, hoodie, cap = products[0], products[1], products[2]
    demo_orders = [
        ("Ana Torres", "ana@example.com", "card", orders_service.SALE_TYPE_ONLINE, True,
         [OrderItemInput(tee.variants[1].id, 2), OrderItemInput(cap.variants[0].id, 1)]),
        ("Luis Gomez", "luis@example.com", "cash", orders_service.SALE_TYPE_POS, False,
         [OrderItemInput(hoodie.variants[0].id, 1)]),
        ("Marta Diaz", "marta@example.com", "qr_mercadopago", orders_service.SALE_TYPE_POS, True,
         [OrderItemInput(tee.variants[2].id, 1)]),
    ]
    for customer_name, email, method, sale_type, validated, items in demo_orders:
        order = orders_service.create_order(
            customer_name=customer_name,
            customer_email=email,
            items=items,
            payment_method=method,
            sale_type=sale_type,
            stand_id=stands[0].id if sale_type == orders_service.SALE_TYPE_POS else None,
            payment_validated=validated,
        )
        click.echo(f"PASS Order {order.id} for {email}: {order.status}, {order.total_amount_cents} cents")

    click.echo("DONE Demo data loaded")


@click.group('users')
def users_group():
    """User inspection and bootstrap commands."""


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--full-name', default=None, help='Display name')
@click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Password')
@click.option('--role', type=click.Choice(list(users_service.ROLES)), prompt=True, help='Role')
@with_appcontext
def create_user_cli(email, full_name, password, role):
    """
    Create a user who can log in.

    Password must be 8+ chars with uppercase, lowercase and a digit.
    """
    try:
        user = users_service.create_user(email=email, full_name=full_name, role=role, password=password)
        click.echo(f"PASS Created user: {user.email} with role '{user.role}' (ID: {user.id})")
    except PasswordValidationError as e:
        click.echo(f"FAIL Password validation failed: {str(e)}")
    except (ConflictError, users_service.UserError) as e:
        click.echo(f"FAIL Failed to create user: {str(e)}")


@users_group.command('list')
@click.option('--role', type=click.Choice(list(users_service.ROLES)), default=None, help='Filter by role')
@with_appcontext
def list_users(role):
    """List users with role and active status."""
    users = users_service.list_users(role=role)

    if not users:
        click.echo("No users found.")
        return

    click.echo("\n" + "="*90)
    click.echo(f"{'ID':<5} {'Email':<35} {'Name':<25} {'Role':<10} {'Active'}")
    click.echo("="*90)
    for user in users:
        active_str = "Yes" if user.is_active else "No"
        click.echo(f"{user.id:<5} {user.email:<35} {(user.full_name or ''):<25} {user.role:<10} {active_str}")
    click.echo("="*90 + "\n")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
