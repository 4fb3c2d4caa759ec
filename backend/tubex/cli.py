# Overview: Flask CLI command groups for bootstrap, user setup, and the pricing migration.

# backend/tubex/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to wsgi.py (PowerShell: $env:FLASK_APP="wsgi.py").
# - Use: python -m flask <group> <command> [options]
#
# System bootstrap/repair:
# - python -m flask system init-db
#   Create all tables that do not exist yet (use `flask db upgrade` in production).
# - python -m flask system reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).
# - python -m flask system seed
#   Idempotent demo data: one supplier, one buyer company, admin and customer users, two products.
#
# User inspection/bootstrap:
# - python -m flask users list [--company-id 1]
# - python -m flask users create --email buyer@acme.test --role customer --company-id 2
#
# Pricing migration (legacy price lists -> unified pricing):
# - python -m flask pricing migrate [--actor-id 1]
# - python -m flask pricing verify
# - python -m flask pricing rollback --yes

import click
from flask.cli import with_appcontext

from .errors import AppError
from .extensions import db
from .models import Company, User, Product
from .models.accounts import VALID_ROLES, ROLE_ADMIN, ROLE_CUSTOMER
from .services import pricing_migration_service


@click.group('system')
def system_group():
    """System bootstrap and repair commands."""


@system_group.command('init-db')
@with_appcontext
def init_db():
    """Create missing tables from the model metadata."""
    db.create_all()
    click.echo("PASS Tables created.")


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

    click.echo("PASS Database reset complete. Run 'python -m flask system seed' for demo data.")


@system_group.command('seed')
@with_appcontext
def seed():
    """
    Create demo data if missing.

    Creates:
    - Companies: "Tubex Supply" (supplier), "Acme Builders" (buyer)
    - Users: admin@tubex.local (admin), buyer@acme.local (customer)
    - Products: two pipe SKUs supplied by Tubex Supply
    """
    click.echo("START Seeding demo data...")

    supplier = db.session.query(Company).filter_by(name="Tubex Supply").first()
    if not supplier:
        supplier = Company(name="Tubex Supply", email="billing@tubex.local")
        db.session.add(supplier)
    buyer = db.session.query(Company).filter_by(name="Acme Builders").first()
    if not buyer:
        buyer = Company(name="Acme Builders", email="ap@acme.local")
        db.session.add(buyer)
    db.session.flush()

    for email, name, role, company in (
        ("admin@tubex.local", "Admin", ROLE_ADMIN, supplier),
        ("buyer@acme.local", "Acme Buyer", ROLE_CUSTOMER, buyer),
    ):
        if not db.session.query(User).filter_by(email=email).first():
            db.session.add(User(email=email, name=name, role=role, company_id=company.id))
            click.echo(f"PASS Created user {email} ({role})")

    for sku, name, price in (
        ("PIPE-PVC-20", "PVC pipe 20mm", 450),
        ("PIPE-HDPE-32", "HDPE pipe 32mm", 1275),
    ):
        if not db.session.query(Product).filter_by(sku=sku).first():
            db.session.add(Product(
                sku=sku,
                name=name,
                base_price_cents=price,
                unit="m",
                supplier_id=supplier.id,
            ))
            click.echo(f"PASS Created product {sku}")

    db.session.commit()
    click.echo("PASS Seed complete.")


@click.group('users')
def users_group():
    """User inspection and bootstrap."""


@users_group.command('list')
@click.option('--company-id', type=int, help='Only users of this company')
@with_appcontext
def list_users(company_id):
    query = db.session.query(User).order_by(User.id)
    if company_id:
        query = query.filter(User.company_id == company_id)
    users = query.all()
    if not users:
        click.echo("No users found.")
        return
    for user in users:
        status = "active" if user.is_active else "inactive"
        click.echo(f"{user.id:>4}  {user.email:<32} {user.role:<9} company={user.company_id} {status}")


@users_group.command('create')
@click.option('--email', prompt=True, help='Email address')
@click.option('--name', default=None, help='Display name')
@click.option('--role', type=click.Choice(sorted(VALID_ROLES)), prompt=True, help='Role')
@click.option('--company-id', type=int, default=None, help='Company the user acts for')
@with_appcontext
def create_user_cli(email, name, role, company_id):
    """Create a user. Authentication is upstream; only role and company are stored."""
    if db.session.query(User).filter_by(email=email).first():
        click.echo(f"FAIL User {email} already exists")
        raise SystemExit(1)
    if company_id and not db.session.get(Company, company_id):
        click.echo(f"FAIL Company ID {company_id} not found")
        raise SystemExit(1)

    user = User(email=email, name=name, role=role, company_id=company_id)
    db.session.add(user)
    db.session.commit()
    click.echo(f"PASS Created user {user.email} (ID: {user.id}, role: {user.role})")


@click.group('pricing')
def pricing_group():
    """Legacy price list -> unified pricing migration."""


@pricing_group.command('migrate')
@click.option('--actor-id', type=int, default=None, help='User recorded as creator of migrated rows')
@with_appcontext
def migrate_pricing(actor_id):
    try:
        report = pricing_migration_service.migrate_to_unified_pricing(actor_id)
    except AppError as e:
        click.echo(f"FAIL {e.message}")
        if e.details:
            click.echo(f"     {e.details}")
        raise SystemExit(1)
    click.echo(
        f"PASS Migrated {report['migrated_pricing']} pricing rows and "
        f"{report['migrated_history']} history rows at {report['migration_date']}"
    )


@pricing_group.command('verify')
@with_appcontext
def verify_pricing():
    result = pricing_migration_service.verify_migration()
    for key in ("price_list_items", "migrated_pricing", "product_price_history", "migrated_history"):
        click.echo(f"{key:<24} {result[key]}")
    click.echo("PASS Counts match" if result["ok"] else "FAIL Counts differ")
    if not result["ok"]:
        raise SystemExit(1)


@pricing_group.command('rollback')
@click.option('--yes', is_flag=True, help='Skip confirmation')
@with_appcontext
def rollback_pricing(yes):
    if not yes:
        click.confirm("WARN This deletes every migrated pricing row. Continue?", abort=True)
    result = pricing_migration_service.rollback_migration()
    click.echo(
        f"PASS Deleted {result['deleted_pricing']} pricing rows and "
        f"{result['deleted_history']} history rows"
    )


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(system_group)
    app.cli.add_command(users_group)
    app.cli.add_command(pricing_group)
