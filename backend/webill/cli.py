# Overview: Flask CLI commands for database bootstrap, demo data and reset.

# backend/webill/cli.py
# Commands Legend (run from the backend directory):
# Prereqs:
# - Activate your virtualenv.
# - Set FLASK_APP to webill (PowerShell: $env:FLASK_APP="webill").
# - Use: python -m flask webill <command> [options]
#
# - python -m flask webill init-db
#   Create all tables (idempotent).
# - python -m flask webill seed-demo
#   Insert demo categories, parties and items (skips rows that already exist).
# - python -m flask webill reset-db --yes
#   DEV/TEST only: drop and recreate all tables (deletes all data).

from decimal import Decimal

import click
from flask.cli import with_appcontext

from .extensions import db
from .models import Category, Item, Party


DEMO_CATEGORIES = [
    ("Electronics", "Electronic devices and accessories"),
    ("Office Supplies", "Office equipment and supplies"),
    ("Software", "Software licenses and subscriptions"),
]

DEMO_PARTIES = [
    {
        "type": "CUSTOMER",
        "name": "John Doe",
        "email": "john.doe@example.com",
        "phone": "+1-555-0101",
        "address": "123 Main St, Anytown, USA",
    },
    {
        "type": "CUSTOMER",
        "name": "Jane Smith",
        "email": "jane.smith@example.com",
        "phone": "+1-555-0102",
        "address": "456 Oak Ave, Somewhere, USA",
    },
    {
        "type": "SUPPLIER",
        "name": "TechCorp Supplies",
        "email": "supplier@techcorp.com",
        "phone": "+1-555-0201",
        "address": "789 Business Blvd, Commerce City, USA",
    },
]

# (sku, name, description, category, unit price, stock)
DEMO_ITEMS = [
    ("LAPTOP-001", "Business Laptop", "High-performance laptop for business use", "Electronics", "1299.99", 50),
    ("DESK-001", "Office Desk", "Ergonomic office desk", "Office Supplies", "299.99", 25),
    ("SW-001", "Office Suite License", "Annual office software license", "Software", "199.99", 100),
]


@click.group('webill')
def webill_group():
    """Database bootstrap and demo data commands."""


@webill_group.command('init-db')
@with_appcontext
def init_db():
    """Create all tables."""
    db.create_all()
    click.echo("PASS Tables created.")


@webill_group.command('seed-demo')
@with_appcontext
def seed_demo():
    """Insert demo categories, parties and items; existing rows are left alone."""
    db.create_all()

    categories = {}
    for name, description in DEMO_CATEGORIES:
        category = db.session.query(Category).filter_by(name=name).first()
        if category is None:
            category = Category(name=name, description=description)
            db.session.add(category)
        categories[name] = category
    db.session.flush()
    click.echo(f"PASS Categories: {len(categories)}")

    created_parties = 0
    for fields in DEMO_PARTIES:
        if db.session.query(Party).filter_by(email=fields["email"]).first() is None:
            db.session.add(Party(is_active=True, **fields))
            created_parties += 1
    click.echo(f"PASS Parties created: {created_parties}")

    created_items = 0
    for sku, name, description, category, price, stock in DEMO_ITEMS:
        if db.session.query(Item).filter_by(sku=sku).first() is not None:
            continue
        db.session.add(
            Item(
                sku=sku,
                name=name,
                description=description,
                category_id=categories[category].id,
                unit_price=Decimal(price),
                stock_quantity=stock,
                is_active=True,
            )
        )
        created_items += 1
    db.session.commit()
    click.echo(f"PASS Items created: {created_items}")


@webill_group.command('reset-db')
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

    click.echo("PASS Database reset complete. Run 'python -m flask webill seed-demo' for demo data.")


def register_commands(app):
    """Register all CLI commands with Flask app."""
    app.cli.add_command(webill_group)
