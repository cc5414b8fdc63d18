"""
Pytest fixtures for WeBill backend tests.

Provides an in-memory ledger store, per-test table wipe, test client and
small model factories.
"""

from decimal import Decimal

import pytest
from webill import create_app
from webill.extensions import db
from webill.models import Category, Item, Party


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'REPORT_TIMEOUT_SECONDS': 30,
        'COMPANY_NAME': 'WeBill',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def make_party(db_session):
    """Factory for active parties."""
    def _make(party_type="CUSTOMER", name=None, **fields) -> Party:
        party = Party(type=party_type, name=name or f"{party_type.title()} Co", is_active=True, **fields)
        db_session.add(party)
        db_session.commit()
        return party
    return _make


@pytest.fixture(scope='function')
def make_item(db_session):
    """Factory for active items; stock is set directly, bypassing the ledger."""
    def _make(name="Widget", unit_price="10.00", stock=0, **fields) -> Item:
        item = Item(name=name, unit_price=Decimal(unit_price), stock_quantity=stock, is_active=True, **fields)
        db_session.add(item)
        db_session.commit()
        return item
    return _make


@pytest.fixture(scope='function')
def category(db_session):
    """Create a category."""
    category = Category(name="Hardware", description="Tools and parts")
    db_session.add(category)
    db_session.commit()
    return category


@pytest.fixture(scope='function')
def customer(make_party):
    """Create an active customer with an email (reminders need one)."""
    return make_party("CUSTOMER", "Acme Retail", email="billing@acme.test")


@pytest.fixture(scope='function')
def supplier(make_party):
    """Create an active supplier."""
    return make_party("SUPPLIER", "Parts Wholesale", email="orders@parts.test")


@pytest.fixture(scope='function')
def widget(make_item, category):
    """Create a physical item with no stock."""
    return make_item("Widget", "5.00", stock=0, sku="WID-001", category_id=category.id)
