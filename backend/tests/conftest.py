"""
Pytest fixtures for Tubex backend tests.

Provides an in-memory database, seeded companies / users / products, and
helpers for acting as a user in services and over HTTP.
"""

import pytest

from tubex import create_app
from tubex.extensions import db
from tubex.models import Company, User, Product
from tubex.services.actor import Actor


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def supplier(db_session):
    company = Company(name="Tubex Supply", email="billing@tubex.test", contact_phone="+1 555 0100",
                      address={"line1": "1 Pipe Road", "city": "Springfield"})
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def buyer(db_session):
    company = Company(name="Acme Builders", email="ap@acme.test")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def other_buyer(db_session):
    company = Company(name="Beta Contractors", email="ap@beta.test")
    db_session.add(company)
    db_session.commit()
    return company


@pytest.fixture(scope='function')
def admin(db_session, supplier):
    user = User(email="admin@tubex.test", name="Admin", role="admin", company_id=supplier.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def customer(db_session, buyer):
    user = User(email="buyer@acme.test", name="Acme Buyer", role="customer", company_id=buyer.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def other_customer(db_session, other_buyer):
    user = User(email="buyer@beta.test", name="Beta Buyer", role="customer", company_id=other_buyer.id)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def products(db_session, supplier):
    """Two active products (10.00 and 25.00) and one inactive one."""
    rows = [
        Product(sku="PIPE-20", name="PVC pipe 20mm", base_price_cents=1000, unit="m", supplier_id=supplier.id),
        Product(sku="PIPE-32", name="HDPE pipe 32mm", base_price_cents=2500, unit="m", supplier_id=supplier.id),
        Product(sku="PIPE-OLD", name="Cast iron pipe", base_price_cents=4000, unit="m",
                supplier_id=supplier.id, status="inactive"),
    ]
    db_session.add_all(rows)
    db_session.commit()
    return rows


def as_actor(user: User) -> Actor:
    """Service-layer identity for a user."""
    return Actor.from_user(user)


def auth_headers(user: User) -> dict:
    """Headers the upstream gateway would forward for a user."""
    return {'X-User-Id': str(user.id)}
