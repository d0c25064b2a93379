"""
Pytest fixtures for RetailPOS backend tests.

Provides an in-memory database, operator/customer/catalog fixtures and an
authenticated test client.
"""

import pytest

from retailpos import create_app
from retailpos.extensions import db
from retailpos.services.auth_service import create_user
from retailpos.services import customers_service
from retailpos.services import products_service


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_ENGINE_OPTIONS': {},
        'DB_RETRY_ATTEMPTS': 1,
        'PERSIST_PRICE_OVERRIDES': True,
        'LOYALTY_ENABLED': True,
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
def cashier(db_session):
    """Active operator; low bcrypt cost keeps the suite fast."""
    return create_user("cashier", "cashier@retailpos.local", PASSWORD, rounds=4)


@pytest.fixture(scope='function')
def loyal_customer(db_session):
    return customers_service.create_customer(
        name="Jane Doe", phone="555-0100", email="jane@example.com", loyalty_enabled=True,
    )


@pytest.fixture(scope='function')
def widget(db_session, cashier):
    """Widget: 10.00, 20 in stock."""
    return products_service.create_product(
        sku="WID-1", name="Widget", price_cents=1000, user_id=cashier.id,
        barcode="1111111111111", opening_stock=20, min_stock_level=5,
    )


@pytest.fixture(scope='function')
def gadget(db_session, cashier):
    """Gadget: 2.50, 10 in stock."""
    return products_service.create_product(
        sku="GAD-1", name="Gadget", price_cents=250, user_id=cashier.id,
        opening_stock=10,
    )


@pytest.fixture(scope='function')
def auth_headers(client, cashier):
    resp = client.post("/api/auth/login", json={"username": "cashier", "password": PASSWORD})
    assert resp.status_code == 200
    return {"Authorization": f"Bearer {resp.get_json()['token']}"}
