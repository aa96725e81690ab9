"""
Pytest fixtures for bodega backend tests.

Provides an in-memory database, a table wipe between tests, small factories
for operators, clients and stocked products, and an authenticated test client.
"""

from decimal import Decimal

import pytest

from bodega import create_app
from bodega.extensions import db
from bodega.models import Client, ClientClass, Product
from bodega.services import inventory_service
from bodega.services.auth_service import create_user

PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'BUSINESS_TIMEZONE': 'UTC',
        'DEFAULT_CREDIT_TERM_DAYS': 30,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Fresh database for each test."""
    # Clear all data but keep schema
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    db.session.rollback()


@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user("admin", PASSWORD, role="admin")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return create_user("manager", PASSWORD, role="manager")


@pytest.fixture(scope='function')
def seller_user(db_session):
    return create_user("seller", PASSWORD, role="seller")


@pytest.fixture(scope='function')
def make_client(db_session):
    """Factory: make_client(client_class="CREDIT", credit_limit="5000")."""
    def _make(name="Walk-in", client_class=ClientClass.CASH, credit_limit="0", is_active=True):
        c = Client(
            name=name,
            client_class=ClientClass(client_class),
            credit_limit=Decimal(str(credit_limit)),
            is_active=is_active,
        )
        db_session.add(c)
        db_session.commit()
        return c
    return _make


@pytest.fixture(scope='function')
def cash_client(make_client):
    return make_client("Counter customer", ClientClass.CASH)


@pytest.fixture(scope='function')
def credit_client(make_client):
    return make_client("Hardware store", ClientClass.CREDIT, credit_limit="5000")


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: product with its opening stock recorded as an IN movement."""
    counter = {"n": 0}

    def _make(name=None, unit_price="10.00", stock=0, unit="unit"):
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:04d}",
            name=name or f"Product {counter['n']}",
            unit_of_measure=unit,
            unit_price=Decimal(unit_price),
        )
        db_session.add(product)
        db_session.commit()
        if stock:
            inventory_service.record_in(product.id, stock, "Initial stock")
        return product
    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Cement bag, 100.00 each, 50 in stock."""
    return make_product("Cement bag", unit_price="100.00", stock=50, unit="bag")


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, manager_user.username))


@pytest.fixture(scope='function')
def seller_headers(client, seller_user):
    return auth_headers(get_auth_token(client, seller_user.username))
