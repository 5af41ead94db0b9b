"""
Pytest fixtures for stockroom backend tests.

Provides an in-memory database, per-test table truncation, users with
bearer tokens and a small catalog (category, locations, partners, products).
"""

import pytest

from stockroom import create_app
from stockroom.extensions import db
from stockroom.models import User
from stockroom.services import catalog_service, partner_service
from stockroom.services.auth_service import create_session, hash_password


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_LOCK_TIMEOUT': 2,
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


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt at cost 12 is slow; hash the shared test password once."""
    return hash_password(PASSWORD)


def _make_user(role: str, password_hash: str) -> User:
    user = User(
        name=f"{role.capitalize()} User",
        email=f"{role}@stockroom.test",
        password_hash=password_hash,
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session, password_hash):
    return _make_user("admin", password_hash)


@pytest.fixture(scope='function')
def manager_user(db_session, password_hash):
    return _make_user("manager", password_hash)


@pytest.fixture(scope='function')
def staff_user(db_session, password_hash):
    return _make_user("staff", password_hash)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    _, token = create_session(admin_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def manager_headers(manager_user):
    _, token = create_session(manager_user.id)
    return auth_headers(token)


@pytest.fixture(scope='function')
def staff_headers(staff_user):
    _, token = create_session(staff_user.id)
    return auth_headers(token)


# =============================================================================
# Catalog
# =============================================================================


@pytest.fixture(scope='function')
def category(db_session):
    return catalog_service.create_category({"name": "Hardware"})


@pytest.fixture(scope='function')
def warehouse(db_session):
    return catalog_service.create_location({"name": "Main Warehouse", "code": "wh1", "type": "warehouse"})


@pytest.fixture(scope='function')
def shop(db_session):
    return catalog_service.create_location({"name": "Front Store", "code": "st1", "type": "store"})


@pytest.fixture(scope='function')
def supplier(db_session):
    return partner_service.create_partner("supplier", {
        "name": "Acme Supply",
        "email": "orders@acme.test",
        "paymentTerms": "net_30",
    })


@pytest.fixture(scope='function')
def customer(db_session):
    """Cash customer: sales never reach the balance."""
    return partner_service.create_partner("customer", {
        "name": "Counter Customer",
        "email": "counter@example.test",
        "paymentTerms": "cash",
    })


@pytest.fixture(scope='function')
def credit_customer(db_session):
    """net_30 customer: unpaid sales are carried on the balance."""
    return partner_service.create_partner("customer", {
        "name": "Credit Customer",
        "email": "credit@example.test",
        "paymentTerms": "net_30",
        "customerGroup": "wholesale",
    })


@pytest.fixture(scope='function')
def make_product(db_session, category):
    """Factory: cost 10, price 15, minimum 5 unless overridden."""
    created = []

    def _make(**overrides):
        n = len(created) + 1
        payload = {
            "sku": f"SKU-{n:03d}",
            "name": f"Product {n}",
            "categoryId": category.id,
            "costPrice": 10,
            "sellingPrice": 15,
            "minimumStock": 5,
        }
        payload.update(overrides)
        product = catalog_service.create_product(payload)
        created.append(product)
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    """Widget with 50 units of unlocated opening stock."""
    return make_product(sku="WIDGET-1", name="Widget", openingStock=50)
