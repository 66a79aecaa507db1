"""
Pytest fixtures for posledger backend tests.

Provides the app on in-memory SQLite, a per-test table wipe, seeded users,
catalog rows and counterparties, and auth helpers for route tests.
"""

import pytest

from posledger import create_app
from posledger.config import TestConfig
from posledger.extensions import db
from posledger.models import StockMovement
from posledger.models.auth import ROLE_ADMIN, ROLE_CASHIER, ROLE_MANAGER
from posledger.services.auth_service import create_user
from posledger.services.customer_service import create_customer, ensure_walk_in_customer
from posledger.services.product_service import create_product
from posledger.services.sequence_service import ensure_invoice_sequence
from posledger.services.supplier_service import create_supplier


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.expunge_all()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        ensure_invoice_sequence()
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        db.session.expunge_all()


# =============================================================================
# USERS
# =============================================================================

@pytest.fixture(scope='function')
def admin(db_session):
    return create_user("admin", PASSWORD, role=ROLE_ADMIN, full_name="Admin")


@pytest.fixture(scope='function')
def manager(db_session):
    return create_user("manager", PASSWORD, role=ROLE_MANAGER)


@pytest.fixture(scope='function')
def cashier(db_session):
    return create_user("cashier", PASSWORD, role=ROLE_CASHIER)


# =============================================================================
# CATALOG AND COUNTERPARTIES
# =============================================================================

@pytest.fixture(scope='function')
def walk_in(db_session):
    return ensure_walk_in_customer()


@pytest.fixture(scope='function')
def supplier(db_session, admin):
    return create_supplier(actor_id=admin.id, name="Golden Rice Co", phone="0950000001")


@pytest.fixture(scope='function')
def other_supplier(db_session, admin):
    return create_supplier(actor_id=admin.id, name="Mandalay Oils")


@pytest.fixture(scope='function')
def product(db_session, admin):
    """Cost 80, price 150, 20 on hand (one OPENING movement)."""
    return create_product(
        actor_id=admin.id,
        name="Rice 5kg",
        barcode="8850001000011",
        selling_price_cents=150,
        purchase_price_cents=80,
        min_stock_level=5,
        opening_stock=20,
    )


@pytest.fixture(scope='function')
def product_b(db_session, admin):
    """Cost 50, price 100, 50 on hand."""
    return create_product(
        actor_id=admin.id,
        name="Cooking Oil 1L",
        barcode="8850001000028",
        selling_price_cents=100,
        purchase_price_cents=50,
        min_stock_level=10,
        opening_stock=50,
    )


@pytest.fixture(scope='function')
def customer(db_session, admin, walk_in):
    return create_customer(actor_id=admin.id, name="Daw Aye", phone="0911111111")


# =============================================================================
# HELPERS
# =============================================================================

def movement_count(product_id: int | None = None) -> int:
    q = db.session.query(StockMovement)
    if product_id is not None:
        q = q.filter_by(product_id=product_id)
    return q.count()


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
def admin_headers(client, admin):
    return auth_headers(get_auth_token(client, admin.username))


@pytest.fixture(scope='function')
def cashier_headers(client, cashier):
    return auth_headers(get_auth_token(client, cashier.username))
