"""
Pytest fixtures for merch admin backend tests.

Provides test database setup, entity factories and authenticated clients.
"""

import pytest
from merch_admin import create_app
from merch_admin.extensions import db
from merch_admin.services import products_service, stands_service, users_service, session_service


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'UPLOAD_FOLDER': str(tmp_path_factory.mktemp('uploads')),
        'RESERVE_STOCK_ON_CREATE': True,
        'CASH_ORDER_EXPIRY_MINUTES': 30,
        'BCRYPT_ROUNDS': 4,
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
def make_product(db_session):
    """Factory: make_product("Tee", [("M", 10, 2500), ...]) -> Product."""
    def _make(name="Tour T-Shirt", sizes=(("M", 10, 2500),), **fields):
        return products_service.create_product(
            patch={"name": name, **fields},
            variants=[{"size": s, "quantity": q, "price_cents": p} for s, q, p in sizes],
        )
    return _make


@pytest.fixture(scope='function')
def make_stand(db_session):
    def _make(name="Main Entrance", **fields):
        return stands_service.create_stand(patch={"name": name, **fields})
    return _make


@pytest.fixture(scope='function')
def make_user(db_session):
    """Factory: make_user("manager") -> User with password "Password123"."""
    counter = {"n": 0}

    def _make(role="staff", email=None, password="Password123"):
        counter["n"] += 1
        return users_service.create_user(
            email=email or f"{role}{counter['n']}@merch.test",
            full_name=f"{role.title()} {counter['n']}",
            role=role,
            password=password,
        )
    return _make


@pytest.fixture(scope='function')
def auth_headers(db_session):
    """Factory: auth_headers(user) -> {"Authorization": "Bearer ..."}."""
    def _headers(user):
        _, token = session_service.create_session(user_id=user.id)
        return {"Authorization": f"Bearer {token}"}
    return _headers


@pytest.fixture(scope='function')
def admin_headers(make_user, auth_headers):
    return auth_headers(make_user("admin"))


@pytest.fixture(scope='function')
def manager_headers(make_user, auth_headers):
    return auth_headers(make_user("manager"))


@pytest.fixture(scope='function')
def staff_headers(make_user, auth_headers):
    return auth_headers(make_user("staff"))
