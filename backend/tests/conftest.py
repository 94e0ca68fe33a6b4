"""
Pytest fixtures for Orbit backend tests.

Provides the app on an in-memory database, a fresh schema per test, one
user per role, actors resolved from the database and bearer headers.
"""

import pytest

from orbit import create_app
from orbit.config import TestConfig
from orbit.constants import Role
from orbit.extensions import db
from orbit.services import auth_service, role_service, session_service
from orbit.services.storage_service import Upload


PASSWORD = "secret123"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    storage_root = str(tmp_path_factory.mktemp("storage"))

    class _Config(TestConfig):
        STORAGE_ROOT = storage_root

    app = create_app(_Config)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function', autouse=True)
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


def _make_user(email, roles, full_name="Test User"):
    return auth_service.create_account(email, PASSWORD, full_name, roles)


@pytest.fixture
def employee(db_session):
    return _make_user("employee@orbit.test", [Role.EMPLOYEE], "Eve Employee")


@pytest.fixture
def other_employee(db_session):
    return _make_user("other@orbit.test", [Role.EMPLOYEE], "Oscar Other")


@pytest.fixture
def manager(db_session):
    return _make_user("manager@orbit.test", [Role.MANAGER, Role.EMPLOYEE], "Mia Manager")


@pytest.fixture
def owner(db_session):
    return _make_user("owner@orbit.test", [Role.OWNER, Role.EMPLOYEE], "Olga Owner")


@pytest.fixture
def accounts(db_session):
    return _make_user("accounts@orbit.test", [Role.ACCOUNTS, Role.EMPLOYEE], "Abe Accounts")


@pytest.fixture
def second_manager(db_session):
    return _make_user("manager2@orbit.test", [Role.MANAGER], "Max Manager")


@pytest.fixture
def employee_actor(employee):
    return role_service.resolve_actor(employee.id)


@pytest.fixture
def other_actor(other_employee):
    return role_service.resolve_actor(other_employee.id)


@pytest.fixture
def manager_actor(manager):
    return role_service.resolve_actor(manager.id)


@pytest.fixture
def second_manager_actor(second_manager):
    return role_service.resolve_actor(second_manager.id)


@pytest.fixture
def owner_actor(owner):
    return role_service.resolve_actor(owner.id)


@pytest.fixture
def accounts_actor(accounts):
    return role_service.resolve_actor(accounts.id)


@pytest.fixture
def expense_payload():
    """Factory for a valid create-expense body."""
    def _payload(**overrides):
        payload = {
            "title": "Team lunch",
            "description": "Quarterly planning",
            "amount": "500.00",
            "category": "Food & Dining",
            "expense_date": "2026-01-15",
        }
        payload.update(overrides)
        return payload
    return _payload


@pytest.fixture
def bill():
    """Factory for an in-memory PNG upload."""
    def _bill(name="bill.png", data=PNG_BYTES, content_type="image/png"):
        return Upload(filename=name, content_type=content_type, data=data)
    return _bill


@pytest.fixture
def headers_for(db_session):
    """Factory: Authorization header for a user (creates a session)."""
    def _headers(user):
        _, token = session_service.create_session(user.id)
        return auth_headers(token)
    return _headers


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
