"""
Pytest fixtures for portal_auth tests.

Provides test database setup, account fixtures, and a login helper.
"""

import pytest

from portal_auth import create_app
from portal_auth.extensions import db
from portal_auth.models import AccountKind
from portal_auth.services import credential_service
from portal_auth.services.login_service import LoginRequest


PASSWORD = "Password123!"
FINGERPRINT_A = "fp-a-3f9c2e7d1b5a4c8e9f0a1b2c3d4e5f6a"
FINGERPRINT_B = "fp-b-7e1d3c5b9a8f7e6d5c4b3a2f1e0d9c8b"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SECRET_KEY': 'test-secret',
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DEVICE_BOUND_ACCOUNT_KINDS': ('customer', 'supplier'),
        'SINGLE_SESSION_ACCOUNT_KINDS': (),
        'ELEVATED_ACCOUNT_KINDS': ('admin',),
        'STORAGE_RETRY_ATTEMPTS': 2,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema (core deletes bypass the audit guard)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def customer(db_session):
    return credential_service.create_account("customer@acme.com", PASSWORD, AccountKind.CUSTOMER)


@pytest.fixture(scope='function')
def supplier(db_session):
    return credential_service.create_account("supplier@pipeworks.com", PASSWORD, AccountKind.SUPPLIER)


@pytest.fixture(scope='function')
def admin(db_session):
    return credential_service.create_account("admin@portal.local", PASSWORD, AccountKind.ADMIN)


@pytest.fixture
def login_request():
    """Build a LoginRequest with sensible defaults."""
    def _build(email, password=PASSWORD, fingerprint=FINGERPRINT_A, client_ip="10.0.0.1", **kwargs):
        return LoginRequest(
            email=email,
            password=password,
            fingerprint=fingerprint,
            client_ip=client_ip,
            user_agent=kwargs.pop("user_agent", "pytest-browser/1.0"),
            **kwargs,
        )
    return _build
