"""
Shared fixtures: an app on in-memory SQLite, a test client and staff users.
"""
import pytest

from app import create_app
from models import db
from tests.helpers import enroll, make_user

TEST_CONFIG = {
    'TESTING': True,
    'SECRET_KEY': 'test-secret-key',
    'SQLALCHEMY_DATABASE_URI': 'sqlite://',
    'BASE_URL': 'https://feedback.example.com',
    'MAIL_SERVER': 'localhost',
    'MAIL_DEFAULT_SENDER': 'noreply@example.com',
    'TWO_FACTOR_REQUIRED_ROLES': {'admin'},
    'TWO_FACTOR_TRUSTED_IPS': set(),
    'TWO_FACTOR_MAX_FAILURES': 5,
    'WEBHOOK_SECRET': 'whsec-test',
    'WEBHOOK_ALLOW_UNSIGNED': False,
    'LINK_DEFAULT_EXPIRES_HOURS': 72,
    'LINK_MAX_EXPIRES_HOURS': 168,
}


@pytest.fixture
def app():
    """Fresh application and schema per test.

    The app context is not held open here: test client requests push their
    own, so ``g`` does not leak between requests.
    """
    app = create_app(dict(TEST_CONFIG))
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture
def app_ctx(app):
    """App context for tests that call services directly"""
    with app.app_context():
        yield app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def admin_id(app):
    with app.app_context():
        return make_user('admin', role='admin')


@pytest.fixture
def staff_id(app):
    with app.app_context():
        return make_user('staff', role='user')


@pytest.fixture
def enrolled_admin(app, admin_id):
    """(user id, secret, backup codes) for an admin with 2FA enabled"""
    with app.app_context():
        secret, codes = enroll(admin_id)
    return admin_id, secret, codes
