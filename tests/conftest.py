# tests/conftest.py
"""
Shared fixtures for the pytest test suite.

Every test that touches the database gets its own application with a fresh
in-memory SQLite database, seeded with one admin and two customers. Requests
authenticate through the X-Test-User-Id header (LOGIN_DISABLED in the
testing config).
"""
import os

import pytest

from app import create_app
from auth_utils import TEST_USER_HEADER
from extensions import db
from portal_database import User
from services.enums import UserRole

os.environ.setdefault('FLASK_ENV', 'testing')


@pytest.fixture
def app():
    """A Flask app with a freshly created schema and seeded users"""
    app = create_app(config_name='testing')

    with app.app_context():
        db.create_all()

        admin = User(email='admin@portal.test', name='Dana Admin', role=UserRole.ADMIN)
        customer = User(email='customer@portal.test', name='Casey Customer',
                        role=UserRole.CUSTOMER, billing_customer_ref='cus_casey')
        other = User(email='other@portal.test', name='Robin Other', role=UserRole.CUSTOMER)
        db.session.add_all([admin, customer, other])
        db.session.commit()

        app.config['SEED_USER_IDS'] = {
            'admin': admin.id,
            'customer': customer.id,
            'other': other.id,
        }

        yield app

        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def users(app):
    """Seeded user ids keyed by role name"""
    return dict(app.config['SEED_USER_IDS'])


@pytest.fixture
def headers(users):
    """Request headers authenticating as a seeded user"""
    def _headers(who='admin'):
        user_id = users[who] if isinstance(who, str) else who
        return {TEST_USER_HEADER: str(user_id)}
    return _headers


@pytest.fixture
def store(app):
    """The EngagementStore used by services in the current app context"""
    return app.services.get('store')


@pytest.fixture
def engagement_service(app):
    return app.services.get('engagement')


@pytest.fixture
def line_items():
    """Two items: 2 x 5000 + 2 x 2550 = 15100 cents"""
    return [
        {'description': 'Gutter cleaning', 'quantity': 2, 'unit_amount_cents': 5000},
        {'description': 'Downspout flush', 'quantity': 2, 'unit_amount_cents': 2550},
    ]


@pytest.fixture
def billing_envelope():
    """Builds webhook bodies in the billing provider's envelope format"""
    def _envelope(event_type, obj, event_id=None):
        envelope = {'type': event_type, 'data': {'object': obj}}
        if event_id is not None:
            envelope['id'] = event_id
        return envelope
    return _envelope
