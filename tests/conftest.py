# tests/conftest.py
"""
Shared fixtures for the pytest suite.

The app fixture builds one Flask app per test module against in-memory
SQLite. clean_db empties every table before a test that writes through the
real repositories.
"""
import os
from datetime import datetime
from decimal import Decimal

import pytest

from app import create_app
from booking_database import Booking
from extensions import db

API_KEY = 'test-api-key'


def create_test_booking(**kwargs):
    """
    Helper to build a confirmed booking with sensible defaults.
    Used across multiple test files.
    """
    defaults = {
        'id': 'B1',
        'status': 'confirmed',
        'amount': Decimal('9000'),
        'currency': 'JPY',
        'customer_email': 'Guest@Example.com',
        'customer_phone': '+81 90-1234-5678',
        'customer_first_name': 'Hanako',
        'customer_last_name': 'Yamada',
        'tour_id': 'T-100',
        'tour_name': 'Kyoto Night Walk',
        'guests': 2,
        'gclid': 'Cj0KCQ-test-gclid',
        'created_at': datetime(2025, 3, 1, 10, 0, 0),
    }
    defaults.update(kwargs)
    return Booking(**defaults)


@pytest.fixture(scope='module')
def app():
    """
    A Flask application for a test module, with all tables created.
    """
    os.environ['FLASK_ENV'] = 'testing'

    app = create_app(config_name='testing', test_config={
        'SERVER_NAME': 'localhost.localdomain'
    })

    with app.app_context():
        db.create_all()

        yield app

        try:
            db.session.remove()
        finally:
            db.drop_all()
            app.services.shutdown()


@pytest.fixture(scope='module')
def client(app):
    """A test client for the application's endpoints."""
    return app.test_client()


@pytest.fixture
def api_headers():
    return {'X-API-Key': API_KEY}


@pytest.fixture(scope='function')
def clean_db(app):
    """
    Empty every table before the test and hand back the session.

    Use for tests that write through the real repositories or make HTTP
    requests that commit.
    """
    with app.app_context():
        for table in reversed(db.metadata.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        db.session.rollback()


@pytest.fixture
def fake_clock():
    from tests.fixtures.clock_fixtures import FakeClock
    return FakeClock(datetime(2025, 3, 1, 12, 0, 0))


@pytest.fixture
def app_context(app):
    """Push an application context for tests that touch Flask proxies or models."""
    with app.app_context():
        yield app
