"""
Pytest fixtures for shiftbooks backend tests.

Provides the application over an in-memory database, a per-test table wipe,
and a seeded chart of accounts.
"""

import pytest

from shiftbooks import create_app
from shiftbooks.extensions import db
from shiftbooks.models import Account
from shiftbooks.services import chart_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
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
        # Clear all data but keep schema (Core deletes bypass the ORM immutability guards)
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def chart(db_session):
    """Seed the standard chart; returns code -> account id."""
    chart_service.seed_standard_chart(db_session)
    return {a.code: a.id for a in db_session.query(Account).all()}
