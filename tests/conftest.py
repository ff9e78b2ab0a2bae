"""
Shared pytest fixtures for the Requisition Workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - org / other_org: fully wired organizations (see tests/factories.py)
    - auth_headers: Bearer headers for a user acting in an organization
"""

import pytest

from reqflow import create_app
from reqflow.models import db as _db
from reqflow.services.jwt_service import generate_access_token
from reqflow.services.security_observability import reset_security_events
from tests.factories import build_org


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        reset_security_events()
        yield
        reset_security_events()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def org():
    return build_org()


@pytest.fixture()
def other_org():
    return build_org(name="Globex", slug="globex", domain="globex.test")


@pytest.fixture()
def auth_headers():
    def _headers(user, organization):
        token = generate_access_token(user.id, organization.id)
        return {"Authorization": f"Bearer {token}"}

    return _headers
