"""HTTP-level fixtures: a TestClient bound to the test session."""

import pytest
from fastapi.testclient import TestClient

from app.core.auth import get_current_caller
from app.database import get_session
from app.main import app
from tests.factories import caller_for


class Identity:
    """Mutable stand-in for the authenticated caller."""

    def __init__(self):
        self.user = None

    def use(self, user):
        self.user = user

    def __call__(self):
        return caller_for(self.user)


@pytest.fixture
def identity():
    return Identity()


@pytest.fixture
def client(session, identity):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_current_caller] = identity
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def raw_client(session):
    """Client with the real token check; only the session is swapped."""
    app.dependency_overrides[get_session] = lambda: session
    yield TestClient(app)
    app.dependency_overrides.clear()
