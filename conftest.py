from typing import Callable, Dict

import pytest
from fastapi.testclient import TestClient

from taskboard.database import Database
from taskboard.main import app


@pytest.fixture()
def database():
    """Fresh in-memory task store per test."""
    db = Database("sqlite://")
    db.connect()
    yield db
    db.dispose()


@pytest.fixture()
def client(database):
    previous = app.state.database
    app.state.database = database
    with TestClient(app) as test_client:
        yield test_client
    app.state.database = previous
    app.dependency_overrides.clear()


@pytest.fixture()
def register_user(client) -> Callable[..., Dict[str, str]]:
    """Register a user and return bearer headers for them.

    The session cookie set by the register endpoint is dropped so that each
    request authenticates only through the headers it is given.
    """

    def _register(email: str, name: str = "Test User", password: str = "secret123") -> Dict[str, str]:
        response = client.post(
            "/api/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        assert response.status_code == 201, response.text
        client.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return _register


@pytest.fixture()
def alice(register_user) -> Dict[str, str]:
    return register_user("alice@example.com", name="Alice")


@pytest.fixture()
def bob(register_user) -> Dict[str, str]:
    return register_user("bob@example.com", name="Bob")
