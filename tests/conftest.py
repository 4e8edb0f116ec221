from __future__ import annotations

from collections.abc import Callable, Iterator

import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from main import app, get_services
from schemas import Profile
from services import Services

PASSWORD = "correct-horse"


def _test_settings() -> Settings:
    return Settings(
        database_url="mongodb://localhost:27017",
        database_name="devstudy-test",
        app_id="devstudy-test",
        jwt_secret="test-secret",
        jwt_algorithm="HS256",
        access_token_expire_minutes=60,
        store_timeout_seconds=5.0,
        cors_origins=["*"],
        log_level="INFO",
        port=8000,
    )


@pytest.fixture
def services() -> Services:
    """Services over a fresh in-memory MongoDB."""
    built = Services(_test_settings(), mongomock.MongoClient()["devstudy-test"])
    built.store.ensure_indexes()
    return built


@pytest.fixture
def make_profile(services: Services) -> Callable[[str], Profile]:
    """Create a profile directly in the directory, skipping the identity provider."""

    def _make(username: str) -> Profile:
        return services.profiles.create_profile(f"uid-{username}", f"{username}@example.com", username)

    return _make


@pytest.fixture
def client(services: Services) -> Iterator[TestClient]:
    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def register(client: TestClient) -> Callable[[str], dict[str, str]]:
    """Sign up, log in and pick a username; returns auth headers."""

    def _register(username: str) -> dict[str, str]:
        email = f"{username}@example.com"
        response = client.post("/api/auth/signup", json={"email": email, "password": PASSWORD})
        assert response.status_code == 200, response.text
        response = client.post("/api/auth/login", data={"username": email, "password": PASSWORD})
        assert response.status_code == 200, response.text
        headers = {"Authorization": f"Bearer {response.json()['access_token']}"}
        response = client.post("/api/profile", json={"username": username}, headers=headers)
        assert response.status_code == 200, response.text
        return headers

    return _register
