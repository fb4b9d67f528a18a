"""Shared fixtures: a fresh SQLite file per test and a TestClient around the app."""

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from homeledger.app import create_app
from homeledger.config import Settings
from homeledger.db import get_db

REPO_ROOT = Path(__file__).resolve().parent.parent


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        env="dev",
        sqlite_path=str(tmp_path / "test.db"),
        locales_dir=str(REPO_ROOT / "locales"),
        log_level="WARNING",
        scheduler_enabled=False,
    )


@pytest.fixture
def app(settings):
    return create_app(settings)


@pytest.fixture
def client(app):
    # entering the context runs the startup hook (schema + seed)
    with TestClient(app) as c:
        yield c


@pytest.fixture
def db(client):
    return get_db()


def login(client: TestClient, username: str, password: str):
    return client.post("/api/auth/login", json={"username": username, "password": password})


def register(client: TestClient, username: str, family: str = "Casa", password: str = "secret1"):
    resp = client.post(
        "/api/auth/register",
        json={
            "username": username,
            "password": password,
            "name": username.title(),
            "familyName": family,
            "securityQuestion": "Pet?",
            "securityAnswer": "  Rex ",
        },
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["user"]


@pytest.fixture
def admin_client(app, client):
    c = TestClient(app)
    assert login(c, "admin", "admin").status_code == 200
    return c


@pytest.fixture
def manager(app, client):
    """A registered MANAGER with their own family, logged in on a separate client."""
    c = TestClient(app)
    user = register(c, "maria", family="Silva")
    return c, user


def member_of(app, manager_client: TestClient, username: str, **extra):
    """Create a MEMBER in the manager's family and return (client, user)."""
    body = {"username": username, "password": "secret1", "name": username.title(), "role": "MEMBER"}
    body.update(extra)
    resp = manager_client.post("/api/users", json=body)
    assert resp.status_code == 201, resp.text
    c = TestClient(app)
    assert login(c, username, "secret1").status_code == 200
    return c, resp.json()
