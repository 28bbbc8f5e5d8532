"""Shared fixtures: an in-memory database per test and a live TestClient."""

import os
import tempfile

# must be set before config is imported anywhere
os.environ.setdefault("NODE_ENV", "test")
os.environ.setdefault("SECRET_KEY", "test-secret")
os.environ.setdefault("PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("ADMINS", "admin@example.com")
os.environ.setdefault("UPLOAD_DIR", tempfile.mkdtemp(prefix="globetrotter-uploads-"))
os.environ.setdefault("API_BASE_URL", "http://testserver")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from config import Config
from database import SessionLocal, create_schema, drop_schema, init_engine, shutdown
from main import app
from services.realtime import bus


@pytest.fixture(autouse=True)
def database(tmp_path, monkeypatch):
    monkeypatch.setattr(Config, "UPLOAD_DIR", str(tmp_path / "uploads"))
    init_engine("sqlite://", poolclass=StaticPool)
    create_schema()
    bus.reset()
    yield
    drop_schema()
    shutdown()
    bus.reset()


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def db_session():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def signup(client):
    """Create an account through the API; returns (token, user)."""

    def _signup(email: str, full_name: str = "Test User", password: str = "secret1"):
        response = client.post("/api/auth/signup", json={
            "full_name": full_name, "email": email, "password": password,
        })
        assert response.status_code == 201, response.text
        body = response.json()
        return body["token"], body["user"]

    return _signup


@pytest.fixture
def owner(signup):
    token, user = signup("owner@example.com", "Olivia Owner")
    return {"token": token, "user": user, "headers": auth_header(token)}


@pytest.fixture
def other(signup):
    token, user = signup("other@example.com", "Oscar Other")
    return {"token": token, "user": user, "headers": auth_header(token)}


@pytest.fixture
def admin(signup):
    token, user = signup("admin@example.com", "Ada Admin")
    assert user["role"] == "admin"
    return {"token": token, "user": user, "headers": auth_header(token)}


@pytest.fixture
def make_trip(client):
    def _make_trip(headers: dict, **fields):
        payload = {"title": "Kyoto"}
        payload.update(fields)
        response = client.post("/api/trips", json=payload, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _make_trip


@pytest.fixture
def add_item(client):
    def _add_item(headers: dict, trip_id: int, **fields):
        payload = {"title": "Item"}
        payload.update(fields)
        response = client.post(f"/api/trips/{trip_id}/itinerary", json=payload, headers=headers)
        assert response.status_code == 201, response.text
        return response.json()

    return _add_item
