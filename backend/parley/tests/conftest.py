"""
Shared fixtures.  The app runs against one in-memory SQLite database (a
StaticPool keeps every session on the same connection) with Redis disabled,
and realtime output is captured by RecordingRealtimeChannel.
"""

import os

# Settings are read at import time.
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["SECRET_KEY"] = "test-secret-key-min-32-chars-long!!"
os.environ["ALGORITHM"] = "HS256"
os.environ["REDIS_URL"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from parley.api.deps import get_realtime_channel  # noqa: E402
from parley.database import Base, get_db  # noqa: E402
from parley.main import app  # noqa: E402
from parley.services.realtime import RealtimeChannel  # noqa: E402

engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class RecordingRealtimeChannel(RealtimeChannel):
    """Collects everything the routes publish instead of sending it."""

    def __init__(self):
        self.published: list[tuple[str, str, dict]] = []
        self.joins: list[tuple[int, str]] = []
        self.leaves: list[tuple[int, str]] = []

    async def publish(self, room: str, event: str, payload: dict) -> None:
        self.published.append((room, event, payload))

    async def add_user_to_room(self, user_id: int, room: str) -> None:
        self.joins.append((user_id, room))

    async def remove_user_from_room(self, user_id: int, room: str) -> None:
        self.leaves.append((user_id, room))

    def events(self, name: str) -> list[tuple[str, dict]]:
        """(room, payload) for every publish of event name."""
        return [(room, payload) for room, event, payload in self.published if event == name]


@pytest.fixture(autouse=True)
def fresh_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def realtime():
    return RecordingRealtimeChannel()


@pytest.fixture()
def client(db, realtime):
    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_realtime_channel] = lambda: realtime
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


def register_user(client: TestClient, username="testuser", email="test@example.com", password="Password1!"):
    return client.post("/api/auth/register", json={"username": username, "email": email, "password": password})


def auth_headers(client: TestClient, username="testuser", email="test@example.com", password="Password1!"):
    resp = register_user(client, username=username, email=email, password=password)
    assert resp.status_code == 200, f"Registration failed: {resp.json()}"
    token = resp.json()["access_token"]
    return {"Authorization": f"Bearer {token}"}


def make_user(client: TestClient, username: str) -> tuple[dict, int]:
    """Register username; returns (headers, user id)."""
    resp = register_user(client, username=username, email=f"{username}@example.com")
    assert resp.status_code == 200, f"Registration failed: {resp.json()}"
    body = resp.json()
    return {"Authorization": f"Bearer {body['access_token']}"}, body["user"]["id"]


def create_server(client: TestClient, headers: dict, name: str = "Test Server") -> dict:
    resp = client.post("/api/servers", json={"name": name}, headers=headers)
    assert resp.status_code == 201, resp.json()
    return resp.json()


def join_server(client: TestClient, headers: dict, server: dict) -> dict:
    resp = client.post(f"/api/servers/join/{server['invite_code']}", headers=headers)
    assert resp.status_code == 200, resp.json()
    return resp.json()


def create_role(client: TestClient, headers: dict, server_id: int, name: str, permissions: list[str]) -> dict:
    resp = client.post(
        f"/api/servers/{server_id}/roles", json={"name": name, "permissions": permissions}, headers=headers
    )
    assert resp.status_code == 201, resp.json()
    return resp.json()


def assign_roles(client: TestClient, headers: dict, server_id: int, user_id: int, role_ids: list[int]):
    resp = client.put(
        f"/api/servers/{server_id}/members/{user_id}/roles",
        json={"action": "add", "role_ids": role_ids},
        headers=headers,
    )
    assert resp.status_code == 200, resp.json()
    return resp.json()
