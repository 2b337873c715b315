"""Tests for /api/auth endpoints and token resolution."""

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from parley.models.user import User
from parley.services import auth_service
from parley.tests.conftest import auth_headers, register_user


class TestRegister:
    def test_register_success(self, client: TestClient):
        resp = register_user(client)
        assert resp.status_code == 200
        data = resp.json()
        assert "access_token" in data
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 30 * 60
        assert data["user"]["username"] == "testuser"
        assert data["user"]["status"] == "offline"

    def test_register_lowercases_username(self, client: TestClient):
        resp = register_user(client, username="TestUser")
        assert resp.json()["user"]["username"] == "testuser"

    def test_register_duplicate_username(self, client: TestClient):
        register_user(client)
        resp = register_user(client, email="other@example.com")
        assert resp.status_code == 409
        assert "Username" in resp.json()["detail"]
        assert resp.json()["code"] == "conflict"

    def test_register_duplicate_email(self, client: TestClient):
        register_user(client, username="user1")
        resp = register_user(client, username="user2")
        assert resp.status_code == 409

    @pytest.mark.parametrize(
        "overrides",
        [
            {"password": "NoNumber!"},
            {"password": "NoSpecial1"},
            {"password": "Sh0rt!"},
            {"username": "bad user!"},
            {"username": "ab"},
            {"email": "not-an-email"},
        ],
    )
    def test_register_rejects_bad_input(self, client: TestClient, overrides):
        resp = register_user(client, **overrides)
        assert resp.status_code == 422

    def test_password_is_hashed(self, client: TestClient, db):
        register_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        assert user.hashed_password != "Password1!"
        assert auth_service.verify_password("Password1!", user.hashed_password)


class TestLogin:
    def test_login_success(self, client: TestClient):
        register_user(client)
        resp = client.post("/api/auth/login", json={"username": "TestUser", "password": "Password1!"})
        assert resp.status_code == 200
        assert "access_token" in resp.json()

    def test_login_wrong_password(self, client: TestClient):
        register_user(client)
        resp = client.post("/api/auth/login", json={"username": "testuser", "password": "WrongPass1!"})
        assert resp.status_code == 401
        assert resp.json()["code"] == "authentication_failed"

    def test_login_unknown_user(self, client: TestClient):
        resp = client.post("/api/auth/login", json={"username": "nobody", "password": "Password1!"})
        assert resp.status_code == 401


class TestGetMe:
    def test_get_me_success(self, client: TestClient):
        headers = auth_headers(client)
        resp = client.get("/api/auth/me", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["username"] == "testuser"

    def test_get_me_no_token(self, client: TestClient):
        resp = client.get("/api/auth/me")
        assert resp.status_code == 401

    def test_get_me_bad_token(self, client: TestClient):
        resp = client.get("/api/auth/me", headers={"Authorization": "Bearer badtoken"})
        assert resp.status_code == 401

    def test_expired_token(self, client: TestClient, db):
        register_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        token = auth_service.create_access_token(user, expires_delta=timedelta(minutes=-1))
        resp = client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


class TestTokenResolution:
    def test_round_trip(self, client: TestClient, db):
        register_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        token = auth_service.create_access_token(user)
        assert auth_service.get_user_from_token(token, db).id == user.id

    def test_inactive_user_rejected(self, client: TestClient, db):
        register_user(client)
        user = db.query(User).filter(User.username == "testuser").one()
        token = auth_service.create_access_token(user)
        user.is_active = False
        db.commit()
        assert auth_service.get_user_from_token(token, db) is None

    def test_garbage_subject_rejected(self, db):
        from jose import jwt

        from parley.config import settings

        token = jwt.encode(
            {"sub": "abc", "iss": settings.SERVER_DOMAIN}, settings.SECRET_KEY, algorithm=settings.ALGORITHM
        )
        assert auth_service.get_user_from_token(token, db) is None


class TestHealth:
    def test_health_reports_redis_disabled(self, client: TestClient):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "healthy", "database": "connected", "redis": "disabled"}
