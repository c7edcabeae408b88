# app/tests/test_auth_api.py
"""Tests for the cookie-session auth endpoints."""
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig
from app.main import create_app
from auth.middleware import SESSION_COOKIE_NAME


@pytest.fixture
def client():
    return TestClient(create_app(config=AppConfig(), billing_service=MagicMock()))


def _register(client, email="new@example.com", password="Password123"):
    return client.post("/api/auth/register", json={"email": email, "password": password})


class TestRegister:
    """Tests for POST /api/auth/register."""

    def test_register_sets_session_cookie(self, client):
        response = _register(client)

        assert response.status_code == 201
        assert response.json()["user"]["email"] == "new@example.com"
        assert "password_hash" not in response.json()["user"]
        assert SESSION_COOKIE_NAME in response.cookies

    def test_register_duplicate_email(self, client):
        _register(client)

        response = _register(client)
        assert response.status_code == 409

    def test_register_weak_password(self, client):
        response = _register(client, password="short")

        assert response.status_code == 400
        assert "8 characters" in response.json()["detail"]

    def test_register_invalid_email(self, client):
        response = _register(client, email="not-an-email")

        assert response.status_code == 422


class TestSessionFlow:
    """Login, me and logout through the session cookie."""

    def test_me_requires_login(self, client):
        response = client.get("/api/auth/me")

        assert response.status_code == 401
        assert response.json()["detail"] == "Authentication required"

    def test_login_then_me(self, client, user):
        response = client.post(
            "/api/auth/login",
            json={"email": "test@example.com", "password": "Password123"},
        )
        assert response.status_code == 200

        me = client.get("/api/auth/me")
        assert me.status_code == 200
        assert me.json()["user"]["id"] == user.id

    def test_login_wrong_password(self, client, user):
        response = client.post(
            "/api/auth/login",
            json={"email": "test@example.com", "password": "WrongPassword1"},
        )

        assert response.status_code == 401

    def test_logout_ends_session(self, client):
        _register(client)
        assert client.get("/api/auth/me").status_code == 200

        response = client.post("/api/auth/logout")
        assert response.status_code == 200

        client.cookies.clear()
        assert client.get("/api/auth/me").status_code == 401

    def test_session_cookie_reaches_payment_routes(self, client):
        """A logged-in user passes the payment route auth dependency."""
        _register(client)

        response = client.get("/api/payments/subscriptions/me")
        assert response.status_code == 200
