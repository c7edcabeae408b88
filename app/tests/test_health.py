# app/tests/test_health.py
"""Tests for health and middleware behavior shared by every endpoint."""
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.config import AppConfig
from app.main import create_app


@pytest.fixture
def billing():
    service = MagicMock()
    service.enabled = False
    return service


@pytest.fixture
def client(billing):
    """Create test client."""
    return TestClient(create_app(config=AppConfig(), billing_service=billing))


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_contains_required_keys(self, client):
        response = client.get("/health")
        assert response.status_code == 200

        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "billing-api"
        assert data["version"] == "0.1.0"
        assert "environment" in data
        assert "started_at" in data

    def test_health_reports_billing_disabled(self, client):
        assert client.get("/health").json()["billing_enabled"] is False

    def test_health_reports_billing_enabled(self, billing, client):
        billing.enabled = True
        assert client.get("/health").json()["billing_enabled"] is True


class TestLifespan:
    """Startup work runs once the app is served."""

    def test_schema_created_on_startup(self, billing):
        with patch("app.main.init_db") as init_db:
            application = create_app(config=AppConfig(), billing_service=billing)
            init_db.assert_not_called()

            with TestClient(application) as client:
                assert client.get("/health").status_code == 200

        init_db.assert_called_once_with()

    def test_no_startup_deprecation_warning(self, billing, recwarn):
        create_app(config=AppConfig(), billing_service=billing)

        assert not [w for w in recwarn if "on_event" in str(w.message)]


class TestMiddleware:
    """Tests for headers and limits applied by middleware."""

    def test_security_headers(self, client):
        response = client.get("/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert response.headers["Cache-Control"] == "no-store"

    def test_request_id_echoed(self, client):
        response = client.get("/health", headers={"X-Request-Id": "abc-123"})
        assert response.headers["X-Request-Id"] == "abc-123"

    def test_request_id_generated_when_invalid(self, client):
        response = client.get("/health", headers={"X-Request-Id": "bad id!"})

        request_id = response.headers["X-Request-Id"]
        assert request_id != "bad id!"
        assert len(request_id) == 36

    def test_oversized_request_rejected(self, billing):
        app = create_app(config=AppConfig(max_request_size_bytes=1024), billing_service=billing)

        response = TestClient(app).post("/api/payments/webhook", content=b"x" * 2048)

        assert response.status_code == 413
        assert response.json() == {"status": 413, "message": "Request entity too large"}
        billing.construct_event.assert_not_called()
