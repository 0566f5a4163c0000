"""
Tests for application assembly: root, health endpoints, middleware and
error handlers.
"""
from unittest.mock import Mock, patch

import pytest
from fastapi.testclient import TestClient

from match_gateway_server.config import Settings
from match_gateway_server.errors import CredentialStoreUnavailable, LedgerUnavailable
from match_gateway_server.main_api import create_app


class TestRootEndpoint:
    """Test root endpoint."""

    def test_root_endpoint(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "Gateway is running" in response.json()["message"]

    def test_simple_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestHealthEndpoints:
    """Test /api/v1 health, readiness, metrics and version"""

    def test_health(self, client):
        body = client.get("/api/v1/health").json()

        assert body["success"] is True
        assert body["status"] == "operational"
        assert "version" in body

    def test_health_needs_no_key(self, client):
        assert client.get("/api/v1/health").status_code == 200

    def test_ready(self, client):
        response = client.get("/api/v1/ready")

        assert response.status_code == 200
        body = response.json()
        assert body["ready"] is True
        assert body["checks"]["database"]["status"] == "healthy"
        assert body["checks"]["usage_ledger"]["status"] == "healthy"

    def test_ready_with_ledger_down(self, engine, clock, profile_service):
        ledger = Mock()
        ledger.ping.side_effect = LedgerUnavailable()
        app = create_app(
            engine=engine, usage_ledger=ledger, profile_service=profile_service, clock=clock, run_sweeper=False
        )

        with TestClient(app) as test_client:
            response = test_client.get("/api/v1/ready")

        assert response.status_code == 200
        assert response.json()["checks"]["usage_ledger"]["status"] == "degraded"

    def test_metrics_track_auth(self, client, issue_key):
        api_key = issue_key()
        client.get("/api/v1/whoami", headers={"X-API-Key": api_key})
        client.get("/api/v1/whoami")

        metrics = client.get("/api/v1/metrics").json()["metrics"]

        assert metrics["auth"]["authenticated"] == 1
        assert metrics["auth"]["failures"] == {"MISSING_API_KEY": 1}
        assert metrics["requests"]["total"] >= 2

    def test_version(self, client):
        body = client.get("/api/v1/version").json()

        assert body["service"] == "profile-match-gateway"
        assert body["features"]["usage_ledger_backend"] == "sql"

    def test_reports_app_config(self, engine, clock, profile_service):
        config = Settings(usage_ledger_backend="redis", app_name="gateway-eu", environment="staging")
        app = create_app(
            config=config,
            engine=engine,
            usage_ledger=Mock(),
            profile_service=profile_service,
            clock=clock,
            run_sweeper=False,
        )

        with TestClient(app) as test_client:
            version = test_client.get("/api/v1/version").json()
            ready = test_client.get("/api/v1/ready").json()

        assert version["service"] == "gateway-eu"
        assert version["environment"] == "staging"
        assert version["features"]["usage_ledger_backend"] == "redis"
        assert ready["checks"]["usage_ledger"]["backend"] == "redis"


class TestMiddleware:
    """Headers added to every response"""

    def test_security_headers(self, client):
        response = client.get("/api/v1/health")

        assert response.headers["X-Content-Type-Options"] == "nosniff"
        assert response.headers["X-Frame-Options"] == "DENY"
        assert "X-Request-ID" in response.headers

    def test_request_ids_unique(self, client):
        first = client.get("/api/v1/health").headers["X-Request-ID"]
        second = client.get("/api/v1/health").headers["X-Request-ID"]
        assert first != second


class TestQuotaFailOpen:
    """Ledger outage admits authenticated requests"""

    @pytest.fixture
    def broken_ledger(self):
        ledger = Mock()
        ledger.count_since.side_effect = LedgerUnavailable()
        ledger.append.side_effect = LedgerUnavailable()
        return ledger

    def test_admitted_without_remaining_header(self, engine, clock, profile_service, broken_ledger, issue_key):
        app = create_app(
            engine=engine, usage_ledger=broken_ledger, profile_service=profile_service, clock=clock, run_sweeper=False
        )
        api_key = issue_key(rate_limit=1)

        with TestClient(app) as test_client:
            responses = [test_client.get("/api/v1/whoami", headers={"X-API-Key": api_key}) for _ in range(3)]

        assert [r.status_code for r in responses] == [200, 200, 200]
        assert responses[0].headers["X-RateLimit-Limit"] == "1"
        assert "X-RateLimit-Remaining" not in responses[0].headers

    def test_credential_store_outage_fails_closed(self, client, app, issue_key):
        api_key = issue_key()
        store = app.state.credential_store

        with patch.object(store, "lookup", side_effect=CredentialStoreUnavailable()):
            response = client.get("/api/v1/whoami", headers={"X-API-Key": api_key})

        assert response.status_code == 500
        assert response.json() == {"success": False, "error": "Authentication failed", "code": "AUTH_ERROR"}
