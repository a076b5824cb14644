"""
MailShield API Tests

Tests for API routes and dependencies.
"""

import json

import pytest
from fastapi.testclient import TestClient

from conftest import make_feed

from mailshield.api.dependencies import (
    build_services,
    get_click_time_checker,
    get_services,
    reset_services,
)
from mailshield.config.settings import Settings, get_settings
from mailshield.main import app
from mailshield.models.threat_intel import FeedVerdict
from mailshield.services.enrichment.click_time import ClickTimeChecker
from mailshield.services.enrichment.consensus import ThreatIntelAggregator
from mailshield.utils.security import create_webhook_payload


EMAIL = {
    "message_id": "<api-001@example.com>",
    "sender": {"email": "billing@vendor.example", "domain": "vendor.example", "display_name": "Billing"},
    "recipients": ["ap@company.com"],
    "subject": "Invoice attached",
    "body_text": "Please find the invoice attached.",
}


@pytest.fixture
def client():
    reset_services()
    app.dependency_overrides.clear()
    yield TestClient(app)
    app.dependency_overrides.clear()
    reset_services()


class TestDependencies:
    """Tests for service wiring."""

    def test_build_services(self):
        services = build_services(Settings())
        assert [f.name for f in services.aggregator.feeds] == ["urlhaus", "phishtank"]
        assert services.pipeline.aggregator is services.aggregator
        assert services.click_time.aggregator is services.aggregator

    def test_services_are_shared(self):
        reset_services()
        assert get_services() is get_services()
        reset_services()


class TestHealthAndRoot:

    def test_root(self, client):
        data = client.get("/").json()
        assert data["docs"] == "/docs"
        assert data["health"] == "/health"

    def test_health(self, client):
        for path in ("/health", "/api/v1/health"):
            response = client.get(path)
            assert response.status_code == 200
            data = response.json()
            assert data["status"] == "healthy"
            assert len(data["feeds"]) == 2
            assert "url" in data["threat_intel_cache"]


class TestAnalyzeRoutes:
    """Tests for email analysis and click-time checks."""

    def test_analyze_email(self, client):
        response = client.post("/api/v1/analyze", json={"email": EMAIL, "run_threat_intel": False})
        assert response.status_code == 200
        data = response.json()
        assert 0 <= data["total_score"] <= 100
        assert "deterministic" in data["layers"]
        assert "threat_intel" in data["metadata"]["layers_skipped"]

    def test_analyze_with_tenant(self, client):
        email = dict(EMAIL, sender={
            "email": "ceo.john@gmail.com", "domain": "gmail.com", "display_name": "CEO John Doe",
        })
        response = client.post("/api/v1/analyze", json={
            "email": email,
            "tenant_id": "tenant-1",
            "organization_domain": "company.com",
            "run_threat_intel": False,
        })
        data = response.json()
        assert "impersonation" in data["metadata"]["layers_run"]
        assert data["layers"]["impersonation"]["metadata"]["is_impersonation"]

    def test_analyze_rejects_bad_body(self, client):
        response = client.post("/api/v1/analyze", json={"email": {"subject": "no sender"}})
        assert response.status_code == 422

    def test_click_check(self, client):
        aggregator = ThreatIntelAggregator([
            make_feed("urlhaus", FeedVerdict.MALICIOUS, 95, 0.85),
        ])
        app.dependency_overrides[get_click_time_checker] = lambda: ClickTimeChecker(aggregator)

        response = client.post("/api/v1/analyze/click", json={"url": "http://malware.example/payload.exe"})
        assert response.status_code == 200
        assert response.json()["action"] == "block"

    def test_click_check_non_http(self, client):
        response = client.post("/api/v1/analyze/click", json={"url": "javascript:alert(1)"})
        assert response.status_code == 400
        assert response.json()["error"] == "ValidationError"


LOGIN_NYC = {
    "user_id": "user-1", "timestamp": "2026-06-01T12:00:00Z",
    "ip": "203.0.113.10", "latitude": 40.7128, "longitude": -74.0060, "city": "New York",
}
LOGIN_LONDON = {
    "user_id": "user-1", "timestamp": "2026-06-01T13:00:00Z",
    "ip": "203.0.113.11", "latitude": 51.5074, "longitude": -0.1278, "city": "London",
}


class TestATORoutes:
    """Tests for impossible travel endpoints."""

    def test_check(self, client):
        response = client.post("/api/v1/ato/check", json={"previous": LOGIN_NYC, "current": LOGIN_LONDON})
        data = response.json()
        assert data["is_impossible"]
        assert data["severity"] == "critical"
        assert data["alert"]["user_id"] == "user-1"
        assert data["signals"][0]["type"] == "impossible_travel"

    def test_instant_travel_is_json_safe(self, client):
        same_time = dict(LOGIN_LONDON, timestamp=LOGIN_NYC["timestamp"])
        response = client.post("/api/v1/ato/check", json={"previous": LOGIN_NYC, "current": same_time})
        assert response.status_code == 200
        assert response.json()["speed_mph"] is None
        assert response.json()["risk_score"] == 100

    def test_sequence(self, client):
        response = client.post("/api/v1/ato/sequence", json={
            "user_id": "user-1", "logins": [LOGIN_LONDON, LOGIN_NYC],
        })
        assert len(response.json()["alerts"]) == 1

    def test_exception_then_check(self, client):
        response = client.post("/api/v1/ato/exceptions", json={
            "user_id": "user-1",
            "origin": {"latitude": 40.7128, "longitude": -74.0060},
            "destination": {"latitude": 51.5074, "longitude": -0.1278},
        })
        assert response.status_code == 201
        assert response.json()["exceptions"] == 1

        data = client.post("/api/v1/ato/check", json={"previous": LOGIN_NYC, "current": LOGIN_LONDON}).json()
        assert data["is_known_pattern"]


class TestFeedbackRoute:

    def test_feedback(self, client):
        body = {
            "tenant_id": "tenant-1",
            "email_id": "msg-1",
            "feedback_type": "false_positive",
            "anomaly_types": ["volume"],
        }
        response = client.post("/api/v1/anomaly/feedback", json=body)
        assert response.status_code == 201
        data = response.json()
        assert data["version"] == 1
        assert data["adjustments"][0]["false_positive_count"] == 1

    def test_feedback_requires_dimension(self, client):
        response = client.post("/api/v1/anomaly/feedback", json={
            "tenant_id": "tenant-1", "email_id": "msg-1",
            "feedback_type": "false_positive", "anomaly_types": [],
        })
        assert response.status_code == 422


class TestWebhookRoute:
    """Tests for signed email ingestion."""

    SECRET = "api-test-secret"

    @pytest.fixture
    def secret(self, monkeypatch):
        monkeypatch.setenv("MAILSHIELD_WEBHOOK_SECRET", self.SECRET)
        get_settings.cache_clear()
        yield self.SECRET
        get_settings.cache_clear()

    def test_not_configured(self, client):
        response = client.post("/api/v1/webhooks/email", content="{}")
        assert response.status_code == 503

    def test_signed_webhook(self, client, secret):
        webhook = create_webhook_payload(
            "email.received", {"email": EMAIL, "run_threat_intel": False}, secret,
        )
        response = client.post("/api/v1/webhooks/email", content=webhook["body"], headers=webhook["headers"])
        assert response.status_code == 200
        assert "deterministic" in response.json()["layers"]

    def test_bad_signature(self, client, secret):
        webhook = create_webhook_payload("email.received", {"email": EMAIL}, "wrong-secret")
        response = client.post("/api/v1/webhooks/email", content=webhook["body"], headers=webhook["headers"])
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_SIGNATURE"

    def test_stale_timestamp(self, client, secret):
        webhook = create_webhook_payload("email.received", {"email": EMAIL}, secret, now=1_000_000)
        response = client.post("/api/v1/webhooks/email", content=webhook["body"], headers=webhook["headers"])
        assert response.status_code == 401
        assert response.json()["code"] == "TIMESTAMP_INVALID"

    def test_invalid_analysis_request(self, client, secret):
        webhook = create_webhook_payload("email.received", {"unexpected": True}, secret)
        response = client.post("/api/v1/webhooks/email", content=webhook["body"], headers=webhook["headers"])
        assert response.status_code == 401
        assert response.json()["code"] == "INVALID_PAYLOAD"
        assert json.loads(webhook["body"])["event"] == "email.received"
