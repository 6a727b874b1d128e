# tests/test_health_endpoints.py
from fastapi.testclient import TestClient
from propdesk.main import VERSION, app

client = TestClient(app)


def test_healthz_endpoint():
    """Test that /healthz endpoint exists and reports integration modes."""
    response = client.get("/healthz")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert "timestamp" in data
    assert data["version"] == VERSION
    assert data["store"] == "in-memory"
    assert data["ai_enabled"] is False
    assert data["twilio_enabled"] is False
    assert data["sendgrid_enabled"] is False


def test_health_endpoint():
    """Test that /health mirrors /healthz."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert "timestamp" in data
    assert "version" in data


def test_health_reflects_configured_vendors(configure):
    configure(OPENAI_API_KEY="sk-test", TWILIO_ACCOUNT_SID="AC1", TWILIO_AUTH_TOKEN="tok")
    data = client.get("/healthz").json()
    assert data["ai_enabled"] is True
    assert data["twilio_enabled"] is True
    assert data["sendgrid_enabled"] is False


def test_ping_endpoint():
    """Test that /ping endpoint works."""
    response = client.get("/ping")
    assert response.status_code == 200
    data = response.json()
    assert data["ok"] is True
    assert data["pong"] is True
    assert "time" in data
