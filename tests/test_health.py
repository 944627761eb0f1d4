"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, components and timestamp fields
  - components.database reports 'ok' when the store answers
  - A store that cannot answer turns the status to 'degraded', not a 500
  - No authentication required
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _clock = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == "1.0.0"
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"
    assert "timestamp" in data


def test_health_degraded_when_database_unreachable(api_client, monkeypatch):
    client, _clock = api_client

    def refuse():
        raise RuntimeError("database is gone")

    monkeypatch.setattr(client.app.state.user_store, "ping", refuse)
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "degraded"
    assert data["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    client, _clock = api_client
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
