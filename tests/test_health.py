"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response in the standard envelope with status, version, and components
  - components.database key present and reports 'ok'
  - No authentication required (listed in PUBLIC_PATHS)
"""

from __future__ import annotations


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["code"] == 200
    data = body["data"]
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
    assert resp.json()["data"]["status"] == "healthy"


def test_health_ignores_bad_token(api_client):
    """Public paths skip the gate entirely, so even a garbage token is fine."""
    resp = api_client.client.get("/api/v1/health", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 200
