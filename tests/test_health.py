"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version and database fields
  - No authentication required
  - 503 when the database cannot be reached
"""

from __future__ import annotations

from unittest.mock import patch

from sqlalchemy.exc import OperationalError


def test_health_returns_200(api_client):
    """Health endpoint returns 200 with status, version and database state."""
    client, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["database"] == "ok"
    assert "version" in data


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any session cookie or header."""
    client, _ = api_client
    client.cookies.clear()
    assert client.get("/api/v1/health", headers={}).status_code == 200


def test_health_reports_unreachable_database(api_client):
    client, service = api_client
    with patch.object(service.store, "ping", side_effect=OperationalError("SELECT 1", {}, Exception("down"))):
        resp = client.get("/api/v1/health")
    assert resp.status_code == 503
    assert resp.json()["database"] == "unreachable"
