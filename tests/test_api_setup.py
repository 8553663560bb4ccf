"""
tests/test_api_setup.py -- First-run setup and auth-disabled behaviour over HTTP.

Kept apart from test_api_routes.py because these fixtures install their own
service into app.state, which would replace the module-scoped api_client's.

Coverage:
  - POST /settings/setup creates the first account, signs it in, and is
    refused once an account exists
  - Setup validates the password like every other account write
  - With auth off: synthetic default user, status, 400 auth_disabled on writes
"""

from __future__ import annotations

from conftest import bearer


class TestFirstRunSetup:
    def test_setup_creates_first_user_and_signs_in(self, setup_client) -> None:
        client, _ = setup_client
        assert client.get("/api/v1/auth/status").json()["needs_setup"] is True

        resp = client.post("/api/v1/settings/setup", json={"email": "first@example.com", "password": "Secret123!"})
        assert resp.status_code == 201, resp.text
        token = resp.json()["session_token"]
        client.cookies.clear()

        assert client.get("/api/v1/auth/user", headers=bearer(token)).status_code == 200
        second = client.post("/api/v1/settings/setup", json={"email": "second@example.com", "password": "Secret123!"})
        assert second.status_code == 400

    def test_setup_validates_password(self, setup_client) -> None:
        client, _ = setup_client
        resp = client.post("/api/v1/settings/setup", json={"email": "first@example.com", "password": "short"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "validation_error"


class TestAuthDisabled:
    def test_default_user_reported(self, disabled_client) -> None:
        data = disabled_client.get("/api/v1/auth/user").json()
        assert data["auth_enabled"] is False
        assert data["user"]["username"] == "default"

    def test_writes_rejected(self, disabled_client) -> None:
        resp = disabled_client.post("/api/v1/auth/login", json={"email": "a@b.com", "password": "Secret123!"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "auth_disabled"
        assert disabled_client.post("/api/v1/settings/2fa/setup").status_code == 400

    def test_status(self, disabled_client) -> None:
        assert disabled_client.get("/api/v1/auth/status").json()["enabled"] is False
