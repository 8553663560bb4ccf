"""
tests/conftest.py -- Shared test fixtures for the Rosin Tracker auth core.

This module provides:
  - FakeClock: a controllable clock injected into every service under test
  - store / service: an in-memory UserStore and an AuthService on top of it
  - file_store: a temp-file SQLite store for tests that use real threads
  - api_client / setup_client / disabled_client: TestClient instances on the
    real FastAPI app with a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the API fixtures because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format (file:name?mode=memory&cache=shared
&uri=true) shares one in-memory instance across all connections in the same
process. Thread-concurrency tests use a temp file instead so each thread gets
a real, independently locking connection.

DEBUG, BCRYPT_ROUNDS and LOGIN_RATE_LIMIT must be set before any auth/core
import: get_settings() is cached on first call and the API lifespan builds its
AuthService from it.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Callable, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import User
from auth.service import AuthService
from auth.store import UserStore
from core.clock import utcnow
from core.config import Settings

OWNER_EMAIL = "owner@example.com"
OWNER_PASSWORD = "correct-horse-1"


class FakeClock:
    """Callable clock that only moves when a test says so."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def make_settings(**overrides) -> Settings:
    """Settings for tests: auth on, fast bcrypt, no .env file."""
    values = {"auth_enabled": True, "debug": True, "bcrypt_rounds": 4}
    values.update(overrides)
    return Settings(_env_file=None, **values)


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def file_store(tmp_path) -> Generator[UserStore, None, None]:
    s = UserStore(f"sqlite:///{tmp_path / 'auth.db'}")
    yield s
    s.close()


@pytest.fixture
def service(store: UserStore, settings: Settings, clock: FakeClock) -> AuthService:
    return AuthService(store, settings, clock)


@pytest.fixture
def make_user(service: AuthService) -> Callable[..., User]:
    """Factory: create an account through the facade and return it."""

    def _make(email: str = "a@b.com", password: str = "Secret123!", username: str | None = None) -> User:
        result = service.register_user(email, password, username)
        assert result.ok, result.message
        return result.value

    return _make


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _make_test_store(db_suffix: str) -> UserStore:
    """Create an isolated named shared-memory store.

    Args:
        db_suffix: Unique string appended to the DB name so fixtures don't
                   share state.
    """
    return UserStore(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(user_store: UserStore, auth_service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-created test store and service into app.state so routes see
    an isolated DB rather than the production file. The sweep task is a
    long-sleeping coroutine so shutdown can cancel a real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.auth_service = auth_service
        app.state.sweep_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.sweep_task.cancel()

    return test_lifespan


def _client_for(auth_service: AuthService) -> TestClient:
    app.router.lifespan_context = _patch_lifespan(auth_service.store, auth_service)
    # TrustedHostMiddleware only admits localhost names.
    return TestClient(app, base_url="http://localhost", raise_server_exceptions=True)


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) with one existing account (OWNER_EMAIL / OWNER_PASSWORD).

    Uses the wall clock: TOTP codes in API tests are generated with pyotp's now().
    """
    user_store = _make_test_store(f"api_{uuid.uuid4().hex[:8]}")
    auth_service = AuthService(user_store, make_settings(), utcnow)
    assert auth_service.register_user(OWNER_EMAIL, OWNER_PASSWORD, "owner").ok

    with _client_for(auth_service) as client:
        yield client, auth_service

    user_store.close()


@pytest.fixture
def setup_client() -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) over an empty database (first-run state)."""
    user_store = _make_test_store(f"setup_{uuid.uuid4().hex[:8]}")
    auth_service = AuthService(user_store, make_settings(), utcnow)
    with _client_for(auth_service) as client:
        yield client, auth_service
    user_store.close()


@pytest.fixture
def disabled_client() -> Generator[TestClient, None, None]:
    """Yield a client whose service has authentication switched off."""
    user_store = _make_test_store(f"off_{uuid.uuid4().hex[:8]}")
    auth_service = AuthService(user_store, make_settings(auth_enabled=False), utcnow)
    with _client_for(auth_service) as client:
        yield client
    user_store.close()


def login(client: TestClient, email: str, password: str, code: str | None = None):
    """POST /auth/login and drop the cookie so later calls choose their own credentials."""
    body = {"email": email, "password": password}
    if code is not None:
        body["two_factor_code"] = code
    resp = client.post("/api/v1/auth/login", json=body)
    client.cookies.clear()
    return resp


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
