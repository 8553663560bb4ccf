"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The session token is read from two places, in priority order:
  1. "session_token" cookie -- set by POST /auth/login for the web UI.
  2. Authorization: Bearer <token> header -- scripts and API clients.

Both resolve through AuthService.resolve_session(), so expiry and revocation
behave the same for either transport.

try_get_current_session() is the soft variant (returns None on failure).
get_current_session() wraps it and raises HTTP 401 if unauthenticated.
Lockout only gates login: a session issued before the lock stays usable, so
the owner can still change the password or revoke other sessions.
require_auth() is the guard for the rest of the application's routes: when
auth is switched off it lets every request through with no user.
require_auth_enabled() rejects account writes (setup, password change, 2FA)
with 400 auth_disabled while auth is switched off.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for Depends/HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Depends, HTTPException, Request

from auth.models import Session, User
from auth.service import AuthService
from auth.tokens import SESSION_COOKIE


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def read_session_token(request: Request) -> str | None:
    token = request.cookies.get(SESSION_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:].strip()
    return token or None


def try_get_current_session(request: Request) -> tuple[Session, User] | None:
    """Resolve the request's session token. Never raises."""
    return get_auth_service(request).resolve_session(read_session_token(request))


def get_current_session(request: Request) -> tuple[Session, User]:
    """Require a valid session. Raises HTTP 401 if absent or expired.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(current: tuple[Session, User] = Depends(get_current_session)): ...
    """
    found = try_get_current_session(request)
    if found is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return found


def require_auth_enabled(service: AuthService = Depends(get_auth_service)) -> AuthService:
    """Reject the request with 400 when authentication is switched off."""
    if not service.enabled:
        raise HTTPException(
            status_code=400,
            detail={"code": "auth_disabled", "message": "Authentication is not enabled."},
        )
    return service


def require_auth(request: Request) -> User | None:
    """Route guard: passthrough (None) when auth is off, otherwise the session owner."""
    if not get_auth_service(request).enabled:
        return None
    _, user = get_current_session(request)
    return user
