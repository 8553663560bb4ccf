"""
api/routes/v1/auth.py -- Login, logout and token-based account recovery endpoints.

Routes:
  GET  /api/v1/auth/status                     -- auth switch and first-run state (public)
  POST /api/v1/auth/login                      -- password (+2FA) login; sets session cookie
  POST /api/v1/auth/logout                     -- revokes the presented session; clears cookie
  GET  /api/v1/auth/user                       -- current identity
  POST /api/v1/auth/password-reset/request     -- issue reset token (always 202)
  POST /api/v1/auth/password-reset/complete    -- consume reset token
  POST /api/v1/auth/verify-email               -- consume email verification token

Security:
  POST /login, /password-reset/* are rate-limited per IP (LOGIN_RATE_LIMIT).
  Cache-Control: no-store on every login response, success or failure.
  Unknown email and wrong password produce the same 401 body.
  The reset request answers 202 with one message whether or not the email
  exists; the token itself is never put in a response.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    AuthStatusResponse,
    CurrentUserResponse,
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    PasswordResetComplete,
    PasswordResetRequest,
    UserResponse,
    VerifyEmailRequest,
)
from auth.dependencies import (
    get_auth_service,
    read_session_token,
    require_auth_enabled,
    try_get_current_session,
)
from auth.models import AuthError, AuthResult
from auth.service import AuthService
from auth.tokens import clear_session_cookie, set_session_cookie

logger = logging.getLogger("rosintracker.api")

# Auth policy:
# - GET  /api/v1/auth/status:                    public
# - POST /api/v1/auth/login:                     public, 400 auth_disabled when auth is off
# - POST /api/v1/auth/logout:                    public -- revoking an unknown token is a no-op
# - GET  /api/v1/auth/user:                      session required when auth is on
# - POST /api/v1/auth/password-reset/request:    public
# - POST /api/v1/auth/password-reset/complete:   public (the token is the credential)
# - POST /api/v1/auth/verify-email:              public (the token is the credential)
router = APIRouter()

AUTH_ERROR_STATUS: dict[AuthError, int] = {
    AuthError.invalid_credentials: 401,
    AuthError.account_locked: 423,
    AuthError.two_factor_required: 400,
    AuthError.invalid_two_factor_code: 401,
    AuthError.token_expired_or_invalid: 400,
    AuthError.validation_error: 400,
}

# Synthetic identity reported while authentication is switched off.
_DEFAULT_USER = UserResponse(
    id=0,
    email="default@localhost",
    username="default",
    is_email_verified=True,
    two_factor_enabled=False,
)


def auth_error_response(result: AuthResult) -> JSONResponse:
    """Map a failed AuthResult onto the shared error envelope."""
    return JSONResponse(
        status_code=AUTH_ERROR_STATUS[result.error],
        content=ErrorResponse(
            error=ErrorDetail(code=result.error.value, message=result.message)
        ).model_dump(),
    )


def raise_for_result(result: AuthResult) -> None:
    """Raise the HTTPException matching a failed AuthResult. No-op on success."""
    if result.ok:
        return
    raise HTTPException(
        status_code=AUTH_ERROR_STATUS[result.error],
        detail=ErrorDetail(code=result.error.value, message=result.message).model_dump(),
    )


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/status", response_model=AuthStatusResponse)
def auth_status(service: AuthService = Depends(get_auth_service)) -> AuthStatusResponse:
    status = service.status()
    return AuthStatusResponse(enabled=status.enabled, has_users=status.has_users, needs_setup=status.needs_setup)


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(require_auth_enabled),
) -> JSONResponse:
    """Authenticate with email (or username), password and optional 2FA code.

    On success the session token is returned in the body and set as an
    httpOnly cookie. Every response carries Cache-Control: no-store.
    """
    result = service.login(
        body.email,
        body.password,
        two_factor_code=body.two_factor_code or None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    if not result.ok:
        resp = auth_error_response(result)
        resp.headers["Cache-Control"] = "no-store"
        return resp

    session = result.value.session
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            user=UserResponse.from_user(result.value.user),
            session_token=session.token,
            expires_at=session.expires_at.isoformat(),
        ).model_dump(),
    )
    set_session_cookie(resp, session.token, max_age=service.sessions.ttl_seconds, secure=service.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, service: AuthService = Depends(get_auth_service)) -> JSONResponse:
    """Revoke the presented session and clear the cookie."""
    service.logout(read_session_token(request))
    resp = JSONResponse(content=MessageResponse(message="Logged out.").model_dump())
    clear_session_cookie(resp)
    return resp


@router.get("/auth/user", response_model=CurrentUserResponse)
def current_user(request: Request, service: AuthService = Depends(get_auth_service)) -> CurrentUserResponse:
    """Return the signed-in user, or the synthetic default user when auth is off."""
    if not service.enabled:
        return CurrentUserResponse(auth_enabled=False, user=_DEFAULT_USER)
    found = try_get_current_session(request)
    if found is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Not authenticated."},
        )
    return CurrentUserResponse(auth_enabled=True, user=UserResponse.from_user(found[1]))


# ---------------------------------------------------------------------------
# Token flows
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)
@router.post("/auth/password-reset/request", status_code=202, response_model=MessageResponse)
def request_password_reset(
    request: Request,
    body: PasswordResetRequest,
    service: AuthService = Depends(require_auth_enabled),
) -> MessageResponse:
    """Start a password reset. The answer never reveals whether the email exists.

    Delivery of the token is out of band (see `main.py issue-reset-token`).
    """
    service.request_password_reset(body.email)
    return MessageResponse(message="If an account exists for that email, a reset link has been sent.")


@limiter.limit(login_rate_limit)
@router.post("/auth/password-reset/complete", response_model=MessageResponse)
def complete_password_reset(
    request: Request,
    body: PasswordResetComplete,
    service: AuthService = Depends(require_auth_enabled),
) -> MessageResponse:
    """Set a new password with a reset token. Signs out every existing session."""
    raise_for_result(service.complete_password_reset(body.token, body.new_password))
    return MessageResponse(message="Password has been reset. Please log in again.")


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(
    body: VerifyEmailRequest,
    service: AuthService = Depends(require_auth_enabled),
) -> MessageResponse:
    raise_for_result(service.verify_email(body.token))
    return MessageResponse(message="Email verified.")
