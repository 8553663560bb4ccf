"""
api/routes/v1/settings.py -- Account security settings endpoints.

Routes:
  GET  /api/v1/settings/security              -- auth switch, setup state, caller's 2FA state
  POST /api/v1/settings/setup                 -- create the first account and sign it in
  POST /api/v1/settings/change-password       -- requires session; signs out other sessions
  POST /api/v1/settings/change-email          -- requires session + password
  POST /api/v1/settings/2fa/setup             -- requires session; returns secret + QR
  POST /api/v1/settings/2fa/enable            -- requires session; returns backup codes once
  POST /api/v1/settings/2fa/disable           -- requires session + TOTP or backup code
  GET  /api/v1/settings/sessions              -- requires session; caller's active sessions
  POST /api/v1/settings/sessions/revoke-all   -- requires session; logout everywhere

Every write answers 400 auth_disabled while authentication is switched off.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    BackupCodesResponse,
    ChangeEmailRequest,
    ChangePasswordRequest,
    LoginResponse,
    MessageResponse,
    RevokeSessionsResponse,
    SecuritySettingsResponse,
    SessionInfo,
    SessionListResponse,
    SetupRequest,
    TwoFactorCodeRequest,
    TwoFactorSetupResponse,
    UserResponse,
)
from api.routes.v1.auth import raise_for_result
from auth.dependencies import (
    get_auth_service,
    get_current_session,
    require_auth_enabled,
    try_get_current_session,
)
from auth.models import Session, User
from auth.service import AuthService
from auth.tokens import set_session_cookie

router = APIRouter()


@router.get("/settings/security", response_model=SecuritySettingsResponse)
def security_settings(request: Request, service: AuthService = Depends(get_auth_service)) -> SecuritySettingsResponse:
    """Public view of the security configuration, plus the caller's own state if signed in."""
    status = service.status()
    two_factor_enabled = False
    is_email_verified = False
    active_sessions = 0
    if status.enabled:
        found = try_get_current_session(request)
        if found is not None:
            user = found[1]
            two_factor_enabled = user.two_factor_enabled
            is_email_verified = user.is_email_verified
            active_sessions = len(service.list_active_sessions(user.id))
    return SecuritySettingsResponse(
        auth_enabled=status.enabled,
        has_users=status.has_users,
        needs_setup=status.needs_setup,
        two_factor_enabled=two_factor_enabled,
        is_email_verified=is_email_verified,
        session_ttl_days=service.sessions.ttl.days,
        active_sessions=active_sessions,
    )


@limiter.limit(login_rate_limit)
@router.post("/settings/setup", status_code=201, response_model=LoginResponse)
def initial_setup(
    request: Request,
    body: SetupRequest,
    service: AuthService = Depends(require_auth_enabled),
) -> JSONResponse:
    """Create the first account. Refused once any account exists."""
    result = service.setup_initial_user(body.email, body.password, body.username)
    raise_for_result(result)
    user = result.value
    session = service.sessions.create_session(
        user.id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
    resp = JSONResponse(
        status_code=201,
        content=LoginResponse(
            user=UserResponse.from_user(user),
            session_token=session.token,
            expires_at=session.expires_at.isoformat(),
        ).model_dump(),
    )
    set_session_cookie(resp, session.token, max_age=service.sessions.ttl_seconds, secure=service.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/settings/change-password", response_model=MessageResponse)
def change_password(
    body: ChangePasswordRequest,
    service: AuthService = Depends(require_auth_enabled),
    current: tuple[Session, User] = Depends(get_current_session),
) -> MessageResponse:
    """Replace the password. Every other session of the user is signed out."""
    session, user = current
    raise_for_result(
        service.change_password(user.id, body.current_password, body.new_password, keep_token=session.token)
    )
    return MessageResponse(message="Password changed successfully.")


@router.post("/settings/change-email", response_model=UserResponse)
def change_email(
    body: ChangeEmailRequest,
    service: AuthService = Depends(require_auth_enabled),
    current: tuple[Session, User] = Depends(get_current_session),
) -> UserResponse:
    """Change the login email. The new address starts unverified."""
    result = service.change_email(current[1].id, body.new_email, body.password)
    raise_for_result(result)
    return UserResponse.from_user(result.value)


# ---------------------------------------------------------------------------
# Two-factor
# ---------------------------------------------------------------------------


@router.post("/settings/2fa/setup", response_model=TwoFactorSetupResponse)
def two_factor_setup(
    service: AuthService = Depends(require_auth_enabled),
    current: tuple[Session, User] = Depends(get_current_session),
) -> JSONResponse:
    result = service.setup_2fa(current[1].id)
    raise_for_result(result)
    setup = result.value
    resp = JSONResponse(
        content=TwoFactorSetupResponse(
            secret=setup.secret,
            provisioning_uri=setup.provisioning_uri,
            qr_code=setup.qr_code_data_url,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/settings/2fa/enable", response_model=BackupCodesResponse)
def two_factor_enable(
    body: TwoFactorCodeRequest,
    service: AuthService = Depends(require_auth_enabled),
    current: tuple[Session, User] = Depends(get_current_session),
) -> JSONResponse:
    """Confirm enrollment with a TOTP code. Backup codes are returned exactly once."""
    result = service.verify_2fa_setup_attempt(current[1].id, body.code)
    raise_for_result(result)
    resp = JSONResponse(
        content=BackupCodesResponse(
            message="Two-factor authentication enabled. Store these backup codes safely.",
            backup_codes=result.value,
        ).model_dump()
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/settings/2fa/disable", response_model=MessageResponse)
def two_factor_disable(
    body: TwoFactorCodeRequest,
    service: AuthService = Depends(require_auth_enabled),
    current: tuple[Session, User] = Depends(get_current_session),
) -> MessageResponse:
    raise_for_result(service.disable_2fa(current[1].id, body.code))
    return MessageResponse(message="Two-factor authentication disabled.")


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.get("/settings/sessions", response_model=SessionListResponse)
def active_sessions(
    service: AuthService = Depends(require_auth_enabled),
    current: tuple[Session, User] = Depends(get_current_session),
) -> SessionListResponse:
    """List the caller's unexpired sessions. Tokens are never included."""
    session, user = current
    return SessionListResponse(
        sessions=[
            SessionInfo(
                id=s.id,
                ip_address=s.ip_address,
                user_agent=s.user_agent,
                created_at=s.created_at.isoformat() if s.created_at else None,
                expires_at=s.expires_at.isoformat(),
                current=s.id == session.id,
            )
            for s in service.list_active_sessions(user.id)
        ]
    )


@router.post("/settings/sessions/revoke-all", response_model=RevokeSessionsResponse)
def revoke_all_sessions(
    service: AuthService = Depends(require_auth_enabled),
    current: tuple[Session, User] = Depends(get_current_session),
) -> RevokeSessionsResponse:
    """Sign out every session of the caller except the one making this request."""
    session, user = current
    return RevokeSessionsResponse(revoked=service.logout_everywhere(user.id, except_token=session.token))
