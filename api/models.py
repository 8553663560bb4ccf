"""
API request and response models for the Rosin Tracker auth endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field constraints here are only a size guard against oversized bodies. The
password and email rules live in AuthService so the admin console and the API
enforce the same policy and report it as a 400 validation_error.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login.

    `email` accepts either the email address or the username. Passwords are
    passed through untouched, so no whitespace stripping here.
    """

    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=1024)
    two_factor_code: Optional[str] = Field(default=None, max_length=32)


class SetupRequest(BaseModel):
    """Request body for POST /api/v1/settings/setup (first account)."""

    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=1024)
    username: Optional[str] = Field(default=None, max_length=255)


class PasswordResetRequest(BaseModel):
    email: str = Field(default="", max_length=255)


class PasswordResetComplete(BaseModel):
    token: str = Field(default="", max_length=256)
    new_password: str = Field(default="", max_length=1024)


class VerifyEmailRequest(BaseModel):
    token: str = Field(default="", max_length=256)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(default="", max_length=1024)
    new_password: str = Field(default="", max_length=1024)


class ChangeEmailRequest(BaseModel):
    new_email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=1024)


class TwoFactorCodeRequest(BaseModel):
    """Request body for 2FA enable / disable. Accepts a TOTP or a backup code."""

    model_config = ConfigDict(str_strip_whitespace=True)

    code: str = Field(default="", max_length=32)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public view of a user. Never carries hashes, secrets, tokens or codes."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    username: str
    is_email_verified: bool
    two_factor_enabled: bool

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            email=user.email,
            username=user.username,
            is_email_verified=user.is_email_verified,
            two_factor_enabled=user.two_factor_enabled,
        )


class AuthStatusResponse(BaseModel):
    """Response for GET /api/v1/auth/status."""

    model_config = ConfigDict(frozen=True)

    enabled: bool
    has_users: bool
    needs_setup: bool


class LoginResponse(BaseModel):
    """Successful login. The token is also set as the session cookie."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    session_token: str
    expires_at: str


class CurrentUserResponse(BaseModel):
    """Response for GET /api/v1/auth/user.

    With auth disabled there is no real account; `user` is a synthetic
    default identity and `auth_enabled` is False.
    """

    model_config = ConfigDict(frozen=True)

    auth_enabled: bool
    user: Optional[UserResponse] = None


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class SecuritySettingsResponse(BaseModel):
    """Response for GET /api/v1/settings/security."""

    model_config = ConfigDict(frozen=True)

    auth_enabled: bool
    has_users: bool
    needs_setup: bool
    two_factor_enabled: bool = False
    is_email_verified: bool = False
    session_ttl_days: int
    active_sessions: int = 0


class TwoFactorSetupResponse(BaseModel):
    """Enrollment material. Shown once; the secret is not retrievable later."""

    model_config = ConfigDict(frozen=True)

    secret: str
    provisioning_uri: str
    qr_code: str


class BackupCodesResponse(BaseModel):
    """Backup codes issued when 2FA is enabled. Shown once."""

    model_config = ConfigDict(frozen=True)

    message: str
    backup_codes: list[str]


class SessionInfo(BaseModel):
    """One active session of the caller. The token itself is never exposed."""

    model_config = ConfigDict(frozen=True)

    id: str
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: Optional[str]
    expires_at: str
    current: bool


class SessionListResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    sessions: list[SessionInfo]


class RevokeSessionsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    revoked: int


# ---------------------------------------------------------------------------
# Shared envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
