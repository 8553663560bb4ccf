"""
auth/models.py -- Domain dataclasses for authentication entities and results.

Pattern: Data class (pure data container, no persistence logic). Stores and
services do the work; these types only describe shape.

AuthResult is the typed outcome every AuthService operation returns. Expected
failures (wrong password, locked account, bad code, stale token) are values,
not exceptions, so the HTTP layer maps them to status codes in one place.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


@dataclass
class User:
    """A principal that can authenticate.

    username defaults to the email when an account is created without one,
    so both login identifiers are always populated.

    two_factor_secret is set while enrollment is pending AND while 2FA is
    enabled; two_factor_enabled alone decides whether login asks for a code.
    backup_codes holds only unused codes, in issue order.
    """

    email: str
    username: str
    password_hash: str
    id: int | None = None
    is_email_verified: bool = False
    email_verification_token: str | None = None
    email_verification_expiry: datetime | None = None
    two_factor_enabled: bool = False
    two_factor_secret: str | None = None
    backup_codes: tuple[str, ...] = ()
    password_reset_token: str | None = None
    password_reset_expiry: datetime | None = None
    failed_login_attempts: int = 0
    locked_until: datetime | None = None
    last_login_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Session:
    """One issued login credential.

    token is the only thing a client presents. expires_at is absolute and is
    never extended on use. ip_address and user_agent are advisory only.
    """

    id: str
    user_id: int
    token: str
    expires_at: datetime
    ip_address: str | None = None
    user_agent: str | None = None
    created_at: datetime | None = None


# ---------------------------------------------------------------------------
# Result types
# ---------------------------------------------------------------------------


class AuthError(str, Enum):
    invalid_credentials = "invalid_credentials"
    account_locked = "account_locked"
    two_factor_required = "two_factor_required"
    invalid_two_factor_code = "invalid_two_factor_code"
    token_expired_or_invalid = "token_expired_or_invalid"
    validation_error = "validation_error"


# invalid_credentials is one message for both unknown identifier
# and wrong password.
ERROR_MESSAGES: dict[AuthError, str] = {
    AuthError.invalid_credentials: "Invalid credentials.",
    AuthError.account_locked: "Account is locked due to too many failed attempts. Try again later.",
    AuthError.two_factor_required: "Two-factor authentication code is required.",
    AuthError.invalid_two_factor_code: "Invalid two-factor authentication code.",
    AuthError.token_expired_or_invalid: "Token is invalid or has expired.",
    AuthError.validation_error: "Request validation failed.",
}


@dataclass(frozen=True)
class AuthResult(Generic[T]):
    value: Optional[T] = None
    error: Optional[AuthError] = None
    message: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "AuthResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: AuthError, message: str | None = None) -> "AuthResult[T]":
        return cls(error=error, message=message or ERROR_MESSAGES[error])


@dataclass(frozen=True)
class LoginSuccess:
    user: User
    session: Session


@dataclass(frozen=True)
class TwoFactorSetup:
    """Enrollment material returned once by setup_2fa.

    provisioning_uri is the otpauth:// URI; qr_code_data_url is the same URI
    rendered as a PNG data URL for the settings page.
    """

    secret: str
    provisioning_uri: str
    qr_code_data_url: str


@dataclass(frozen=True)
class AuthStatus:
    enabled: bool
    has_users: bool
    needs_setup: bool


@dataclass(frozen=True)
class RecoveryReport:
    """Summary of an emergency account recovery run from the admin console."""

    user_id: int
    two_factor_disabled: bool
    sessions_revoked: int
