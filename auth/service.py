"""
auth/service.py -- AuthService: the request-level auth operations.

Pattern: Facade. Routes and the admin console call AuthService only; it
composes LockoutPolicy, SessionManager, TwoFactorService, PasswordResetFlow
and EmailVerificationFlow over one UserStore and one clock.

Every operation returns an AuthResult (or a plain value where failure carries
no information, e.g. logout). Expected failures are never raised. Database
errors are not caught here: they propagate to the caller as a failed request
and are never retried, because repeating a mutating step (attempt counter,
backup code, session purge) could apply it twice.

Auth switch:
  `enabled` is copied from Settings at construction. It is configuration, not
  state; nothing in this class changes it.

Login order matters:
  1. Unknown identifier -> burn one bcrypt check on the dummy hash, then the
     generic invalid_credentials result. Same cost and same message as a
     wrong password.
  2. Locked account -> account_locked, before the password is even checked,
     so a correct password cannot bypass the window.
  3. Wrong password -> counted toward lockout, invalid_credentials.
  4. 2FA enabled and no code -> two_factor_required (not counted; the
     password was right).
  5. Wrong code -> counted toward lockout, invalid_two_factor_code.
  6. Success -> last_login_at stamped and counters reset in one UPDATE, then
     a fresh session is issued.
"""

from __future__ import annotations

import logging
import re

from sqlalchemy.exc import IntegrityError

from auth.lockout import LockoutPolicy
from auth.models import (
    AuthError,
    AuthResult,
    AuthStatus,
    LoginSuccess,
    RecoveryReport,
    Session,
    TwoFactorSetup,
    User,
)
from auth.reset import EmailVerificationFlow, PasswordResetFlow
from auth.sessions import SessionManager
from auth.store import UserStore
from auth.tokens import burn_password_check, hash_password, verify_password
from auth.twofactor import TwoFactorService
from core.clock import Clock, utcnow
from core.config import Settings

logger = logging.getLogger("rosintracker.auth")

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class AuthService:
    def __init__(self, store: UserStore, settings: Settings, clock: Clock = utcnow) -> None:
        self.store = store
        self.enabled = settings.auth_enabled
        self.min_password_length = settings.min_password_length
        self.max_password_length = settings.max_password_length
        self.bcrypt_rounds = settings.bcrypt_rounds
        self.secure_cookies = settings.secure_cookies
        self._clock = clock
        self.lockout = LockoutPolicy(store, settings, clock)
        self.sessions = SessionManager(store, settings, clock)
        self.two_factor = TwoFactorService(store, settings, clock)
        self.password_reset = PasswordResetFlow(store, settings, clock)
        self.email_verification = EmailVerificationFlow(store, settings, clock)

    # ------------------------------------------------------------------
    # Status and account creation
    # ------------------------------------------------------------------

    def status(self) -> AuthStatus:
        has_users = self.store.has_users() if self.enabled else False
        return AuthStatus(enabled=self.enabled, has_users=has_users, needs_setup=self.enabled and not has_users)

    def register_user(self, email: str, password: str, username: str | None = None) -> AuthResult[User]:
        """Create an account and issue its email verification token."""
        email = (email or "").strip().lower()
        username = (username or "").strip() or email
        problem = self._validate_email(email) or self._validate_password(password)
        if problem:
            return AuthResult.failure(AuthError.validation_error, problem)
        if len(username) < 3 or len(username) > 255:
            return AuthResult.failure(AuthError.validation_error, "Username must be between 3 and 255 characters.")
        if self.store.get_by_email(email) is not None or self.store.get_by_username(username) is not None:
            return AuthResult.failure(AuthError.validation_error, "User with this email or username already exists.")

        user = User(email=email, username=username, password_hash=hash_password(password, rounds=self.bcrypt_rounds))
        try:
            user_id = self.store.create_user(user, self._clock())
        except IntegrityError:
            return AuthResult.failure(AuthError.validation_error, "User with this email or username already exists.")
        self.email_verification.issue_email_verification(user_id)
        logger.info("User created: user_id=%s", user_id)
        return AuthResult.success(self.store.get_by_id(user_id))

    def setup_initial_user(self, email: str, password: str, username: str | None = None) -> AuthResult[User]:
        """Create the first account. Refused once any user exists."""
        if self.store.has_users():
            return AuthResult.failure(
                AuthError.validation_error,
                "Users already exist. Use the change password feature instead.",
            )
        return self.register_user(email, password, username)

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(
        self,
        identifier: str,
        password: str,
        two_factor_code: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuthResult[LoginSuccess]:
        identifier = (identifier or "").strip()
        if not identifier or not password:
            return AuthResult.failure(AuthError.validation_error, "Email or username and password are required.")

        user = self.store.get_by_identifier(identifier)
        if user is None:
            burn_password_check(password, rounds=self.bcrypt_rounds)
            logger.info("Login failed: unknown identifier")
            return AuthResult.failure(AuthError.invalid_credentials)

        if self.lockout.is_account_locked(user):
            logger.info("Login refused for locked user_id=%s", user.id)
            return AuthResult.failure(AuthError.account_locked)

        if not verify_password(password, user.password_hash):
            self.lockout.increment_failed_attempts(user.id)
            return AuthResult.failure(AuthError.invalid_credentials)

        if user.two_factor_enabled:
            if not two_factor_code:
                return AuthResult.failure(AuthError.two_factor_required)
            if not self.two_factor.verify_2fa(user.id, two_factor_code):
                self.lockout.increment_failed_attempts(user.id)
                return AuthResult.failure(AuthError.invalid_two_factor_code)

        self.store.record_login(user.id, self._clock())
        session = self.sessions.create_session(user.id, ip_address=ip_address, user_agent=user_agent)
        logger.info("Login succeeded for user_id=%s", user.id)
        return AuthResult.success(LoginSuccess(user=self.store.get_by_id(user.id) or user, session=session))

    def logout(self, token: str | None) -> bool:
        if not token:
            return False
        return self.sessions.delete_session(token)

    def logout_everywhere(self, user_id: int, except_token: str | None = None) -> int:
        return self.sessions.delete_all_user_sessions(user_id, except_token=except_token)

    def resolve_session(self, token: str | None) -> tuple[Session, User] | None:
        return self.sessions.find_valid_session(token)

    def list_active_sessions(self, user_id: int) -> list[Session]:
        now = self._clock()
        return [s for s in self.store.list_user_sessions(user_id) if s.expires_at > now]

    def cleanup_expired_sessions(self) -> int:
        return self.sessions.cleanup_expired_sessions()

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    def setup_2fa(self, user_id: int) -> AuthResult[TwoFactorSetup]:
        user = self.store.get_by_id(user_id)
        if user is None:
            return AuthResult.failure(AuthError.invalid_credentials)
        if user.two_factor_enabled:
            return AuthResult.failure(
                AuthError.validation_error, "Two-factor authentication is already enabled. Disable it first."
            )
        setup = self.two_factor.setup_2fa(user_id)
        if setup is None:
            return AuthResult.failure(
                AuthError.validation_error, "Two-factor authentication is already enabled. Disable it first."
            )
        return AuthResult.success(setup)

    def verify_2fa_setup_attempt(self, user_id: int, code: str) -> AuthResult[list[str]]:
        """Confirm enrollment. The value is the list of freshly issued backup codes."""
        if not code:
            return AuthResult.failure(AuthError.validation_error, "Verification code is required.")
        codes = self.two_factor.verify_2fa_setup(user_id, code)
        if codes is None:
            return AuthResult.failure(AuthError.invalid_two_factor_code, "Invalid verification code.")
        return AuthResult.success(codes)

    def disable_2fa(self, user_id: int, code: str) -> AuthResult[None]:
        if not code:
            return AuthResult.failure(AuthError.validation_error, "Verification code is required.")
        if not self.two_factor.disable_2fa(user_id, code):
            return AuthResult.failure(
                AuthError.invalid_two_factor_code, "Invalid verification code or 2FA not enabled."
            )
        return AuthResult.success()

    # ------------------------------------------------------------------
    # Password reset and email verification
    # ------------------------------------------------------------------

    def request_password_reset(self, email: str) -> str | None:
        """Return a reset token for out-of-band delivery, or None for unknown emails.

        HTTP callers must answer the same way in both cases.
        """
        email = (email or "").strip().lower()
        if not email:
            return None
        return self.password_reset.initiate_password_reset(email)

    def complete_password_reset(self, token: str, new_password: str) -> AuthResult[None]:
        problem = self._validate_password(new_password)
        if problem:
            return AuthResult.failure(AuthError.validation_error, problem)
        if not self.password_reset.reset_password(token, new_password):
            return AuthResult.failure(AuthError.token_expired_or_invalid)
        return AuthResult.success()

    def issue_email_verification(self, user_id: int) -> str | None:
        return self.email_verification.issue_email_verification(user_id)

    def verify_email(self, token: str) -> AuthResult[None]:
        if not self.email_verification.verify_email(token):
            return AuthResult.failure(AuthError.token_expired_or_invalid)
        return AuthResult.success()

    # ------------------------------------------------------------------
    # Account settings
    # ------------------------------------------------------------------

    def change_password(
        self,
        user_id: int,
        current_password: str,
        new_password: str,
        keep_token: str | None = None,
    ) -> AuthResult[None]:
        """Replace the password after re-checking the current one.

        Every other session of the user is revoked; keep_token (the caller's
        own session) survives so the user is not logged out of the tab they
        changed it from.
        """
        problem = self._validate_password(new_password)
        if problem:
            return AuthResult.failure(AuthError.validation_error, problem)
        user = self.store.get_by_id(user_id)
        if user is None or not verify_password(current_password or "", user.password_hash):
            return AuthResult.failure(AuthError.invalid_credentials, "Current password is incorrect.")
        self.store.update_password(user_id, hash_password(new_password, rounds=self.bcrypt_rounds), self._clock())
        self.sessions.delete_all_user_sessions(user_id, except_token=keep_token)
        logger.info("Password changed for user_id=%s", user_id)
        return AuthResult.success()

    def change_email(self, user_id: int, new_email: str, password: str) -> AuthResult[User]:
        new_email = (new_email or "").strip().lower()
        problem = self._validate_email(new_email)
        if problem:
            return AuthResult.failure(AuthError.validation_error, problem)
        user = self.store.get_by_id(user_id)
        if user is None or not verify_password(password or "", user.password_hash):
            return AuthResult.failure(AuthError.invalid_credentials, "Password is incorrect.")
        if new_email == user.email:
            return AuthResult.success(user)
        existing = self.store.get_by_email(new_email)
        if existing is not None:
            return AuthResult.failure(AuthError.validation_error, "Email is already in use.")
        try:
            self.store.update_email(user_id, new_email, self._clock())
        except IntegrityError:
            return AuthResult.failure(AuthError.validation_error, "Email is already in use.")
        self.email_verification.issue_email_verification(user_id)
        logger.info("Email changed for user_id=%s", user_id)
        return AuthResult.success(self.store.get_by_id(user_id))

    # ------------------------------------------------------------------
    # Admin console recovery
    # ------------------------------------------------------------------

    def recover_account(self, email: str) -> RecoveryReport | None:
        """Disable 2FA, clear lockout and revoke every session for one account.

        Server-console only; no HTTP route calls this.
        """
        user = self.store.get_by_email(email)
        if user is None:
            return None
        two_factor_disabled = False
        if user.two_factor_enabled or user.two_factor_secret:
            two_factor_disabled = self.two_factor.force_disable(user.id)
        self.lockout.reset_failed_attempts(user.id)
        revoked = self.sessions.delete_all_user_sessions(user.id)
        logger.warning("Emergency recovery applied to user_id=%s", user.id)
        return RecoveryReport(user_id=user.id, two_factor_disabled=two_factor_disabled, sessions_revoked=revoked)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_password(self, password: str | None) -> str | None:
        if not password or len(password) < self.min_password_length:
            return f"Password must be at least {self.min_password_length} characters long."
        if len(password) > self.max_password_length:
            return f"Password must be at most {self.max_password_length} characters long."
        return None

    @staticmethod
    def _validate_email(email: str) -> str | None:
        if not email or not _EMAIL_RE.match(email) or len(email) > 255:
            return "Valid email is required."
        return None
