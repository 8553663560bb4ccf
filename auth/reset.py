"""
auth/reset.py -- Time-boxed, single-use tokens for password reset and email verification.

Both flows follow one pattern: a random token and its expiry are written to
the user row together, and consuming the token clears both in the same
statement that applies the effect. An unknown or expired token changes
nothing.

Password reset additionally deletes every session of the user inside the same
transaction (UserStore.complete_password_reset). A reset must log out every
existing client, so there is no code path that replaces the password without
the purge.

Token delivery (email) is outside this module. initiate_password_reset()
returns the token to the caller; HTTP routes never echo it back, and the admin
console prints it for out-of-band delivery.
"""

from __future__ import annotations

import logging
from datetime import timedelta

from auth.store import UserStore
from auth.tokens import generate_secure_token, hash_password
from core.clock import Clock, utcnow
from core.config import Settings

logger = logging.getLogger("rosintracker.auth")


class PasswordResetFlow:
    def __init__(self, store: UserStore, settings: Settings, clock: Clock = utcnow) -> None:
        self.store = store
        self.ttl = timedelta(hours=settings.reset_token_ttl_hours)
        self.bcrypt_rounds = settings.bcrypt_rounds
        self._clock = clock

    def initiate_password_reset(self, email: str) -> str | None:
        """Issue a reset token for `email`. None when no account has that email.

        Callers must respond identically in both cases.
        """
        user = self.store.get_by_email(email)
        if user is None:
            logger.info("Password reset requested for unknown account")
            return None
        now = self._clock()
        token = generate_secure_token()
        self.store.set_password_reset(user.id, token, now + self.ttl, now)
        logger.info("Password reset token issued for user_id=%s", user.id)
        return token

    def reset_password(self, token: str, new_password: str) -> bool:
        """Replace the password if `token` is current. Revokes every session of the user."""
        if not token:
            return False
        # Hash before touching the row so the transaction stays short.
        password_hash = hash_password(new_password, rounds=self.bcrypt_rounds)
        user_id = self.store.complete_password_reset(token, password_hash, self._clock())
        if user_id is None:
            logger.warning("Password reset attempted with invalid or expired token")
            return False
        logger.info("Password reset completed for user_id=%s; all sessions revoked", user_id)
        return True


class EmailVerificationFlow:
    def __init__(self, store: UserStore, settings: Settings, clock: Clock = utcnow) -> None:
        self.store = store
        self.ttl = timedelta(hours=settings.email_verification_ttl_hours)
        self._clock = clock

    def issue_email_verification(self, user_id: int) -> str | None:
        user = self.store.get_by_id(user_id)
        if user is None or user.is_email_verified:
            return None
        now = self._clock()
        token = generate_secure_token()
        self.store.set_email_verification(user_id, token, now + self.ttl, now)
        return token

    def verify_email(self, token: str) -> bool:
        if not token:
            return False
        user_id = self.store.consume_email_verification(token, self._clock())
        if user_id is None:
            logger.warning("Email verification attempted with invalid or expired token")
            return False
        logger.info("Email verified for user_id=%s", user_id)
        return True
