"""
auth/tokens.py -- Password hashing, opaque token generation, and cookie helpers.

Security design decisions:
  Passwords: bcrypt, used directly. Bcrypt is the right choice for
       low-entropy secrets (passwords) because its cost factor makes brute-force
       expensive. The cost is passed in by callers from Settings.bcrypt_rounds
       (12 by default). The cached dummy hash enables timing equalization in
       AuthService.login() so response time does not reveal whether an
       identifier exists.

  Tokens: secrets.token_hex(32) gives 256 bits of entropy for session, reset
       and email-verification tokens. Tokens are opaque -- they carry no claims
       and are only meaningful as a lookup key in the store.

  Comparison: the store finds a session by its indexed token column, then
       tokens_equal() re-checks the value with hmac.compare_digest so the final
       match does not leak timing information.

Layer rule: no imports from api/ or core/. Cost and cookie flags are passed
in by the owning service, never read from global settings.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from functools import lru_cache

import bcrypt

logger = logging.getLogger("rosintracker.auth")

SESSION_COOKIE = "session_token"
DEFAULT_BCRYPT_ROUNDS = 12

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
#
# Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
# wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
# rejects with an explicit error.
# ---------------------------------------------------------------------------


def hash_password(plain: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Callers pass Settings.bcrypt_rounds. Passwords longer than 72 bytes are
    truncated by bcrypt. The facade enforces max_password_length (128 chars)
    before hashing, and the request models cap the field the same way.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str | None) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Never raises. A missing or malformed stored hash is treated as a mismatch.
    """
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logger.warning("Stored password hash is malformed; treating as mismatch")
        return False


# Timing equalization dummy hash, one per cost factor so a miss costs the
# same as a real verification at the caller's configured rounds.
_DUMMY_PASSWORD = "rosintracker_timing_dummy"


@lru_cache(maxsize=4)
def _dummy_hash(rounds: int) -> str:
    return hash_password(_DUMMY_PASSWORD, rounds=rounds)


def burn_password_check(plain: str, rounds: int = DEFAULT_BCRYPT_ROUNDS) -> None:
    """Spend one bcrypt verification on the dummy hash and discard the result."""
    verify_password(plain, _dummy_hash(rounds))


# ---------------------------------------------------------------------------
# Opaque tokens
# ---------------------------------------------------------------------------


def generate_secure_token() -> str:
    """Return 32 random bytes as 64 hex characters (256 bits of entropy)."""
    return secrets.token_hex(32)


def tokens_equal(presented: str, stored: str) -> bool:
    """Constant-time equality for token strings."""
    return hmac.compare_digest(presented.encode("utf-8"), stored.encode("utf-8"))


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_session_cookie(response, token: str, max_age: int, secure: bool = False) -> None:
    """Write the session token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": cookie sent on same-site navigations and GET cross-site
        links, but not on cross-site POST.
    secure: only sent over HTTPS; routes pass Settings.secure_cookies.
    max_age: matches the session's absolute lifetime.
    """
    response.set_cookie(
        SESSION_COOKIE,
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )


def clear_session_cookie(response) -> None:
    response.delete_cookie(SESSION_COOKIE)
