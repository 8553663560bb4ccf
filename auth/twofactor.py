"""
auth/twofactor.py -- TOTP two-factor authentication with single-use backup codes.

State machine (derived from two stored fields):

    NotConfigured        two_factor_secret is None,  two_factor_enabled False
    PendingVerification  two_factor_secret set,      two_factor_enabled False
    Enabled              two_factor_secret set,      two_factor_enabled True

setup_2fa() moves NotConfigured/Pending -> Pending with a fresh secret. Only a
correct code in verify_2fa_setup() moves Pending -> Enabled; a secret on its
own never turns 2FA on. disable_2fa() moves Enabled -> NotConfigured.

TOTP: pyotp, 30 second step, accepts one step of drift either side
(valid_window=1). The clock is injected and passed as for_time, so tests can
generate and verify codes at a fixed instant.

Backup codes: 8 codes of 8 uppercase hex chars. Stored as an immutable tuple;
consume_backup_code() returns a new tuple without the used code and the store
swaps it in only if the stored set is unchanged (compare-and-swap). When the
swap loses a race the fresh set is re-read, so a code that another request
already spent is no longer there to match.
"""

from __future__ import annotations

import base64
import io
import logging
import secrets

import pyotp
import qrcode

from auth.models import TwoFactorSetup, User
from auth.store import UserStore
from core.clock import Clock, utcnow
from core.config import Settings

logger = logging.getLogger("rosintracker.auth")

# Bounded re-reads when a backup-code swap loses to a concurrent writer.
_CAS_ATTEMPTS = 3


def generate_backup_codes(count: int = 8) -> list[str]:
    """Return `count` unique backup codes, each 4 random bytes as uppercase hex."""
    codes: list[str] = []
    while len(codes) < count:
        code = secrets.token_hex(4).upper()
        if code not in codes:
            codes.append(code)
    return codes


def consume_backup_code(codes: tuple[str, ...], candidate: str) -> tuple[str, ...] | None:
    """Return `codes` without `candidate` (case-insensitive), or None if it is not present."""
    normalized = candidate.strip().upper()
    if normalized not in codes:
        return None
    return tuple(c for c in codes if c != normalized)


def render_qr_data_url(uri: str) -> str:
    """Render an otpauth:// URI as a PNG data URL for an <img> tag."""
    image = qrcode.make(uri)
    buf = io.BytesIO()
    image.save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


class TwoFactorService:
    def __init__(self, store: UserStore, settings: Settings, clock: Clock = utcnow) -> None:
        self.store = store
        self.issuer = settings.totp_issuer
        self.valid_window = settings.totp_valid_window
        self.backup_code_count = settings.backup_code_count
        self._clock = clock

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def setup_2fa(self, user_id: int) -> TwoFactorSetup | None:
        """Generate and store a pending secret. None if the user is unknown or already enrolled."""
        user = self.store.get_by_id(user_id)
        if user is None or user.two_factor_enabled:
            return None
        secret = pyotp.random_base32()
        if not self.store.set_pending_two_factor_secret(user_id, secret, self._clock()):
            return None
        uri = pyotp.TOTP(secret).provisioning_uri(name=user.email, issuer_name=self.issuer)
        logger.info("2FA enrollment started for user_id=%s", user_id)
        return TwoFactorSetup(secret=secret, provisioning_uri=uri, qr_code_data_url=render_qr_data_url(uri))

    def verify_2fa_setup(self, user_id: int, code: str) -> list[str] | None:
        """Confirm enrollment with a TOTP code. Returns the new backup codes, or None.

        On failure nothing changes and the pending secret stays usable.
        """
        user = self.store.get_by_id(user_id)
        if user is None or user.two_factor_enabled or not user.two_factor_secret:
            return None
        if not self._verify_totp(user.two_factor_secret, code):
            return None
        codes = generate_backup_codes(self.backup_code_count)
        if not self.store.enable_two_factor(user_id, user.two_factor_secret, codes, self._clock()):
            # Secret was replaced (or 2FA enabled) by a concurrent request.
            return None
        logger.info("2FA enabled for user_id=%s", user_id)
        return codes

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_2fa(self, user_id: int, code: str) -> bool:
        """Check a login code: TOTP first, then a single-use backup code."""
        user = self.store.get_by_id(user_id)
        if user is None or not user.two_factor_enabled or not user.two_factor_secret:
            return False
        if self._verify_totp(user.two_factor_secret, code):
            return True
        return self._spend_backup_code(user, code)

    def _spend_backup_code(self, user: User, code: str) -> bool:
        current: User | None = user
        for _ in range(_CAS_ATTEMPTS):
            if current is None or not current.two_factor_enabled:
                return False
            remaining = consume_backup_code(current.backup_codes, code)
            if remaining is None:
                return False
            if self.store.replace_backup_codes(current.id, current.backup_codes, remaining, self._clock()):
                logger.info(
                    "Backup code used for user_id=%s (%d remaining)",
                    current.id,
                    len(remaining),
                )
                return True
            current = self.store.get_by_id(user.id)
        logger.warning("Backup code swap for user_id=%s kept losing to concurrent writers", user.id)
        return False

    def _verify_totp(self, secret: str, code: str) -> bool:
        code = (code or "").strip()
        if not code.isdigit():
            return False
        return pyotp.TOTP(secret).verify(code, for_time=self._clock(), valid_window=self.valid_window)

    # ------------------------------------------------------------------
    # Disable
    # ------------------------------------------------------------------

    def disable_2fa(self, user_id: int, code: str) -> bool:
        """Turn 2FA off after a successful verify_2fa(). Clears secret and all backup codes."""
        if not self.verify_2fa(user_id, code):
            return False
        self.store.disable_two_factor(user_id, self._clock())
        logger.info("2FA disabled for user_id=%s", user_id)
        return True

    def force_disable(self, user_id: int) -> bool:
        """Disable 2FA without a code. Admin console recovery only."""
        return self.store.disable_two_factor(user_id, self._clock())
