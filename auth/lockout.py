"""
auth/lockout.py -- Brute-force lockout derived from stored timestamps.

There is no stored "locked" flag and no background unlock job. An account is
locked exactly while users.locked_until is in the future; once the clock
passes that instant the next is_account_locked() call simply returns False.
The attempt counter is left as-is until a successful login (or a password
reset) clears it, so a locked user always has failed_login_attempts at or
above the threshold.

The increment is a single atomic UPDATE in UserStore.record_failed_attempt(),
so a burst of concurrent failures cannot slip past the threshold.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from auth.models import User
from auth.store import UserStore
from core.clock import Clock, utcnow
from core.config import Settings

logger = logging.getLogger("rosintracker.auth")


def is_locked(locked_until: datetime | None, now: datetime) -> bool:
    """Pure lock predicate: True iff locked_until is set and strictly after now."""
    return locked_until is not None and now < locked_until


class LockoutPolicy:
    def __init__(self, store: UserStore, settings: Settings, clock: Clock = utcnow) -> None:
        self.store = store
        self.threshold = settings.max_login_attempts
        self.window = timedelta(minutes=settings.lockout_minutes)
        self._clock = clock

    def is_account_locked(self, user: User) -> bool:
        return is_locked(user.locked_until, self._clock())

    def increment_failed_attempts(self, user_id: int) -> int:
        """Record one failed attempt; lock the account when the threshold is reached.

        Returns the attempt count after the increment.
        """
        now = self._clock()
        attempts = self.store.record_failed_attempt(
            user_id,
            threshold=self.threshold,
            locked_until=now + self.window,
            now=now,
        )
        if attempts >= self.threshold:
            logger.warning(
                "Account locked for user_id=%s after %d failed attempts (%d min)",
                user_id,
                attempts,
                int(self.window.total_seconds() // 60),
            )
        else:
            logger.info("Failed login for user_id=%s (%d/%d)", user_id, attempts, self.threshold)
        return attempts

    def reset_failed_attempts(self, user_id: int) -> None:
        self.store.clear_failed_attempts(user_id, self._clock())
