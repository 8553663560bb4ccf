"""
auth/sessions.py -- Opaque session token lifecycle.

A session is a random 256-bit token with an absolute expiry (7 days by
default). Nothing is encoded in the token; resolving it always goes through
the store. Expiry is fixed at issue time and never slides.

Expired rows stay in the table until cleanup_expired_sessions() runs, but
find_valid_session() treats them as absent. The sweep is triggered from
outside (the API lifespan loop or `main.py cleanup-sessions`); this module
schedules nothing itself.
"""

from __future__ import annotations

import logging
import uuid
from datetime import timedelta

from auth.models import Session, User
from auth.store import UserStore
from auth.tokens import generate_secure_token, tokens_equal
from core.clock import Clock, utcnow
from core.config import Settings

logger = logging.getLogger("rosintracker.auth")


class SessionManager:
    def __init__(self, store: UserStore, settings: Settings, clock: Clock = utcnow) -> None:
        self.store = store
        self.ttl = timedelta(days=settings.session_ttl_days)
        self._clock = clock

    @property
    def ttl_seconds(self) -> int:
        return int(self.ttl.total_seconds())

    def create_session(
        self,
        user_id: int,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        now = self._clock()
        session = Session(
            id=str(uuid.uuid4()),
            user_id=user_id,
            token=generate_secure_token(),
            expires_at=now + self.ttl,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
        self.store.create_session(session)
        return session

    def find_valid_session(self, token: str | None) -> tuple[Session, User] | None:
        """Resolve a presented token to (session, owner), or None.

        None when the token is empty, unknown, expired, or its owner is gone.
        """
        if not token:
            return None
        found = self.store.get_session_with_user(token)
        if found is None:
            return None
        session, user = found
        if not tokens_equal(token, session.token):
            return None
        if session.expires_at <= self._clock():
            return None
        return session, user

    def delete_session(self, token: str) -> bool:
        return self.store.delete_session(token)

    def delete_all_user_sessions(self, user_id: int, except_token: str | None = None) -> int:
        removed = self.store.delete_user_sessions(user_id, except_token=except_token)
        logger.info("Revoked %d session(s) for user_id=%s", removed, user_id)
        return removed

    def cleanup_expired_sessions(self) -> int:
        removed = self.store.delete_expired_sessions(self._clock())
        if removed:
            logger.info("Expired session sweep removed %d row(s)", removed)
        return removed
