"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_session are the mappers.
Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

Atomicity:
  Every read-then-write on a user row is expressed as ONE statement or as a
  compare-and-swap (UPDATE ... WHERE column = expected value), so concurrent
  requests against the same user cannot lose updates:

    record_failed_attempt()    -- counter + 1 and lockout stamp in one UPDATE
    enable_two_factor()        -- only if the verified pending secret is still stored
    replace_backup_codes()     -- only if the code set is unchanged since it was read
    complete_password_reset()  -- token consumption + session purge in one transaction
    consume_email_verification() -- token consumption in one UPDATE

  A CAS that matches zero rows returns False; the caller decides whether to
  re-read. Nothing here retries on its own.

Timestamps:
  The service layer works with aware UTC datetimes. Columns are stored as
  naive UTC (SQLite has no timezone type); _to_db / _from_db convert at the
  boundary so comparisons in SQL stay correct.

DB path: rosintracker_auth.db at the project root unless DATABASE_URL is set.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    case,
    create_engine,
    event,
    func,
    literal,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import Session, User
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("is_email_verified", Boolean, nullable=False, server_default="0"),
    Column("email_verification_token", String(64), unique=True),
    Column("email_verification_expiry", DateTime),
    Column("two_factor_enabled", Boolean, nullable=False, server_default="0"),
    Column("two_factor_secret", String(64)),
    Column("backup_codes", Text, nullable=False, server_default="[]"),  # JSON list
    Column("password_reset_token", String(64), unique=True),
    Column("password_reset_expiry", DateTime),
    Column("last_login_at", DateTime),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", DateTime),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

_sessions = Table(
    "user_sessions",
    _metadata,
    Column("id", String(36), primary_key=True),  # uuid4
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("expires_at", DateTime, nullable=False, index=True),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("created_at", DateTime, nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys for every new connection.

    WAL lets readers proceed without blocking during writes. foreign_keys is
    off by default in SQLite and is required for ON DELETE CASCADE on
    user_sessions. Both are per-connection, so they are set on connect.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _from_db(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def _codes_to_db(codes: tuple[str, ...] | list[str]) -> str:
    return json.dumps(list(codes))


def _codes_from_db(raw: str | None) -> tuple[str, ...]:
    if not raw:
        return ()
    return tuple(json.loads(raw))


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Session entities.

    Usage:
        store = UserStore()
        user_id = store.create_user(User(email="a@b.com", username="a", password_hash=hash_password("pw")), now)
        user = store.get_by_email("a@b.com")
        store.close()

    Every mutating method takes `now` from the caller. The store never reads
    the clock itself, so services (and tests) own time.
    """

    def __init__(self, db_url: str | None = None) -> None:
        db_url = db_url or get_settings().database_url
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Run a trivial query. Raises on connectivity failure."""
        with self.engine.connect() as conn:
            conn.execute(select(literal(1))).scalar()
        return True

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        """Return True if at least one user record exists.

        Used by the status endpoint and initial setup to detect first-run state.
        """
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User, now: datetime) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email or username already
        exists. Callers treat that as a signal that a concurrent request
        already created the record.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    username=user.username,
                    password_hash=user.password_hash,
                    is_email_verified=user.is_email_verified,
                    email_verification_token=user.email_verification_token,
                    email_verification_expiry=_to_db(user.email_verification_expiry),
                    two_factor_enabled=False,
                    backup_codes=_codes_to_db(()),
                    failed_login_attempts=0,
                    created_at=_to_db(now),
                    updated_at=_to_db(now),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        return self._get_one(_users.c.id == user_id)

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively."""
        return self._get_one(func.lower(_users.c.email) == email.strip().lower())

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive)."""
        return self._get_one(_users.c.username == username)

    def get_by_identifier(self, identifier: str) -> User | None:
        """Resolve a login identifier that may be either an email or a username."""
        if "@" in identifier:
            user = self.get_by_email(identifier)
            if user is not None:
                return user
        return self.get_by_username(identifier)

    def _get_one(self, condition) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(condition)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_email(self, user_id: int, email: str, now: datetime) -> bool:
        """Change the login email and reset verification state.

        Raises sqlalchemy.exc.IntegrityError if another account holds the email.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    email=email,
                    is_email_verified=False,
                    email_verification_token=None,
                    email_verification_expiry=None,
                    updated_at=_to_db(now),
                )
            )
        return result.rowcount > 0

    def update_password(self, user_id: int, password_hash: str, now: datetime) -> bool:
        """Replace the password hash and reset lockout counters in one statement."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    password_hash=password_hash,
                    failed_login_attempts=0,
                    locked_until=None,
                    updated_at=_to_db(now),
                )
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lockout counters
    # ------------------------------------------------------------------

    def record_failed_attempt(self, user_id: int, threshold: int, locked_until: datetime, now: datetime) -> int:
        """Atomically increment failed_login_attempts and stamp locked_until at the threshold.

        The right-hand side of an UPDATE sees the pre-update row, so
        `failed_login_attempts + 1 >= threshold` is evaluated against the value
        this statement is about to write. Concurrent failures are serialized by
        the database's row/table write lock; none can skip the threshold.

        Returns the new attempt count (0 if the user does not exist).
        """
        next_count = _users.c.failed_login_attempts + 1
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    failed_login_attempts=next_count,
                    locked_until=case(
                        (next_count >= threshold, literal(_to_db(locked_until), DateTime())),
                        else_=_users.c.locked_until,
                    ),
                    updated_at=_to_db(now),
                )
            )
            if result.rowcount == 0:
                return 0
            count = conn.execute(
                select(_users.c.failed_login_attempts).where(_users.c.id == user_id)
            ).scalar_one()
        return int(count)

    def clear_failed_attempts(self, user_id: int, now: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=0, locked_until=None, updated_at=_to_db(now))
            )

    def record_login(self, user_id: int, now: datetime) -> None:
        """Stamp last_login_at and reset lockout counters after a successful login."""
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    last_login_at=_to_db(now),
                    failed_login_attempts=0,
                    locked_until=None,
                    updated_at=_to_db(now),
                )
            )

    # ------------------------------------------------------------------
    # Two-factor
    # ------------------------------------------------------------------

    def set_pending_two_factor_secret(self, user_id: int, secret: str, now: datetime) -> bool:
        """Store a pending TOTP secret. Refused (False) while 2FA is already enabled."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.two_factor_enabled.is_(False)))
                .values(two_factor_secret=secret, updated_at=_to_db(now))
            )
        return result.rowcount > 0

    def enable_two_factor(self, user_id: int, expected_secret: str, backup_codes: list[str], now: datetime) -> bool:
        """Flip two_factor_enabled on, only if the verified pending secret is still stored.

        Guards against a concurrent setup_2fa() replacing the secret between
        code verification and this write.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.two_factor_enabled.is_(False))
                    & (_users.c.two_factor_secret == expected_secret)
                )
                .values(
                    two_factor_enabled=True,
                    backup_codes=_codes_to_db(backup_codes),
                    updated_at=_to_db(now),
                )
            )
        return result.rowcount > 0

    def replace_backup_codes(
        self,
        user_id: int,
        expected: tuple[str, ...],
        replacement: tuple[str, ...],
        now: datetime,
    ) -> bool:
        """Compare-and-swap the backup code set.

        Succeeds only if the stored set still equals `expected`. Both sides go
        through _codes_to_db, so equal tuples always serialize to equal text.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(
                    (_users.c.id == user_id)
                    & (_users.c.two_factor_enabled.is_(True))
                    & (_users.c.backup_codes == _codes_to_db(expected))
                )
                .values(backup_codes=_codes_to_db(replacement), updated_at=_to_db(now))
            )
        return result.rowcount > 0

    def disable_two_factor(self, user_id: int, now: datetime) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    two_factor_enabled=False,
                    two_factor_secret=None,
                    backup_codes=_codes_to_db(()),
                    updated_at=_to_db(now),
                )
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Password reset and email verification tokens
    # ------------------------------------------------------------------

    def set_password_reset(self, user_id: int, token: str, expiry: datetime, now: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    password_reset_token=token,
                    password_reset_expiry=_to_db(expiry),
                    updated_at=_to_db(now),
                )
            )

    def complete_password_reset(self, token: str, password_hash: str, now: datetime) -> int | None:
        """Consume a reset token, replace the password, and purge every session. One transaction.

        The UPDATE matches only while the token is present and unexpired, so two
        concurrent resets with the same token cannot both succeed. If it matches
        nothing, the transaction changes nothing and None is returned.

        Returns the user id whose password was replaced.
        """
        with self.engine.begin() as conn:
            user_id = conn.execute(
                select(_users.c.id).where(
                    (_users.c.password_reset_token == token) & (_users.c.password_reset_expiry > _to_db(now))
                )
            ).scalar()
            if user_id is None:
                return None
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.password_reset_token == token))
                .values(
                    password_hash=password_hash,
                    password_reset_token=None,
                    password_reset_expiry=None,
                    failed_login_attempts=0,
                    locked_until=None,
                    updated_at=_to_db(now),
                )
            )
            if result.rowcount == 0:
                return None
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return int(user_id)

    def set_email_verification(self, user_id: int, token: str, expiry: datetime, now: datetime) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(
                    email_verification_token=token,
                    email_verification_expiry=_to_db(expiry),
                    updated_at=_to_db(now),
                )
            )

    def consume_email_verification(self, token: str, now: datetime) -> int | None:
        """Mark the owning user verified and clear the token pair. Returns the user id or None."""
        with self.engine.begin() as conn:
            user_id = conn.execute(
                select(_users.c.id).where(
                    (_users.c.email_verification_token == token)
                    & (_users.c.email_verification_expiry > _to_db(now))
                )
            ).scalar()
            if user_id is None:
                return None
            result = conn.execute(
                _users.update()
                .where((_users.c.id == user_id) & (_users.c.email_verification_token == token))
                .values(
                    is_email_verified=True,
                    email_verification_token=None,
                    email_verification_expiry=None,
                    updated_at=_to_db(now),
                )
            )
        return int(user_id) if result.rowcount > 0 else None

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def create_session(self, session: Session) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    token=session.token,
                    expires_at=_to_db(session.expires_at),
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    created_at=_to_db(session.created_at),
                )
            )

    def get_session_with_user(self, token: str) -> tuple[Session, User] | None:
        """Return the session for `token` and its owner, regardless of expiry.

        Expiry is the caller's decision (SessionManager compares against its
        clock). Both reads share one connection.
        """
        with self.engine.connect() as conn:
            srow = conn.execute(_sessions.select().where(_sessions.c.token == token)).fetchone()
            if srow is None:
                return None
            urow = conn.execute(_users.select().where(_users.c.id == srow.user_id)).fetchone()
        if urow is None:
            return None
        return _row_to_session(srow), _row_to_user(urow)

    def list_user_sessions(self, user_id: int) -> list[Session]:
        """Return every stored session for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select().where(_sessions.c.user_id == user_id).order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def delete_session(self, token: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.token == token))
        return result.rowcount > 0

    def delete_user_sessions(self, user_id: int, except_token: str | None = None) -> int:
        """Delete every session owned by user_id, optionally keeping one token alive."""
        condition = _sessions.c.user_id == user_id
        if except_token is not None:
            condition = condition & (_sessions.c.token != except_token)
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(condition))
        return result.rowcount

    def delete_expired_sessions(self, now: datetime) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= _to_db(now)))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        username=row.username,
        password_hash=row.password_hash,
        is_email_verified=bool(row.is_email_verified),
        email_verification_token=row.email_verification_token,
        email_verification_expiry=_from_db(row.email_verification_expiry),
        two_factor_enabled=bool(row.two_factor_enabled),
        two_factor_secret=row.two_factor_secret,
        backup_codes=_codes_from_db(row.backup_codes),
        password_reset_token=row.password_reset_token,
        password_reset_expiry=_from_db(row.password_reset_expiry),
        failed_login_attempts=row.failed_login_attempts or 0,
        locked_until=_from_db(row.locked_until),
        last_login_at=_from_db(row.last_login_at),
        created_at=_from_db(row.created_at),
        updated_at=_from_db(row.updated_at),
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        expires_at=_from_db(row.expires_at),
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=_from_db(row.created_at),
    )
