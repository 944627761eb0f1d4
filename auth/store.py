"""
auth/store.py -- Credential store: the persistence boundary for identities.

Pattern: Repository + Data Mapper.
CredentialStore is the contract the authentication service depends on.
UserStore is the SQLAlchemy Core implementation; _row_to_user is the mapper.
Service and route code never touches SQL directly.

Responsibilities that live HERE, not in the service:
  - Password hashing (create) and constant-time verification (verify_password).
    The service hands the plaintext over exactly once, at create().
  - Atomic lockout accounting. increment_failed_attempts() performs the
    counter bump and the lock transition in ONE UPDATE statement, so two
    concurrent failures against the same account can never both observe
    count=4 and both write count=5, and at most one lock transition happens
    per threshold crossing. An active lock is never extended.
  - Duplicate-key translation. UNIQUE violations surface as
    DuplicateIdentityError naming the collided field(s), so the service can
    report a registration race the same way as a pre-checked collision.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema:
  UNIQUE(username) and UNIQUE(email). email is nullable; SQLite and
  PostgreSQL both treat NULLs as distinct in UNIQUE constraints, so any
  number of identities may omit an email.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import (
    Column,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    case,
    create_engine,
    event,
    null,
    or_,
    text,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.passwords import DEFAULT_ROUNDS, hash_password, verify_password
from core.clock import Clock, SystemClock

logger = logging.getLogger("authgate.store")

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class DuplicateIdentityError(Exception):
    """A UNIQUE constraint rejected create(). fields names every collided column."""

    def __init__(self, fields: list[str]) -> None:
        super().__init__(f"Duplicate identity: {', '.join(fields)}")
        self.fields = fields


class CredentialStore(Protocol):
    def find_by_username(self, username: str) -> Optional[User]: ...

    def find_by_username_or_email(self, username: str, email: Optional[str]) -> list[User]: ...

    def find_by_id(self, user_id: str) -> Optional[User]: ...

    def create(self, username: str, password: str, email: Optional[str] = None) -> User: ...

    def increment_failed_attempts(self, user_id: str) -> Optional[User]: ...

    def reset_failed_attempts(self, user_id: str) -> Optional[User]: ...

    def verify_password(self, user: Optional[User], password: str) -> bool: ...

    def ping(self) -> bool: ...

    def close(self) -> None: ...


# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex -- opaque to callers
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), unique=True),  # NULL when not supplied
    Column("hashed_password", Text, nullable=False),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("lock_until", Float),  # epoch seconds; NULL = never locked / lock cleared
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", Text),  # ISO 8601 timestamp of last successful auth
    Column("created_at", String(32), nullable=False),
)

_UNIQUE_FIELDS = ("username", "email")


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """SQLAlchemy-backed CredentialStore.

    Usage:
        store = UserStore("sqlite:///authgate.db", max_login_attempts=5, lockout_seconds=900)
        user = store.create("alice01", "Str0ng!Pass", "a@x.com")
        store.verify_password(store.find_by_username("alice01"), "Str0ng!Pass")
        store.close()
    """

    def __init__(
        self,
        db_url: str,
        *,
        max_login_attempts: int = 5,
        lockout_seconds: float = 15 * 60,
        bcrypt_rounds: int = DEFAULT_ROUNDS,
        clock: Optional[Clock] = None,
    ) -> None:
        self.max_login_attempts = max_login_attempts
        self.lockout_seconds = lockout_seconds
        self.bcrypt_rounds = bcrypt_rounds
        self.clock: Clock = clock or SystemClock()

        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

        # Timing equalization dummy hash [C1]. Computed once, at the configured
        # cost, so verifying against it takes as long as a real check.
        self._dummy_hash = hash_password("authgate_timing_dummy", self.bcrypt_rounds)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def find_by_username(self, username: str) -> Optional[User]:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_username_or_email(self, username: str, email: Optional[str]) -> list[User]:
        """Return every identity whose username OR email matches.

        Registration uses this to name each collided field in one pass; the
        result may hold two different users (one per field).
        """
        condition = _users.c.username == username
        if email:
            condition = or_(condition, _users.c.email == email)
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(condition).order_by(_users.c.created_at)).fetchall()
        return [_row_to_user(r) for r in rows]

    def find_by_id(self, user_id: str) -> Optional[User]:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(self, username: str, password: str, email: Optional[str] = None) -> User:
        """Hash the password and insert a new identity.

        Raises DuplicateIdentityError when username or email is already taken,
        including when a concurrent request inserted it after the caller's
        uniqueness check.
        """
        user_id = uuid.uuid4().hex
        hashed = hash_password(password, self.bcrypt_rounds)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        id=user_id,
                        username=username,
                        email=email,
                        hashed_password=hashed,
                        failed_login_attempts=0,
                        is_active=1,
                        created_at=self._now_iso(),
                    )
                )
        except IntegrityError as exc:
            fields = self._collided_fields(username, email, exc)
            if not fields:
                raise
            raise DuplicateIdentityError(fields) from exc
        return self.find_by_id(user_id)

    def increment_failed_attempts(self, user_id: str) -> Optional[User]:
        """Record one failed password check and return the updated identity.

        In one UPDATE:
          - a lock that has already expired is cleared and the counter
            restarts at 1;
          - otherwise the counter goes up by exactly 1;
          - reaching max_login_attempts sets lock_until = now + lockout_seconds,
            unless a lock is still active, in which case it is left untouched.
        Returns None if user_id does not exist.
        """
        now = self.clock.now()
        u = _users.c
        lock_expired = and_(u.lock_until.is_not(None), u.lock_until <= now)
        lock_active = and_(u.lock_until.is_not(None), u.lock_until > now)
        new_count = case((lock_expired, 1), else_=u.failed_login_attempts + 1)
        new_lock = case(
            (lock_active, u.lock_until),
            (new_count >= self.max_login_attempts, now + self.lockout_seconds),
            else_=null(),
        )
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(u.id == user_id).values(failed_login_attempts=new_count, lock_until=new_lock)
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(u.id == user_id)).fetchone()
        user = _row_to_user(row)
        if user.lock_until is not None and user.failed_login_attempts == self.max_login_attempts:
            logger.info("Account %s locked until %s", user.username, _iso(user.lock_until))
        return user

    def reset_failed_attempts(self, user_id: str) -> Optional[User]:
        """Clear the counter and any lock, and stamp last_login. Returns the updated identity."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=0, lock_until=None, last_login=self._now_iso())
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def set_active(self, user_id: str, is_active: bool) -> bool:
        """Activate or deactivate an identity. Returns True if a row was updated."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(is_active=1 if is_active else 0)
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def verify_password(self, user: Optional[User], password: str) -> bool:
        """Check password against the user's stored hash in constant time.

        Always runs bcrypt, even when user is None. Returning early for an
        unknown username would let an attacker enumerate accounts by
        measuring response time [C1].
        """
        if user is None or not user.hashed_password:
            verify_password(password, self._dummy_hash)
            return False
        return verify_password(password, user.hashed_password)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _now_iso(self) -> str:
        return _iso(self.clock.now())

    def _collided_fields(self, username: str, email: Optional[str], exc: IntegrityError) -> list[str]:
        """Work out which UNIQUE column(s) an IntegrityError refers to.

        Re-querying is driver-independent; the error text is only a fallback
        for the case where the colliding row is no longer visible.
        """
        fields: list[str] = []
        for existing in self.find_by_username_or_email(username, email):
            if existing.username == username and "username" not in fields:
                fields.append("username")
            if email and existing.email == email and "email" not in fields:
                fields.append("email")
        if fields:
            return fields
        message = str(exc.orig).lower()
        return [f for f in _UNIQUE_FIELDS if f in message]


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _iso(instant: float) -> str:
    return datetime.fromtimestamp(instant, timezone.utc).isoformat()


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        failed_login_attempts=row.failed_login_attempts or 0,
        lock_until=row.lock_until,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
    )
