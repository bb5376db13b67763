"""
auth/store.py -- SQLAlchemy Core persistence layer for users, sessions and
password reset tokens.

Pattern: Repository + Data Mapper.
UserStore, SessionStore and PasswordResetStore are the repositories;
_row_to_user / _row_to_session are the mappers. Route and service code never touches SQL.

All repositories share one Engine: UserStore owns it (creates the engine
and the schema), SessionStore and PasswordResetStore bind to it.
sessions.user_id and password_resets.user_id are real foreign keys with
ON DELETE CASCADE, and delete_user() also removes the rows
explicitly inside the same transaction so the invariant holds on databases
where foreign-key enforcement is off.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Session ids come from secrets.token_urlsafe(32) -- never a sequence.

Concurrency:
  Each method runs one short transaction. Multi-statement writes use
  engine.begin() so they commit or roll back together. delete_expired() is
  a single DELETE-by-predicate and is safe to run concurrently with live
  traffic or with itself.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import secrets
import time
from collections.abc import Callable
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.errors import SessionNotFound
from auth.models import Role, Session, User

_DEFAULT_DB_URL = "sqlite:///passport.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always normalized
    Column("password_hash", Text, nullable=False),
    Column("role", String(16), nullable=False, server_default=Role.user.value),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("ip_address", String(64), nullable=False, server_default=""),
    Column("user_agent", Text, nullable=False, server_default=""),
    Column("created_at", Float, nullable=False, index=True),  # epoch seconds
    Column("updated_at", Float, nullable=False),
)

_password_resets = Table(
    "password_resets",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("expires_at", Float, nullable=False, index=True),  # epoch seconds
    Column("created_at", Float, nullable=False),
)


# ---------------------------------------------------------------------------
# SQLite pragmas
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign-key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities. Owns the shared Engine.

    Usage:
        store = UserStore("sqlite:///passport.db")
        uid = store.create_user(User(email="a@example.com", password_hash=hash_password("secret123")))
        user = store.get_by_email("a@example.com")
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_sqlite_pragmas)
        _metadata.create_all(self.engine)

    def ping(self) -> bool:
        """Round-trip a trivial query. Used by the health endpoint."""
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        The service layer turns that into ValidationError; the UNIQUE
        constraint is the final arbiter when two sign-ups race.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    password_hash=user.password_hash,
                    role=user.role.value,
                    created_at=_now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by normalized email. Callers normalize first."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Accepted fields: role (Role), password_hash.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - {"role", "password_hash"}
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        if "role" in fields:
            fields["role"] = Role(fields["role"]).value
        with self.engine.begin() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
        return result.rowcount > 0

    def count_admins(self) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.role == Role.admin.value)
            ).scalar()
        return result or 0

    def delete_user(self, user_id: int) -> bool:
        """Delete a user and every session and reset token that references it, atomically.

        Returns True if the user existed. Self-deletion and other policy checks
        are the caller's responsibility (auth.admin).
        """
        with self.engine.begin() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.execute(_password_resets.delete().where(_password_resets.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


class SessionStore:
    """Repository for revocable Session rows.

    A row older than ttl_seconds (by created_at) is logically absent: find()
    raises SessionNotFound for it exactly as for a missing row, even before
    delete_expired() physically removes it.

    clock is injectable so expiry can be tested without sleeping.
    """

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int = 7 * 24 * 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def _cutoff(self) -> float:
        return self._clock() - self.ttl_seconds

    def create(self, user_id: int, ip_address: str = "", user_agent: str = "") -> Session:
        now = self._clock()
        session = Session(
            id=secrets.token_urlsafe(32),
            user_id=user_id,
            ip_address=ip_address[:64],
            user_agent=user_agent,
            created_at=now,
            updated_at=now,
        )
        with self.engine.begin() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    ip_address=session.ip_address,
                    user_agent=session.user_agent,
                    created_at=session.created_at,
                    updated_at=session.updated_at,
                )
            )
        return session

    def find(self, session_id: str) -> Session:
        """Return the live session. Raises SessionNotFound if absent or expired."""
        if not session_id:
            raise SessionNotFound()
        with self.engine.connect() as conn:
            row = conn.execute(
                _sessions.select().where((_sessions.c.id == session_id) & (_sessions.c.created_at >= self._cutoff()))
            ).fetchone()
        if row is None:
            raise SessionNotFound()
        return _row_to_session(row)

    def touch(self, session_id: str) -> bool:
        """Stamp updated_at. Returns False if the row no longer exists."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _sessions.update().where(_sessions.c.id == session_id).values(updated_at=self._clock())
            )
        return result.rowcount > 0

    def delete(self, session_id: str) -> bool:
        """Delete one session. Deleting an absent session is a no-op, not an error."""
        if not session_id:
            return False
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
        return result.rowcount > 0

    def delete_all_for_user(self, user_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
        return result.rowcount

    def delete_expired(self, older_than: float | None = None) -> int:
        """Delete sessions created before older_than (epoch seconds).

        Defaults to now - ttl_seconds. Returns the number of rows removed;
        zero is a normal outcome.
        """
        cutoff = self._cutoff() if older_than is None else older_than
        with self.engine.begin() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.created_at < cutoff))
        return result.rowcount

    def list_for_user(self, user_id: int) -> list[Session]:
        """Live sessions for a user, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _sessions.select()
                .where((_sessions.c.user_id == user_id) & (_sessions.c.created_at >= self._cutoff()))
                .order_by(_sessions.c.created_at.desc())
            ).fetchall()
        return [_row_to_session(r) for r in rows]

    def count_live_for_user(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_sessions)
                .where((_sessions.c.user_id == user_id) & (_sessions.c.created_at >= self._cutoff()))
            ).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Password resets
# ---------------------------------------------------------------------------


class PasswordResetStore:
    """Repository for single-use password reset tokens.

    Only the token digest is stored (see TokenService.digest). A user holds at
    most one outstanding token: create() replaces any earlier one. consume()
    deletes the row it matches, so a token works exactly once.
    """

    def __init__(
        self,
        engine: Engine,
        ttl_seconds: int = 60 * 60,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.engine = engine
        self.ttl_seconds = ttl_seconds
        self._clock = clock

    def create(self, user_id: int, token_hash: str) -> float:
        """Store a token digest for the user. Returns its expiry (epoch seconds)."""
        now = self._clock()
        expires_at = now + self.ttl_seconds
        with self.engine.begin() as conn:
            conn.execute(_password_resets.delete().where(_password_resets.c.user_id == user_id))
            conn.execute(
                _password_resets.insert().values(
                    user_id=user_id,
                    token_hash=token_hash,
                    expires_at=expires_at,
                    created_at=now,
                )
            )
        return expires_at

    def consume(self, token_hash: str) -> int | None:
        """Delete a live token and return its user id. None if unknown, used or expired.

        The DELETE's rowcount decides the winner when two requests race for
        the same token.
        """
        with self.engine.begin() as conn:
            row = conn.execute(
                _password_resets.select().where(
                    (_password_resets.c.token_hash == token_hash) & (_password_resets.c.expires_at > self._clock())
                )
            ).fetchone()
            if row is None:
                return None
            result = conn.execute(_password_resets.delete().where(_password_resets.c.id == row.id))
        return row.user_id if result.rowcount == 1 else None

    def delete_all_for_user(self, user_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_password_resets.delete().where(_password_resets.c.user_id == user_id))
        return result.rowcount

    def delete_expired(self) -> int:
        """Delete tokens past expires_at. Idempotent; zero is a normal outcome."""
        with self.engine.begin() as conn:
            result = conn.execute(_password_resets.delete().where(_password_resets.c.expires_at <= self._clock()))
        return result.rowcount


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=Role(row.role),
        created_at=row.created_at,
    )


def _row_to_session(row) -> Session:
    return Session(
        id=row.id,
        user_id=row.user_id,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
