"""
auth/store.py -- SQLAlchemy Core persistence layer for user accounts.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user is the mapper. Route and service
code never touches SQL directly.

Security:
  All queries use bound parameters. Column names in update_user() come from
  a fixed whitelist, never from request input.

Timestamps are ISO 8601 UTC strings. They sort lexicographically in time
order, which is what the "newest first" listings rely on.

DB URL: Settings.database_url (SQLite file by default; any SQLAlchemy URL
works, e.g. postgresql+psycopg://...).

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, Integer, MetaData, String, Table, create_engine, event, func, or_, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.pool import SingletonThreadPool

from auth.models import ROLE_ADMIN, ROLE_USER, User
from core.errors import InvalidInput

logger = logging.getLogger("otpgate.auth")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("role", String(20), nullable=False, server_default=ROLE_USER),
    Column("is_verified", Boolean, nullable=False, server_default="0"),
    Column("otp", String(12)),  # NULL once verified
    Column("otp_expiry", String(40)),  # NULL together with otp
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("phone", String(30)),
    Column("created_at", String(40), nullable=False),
    Column("updated_at", String(40), nullable=False),
)


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
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


@contextmanager
def db_errors(message: str) -> Iterator[None]:
    """Re-raise persistence failures as InvalidInput(message).

    The cause is logged with its traceback; the client only sees the generic
    message, never driver or SQL detail.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.exception("Database error: %s", message)
        raise InvalidInput(message) from exc


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        store.upsert_otp("a@b.com", "123456", expiry_iso)
        user = store.get_by_email("a@b.com")
        store.close()
    """

    # Columns update_user() accepts. Anything else is a programming error.
    _UPDATABLE: frozenset[str] = frozenset({"email", "role", "first_name", "last_name", "phone"})

    def __init__(self, db_url: str) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            if ":memory:" in db_url or "mode=memory" in db_url:
                # One connection per thread keeps a memory DB alive for the
                # engine's lifetime; shared-cache URIs need that explicitly.
                engine_kwargs["poolclass"] = SingletonThreadPool
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # OTP lifecycle
    # ------------------------------------------------------------------

    def upsert_otp(self, email: str, otp: str, otp_expiry: str) -> None:
        """Store a fresh code for email, creating the account if needed.

        Insert first; on the UNIQUE(email) conflict overwrite otp, otp_expiry
        and updated_at of the existing row. Role, verification state and
        profile fields of an existing account are left alone.
        """
        now = _now_iso()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _users.insert().values(
                        email=email,
                        otp=otp,
                        otp_expiry=otp_expiry,
                        created_at=now,
                        updated_at=now,
                    )
                )
            return
        except IntegrityError:
            pass
        with self.engine.begin() as conn:
            conn.execute(
                _users.update().where(_users.c.email == email).values(otp=otp, otp_expiry=otp_expiry, updated_at=now)
            )

    def mark_verified(self, email: str, otp: str) -> bool:
        """Consume otp: clear it and flag the account verified.

        The update only matches while otp is still the stored code, so of two
        requests presenting the same code exactly one gets True. Returns
        False if email is unknown or the code was already consumed or
        replaced.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.email == email, _users.c.otp == otp)
                .values(otp=None, otp_expiry=None, is_verified=True, updated_at=_now_iso())
            )
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def email_in_use(self, email: str, exclude_id: int | None = None) -> bool:
        """Return True if another account already owns email."""
        query = select(_users.c.id).where(_users.c.email == email)
        if exclude_id is not None:
            query = query.where(_users.c.id != exclude_id)
        with self.engine.connect() as conn:
            return conn.execute(query).first() is not None

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = _now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.insert().values(
                    email=user.email,
                    role=user.role,
                    is_verified=user.is_verified,
                    first_name=user.first_name,
                    last_name=user.last_name,
                    phone=user.phone,
                    created_at=now,
                    updated_at=now,
                )
            )
        return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> User | None:
        """Update whitelisted columns and stamp updated_at.

        Returns the refreshed User, or None if user_id was not found.
        Raises IntegrityError when an email change collides with another row.
        """
        unknown = set(fields) - self._UPDATABLE
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        with self.engine.begin() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(**fields, updated_at=_now_iso())
            )
            if result.rowcount == 0:
                return None
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row)

    def set_role(self, user_id: int, role: str) -> User | None:
        """Change a user's role, refusing to demote the last admin.

        Returns the refreshed User, or None if user_id was not found. Raises
        InvalidInput("Cannot remove the last admin") when the demotion would
        leave no admin. The admin count and the write are one UPDATE
        statement, so concurrent demotions cannot both pass the check.
        """
        stmt = _users.update().where(_users.c.id == user_id).values(role=role, updated_at=_now_iso())
        if role != ROLE_ADMIN:
            other_admins = (
                select(func.count())
                .select_from(_users)
                .where(_users.c.role == ROLE_ADMIN, _users.c.id != user_id)
                .scalar_subquery()
            )
            stmt = stmt.where(or_(_users.c.role != ROLE_ADMIN, other_admins > 0))
        with self.engine.begin() as conn:
            result = conn.execute(stmt)
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        if row is None:
            return None
        if result.rowcount == 0:
            raise InvalidInput("Cannot remove the last admin")
        return _row_to_user(row)

    def delete_user(self, user_id: int) -> User | None:
        """Permanently delete a user. Returns the deleted record, or None if not found."""
        with self.engine.begin() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
            if row is None:
                return None
            conn.execute(_users.delete().where(_users.c.id == user_id))
        return _row_to_user(row)

    # ------------------------------------------------------------------
    # Admin queries
    # ------------------------------------------------------------------

    def count_users(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users)).scalar() or 0

    def count_verified(self) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(select(func.count()).select_from(_users).where(_users.c.is_verified.is_(True))).scalar()
                or 0
            )

    def count_admins(self) -> int:
        """Used to refuse demoting the last admin."""
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_users).where(_users.c.role == ROLE_ADMIN)).scalar() or 0

    def list_users(self, limit: int, offset: int = 0) -> list[User]:
        """Return a page of users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _users.select()
                .order_by(_users.c.created_at.desc(), _users.c.id.desc())
                .limit(limit)
                .offset(offset)
            ).fetchall()
        return [_row_to_user(r) for r in rows]

    def recent_users(self, limit: int = 10) -> list[User]:
        return self.list_users(limit=limit)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.engine.connect() as conn:
                conn.execute(select(1))
        except SQLAlchemyError:
            logger.warning("Database ping failed", exc_info=True)
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        role=row.role,
        is_verified=bool(row.is_verified),
        otp=row.otp,
        otp_expiry=row.otp_expiry,
        first_name=row.first_name,
        last_name=row.last_name,
        phone=row.phone,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
