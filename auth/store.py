"""
auth/store.py -- SQLAlchemy Core persistence layer for users and sessions.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_session are the mappers.
Route, hook and session-manager code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  find_session_by_id() selects the user's public columns only -- the
  password hash never leaves the database on the per-request path.

  UNIQUE(github_id) / UNIQUE(google_id) are not declared in SQL because
  SQLite treats NULLs as distinct anyway; find_user_by_provider() is the
  single lookup path and the OAuth callback only inserts after it misses.

Timestamps are stored as ISO 8601 strings (UTC) and parsed back into aware
datetimes by the mappers.

Errors: SQLAlchemy exceptions propagate unchanged. The store does not retry.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, ForeignKey, MetaData, String, Table, Text, create_engine, event, func, select
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
    Column("id", String(32), primary_key=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("password_hash", Text),  # NULL for OAuth-only users
    Column("role", String(30), nullable=False, server_default="user"),
    Column("github_id", String(64)),
    Column("google_id", String(255)),
    Column("created_at", String(32), nullable=False),
)

_sessions = Table(
    "sessions",
    _metadata,
    Column("id", String(64), primary_key=True),  # sha256 hex of the raw token
    Column("user_id", String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("expires_at", String(32), nullable=False),
)

# Columns returned on the per-request validation path. No password_hash.
_PUBLIC_USER_COLUMNS = (
    _users.c.id.label("user_id"),
    _users.c.username,
    _users.c.role,
    _users.c.created_at,
)


# ---------------------------------------------------------------------------
# Connection setup
# ---------------------------------------------------------------------------


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on every new SQLite connection.

    SQLite PRAGMAs are per-connection and not inherited from the pool.
    foreign_keys=ON is what makes ON DELETE CASCADE remove a deleted user's
    sessions.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Session records.

    Usage:
        store = UserStore("sqlite:///:memory:")
        store.create_user(User(id=generate_user_id(), username="alice", password_hash=hash_password("secret")))
        user = store.find_user_by_username("alice")
        store.close()
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
    # Session queries
    # ------------------------------------------------------------------

    def find_session_by_id(self, session_id: str) -> tuple[Session, User] | None:
        """Return the session joined with its owner's public fields, or None.

        One round trip: the validation path must stay cheap because it runs on
        every request that carries a session cookie.
        """
        query = (
            select(_sessions.c.id, _sessions.c.expires_at, *_PUBLIC_USER_COLUMNS)
            .select_from(_sessions.join(_users, _sessions.c.user_id == _users.c.id))
            .where(_sessions.c.id == session_id)
        )
        with self.engine.connect() as conn:
            row = conn.execute(query).fetchone()
        if row is None:
            return None
        session = Session(id=row.id, user_id=row.user_id, expires_at=_from_iso(row.expires_at))
        user = User(
            id=row.user_id,
            username=row.username,
            role=row.role,
            created_at=_from_iso(row.created_at),
        )
        return session, user

    def create_session(self, session: Session) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _sessions.insert().values(
                    id=session.id,
                    user_id=session.user_id,
                    expires_at=_to_iso(session.expires_at),
                )
            )
            conn.commit()

    def update_session_expiry(self, session_id: str, expires_at: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(_sessions.update().where(_sessions.c.id == session_id).values(expires_at=_to_iso(expires_at)))
            conn.commit()

    def delete_session(self, session_id: str) -> None:
        """Delete one session. Deleting an unknown id is a no-op."""
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.id == session_id))
            conn.commit()

    def delete_user_sessions(self, user_id: str) -> int:
        """Delete every session owned by user_id. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            conn.commit()
        return result.rowcount

    def count_user_sessions(self, user_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_sessions).where(_sessions.c.user_id == user_id)
            ).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # User queries
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its id.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        Registration checks first, but two concurrent sign-ups for the same
        name can both pass that check -- callers treat IntegrityError as
        "username taken".
        """
        created_at = user.created_at or datetime.now(timezone.utc)
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    username=user.username,
                    password_hash=user.password_hash,
                    role=user.role,
                    github_id=user.github_id,
                    google_id=user.google_id,
                    created_at=_to_iso(created_at),
                )
            )
            conn.commit()
        return user.id

    def find_user_by_id(self, user_id: str) -> User | None:
        """Look up a user by primary key. Public fields plus provider links; no password hash."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row, include_password=False) if row is not None else None

    def find_user_by_username(self, username: str) -> User | None:
        """Look up a user by exact username, including the password hash. Login only."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row, include_password=True) if row is not None else None

    def find_user_by_provider(self, provider: str, subject: str) -> User | None:
        """Look up a user by OAuth provider subject ("github" or "google")."""
        column = _provider_column(provider)
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(column == subject)).fetchone()
        return _row_to_user(row, include_password=False) if row is not None else None

    def username_exists(self, username: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(select(_users.c.id).where(_users.c.username == username)).fetchone()
        return row is not None

    def get_password_hash(self, user_id: str) -> str | None:
        with self.engine.connect() as conn:
            return conn.execute(select(_users.c.password_hash).where(_users.c.id == user_id)).scalar()

    def update_password_hash(self, user_id: str, password_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(password_hash=password_hash))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        """Delete a user. Their sessions go with them (ON DELETE CASCADE).

        Sessions are also deleted explicitly so non-SQLite backends without
        cascading foreign keys behave the same.
        """
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.user_id == user_id))
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _provider_column(provider: str):
    if provider == "github":
        return _users.c.github_id
    if provider == "google":
        return _users.c.google_id
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


def _row_to_user(row, include_password: bool) -> User:
    return User(
        id=row.id,
        username=row.username,
        role=row.role,
        password_hash=row.password_hash if include_password else None,
        github_id=row.github_id,
        google_id=row.google_id,
        created_at=_from_iso(row.created_at),
    )
