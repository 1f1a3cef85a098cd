"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own the
domain shape; the store and the session manager do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import NamedTuple


@dataclass
class User:
    """Represents an identity in utilhub.

    password_hash is None for OAuth-only users (they have no local password).
    github_id / google_id hold the provider's stable subject once the user has
    logged in through that provider.

    Records returned by session validation carry public fields only; their
    password_hash is always None regardless of what is stored.
    """

    id: str
    username: str
    role: str = "user"  # "user", "admin"
    password_hash: str | None = None  # None = OAuth-only user
    github_id: str | None = None
    google_id: str | None = None
    created_at: datetime | None = None


@dataclass
class Session:
    """One authenticated browser session.

    id is the hex SHA-256 of the raw session token. The raw token is never
    persisted -- it lives only in the browser cookie. A database read therefore
    never yields a usable credential.
    """

    id: str
    user_id: str
    expires_at: datetime


@dataclass
class IssuedSession:
    """A freshly created session together with its raw token.

    Returned only by SessionManager.create_session(). The token must be
    written to the cookie and then dropped; it cannot be recovered later.
    """

    session: Session
    token: str


class SessionValidationResult(NamedTuple):
    """(session, user) for a valid session, (None, None) otherwise."""

    session: Session | None
    user: User | None


INVALID_SESSION = SessionValidationResult(None, None)
