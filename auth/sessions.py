"""
auth/sessions.py -- Session lifecycle: mint, validate, renew, invalidate.

Security design decisions:
  Token/id separation: the browser holds a random token (20 bytes from
       secrets, base32 lowercase, no padding). The database holds only
       sha256(token) as the session id. A database leak therefore yields no
       usable credential -- impersonation requires the raw token, which only
       ever travels in the auth-session cookie.

  Lifetime: 30 days. A session validated within 15 days of its expiry is
       extended to now + 30 days (rolling renewal). An active user renews
       roughly every two weeks; an idle user's session dies hard at 30 days.

  Lazy expiry: expired sessions are deleted when someone presents them, not
       by a background sweep. No scheduler, and an expired session is never
       returned as valid.

  Concurrency: no locks. Two requests renewing the same session both write
       now + 30d; the last write wins, which is harmless.

SessionManager is constructed once in the application lifespan with an
injected store and kept on app.state. The clock is injectable so tests can
move time without sleeping.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import base64
import hashlib
import logging
import secrets
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from auth.models import INVALID_SESSION, IssuedSession, Session, SessionValidationResult

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("utilhub.auth.sessions")

SESSION_LIFETIME = timedelta(days=30)
RENEWAL_WINDOW = timedelta(days=15)
TOKEN_BYTES = 20


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_session_token() -> str:
    """Return a new random session token (32 lowercase base32 chars, 160 bits)."""
    raw = secrets.token_bytes(TOKEN_BYTES)
    return base64.b32encode(raw).decode("ascii").lower().rstrip("=")


def session_id_from_token(token: str) -> str:
    """Derive the persisted session id (lowercase hex SHA-256) from a raw token."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionManager:
    """Owns session records in the store.

    Usage:
        manager = SessionManager(store)
        issued = manager.create_session(user.id)
        set_new_session_cookie(response, issued.token)
        ...
        session, user = manager.validate_session_token(cookie_value)
    """

    def __init__(self, store: UserStore, clock: Callable[[], datetime] = _utcnow) -> None:
        self._store = store
        self._clock = clock

    def create_session(self, user_id: str) -> IssuedSession:
        """Persist a new 30-day session for user_id and return it with its raw token."""
        token = generate_session_token()
        session = Session(
            id=session_id_from_token(token),
            user_id=user_id,
            expires_at=self._clock() + SESSION_LIFETIME,
        )
        self._store.create_session(session)
        return IssuedSession(session=session, token=token)

    def validate_session(self, session_id: str) -> SessionValidationResult:
        """Look up a session by id, enforcing expiry and rolling renewal.

        At most one read and one write per call.
        """
        found = self._store.find_session_by_id(session_id)
        if found is None:
            return INVALID_SESSION
        session, user = found

        now = self._clock()
        if now >= session.expires_at:
            self._store.delete_session(session.id)
            logger.info("Expired session removed for user %s", user.id)
            return INVALID_SESSION

        if now >= session.expires_at - RENEWAL_WINDOW:
            session.expires_at = now + SESSION_LIFETIME
            self._store.update_session_expiry(session.id, session.expires_at)

        return SessionValidationResult(session, user)

    def validate_session_token(self, token: str) -> SessionValidationResult:
        """Validate the raw token carried by the session cookie."""
        return self.validate_session(session_id_from_token(token))

    def invalidate_session(self, session_id: str) -> None:
        """Delete one session. Unknown ids are ignored."""
        self._store.delete_session(session_id)

    def invalidate_user_sessions(self, user_id: str) -> None:
        """Delete every session of a user (password change, account deletion)."""
        removed = self._store.delete_user_sessions(user_id)
        logger.info("Invalidated %d session(s) for user %s", removed, user_id)
