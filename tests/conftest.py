"""
tests/conftest.py -- Shared test fixtures for utilhub.

This module provides:
  - FakeClock: a controllable clock injected into SessionManager so tests can
    jump days ahead without sleeping.
  - store / clock / session_manager: unit-level fixtures over an in-memory DB.
  - harness: a TestClient over the real ASGI app (api + web routers) with a
    patched lifespan wiring an isolated store, a SessionManager on the fake
    clock, and a MagicMock OAuth registry into app.state.

Design: Named shared-memory SQLite URIs (not plain :memory:) are used for the
TestClient fixture because route handlers and the identity hook run in a
thread pool. Plain :memory: DBs are per-connection and would present a blank
schema to each worker thread. Each harness gets a unique name so tests never
share rows.

Environment must be set before any core/auth import: DEBUG=true (insecure
cookies so the http://testserver client sends them back), rate limiting off,
and fake GitHub credentials so the github provider is enabled.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

# CRITICAL: before any core/auth import -- get_settings() is cached on first call.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("GITHUB_CLIENT_ID", "test-github-client")
os.environ.setdefault("GITHUB_CLIENT_SECRET", "test-github-secret")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import User
from auth.passwords import generate_user_id, hash_password
from auth.sessions import SessionManager
from auth.store import UserStore

# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock starting at a fixed UTC instant."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_user(store: UserStore, username: str = "alice", password: str | None = "correct-horse", role: str = "user") -> User:
    """Insert a user and return it as stored (public fields, no hash)."""
    user = User(
        id=generate_user_id(),
        username=username,
        password_hash=hash_password(password) if password else None,
        role=role,
    )
    store.create_user(user)
    return store.find_user_by_id(user.id)


@pytest.fixture
def make_user():
    """Return the user factory: make_user(store, username="alice", password=..., role="user")."""
    return _make_user


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_manager(store: UserStore, clock: FakeClock) -> SessionManager:
    return SessionManager(store, clock=clock)


# ---------------------------------------------------------------------------
# ASGI harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    store: UserStore
    clock: FakeClock
    session_manager: SessionManager
    oauth: MagicMock


def _patch_lifespan(store: UserStore, session_manager: SessionManager, oauth: MagicMock):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.session_manager = session_manager
        app.state.oauth = oauth
        yield

    return test_lifespan


@pytest.fixture
def harness() -> Generator[Harness, None, None]:
    """Yield a Harness around a fresh isolated database.

    follow_redirects=False so web route tests can assert on Location headers.
    The fake clock starts at the real current time: the cookies the app
    writes carry real expiry dates and the client must keep sending them.
    """
    db_url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    user_store = UserStore(db_url)
    clock = FakeClock(datetime.now(timezone.utc))
    manager = SessionManager(user_store, clock=clock)
    oauth = MagicMock()

    app.router.lifespan_context = _patch_lifespan(user_store, manager, oauth)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield Harness(client=client, store=user_store, clock=clock, session_manager=manager, oauth=oauth)

    user_store.close()
