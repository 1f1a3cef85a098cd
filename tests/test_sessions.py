"""Unit tests for auth/sessions.py -- session minting, validation, renewal, expiry.

Covers:
- token format (base32 lowercase, no padding, 160 bits) and id derivation
- create_session persists sha256(token) with a 30-day expiry; raw token never stored
- validate_session: unknown id, expired (deleted), renewal window, untouched
- at most one read and one write per validation
- invalidate_session / invalidate_user_sessions, idempotence
- end-to-end scenario over simulated days

All tests drive time through the FakeClock from conftest.py.
"""

import hashlib
import re
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from auth.models import Session
from auth.sessions import (
    RENEWAL_WINDOW,
    SESSION_LIFETIME,
    SessionManager,
    generate_session_token,
    session_id_from_token,
)

# ---------------------------------------------------------------------------
# Token primitives
# ---------------------------------------------------------------------------


class TestTokens:
    def test_token_is_lowercase_base32_without_padding(self) -> None:
        token = generate_session_token()
        assert re.fullmatch(r"[a-z2-7]{32}", token), token

    def test_tokens_are_unique(self) -> None:
        tokens = {generate_session_token() for _ in range(200)}
        assert len(tokens) == 200

    def test_session_id_is_hex_sha256_of_token(self) -> None:
        token = "abcdefghijklmnopqrstuvwxyz234567"
        assert session_id_from_token(token) == hashlib.sha256(token.encode()).hexdigest()
        assert re.fullmatch(r"[0-9a-f]{64}", session_id_from_token(token))


# ---------------------------------------------------------------------------
# create_session
# ---------------------------------------------------------------------------


class TestCreateSession:
    def test_persists_hash_of_token(self, make_user, store, session_manager) -> None:
        user = make_user(store)
        issued = session_manager.create_session(user.id)

        assert issued.session.id == session_id_from_token(issued.token)
        found = store.find_session_by_id(issued.session.id)
        assert found is not None
        session, owner = found
        assert session.user_id == user.id
        assert owner.username == "alice"

    def test_raw_token_is_not_a_lookup_key(self, make_user, store, session_manager) -> None:
        user = make_user(store)
        issued = session_manager.create_session(user.id)
        assert store.find_session_by_id(issued.token) is None

    def test_expires_thirty_days_from_now(self, make_user, store, session_manager, clock) -> None:
        user = make_user(store)
        issued = session_manager.create_session(user.id)
        assert issued.session.expires_at == clock.now + timedelta(days=30)
        session, _ = store.find_session_by_id(issued.session.id)
        assert session.expires_at == clock.now + SESSION_LIFETIME

    def test_many_sessions_per_user(self, make_user, store, session_manager) -> None:
        user = make_user(store)
        first = session_manager.create_session(user.id)
        second = session_manager.create_session(user.id)
        assert first.session.id != second.session.id
        assert store.count_user_sessions(user.id) == 2


# ---------------------------------------------------------------------------
# validate_session
# ---------------------------------------------------------------------------


class TestValidateSession:
    def test_unknown_id_returns_none_pair(self, session_manager) -> None:
        session, user = session_manager.validate_session("0" * 64)
        assert session is None
        assert user is None

    def test_fresh_session_returned_unmodified(self, make_user, store, session_manager, clock) -> None:
        owner = make_user(store)
        issued = session_manager.create_session(owner.id)

        session, user = session_manager.validate_session(issued.session.id)

        assert session is not None
        assert session.expires_at == issued.session.expires_at
        assert user.id == owner.id
        assert user.username == "alice"
        assert user.role == "user"
        assert user.created_at is not None

    def test_password_hash_never_returned(self, make_user, store, session_manager) -> None:
        owner = make_user(store)
        issued = session_manager.create_session(owner.id)
        _, user = session_manager.validate_session(issued.session.id)
        assert user.password_hash is None

    @pytest.mark.parametrize("offset", [timedelta(0), timedelta(seconds=1), timedelta(days=3)])
    def test_expired_session_is_deleted(self, make_user, store, session_manager, clock, offset) -> None:
        """expires_at <= now is invalid -- including exactly at expires_at."""
        owner = make_user(store)
        issued = session_manager.create_session(owner.id)
        clock.now = issued.session.expires_at + offset

        assert session_manager.validate_session(issued.session.id) == (None, None)
        assert store.find_session_by_id(issued.session.id) is None

    @pytest.mark.parametrize("elapsed", [timedelta(days=15), timedelta(days=20), timedelta(days=29, hours=23)])
    def test_renews_inside_window(self, make_user, store, session_manager, clock, elapsed) -> None:
        owner = make_user(store)
        issued = session_manager.create_session(owner.id)
        clock.advance(seconds=elapsed.total_seconds())

        session, user = session_manager.validate_session(issued.session.id)

        assert session.expires_at == clock.now + timedelta(days=30)
        assert user.id == owner.id
        stored, _ = store.find_session_by_id(issued.session.id)
        assert stored.expires_at == clock.now + timedelta(days=30)

    def test_no_write_outside_window(self, make_user, store, clock) -> None:
        owner = make_user(store)
        spy = MagicMock(wraps=store)
        manager = SessionManager(spy, clock=clock)
        issued = manager.create_session(owner.id)
        clock.advance(days=14, hours=23)

        session, _ = manager.validate_session(issued.session.id)

        assert session.expires_at == issued.session.expires_at
        spy.update_session_expiry.assert_not_called()
        spy.delete_session.assert_not_called()

    def test_at_most_one_read_and_one_write(self, make_user, store, clock) -> None:
        owner = make_user(store)
        spy = MagicMock(wraps=store)
        manager = SessionManager(spy, clock=clock)
        issued = manager.create_session(owner.id)
        clock.advance(days=20)

        manager.validate_session(issued.session.id)

        assert spy.find_session_by_id.call_count == 1
        assert spy.update_session_expiry.call_count == 1
        assert spy.delete_session.call_count == 0

    def test_validate_session_token_hashes_cookie_value(self, make_user, store, session_manager) -> None:
        owner = make_user(store)
        issued = session_manager.create_session(owner.id)

        session, user = session_manager.validate_session_token(issued.token)
        assert session.id == issued.session.id
        assert user.id == owner.id

        # The hash itself is not a valid cookie value.
        assert session_manager.validate_session_token(issued.session.id) == (None, None)

    def test_renewal_window_constant(self) -> None:
        assert RENEWAL_WINDOW == timedelta(days=15)
        assert SESSION_LIFETIME == timedelta(days=30)


# ---------------------------------------------------------------------------
# Invalidation
# ---------------------------------------------------------------------------


class TestInvalidate:
    def test_invalidate_removes_record(self, make_user, store, session_manager) -> None:
        owner = make_user(store)
        issued = session_manager.create_session(owner.id)
        session_manager.invalidate_session(issued.session.id)
        assert session_manager.validate_session(issued.session.id) == (None, None)

    def test_invalidate_unknown_id_is_noop(self, session_manager) -> None:
        session_manager.invalidate_session("does-not-exist")
        session_manager.invalidate_session("does-not-exist")

    def test_invalidate_user_sessions_leaves_other_users(self, make_user, store, session_manager) -> None:
        alice = make_user(store, "alice")
        bob = make_user(store, "bob")
        a1 = session_manager.create_session(alice.id)
        a2 = session_manager.create_session(alice.id)
        b1 = session_manager.create_session(bob.id)

        session_manager.invalidate_user_sessions(alice.id)

        assert store.find_session_by_id(a1.session.id) is None
        assert store.find_session_by_id(a2.session.id) is None
        assert store.find_session_by_id(b1.session.id) is not None


# ---------------------------------------------------------------------------
# Scenario
# ---------------------------------------------------------------------------


class TestLifecycleScenario:
    def test_day_0_day_20_and_day_31(self, make_user, store, clock) -> None:
        """Immediate validation does not write; day 20 renews; an unrenewed copy dies at day 31."""
        u1 = make_user(store, "u1-user")
        spy = MagicMock(wraps=store)
        manager = SessionManager(spy, clock=clock)
        start = clock.now

        renewed = manager.create_session(u1.id)
        idle = manager.create_session(u1.id)

        session, user = manager.validate_session(renewed.session.id)
        assert user.id == u1.id
        spy.update_session_expiry.assert_not_called()

        clock.now = start + timedelta(days=20)
        session, user = manager.validate_session(renewed.session.id)
        assert session.expires_at == clock.now + timedelta(days=30)
        assert spy.update_session_expiry.call_count == 1

        clock.now = start + timedelta(days=31)
        assert manager.validate_session(idle.session.id) == (None, None)
        assert store.find_session_by_id(idle.session.id) is None

        # The renewed session is still alive at day 31.
        session, _ = manager.validate_session(renewed.session.id)
        assert session is not None


def test_session_dataclass_roundtrip_through_store(make_user, store, clock) -> None:
    owner = make_user(store)
    record = Session(id="f" * 64, user_id=owner.id, expires_at=clock.now + timedelta(hours=1))
    store.create_session(record)
    found, _ = store.find_session_by_id(record.id)
    assert found == record
