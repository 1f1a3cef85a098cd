"""
auth/passwords.py -- Password hashing, credential checks, and field policy.

Security design decisions:
  Hashing: argon2-cffi, Argon2id. Memory-hard, so GPU/ASIC brute force of a
       leaked hash table is expensive. The parameters live in ONE constant,
       ARGON2_PARAMS, which builds the single PasswordHasher used by both
       hash_password() and verify_password_hash(). Hashing and verification
       cannot drift apart -- a drift would silently fail every login.

  Failure semantics: only argon2's VerifyMismatchError means "wrong
       password". A corrupt stored hash or an internal argon2 error is an
       infrastructure failure and propagates (the generic handler turns it
       into a 500). Treating those as "incorrect password" would hide data
       corruption behind a login error.

  Timing: authenticate_user() always runs exactly one verification, against
       _DUMMY_HASH when the username is unknown, so response time does not
       reveal which usernames exist.

  Field policy: validate_username()/validate_password() are policy gates, not
       security primitives. Deliberately permissive: length and charset only,
       no complexity rules.

Hashing is CPU-bound (~19 MiB, 2 passes). Routes that call into this module
are plain `def` handlers so FastAPI runs them in its thread pool and the
event loop keeps serving other requests.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import re
import secrets
import string
from typing import TYPE_CHECKING, Any

from argon2 import PasswordHasher, Type
from argon2.exceptions import VerifyMismatchError

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

# ---------------------------------------------------------------------------
# Argon2id parameters -- shared by hash and verify
# ---------------------------------------------------------------------------

ARGON2_PARAMS: dict[str, Any] = {
    "memory_cost": 19456,  # KiB (19 MiB)
    "time_cost": 2,
    "hash_len": 32,
    "parallelism": 1,
    "type": Type.ID,
}

_hasher = PasswordHasher(**ARGON2_PARAMS)


def hash_password(password: str) -> str:
    """Return an encoded Argon2id hash ($argon2id$v=19$m=19456,t=2,p=1$...)."""
    return _hasher.hash(password)


def verify_password_hash(password: str, password_hash: str) -> bool:
    """Return True if password matches password_hash, False on a mismatch.

    Any other argon2 error (InvalidHashError, VerificationError) propagates.
    """
    try:
        return _hasher.verify(password_hash, password)
    except VerifyMismatchError:
        return False


# Computed once at import so the first unknown-username login is not
# measurably slower than later ones.
_DUMMY_HASH: str = hash_password("utilhub_timing_dummy")


# ---------------------------------------------------------------------------
# Field policy
# ---------------------------------------------------------------------------

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 31
PASSWORD_MIN_LENGTH = 6
PASSWORD_MAX_LENGTH = 255

_USERNAME_RE = re.compile(r"^[a-z0-9_-]+$")


def validate_username(username: object) -> bool:
    """3-31 characters of lowercase letters, digits, underscore or hyphen."""
    return (
        isinstance(username, str)
        and USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH
        and _USERNAME_RE.fullmatch(username) is not None
    )


def validate_password(password: object) -> bool:
    """6-255 characters, no other requirement."""
    return isinstance(password, str) and PASSWORD_MIN_LENGTH <= len(password) <= PASSWORD_MAX_LENGTH


# ---------------------------------------------------------------------------
# Credential check (constant work)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> User | None:
    """Return the User when username/password are correct, None otherwise.

    Unknown username, OAuth-only account and wrong password all return None
    after the same amount of Argon2 work.
    """
    user = store.find_user_by_username(username)
    if user is None or not user.password_hash:
        verify_password_hash(password, _DUMMY_HASH)
        return None
    if not verify_password_hash(password, user.password_hash):
        return None
    return user


# ---------------------------------------------------------------------------
# Identifiers
# ---------------------------------------------------------------------------

_USER_ID_ALPHABET = string.ascii_letters + string.digits


def generate_user_id(length: int = 21) -> str:
    return "".join(secrets.choice(_USER_ID_ALPHABET) for _ in range(length))
