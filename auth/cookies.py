"""
auth/cookies.py -- Cookie helpers for the session and the OAuth handshake.

All auth cookies share one attribute set:
  httponly=True:  JS cannot read the cookie (XSS mitigation).
  samesite="lax": sent on top-level navigations (the OAuth provider redirect
                  back to us is one), not on cross-site POSTs.
  secure:         Settings.secure_cookies -- true in production.
  path="/":       one cookie for the whole site; deletion must use the same path.

Cookies written here:
  auth-session           raw session token (never the hash). max_age=30d on
                         creation, expires=<session.expires_at> when the
                         request hook re-issues it after validation/renewal.
  <provider>_oauth_state OAuth CSRF state, max_age=600s.
  oauth_redirect         post-login redirect target, max_age=600s, only
                         ever set to a same-origin relative path.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from datetime import datetime

from starlette.responses import Response

from auth.sessions import SESSION_LIFETIME
from core.config import get_settings

SESSION_COOKIE_NAME = "auth-session"
OAUTH_REDIRECT_COOKIE_NAME = "oauth_redirect"
OAUTH_COOKIE_MAX_AGE = 60 * 10  # seconds


def _cookie_attrs() -> dict:
    return {
        "path": "/",
        "httponly": True,
        "samesite": "lax",
        "secure": bool(get_settings().secure_cookies),
    }


def oauth_state_cookie_name(provider: str) -> str:
    return f"{provider}_oauth_state"


# ---------------------------------------------------------------------------
# Session cookie
# ---------------------------------------------------------------------------


def set_new_session_cookie(response: Response, token: str) -> None:
    """Write a freshly minted session token (login, registration, OAuth callback)."""
    response.set_cookie(
        SESSION_COOKIE_NAME,
        value=token,
        max_age=int(SESSION_LIFETIME.total_seconds()),
        **_cookie_attrs(),
    )


def set_session_cookie(response: Response, token: str, expires_at: datetime) -> None:
    """Re-issue the session cookie with the (possibly renewed) absolute expiry."""
    response.set_cookie(SESSION_COOKIE_NAME, value=token, expires=expires_at, **_cookie_attrs())


def delete_session_cookie(response: Response) -> None:
    response.delete_cookie(SESSION_COOKIE_NAME, **_cookie_attrs())


# ---------------------------------------------------------------------------
# OAuth handshake cookies
# ---------------------------------------------------------------------------


def set_oauth_state_cookie(response: Response, provider: str, state: str) -> None:
    response.set_cookie(
        oauth_state_cookie_name(provider),
        value=state,
        max_age=OAUTH_COOKIE_MAX_AGE,
        **_cookie_attrs(),
    )


def delete_oauth_state_cookie(response: Response, provider: str) -> None:
    response.delete_cookie(oauth_state_cookie_name(provider), **_cookie_attrs())


def set_oauth_redirect_cookie(response: Response, target: str) -> None:
    """Remember where to send the user after the provider round trip.

    Callers must check auth.oauth.is_safe_redirect(target) first; the value is
    re-checked on the way out by the callback as well.
    """
    response.set_cookie(
        OAUTH_REDIRECT_COOKIE_NAME,
        value=target,
        max_age=OAUTH_COOKIE_MAX_AGE,
        **_cookie_attrs(),
    )


def delete_oauth_redirect_cookie(response: Response) -> None:
    response.delete_cookie(OAUTH_REDIRECT_COOKIE_NAME, **_cookie_attrs())


def response_sets_cookie(response: Response, name: str) -> bool:
    """Return True if the response already carries a Set-Cookie for name."""
    prefix = f"{name}=".encode("latin-1")
    return any(key == b"set-cookie" and value.startswith(prefix) for key, value in response.raw_headers)
