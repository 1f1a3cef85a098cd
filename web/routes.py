"""
web/routes.py -- Browser redirect routes: OAuth login and form logout.

These routes answer top-level browser navigations with redirects, not JSON.
The pages they redirect to (/, /login?error=...) are served by the front end.

Routes:
  GET  /login/{provider}           -- start OAuth: state cookie, redirect to provider
  GET  /login/{provider}/callback  -- finish OAuth: check state, sign in, redirect
  POST /logout                     -- form logout, redirect /

OAuth callback flow:
  1. Already signed in -> back to /.
  2. code, state and the stored state cookie must all be present
     (missing_params) and the states must match exactly (invalid_state).
  3. The state cookie is deleted on EVERY outcome from here on -- a state is
     single-use.
  4. Exchange the code (invalid_code) and read the profile (provider_api_error).
  5. Find the user by provider subject or create an OAuth-only account.
  6. Create a session, set the cookie, redirect to the remembered target
     (re-checked with is_safe_redirect) or /.

Error codes in /login?error= come from a fixed set; nothing from the query
string is reflected.
"""

import logging
import re
import secrets
from typing import Optional

from fastapi import APIRouter, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from auth.cookies import (
    OAUTH_REDIRECT_COOKIE_NAME,
    delete_oauth_redirect_cookie,
    delete_oauth_state_cookie,
    delete_session_cookie,
    oauth_state_cookie_name,
    set_new_session_cookie,
    set_oauth_redirect_cookie,
    set_oauth_state_cookie,
)
from auth.dependencies import get_current_session, try_get_current_user
from auth.models import User
from auth.oauth import (
    OAuthLoginError,
    ProviderIdentity,
    create_authorization_url,
    fetch_provider_identity,
    generate_state,
    get_enabled_providers,
    is_safe_redirect,
    states_match,
)
from auth.passwords import USERNAME_MAX_LENGTH, USERNAME_MIN_LENGTH, generate_user_id, validate_username
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("utilhub.web")

router = APIRouter()

_USERNAME_INVALID_CHARS = re.compile(r"[^a-z0-9_-]+")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _provider_enabled(provider: str) -> bool:
    return provider in {p["name"] for p in get_enabled_providers(get_settings())}


def _callback_url(request: Request, provider: str) -> str:
    """Provider redirect_uri. OAUTH_CALLBACK_BASE_URL wins over the request origin."""
    base = get_settings().oauth_callback_base_url
    if base:
        return f"{base.rstrip('/')}/login/{provider}/callback"
    return str(request.url_for("oauth_callback", provider=provider))


def _finish_oauth(url: str, provider: str) -> RedirectResponse:
    """303 to url with both handshake cookies consumed."""
    resp = RedirectResponse(url, status_code=303)
    delete_oauth_state_cookie(resp, provider)
    delete_oauth_redirect_cookie(resp)
    return resp


def _available_username(store: UserStore, suggested: str) -> str:
    """Turn a provider login into a free username that passes validate_username()."""
    base = _USERNAME_INVALID_CHARS.sub("-", suggested.lower()).strip("-")[:USERNAME_MAX_LENGTH]
    if len(base) < USERNAME_MIN_LENGTH:
        base = f"user-{base}".rstrip("-")
    candidate = base
    while not validate_username(candidate) or store.username_exists(candidate):
        candidate = f"{base[: USERNAME_MAX_LENGTH - 5]}-{secrets.token_hex(2)}"
    return candidate


def _find_or_create_user(store: UserStore, provider: str, identity: ProviderIdentity) -> User:
    user = store.find_user_by_provider(provider, identity.subject)
    if user is not None:
        return user

    user = User(
        id=generate_user_id(),
        username=_available_username(store, identity.username),
        github_id=identity.subject if provider == "github" else None,
        google_id=identity.subject if provider == "google" else None,
    )
    store.create_user(user)
    logger.info("Created %s OAuth user %s", provider, user.id)
    return store.find_user_by_id(user.id)


# ---------------------------------------------------------------------------
# OAuth
#
# /login/{provider}/callback is two segments deep, so it never collides with
# /login/{provider}.
# ---------------------------------------------------------------------------


@router.get("/login/{provider}")
async def oauth_start(request: Request, provider: str, redirect: Optional[str] = None) -> RedirectResponse:
    """Store a fresh state cookie, then send the browser to the provider."""
    if try_get_current_user(request) is not None:
        return RedirectResponse("/", status_code=302)
    if not _provider_enabled(provider):
        return RedirectResponse("/login?error=unknown_provider", status_code=302)

    client = request.app.state.oauth.create_client(provider)
    state = generate_state()
    url = await create_authorization_url(client, _callback_url(request, provider), state)

    resp = RedirectResponse(url, status_code=303)
    set_oauth_state_cookie(resp, provider, state)
    if is_safe_redirect(redirect):
        set_oauth_redirect_cookie(resp, redirect)
    else:
        delete_oauth_redirect_cookie(resp)
    return resp


@router.get("/login/{provider}/callback", name="oauth_callback")
async def oauth_callback(request: Request, provider: str) -> RedirectResponse:
    """Validate state, exchange the code, sign the user in."""
    if try_get_current_user(request) is not None:
        return _finish_oauth("/", provider)
    if not _provider_enabled(provider):
        return RedirectResponse("/login?error=unknown_provider", status_code=303)

    code = request.query_params.get("code")
    state = request.query_params.get("state")
    stored_state = request.cookies.get(oauth_state_cookie_name(provider))

    if not code or not state or not stored_state:
        logger.warning("OAuth callback for %r missing code, state or state cookie", provider)
        return _finish_oauth("/login?error=missing_params", provider)
    if not states_match(state, stored_state):
        logger.warning("OAuth state mismatch for %r", provider)
        return _finish_oauth("/login?error=invalid_state", provider)

    client = request.app.state.oauth.create_client(provider)
    try:
        identity = await fetch_provider_identity(client, provider, code, _callback_url(request, provider))
    except OAuthLoginError as exc:
        logger.warning("OAuth login failed (%s): %s", exc.code, exc)
        return _finish_oauth(f"/login?error={exc.code}", provider)

    user_store: UserStore = request.app.state.user_store
    session_manager: SessionManager = request.app.state.session_manager
    user = await run_in_threadpool(_find_or_create_user, user_store, provider, identity)
    issued = await run_in_threadpool(session_manager.create_session, user.id)
    logger.info("User logged in via %s: %s", provider, user.id)

    target = request.cookies.get(OAUTH_REDIRECT_COOKIE_NAME)
    resp = _finish_oauth(target if is_safe_redirect(target) else "/", provider)
    set_new_session_cookie(resp, issued.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    """Invalidate the current session, clear the cookie, go home."""
    session = get_current_session(request)
    if session is not None:
        session_manager: SessionManager = request.app.state.session_manager
        session_manager.invalidate_session(session.id)
        logger.info("User logged out: %s", session.user_id)
    resp = RedirectResponse("/", status_code=302)
    delete_session_cookie(resp)
    return resp
