"""
auth/oauth.py -- OAuth state handling and the Authlib provider registry.

CSRF protection for the redirect-based login handshake is explicit:
  1. GET /login/{provider} generates a state with generate_state(), stores it
     in the <provider>_oauth_state cookie (10 minutes), and only then
     redirects to the provider with that state in the URL.
  2. The callback compares the returned state with the cookie using
     states_match() (constant time, both values required) before any code
     exchange. The state cookie is deleted on every outcome -- a state is
     single-use.

Open-redirect prevention: is_safe_redirect() accepts only same-origin
relative paths. It is checked before the oauth_redirect cookie is set and
again before the callback redirects to it.

Provider registry: build_oauth_registry() registers only the providers with
both client ID and secret configured. It is called from the application
lifespan, so importing this module has no side effects.

Supported providers:
  github -- Authorization code flow; static endpoints; profile from GET /user.
  google -- Authorization code flow; OIDC discovery; profile from userinfo.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass

from authlib.common.errors import AuthlibBaseError
from authlib.integrations.starlette_client import OAuth
from httpx import HTTPError

from core.config import Settings

logger = logging.getLogger("utilhub.auth.oauth")

_PROVIDER_LABELS = {"github": "GitHub", "google": "Google"}


class OAuthLoginError(Exception):
    """A provider round trip failed. code is the /login?error= value."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code


@dataclass
class ProviderIdentity:
    """Stable subject and suggested username reported by a provider."""

    subject: str
    username: str


# ---------------------------------------------------------------------------
# State and redirect validation
# ---------------------------------------------------------------------------


def generate_state() -> str:
    """Return an unguessable single-use OAuth state value (256 bits)."""
    return secrets.token_urlsafe(32)


def states_match(received: str | None, stored: str | None) -> bool:
    """Exact, constant-time comparison. Missing on either side never matches."""
    if not received or not stored:
        return False
    return hmac.compare_digest(received.encode("utf-8"), stored.encode("utf-8"))


def is_safe_redirect(target: str | None) -> bool:
    """True only for same-origin relative paths like "/profile".

    Rejects absolute URLs ("https://evil.com/x"), protocol-relative URLs
    ("//evil.com") and anything embedding a scheme separator.
    """
    return bool(target) and target.startswith("/") and not target.startswith("//") and "://" not in target


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def build_oauth_registry(settings: Settings) -> OAuth:
    """Create an Authlib OAuth registry with every configured provider."""
    oauth = OAuth()

    # GitHub -- static endpoints (no OIDC discovery document)
    if settings.github_client_id and settings.github_client_secret:
        oauth.register(
            name="github",
            client_id=settings.github_client_id,
            client_secret=settings.github_client_secret,
            access_token_url="https://github.com/login/oauth/access_token",  # noqa: S106 -- URL, not a password
            authorize_url="https://github.com/login/oauth/authorize",
            api_base_url="https://api.github.com/",
            client_kwargs={"scope": "read:user"},
        )
        logger.info("GitHub OAuth provider registered")

    # Google -- OIDC discovery
    if settings.google_client_id and settings.google_client_secret:
        oauth.register(
            name="google",
            client_id=settings.google_client_id,
            client_secret=settings.google_client_secret,
            server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
            client_kwargs={"scope": "openid email profile"},
        )
        logger.info("Google OAuth provider registered")

    return oauth


def get_enabled_providers(settings: Settings) -> list[dict]:
    """Return [{"name": ..., "label": ...}] for every configured provider."""
    providers: list[dict] = []
    if settings.github_client_id and settings.github_client_secret:
        providers.append({"name": "github", "label": _PROVIDER_LABELS["github"]})
    if settings.google_client_id and settings.google_client_secret:
        providers.append({"name": "google", "label": _PROVIDER_LABELS["google"]})
    return providers


# ---------------------------------------------------------------------------
# Provider round trip
# ---------------------------------------------------------------------------


async def create_authorization_url(client, redirect_uri: str, state: str) -> str:
    """Return the provider authorization URL carrying our state."""
    rv = await client.create_authorization_url(redirect_uri, state=state)
    return rv["url"]


async def fetch_provider_identity(client, provider: str, code: str, redirect_uri: str) -> ProviderIdentity:
    """Exchange the authorization code and read the provider profile.

    Raises:
        OAuthLoginError("invalid_code", ...):       the token exchange failed.
        OAuthLoginError("provider_api_error", ...): the profile request failed
            or returned no stable subject.
    """
    try:
        token = await client.fetch_access_token(redirect_uri=redirect_uri, code=code)
    except (AuthlibBaseError, HTTPError) as exc:
        raise OAuthLoginError("invalid_code", f"{provider}: authorization code exchange failed") from exc

    try:
        if provider == "github":
            return await _github_identity(client, token)
        if provider == "google":
            return await _google_identity(client, token)
    except (AuthlibBaseError, HTTPError, KeyError) as exc:
        raise OAuthLoginError("provider_api_error", f"{provider}: failed to fetch user profile") from exc
    raise ValueError(f"Unknown OAuth provider: {provider!r}")


async def _github_identity(client, token: dict) -> ProviderIdentity:
    resp = await client.get("user", token=token)
    resp.raise_for_status()
    profile = resp.json()
    return ProviderIdentity(subject=str(profile["id"]), username=str(profile["login"]))


async def _google_identity(client, token: dict) -> ProviderIdentity:
    userinfo = await client.userinfo(token=token)
    subject = userinfo["sub"]
    email = userinfo.get("email") or ""
    username = email.split("@", 1)[0] if email else f"google-{subject}"
    return ProviderIdentity(subject=str(subject), username=username)
