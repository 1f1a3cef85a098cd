"""
core/config.py -- utilhub settings, read once from the environment / .env.

Everything configurable lives on Settings; modules call get_settings() and
never read os.environ themselves. Env var names are the upper-cased field
names (DATABASE_URL, SECURE_COOKIES, GITHUB_CLIENT_ID, ...).

Auth policy resolved at load time (resolve_auth_policy):
  SECURE_COOKIES unset -> follows DEBUG: Secure cookies unless DEBUG=true.
  SECURE_COOKIES=false outside DEBUG -> allowed, logged as a warning.
  OAuth client id without secret (or the reverse) -> startup error. A
  half-configured provider would otherwise only fail at the first login.

Layer rule: core/ is the kernel. This module may not import from api/, web/,
or auth/.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("utilhub.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'auth' / 'utilhub_auth.db'}"


class Settings(BaseSettings):
    """Every field has a default so Settings() works in tests without a .env."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    database_url: str = _DEFAULT_DB_URL

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    allowed_hosts: list[str] = ["*"]
    cors_origins: list[str] = ["http://localhost", "http://localhost:5173", "http://127.0.0.1"]

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    # None means "derive from DEBUG" -- resolved by the validator below, so
    # callers always see a bool.
    secure_cookies: Optional[bool] = None
    self_registration_enabled: bool = True

    # ------------------------------------------------------------------
    # OAuth providers (optional -- empty string means provider is disabled)
    # ------------------------------------------------------------------

    github_client_id: str = ""
    github_client_secret: str = ""
    google_client_id: str = ""
    google_client_secret: str = ""

    # Public origin used to build provider callback URLs, e.g.
    # "https://apps.example.com". Empty -> derived from the incoming request.
    oauth_callback_base_url: str = ""

    # ------------------------------------------------------------------
    # Rate limiting
    # ------------------------------------------------------------------

    rate_limit_enabled: bool = True
    login_rate_limit: str = "10/minute"
    register_rate_limit: str = "5/minute"

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def resolve_auth_policy(self) -> "Settings":
        """Resolve secure_cookies and check OAuth credential pairs.

        Production mode (DEBUG=false or not set) with SECURE_COOKIES=false is
        allowed (e.g. TLS terminated in front of a plain-HTTP hop) but logged,
        because session tokens would then travel in clear text on that hop.
        """
        if self.secure_cookies is None:
            self.secure_cookies = not self.debug
        elif not self.secure_cookies and not self.debug:
            logger.warning("SECURE_COOKIES=false in production mode -- session cookies will be sent over plain HTTP.")

        for provider in ("github", "google"):
            client_id = getattr(self, f"{provider}_client_id")
            client_secret = getattr(self, f"{provider}_client_secret")
            if bool(client_id) != bool(client_secret):
                raise ValueError(
                    f"{provider.upper()}_CLIENT_ID and {provider.upper()}_CLIENT_SECRET "
                    "must be set together (or both left empty to disable the provider)."
                )
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached Settings. Tests that change the environment call get_settings.cache_clear()."""
    return Settings()
