"""
api/limiter.py -- Shared slowapi rate limiter and the configured auth limits.

One Limiter instance for the whole app: SlowAPIMiddleware in api/main.py finds
it on app.state.limiter, and every @limiter.limit() decorator must count
against the same in-memory store or no limit would ever trigger.

Limits are read from Settings at request time (slowapi accepts a callable),
so LOGIN_RATE_LIMIT / REGISTER_RATE_LIMIT take effect without code changes.
RATE_LIMIT_ENABLED=false turns limiting off (the test suite does this).

Stack @limiter.limit() directly above the def and under the @router decorator;
the other way round FastAPI registers the undecorated function.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(
    key_func=get_remote_address,
    storage_uri="memory://",
    enabled=get_settings().rate_limit_enabled,
)


def login_limit() -> str:
    return get_settings().login_rate_limit


def register_limit() -> str:
    return get_settings().register_rate_limit
