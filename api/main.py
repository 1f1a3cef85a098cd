"""
api/main.py -- FastAPI application entry point for utilhub.

Run with:      uvicorn asgi:app --reload

Request path, outside in:
  TrustedHost (Host header allow-list) -> CORS (credentialed origins only)
  -> SlowAPI (login/register limits) -> log_requests (one access line)
  -> resolve_identity (auth-session cookie -> request.state) -> route

Lifespan builds the long-lived collaborators once and stores them on
app.state: the UserStore (database handle), the SessionManager that wraps
it, and the Authlib OAuth registry. Nothing is a module-level singleton.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from api.routes.v1.profile import router as profile_router
from auth.dependencies import resolve_identity
from auth.oauth import build_oauth_registry
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("utilhub.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan -- startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Create the store, session manager and OAuth registry; dispose on shutdown.

    The session manager holds a reference to the store, so the store must be
    created first and closed last.
    """
    logger.info("utilhub API starting up")
    app.state.user_store = UserStore(_settings.database_url)
    app.state.session_manager = SessionManager(app.state.user_store)
    app.state.oauth = build_oauth_registry(_settings)
    logger.info("Auth initialized (debug=%s, secure_cookies=%s)", _settings.debug, _settings.secure_cookies)

    yield

    app.state.user_store.close()
    logger.info("utilhub API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="utilhub API",
    description="Accounts, sessions and OAuth login for the utilhub app directory.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Every add_middleware() / @app.middleware call wraps what was registered
# before it, so registration runs innermost-first: the identity hook first,
# TrustedHost last.
# ---------------------------------------------------------------------------

# Identity hook: runs before every route so handlers only ever read
# request.state.user / request.state.session.
app.middleware("http")(resolve_identity)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Access log line: method, path, status, latency, client. Never the cookie."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    client = request.client.host if request.client else "-"
    logger.info(
        "%s %s -> %d in %.1fms (%s)", request.method, request.url.path, response.status_code, elapsed_ms, client
    )
    return response


app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

app.state.limiter = limiter  # SlowAPIMiddleware reads it from here

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])
app.include_router(profile_router, prefix="/api/v1", tags=["Profile"])
# Browser redirect routes (web/) are mounted by asgi.py, not here.


# ---------------------------------------------------------------------------
# Error envelope
#
# Every error leaves the API as {"error": {"code", "message", ...}}. Routes
# raise HTTPException(detail={...}); the handlers below only wrap.
# ---------------------------------------------------------------------------


def _error(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True))


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning("Rate limit hit on %s from %s", request.url.path, request.client.host if request.client else "?")
    resp = _error(429, "rate_limited", "Too many requests.", detail=str(exc.detail))
    resp.headers["Retry-After"] = str(exc.limit.limit.get_expiry())
    return resp


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed JSON or a missing/mistyped body field. Policy errors are 400s raised by the routes."""
    return _error(422, "validation_error", "Request validation failed.", detail=str(exc.errors()))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, dict):
        resp = JSONResponse(status_code=exc.status_code, content={"error": exc.detail})
    else:
        resp = _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail))
    if exc.headers:
        resp.headers.update(exc.headers)
    return resp


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Database and hashing failures land here: logged with traceback, generic body."""
    logger.exception("Unhandled %s on %s %s", type(exc).__name__, request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health
#
# Lives on the app itself so it answers even if a router fails to mount.
# Not rate limited.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus one database round trip."""
    components = {"app": "ok", "database": "ok"}
    try:
        with request.app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Health check: database unreachable")
        components["database"] = "error"
    return HealthResponse(
        status="healthy" if components["database"] == "ok" else "degraded",
        version=__version__,
        components=components,
    )
