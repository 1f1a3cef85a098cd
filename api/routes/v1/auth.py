"""
api/routes/v1/auth.py -- Registration, login, logout and identity endpoints.

Routes:
  POST /api/v1/auth/register   -- create account; sets session cookie; 201
  POST /api/v1/auth/login      -- password login; sets session cookie
  POST /api/v1/auth/logout     -- invalidates the current session; clears cookie
  GET  /api/v1/auth/me         -- current user info (requires auth)
  GET  /api/v1/auth/providers  -- list enabled OAuth providers (public)

Security:
  Login and register are rate-limited per IP (LOGIN_RATE_LIMIT, REGISTER_RATE_LIMIT).
  authenticate_user() equalizes timing -- use it, never inline lookup + verify.
  Unknown username and wrong password produce the same 401 bad_credentials.
  Cache-Control: no-store on every response that sets a session cookie.
  The optional ?redirect= target is echoed back only when it is a same-origin
  relative path; anything else becomes "/".

Password hashing is CPU-bound, so register and login are plain `def`
handlers -- FastAPI runs them in its thread pool.
"""

from __future__ import annotations

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_limit, register_limit
from api.models import LoginRequest, LoginResponse, MeResponse, MessageResponse, OAuthProviderInfo, RegisterRequest
from auth.cookies import delete_session_cookie, set_new_session_cookie
from auth.dependencies import get_current_session, get_current_user
from auth.models import User
from auth.oauth import get_enabled_providers, is_safe_redirect
from auth.passwords import (
    authenticate_user,
    generate_user_id,
    hash_password,
    validate_password,
    validate_username,
)
from auth.sessions import SessionManager
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("utilhub.api.auth")

# Auth policy:
# - POST /api/v1/auth/register:   public (unless SELF_REGISTRATION_ENABLED=false)
# - POST /api/v1/auth/login:      public
# - POST /api/v1/auth/logout:     public -- anonymous logout is a no-op
# - GET  /api/v1/auth/providers:  public -- the login page renders OAuth buttons from it
# - GET  /api/v1/auth/me:         requires auth (get_current_user)
router = APIRouter()

_USERNAME_POLICY = (
    "Username must be between 3 and 31 characters and contain only lowercase "
    "letters, numbers, underscores, and hyphens."
)
_PASSWORD_POLICY = "Password must be between 6 and 255 characters long."


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=LoginResponse, status_code=201)
@limiter.limit(register_limit)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a local account and sign it in.

    New accounts always get role "user"; the request cannot choose a role.
    """
    if not get_settings().self_registration_enabled:
        raise HTTPException(
            status_code=403,
            detail={"code": "registration_disabled", "message": "Self-registration is disabled."},
        )
    if not validate_username(body.username):
        raise _field_error("invalid_username", _USERNAME_POLICY, "username")
    if not validate_password(body.password):
        raise _field_error("invalid_password", _PASSWORD_POLICY, "password")
    if body.password != body.confirm_password:
        raise _field_error("password_mismatch", "Passwords do not match.", "confirm_password")

    user_store: UserStore = request.app.state.user_store
    if user_store.username_exists(body.username):
        raise _field_error("username_taken", "Username is already taken.", "username")

    user = User(
        id=generate_user_id(),
        username=body.username,
        password_hash=hash_password(body.password),
        role="user",
    )
    try:
        user_store.create_user(user)
    except IntegrityError as exc:
        # Concurrent registration of the same name won the race.
        raise _field_error("username_taken", "Username is already taken.", "username") from exc

    logger.info("User registered: %s", user.id)
    created = user_store.find_user_by_id(user.id)
    return _start_session(request, created, status_code=201)


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_limit)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password; set the session cookie."""
    if not validate_username(body.username):
        raise _field_error("invalid_username", "Invalid username.", "username")
    if not validate_password(body.password):
        raise _field_error("invalid_password", "Invalid password.", "password")

    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Incorrect username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp

    logger.info("User logged in: %s", user.id)
    redirect_to = request.query_params.get("redirect")
    return _start_session(request, user, redirect_to=redirect_to if is_safe_redirect(redirect_to) else "/")


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Invalidate the current session (if any) and clear the cookie."""
    session = get_current_session(request)
    if session is not None:
        session_manager: SessionManager = request.app.state.session_manager
        session_manager.invalidate_session(session.id)
        logger.info("User logged out: %s", session.user_id)
    resp = JSONResponse(content={"message": "Logged out."})
    delete_session_cookie(resp)
    return resp


@router.get("/auth/providers", response_model=list[OAuthProviderInfo])
async def list_providers() -> list[OAuthProviderInfo]:
    """Return the configured OAuth providers (empty list when none are set)."""
    return [OAuthProviderInfo(**p) for p in get_enabled_providers(get_settings())]


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=MeResponse)
async def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return user_to_me(current_user)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def user_to_me(user: User) -> MeResponse:
    return MeResponse(
        id=user.id,
        username=user.username,
        role=user.role,
        created_at=_iso(user.created_at),
    )


def _start_session(request: Request, user: User | None, status_code: int = 200, redirect_to: str = "/") -> JSONResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    session_manager: SessionManager = request.app.state.session_manager
    issued = session_manager.create_session(user.id)
    resp = JSONResponse(
        status_code=status_code,
        content=LoginResponse(
            user=user_to_me(user),
            expires_at=_iso(issued.session.expires_at),
            redirect_to=redirect_to,
        ).model_dump(),
    )
    set_new_session_cookie(resp, issued.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _field_error(code: str, message: str, field: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message, "field": field})


def _iso(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""
