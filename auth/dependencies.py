"""
auth/dependencies.py -- Request identity hook and FastAPI Depends() helpers.

resolve_identity() is registered as HTTP middleware and runs before any
route. Per request:

  no auth-session cookie  -> anonymous, no session lookup at all
  cookie present          -> SessionManager.validate_session_token()
      invalid / expired   -> anonymous, cookie deleted on the response
      valid               -> request.state.user / request.state.session set,
                             cookie re-issued with the (possibly renewed) expiry

Route handlers never validate sessions themselves; they read the attached
identity through the helpers below:
  try_get_current_user() -- soft variant, returns None when anonymous.
  get_current_user()     -- raises HTTP 401 when anonymous.

Validation hits the database, so it runs in the thread pool rather than on
the event loop.

A route that writes or deletes the session cookie itself (login, logout,
registration, OAuth callback) takes precedence -- the hook leaves a
Set-Cookie for auth-session already on the response alone.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request
from starlette.concurrency import run_in_threadpool

from auth.cookies import SESSION_COOKIE_NAME, delete_session_cookie, response_sets_cookie, set_session_cookie
from auth.models import Session, User
from auth.sessions import SessionManager


async def resolve_identity(request: Request, call_next):
    """Attach the session identity (or anonymous) to request.state."""
    request.state.user = None
    request.state.session = None

    token = request.cookies.get(SESSION_COOKIE_NAME)
    if not token:
        return await call_next(request)

    session_manager: SessionManager = request.app.state.session_manager
    session, user = await run_in_threadpool(session_manager.validate_session_token, token)
    request.state.user = user
    request.state.session = session

    response = await call_next(request)

    if response_sets_cookie(response, SESSION_COOKIE_NAME):
        return response
    if session is None:
        delete_session_cookie(response)
    else:
        set_session_cookie(response, token, session.expires_at)
    return response


def try_get_current_user(request: Request) -> User | None:
    """Return the user attached by resolve_identity(), or None. Never raises."""
    return getattr(request.state, "user", None)


def get_current_session(request: Request) -> Session | None:
    return getattr(request.state, "session", None)


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is anonymous.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user
