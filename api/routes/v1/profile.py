"""
api/routes/v1/profile.py -- Account self-service for the signed-in user.

Routes:
  GET    /api/v1/profile           -- profile summary (requires auth)
  POST   /api/v1/profile/password  -- change password (requires auth)
  DELETE /api/v1/profile           -- delete own account (requires auth)

Password change is the single place a password hash is rewritten. After a
change every session of the user is invalidated (a stolen cookie stops
working) and this browser gets a fresh session.

OAuth-only accounts have no password to change; they get a 400.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.models import AccountDeleteRequest, MessageResponse, PasswordChangeRequest, ProfileResponse
from auth.cookies import delete_session_cookie, set_new_session_cookie
from auth.dependencies import get_current_user
from auth.models import User
from auth.passwords import hash_password, validate_password, verify_password_hash
from auth.sessions import SessionManager
from auth.store import UserStore

logger = logging.getLogger("utilhub.api.profile")

router = APIRouter()


@router.get("/profile", response_model=ProfileResponse)
def get_profile(request: Request, current_user: User = Depends(get_current_user)) -> ProfileResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.find_user_by_id(current_user.id)
    if user is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})

    created_at = user.created_at or datetime.now(timezone.utc)
    return ProfileResponse(
        id=user.id,
        username=user.username,
        role=user.role,
        created_at=created_at.isoformat(),
        account_age_days=(datetime.now(timezone.utc) - created_at).days,
        has_password=bool(user_store.get_password_hash(user.id)),
        has_github=user.github_id is not None,
        has_google=user.google_id is not None,
        is_admin=user.role == "admin",
        active_sessions=user_store.count_user_sessions(user.id),
    )


@router.post("/profile/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: PasswordChangeRequest,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Verify the current password, store the new hash, rotate sessions."""
    user_store: UserStore = request.app.state.user_store
    session_manager: SessionManager = request.app.state.session_manager

    stored_hash = user_store.get_password_hash(current_user.id)
    if not stored_hash:
        raise HTTPException(
            status_code=400,
            detail={"code": "oauth_account", "message": "Cannot change password for OAuth users."},
        )
    if not validate_password(body.new_password):
        raise _field_error("invalid_password", "Password must be between 6 and 255 characters long.", "new_password")
    if body.new_password != body.confirm_password:
        raise _field_error("password_mismatch", "Passwords do not match.", "confirm_password")
    if not verify_password_hash(body.current_password, stored_hash):
        raise _field_error("incorrect_password", "Current password is incorrect.", "current_password")

    user_store.update_password_hash(current_user.id, hash_password(body.new_password))
    session_manager.invalidate_user_sessions(current_user.id)
    issued = session_manager.create_session(current_user.id)
    logger.info("Password changed for user %s", current_user.id)

    resp = JSONResponse(content={"message": "Password updated successfully."})
    set_new_session_cookie(resp, issued.token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.delete("/profile", status_code=204)
def delete_account(
    request: Request,
    body: AccountDeleteRequest,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Delete the signed-in account after the user retypes their username."""
    if body.confirm_username != current_user.username:
        raise _field_error("username_mismatch", "Username does not match.", "confirm_username")

    user_store: UserStore = request.app.state.user_store
    user_store.delete_user(current_user.id)
    logger.info("Account deleted: %s", current_user.id)

    resp = Response(status_code=204)
    delete_session_cookie(resp)
    return resp


def _field_error(code: str, message: str, field: str) -> HTTPException:
    return HTTPException(status_code=400, detail={"code": code, "message": message, "field": field})
