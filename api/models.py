"""
API request and response models for utilhub REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Field policy (username charset, password length) is NOT enforced here: the
routes run auth.passwords.validate_username()/validate_password() so a policy
failure comes back as a 400 naming the field, not a generic 422. The
max_length bounds below only cap request size.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(max_length=1024)
    password: str = Field(max_length=1024)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register. Role is always "user"."""

    model_config = ConfigDict(populate_by_name=True)

    username: str = Field(max_length=1024)
    password: str = Field(max_length=1024)
    confirm_password: str = Field(max_length=1024, alias="confirmPassword")


class PasswordChangeRequest(BaseModel):
    """Request body for POST /api/v1/profile/password."""

    model_config = ConfigDict(populate_by_name=True)

    current_password: str = Field(max_length=1024, alias="currentPassword")
    new_password: str = Field(max_length=1024, alias="newPassword")
    confirm_password: str = Field(max_length=1024, alias="confirmPassword")


class AccountDeleteRequest(BaseModel):
    """Request body for DELETE /api/v1/profile -- the user retypes their username."""

    model_config = ConfigDict(populate_by_name=True)

    confirm_username: str = Field(max_length=255, alias="confirmUsername")


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MeResponse(BaseModel):
    """Public identity of the current user (GET /api/v1/auth/me)."""

    id: str
    username: str
    role: str
    created_at: str


class LoginResponse(BaseModel):
    """Returned by login and registration. The session itself travels in the cookie."""

    user: MeResponse
    expires_at: str
    redirect_to: str = "/"


class OAuthProviderInfo(BaseModel):
    name: str
    label: str


class ProfileResponse(BaseModel):
    """GET /api/v1/profile -- identity plus account facts."""

    id: str
    username: str
    role: str
    created_at: str
    account_age_days: int
    has_password: bool
    has_github: bool
    has_google: bool
    is_admin: bool
    active_sessions: int


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class ErrorDetail(BaseModel):
    """Structured error payload. field names the offending input for 400s."""

    code: str
    message: str
    field: Optional[str] = None
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    error: ErrorDetail
