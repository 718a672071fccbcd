"""
API request and response models for the authorization REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are kept
separate from the dataclasses in auth/models.py, which own the internal domain
representation. Route handlers map between the two.

Request validation (required fields, email shape, password length, password
confirmation) happens here, before anything reaches the session orchestrator.
Emails are lower-cased here, so one mailbox maps to one account.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from auth.models import User

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class CoordinatesModel(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register.

    confirm_password must equal password; the mismatch is reported as a 422
    validation error like any other field problem.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=64)
    confirm_password: str = Field(min_length=1, max_length=64)
    timezone: str = Field(min_length=1, max_length=64)
    gender: Optional[str] = Field(default=None, max_length=20)
    avatar: Optional[str] = Field(default=None, max_length=2048)
    coordinates: Optional[CoordinatesModel] = None

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()

    @model_validator(mode="after")
    def passwords_match(self) -> "RegisterRequest":
        if self.password != self.confirm_password:
            raise ValueError("The password fields must match")
        return self


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=64)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        return v.lower()


class TokenRequest(BaseModel):
    """Request body carrying a single opaque token (confirm, refresh, logout)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    token: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user representation. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: int
    email: str
    first_name: str
    last_name: str
    timezone: str
    gender: Optional[str] = None
    avatar: Optional[str] = None
    coordinates: Optional[CoordinatesModel] = None
    roles: list[str] = Field(default_factory=list)
    enabled: bool
    confirmed: bool
    created_at: str

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        coordinates = None
        if user.coordinates is not None:
            coordinates = CoordinatesModel(lat=user.coordinates.latitude, lon=user.coordinates.longitude)
        return cls(
            id=user.id,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            timezone=user.timezone,
            gender=user.gender,
            avatar=user.avatar,
            coordinates=coordinates,
            roles=user.roles,
            enabled=user.enabled,
            confirmed=user.confirmed,
            created_at=user.created_at or "",
        )


class AuthTokenResponse(BaseModel):
    """Response for login and refresh. expires_at is epoch milliseconds."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    refresh_token: str
    expires_at: int
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
