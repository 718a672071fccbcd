"""
api/routes/v1/auth.py -- Registration, login and account confirmation endpoints.

Routes:
  POST /api/v1/auth/register         -- create an unconfirmed account
  POST /api/v1/auth/login            -- email + password -> access/refresh token pair
  POST /api/v1/auth/confirm-account  -- consume a confirmation token
  POST /api/v1/auth/token/refresh    -- rotate a refresh token into a new pair
  POST /api/v1/auth/logout           -- revoke a refresh token
  GET  /api/v1/auth/me               -- current account (requires bearer token)

Handlers stay thin: they map request models onto SessionOrchestrator calls and
results onto response models. Every AuthServiceError raised by the
orchestrator propagates to the handler registered in api/main.py, which
renders the error envelope.

Security:
  POST /login and POST /register are rate-limited per client IP.
  Cache-Control: no-store on every response that carries tokens.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter
from api.models import (
    AuthTokenResponse,
    LoginRequest,
    MessageResponse,
    RegisterRequest,
    TokenRequest,
    UserResponse,
)
from auth.dependencies import get_current_identity
from auth.errors import InternalInconsistency
from auth.models import Coordinates, Identity, TokenPair
from auth.sessions import SessionOrchestrator, UserProfile
from core.config import get_settings

_settings = get_settings()

router = APIRouter()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.register_rate_limit)
@router.post("/auth/register", response_model=UserResponse)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    """Create an account with the default role.

    Plain def: password hashing and the inserts run on the threadpool. The
    confirmation event reaches the worker through the loop-bound EventQueue.
    """
    sessions: SessionOrchestrator = request.app.state.sessions
    coordinates = None
    if body.coordinates is not None:
        coordinates = Coordinates(latitude=body.coordinates.lat, longitude=body.coordinates.lon)
    profile = UserProfile(
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        timezone=body.timezone,
        gender=body.gender,
        avatar=body.avatar,
        coordinates=coordinates,
    )
    user = sessions.register(profile, body.password)
    return UserResponse.from_user(user)


@limiter.limit(_settings.login_rate_limit)
@router.post("/auth/login", response_model=AuthTokenResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same bad_credentials error.
    """
    sessions: SessionOrchestrator = request.app.state.sessions
    return _token_response(sessions.login(body.email, body.password))


@router.post("/auth/confirm-account", response_model=MessageResponse)
def confirm_account(request: Request, body: TokenRequest) -> MessageResponse:
    sessions: SessionOrchestrator = request.app.state.sessions
    sessions.confirm_account(body.token)
    return MessageResponse(message="Your account has been confirmed.")


@router.post("/auth/token/refresh", response_model=AuthTokenResponse)
def refresh_token(request: Request, body: TokenRequest) -> JSONResponse:
    """Exchange a refresh token for a new pair. The presented token is revoked."""
    sessions: SessionOrchestrator = request.app.state.sessions
    return _token_response(sessions.refresh(body.token))


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: TokenRequest) -> MessageResponse:
    """Revoke a refresh token. Succeeds even if the token is already gone."""
    sessions: SessionOrchestrator = request.app.state.sessions
    sessions.logout(body.token)
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(request: Request, identity: Identity = Depends(get_current_identity)) -> UserResponse:
    sessions: SessionOrchestrator = request.app.state.sessions
    user = sessions.users.get_by_id(identity.user_id)
    if user is None:
        raise InternalInconsistency(f"authenticated user {identity.user_id} not found")
    return UserResponse.from_user(user)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _token_response(pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=AuthTokenResponse(
            access_token=pair.access_token,
            refresh_token=pair.refresh_token,
            expires_at=pair.expires_at,
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp
