"""
auth/dependencies.py -- FastAPI Depends() helpers for bearer authentication.

The access token travels in an "Authorization: Bearer <token>" header. A valid
token yields an explicit Identity that route handlers receive as an argument;
nothing is stashed in ambient request state.

try_get_identity() is the soft variant (returns None on failure).
get_current_identity() wraps it and raises HTTP 401 if unauthenticated.

Layer rule: this module may import from fastapi because it is part of the
dependency injection seam; it does not import from api/.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import MalformedTokenError
from auth.models import Identity


def try_get_identity(request: Request) -> Identity | None:
    """Return the Identity for a valid bearer token, or None.

    A token for a user that has since been disabled or removed yields None.
    """
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None
    token = auth_header[7:].strip()
    if not token:
        return None

    sessions = request.app.state.sessions
    try:
        identity = sessions.issuer.identity_of(token)
    except MalformedTokenError:
        return None

    user = sessions.users.get_by_id(identity.user_id)
    if user is None or not user.enabled:
        return None
    return identity


def get_current_identity(request: Request) -> Identity:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(identity: Identity = Depends(get_current_identity)): ...
    """
    identity = try_get_identity(request)
    if identity is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity
