"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the session orchestrator and routes do the work.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Coordinates:
    latitude: float
    longitude: float


@dataclass
class Role:
    """A named permission grouping. Looked up by name at registration time."""

    name: str
    description: str | None = None
    id: int | None = None


@dataclass
class User:
    """A registered account.

    email is the login identifier and is unique across users. hashed_password
    is the bcrypt hash produced at registration; the raw password never lands
    here. A user that is not both enabled and confirmed never receives a
    session.

    Profile attributes (names, timezone, gender, avatar, coordinates) are
    opaque to the token lifecycle and only round-trip through the store.
    """

    email: str
    first_name: str
    last_name: str
    timezone: str
    id: int | None = None
    hashed_password: str | None = None
    gender: str | None = None
    avatar: str | None = None
    coordinates: Coordinates | None = None
    roles: list[str] = field(default_factory=list)
    enabled: bool = True
    confirmed: bool = False
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class RefreshToken:
    """A persisted refresh token.

    token_hash is HMAC-SHA256(SECRET_KEY, raw_token). The raw token is handed
    to the client once at login and never stored. created_at is epoch millis.
    """

    user_id: int
    token_hash: str
    created_at: int
    id: int | None = None


@dataclass
class ConfirmAccount:
    """A single-use, time-bound account confirmation token.

    created_at and expire_at are epoch millis. expire_at = created_at +
    the configured confirmation window.
    """

    user_id: int
    token: str
    created_at: int
    expire_at: int
    id: int | None = None


@dataclass(frozen=True)
class Identity:
    """Authenticated identity passed explicitly through the orchestrator.

    Built from a verified access token (or a freshly loaded user at login)
    and handed to route handlers as a dependency result.
    """

    user_id: int
    email: str
    roles: tuple[str, ...] = ()


@dataclass(frozen=True)
class TokenPair:
    """Result of a successful login or refresh.

    expires_at is the access token expiry in epoch millis.
    """

    access_token: str
    refresh_token: str
    expires_at: int
