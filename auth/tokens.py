"""
auth/tokens.py -- Access tokens, password hashing and credential verification.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with the configured secret
       and carry sub (email), user_id, roles, iat and exp, so a relying party
       can validate one without a lookup. The signing secret and TTL arrive
       through an immutable TokenConfig injected at construction; this module
       never reads settings itself.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in CredentialVerifier.verify() so response time does not
       reveal whether an email is registered.

  Random strings: secrets.choice over [A-Za-z0-9]. Used for refresh tokens
       (>= 25 chars) and confirmation tokens.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from auth.errors import MalformedTokenError
from auth.models import Identity

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

_ALPHABET = string.ascii_letters + string.digits

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input beyond 72 bytes; the API layer caps password length
    well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Corrupt or non-bcrypt hash in storage
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("authorization_timing_dummy")


# ---------------------------------------------------------------------------
# Credential verifier (constant-time)
# ---------------------------------------------------------------------------


class CredentialVerifier:
    """Confirms or rejects an (email, password) pair against stored credentials.

    Always runs bcrypt whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Account state (enabled / confirmed) is deliberately not checked here; the
    session orchestrator owns those rules.
    """

    def __init__(self, store: UserStore) -> None:
        self._store = store

    def verify(self, email: str, password: str) -> bool:
        user = self._store.get_by_email(email)
        if user is None or not user.hashed_password:
            verify_password(password, _DUMMY_HASH)
            return False
        return verify_password(password, user.hashed_password)


# ---------------------------------------------------------------------------
# Access token issuer
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenConfig:
    secret_key: str
    ttl_seconds: int
    algorithm: str = "HS256"

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenConfig:
        return cls(secret_key=settings.secret_key, ttl_seconds=settings.access_token_ttl_seconds)


class TokenIssuer:
    """Creates signed, time-bounded access tokens and reads them back."""

    def __init__(self, config: TokenConfig) -> None:
        self._config = config

    @property
    def ttl_seconds(self) -> int:
        return self._config.ttl_seconds

    def create_token(self, identity: Identity, claims: dict | None = None) -> str:
        """Encode a signed JWT for identity with the configured TTL.

        Timestamps are truncated to whole seconds (JWT NumericDate), so
        expiry_of() on the result returns exactly issued_at + TTL.

        Extra claims are merged in but cannot override the registered ones.
        """
        issued_at = datetime.now(timezone.utc).replace(microsecond=0)
        expire = issued_at + timedelta(seconds=self._config.ttl_seconds)
        payload = dict(claims or {})
        payload.update(
            {
                "sub": identity.email,
                "user_id": identity.user_id,
                "roles": list(identity.roles),
                "iat": issued_at,
                "exp": expire,
            }
        )
        return jwt.encode(payload, self._config.secret_key, algorithm=self._config.algorithm)

    def decode(self, token: str, verify_exp: bool = True) -> dict:
        """Verify the signature and return the payload.

        Raises MalformedTokenError on an unparseable token, a signature made
        with another key, a missing identity claim, or (when verify_exp is
        True) an expired token.
        """
        try:
            payload = jwt.decode(
                token,
                self._config.secret_key,
                algorithms=[self._config.algorithm],
                options={"verify_exp": verify_exp},
            )
        except JWTError as exc:
            raise MalformedTokenError() from exc
        if "user_id" not in payload or "exp" not in payload:
            raise MalformedTokenError()
        return payload

    def expiry_of(self, token: str) -> datetime:
        """Return the absolute expiry (UTC) encoded in token.

        Pure extraction: an already expired but correctly signed token still
        yields its expiry.
        """
        payload = self.decode(token, verify_exp=False)
        try:
            return datetime.fromtimestamp(int(payload["exp"]), tz=timezone.utc)
        except (TypeError, ValueError, OverflowError) as exc:
            raise MalformedTokenError() from exc

    def identity_of(self, token: str) -> Identity:
        """Return the Identity carried by a valid, unexpired token."""
        payload = self.decode(token)
        return Identity(
            user_id=int(payload["user_id"]),
            email=payload.get("sub", ""),
            roles=tuple(payload.get("roles", ())),
        )


# ---------------------------------------------------------------------------
# Opaque random tokens
# ---------------------------------------------------------------------------


def generate_random_string(length: int) -> str:
    """Return a cryptographically random alphanumeric string of the given length."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def hash_token(secret_key: str, raw_token: str) -> str:
    """Return HMAC-SHA256(secret_key, raw_token) as a hex string.

    Deterministic, so stores can look a token up by hash in O(1) without ever
    persisting the raw value.
    """
    return hmac.new(secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()
