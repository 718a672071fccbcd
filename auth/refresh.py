"""
auth/refresh.py -- Refresh token store.

Refresh tokens are opaque random strings handed to the client once at login.
Only HMAC-SHA256(SECRET_KEY, token) is persisted, so a copy of the table is
useless without the signing secret. A user may hold any number of live tokens
(one per device); the hash column is UNIQUE.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, Table

from auth.models import RefreshToken
from auth.store import build_engine, metadata
from auth.tokens import generate_random_string, hash_token
from core.config import now_ms


_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),
    Column("created_at", BigInteger, nullable=False),  # epoch millis
)


class RefreshTokenStore:
    """Issue, resolve and revoke refresh tokens.

    Usage:
        tokens = RefreshTokenStore(db_url, secret_key=settings.secret_key)
        raw = tokens.issue(user_id)
        tokens.resolve(raw)   # -> user_id
        tokens.revoke(raw)    # -> True (False on the second call)
    """

    def __init__(self, db_url: str, secret_key: str, token_length: int = 25) -> None:
        if token_length < 25:
            raise ValueError("Refresh tokens must be at least 25 characters.")
        self.engine = build_engine(db_url)
        self._secret_key = secret_key
        self._token_length = token_length
        metadata.create_all(self.engine)

    def issue(self, user_id: int) -> str:
        """Generate a fresh token for user_id, persist its hash, return the raw token."""
        raw = generate_random_string(self._token_length)
        with self.engine.begin() as conn:
            conn.execute(
                _refresh_tokens.insert().values(
                    user_id=user_id,
                    token_hash=hash_token(self._secret_key, raw),
                    created_at=now_ms(),
                )
            )
        return raw

    def get(self, raw_token: str) -> RefreshToken | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(_refresh_tokens.c.token_hash == hash_token(self._secret_key, raw_token))
            ).fetchone()
        if row is None:
            return None
        return RefreshToken(id=row.id, user_id=row.user_id, token_hash=row.token_hash, created_at=row.created_at)

    def resolve(self, raw_token: str) -> int | None:
        """Return the owning user ID, or None if the token is unknown or revoked."""
        record = self.get(raw_token)
        return record.user_id if record is not None else None

    def revoke(self, raw_token: str) -> bool:
        """Delete the token. Idempotent; returns True only for the call that removed it."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _refresh_tokens.delete().where(_refresh_tokens.c.token_hash == hash_token(self._secret_key, raw_token))
            )
        return result.rowcount > 0

    def revoke_all(self, user_id: int) -> int:
        """Delete every token owned by user_id. Returns the number removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_refresh_tokens.delete().where(_refresh_tokens.c.user_id == user_id))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()
