"""
auth/confirmation.py -- Single-use, time-bound account confirmation tokens.

A ConfirmAccount row is created by the confirmation worker after registration
and removed the first time anyone presents its token, whether or not the token
has expired by then. consume() is a single conditional DELETE ... RETURNING,
so when the same token is presented concurrently exactly one caller gets the
record back and every other caller sees None.
"""

from __future__ import annotations

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, Table

from auth.models import ConfirmAccount
from auth.store import build_engine, metadata
from auth.tokens import generate_random_string
from core.config import now_ms

_TOKEN_LENGTH = 48


_confirm_accounts = Table(
    "confirm_accounts",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id"), nullable=False, index=True),
    Column("token", String(64), nullable=False, unique=True),
    Column("created_at", BigInteger, nullable=False),  # epoch millis
    Column("expire_at", BigInteger, nullable=False),  # epoch millis
)


class ConfirmAccountStore:
    def __init__(self, db_url: str) -> None:
        self.engine = build_engine(db_url)
        metadata.create_all(self.engine)

    def create(self, user_id: int, ttl_seconds: int) -> ConfirmAccount:
        """Create a token for user_id that expires ttl_seconds from now."""
        created_at = now_ms()
        return self.insert(
            ConfirmAccount(
                user_id=user_id,
                token=generate_random_string(_TOKEN_LENGTH),
                created_at=created_at,
                expire_at=created_at + ttl_seconds * 1000,
            )
        )

    def insert(self, record: ConfirmAccount) -> ConfirmAccount:
        """Persist a fully specified record and return it with its ID."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _confirm_accounts.insert().values(
                    user_id=record.user_id,
                    token=record.token,
                    created_at=record.created_at,
                    expire_at=record.expire_at,
                )
            )
        return ConfirmAccount(
            id=result.inserted_primary_key[0],
            user_id=record.user_id,
            token=record.token,
            created_at=record.created_at,
            expire_at=record.expire_at,
        )

    def find_by_token(self, token: str) -> ConfirmAccount | None:
        with self.engine.connect() as conn:
            row = conn.execute(_confirm_accounts.select().where(_confirm_accounts.c.token == token)).fetchone()
        return _row_to_confirm_account(row) if row is not None else None

    def find_by_user(self, user_id: int) -> list[ConfirmAccount]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _confirm_accounts.select()
                .where(_confirm_accounts.c.user_id == user_id)
                .order_by(_confirm_accounts.c.created_at)
            ).fetchall()
        return [_row_to_confirm_account(r) for r in rows]

    def consume(self, token: str) -> ConfirmAccount | None:
        """Atomically delete the record for token and return it.

        Returns None if no such token exists, including when a concurrent
        caller consumed it first.
        """
        with self.engine.begin() as conn:
            rows = conn.execute(
                _confirm_accounts.delete()
                .where(_confirm_accounts.c.token == token)
                .returning(*_confirm_accounts.c)
            ).fetchall()
        return _row_to_confirm_account(rows[0]) if rows else None

    def delete_for_user(self, user_id: int) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_confirm_accounts.delete().where(_confirm_accounts.c.user_id == user_id))
        return result.rowcount

    def purge_expired(self) -> int:
        """Delete all tokens past their expiry. Returns number of rows removed."""
        with self.engine.begin() as conn:
            result = conn.execute(_confirm_accounts.delete().where(_confirm_accounts.c.expire_at < now_ms()))
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


def _row_to_confirm_account(row) -> ConfirmAccount:
    return ConfirmAccount(
        id=row.id,
        user_id=row.user_id,
        token=row.token,
        created_at=row.created_at,
        expire_at=row.expire_at,
    )
