"""Helpers shared by the test modules and tests/conftest.py."""

from __future__ import annotations

import time

from auth.confirmation import ConfirmAccountStore
from auth.events import EventQueue
from auth.models import Role, User
from auth.refresh import RefreshTokenStore
from auth.sessions import SessionOrchestrator, UserProfile
from auth.store import UserStore
from auth.tokens import CredentialVerifier, TokenConfig, TokenIssuer

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"


class RecordingMailer:
    """Mailer double that keeps every confirmation email it is asked to send."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str]] = []

    def send_confirmation(self, to: str, first_name: str, token: str) -> None:
        self.sent.append((to, first_name, token))

    def token_for(self, email: str, timeout: float = 5.0) -> str:
        """Wait for the worker to mail email and return the token it sent."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            for to, _name, token in reversed(self.sent):
                if to == email:
                    return token
            time.sleep(0.02)
        raise AssertionError(f"no confirmation email sent to {email}")


def add_users(db_url: str, count: int = 2) -> list[int]:
    """Create count users with the "user" role; ids start at 1 on a fresh database."""
    store = UserStore(db_url)
    try:
        role = store.ensure_role("user")
        return [
            store.create_user(
                User(email=f"user{n}@x.com", first_name="Ada", last_name="Lovelace", timezone="UTC", hashed_password="x"),
                [role],
            )
            for n in range(count)
        ]
    finally:
        store.close()


def make_sessions(db_url: str, seed_role: str | None = "user", ttl_seconds: int = 3600) -> SessionOrchestrator:
    users = UserStore(db_url)
    if seed_role:
        users.create_role(Role(name=seed_role))
    return SessionOrchestrator(
        users=users,
        verifier=CredentialVerifier(users),
        issuer=TokenIssuer(TokenConfig(secret_key=TEST_SECRET, ttl_seconds=ttl_seconds)),
        refresh_tokens=RefreshTokenStore(db_url, secret_key=TEST_SECRET),
        confirmations=ConfirmAccountStore(db_url),
        events=EventQueue(),
    )


def profile(email: str = "a@x.com") -> UserProfile:
    return UserProfile(email=email, first_name="Ada", last_name="Lovelace", timezone="Europe/London")
