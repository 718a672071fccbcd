"""
auth/sessions.py -- Session orchestrator: register, login, confirm, refresh, logout.

Composes the user store, credential verifier, token issuer, refresh token store,
confirmation token store and event queue. Holds no mutable state of its own;
every operation is an independent unit of work against the stores.

Ordering rules:
  login    credentials -> enabled -> confirmed -> token minting. No token
           material exists for a disabled or unconfirmed account, not even
           transiently.
  confirm  LOOKUP+CONSUME (one conditional delete) -> EXPIRY_CHECK -> APPLY.
           The record is gone before the expiry check, so an expired token
           is single-use too and a replay always reads as invalid_token.
  refresh  resolve -> age check -> account state -> revoke (must win) -> issue.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError

from auth.confirmation import ConfirmAccountStore
from auth.errors import (
    AccountDisabledError,
    AccountNotConfirmedError,
    AuthenticationError,
    ConfigurationError,
    EmailAlreadyRegisteredError,
    InternalInconsistency,
    InvalidTokenError,
    TokenExpiredError,
)
from auth.events import EventQueue, RegistrationCompleted
from auth.models import Coordinates, Identity, TokenPair, User
from auth.refresh import RefreshTokenStore
from auth.store import UserStore
from auth.tokens import CredentialVerifier, TokenIssuer, hash_password
from core.config import now_ms

logger = logging.getLogger("authorization.sessions")


@dataclass
class UserProfile:
    """Profile fields supplied at registration. Opaque to the token lifecycle."""

    email: str
    first_name: str
    last_name: str
    timezone: str
    gender: str | None = None
    avatar: str | None = None
    coordinates: Coordinates | None = None


class SessionOrchestrator:
    def __init__(
        self,
        users: UserStore,
        verifier: CredentialVerifier,
        issuer: TokenIssuer,
        refresh_tokens: RefreshTokenStore,
        confirmations: ConfirmAccountStore,
        events: EventQueue,
        default_role: str = "user",
        refresh_token_ttl_seconds: int = 0,
    ) -> None:
        self.users = users
        self.verifier = verifier
        self.issuer = issuer
        self.refresh_tokens = refresh_tokens
        self.confirmations = confirmations
        self.events = events
        self.default_role = default_role
        self.refresh_token_ttl_seconds = refresh_token_ttl_seconds

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(self, profile: UserProfile, password: str, role_name: str | None = None) -> User:
        """Persist a new unconfirmed account and queue its confirmation email.

        Raises ConfigurationError (nothing persisted) if the role is missing,
        EmailAlreadyRegisteredError if the email is taken. Success depends only
        on the user row being written; the confirmation side effect runs later
        on the worker.
        """
        role_name = role_name or self.default_role
        role = self.users.get_role_by_name(role_name)
        if role is None:
            logger.error("Register user: role %r not found; seed it or set DEFAULT_ROLE", role_name)
            raise ConfigurationError()

        user = User(
            email=profile.email,
            first_name=profile.first_name,
            last_name=profile.last_name,
            timezone=profile.timezone,
            gender=profile.gender,
            avatar=profile.avatar,
            coordinates=profile.coordinates,
            hashed_password=hash_password(password),
            enabled=True,
            confirmed=False,
        )
        try:
            user_id = self.users.create_user(user, [role])
        except IntegrityError as exc:
            raise EmailAlreadyRegisteredError() from exc

        created = self.users.get_by_id(user_id)
        if created is None:
            logger.error("User %s vanished right after insert", user_id)
            raise InternalInconsistency(f"user {user_id} missing after insert")

        self.events.publish(RegistrationCompleted(user_id=user_id, email=created.email, first_name=created.first_name))
        logger.info("Registered user_id=%s", user_id)
        return created

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str) -> TokenPair:
        if not self.verifier.verify(email, password):
            raise AuthenticationError()

        user = self.users.get_by_email(email)
        if user is None:
            logger.error("Credentials verified for %s but no user row found", email)
            raise InternalInconsistency(f"verified user {email!r} not found")

        self._check_account_state(user)
        return self._issue_pair(user)

    # ------------------------------------------------------------------
    # Account confirmation
    # ------------------------------------------------------------------

    def confirm_account(self, token: str) -> User:
        """Mark the token's owner confirmed. The token cannot be used again."""
        record = self.confirmations.consume(token)
        if record is None:
            raise InvalidTokenError()

        if record.expire_at < now_ms():
            raise TokenExpiredError()

        user = self.users.get_by_id(record.user_id)
        if user is None:
            logger.error("Confirmation token %s points at missing user_id=%s", record.id, record.user_id)
            raise InternalInconsistency(f"user {record.user_id} missing for confirmation")

        self.users.update_user(user.id, confirmed=True)
        user.confirmed = True
        logger.info("Confirmed user_id=%s", user.id)
        return user

    # ------------------------------------------------------------------
    # Refresh token exchange / logout
    # ------------------------------------------------------------------

    def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair, rotating the refresh token."""
        record = self.refresh_tokens.get(refresh_token)
        if record is None:
            raise InvalidTokenError()

        if self.refresh_token_ttl_seconds and now_ms() - record.created_at > self.refresh_token_ttl_seconds * 1000:
            self.refresh_tokens.revoke(refresh_token)
            raise InvalidTokenError()

        user = self.users.get_by_id(record.user_id)
        if user is None:
            logger.error("Refresh token %s points at missing user_id=%s", record.id, record.user_id)
            raise InternalInconsistency(f"user {record.user_id} missing for refresh token")

        self._check_account_state(user)

        # Two concurrent exchanges of the same token: only the one that
        # actually deletes it gets a new pair.
        if not self.refresh_tokens.revoke(refresh_token):
            raise InvalidTokenError()
        return self._issue_pair(user)

    def logout(self, refresh_token: str) -> None:
        self.refresh_tokens.revoke(refresh_token)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_account_state(self, user: User) -> None:
        if not user.enabled:
            raise AccountDisabledError()
        if not user.confirmed:
            raise AccountNotConfirmedError()

    def _issue_pair(self, user: User) -> TokenPair:
        identity = Identity(user_id=user.id, email=user.email, roles=tuple(user.roles))
        access_token = self.issuer.create_token(identity)
        expires_at = self.issuer.expiry_of(access_token)
        refresh_token = self.refresh_tokens.issue(user.id)
        return TokenPair(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_at=int(expires_at.timestamp() * 1000),
        )
