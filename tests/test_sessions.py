"""
tests/test_sessions.py -- Unit tests for the session orchestrator.

Exercises register / login / confirm / refresh / logout directly against
SQLite-backed stores, without HTTP. Covers the account-state ordering rules,
the single-use confirmation token lifecycle and the concurrent confirmation
property.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from threading import Barrier

import pytest

from api.main import close_sessions
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
from auth.events import RegistrationCompleted
from auth.models import ConfirmAccount
from auth.sessions import SessionOrchestrator
from core.config import now_ms
from tests.support import make_sessions, profile

PASSWORD = "correct-horse"


def _register_confirmed(sessions: SessionOrchestrator, email: str = "a@x.com") -> int:
    user = sessions.register(profile(email), PASSWORD)
    sessions.users.update_user(user.id, confirmed=True)
    return user.id


def _confirm_token(sessions: SessionOrchestrator, user_id: int, expire_in_ms: int = 60_000) -> str:
    now = now_ms()
    record = sessions.confirmations.insert(
        ConfirmAccount(user_id=user_id, token=f"tok-{user_id}-{now}", created_at=now, expire_at=now + expire_in_ms)
    )
    return record.token


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


class TestRegister:
    def test_register_creates_unconfirmed_user(self, sessions: SessionOrchestrator) -> None:
        user = sessions.register(profile(), PASSWORD)
        assert user.id is not None
        assert user.email == "a@x.com"
        assert user.confirmed is False
        assert user.enabled is True
        assert user.roles == ["user"]
        assert user.hashed_password != PASSWORD

    def test_register_publishes_completion_event(self, sessions: SessionOrchestrator) -> None:
        user = sessions.register(profile(), PASSWORD)
        assert sessions.events.qsize() == 1
        event = sessions.events._queue.get_nowait()
        assert event == RegistrationCompleted(user_id=user.id, email="a@x.com", first_name="Ada")

    def test_register_does_not_create_confirmation_inline(self, sessions: SessionOrchestrator) -> None:
        user = sessions.register(profile(), PASSWORD)
        assert sessions.confirmations.find_by_user(user.id) == []

    def test_missing_role_is_configuration_error(self, db_url) -> None:
        sessions = make_sessions(db_url, seed_role=None)
        try:
            with pytest.raises(ConfigurationError):
                sessions.register(profile(), PASSWORD)
            assert sessions.users.get_by_email("a@x.com") is None
            assert sessions.events.qsize() == 0
        finally:
            close_sessions(sessions)

    def test_explicit_role_name(self, sessions: SessionOrchestrator) -> None:
        with pytest.raises(ConfigurationError):
            sessions.register(profile(), PASSWORD, role_name="superuser")

    def test_duplicate_email(self, sessions: SessionOrchestrator) -> None:
        sessions.register(profile(), PASSWORD)
        with pytest.raises(EmailAlreadyRegisteredError):
            sessions.register(profile(), PASSWORD)
        assert sessions.events.qsize() == 1


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------


class TestLogin:
    def test_login_returns_token_pair(self, sessions: SessionOrchestrator) -> None:
        uid = _register_confirmed(sessions)
        before = now_ms()
        pair = sessions.login("a@x.com", PASSWORD)
        assert pair.expires_at > before
        assert len(pair.refresh_token) >= 25
        assert sessions.refresh_tokens.resolve(pair.refresh_token) == uid
        identity = sessions.issuer.identity_of(pair.access_token)
        assert identity.user_id == uid
        assert identity.roles == ("user",)
        assert int(sessions.issuer.expiry_of(pair.access_token).timestamp() * 1000) == pair.expires_at

    def test_wrong_password_and_unknown_email_look_the_same(self, sessions: SessionOrchestrator) -> None:
        _register_confirmed(sessions)
        with pytest.raises(AuthenticationError) as wrong:
            sessions.login("a@x.com", "nope")
        with pytest.raises(AuthenticationError) as unknown:
            sessions.login("ghost@x.com", PASSWORD)
        assert wrong.value.message == unknown.value.message
        assert wrong.value.code == unknown.value.code

    def test_unconfirmed_account_gets_no_tokens(self, sessions: SessionOrchestrator) -> None:
        user = sessions.register(profile(), PASSWORD)
        with pytest.raises(AccountNotConfirmedError):
            sessions.login("a@x.com", PASSWORD)
        with sessions.refresh_tokens.engine.connect() as conn:
            assert conn.exec_driver_sql("SELECT COUNT(*) FROM refresh_tokens").scalar() == 0
        assert sessions.users.get_by_id(user.id).confirmed is False

    @pytest.mark.parametrize("confirmed", [True, False])
    def test_disabled_account_gets_no_tokens(self, sessions: SessionOrchestrator, confirmed: bool) -> None:
        """Disabled wins over unconfirmed: enabled is checked first."""
        user = sessions.register(profile(), PASSWORD)
        sessions.users.update_user(user.id, enabled=False, confirmed=confirmed)
        with pytest.raises(AccountDisabledError):
            sessions.login("a@x.com", PASSWORD)
        with sessions.refresh_tokens.engine.connect() as conn:
            assert conn.exec_driver_sql("SELECT COUNT(*) FROM refresh_tokens").scalar() == 0

    def test_bad_credentials_checked_before_account_state(self, sessions: SessionOrchestrator) -> None:
        user = sessions.register(profile(), PASSWORD)
        sessions.users.update_user(user.id, enabled=False)
        with pytest.raises(AuthenticationError):
            sessions.login("a@x.com", "nope")

    def test_verified_credentials_without_user_row(self, sessions: SessionOrchestrator, monkeypatch) -> None:
        monkeypatch.setattr(sessions.verifier, "verify", lambda email, password: True)
        with pytest.raises(InternalInconsistency):
            sessions.login("ghost@x.com", PASSWORD)
        with sessions.refresh_tokens.engine.connect() as conn:
            assert conn.exec_driver_sql("SELECT COUNT(*) FROM refresh_tokens").scalar() == 0

    def test_repeated_logins_keep_all_refresh_tokens(self, sessions: SessionOrchestrator) -> None:
        uid = _register_confirmed(sessions)
        first = sessions.login("a@x.com", PASSWORD)
        second = sessions.login("a@x.com", PASSWORD)
        assert first.refresh_token != second.refresh_token
        assert sessions.refresh_tokens.resolve(first.refresh_token) == uid
        assert sessions.refresh_tokens.resolve(second.refresh_token) == uid


# ---------------------------------------------------------------------------
# Account confirmation
# ---------------------------------------------------------------------------


class TestConfirmAccount:
    def test_full_scenario(self, sessions: SessionOrchestrator) -> None:
        """register -> login refused -> confirm -> login succeeds."""
        user = sessions.register(profile(), PASSWORD)
        assert user.confirmed is False
        with pytest.raises(AccountNotConfirmedError):
            sessions.login("a@x.com", PASSWORD)

        confirmed = sessions.confirm_account(_confirm_token(sessions, user.id))
        assert confirmed.confirmed is True
        assert sessions.users.get_by_id(user.id).confirmed is True

        pair = sessions.login("a@x.com", PASSWORD)
        assert pair.expires_at > now_ms()

    def test_second_confirmation_is_invalid_not_expired(self, sessions: SessionOrchestrator) -> None:
        user = sessions.register(profile(), PASSWORD)
        token = _confirm_token(sessions, user.id)
        sessions.confirm_account(token)
        with pytest.raises(InvalidTokenError):
            sessions.confirm_account(token)

    def test_unknown_token(self, sessions: SessionOrchestrator) -> None:
        with pytest.raises(InvalidTokenError):
            sessions.confirm_account("does-not-exist")

    def test_expired_token_is_deleted(self, sessions: SessionOrchestrator) -> None:
        """expire_at 1ms in the past -> token_expired, then invalid_token."""
        user = sessions.register(profile(), PASSWORD)
        token = _confirm_token(sessions, user.id, expire_in_ms=-1)
        with pytest.raises(TokenExpiredError):
            sessions.confirm_account(token)
        assert sessions.confirmations.find_by_token(token) is None
        assert sessions.users.get_by_id(user.id).confirmed is False
        with pytest.raises(InvalidTokenError):
            sessions.confirm_account(token)

    def test_token_for_missing_user_is_consumed(self, sessions: SessionOrchestrator, monkeypatch) -> None:
        user = sessions.register(profile(), PASSWORD)
        token = _confirm_token(sessions, user.id)
        monkeypatch.setattr(sessions.users, "get_by_id", lambda user_id: None)
        with pytest.raises(InternalInconsistency):
            sessions.confirm_account(token)
        assert sessions.confirmations.find_by_token(token) is None
        with pytest.raises(InvalidTokenError):
            sessions.confirm_account(token)

    def test_concurrent_duplicate_confirmations(self, sessions: SessionOrchestrator) -> None:
        user = sessions.register(profile(), PASSWORD)
        token = _confirm_token(sessions, user.id)
        attempts = 4
        barrier = Barrier(attempts)

        def attempt(_):
            barrier.wait()
            try:
                sessions.confirm_account(token)
                return "ok"
            except InvalidTokenError:
                return "invalid"

        with ThreadPoolExecutor(max_workers=attempts) as pool:
            outcomes = list(pool.map(attempt, range(attempts)))

        assert outcomes.count("ok") == 1
        assert outcomes.count("invalid") == attempts - 1
        assert sessions.users.get_by_id(user.id).confirmed is True


# ---------------------------------------------------------------------------
# Refresh / logout
# ---------------------------------------------------------------------------


class TestRefresh:
    def test_refresh_rotates_token(self, sessions: SessionOrchestrator) -> None:
        uid = _register_confirmed(sessions)
        pair = sessions.login("a@x.com", PASSWORD)
        rotated = sessions.refresh(pair.refresh_token)
        assert rotated.refresh_token != pair.refresh_token
        assert sessions.refresh_tokens.resolve(pair.refresh_token) is None
        assert sessions.refresh_tokens.resolve(rotated.refresh_token) == uid
        with pytest.raises(InvalidTokenError):
            sessions.refresh(pair.refresh_token)

    def test_refresh_unknown_token(self, sessions: SessionOrchestrator) -> None:
        with pytest.raises(InvalidTokenError):
            sessions.refresh("z" * 25)

    def test_refresh_refused_after_disable(self, sessions: SessionOrchestrator) -> None:
        uid = _register_confirmed(sessions)
        pair = sessions.login("a@x.com", PASSWORD)
        sessions.users.update_user(uid, enabled=False)
        with pytest.raises(AccountDisabledError):
            sessions.refresh(pair.refresh_token)

    def test_aged_out_refresh_token(self, sessions: SessionOrchestrator) -> None:
        _register_confirmed(sessions)
        pair = sessions.login("a@x.com", PASSWORD)
        sessions.refresh_token_ttl_seconds = 60
        with sessions.refresh_tokens.engine.begin() as conn:
            conn.exec_driver_sql("UPDATE refresh_tokens SET created_at = created_at - 3600000")
        with pytest.raises(InvalidTokenError):
            sessions.refresh(pair.refresh_token)
        assert sessions.refresh_tokens.resolve(pair.refresh_token) is None

    def test_logout_revokes_and_is_idempotent(self, sessions: SessionOrchestrator) -> None:
        _register_confirmed(sessions)
        pair = sessions.login("a@x.com", PASSWORD)
        sessions.logout(pair.refresh_token)
        sessions.logout(pair.refresh_token)
        assert sessions.refresh_tokens.resolve(pair.refresh_token) is None
