"""
tests/conftest.py -- Shared test fixtures for the authorization service.

This module provides:
  - sessions: function-scoped orchestrator with the default "user" role seeded
  - api_client: TestClient over the real app with a patched lifespan

Design: unit tests use temporary SQLite files rather than :memory: because
several stores (and, in the concurrency tests, several threads) open their
own connections to the same database.

The DEBUG env var must be set before any api/ import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError. Rate
limits are raised so the suite never trips them.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager

# Set before any api/ or core/ import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("REGISTER_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_sessions, close_sessions
from auth.events import EventQueue
from auth.sessions import SessionOrchestrator
from auth.worker import ConfirmationWorker
from core.config import Settings
from tests.support import TEST_SECRET, RecordingMailer, make_sessions


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'auth.db'}"


@pytest.fixture
def sessions(db_url) -> Generator[SessionOrchestrator, None, None]:
    s = make_sessions(db_url)
    yield s
    close_sessions(s)


def _patch_lifespan(settings: Settings, mailer: RecordingMailer):
    """Return an async context manager that replaces the real lifespan.

    Builds the orchestrator against the test database and runs a real
    confirmation worker with the recording mailer. No purge task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        events = EventQueue()
        events.bind(asyncio.get_running_loop())
        app.state.sessions = build_sessions(settings, events)
        worker = ConfirmationWorker(
            events=events,
            confirmations=app.state.sessions.confirmations,
            mailer=mailer,
            confirm_ttl_seconds=settings.confirm_token_ttl_seconds,
        )
        app.state.worker_task = asyncio.create_task(worker.run())
        yield
        app.state.worker_task.cancel()
        close_sessions(app.state.sessions)

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(tmp_path_factory) -> Generator[tuple[TestClient, RecordingMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    One TestClient per test module; the database file lives for the module.
    Tests use distinct email addresses so they do not interfere.
    """
    db_path = tmp_path_factory.mktemp("api") / "auth.db"
    settings = Settings(debug=True, secret_key=TEST_SECRET, database_url=f"sqlite:///{db_path}")
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(settings, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer
