"""
tests/conftest.py -- Shared test fixtures for the account service.

This module provides:
  - store:        UserStore on a private in-memory SQLite DB
  - clock:        FakeClock, injected into the managers to cross expiry windows
  - credentials:  CredentialManager with bcrypt rounds=4 (fast)
  - resets:       ResetTokenManager sharing the same store and clock
  - api_client:   TestClient on the real app with a patched lifespan

Design: the API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format shares one in-memory instance across all
connections in the same process.

Environment variables must be set before any core/auth import so
get_settings() sees them: DEBUG auto-generates SECRET_KEY, BCRYPT_ROUNDS keeps
hashing fast, ALLOWED_HOSTS admits TestClient's "testserver" host.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

# CRITICAL: Set env before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.credentials import CredentialManager
from auth.models import UserRecord
from auth.reset import ResetTokenManager
from auth.store import UserStore

# Rate limits are per-IP and TestClient always comes from one address.
limiter.enabled = False


# ---------------------------------------------------------------------------
# Test doubles
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable clock returning a controllable UTC time."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class RecordingMailer:
    """Mailer double that records (kind, record) instead of delivering."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, UserRecord]] = []

    def send_welcome_message(self, record: UserRecord) -> None:
        self.sent.append(("welcome", record))

    def send_password_reset(self, record: UserRecord) -> None:
        self.sent.append(("password_reset", record))

    def last(self, kind: str) -> UserRecord:
        return [r for k, r in self.sent if k == kind][-1]


class ApiContext(NamedTuple):
    client: TestClient
    store: UserStore
    mailer: RecordingMailer
    clock: FakeClock


# ---------------------------------------------------------------------------
# Core fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def store() -> Generator[UserStore, None, None]:
    s = UserStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def credentials(store: UserStore, clock: FakeClock) -> CredentialManager:
    return CredentialManager(store, rounds=4, clock=clock)


@pytest.fixture
def resets(store: UserStore, clock: FakeClock) -> ResetTokenManager:
    return ResetTokenManager(store, ttl_seconds=300, clock=clock)


@pytest.fixture
def john(credentials: CredentialManager) -> UserRecord:
    return credentials.register("john doe", "john.doe@example.com", "password")


# ---------------------------------------------------------------------------
# API fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(store: UserStore, mailer: RecordingMailer, clock: FakeClock):
    """Return an async context manager that replaces the real lifespan.

    Wires the test store, managers and mailer into app.state so TestClient
    routes see an isolated DB and no mail leaves the process.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = store
        app.state.credentials = CredentialManager(store, rounds=4, clock=clock)
        app.state.resets = ResetTokenManager(store, ttl_seconds=300, clock=clock)
        app.state.mailer = mailer
        yield

    return test_lifespan


@pytest.fixture
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext around a fresh TestClient and DB.

    Function-scoped so session cookies never leak between tests.
    """
    db_url = f"sqlite:///file:test_accounts_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    store = UserStore(db_url)
    mailer = RecordingMailer()
    clock = FakeClock()

    app.router.lifespan_context = _patch_lifespan(store, mailer, clock)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client, store, mailer, clock)

    store.close()
