"""
tests/conftest.py -- Shared test fixtures for foliogate.

This module provides:
  - engine / accounts / allocations: isolated named shared-memory SQLite stores
  - seeded_accounts: one standard user and one administrator
  - audit_sink / audit: an AuditLogger writing to memory
  - session_manager: a SessionManager over a fresh MemorySessionStore
  - rate_limiting: the shared limiter switched on with fresh counters
  - web_client: TestClient over the real app with the lifespan swapped for
    one that wires the fixtures above into app.state

Named shared-memory URIs (file:name?mode=memory&cache=shared&uri=true) are
required because store calls run in the thread pool; a plain :memory: DB is
per-connection and would present a blank schema to each worker thread.

DEBUG and RATE_LIMIT_ENABLED must be set before any app import so
get_settings() auto-generates SECRET_KEY and the limiter is built disabled.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

os.environ.setdefault("DEBUG", "true")
os.environ["RATE_LIMIT_ENABLED"] = "false"

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from asgi import app
from api.limiter import limiter
from api.main import install_auth_state
from auth.audit import AuditLogger, MemoryAuditSink
from auth.models import ROLE_ADMIN, Account
from auth.sessions import MemorySessionStore, SessionManager
from auth.store import AccountStore, AllocationStore, create_db_engine
from core.config import get_settings

TEST_SECRET = "test-secret-key-that-is-long-enough-0123456789"
COOKIE = "session_id"


@dataclass
class SeededAccounts:
    user: Account
    admin: Account
    user_password: str = "alice-pass"
    admin_password: str = "root-pass"


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    url = f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"
    eng = create_db_engine(url)
    yield eng
    eng.dispose()


@pytest.fixture
def accounts(engine: Engine) -> AccountStore:
    return AccountStore(engine)


@pytest.fixture
def allocations(engine: Engine) -> AllocationStore:
    return AllocationStore(engine)


@pytest.fixture
def seeded_accounts(accounts: AccountStore) -> SeededAccounts:
    """alice (standard user) and root (administrator)."""

    async def _seed() -> SeededAccounts:
        user = await accounts.create("alice", "Alice", "Adams", "alice-pass", "alice@example.com")
        admin = await accounts.create("root", "Root", "Admin", "root-pass", "", role=ROLE_ADMIN)
        return SeededAccounts(user=user, admin=admin)

    return asyncio.run(_seed())


# ---------------------------------------------------------------------------
# Audit / session fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def audit_sink() -> MemoryAuditSink:
    return MemoryAuditSink()


@pytest.fixture
def audit(audit_sink: MemoryAuditSink) -> AuditLogger:
    return AuditLogger(audit_sink)


@pytest.fixture
def session_manager() -> SessionManager:
    return SessionManager(MemorySessionStore(3600), secret_key=TEST_SECRET, cookie_name=COOKIE, max_age_seconds=3600)


@pytest.fixture
def clear_settings() -> Generator[None, None, None]:
    """Rebuild Settings from the environment around a test that changes env vars.

    Use together with monkeypatch.setenv; the cache is cleared again on
    teardown, after monkeypatch has restored the environment.
    """
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# App fixture
# ---------------------------------------------------------------------------


def _patch_lifespan(
    accounts: AccountStore,
    allocations: AllocationStore,
    audit: AuditLogger,
    sessions: SessionManager,
):
    """Return an async context manager that replaces the real lifespan.

    Wires the test stores into app.state so routes see isolated in-memory
    state instead of the configured database and log file.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_auth_state(app, accounts, allocations, audit, sessions)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture
def web_client(
    accounts: AccountStore,
    allocations: AllocationStore,
    audit: AuditLogger,
    session_manager: SessionManager,
    seeded_accounts: SeededAccounts,
) -> Generator[TestClient, None, None]:
    """TestClient with follow_redirects=False.

    Redirect locations (302 to /login, /dashboard, /benefits) are what most
    web tests assert on; following them would hide the Location header.
    """
    app.router.lifespan_context = _patch_lifespan(accounts, allocations, audit, session_manager)
    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client



@pytest.fixture
def rate_limiting(monkeypatch) -> Generator[None, None, None]:
    """Turn the shared limiter on for one test, with empty counters on both sides."""
    monkeypatch.setattr(limiter, "enabled", True)
    limiter.reset()
    yield
    limiter.reset()
