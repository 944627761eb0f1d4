"""
tests/conftest.py -- Shared test fixtures for AuthGate tests.

This module provides:
  - make_settings(): Settings with test-friendly values (low bcrypt cost,
    isolated shared-memory DB, fixed signing key)
  - _patch_lifespan(): wires components built from those settings and a
    ManualClock into app.state, bypassing real startup
  - api_client: TestClient + ManualClock for integration tests
  - start_client: context-manager factory for tests that need different limits
  - store / clock / tokens / service: unit-level components

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the same process. Each fixture
instance uses a fresh uuid name, so tests never see each other's users.

The DEBUG env var must be set before any api/ import: api/main.py reads
get_settings() at import time to configure CORS, and Settings refuses to load
without a SECRET_KEY outside debug mode.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator, Iterator
from contextlib import asynccontextmanager, contextmanager

# CRITICAL: Set DEBUG before any api/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, build_components, stop_purge_task
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import TokenEngine
from core.clock import ManualClock
from core.config import Settings

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789abcdef"
TEST_ISSUER = "authgate-test"
STRONG_PASSWORD = "Str0ng!Pass"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def shared_memory_url(prefix: str = "test_auth") -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "secret_key": TEST_SECRET,
        "token_issuer": TEST_ISSUER,
        "bcrypt_rounds": 4,
        "database_url": shared_memory_url(),
    }
    values.update(overrides)
    return Settings(**values)


def _patch_lifespan(settings: Settings, clock: ManualClock):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel; compaction itself is tested directly against
    RateLimiter.purge_expired().
    """

    @asynccontextmanager
    async def test_lifespan(app):
        build_components(app, settings, clock=clock)
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        await stop_purge_task(app.state.purge_task)
        app.state.user_store.close()

    return test_lifespan


@contextmanager
def _running_client(**overrides) -> Iterator[tuple[TestClient, ManualClock]]:
    settings = make_settings(**overrides)
    clock = ManualClock()
    app.router.lifespan_context = _patch_lifespan(settings, clock)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, clock


# ---------------------------------------------------------------------------
# Integration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def api_client() -> Generator[tuple[TestClient, ManualClock], None, None]:
    """Yield (client, clock) backed by a fresh store and rate limiter.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, dependencies and exception handlers.
    """
    with _running_client() as pair:
        yield pair


@pytest.fixture
def start_client():
    """Factory fixture: `with start_client(auth_rate_limit_max_requests=2) as (client, clock):`"""
    return _running_client


# ---------------------------------------------------------------------------
# Unit fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def store(clock: ManualClock) -> Generator[UserStore, None, None]:
    s = UserStore(
        shared_memory_url("test_store"),
        max_login_attempts=5,
        lockout_seconds=900,
        bcrypt_rounds=4,
        clock=clock,
    )
    yield s
    s.close()


@pytest.fixture
def tokens(clock: ManualClock) -> TokenEngine:
    return TokenEngine(TEST_SECRET, issuer=TEST_ISSUER, expire_seconds=3600, clock=clock)


@pytest.fixture
def service(store: UserStore, tokens: TokenEngine, clock: ManualClock) -> AuthService:
    return AuthService(store, tokens, clock=clock)
