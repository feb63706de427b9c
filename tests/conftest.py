"""
tests/conftest.py -- Shared test fixtures for the admin auth integration tests.

This module provides:
  - _patch_lifespan(): wires a test store and guard into app.state, bypassing real startup
  - make_token(): signs arbitrary claims with the app key (expired / foreign tokens)
  - api_client: TestClient plus a pre-created admin and its JWT
  - store: a fresh in-memory AdminStore for unit tests

Design: The API fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs sync route handlers in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread.

DEBUG and ALLOWED_HOSTS must be set before any auth/core import so
get_settings() auto-generates SECRET_KEY and accepts TestClient's
"testserver" Host header.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any auth/core import -- get_settings() is cached.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from api.limiter import limiter
from api.main import app
from auth.guard import AdminGuard
from auth.models import Admin
from auth.store import AdminStore
from auth.tokens import PROVIDER_CLAIM, create_token, hash_password, now_ts
from core.config import get_settings

ADMIN_NAME = "Test Admin"
ADMIN_EMAIL = "testadmin@example.com"
ADMIN_PASSWORD = "testpass123"

# Login is rate limited; the suite logs in far more than 10 times a minute.
limiter.enabled = False


def make_token(**claims) -> str:
    """Sign a token with the app key. Missing standard claims get sane defaults.

    Pass a claim with value None to leave it out entirely.
    """
    now = now_ts()
    payload = {
        "sub": "1",
        "iat": now,
        "nbf": now,
        "exp": now + 3600,
        "jti": uuid.uuid4().hex,
        "prv": PROVIDER_CLAIM,
    }
    payload.update(claims)
    payload = {k: v for k, v in payload.items() if v is not None}
    return jwt.encode(payload, get_settings().secret_key, algorithm="HS256")


def _patch_lifespan(store: AdminStore):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown can .cancel() a
    real asyncio.Task.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.store = store
        app.state.guard = AdminGuard(store, get_settings())
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, str, int, AdminStore], None, None]:
    """Yield (client, token, admin_id, store) for API integration tests.

    The admin is created before the client starts; the token is a normal
    access token for that admin. Each test module gets its own database.
    """
    db_name = f"test_admin_{os.getpid()}_{id(object())}"
    store = AdminStore(f"sqlite:///file:{db_name}?mode=memory&cache=shared&uri=true")
    admin_id = store.create_admin(
        Admin(name=ADMIN_NAME, email=ADMIN_EMAIL, hashed_password=hash_password(ADMIN_PASSWORD))
    )
    token = create_token(str(admin_id))

    app.router.lifespan_context = _patch_lifespan(store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, token, admin_id, store

    store.close()


@pytest.fixture
def store() -> Generator[AdminStore, None, None]:
    """Fresh in-memory AdminStore per test."""
    s = AdminStore("sqlite:///:memory:")
    yield s
    s.close()


@pytest.fixture
def guard(store: AdminStore) -> AdminGuard:
    return AdminGuard(store, get_settings())


@pytest.fixture
def token_factory():
    """Expose make_token() to tests as a fixture."""
    return make_token
