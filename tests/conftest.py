"""
tests/conftest.py -- Shared test fixtures for the auth gateway.

This module provides:
  - make_test_stores(): isolated in-memory DB shared by AuthStore + ProfileStore
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - client: TestClient over the full ASGI app (gateway + native routes)
  - sent_resets: every password-reset link the engine "sent" during a test

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool, and because the
auth store and the profile store open separate engines on the same database.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares one
in-memory instance across all connections in the process.

The DEBUG env var must be set before any app import so get_settings()
auto-generates SECRET_KEY instead of raising ValueError.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.delegate import AuthDelegate
from asgi import app
from auth.engine import AuthEngine
from auth.store import AuthStore
from core.config import Settings
from profiles.store import ProfileStore

TEST_SECRET = "test-secret-key-0123456789abcdef0123456789"

REGISTRATION = {"email": "alice@example.com", "password": "Passw0rd1", "name": "Alice"}


def make_settings(**overrides) -> Settings:
    values = {"debug": True, "secret_key": TEST_SECRET}
    values.update(overrides)
    return Settings(**values)


def shared_memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_test_stores() -> tuple[AuthStore, ProfileStore]:
    """Create an isolated database with both stores attached to it.

    Each call gets a unique DB name so tests never see each other's rows.
    """
    url = shared_memory_url("test_auth")
    return AuthStore(url), ProfileStore(url)


def _patch_lifespan(engine: AuthEngine, auth_store: AuthStore, profile_store: ProfileStore):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_store = auth_store
        app.state.auth_engine = engine
        app.state.delegate = AuthDelegate(engine)
        app.state.profile_store = profile_store
        yield

    return test_lifespan


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def sent_resets() -> list[tuple[str, str, str]]:
    """(email, url, token) for each reset link the engine issued."""
    return []


@pytest.fixture
def stores() -> Generator[tuple[AuthStore, ProfileStore], None, None]:
    auth_store, profile_store = make_test_stores()
    yield auth_store, profile_store
    profile_store.close()
    auth_store.close()


@pytest.fixture
def engine(stores, settings, sent_resets) -> AuthEngine:
    auth_store, _ = stores
    return AuthEngine(
        auth_store,
        settings,
        send_reset_password=lambda user, url, token: sent_resets.append((user.email, url, token)),
    )


@pytest.fixture
def client(engine, stores) -> Generator[TestClient, None, None]:
    """TestClient over the real app with a fresh database per test.

    The client keeps a cookie jar, so a successful login authenticates the
    requests that follow it. Call client.cookies.clear() to drop it.
    """
    auth_store, profile_store = stores
    app.router.lifespan_context = _patch_lifespan(engine, auth_store, profile_store)
    with TestClient(app, raise_server_exceptions=True) as c:
        yield c


def session_cookie(resp) -> str:
    """Return the session cookie value from a response's Set-Cookie header."""
    header = resp.headers["set-cookie"]
    name_value = header.split(";", 1)[0]
    return name_value.split("=", 1)[1]


def register_and_login(client: TestClient, registration: dict | None = None) -> str:
    """Register + log in; return the session cookie value (also left in the client's jar)."""
    registration = registration or REGISTRATION
    resp = client.post("/auth/register", json=registration)
    assert resp.status_code == 201, resp.text
    resp = client.post(
        "/auth/login",
        json={"email": registration["email"], "password": registration["password"]},
    )
    assert resp.status_code == 200, resp.text
    return session_cookie(resp)
