"""
tests/conftest.py -- Shared test fixtures for MemberGate integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + sessions
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - web_client: TestClient with follow_redirects=False plus its UserStore
  - seed_user / log_in helpers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because route handlers run store calls on the threadpool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Each fixture call gets a fresh uuid-suffixed name so tests never share rows.

DEBUG and BCRYPT_ROUNDS must be set before any auth/core import: DEBUG lets
get_settings() auto-generate SECRET_KEY, and 4 rounds keeps bcrypt fast.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from asgi import app
from auth.models import ROLE_MEMBER, User
from auth.passwords import hash_password
from auth.sessions import SessionManager, SessionStore
from auth.store import UserStore

SECRET = "test-secret-key-that-is-long-enough-0123456789"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _make_test_stores() -> tuple[UserStore, SessionStore]:
    return UserStore(memory_url("users")), SessionStore(memory_url("sessions"), secret=SECRET)


def _patch_lifespan(user_store: UserStore, sessions: SessionManager):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.sessions = sessions
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def seed_user(store: UserStore, name: str, email: str, password: str, role: str = ROLE_MEMBER) -> int:
    """Insert a user directly, bypassing the signup route."""
    return store.insert(User(name=name, email=email, hashed_password=hash_password(password), role=role))


def log_in(client: TestClient, email: str, password: str):
    return client.post("/loginSubmit", data={"email": email, "password": password})


def sign_up(client: TestClient, name: str, email: str, password: str):
    return client.post("/signupSubmit", data={"name": name, "email": email, "password": password})


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def web_client() -> Generator[tuple[TestClient, UserStore], None, None]:
    """Yield (client, user_store) for web route integration tests.

    follow_redirects=False is essential: tests assert on redirect locations,
    which are invisible once the client follows them. The client keeps
    cookies between requests, so it behaves like one browser.
    """
    user_store, session_store = _make_test_stores()
    sessions = SessionManager(session_store, secret_key=SECRET, ttl_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(user_store, sessions)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, user_store

    session_store.close()
    user_store.close()


@pytest.fixture
def admin_client(web_client) -> tuple[TestClient, UserStore]:
    """web_client already logged in as an admin (Root / root@x.com)."""
    client, store = web_client
    seed_user(store, "Root", "root@x.com", "rootpw", role="admin")
    resp = log_in(client, "root@x.com", "rootpw")
    assert resp.status_code == 302
    return client, store
