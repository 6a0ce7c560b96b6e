"""
tests/test_signup_race.py -- Two concurrent signups for one email.

The existence check and the insert are separate store round trips with no
lock between them. This test holds both requests at the existence check
until each has seen "no such email", then lets them continue, and pins the
result: two records with the same email, after which login for that email
reads as "User not found".
"""

from __future__ import annotations

import asyncio
import threading

import httpx

from asgi import app
from auth.sessions import SessionManager, SessionStore
from auth.store import UserStore
from conftest import SECRET, memory_url


class _RacingStore(UserStore):
    """find_by_email blocks until two callers have arrived."""

    def __init__(self, db_url: str) -> None:
        super().__init__(db_url)
        self.barrier = threading.Barrier(2, timeout=5)

    def find_by_email(self, email):
        found = super().find_by_email(email)
        self.barrier.wait()
        return found


async def _signup_twice() -> list[httpx.Response]:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await asyncio.gather(
            client.post("/signupSubmit", data={"name": "Ann", "email": "ann@x.com", "password": "pw1"}),
            client.post("/signupSubmit", data={"name": "Ann2", "email": "ann@x.com", "password": "pw2"}),
        )


async def _login() -> httpx.Response:
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        return await client.post("/loginSubmit", data={"email": "ann@x.com", "password": "pw1"})


def test_concurrent_signups_both_insert():
    store = _RacingStore(memory_url("users_race"))
    session_store = SessionStore(memory_url("sessions_race"), secret=SECRET)
    # ASGITransport does not run the lifespan, so wire app.state by hand.
    app.state.user_store = store
    app.state.sessions = SessionManager(session_store, secret_key=SECRET)
    try:
        first, second = asyncio.run(_signup_twice())
        assert first.status_code == 302
        assert second.status_code == 302
        assert store.count() == 2
        assert len(store.find_all_by_email("ann@x.com")) == 2

        resp = asyncio.run(_login())
        assert resp.status_code == 200
        assert "User not found" in resp.text
    finally:
        session_store.close()
        store.close()
