"""
auth/sessions.py -- Server-side sessions keyed by a signed, opaque cookie.

Two pieces:

  SessionStore   -- SQLAlchemy Core table of sid -> (encrypted payload, expires_at).
                    Payloads are JSON encrypted with Fernet so the session table
                    does not leak identities if the database is copied.
  SessionManager -- the request-facing API: current(), start(), end(). It owns
                    the cookie (itsdangerous-signed session id) and the fixed
                    session lifetime.

Expiry is absolute: expires_at is written once when the session starts and is
never pushed forward by later requests. An expired entry is deleted when it is
next read, and the lifespan purge task sweeps the rest.

The payload shape is {"authenticated": bool, "user": {name, email, userType}}.
The identity inside is a snapshot; see auth.models.Identity.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import secrets
import time
from collections.abc import Callable
from dataclasses import dataclass

from cryptography.fernet import Fernet, InvalidToken
from itsdangerous import BadSignature, Signer
from sqlalchemy import Column, Float, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from auth.models import ANONYMOUS, Identity, SessionState
from auth.store import make_engine
from core.config import Settings, get_settings

logger = logging.getLogger("membergate.auth.sessions")

COOKIE_NAME = "membergate.sid"
_SIGNER_SALT = "membergate.session"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_sessions = Table(
    "sessions",
    _metadata,
    Column("sid", String(64), primary_key=True),
    Column("data", Text, nullable=False),  # Fernet token wrapping the JSON payload
    Column("expires_at", Float, nullable=False, index=True),  # unix seconds
)


def _fernet_for(secret: str) -> Fernet:
    """Derive a Fernet key from an arbitrary-length secret string."""
    digest = hashlib.sha256(secret.encode("utf-8")).digest()
    return Fernet(base64.urlsafe_b64encode(digest))


@dataclass(frozen=True)
class StoredSession:
    payload: dict
    expires_at: float


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class SessionStore:
    """Persistence for session payloads.

    Usage:
        store = SessionStore(secret="...")
        store.set("abc", {"authenticated": True, "user": {...}}, expires_at=time.time() + 3600)
        entry = store.get("abc")      # StoredSession or None
        store.destroy("abc")
        store.purge_expired()         # call periodically to trim old entries
    """

    def __init__(self, db_url: str | None = None, secret: str | None = None) -> None:
        settings = get_settings()
        self.engine: Engine = make_engine(db_url or settings.session_database_url)
        self._fernet = _fernet_for(secret or settings.session_secret)
        _metadata.create_all(self.engine)

    def get(self, sid: str) -> StoredSession | None:
        """Return the stored session, or None if absent or unreadable.

        Expiry is not checked here; SessionManager compares expires_at with
        its own clock.
        """
        with self.engine.connect() as conn:
            row = conn.execute(_sessions.select().where(_sessions.c.sid == sid)).first()
        if row is None:
            return None
        try:
            raw = self._fernet.decrypt(row.data.encode("utf-8"))
        except InvalidToken:
            # Written under a different SESSION_SECRET. Treat as logged out.
            logger.warning("Discarding undecryptable session payload")
            return None
        return StoredSession(payload=json.loads(raw), expires_at=row.expires_at)

    def set(self, sid: str, payload: dict, expires_at: float) -> None:
        """Store payload under sid, replacing any existing entry."""
        token = self._fernet.encrypt(json.dumps(payload).encode("utf-8")).decode("utf-8")
        with self.engine.connect() as conn:
            conn.execute(_sessions.delete().where(_sessions.c.sid == sid))
            conn.execute(_sessions.insert().values(sid=sid, data=token, expires_at=expires_at))
            conn.commit()

    def destroy(self, sid: str) -> bool:
        """Delete the entry entirely. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.sid == sid))
            conn.commit()
        return result.rowcount > 0

    def purge_expired(self, now: float | None = None) -> int:
        """Delete all entries past their expiry. Returns number of rows removed."""
        cutoff = time.time() if now is None else now
        with self.engine.connect() as conn:
            result = conn.execute(_sessions.delete().where(_sessions.c.expires_at <= cutoff))
            conn.commit()
        return result.rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


class SessionManager:
    """Create, read and destroy the session bound to a browser.

    All three operations do blocking store I/O. Async route handlers call
    them through run_in_threadpool.
    """

    def __init__(
        self,
        store: SessionStore,
        secret_key: str,
        ttl_seconds: int = 3600,
        cookie_name: str = COOKIE_NAME,
        secure: bool = False,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.cookie_name = cookie_name
        self.secure = secure
        self._clock = clock
        self._signer = Signer(secret_key, salt=_SIGNER_SALT)

    @classmethod
    def from_settings(cls, store: SessionStore, settings: Settings) -> SessionManager:
        return cls(
            store,
            secret_key=settings.secret_key,
            ttl_seconds=settings.session_expire_seconds,
            secure=settings.secure_cookies,
        )

    def _session_id(self, request) -> str | None:
        raw = request.cookies.get(self.cookie_name)
        if not raw:
            return None
        try:
            return self._signer.unsign(raw).decode("utf-8")
        except BadSignature:
            return None

    def current(self, request) -> SessionState:
        """Resolve the session for this request. Anonymous on any miss."""
        sid = self._session_id(request)
        if sid is None:
            return ANONYMOUS
        entry = self.store.get(sid)
        if entry is None:
            return ANONYMOUS
        if entry.expires_at <= self._clock():
            self.store.destroy(sid)
            return ANONYMOUS
        return SessionState.from_payload(entry.payload)

    def start(self, request, response, identity: Identity) -> SessionState:
        """Authenticate this browser as identity.

        A fresh session id is issued every time; any session the browser
        already had is destroyed first.
        """
        previous = self._session_id(request)
        if previous is not None:
            self.store.destroy(previous)

        sid = secrets.token_urlsafe(32)
        state = SessionState(authenticated=True, identity=identity)
        self.store.set(sid, state.to_payload(), expires_at=self._clock() + self.ttl_seconds)
        response.set_cookie(
            self.cookie_name,
            value=self._signer.sign(sid).decode("utf-8"),
            max_age=self.ttl_seconds,
            httponly=True,
            samesite="lax",
            secure=self.secure,
        )
        return state

    def end(self, request, response) -> None:
        """Destroy the store entry and clear the cookie."""
        sid = self._session_id(request)
        if sid is not None:
            self.store.destroy(sid)
        response.delete_cookie(self.cookie_name)
