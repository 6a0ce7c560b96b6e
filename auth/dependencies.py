"""
auth/dependencies.py -- FastAPI Depends() helper for the request's session.

Handlers receive the session as an explicit SessionState argument instead of
reading request-global state:

    @router.get("/members")
    async def members(request: Request, session: SessionState = Depends(current_session)): ...

current_session() is a plain def, so FastAPI runs its store read on the
threadpool.

Authorization tiers (redirect for anonymous, 403 page for non-admins) live in
web/routes.py because the 403 response is a rendered template.

Layer rule: no imports from api/ or web/.
  auth/dependencies.py may import from fastapi because this module is part of
  the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request

from auth.models import SessionState
from auth.sessions import SessionManager


def current_session(request: Request) -> SessionState:
    """Return the SessionState for this request (anonymous if none). Never raises on a bad cookie."""
    sessions: SessionManager = request.app.state.sessions
    return sessions.current(request)
