"""
web/routes.py -- Jinja2 template routes for the MemberGate web UI.

Every handler receives the browser's session as an explicit SessionState
(resolved by auth.dependencies.current_session) and answers with either a
rendered template or a redirect.

Authorization tiers, always checked in this order:
  1. Not authenticated          -> 302 to /
  2. Admin-only, role != admin  -> 403 with the noaccess page

Blocking work (store round trips, bcrypt, session writes) is awaited through
run_in_threadpool, so concurrent requests interleave at those points. Nothing
locks across requests: the signup existence check and the insert that follows
are two separate round trips, and two concurrent signups for one email can
both get through.

The catch-all GET route must stay the LAST route registered on this router,
and this router must be included after every other router on the app. A single
trailing slash is stripped by api.main before routing, so /members/ reaches
the /members handler and its authorization tier.

Routes:
  GET  /              -- homepage (authenticated) or welcome page
  GET  /signup        -- signup form
  POST /signupSubmit  -- create account, start session, redirect /members
  GET  /login         -- login form
  POST /loginSubmit   -- verify credentials, start session, redirect /members
  GET  /members       -- members area (auth required)
  GET  /admin         -- user listing (admin required)
  POST /changeRole    -- set a user's role (admin required)
  GET  /logout        -- destroy session, render confirmation
  GET  /{anything}    -- 404 page
"""

import logging
from pathlib import Path
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse, Response
from fastapi.templating import Jinja2Templates
from starlette.concurrency import run_in_threadpool

from auth.dependencies import current_session
from auth.models import SessionState, User
from auth.passwords import hash_password, verify_password
from auth.sessions import SessionManager
from auth.store import UserStore
from web.forms import FormRejected, check_login, check_signup

logger = logging.getLogger("membergate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))

# Rendered on every page regardless of auth state -- links are never hidden.
NAV_LINKS: list[dict[str, str]] = [
    {"name": "Home", "url": "/"},
    {"name": "Members", "url": "/members"},
    {"name": "Admin", "url": "/admin"},
    {"name": "404", "url": "/404"},
    {"name": "Log Out", "url": "/logout"},
]
templates.env.globals["nav_links"] = NAV_LINKS

router = APIRouter()

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _render(request: Request, page: str, title: str, status_code: int = 200, **context) -> HTMLResponse:
    """Render templates/<page>.html with the page title and any extra context."""
    return templates.TemplateResponse(
        request,
        f"{page}.html",
        {"title": title, **context},
        status_code=status_code,
    )


def _require_auth(session: SessionState) -> Optional[RedirectResponse]:
    """Tier 1. Returns a redirect to / if the session is anonymous, None if OK.

    Call at the top of protected route handlers:
        if redirect := _require_auth(session):
            return redirect
    """
    if not session.authenticated:
        return RedirectResponse("/", status_code=302)
    return None


def _require_admin(request: Request, session: SessionState) -> Optional[Response]:
    """Tier 2. Runs tier 1 first, then answers 403 for any non-admin role."""
    if redirect := _require_auth(session):
        return redirect
    if not session.is_admin:
        return _render(request, "noaccess", "NO ACCESS", status_code=403)
    return None


def _sessions(request: Request) -> SessionManager:
    return request.app.state.sessions


def _users(request: Request) -> UserStore:
    return request.app.state.user_store


# ---------------------------------------------------------------------------
# GET / -- landing page
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
async def home(request: Request, session: SessionState = Depends(current_session)) -> HTMLResponse:
    if session.authenticated:
        return _render(request, "homepage", "Home", name=session.identity.name)
    return _render(request, "welcome", "Welcome")


# ---------------------------------------------------------------------------
# Sign up
# ---------------------------------------------------------------------------


@router.get("/signup", response_class=HTMLResponse)
async def signup_form(request: Request) -> HTMLResponse:
    return _render(request, "signup", "Sign Up", error_message=None)


@router.post("/signupSubmit", response_class=HTMLResponse)
async def signup_submit(
    request: Request,
    name: str = Form(default=""),
    email: str = Form(default=""),
    password: str = Form(default=""),
) -> Response:
    """Create a member account and log the browser in as that member.

    Order: empty checks -> schema -> email existence check -> hash -> insert
    -> start session. Any rejection re-renders the form with one message and
    leaves both the store and the session untouched.
    """
    store = _users(request)
    try:
        form = check_signup(name, email, password)
        existing = await run_in_threadpool(store.find_by_email, form.email)
        if existing is not None:
            raise FormRejected("Email already exists")
    except FormRejected as exc:
        return _render(request, "signup", "Sign Up", error_message=exc.message)

    hashed = await run_in_threadpool(hash_password, form.password)
    user = User(name=form.name, email=form.email, hashed_password=hashed)
    await run_in_threadpool(store.insert, user)
    logger.info("User successfully created")

    resp = RedirectResponse("/members", status_code=302)
    await run_in_threadpool(_sessions(request).start, request, resp, user.identity())
    return resp


# ---------------------------------------------------------------------------
# Log in
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
async def login_form(request: Request) -> HTMLResponse:
    return _render(request, "login", "Log In", error_message=None)


@router.post("/loginSubmit", response_class=HTMLResponse)
async def login_submit(
    request: Request,
    email: str = Form(default=""),
    password: str = Form(default=""),
) -> Response:
    """Verify credentials and start a session carrying the stored identity.

    Exactly one account must match the email; zero or several both read as
    "User not found".
    """
    store = _users(request)
    try:
        form = check_login(email, password)
        matches = await run_in_threadpool(store.find_all_by_email, form.email)
        if len(matches) != 1:
            raise FormRejected("User not found")
        user = matches[0]
        if not await run_in_threadpool(verify_password, form.password, user.hashed_password):
            raise FormRejected("Incorrect Password")
    except FormRejected as exc:
        return _render(request, "login", "Log In", error_message=exc.message)

    resp = RedirectResponse("/members", status_code=302)
    await run_in_threadpool(_sessions(request).start, request, resp, user.identity())
    return resp


# ---------------------------------------------------------------------------
# GET /members -- tier 1
# ---------------------------------------------------------------------------


@router.get("/members", response_class=HTMLResponse)
async def members(request: Request, session: SessionState = Depends(current_session)) -> Response:
    if redirect := _require_auth(session):
        return redirect
    return _render(request, "members", "Members Area", name=session.identity.name)


# ---------------------------------------------------------------------------
# Admin -- tier 2
# ---------------------------------------------------------------------------


@router.get("/admin", response_class=HTMLResponse)
async def admin(request: Request, session: SessionState = Depends(current_session)) -> Response:
    if denied := _require_admin(request, session):
        return denied
    users = await run_in_threadpool(_users(request).list_all)
    return _render(request, "admin", "Admin", users=users, updated_user=None, new_role=None)


@router.post("/changeRole", response_class=HTMLResponse)
async def change_role(
    request: Request,
    session: SessionState = Depends(current_session),
    email: str = Form(default=""),
    new_role: str = Form(default="", alias="newRole"),
) -> Response:
    """Overwrite a user's role with whatever string was submitted.

    The target user's live session keeps its old role until they log in again.
    When the email matches nobody the listing is re-rendered without a
    confirmation line.
    """
    if denied := _require_admin(request, session):
        return denied
    store = _users(request)
    await run_in_threadpool(store.update_role, email, new_role)
    users = await run_in_threadpool(store.list_all)
    updated = await run_in_threadpool(store.find_by_email, email)
    return _render(
        request,
        "admin",
        "Admin",
        users=users,
        updated_user=updated.name if updated else None,
        new_role=new_role,
    )


# ---------------------------------------------------------------------------
# GET /logout
# ---------------------------------------------------------------------------


@router.get("/logout", response_class=HTMLResponse)
async def logout(request: Request) -> HTMLResponse:
    """Destroy the session entry (not just the flag) and render the confirmation."""
    resp = _render(request, "logout", "Log Out")
    await run_in_threadpool(_sessions(request).end, request, resp)
    return resp


# ---------------------------------------------------------------------------
# Catch-all -- keep last
# ---------------------------------------------------------------------------


@router.get("/{path:path}", response_class=HTMLResponse)
async def not_found(request: Request, path: str) -> HTMLResponse:
    return _render(request, "404", "404", status_code=404)
