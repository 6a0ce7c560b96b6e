"""
api/main.py -- FastAPI application for MemberGate.

Builds the app, its lifespan, logging, middleware, exception handlers and the
health endpoint. The HTML routes live in web/routes.py and are mounted by
asgi.py, so api/ never imports web/.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Lifespan handles startup (user store, session store, purge task) and
shutdown (cancel purge task, close both stores) symmetrically.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from auth.sessions import SessionManager, SessionStore
from auth.store import UserStore
from core.config import get_settings

__version__ = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("membergate.api")

_PURGE_INTERVAL_SECONDS = 15 * 60

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Delete expired sessions every 15 minutes.

    Reads already ignore expired entries; this only keeps the table small.
    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(_PURGE_INTERVAL_SECONDS)
        removed = await run_in_threadpool(app.state.sessions.store.purge_expired)
        if removed:
            logger.info("Purged %d expired session(s)", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown. The purge task starts last because it references the session
    store.
    """
    settings = get_settings()
    logger.info("MemberGate starting up")
    app.state.user_store = UserStore(settings.database_url)
    session_store = SessionStore(settings.session_database_url, secret=settings.session_secret)
    app.state.sessions = SessionManager.from_settings(session_store, settings)
    logger.info("Stores initialized (session ttl=%ds)", settings.session_expire_seconds)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    app.state.sessions.store.close()
    app.state.user_store.close()
    logger.info("MemberGate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="MemberGate",
    description="Sign up, log in, members area and role administration.",
    version=__version__,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
)

# ---------------------------------------------------------------------------
# Middleware
#
# Every request passes through these coroutines before reaching any route
# handler. Wall-clock time is captured around call_next to report latency.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def strip_trailing_slash(request: Request, call_next):
    """Route /members/ exactly like /members.

    One trailing slash is optional on every path. The web router ends in a
    catch-all, so Starlette's redirect_slashes never gets a chance to run.
    """
    path = request.scope["path"]
    if path != "/" and path.endswith("/"):
        request.scope["path"] = path[:-1]
    return await call_next(request)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Exception handlers
#
# Expected failures (bad form input, wrong password, missing role) never get
# here -- routes render them. These handlers cover framework HTTP errors and
# anything unexpected, such as an unreachable store or a corrupt password hash.
# ---------------------------------------------------------------------------


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for routing errors (405) and raised HTTPExceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined on the app (not in a router) so it is registered before the web
# router's catch-all route.
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and user-store reachability."""
    try:
        await run_in_threadpool(request.app.state.user_store.ping)
        database = "ok"
    except Exception:
        logger.warning("Health check: user store unreachable", exc_info=True)
        database = "error"
    return HealthResponse(version=__version__, components={"app": "ok", "database": database})
