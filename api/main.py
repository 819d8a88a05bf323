"""
api/main.py -- FastAPI application entry point for foliogate.

Run with:  uvicorn asgi:app --reload

Middleware stack:
  1. SlowAPIMiddleware -- enforces the per-route limits declared in web/routes.py
  2. log_requests      -- one diagnostic line per request

Lifespan opens every process-wide resource once and releases it on shutdown:
the database engine (account + allocation stores), the audit log file, the
session store and its expiry purge task.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse, Response
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.concurrency import run_in_threadpool
from starlette.exceptions import HTTPException as StarletteHTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from auth.audit import AuditLogger
from auth.credentials import CredentialValidator
from auth.dependencies import LOGIN_PATH, LoginRequired
from auth.errors import AccountLookupError
from auth.sessions import MemorySessionStore, SessionManager
from auth.store import AccountStore, AllocationStore, check_db_connected, create_db_engine
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("foliogate.api")

# ---------------------------------------------------------------------------
# Background purge task
# ---------------------------------------------------------------------------


async def _purge_loop(app: FastAPI) -> None:
    """Drop expired sessions every 10 minutes.

    CancelledError from task.cancel() during shutdown propagates out of
    asyncio.sleep and unwinds the coroutine.
    """
    while True:
        await asyncio.sleep(10 * 60)
        removed = app.state.sessions.store.purge_expired()
        if removed:
            logger.info("Purged %d expired sessions", removed)


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def install_auth_state(
    app: FastAPI,
    accounts: AccountStore,
    allocations: AllocationStore,
    audit: AuditLogger,
    sessions: SessionManager,
) -> None:
    """Attach the auth collaborators to app.state.

    Shared by the real lifespan and the test lifespan so both wire the
    same attribute names.
    """
    app.state.accounts = accounts
    app.state.allocations = allocations
    app.state.credentials = CredentialValidator(accounts)
    app.state.audit = audit
    app.state.sessions = sessions


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open process-wide resources on startup, release them on shutdown.

    The audit log is opened here exactly once, in append mode, and held until
    shutdown. It is never reopened mid-request.
    """
    settings = get_settings()
    logger.info("foliogate starting up")

    engine = create_db_engine(settings.database_url)
    accounts = AccountStore(engine)
    allocations = AllocationStore(engine)
    logger.info("Account store initialized")

    audit = AuditLogger.open(settings.log_file_path)

    sessions = SessionManager(
        MemorySessionStore(settings.session_max_age_seconds),
        secret_key=settings.secret_key,
        cookie_name=settings.session_cookie_name,
        max_age_seconds=settings.session_max_age_seconds,
        secure=settings.secure_cookies,
    )
    install_auth_state(app, accounts, allocations, audit, sessions)
    app.state.purge_task = asyncio.create_task(_purge_loop(app))

    yield

    app.state.purge_task.cancel()
    audit.close()
    accounts.close()
    logger.info("foliogate shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="foliogate",
    description="Login, signup and session gate for the portfolio web application.",
    version=VERSION,
    lifespan=lifespan,
    docs_url=None,
    redoc_url=None,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


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
# ---------------------------------------------------------------------------


def _is_api_request(request: Request) -> bool:
    return request.url.path.startswith("/api/")


def _error_page(status_code: int, title: str, message: str = "") -> HTMLResponse:
    body = f"<h1>{title}</h1>" + (f"<p>{message}</p>" if message else "")
    return HTMLResponse(body, status_code=status_code)


@app.exception_handler(LoginRequired)
async def login_required_handler(request: Request, exc: LoginRequired) -> RedirectResponse:
    """Guards refuse by redirecting to the login page; session state is untouched."""
    return RedirectResponse(LOGIN_PATH, status_code=302)


@app.exception_handler(AccountLookupError)
async def account_lookup_handler(request: Request, exc: AccountLookupError) -> HTMLResponse:
    """The account store failed mid-request. The cause goes to the log only."""
    logger.exception("Account store failure on %s %s", request.method, request.url.path, exc_info=exc)
    return _error_page(500, "Something went wrong", "Please try again later.")


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> Response:
    """Return 429 with a Retry-After header; an HTML page for the web forms."""
    retry_after = int(getattr(exc, "retry_after", 60))
    logger.warning("Rate limit hit on %s %s (%s)", request.method, request.url.path, exc.detail)
    if _is_api_request(request):
        response: Response = JSONResponse(
            status_code=429,
            content=ErrorResponse(
                error=ErrorDetail(
                    code="rate_limited",
                    message="Too many requests.",
                    detail=str(exc.detail),
                )
            ).model_dump(),
        )
    else:
        response = _error_page(429, "Too many attempts", "Please wait a minute and try again.")
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> Response:
    """Structured JSON under /api/, a plain HTML page everywhere else."""
    if _is_api_request(request):
        return JSONResponse(
            status_code=exc.status_code,
            content=ErrorResponse(
                error=ErrorDetail(
                    code=f"http_{exc.status_code}",
                    message=str(exc.detail),
                )
            ).model_dump(),
        )
    return _error_page(exc.status_code, str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> Response:
    """Catch-all for unexpected server errors.

    The exception is written to the log only; the client receives a generic
    message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    if not _is_api_request(request):
        return _error_page(500, "Something went wrong", "Please try again later.")
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
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
async def health(request: Request) -> HealthResponse:
    """Return liveness, version and database reachability. No auth, no rate limit."""
    db_ok = await run_in_threadpool(check_db_connected, request.app.state.accounts.engine)
    return HealthResponse(
        version=VERSION,
        components={"app": "ok", "database": "ok" if db_ok else "error"},
    )
