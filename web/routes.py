"""
web/routes.py -- Jinja2 template routes for login, signup and the account pages.

These routes serve server-rendered HTML and share app.state with the API
layer (account store, allocation store, audit logger, session manager).

Routes:
  GET       /            -- redirect to /dashboard
  GET       /login       -- login form; issues an anonymous session cookie
  POST      /login       -- validate credentials, audit, rotate session, redirect
  GET|POST  /logout      -- destroy session, redirect /
  GET       /signup      -- signup form (404 when self-registration is off)
  POST      /signup      -- validate fields, create account, rotate session
  GET       /dashboard   -- welcome page (authenticated)
  GET       /benefits    -- account list (administrators only)

Login failure messages:
  The audit trail always distinguishes "No such user" from "Invalid password".
  The page shows one generic message unless REVEAL_LOGIN_FAILURE_REASON=true,
  in which case it shows "Invalid username" / "Invalid password".
"""

import logging
from pathlib import Path

from fastapi import APIRouter, BackgroundTasks, Depends, Form, HTTPException, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.limiter import limiter
from auth.audit import AuditLogger, LoginAttempt
from auth.credentials import CredentialValidator
from auth.dependencies import LOGIN_PATH, require_administrator, require_authenticated
from auth.errors import AccountLookupError, DuplicateUsernameError
from auth.models import Account
from auth.outcomes import LookupFailed, NoSuchUser, Outcome, Success
from auth.provisioning import provision_allocations
from auth.sessions import Session, SessionManager
from auth.signup import DUPLICATE_USERNAME_ERROR, SignupForm, validate_signup
from auth.store import AccountStore, AllocationStore
from core.config import get_settings

logger = logging.getLogger("foliogate.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
router = APIRouter()

_settings = get_settings()

GENERIC_LOGIN_ERROR = "Invalid username and/or password"
NO_SUCH_USER_ERROR = "Invalid username"
INVALID_PASSWORD_ERROR = "Invalid password"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _client_address(request: Request) -> str:
    return request.client.host if request.client else "UNKNOWN_IP"


def _landing_path(account: Account) -> str:
    return "/benefits" if account.is_admin else "/dashboard"


def _login_error_message(outcome: Outcome) -> str:
    if not get_settings().reveal_login_failure_reason:
        return GENERIC_LOGIN_ERROR
    if isinstance(outcome, NoSuchUser):
        return NO_SUCH_USER_ERROR
    return INVALID_PASSWORD_ERROR


async def _find_account(request: Request, account_id: int) -> Account | None:
    accounts: AccountStore = request.app.state.accounts
    try:
        return await accounts.find_by_id(account_id)
    except SQLAlchemyError as exc:
        raise AccountLookupError(f"lookup of account {account_id} failed") from exc


def _require_registration_open() -> None:
    if not get_settings().self_registration_enabled:
        raise HTTPException(status_code=404)


def _render_login(request: Request, username: str = "", login_error: str = "") -> HTMLResponse:
    resp = templates.TemplateResponse(
        request,
        "login.html",
        {"username": username, "login_error": login_error},
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _render_signup(request: Request, form: SignupForm, errors: dict[str, str]) -> HTMLResponse:
    # Passwords are never echoed back into the form.
    return templates.TemplateResponse(
        request,
        "signup.html",
        {
            "form": {
                "username": form.username,
                "first_name": form.first_name,
                "last_name": form.last_name,
                "email": form.email,
            },
            "errors": errors,
        },
    )


# ---------------------------------------------------------------------------
# GET / -- entry point
# ---------------------------------------------------------------------------


@router.get("/")
async def index() -> RedirectResponse:
    return RedirectResponse("/dashboard", status_code=302)


# ---------------------------------------------------------------------------
# Login / logout
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
async def login_form(request: Request) -> HTMLResponse:
    """Render the login page. Already-authenticated users go to their landing page."""
    sessions: SessionManager = request.app.state.sessions
    session = await sessions.current(request)
    if session is not None and session.is_authenticated:
        account = await _find_account(request, session.account_id)
        if account is not None:
            return RedirectResponse(_landing_path(account), status_code=302)

    resp = _render_login(request)
    await sessions.ensure(request, resp)
    return resp


@router.post("/login", response_class=HTMLResponse)
@limiter.limit(_settings.login_rate_limit)
async def login_post(
    request: Request,
    username: str = Form(default=""),
    password: str = Form(default=""),
) -> HTMLResponse:
    """Handle username/password login.

    Order within the request: classify -> audit -> (on success) rotate the
    session and bind the account -> respond. The audit line is written
    before any response exists.
    """
    credentials: CredentialValidator = request.app.state.credentials
    audit: AuditLogger = request.app.state.audit
    sessions: SessionManager = request.app.state.sessions

    outcome = await credentials.validate(username, password)
    if isinstance(outcome, LookupFailed):
        raise AccountLookupError("account lookup failed during login") from outcome.error

    audit.record(LoginAttempt.from_outcome(outcome, username, _client_address(request)))

    if not isinstance(outcome, Success):
        return _render_login(request, username=username, login_error=_login_error_message(outcome))

    account = outcome.account
    resp = RedirectResponse(_landing_path(account), status_code=302)
    await sessions.authenticate(request, resp, account.id)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.api_route("/logout", methods=["GET", "POST"])
async def logout(request: Request) -> RedirectResponse:
    """Destroy the session and clear its cookie."""
    sessions: SessionManager = request.app.state.sessions
    resp = RedirectResponse("/", status_code=302)
    await sessions.destroy(request, resp)
    return resp


# ---------------------------------------------------------------------------
# Signup
# ---------------------------------------------------------------------------


@router.get("/signup", response_class=HTMLResponse)
async def signup_form(request: Request) -> HTMLResponse:
    _require_registration_open()
    sessions: SessionManager = request.app.state.sessions
    resp = _render_signup(request, SignupForm(), {})
    await sessions.ensure(request, resp)
    return resp


async def _create_account(accounts: AccountStore, form: SignupForm) -> Account:
    try:
        return await accounts.create(form.username, form.first_name, form.last_name, form.password, form.email)
    except IntegrityError as exc:
        raise DuplicateUsernameError(form.username) from exc
    except SQLAlchemyError as exc:
        raise AccountLookupError("account creation failed") from exc


@router.post("/signup", response_class=HTMLResponse)
@limiter.limit(_settings.signup_rate_limit)
async def signup_post(
    request: Request,
    background_tasks: BackgroundTasks,
    username: str = Form(default=""),
    first_name: str = Form(default=""),
    last_name: str = Form(default=""),
    password: str = Form(default=""),
    verify: str = Form(default=""),
    email: str = Form(default=""),
) -> HTMLResponse:
    """Create an account and sign it in.

    The session is rotated and bound only after the insert is confirmed.
    Allocation provisioning runs after the response as a background task and
    cannot block or fail the signup.
    """
    _require_registration_open()
    form = SignupForm(
        username=username,
        first_name=first_name,
        last_name=last_name,
        password=password,
        verify=verify,
        email=email,
    )
    result = validate_signup(form)
    if not result.ok:
        logger.info("Signup rejected: invalid %s", result.failed_field)
        return _render_signup(request, form, result.errors)

    accounts: AccountStore = request.app.state.accounts
    try:
        existing = await accounts.find_by_username(form.username)
    except SQLAlchemyError as exc:
        raise AccountLookupError("account lookup failed during signup") from exc

    duplicate_errors = {**result.errors, "username": DUPLICATE_USERNAME_ERROR}
    if existing is not None:
        return _render_signup(request, form, duplicate_errors)
    try:
        account = await _create_account(accounts, form)
    except DuplicateUsernameError:
        # Lost a race with a concurrent signup for the same name.
        return _render_signup(request, form, duplicate_errors)

    logger.info("Created account %s (%r)", account.id, account.username)
    allocations: AllocationStore = request.app.state.allocations
    background_tasks.add_task(provision_allocations, allocations, account.id)

    sessions: SessionManager = request.app.state.sessions
    resp = RedirectResponse("/dashboard", status_code=302)
    await sessions.authenticate(request, resp, account.id)
    return resp


# ---------------------------------------------------------------------------
# Protected pages
# ---------------------------------------------------------------------------


@router.get("/dashboard", response_class=HTMLResponse)
async def dashboard(request: Request, session: Session = Depends(require_authenticated)) -> HTMLResponse:
    """Welcome page for the signed-in account, with its allocation split."""
    account = await _find_account(request, session.account_id)
    if account is None:
        logger.warning("Session bound to missing account %s; destroying it", session.account_id)
        sessions: SessionManager = request.app.state.sessions
        resp = RedirectResponse(LOGIN_PATH, status_code=302)
        await sessions.destroy(request, resp)
        return resp

    allocations: AllocationStore = request.app.state.allocations
    try:
        allocation = await allocations.get(account.id)
    except SQLAlchemyError as exc:
        raise AccountLookupError("allocation lookup failed") from exc

    return templates.TemplateResponse(
        request,
        "dashboard.html",
        {"account": account, "allocation": allocation},
    )


@router.get("/benefits", response_class=HTMLResponse)
async def benefits(request: Request, admin: Account = Depends(require_administrator)) -> HTMLResponse:
    accounts: AccountStore = request.app.state.accounts
    try:
        all_accounts = await accounts.list_accounts()
    except SQLAlchemyError as exc:
        raise AccountLookupError("account listing failed") from exc
    return templates.TemplateResponse(
        request,
        "benefits.html",
        {"account": admin, "accounts": all_accounts},
    )
