"""
auth/dependencies.py -- FastAPI Depends() guards for protected pages.

require_authenticated() passes when the request carries an Authenticated
session and returns it. require_administrator() additionally fetches the
bound account from the store on every call -- no caching -- so a role change
takes effect on the very next request.

Both guards are read-only: they never create, rotate or destroy a session.
On refusal they raise LoginRequired, which the app-level handler in
api/main.py turns into a 302 to /login.

Usage:
    @router.get("/dashboard")
    async def dashboard(request: Request, session: Session = Depends(require_authenticated)): ...

Layer rule: no imports from web/.
"""

from __future__ import annotations

import logging

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError

from auth.errors import AccountLookupError
from auth.models import Account
from auth.sessions import Session, SessionManager
from auth.store import AccountStore

logger = logging.getLogger("foliogate.auth")

LOGIN_PATH = "/login"


class LoginRequired(Exception):
    """Raised by a guard when the request may not proceed."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


async def require_authenticated(request: Request) -> Session:
    manager: SessionManager = request.app.state.sessions
    session = await manager.current(request)
    if session is None or not session.is_authenticated:
        logger.info("Redirecting anonymous request for %s to login", request.url.path)
        raise LoginRequired("not_authenticated")
    return session


async def require_administrator(request: Request) -> Account:
    session = await require_authenticated(request)
    accounts: AccountStore = request.app.state.accounts
    try:
        account = await accounts.find_by_id(session.account_id)
    except SQLAlchemyError as exc:
        raise AccountLookupError("account lookup failed in administrator guard") from exc
    if account is None or not account.is_admin:
        logger.info("Redirecting non-admin session for %s to login", request.url.path)
        raise LoginRequired("not_administrator")
    return account
