"""
auth/sessions.py -- Server-side sessions and their identity transitions.

States:
  Anonymous      -- a stored session with no bound account.
  Authenticated  -- a stored session bound to an account id.
  Destroyed      -- removed from the store. A client presenting its old
                    identifier is indistinguishable from one with no cookie,
                    i.e. Anonymous.
  Expired        -- dropped by the store once its absolute lifetime passes.

Transitions owned by SessionManager:
  ensure()        no session            -> Anonymous (new identifier)
  authenticate()  Anonymous/any         -> Authenticated. The identifier is
                  ALWAYS regenerated first and the previous one destroyed,
                  then the account is bound. An identifier planted on a
                  client before login is useless afterwards (session
                  fixation).
  destroy()       any                   -> Destroyed

current() is read-only: guards use it and never create or remove sessions.

Cookie format:
  The cookie carries the identifier signed with itsdangerous TimestampSigner.
  A bad or expired signature reads as "no session". Signing keeps forged
  identifiers from ever reaching the store.

Concurrency:
  MemorySessionStore methods are coroutines that complete without awaiting,
  so each one is atomic with respect to other requests on the event loop.
  A production deployment swaps in a shared store with the same methods.
"""

from __future__ import annotations

import logging
import secrets
import time
from dataclasses import dataclass, field

from itsdangerous import BadSignature, TimestampSigner
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("foliogate.auth.sessions")


@dataclass
class Session:
    id: str
    account_id: int | None = None
    created_at: float = field(default_factory=time.time)
    expires_at: float = 0.0

    @property
    def is_authenticated(self) -> bool:
        return self.account_id is not None


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class MemorySessionStore:
    """Process-local session store keyed by identifier, with absolute expiry."""

    def __init__(self, max_age_seconds: int) -> None:
        self.max_age_seconds = max_age_seconds
        self._sessions: dict[str, Session] = {}

    async def get(self, session_id: str) -> Session | None:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        if session.expires_at <= time.time():
            del self._sessions[session_id]
            return None
        return session

    async def set(self, session: Session) -> None:
        self._sessions[session.id] = session

    async def create(self) -> Session:
        now = time.time()
        session = Session(id=new_session_id(), created_at=now, expires_at=now + self.max_age_seconds)
        self._sessions[session.id] = session
        return session

    async def regenerate(self, session_id: str | None) -> Session:
        """Destroy session_id (if any) and return a fresh, unbound session."""
        if session_id is not None:
            self._sessions.pop(session_id, None)
        return await self.create()

    async def destroy(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)

    def purge_expired(self) -> int:
        """Remove every expired session. Returns the number removed."""
        now = time.time()
        expired = [sid for sid, s in self._sessions.items() if s.expires_at <= now]
        for sid in expired:
            del self._sessions[sid]
        return len(expired)

    def __len__(self) -> int:
        return len(self._sessions)


class SessionManager:
    """Reads and rotates the client's session through a signed cookie.

    Usage (inside a route):
        manager: SessionManager = request.app.state.sessions
        resp = RedirectResponse("/dashboard", status_code=302)
        await manager.authenticate(request, resp, account.id)
        return resp
    """

    def __init__(
        self,
        store: MemorySessionStore,
        secret_key: str,
        cookie_name: str = "session_id",
        max_age_seconds: int = 8 * 3600,
        secure: bool = False,
    ) -> None:
        self.store = store
        self.cookie_name = cookie_name
        self.max_age_seconds = max_age_seconds
        self.secure = secure
        self._signer = TimestampSigner(secret_key, salt="foliogate.session")

    # ------------------------------------------------------------------
    # Cookie helpers
    # ------------------------------------------------------------------

    def session_id_from(self, request: Request) -> str | None:
        """Return the verified identifier from the request cookie, or None."""
        raw = request.cookies.get(self.cookie_name)
        if not raw:
            return None
        try:
            return self._signer.unsign(raw, max_age=self.max_age_seconds).decode("utf-8")
        except BadSignature:
            # SignatureExpired is a subclass.
            logger.debug("Rejected session cookie with bad or expired signature")
            return None

    def cookie_value(self, session: Session) -> str:
        return self._signer.sign(session.id).decode("utf-8")

    def _set_cookie(self, response: Response, session: Session) -> None:
        response.set_cookie(
            self.cookie_name,
            value=self.cookie_value(session),
            httponly=True,
            samesite="lax",
            secure=self.secure,
            max_age=self.max_age_seconds,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def current(self, request: Request) -> Session | None:
        """Return the stored session for this request without changing anything."""
        session_id = self.session_id_from(request)
        if session_id is None:
            return None
        return await self.store.get(session_id)

    async def ensure(self, request: Request, response: Response) -> Session:
        """Return the current session, issuing an anonymous one if there is none."""
        session = await self.current(request)
        if session is None:
            session = await self.store.create()
            self._set_cookie(response, session)
        return session

    async def authenticate(self, request: Request, response: Response, account_id: int) -> Session:
        """Regenerate the identifier, then bind account_id to the new session."""
        previous_id = self.session_id_from(request)
        session = await self.store.regenerate(previous_id)
        session.account_id = account_id
        await self.store.set(session)
        self._set_cookie(response, session)
        return session

    async def destroy(self, request: Request, response: Response) -> None:
        session_id = self.session_id_from(request)
        if session_id is not None:
            await self.store.destroy(session_id)
        response.delete_cookie(self.cookie_name)
