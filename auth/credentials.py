"""
auth/credentials.py -- Username/password verification against the account store.

validate() classifies every attempt into the closed Outcome union:

  - unknown username            -> NoSuchUser
  - known username, bad secret  -> InvalidPassword
  - known username, good secret -> Success(account)
  - store raised                -> LookupFailed(error)

NoSuchUser and InvalidPassword stay distinct all the way to the caller so the
audit trail can name the precise reason. Whether the user sees the difference
is the web layer's policy, not this module's.

Timing: bcrypt runs against DUMMY_HASH when the username is unknown, so both
failure paths cost one bcrypt check. The check runs in the thread pool because
bcrypt's work factor would otherwise block the event loop.

This module records nothing; callers pass the outcome to the AuditLogger.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError
from starlette.concurrency import run_in_threadpool

from auth.outcomes import InvalidPassword, LookupFailed, NoSuchUser, Outcome, Success
from auth.passwords import DUMMY_HASH, verify_password
from auth.store import AccountStore

logger = logging.getLogger("foliogate.auth")


class CredentialValidator:
    def __init__(self, accounts: AccountStore) -> None:
        self._accounts = accounts

    async def validate(self, username: str, password: str) -> Outcome:
        """Classify a login attempt. Accepts arbitrary strings for both fields."""
        try:
            account = await self._accounts.find_by_username(username)
        except SQLAlchemyError as exc:
            logger.error("Account lookup failed for login attempt: %s", exc)
            return LookupFailed(exc)

        if account is None:
            await run_in_threadpool(verify_password, password, DUMMY_HASH)
            return NoSuchUser()
        if not await run_in_threadpool(verify_password, password, account.hashed_password):
            return InvalidPassword()
        return Success(account)
