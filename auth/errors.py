"""
auth/errors.py -- Exceptions raised by the auth core toward the web layer.

Only unexpected failures are exceptions. Expected outcomes (unknown user,
wrong password, invalid signup field, duplicate username) are values that
routes render back into the form.
"""

from __future__ import annotations


class AccountLookupError(Exception):
    """The account store failed while serving a request.

    Routes raise this from the underlying driver error; the app-level handler
    turns it into a generic 500 page and logs the cause.
    """


class DuplicateUsernameError(Exception):
    """Signup collided with an existing username at insert time."""

    def __init__(self, username: str) -> None:
        super().__init__(f"username already exists: {username!r}")
        self.username = username
