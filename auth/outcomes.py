"""
auth/outcomes.py -- Closed result type for credential validation.

CredentialValidator.validate() returns exactly one of these four variants.
Callers branch with isinstance() and never inspect error flags:

    outcome = await validator.validate(username, password)
    if isinstance(outcome, Success):
        ...  # outcome.account
    elif isinstance(outcome, LookupFailed):
        raise AccountLookupError(...) from outcome.error

LookupFailed is not a login attempt outcome; it is a failure to classify one,
so it never reaches the audit trail.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from auth.models import Account


@dataclass(frozen=True)
class Success:
    account: Account


@dataclass(frozen=True)
class NoSuchUser:
    pass


@dataclass(frozen=True)
class InvalidPassword:
    pass


@dataclass(frozen=True)
class LookupFailed:
    """The account store could not be queried. Fatal for the request, not retried."""

    error: Exception


Outcome = Union[Success, NoSuchUser, InvalidPassword, LookupFailed]
