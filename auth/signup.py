"""
auth/signup.py -- Field validation for the signup form.

Pure function, no I/O. Rules run in a fixed order and stop at the first
failure; only that field's message is set and every other field stays "".

  1. username     .{1,20}
  2. first_name   .{1,100}
  3. last_name    .{1,100}
  4. password     .{1,20}
  5. verify       must equal password exactly
  6. email        \\S+@\\S+\\.\\S+ when non-empty; empty is allowed

The password rule is deliberately the weak one the product documents. Do not
tighten it here without changing the documented contract and its tests.

"." never matches a newline, and fullmatch() anchors both ends, so a value
with an embedded or trailing newline fails its length rule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

USERNAME_RE = re.compile(r".{1,20}")
FIRST_NAME_RE = re.compile(r".{1,100}")
LAST_NAME_RE = re.compile(r".{1,100}")
PASSWORD_RE = re.compile(r".{1,20}")
EMAIL_RE = re.compile(r"\S+@\S+\.\S+")

FIELDS = ("username", "first_name", "last_name", "password", "verify", "email")

USERNAME_ERROR = "Invalid user name."
FIRST_NAME_ERROR = "Invalid first name."
LAST_NAME_ERROR = "Invalid last name."
PASSWORD_ERROR = "Password must be 1 to 20 characters."
VERIFY_ERROR = "Password must match"
EMAIL_ERROR = "Invalid email address"
DUPLICATE_USERNAME_ERROR = "User name already in use. Please choose another"


@dataclass
class SignupForm:
    username: str = ""
    first_name: str = ""
    last_name: str = ""
    password: str = ""
    verify: str = ""
    email: str = ""


@dataclass
class SignupResult:
    ok: bool
    errors: dict[str, str] = field(default_factory=lambda: {name: "" for name in FIELDS})

    @property
    def failed_field(self) -> str | None:
        for name in FIELDS:
            if self.errors.get(name):
                return name
        return None


def validate_signup(form: SignupForm) -> SignupResult:
    """Check form against the six field rules. ok is True only if all pass."""
    result = SignupResult(ok=False)

    if not USERNAME_RE.fullmatch(form.username):
        result.errors["username"] = USERNAME_ERROR
        return result
    if not FIRST_NAME_RE.fullmatch(form.first_name):
        result.errors["first_name"] = FIRST_NAME_ERROR
        return result
    if not LAST_NAME_RE.fullmatch(form.last_name):
        result.errors["last_name"] = LAST_NAME_ERROR
        return result
    if not PASSWORD_RE.fullmatch(form.password):
        result.errors["password"] = PASSWORD_ERROR
        return result
    if form.password != form.verify:
        result.errors["verify"] = VERIFY_ERROR
        return result
    if form.email != "" and not EMAIL_RE.fullmatch(form.email):
        result.errors["email"] = EMAIL_ERROR
        return result

    result.ok = True
    return result
