"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, no I/O). Stores and routes do the
work; these classes own the domain shape.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_ADMIN = "admin"
ROLE_USER = "user"


@dataclass
class Account:
    """A registered user of the portfolio application.

    hashed_password is opaque to the auth core; only auth.passwords can
    check a plaintext against it. email is optional and stored as "" when
    the user left it blank at signup.
    """

    username: str
    first_name: str
    last_name: str
    hashed_password: str
    email: str = ""
    role: str = ROLE_USER  # "admin" or "user"
    id: int | None = None
    created_at: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass
class Allocation:
    """Percentage split of an account's portfolio. Components sum to 100."""

    account_id: int
    stocks: int
    funds: int
    bonds: int
