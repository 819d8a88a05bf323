"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly rather than through passlib. bcrypt only reads the
first 72 bytes of its input, and a 20-character password can be 80 UTF-8
bytes, so the password is first reduced to a SHA-256 digest, base64-encoded
(44 bytes), and that is what bcrypt hashes and checks. Every character of
the password counts.

DUMMY_HASH lets the credential validator spend the same bcrypt work on an
unknown username as on a known one, so response time does not reveal which
accounts exist.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import base64
import hashlib

import bcrypt


def _prehash(plain: str) -> bytes:
    return base64.b64encode(hashlib.sha256(plain.encode("utf-8")).digest())


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_prehash(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_prehash(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash.
        return False


DUMMY_HASH: str = hash_password("foliogate_timing_dummy")
