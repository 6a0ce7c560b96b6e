"""
auth/passwords.py -- Password hashing and verification.

bcrypt is used directly (no passlib wrapper). The work factor comes from
Settings.bcrypt_rounds (12 in production); the salt and cost are embedded in
the hash string, so verification needs nothing but the stored value.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import bcrypt

from core.config import get_settings

_settings = get_settings()

# bcrypt only consumes the first 72 bytes of its input.
_BCRYPT_MAX_BYTES = 72


def _encode(plain: str) -> bytes:
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_encode(plain), bcrypt.gensalt(rounds=_settings.bcrypt_rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    A malformed stored hash makes bcrypt raise ValueError. That is an internal
    fault, not a wrong password, so it is left to propagate.
    """
    return bcrypt.checkpw(_encode(plain), hashed.encode("utf-8"))
