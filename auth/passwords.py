"""
auth/passwords.py -- bcrypt password hashing and password policy.

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error. Direct bcrypt usage is simpler, has no
compatibility shim, and is actively maintained.

bcrypt only looks at the first 72 bytes of its input (newer releases refuse
longer input outright). check_password_policy() rejects such passwords up
front so two different long passwords can never share a hash.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import secrets

import bcrypt

from core.errors import PasswordPolicyError

BCRYPT_MAX_BYTES = 72


def hash_password(plain: str, rounds: int = 12) -> str:
    """Return a salted bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    bcrypt.checkpw compares in constant time. Malformed hashes and over-long
    inputs are reported as a mismatch rather than raised: the input comes
    straight from a login form.
    """
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


def check_password_policy(plain: str, min_length: int) -> None:
    """Raise PasswordPolicyError unless the password is acceptable."""
    if len(plain) < min_length:
        raise PasswordPolicyError(f"Password must be at least {min_length} characters.")
    if len(plain.encode("utf-8")) > BCRYPT_MAX_BYTES:
        raise PasswordPolicyError(f"Password must be at most {BCRYPT_MAX_BYTES} bytes.")


def generate_password() -> str:
    """Return a random password for first-run bootstrap (about 128 bits of entropy)."""
    return secrets.token_urlsafe(16)
