"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores and services do the work.

User and Credential are separate types. A User is safe to hand to
any caller; a Credential (the bcrypt hash) never leaves auth/store.py and
auth/users.py, and has no API response model.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLE_ADMIN = "admin"
ROLE_EDITOR = "editor"
ROLES: frozenset[str] = frozenset({ROLE_ADMIN, ROLE_EDITOR})


@dataclass
class User:
    """An administrative identity for the blog back office.

    id is an opaque uuid4 hex string assigned by the lifecycle manager and
    never reused. username and email are unique and matched case-sensitively
    at login (either one may be typed into the username field).

    last_login is None until the first successful password login.
    """

    id: str
    username: str
    email: str
    role: str  # "admin" or "editor"
    created_at: str = ""
    last_login: str | None = None


@dataclass
class Credential:
    """The secret half of a user: exactly one per User, keyed by user_id."""

    user_id: str
    password_hash: str  # bcrypt, never plaintext


@dataclass
class Session:
    """Result of a successful login. Not persisted -- the token is the session."""

    user: User
    token: str
    expires_at: str  # ISO 8601 UTC, matches the token's exp claim


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a bearer token."""

    user_id: str
    role: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class BootstrapResult:
    """Outcome of first-run setup.

    generated_password is set only when created is True and no password was
    configured; it is the one chance to show it to the operator.
    """

    created: bool
    generated_password: str | None = None
