"""
core/errors.py -- Exception taxonomy for the admin auth core.

Every error carries a stable machine-readable `code`. The HTTP layer maps
each class to exactly one status code (api/main.py); nothing else in the
codebase inspects messages.

Propagation policy:
  AuthFailure          -- always recovered into a uniform "unauthenticated"
                          response. The message never says which check failed.
  ConflictError,
  NotFoundError,
  InvariantViolation,
  PermissionDenied,
  PasswordPolicyError  -- actionable 4xx outcomes for the calling layer.
  StorageError         -- propagates. Must never be read as an auth failure:
                          "store unavailable" is not "no such user".
  ConfigError          -- fatal at startup, never raised per request.

Layer rule: core/ is the kernel. No imports from api/ or auth/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every error raised by the auth core."""

    code: str = "auth_error"

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = str(self.args[0])


class AuthFailure(AuthError):
    """Invalid credentials."""

    code = "invalid_credentials"


class ConflictError(AuthError):
    """A user with that username or email already exists."""

    code = "conflict"


class NotFoundError(AuthError):
    """User not found."""

    code = "not_found"


class InvariantViolation(AuthError):
    """Cannot remove the last admin account."""

    code = "last_admin"


class PermissionDenied(AuthError):
    """Admin access required."""

    code = "forbidden"


class PasswordPolicyError(AuthError):
    """Password does not meet the password policy."""

    code = "password_policy"


class StorageError(AuthError):
    """The credential or user store is unavailable."""

    code = "storage_unavailable"


class ConfigError(AuthError):
    """Invalid or missing configuration."""

    code = "config_error"
