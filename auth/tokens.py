"""
auth/tokens.py -- Stateless bearer tokens (JWT).

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       the user id (sub), role, issue time (iat) and expiry (exp). There is no
       server-side session table: a token is valid exactly as long as its
       signature checks out, its exp is in the future, and its user still
       exists (the last check lives in Authenticator.verify).

  Verification never raises. Token text comes from untrusted cookies and
       headers, so every failure -- bad signature, expired, garbage, missing
       claims -- collapses into None. Callers treat None as unauthenticated
       and must not tell the client why.

  SECRET_KEY: passed in through Settings at construction. TokenService
       re-checks it with the same policy as core.config and raises ConfigError
       if it is unusable, so a hand-built Settings cannot bypass validation.

  Expiry is fixed at issue time. There is no refresh: after exp the user
       logs in again.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import ROLES, IssuedToken, TokenClaims
from core.config import Settings, secret_key_problem
from core.errors import ConfigError

logger = logging.getLogger("blogadmin.auth")

_ALGORITHM = "HS256"


class TokenService:
    """Issue and verify signed, time-bounded bearer tokens.

    Usage:
        tokens = TokenService(settings)
        issued = tokens.issue(user.id, user.role)
        claims = tokens.verify(issued.token)   # TokenClaims or None
    """

    def __init__(self, settings: Settings) -> None:
        problem = secret_key_problem(settings.secret_key)
        if problem:
            raise ConfigError(problem)
        self._secret_key = settings.secret_key
        self.default_ttl = settings.token_expire_seconds

    def issue(self, user_id: str, role: str, ttl_seconds: int | None = None) -> IssuedToken:
        """Encode a signed JWT for user_id/role.

        Args:
            user_id:     Opaque user id, stored as the JWT subject.
            role:        "admin" or "editor".
            ttl_seconds: Lifetime in seconds. None uses Settings.token_expire_seconds.
                         A negative value mints an already-expired token
                         (useful only for tests).
        """
        duration = self.default_ttl if ttl_seconds is None else ttl_seconds
        issued_at = datetime.now(timezone.utc).replace(microsecond=0)
        expires_at = issued_at + timedelta(seconds=duration)
        payload = {
            "sub": user_id,
            "role": role,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        return IssuedToken(token=token, expires_at=expires_at)

    def verify(self, token: str) -> TokenClaims | None:
        """Decode and verify a JWT. Returns TokenClaims, or None on any failure.

        Check order: signature, then expiry (both inside jwt.decode, which
        rejects a token once now is past exp), then claim structure. Strings that
        cannot be UTF-8 encoded (lone surrogates) fail inside jose with
        UnicodeError rather than JWTError.
        """
        if not isinstance(token, str) or not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except (JWTError, UnicodeError):
            return None

        user_id = payload.get("sub")
        role = payload.get("role")
        iat = payload.get("iat")
        exp = payload.get("exp")
        if not isinstance(user_id, str) or not user_id:
            return None
        if role not in ROLES:
            return None
        if not isinstance(iat, (int, float)) or not isinstance(exp, (int, float)):
            return None
        return TokenClaims(
            user_id=user_id,
            role=role,
            issued_at=datetime.fromtimestamp(iat, tz=timezone.utc),
            expires_at=datetime.fromtimestamp(exp, tz=timezone.utc),
        )


# ---------------------------------------------------------------------------
# Cookie helper
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, max_age: int, secure: bool) -> None:
    """Write the JWT access token as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="lax": cookie sent on same-site navigations and GET cross-site
        links, but not on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the JWT expiry so both expire together.
    """
    response.set_cookie(
        "access_token",
        value=token,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
        path="/",
    )
