"""
auth/authenticator.py -- Password login and token verification.

These two methods are the whole contract the rest of the blog platform sees:

    session = authenticator.login(username, password)   # or AuthFailure
    user = authenticator.verify(token)                    # or None

Security:
  [C1] Timing equalization. login() always runs bcrypt, whether or not the
       username exists and whether or not it has a credential. An unknown
       user is checked against a dummy hash of the same cost, so response
       time does not reveal which usernames exist.

  [C2] Non-enumeration. Every failure path raises the same AuthFailure with
       the same message. The log line is equally uninformative.

  [C3] No side effects on failure. last_login is only written after the
       password matched.

  [C4] StorageError is never converted into AuthFailure. A store outage must
       look like an outage (503) to the caller, not like a wrong password.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from auth.models import Session, User
from auth.passwords import hash_password, verify_password
from auth.store import CredentialStore, UserDirectory
from auth.tokens import TokenService
from core.config import Settings
from core.errors import AuthFailure

logger = logging.getLogger("blogadmin.auth")


class Authenticator:
    """Turn (username, password) into a Session, and a token back into a User."""

    def __init__(
        self,
        directory: UserDirectory,
        credentials: CredentialStore,
        tokens: TokenService,
        settings: Settings,
    ) -> None:
        self._directory = directory
        self._credentials = credentials
        self._tokens = tokens
        # Same cost factor as real hashes so the dummy check takes as long [C1].
        self._dummy_hash = hash_password("blogadmin_timing_dummy", rounds=settings.bcrypt_rounds)

    def login(self, username: str, password: str) -> Session:
        """Authenticate by username or email (exact match) and password.

        Returns a Session on success. Raises AuthFailure on any credential
        problem and StorageError if a store is unavailable.
        """
        if not isinstance(username, str) or not isinstance(password, str):
            verify_password("", self._dummy_hash)
            raise AuthFailure()

        user = self._directory.find_by_username_or_email(username)
        stored_hash = self._credentials.get(user.id) if user is not None else None
        if user is None or stored_hash is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            verify_password(password, self._dummy_hash)
            logger.info("Login rejected")
            raise AuthFailure()
        if not verify_password(password, stored_hash):
            logger.info("Login rejected")
            raise AuthFailure()

        now = datetime.now(timezone.utc).isoformat()
        if not self._directory.touch_last_login(user.id, now):
            # Deleted between lookup and now; its token would never verify.
            raise AuthFailure()
        issued = self._tokens.issue(user.id, user.role)
        user.last_login = now
        logger.info("Login succeeded for user %s (%s)", user.id, user.role)
        return Session(user=user, token=issued.token, expires_at=issued.expires_at.isoformat())

    def verify(self, token: str) -> User | None:
        """Return the User a token belongs to, or None if the token is not valid.

        A structurally valid, unexpired token whose user has since been
        deleted is rejected. The returned User is read fresh from the
        directory, so its role is always current -- callers re-check role on
        every request rather than trusting the role claim.
        """
        claims = self._tokens.verify(token)
        if claims is None:
            return None
        return self._directory.find_by_id(claims.user_id)
