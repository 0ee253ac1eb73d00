"""
auth/users.py -- User lifecycle: create, delete, change password, bootstrap.

Authorization:
  Every administrative method takes the verified caller (`actor`) and raises
  PermissionDenied unless actor.role == "admin". The HTTP layer also gates
  these routes with require_admin(); the check here means no other caller
  (CLI, future jobs) can skip it by accident.

Invariants kept here:
  [L1] One credential per user. create_user() writes the User first, then the
       Credential, and removes the User again if the Credential write fails.
       delete_user() removes the Credential, then the User, and restores the
       Credential if the User removal fails.
  [L2] At least one admin. delete_user() counts admins and deletes while
       holding the directory's exclusive lock, so two concurrent deletes of
       the last two admins cannot both pass the check.
  [L3] change_password() always re-verifies the old password, and does the
       check and the replace under the credential store lock.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import logging
import uuid

from auth.models import ROLE_ADMIN, ROLES, BootstrapResult, User
from auth.passwords import check_password_policy, generate_password, hash_password, verify_password
from auth.store import CredentialStore, UserDirectory
from core.config import Settings
from core.errors import AuthFailure, InvariantViolation, NotFoundError, PermissionDenied, StorageError

logger = logging.getLogger("blogadmin.auth")


class UserManager:
    """Administrative user management on top of UserDirectory + CredentialStore."""

    def __init__(self, directory: UserDirectory, credentials: CredentialStore, settings: Settings) -> None:
        self._directory = directory
        self._credentials = credentials
        self._settings = settings

    # ------------------------------------------------------------------
    # Admin operations
    # ------------------------------------------------------------------

    def list_users(self, actor: User) -> list[User]:
        _require_admin(actor)
        return self._directory.list_all()

    def create_user(self, actor: User, username: str, email: str, password: str, role: str) -> User:
        """Create a user with a password. Admin only.

        Raises:
            PermissionDenied:    actor is not an admin.
            ValueError:          unknown role or blank username/email.
            PasswordPolicyError: password too short or too long.
            ConflictError:       username or email already in use.
            StorageError:        a store is unavailable (nothing is left half-written).
        """
        _require_admin(actor)
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}; expected one of {sorted(ROLES)}.")
        if not username or not email:
            raise ValueError("Username and email are required.")
        check_password_policy(password, self._settings.min_password_length)

        # Hash outside any lock -- bcrypt is the slow part.
        password_hash = hash_password(password, rounds=self._settings.bcrypt_rounds)
        user = self._directory.insert(
            User(id=uuid.uuid4().hex, username=username, email=email, role=role)
        )
        try:
            self._credentials.set(user.id, password_hash)
        except StorageError:
            logger.error("Credential write failed for new user %s; rolling back user record", user.id)
            self._directory.remove(user.id)
            raise
        logger.info("User %s (%s) created by %s", user.id, role, actor.id)
        return user

    def delete_user(self, actor: User, user_id: str) -> None:
        """Delete a user and its credential. Admin only.

        Raises NotFoundError if the user does not exist and InvariantViolation
        if it is the only remaining admin [L2].
        """
        _require_admin(actor)
        with self._directory.exclusive():
            target = self._directory.find_by_id(user_id)
            if target is None:
                raise NotFoundError()
            if target.role == ROLE_ADMIN and self._directory.count_admins() <= 1:
                raise InvariantViolation()

            old_hash = self._credentials.get(user_id)
            self._credentials.remove(user_id)
            try:
                self._directory.remove(user_id)
            except StorageError:
                if old_hash is not None:
                    self._credentials.set(user_id, old_hash)
                raise
        logger.info("User %s deleted by %s", user_id, actor.id)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def change_password(self, user_id: str, old_password: str, new_password: str) -> None:
        """Replace a user's password after re-verifying the old one [L3].

        Raises AuthFailure if the user is unknown or old_password is wrong,
        PasswordPolicyError if new_password is not acceptable.

        The stored hash is read, checked and replaced under the credential
        store's lock, so two changes presenting the same old password cannot
        both succeed.
        """
        check_password_policy(new_password, self._settings.min_password_length)
        new_hash = hash_password(new_password, rounds=self._settings.bcrypt_rounds)
        user = self._directory.find_by_id(user_id)
        with self._credentials.exclusive():
            stored_hash = self._credentials.get(user_id) if user is not None else None
            if stored_hash is None or not verify_password(old_password, stored_hash):
                raise AuthFailure()
            self._credentials.set(user_id, new_hash)
        logger.info("Password changed for user %s", user_id)

    # ------------------------------------------------------------------
    # Operator-only (CLI, requires direct store access)
    # ------------------------------------------------------------------

    def reset_password(self, user_id: str, new_password: str) -> None:
        """Overwrite a user's password without the old one.

        Not reachable over HTTP. This is the recovery path for an operator
        who has shell access to the databases and has lost the admin password.
        """
        check_password_policy(new_password, self._settings.min_password_length)
        new_hash = hash_password(new_password, rounds=self._settings.bcrypt_rounds)
        if self._directory.find_by_id(user_id) is None:
            raise NotFoundError()
        with self._credentials.exclusive():
            self._credentials.set(user_id, new_hash)
        logger.warning("Password for user %s reset by operator", user_id)

    def bootstrap(self) -> BootstrapResult:
        """Create the default admin on first run.

        Uses BOOTSTRAP_ADMIN_PASSWORD when set; otherwise generates a random
        password. The result says whether anything was created (another process
        may have initialized the stores first) and carries the generated
        plaintext, if any, so the caller can show it exactly once.

        The account is insecure until its password is changed: an
        operator-supplied bootstrap password sits in the environment, and a
        generated one has been printed to a console or log.
        """
        if self._credentials.has_any():
            return BootstrapResult(created=False)

        password = self._settings.bootstrap_admin_password
        generated = None
        if not password:
            password = generated = generate_password()
        check_password_policy(password, self._settings.min_password_length)

        admin = User(
            id=uuid.uuid4().hex,
            username=self._settings.bootstrap_admin_username,
            email=self._settings.bootstrap_admin_email,
            role=ROLE_ADMIN,
        )
        created = self._credentials.bootstrap(
            self._directory, admin, hash_password(password, rounds=self._settings.bcrypt_rounds)
        )
        if not created:
            return BootstrapResult(created=False)
        logger.warning(
            "Default admin account %r created. It is insecure until its password is changed.",
            admin.username,
        )
        return BootstrapResult(created=True, generated_password=generated)


def _require_admin(actor: User) -> None:
    if actor is None or actor.role != ROLE_ADMIN:
        raise PermissionDenied()
