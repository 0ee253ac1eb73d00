"""
auth/context.py -- Build the auth components from one Settings instance.

Pattern: Composition root. Each component gets its collaborators and the
Settings object through its constructor; nothing reads configuration or opens
a database at import time. The FastAPI lifespan (api/main.py) and the CLI
(main.py) both call build_auth_context() and close() symmetrically.

Exactly one AuthContext should exist per process and database pair: the
per-store writer locks live on the store instances.
"""

from __future__ import annotations

from dataclasses import dataclass

from auth.authenticator import Authenticator
from auth.store import CredentialStore, UserDirectory
from auth.tokens import TokenService
from auth.users import UserManager
from core.config import Settings


@dataclass
class AuthContext:
    settings: Settings
    directory: UserDirectory
    credentials: CredentialStore
    tokens: TokenService
    authenticator: Authenticator
    users: UserManager

    def close(self) -> None:
        self.directory.close()
        self.credentials.close()


def build_auth_context(settings: Settings) -> AuthContext:
    """Construct every auth component. Raises ConfigError or StorageError on bad setup."""
    # TokenService first: a bad SECRET_KEY should fail before any DB file is created.
    tokens = TokenService(settings)
    directory = UserDirectory(settings.users_db_url, timeout=settings.storage_timeout_seconds)
    credentials = CredentialStore(settings.credentials_db_url, timeout=settings.storage_timeout_seconds)
    return AuthContext(
        settings=settings,
        directory=directory,
        credentials=credentials,
        tokens=tokens,
        authenticator=Authenticator(directory, credentials, tokens, settings),
        users=UserManager(directory, credentials, settings),
    )
