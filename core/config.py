"""
core/config.py -- Centralized application configuration via pydantic-settings.

All environment variable reads happen here. No module should call os.getenv()
or os.environ.get() directly -- components receive a Settings instance at
construction time (see auth/context.py), and entry points obtain it from
get_settings().

Design patterns used:
  Singleton via lru_cache: get_settings() instantiates Settings once at first
      call and returns the cached instance on every subsequent call. This is
      the official FastAPI dependency injection pattern for config.

  BaseSettings (pydantic-settings): Reads values from environment variables
      and an optional .env file automatically. Field names map to env var names
      (e.g. secret_key -> SECRET_KEY). Type coercion and validation are built in.

  @model_validator(mode="after"): Runs cross-field validation after all fields
      are resolved from environment. Implements the SECRET_KEY policy: dev mode
      generates a random key with a warning, production mode refuses to start
      without one.

Security notes:
  [M6] SECRET_KEY shorter than 32 chars is rejected outright. JWT signing
       relies on key entropy -- a short key weakens it.

  [M7] In production mode (DEBUG not set or false), a missing SECRET_KEY is a
       hard startup failure. There is no literal fallback secret anywhere in
       the codebase.

  [M8] Well-known placeholder values ("changeme", "...change-in-production")
       are rejected even when long enough, so a copied sample .env cannot
       reach production.

Layer rule: core/ is the kernel. This module may not import from api/ or auth/.
"""

from __future__ import annotations

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.errors import ConfigError

logger = logging.getLogger("blogadmin.config")

_DATA_DIR = Path(__file__).resolve().parent.parent / "data"

# Substrings that mark a secret as a sample value rather than a real key [M8].
_PLACEHOLDER_MARKERS = ("changeme", "change-me", "change-in-production", "your-secret", "your-super-secret")

MIN_SECRET_LENGTH = 32


def secret_key_problem(secret_key: str) -> str | None:
    """Return a human-readable reason the signing key is unusable, or None if it is fine.

    Shared by Settings validation and TokenService construction so both apply
    exactly the same policy.
    """
    if not secret_key:
        return "SECRET_KEY is not set."
    if len(secret_key) < MIN_SECRET_LENGTH:
        return f"SECRET_KEY must be at least {MIN_SECRET_LENGTH} characters."
    lowered = secret_key.lower()
    if any(marker in lowered for marker in _PLACEHOLDER_MARKERS):
        return "SECRET_KEY is a placeholder value. Generate a real key."
    return None


class Settings(BaseSettings):
    """Application settings loaded from environment variables and .env file.

    All fields except secret_key have usable defaults. The model_validator
    enforces production-safety rules at startup.

    Environment variable name mapping: field names are uppercased automatically.
    E.g. `secret_key` reads from SECRET_KEY, `debug` reads from DEBUG.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # Empty string is the sentinel for "not configured". The model_validator
    # below either generates a dev key or raises, so callers never see "".
    secret_key: str = ""
    log_level: str = "INFO"

    # ------------------------------------------------------------------
    # Tokens and cookies
    # ------------------------------------------------------------------

    # Fixed session length. Tokens are not renewable; re-login after expiry.
    token_expire_seconds: int = 24 * 60 * 60
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------

    # Identities and password hashes live in separate databases so a leak of
    # one file does not expose the other.
    users_db_url: str = f"sqlite:///{_DATA_DIR / 'admin_users.db'}"
    credentials_db_url: str = f"sqlite:///{_DATA_DIR / 'admin_credentials.db'}"
    # Upper bound on waiting for a store lock or the SQLite busy handler.
    storage_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    bcrypt_rounds: int = 12
    min_password_length: int = 8

    # ------------------------------------------------------------------
    # First-run bootstrap
    # ------------------------------------------------------------------

    bootstrap_admin_username: str = "admin"
    bootstrap_admin_email: str = "admin@localhost"
    # Empty means "generate a random password and show it once".
    bootstrap_admin_password: str = ""

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Enforce SECRET_KEY policy [M6][M7][M8].

        Dev mode (DEBUG=true): auto-generate a random key with a warning.
            Sessions will not survive restart -- acceptable for local dev.

        Production mode (DEBUG=false or not set): refuse to start if
            SECRET_KEY is missing.

        Both modes: reject short keys and placeholder values.
        """
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("Using auto-generated SECRET_KEY. Sessions will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required in production mode. "
                    "Set SECRET_KEY in your environment or .env file. "
                    "To run in development mode, set DEBUG=true."
                )
        problem = secret_key_problem(self.secret_key)
        if problem:
            raise ValueError(problem)
        if self.bcrypt_rounds < 4 or self.bcrypt_rounds > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31.")
        if self.token_expire_seconds <= 0:
            raise ValueError("TOKEN_EXPIRE_SECONDS must be positive.")
        return self


def load_settings(**overrides) -> Settings:
    """Build a Settings instance, converting validation failures into ConfigError.

    Keyword overrides take precedence over the environment; tests and the CLI
    use them to point at throwaway databases.
    """
    try:
        return Settings(**overrides)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc


@lru_cache
def get_settings() -> Settings:
    """Return the application Settings singleton.

    Uses lru_cache so Settings() is instantiated exactly once -- at first call.
    Raises ConfigError if the environment is misconfigured; this is meant to
    happen at startup, not per request.

    In tests: call get_settings.cache_clear() between test cases if you need
    to inject different environment variables.
    """
    return load_settings()
