"""
tests/conftest.py -- Shared test fixtures for the blog admin auth tests.

This module provides:
  - settings:     Settings pointing at throwaway SQLite files under tmp_path
  - auth_context: a fully wired AuthContext (stores, tokens, authenticator, users)
  - admin:        the bootstrapped default admin (password "admin123")
  - api_client:   TestClient with a patched lifespan and an admin bearer token

Design: each test gets its own database files. File-backed SQLite (not
shared-cache :memory:) is required because TestClient and the concurrency
tests run store calls from several threads, and shared-cache memory
databases report "database table is locked" under concurrent writers.

bcrypt_rounds=4 is the minimum cost bcrypt accepts and keeps the suite fast.

The DEBUG env var must be set before any core/auth import so a stray
get_settings() call auto-generates SECRET_KEY instead of raising ConfigError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from pathlib import Path

# CRITICAL: Set DEBUG before any auth/core import.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.main import app, init_auth
from auth.context import AuthContext, build_auth_context
from auth.models import User
from core.config import Settings, load_settings

TEST_SECRET = "test-signing-key-0123456789abcdef0123456789abcdef"
ADMIN_PASSWORD = "admin123"


def make_settings(db_dir: Path, **overrides) -> Settings:
    """Build Settings for an isolated pair of databases under db_dir."""
    values = {
        "secret_key": TEST_SECRET,
        "users_db_url": f"sqlite:///{db_dir / 'users.db'}",
        "credentials_db_url": f"sqlite:///{db_dir / 'credentials.db'}",
        "bcrypt_rounds": 4,
        "storage_timeout_seconds": 5.0,
        "bootstrap_admin_password": ADMIN_PASSWORD,
    }
    values.update(overrides)
    return load_settings(**values)


def _patch_lifespan(auth: AuthContext):
    """Return an async context manager that replaces the real lifespan.

    Runs the same init_auth() wiring as production (bootstrap included) but
    against the test's AuthContext instead of get_settings().
    """

    @asynccontextmanager
    async def test_lifespan(app):
        init_auth(app, auth)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return make_settings(tmp_path)


@pytest.fixture
def auth_context(settings: Settings) -> Generator[AuthContext, None, None]:
    ctx = build_auth_context(settings)
    yield ctx
    ctx.close()


@pytest.fixture
def admin(auth_context: AuthContext) -> User:
    """Bootstrap the default admin and return its User record."""
    auth_context.users.bootstrap()
    user = auth_context.directory.find_by_username_or_email("admin")
    assert user is not None
    return user


@pytest.fixture
def editor(auth_context: AuthContext, admin: User) -> User:
    """An editor account "ed" / "ed@x.com" with password "pw123456"."""
    return auth_context.users.create_user(admin, "ed", "ed@x.com", "pw123456", "editor")


# ---------------------------------------------------------------------------
# HTTP fixture
# ---------------------------------------------------------------------------


@pytest.fixture
def api_client(auth_context: AuthContext) -> Generator[tuple[TestClient, str, AuthContext], None, None]:
    """Yield (client, admin_token, auth_context) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers, dependencies and exception handlers but use the
    per-test databases. The lifespan bootstraps admin/admin123; the returned
    token is a bearer token for that admin.
    """
    app.router.lifespan_context = _patch_lifespan(auth_context)

    with TestClient(app, raise_server_exceptions=True) as client:
        admin = auth_context.directory.find_by_username_or_email("admin")
        token = auth_context.tokens.issue(admin.id, admin.role).token
        yield client, token, auth_context
