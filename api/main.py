"""
api/main.py -- FastAPI application entry point for the blog admin auth core.

Run with:      uvicorn api.main:app --reload

Middleware stack (outermost to innermost):
  1. CORSMiddleware       -- adds CORS headers for the admin UI origins
  2. log_requests         -- method, path, status, latency for every request

Lifespan handles startup (settings, stores, first-run admin bootstrap) and
shutdown (dispose DB engines) symmetrically. A bad SECRET_KEY raises
ConfigError during startup and the server never begins accepting requests.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.context import AuthContext, build_auth_context
from core.config import get_settings
from core.errors import (
    AuthError,
    AuthFailure,
    ConfigError,
    ConflictError,
    InvariantViolation,
    NotFoundError,
    PasswordPolicyError,
    PermissionDenied,
    StorageError,
)

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("blogadmin.api")


def init_auth(app: FastAPI, auth: AuthContext) -> None:
    """Attach an AuthContext to the app and run first-run bootstrap.

    Split out of lifespan so tests can wire their own context (temporary
    databases, fast bcrypt rounds) through the same code path.
    """
    result = auth.users.bootstrap()
    if result.generated_password is not None:
        # Shown once. The operator must log in and change it.
        logger.warning(
            "Generated password for default admin %r: %s -- change it after first login.",
            auth.settings.bootstrap_admin_username,
            result.generated_password,
        )
    app.state.auth = auth


# ---------------------------------------------------------------------------
# Lifespan -- modern startup / shutdown pattern (replaces @app.on_event)
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Manage application-level resources across the full server lifetime.

    Everything before yield runs on startup; everything after yield runs on
    shutdown.

    Startup order matters:
      1. Settings first -- ConfigError here aborts before any file is touched.
      2. Auth context second -- validates the signing key, opens both stores.
      3. Bootstrap last -- needs both stores.
    """
    logger.info("Blog admin API starting up")
    settings = get_settings()
    logging.getLogger("blogadmin").setLevel(settings.log_level.upper())
    auth = build_auth_context(settings)
    init_auth(app, auth)
    logger.info("Auth initialized")

    yield

    auth.close()
    logger.info("Blog admin API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Blog Admin Auth API",
    description="Administrative authentication and user management for the blog back office.",
    version=VERSION,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost", "http://localhost:3000", "http://127.0.0.1"],
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Every request passes through this coroutine before reaching any route
# handler. We capture wall-clock time before and after call_next so we can
# report latency on every response. Headers and bodies are never logged:
# they carry passwords and tokens.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------

_STATUS_BY_ERROR: dict[type[AuthError], int] = {
    AuthFailure: 401,
    PermissionDenied: 403,
    NotFoundError: 404,
    ConflictError: 409,
    InvariantViolation: 400,
    PasswordPolicyError: 422,
    StorageError: 503,
    ConfigError: 500,
}


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render domain errors from the auth core.

    AuthFailure always gets the fixed generic message. StorageError is
    logged and reported as 503 so callers can tell "store unavailable" apart
    from "not authenticated".
    """
    status_code = _STATUS_BY_ERROR.get(type(exc), 500)
    message = exc.message
    if isinstance(exc, AuthFailure):
        message = "Invalid credentials."
    elif isinstance(exc, StorageError):
        logger.error("Storage unavailable on %s %s: %s", request.method, request.url.path, exc.message)
    elif status_code >= 500:
        logger.error("Auth error on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=exc.code, message=message)).model_dump(),
    )


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 with structured error when request body or query params fail validation.

    Only field locations and messages are echoed back, never the submitted
    values (which may be passwords).
    """
    problems = "; ".join(f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg', '')}" for e in exc.errors())
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Request validation failed.",
                detail=problems,
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route dependencies raise HTTPException with detail={"code", "message"}.
    When detail is already a structured dict, use it directly as the error
    field rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The raw exception goes to the log only, never to the response body.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="An unexpected error occurred.",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable
# regardless of router registration state. Reports each store separately:
# an empty store is "ok", an unreadable one is "error".
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Return API liveness, current version, and store reachability."""
    auth: AuthContext = request.app.state.auth
    components = {"app": "ok"}
    checks = {
        "users_db": auth.directory.is_empty,
        "credentials_db": auth.credentials.has_any,
    }
    for name, check in checks.items():
        try:
            check()
            components[name] = "ok"
        except StorageError:
            components[name] = "error"
    status = "healthy" if all(v == "ok" for v in components.values()) else "degraded"
    return HealthResponse(status=status, version=VERSION, components=components)
