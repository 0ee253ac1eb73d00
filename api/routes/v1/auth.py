"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /api/v1/auth/login           -- password login; sets JWT cookie
  POST   /api/v1/auth/logout          -- clears cookie; 200
  GET    /api/v1/auth/me              -- current user info (requires auth)
  POST   /api/v1/auth/me/password     -- change own password (requires auth + old password)
  GET    /api/v1/auth/users           -- list all users (admin only)
  POST   /api/v1/auth/users           -- create user (admin only)
  DELETE /api/v1/auth/users/{id}      -- delete user (admin only, never the last admin)

Security:
  [C1] Authenticator.login() provides timing equalization -- use it, never inline
       a directory lookup + verify_password().
  [C2] Wrong username, wrong password, and missing credential all produce the
       same 401 body.
  [M5] Cache-Control: no-store on login responses.

Handlers that touch the stores or bcrypt are plain `def` so Starlette runs
them in its threadpool; they block on I/O and CPU, not on the event loop.
Domain errors (ConflictError, NotFoundError, InvariantViolation,
PasswordPolicyError, StorageError) are rendered by the AuthError handler in
api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response
from fastapi.responses import JSONResponse

from api.models import LoginRequest, LoginResponse, PasswordChange, UserCreate, UserResponse
from auth.context import AuthContext
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from auth.tokens import set_auth_cookie
from core.errors import AuthFailure

# Auth policy:
# - POST   /api/v1/auth/login:          public -- login endpoint must be unauthenticated
# - POST   /api/v1/auth/logout:         public -- clearing a cookie needs no prior auth
# - GET    /api/v1/auth/me:             requires auth (get_current_user)
# - POST   /api/v1/auth/me/password:    requires auth (get_current_user) + old password
# - GET    /api/v1/auth/users:          requires admin (require_admin)
# - POST   /api/v1/auth/users:          requires admin (require_admin)
# - DELETE /api/v1/auth/users/{id}:     requires admin (require_admin)
router = APIRouter()

_INVALID_CREDENTIALS = {"error": {"code": "invalid_credentials", "message": "Invalid credentials."}}


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username (or email) and password; set JWT cookie.

    Returns the same generic error for every failure cause so the response
    never reveals whether a username exists.
    """
    auth: AuthContext = request.app.state.auth
    try:
        session = auth.authenticator.login(body.username, body.password)
    except AuthFailure:
        resp = JSONResponse(status_code=401, content=_INVALID_CREDENTIALS)
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=session.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_at=session.expires_at,
            user=UserResponse.from_user(session.user),
        ).model_dump(),
    )
    set_auth_cookie(
        resp,
        session.token,
        max_age=auth.settings.token_expire_seconds,
        secure=auth.settings.secure_cookies,
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the JWT cookie.

    Tokens are stateless, so this only removes the browser's copy; a token
    copied elsewhere stays valid until it expires.
    """
    resp = JSONResponse(content={"message": "Logged out."})
    resp.delete_cookie("access_token", path="/")
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(get_current_user)) -> UserResponse:
    """Return identity information for the currently authenticated user."""
    return UserResponse.from_user(current_user)


@router.post("/auth/me/password", status_code=204)
def change_password(
    request: Request,
    body: PasswordChange,
    current_user: User = Depends(get_current_user),
) -> Response:
    """Change the caller's own password. The old password is always re-checked."""
    auth: AuthContext = request.app.state.auth
    try:
        auth.users.change_password(current_user.id, body.old_password, body.new_password)
    except AuthFailure:
        return JSONResponse(status_code=401, content=_INVALID_CREDENTIALS)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# User management (admin only)
# ---------------------------------------------------------------------------


@router.get("/auth/users", response_model=list[UserResponse])
def list_users(
    request: Request,
    current_user: User = Depends(require_admin),
) -> list[UserResponse]:
    """List all user accounts. Admin only."""
    auth: AuthContext = request.app.state.auth
    return [UserResponse.from_user(u) for u in auth.users.list_users(current_user)]


@router.post("/auth/users", response_model=UserResponse, status_code=201)
def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Create a new user account with a password. Admin only.

    409 if the username or email is already in use (as either field).
    """
    auth: AuthContext = request.app.state.auth
    created = auth.users.create_user(
        current_user,
        username=body.username,
        email=body.email,
        password=body.password,
        role=body.role.value,
    )
    return UserResponse.from_user(created)


@router.delete("/auth/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    current_user: User = Depends(require_admin),
) -> Response:
    """Delete a user account and its credential. Admin only.

    404 if the user does not exist; 400 (last_admin) if it is the only admin.
    """
    auth: AuthContext = request.app.state.auth
    auth.users.delete_user(current_user, user_id)
    return Response(status_code=204)
