"""
api/routes/v1/auth.py -- Session endpoints: login, register, logout.

Routes:
  POST /api/v1/login     -- password login; returns token + user + permissions
  POST /api/v1/register  -- create account; returns token + user
  POST /api/v1/logout    -- revoke the presented token (requires auth)

Security:
  [C1] AuthService.login() provides timing equalization -- use it, never inline
       find_by_username_or_email() + verify().
  [M5] Cache-Control: no-store on responses that carry a token.

login and register are plain `def` endpoints: bcrypt runs in FastAPI's
thread pool instead of blocking the event loop.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import ApiResponse, LoginData, LoginRequest, RegisterData, RegisterRequest, UserOut
from auth.dependencies import get_identity
from auth.models import Identity
from auth.service import AuthService

# Auth policy:
# - POST /api/v1/login:     public (PUBLIC_PATHS)
# - POST /api/v1/register:  public (PUBLIC_PATHS)
# - POST /api/v1/logout:    requires auth (get_identity)
router = APIRouter()


def _no_store(payload: ApiResponse) -> JSONResponse:
    resp = JSONResponse(status_code=payload.code, content=payload.model_dump())
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/login", response_model=ApiResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username-or-email and password.

    Wrong username and wrong password produce the same 401 message so the
    response never discloses which field was wrong. Banned or inactive
    accounts get a 403 with a status-specific message.
    """
    service: AuthService = request.app.state.auth_service
    result = service.login(body.username_or_email, body.password)
    return _no_store(
        ApiResponse(
            msg="Login successful.",
            data=LoginData(
                token=result.token,
                expires_in=result.expires_in,
                user=UserOut.from_user(result.user),
                permissions=result.permissions.as_list(),
            ).model_dump(),
        )
    )


@router.post("/register", response_model=ApiResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account. Duplicate username or email is a 400 naming the clash."""
    service: AuthService = request.app.state.auth_service
    result = service.register(body.username, body.email, body.password, body.role)
    return _no_store(
        ApiResponse(
            msg="Registration successful.",
            data=RegisterData(
                token=result.token,
                expires_in=result.expires_in,
                user=UserOut.from_user(result.user),
            ).model_dump(),
        )
    )


@router.post("/logout", response_model=ApiResponse)
def logout(request: Request, identity: Identity = Depends(get_identity)) -> ApiResponse:
    """Revoke the token this request authenticated with.

    Any later request presenting the same token is rejected with 401 even
    though its signature is still valid.
    """
    service: AuthService = request.app.state.auth_service
    service.logout(identity)
    return ApiResponse(msg="Logged out.")
