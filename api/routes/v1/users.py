"""
api/routes/v1/users.py -- Current-user and account administration endpoints.

Routes:
  GET    /api/v1/user/info            -- the attached request identity (requires auth)
  PUT    /api/v1/user/password        -- change own password (requires auth)
  PATCH  /api/v1/user/{id}/role       -- change role (admin only)
  PATCH  /api/v1/user/{id}/status     -- change status (admin only)
  DELETE /api/v1/user/{id}            -- delete account (user:delete, live check)

Role and status values are parsed against the closed enums in the service;
anything else is a 400. [M4] guards (self-status change, last admin) also
live in the service.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Path, Request

from api.models import ApiResponse, IdentityOut, PasswordChange, RoleUpdate, StatusUpdate, UserOut
from auth.dependencies import get_identity, require_admin, require_live_permission
from auth.models import Identity
from auth.service import AuthService

# Auth policy:
# - GET    /user/info:         requires auth (get_identity)
# - PUT    /user/password:     requires auth (get_identity)
# - PATCH  /user/{id}/role:    requires admin (require_admin)
# - PATCH  /user/{id}/status:  requires admin (require_admin)
# - DELETE /user/{id}:         requires user:delete, re-checked against the store
router = APIRouter()


@router.get("/user/info", response_model=ApiResponse)
async def user_info(identity: Identity = Depends(get_identity)) -> ApiResponse:
    """Return the identity the authentication gate attached to this request."""
    return ApiResponse(data=IdentityOut.from_identity(identity))


@router.put("/user/password", response_model=ApiResponse)
def change_password(
    request: Request,
    body: PasswordChange,
    identity: Identity = Depends(get_identity),
) -> ApiResponse:
    service: AuthService = request.app.state.auth_service
    service.change_password(identity.id, body.old_password, body.new_password)
    return ApiResponse(msg="Password changed.")


@router.patch("/user/{user_id}/role", response_model=ApiResponse)
def update_role(
    request: Request,
    body: RoleUpdate,
    user_id: int = Path(gt=0),
    identity: Identity = Depends(require_admin),
) -> ApiResponse:
    service: AuthService = request.app.state.auth_service
    updated = service.update_role(identity, user_id, body.role)
    return ApiResponse(msg="Role updated.", data=UserOut.from_user(updated))


@router.patch("/user/{user_id}/status", response_model=ApiResponse)
def update_status(
    request: Request,
    body: StatusUpdate,
    user_id: int = Path(gt=0),
    identity: Identity = Depends(require_admin),
) -> ApiResponse:
    service: AuthService = request.app.state.auth_service
    updated = service.update_status(identity, user_id, body.status)
    return ApiResponse(msg="Status updated.", data=UserOut.from_user(updated))


@router.delete("/user/{user_id}", response_model=ApiResponse)
def delete_user(
    request: Request,
    user_id: int = Path(gt=0),
    identity: Identity = Depends(require_live_permission("user:delete")),
) -> ApiResponse:
    """Delete an account. Tokens already issued to it fail on next use."""
    service: AuthService = request.app.state.auth_service
    service.delete_user(identity, user_id)
    return ApiResponse(msg="User deleted.")
