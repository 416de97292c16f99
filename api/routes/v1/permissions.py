"""
api/routes/v1/permissions.py -- Permission dictionary and grant endpoints.

Routes:
  POST /api/v1/permission/assign            -- grant one code (admin only)
  POST /api/v1/permission/batch-assign      -- grant several codes (admin only)
  POST /api/v1/permission/revoke            -- remove one grant (permission:revoke)
  GET  /api/v1/permission/user-permissions  -- codes granted to ?userId= (requires auth)
  GET  /api/v1/permission/all-permissions   -- the whole dictionary (requires auth)
  GET  /api/v1/permission/all-grouped       -- dictionary grouped by module (admin only)

Assigning a code the user already holds is a 200 no-op (changed=false).
Revoking a code the user does not hold is a 400. Unknown codes are a 400
and nothing is written.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    ApiResponse,
    BatchGrantOut,
    BatchPermissionAssign,
    GrantOut,
    PermissionChange,
    PermissionGroupOut,
    PermissionOut,
    UserPermissionsOut,
)
from auth.dependencies import get_identity, require_admin, require_permission
from auth.models import Identity
from auth.permissions import PermissionResolver

# Auth policy:
# - POST /permission/assign:            requires admin (require_admin)
# - POST /permission/batch-assign:      requires admin (require_admin)
# - POST /permission/revoke:            requires permission:revoke (admin passes)
# - GET  /permission/user-permissions:  requires auth (get_identity)
# - GET  /permission/all-permissions:   requires auth (get_identity)
# - GET  /permission/all-grouped:       requires admin (require_admin)
router = APIRouter(prefix="/permission")


@router.post("/assign", response_model=ApiResponse)
def assign_permission(
    request: Request,
    body: PermissionChange,
    identity: Identity = Depends(require_admin),
) -> ApiResponse:
    resolver: PermissionResolver = request.app.state.resolver
    result = resolver.assign(body.user_id, body.perm_code)
    msg = "Permission assigned." if result.changed else "User already holds this permission."
    return ApiResponse(msg=msg, data=GrantOut(user_id=result.user_id, perm_code=result.code, changed=result.changed))


@router.post("/batch-assign", response_model=ApiResponse)
def batch_assign_permissions(
    request: Request,
    body: BatchPermissionAssign,
    identity: Identity = Depends(require_admin),
) -> ApiResponse:
    resolver: PermissionResolver = request.app.state.resolver
    result = resolver.batch_assign(body.user_id, body.perm_codes)
    msg = "Permissions assigned." if result.added else "User already holds all selected permissions."
    return ApiResponse(
        msg=msg,
        data=BatchGrantOut(user_id=result.user_id, added=result.added, already_held=result.already_held),
    )


@router.post("/revoke", response_model=ApiResponse)
def revoke_permission(
    request: Request,
    body: PermissionChange,
    identity: Identity = Depends(require_permission("permission:revoke")),
) -> ApiResponse:
    resolver: PermissionResolver = request.app.state.resolver
    resolver.revoke(body.user_id, body.perm_code)
    return ApiResponse(
        msg="Permission revoked.",
        data=GrantOut(user_id=body.user_id, perm_code=body.perm_code, changed=True),
    )


@router.get("/user-permissions", response_model=ApiResponse)
def user_permissions(
    request: Request,
    user_id: int = Query(alias="userId", gt=0),
    identity: Identity = Depends(get_identity),
) -> ApiResponse:
    """Return the literal grants of a user (admin-role users may hold none)."""
    resolver: PermissionResolver = request.app.state.resolver
    return ApiResponse(data=UserPermissionsOut(user_id=user_id, permissions=resolver.list_grants(user_id)))


@router.get("/all-permissions", response_model=ApiResponse)
def all_permissions(request: Request, identity: Identity = Depends(get_identity)) -> ApiResponse:
    resolver: PermissionResolver = request.app.state.resolver
    return ApiResponse(data=[PermissionOut.from_definition(d) for d in resolver.list_all()])


@router.get("/all-grouped", response_model=ApiResponse)
def all_permissions_grouped(request: Request, identity: Identity = Depends(require_admin)) -> ApiResponse:
    resolver: PermissionResolver = request.app.state.resolver
    return ApiResponse(data=[PermissionGroupOut(**g) for g in resolver.list_grouped()])
