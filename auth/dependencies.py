"""
auth/dependencies.py -- FastAPI Depends() helpers for authorization.

Authentication itself happens once per request in the authentication
middleware (api/main.py), which stores a fully built Identity on
request.state.identity before any route code runs. Everything here only
READS that identity:

  get_identity()                  -- the attached Identity, or 401
  require_admin()                 -- role check; 403 discloses the current role
  require_permission(code)        -- admin passes; else code must be held
  require_any_permission(*codes)  -- admin passes; else any one code
  require_live_permission(code)   -- like require_permission, but re-queries the
                                     store instead of trusting the attached set.
                                     Opt-in per route for high-sensitivity ops.

Each guard returns the Identity, so routes receive the caller directly:
    @router.post("/permission/assign")
    def assign(identity: Identity = Depends(require_admin)): ...

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.errors import AdminRequired, MissingPermission, Unauthenticated
from auth.models import Identity
from auth.permissions import PermissionResolver


def get_identity(request: Request) -> Identity:
    """Return the authenticated Identity attached by the middleware.

    A route reached without one (e.g. a protected route wrongly listed as
    public) is treated as unauthenticated rather than crashing.
    """
    identity = getattr(request.state, "identity", None)
    if not isinstance(identity, Identity):
        raise Unauthenticated("Please log in first.")
    return identity


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise AdminRequired(identity.role.value)
    return identity


def require_permission(code: str):
    """Build a dependency that requires one permission code."""

    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        if not identity.permissions.allows(code):
            raise MissingPermission(code)
        return identity

    return dependency


def require_any_permission(*codes: str):
    """Build a dependency that requires at least one of codes."""
    if not codes:
        raise ValueError("require_any_permission() needs at least one code")

    def dependency(identity: Identity = Depends(get_identity)) -> Identity:
        if not identity.permissions.allows_any(codes):
            raise MissingPermission(" | ".join(codes))
        return identity

    return dependency


def require_live_permission(code: str):
    """Build a dependency that checks code against a fresh store snapshot.

    Trades one extra query per request for zero staleness: a grant revoked
    after authentication is honoured immediately. The endpoint using it
    should be a plain `def` so the query runs in the thread pool.
    """

    def dependency(request: Request, identity: Identity = Depends(get_identity)) -> Identity:
        resolver: PermissionResolver = request.app.state.resolver
        if not resolver.resolve(identity.id, identity.role).allows(code):
            raise MissingPermission(code)
        return identity

    return dependency
