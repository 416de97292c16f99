"""Unit tests for auth/dependencies.py -- route-level authorization guards.

The guards are plain callables; these tests invoke them directly with
hand-built identities instead of going through FastAPI's DI.

Covers:
- get_identity rejects a request without an attached identity
- require_admin passes admins and names the current role on refusal
- require_permission: admin always passes; others need the exact code
- require_any_permission: one of several codes is enough
- require_live_permission re-reads grants, so a revoke after authentication bites
"""

from types import SimpleNamespace

import pytest

from auth.dependencies import (
    get_identity,
    require_admin,
    require_any_permission,
    require_live_permission,
    require_permission,
)
from auth.errors import AdminRequired, MissingPermission, Unauthenticated
from auth.models import EffectivePermissions, Identity, Role, UserStatus


def _identity(role: Role = Role.user, codes=(), uid: int = 1) -> Identity:
    permissions = EffectivePermissions.everything() if role is Role.admin else EffectivePermissions.of(codes)
    return Identity(id=uid, username="u", role=role, status=UserStatus.active, permissions=permissions)


def _request(identity=None, resolver=None) -> SimpleNamespace:
    state = SimpleNamespace()
    if identity is not None:
        state.identity = identity
    return SimpleNamespace(state=state, app=SimpleNamespace(state=SimpleNamespace(resolver=resolver)))


class TestGetIdentity:
    def test_returns_attached_identity(self) -> None:
        ident = _identity()
        assert get_identity(_request(ident)) is ident

    def test_missing_identity_is_unauthenticated(self) -> None:
        with pytest.raises(Unauthenticated) as exc_info:
            get_identity(_request())
        assert exc_info.value.status_code == 401


class TestRequireAdmin:
    def test_admin_passes(self) -> None:
        ident = _identity(Role.admin)
        assert require_admin(ident) is ident

    @pytest.mark.parametrize("role", [Role.visitor, Role.user, Role.author])
    def test_non_admin_refused(self, role: Role) -> None:
        with pytest.raises(AdminRequired) as exc_info:
            require_admin(_identity(role))
        assert exc_info.value.status_code == 403
        assert f"current role: {role.value}" in exc_info.value.msg


class TestRequirePermission:
    def test_holder_passes(self) -> None:
        guard = require_permission("user:list")
        ident = _identity(codes=["user:list"])
        assert guard(ident) is ident

    def test_admin_passes_without_grants(self) -> None:
        assert require_permission("user:delete")(_identity(Role.admin)).is_admin

    def test_missing_code_names_it(self) -> None:
        with pytest.raises(MissingPermission) as exc_info:
            require_permission("user:delete")(_identity(codes=["user:list"]))
        assert exc_info.value.msg == "missing permission: user:delete"

    def test_any_of_several(self) -> None:
        guard = require_any_permission("article:update", "article:publish")
        assert guard(_identity(codes=["article:publish"])).id == 1
        with pytest.raises(MissingPermission):
            guard(_identity(codes=["article:create"]))

    def test_any_needs_codes(self) -> None:
        with pytest.raises(ValueError):
            require_any_permission()


class TestRequireLivePermission:
    def test_revoke_after_authentication_is_honoured(self, resolver, make_user) -> None:
        user = make_user("alice")
        resolver.assign(user.id, "user:delete")
        # Identity snapshot taken while the grant existed.
        ident = _identity(codes=["user:delete"], uid=user.id)
        resolver.revoke(user.id, "user:delete")

        assert require_permission("user:delete")(ident) is ident
        with pytest.raises(MissingPermission):
            require_live_permission("user:delete")(_request(ident, resolver), ident)

    def test_live_grant_passes(self, resolver, make_user) -> None:
        user = make_user("bob")
        ident = _identity(uid=user.id)
        resolver.assign(user.id, "user:delete")
        assert require_live_permission("user:delete")(_request(ident, resolver), ident) is ident
