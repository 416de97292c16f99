"""
auth/permissions.py -- Permission resolution and grant management.

PermissionResolver is the one authority for:
  - what is grantable (membership in the permission dictionary),
  - what a user effectively holds (admin bypass + literal grants),
  - changing grants (assign / batch_assign / revoke).

Assign, batch-assign and the grouped listing all consult the same
dictionary through PermissionStore, so "what can be granted" and "what is
shown grouped for display" cannot drift apart.

Effective sets are computed fresh on every call -- nothing is cached across
requests, so a grant or revoke is visible on the very next request.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from auth.errors import NotFound, NotGranted, UnknownPermission, ValidationError
from auth.models import EffectivePermissions, PermissionDefinition, Role
from auth.store import PermissionStore, UserStore

logger = logging.getLogger("permgate.auth.permissions")

# Display names for module prefixes in grouped listings. Prefixes not listed
# here fall into OTHER_MODULE.
MODULE_NAMES: dict[str, str] = {
    "user": "User management",
    "permission": "Permission management",
    "article": "Articles",
    "category": "Categories",
    "tag": "Tags",
    "comment": "Comments",
    "media": "Media",
    "setting": "System settings",
    "log": "Logs",
}
OTHER_MODULE = "Other"

DEFAULT_PERMISSIONS: tuple[PermissionDefinition, ...] = (
    PermissionDefinition("user:list", "List users"),
    PermissionDefinition("user:update", "Edit users"),
    PermissionDefinition("user:delete", "Delete users"),
    PermissionDefinition("permission:list", "View permissions"),
    PermissionDefinition("permission:assign", "Assign permissions"),
    PermissionDefinition("permission:revoke", "Revoke permissions"),
    PermissionDefinition("article:create", "Create articles"),
    PermissionDefinition("article:update", "Edit articles"),
    PermissionDefinition("article:delete", "Delete articles"),
    PermissionDefinition("article:publish", "Publish articles"),
    PermissionDefinition("category:manage", "Manage categories"),
    PermissionDefinition("tag:manage", "Manage tags"),
    PermissionDefinition("comment:moderate", "Moderate comments"),
    PermissionDefinition("media:upload", "Upload media"),
    PermissionDefinition("media:delete", "Delete media"),
    PermissionDefinition("setting:update", "Change system settings"),
    PermissionDefinition("log:view", "View logs"),
)


@dataclass(frozen=True)
class GrantResult:
    """Outcome of a single assign(). changed is False for an idempotent no-op."""

    user_id: int
    code: str
    changed: bool


@dataclass(frozen=True)
class BatchGrantResult:
    user_id: int
    added: list[str] = field(default_factory=list)
    already_held: list[str] = field(default_factory=list)


class PermissionResolver:
    """Maps users to effective permission sets and manages grants.

    user_store is optional: without it assign() cannot check that the
    target user exists and relies on the grant foreign key instead.
    """

    def __init__(self, permission_store: PermissionStore, user_store: UserStore | None = None) -> None:
        self.permission_store = permission_store
        self.user_store = user_store

    # ------------------------------------------------------------------
    # Check path
    # ------------------------------------------------------------------

    def resolve(self, user_id: int, role: Role) -> EffectivePermissions:
        """Return the effective permission set for a user.

        Admin short-circuits to the universal set without touching the store.
        """
        if Role.parse(role) is Role.admin:
            return EffectivePermissions.everything()
        return EffectivePermissions.of(self.permission_store.list_grants(user_id))

    # ------------------------------------------------------------------
    # Dictionary (read model)
    # ------------------------------------------------------------------

    def is_known(self, code: str) -> bool:
        return self.permission_store.get_definition(code) is not None

    def list_all(self) -> list[PermissionDefinition]:
        return self.permission_store.list_definitions()

    def list_grouped(self) -> list[dict]:
        """Group the dictionary by module prefix for display.

        Returns [{"group": display_name, "module": prefix, "permissions": [...]}]
        in first-seen order of the code-sorted dictionary.
        """
        groups: dict[str, dict] = {}
        for definition in self.permission_store.list_definitions():
            prefix = definition.module
            name = MODULE_NAMES.get(prefix, OTHER_MODULE)
            key = name if name == OTHER_MODULE else prefix
            bucket = groups.setdefault(key, {"group": name, "module": key, "permissions": []})
            bucket["permissions"].append({"code": definition.code, "name": definition.name})
        return list(groups.values())

    def seed_defaults(self) -> int:
        """Insert DEFAULT_PERMISSIONS entries that are missing. Returns rows inserted."""
        added = self.permission_store.add_definitions(DEFAULT_PERMISSIONS)
        if added:
            logger.info("Seeded %d permission definitions", added)
        return added

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def list_grants(self, user_id: int) -> list[str]:
        _check_user_id(user_id)
        return self.permission_store.list_grants(user_id)

    def assign(self, user_id: int, code: str) -> GrantResult:
        """Grant code to user_id.

        Raises UnknownPermission if code is not in the dictionary, NotFound if
        the user does not exist. Re-assigning a held code succeeds with
        changed=False and writes nothing.
        """
        _check_user_id(user_id)
        code = _check_code(code)
        if not self.is_known(code):
            raise UnknownPermission(code)
        self._require_user(user_id)
        if self.permission_store.has_grant(user_id, code):
            return GrantResult(user_id=user_id, code=code, changed=False)
        changed = self.permission_store.insert_grant(user_id, code)
        if changed:
            logger.info("Granted %s to user %d", code, user_id)
        return GrantResult(user_id=user_id, code=code, changed=changed)

    def batch_assign(self, user_id: int, codes: Iterable[str]) -> BatchGrantResult:
        """Grant several codes at once.

        The whole batch is rejected if any code is unknown. Codes the user
        already holds are skipped; the rest are inserted.
        """
        _check_user_id(user_id)
        wanted: list[str] = []
        for code in codes:
            code = _check_code(code)
            if code not in wanted:
                wanted.append(code)
        if not wanted:
            raise ValidationError("Permission codes must be a non-empty list.")
        known = self.permission_store.existing_codes(wanted)
        unknown = [c for c in wanted if c not in known]
        if unknown:
            raise UnknownPermission(unknown)
        self._require_user(user_id)

        held = set(self.permission_store.list_grants(user_id))
        added: list[str] = []
        already: list[str] = []
        for code in wanted:
            if code in held or not self.permission_store.insert_grant(user_id, code):
                already.append(code)
            else:
                added.append(code)
        if added:
            logger.info("Granted %s to user %d", ", ".join(added), user_id)
        return BatchGrantResult(user_id=user_id, added=added, already_held=already)

    def revoke(self, user_id: int, code: str) -> None:
        """Remove a grant. Raises NotGranted if no matching row was removed."""
        _check_user_id(user_id)
        code = _check_code(code)
        if not self.permission_store.delete_grant(user_id, code):
            raise NotGranted(user_id, code)
        logger.info("Revoked %s from user %d", code, user_id)

    def _require_user(self, user_id: int) -> None:
        if self.user_store is not None and self.user_store.get_by_id(user_id) is None:
            raise NotFound(f"User {user_id} does not exist.")


def _check_user_id(user_id) -> None:
    if not isinstance(user_id, int) or isinstance(user_id, bool) or user_id <= 0:
        raise ValidationError("User ID must be a positive integer.")


def _check_code(code) -> str:
    if not isinstance(code, str) or not code.strip():
        raise ValidationError("Permission code must not be empty.")
    return code.strip()

