"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and
services do the work; these types own domain shape.

Role and UserStatus are closed enums. Every write boundary (registration,
role update, status update, token claims) parses raw strings through
Role.parse() / UserStatus.parse() so comparisons elsewhere are done on the
typed value, never on ad hoc lowercased strings.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum


class Role(str, Enum):
    visitor = "visitor"
    user = "user"
    author = "author"
    admin = "admin"

    @classmethod
    def parse(cls, value: object) -> "Role":
        """Normalize (trim, lowercase) and validate a raw role string.

        Raises ValueError for anything outside the enum.
        """
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid role: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid role: {value!r}") from None


class UserStatus(str, Enum):
    active = "active"
    inactive = "inactive"
    banned = "banned"

    @classmethod
    def parse(cls, value: object) -> "UserStatus":
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            raise ValueError(f"Invalid status: {value!r}")
        try:
            return cls(value.strip().lower())
        except ValueError:
            raise ValueError(f"Invalid status: {value!r}") from None


@dataclass
class User:
    """A stored account.

    password_hash is opaque and never leaves the auth layer -- response
    models are built from explicit fields, never from asdict(user).

    id is None before the record is written to the database.
    """

    username: str
    email: str
    password_hash: str
    role: Role = Role.user
    status: UserStatus = UserStatus.active
    id: int | None = None
    avatar: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_login: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status is UserStatus.active


@dataclass(frozen=True)
class PermissionDefinition:
    """One entry of the permission dictionary.

    code follows the resource:action convention; module is the text before
    the first colon and is used only for grouped listings.
    """

    code: str
    name: str

    @property
    def module(self) -> str:
        return module_of(self.code)


def module_of(code: str) -> str:
    """Return the module prefix of a permission code ('user:list' -> 'user')."""
    return code.split(":", 1)[0]


@dataclass(frozen=True)
class TokenClaims:
    """Identity facts carried by a bearer token.

    issued_at / expires_at are populated when claims come back out of a
    verified token; they are ignored on issue.
    """

    user_id: int
    username: str
    role: Role
    issued_at: datetime | None = field(default=None, compare=False)
    expires_at: datetime | None = field(default=None, compare=False)


@dataclass(frozen=True)
class EffectivePermissions:
    """Permissions enforced for one request.

    is_all is the admin sentinel: every check passes regardless of codes.
    Non-admin sets are the literal grant codes (case-sensitive).
    """

    codes: frozenset[str] = frozenset()
    is_all: bool = False

    @classmethod
    def everything(cls) -> "EffectivePermissions":
        return cls(is_all=True)

    @classmethod
    def of(cls, codes) -> "EffectivePermissions":
        return cls(codes=frozenset(c for c in codes if c))

    def allows(self, code: str) -> bool:
        return self.is_all or code in self.codes

    def allows_any(self, codes) -> bool:
        return self.is_all or any(c in self.codes for c in codes)

    def as_list(self) -> list[str]:
        """Serialize for the request context. Admin is represented as ['*']."""
        if self.is_all:
            return ["*"]
        return sorted(self.codes)


@dataclass(frozen=True)
class Identity:
    """The authenticated subject attached to a request.

    Built in full by AuthenticationGate.authenticate() and assigned to the
    request in one step, so downstream code never observes a partially
    enriched identity.
    """

    id: int
    username: str
    role: Role
    status: UserStatus
    permissions: EffectivePermissions
    email: str | None = None
    avatar: str | None = None
    token: str = field(default="", repr=False, compare=False)
    token_expires_at: datetime | None = field(default=None, compare=False)

    @property
    def is_admin(self) -> bool:
        return self.role is Role.admin

    def to_context(self) -> dict:
        """Return the request-context view consumed by downstream handlers."""
        return {
            "id": self.id,
            "username": self.username,
            "role": self.role.value,
            "status": self.status.value,
            "permissions": self.permissions.as_list(),
            "email": self.email,
            "avatar": self.avatar,
        }
