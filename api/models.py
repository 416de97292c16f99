"""
API request and response models for PermGate REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Every response -- success or failure -- uses the same envelope:
    {"code": <http status>, "msg": <human text>, "data": <payload or null>}
so clients have one parsing path regardless of outcome.

Request bodies accept the camelCase names web clients send (userId,
permCode, usernameOrEmail, ...). populate_by_name lets tests and Python
callers use the snake_case names too.

Format rules for registration (username/email/password patterns) live in
auth/service.py so the CLI and the API enforce the same rules; the models
here only bound lengths.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import Identity, PermissionDefinition, User

# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------


class ApiResponse(BaseModel):
    """Top-level envelope for every response."""

    code: int = 200
    msg: str = "OK"
    data: Any = None


class ErrorResponse(BaseModel):
    """Envelope returned on 4xx/5xx responses. data is always null."""

    model_config = ConfigDict(frozen=True)

    code: int
    msg: str
    data: None = None


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    username_or_email: str = Field(alias="usernameOrEmail", min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/register.

    role is optional; the service rejects "admin" and anything outside the
    role enum.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(max_length=20)
    email: str = Field(max_length=255)
    password: str = Field(max_length=20)
    role: Optional[str] = Field(default=None, max_length=20)


class PermissionChange(BaseModel):
    """Request body for POST /permission/assign and /permission/revoke."""

    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    user_id: int = Field(alias="userId", gt=0)
    perm_code: str = Field(alias="permCode", min_length=1, max_length=64)


class BatchPermissionAssign(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, populate_by_name=True)

    user_id: int = Field(alias="userId", gt=0)
    perm_codes: list[str] = Field(alias="permCodes", min_length=1, max_length=100)


class RoleUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    role: str = Field(min_length=1, max_length=20)


class StatusUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    status: str = Field(min_length=1, max_length=20)


class PasswordChange(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    old_password: str = Field(alias="oldPassword", min_length=1, max_length=255)
    new_password: str = Field(alias="newPassword", min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Response payloads (the "data" member of ApiResponse)
# ---------------------------------------------------------------------------


class UserOut(BaseModel):
    """Public view of a stored account. The password hash is never included."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str
    status: str
    avatar: Optional[str] = None
    created_at: Optional[str] = None
    last_login: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role.value,
            status=user.status.value,
            avatar=user.avatar,
            created_at=user.created_at,
            last_login=user.last_login,
        )


class LoginData(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut
    permissions: list[str]


class RegisterData(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserOut


class IdentityOut(BaseModel):
    """The request context attached by the authentication gate."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    role: str
    status: str
    permissions: list[str]
    email: Optional[str] = None
    avatar: Optional[str] = None

    @classmethod
    def from_identity(cls, identity: Identity) -> "IdentityOut":
        return cls(**identity.to_context())


class PermissionOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    code: str
    name: str
    module: str

    @classmethod
    def from_definition(cls, definition: PermissionDefinition) -> "PermissionOut":
        return cls(code=definition.code, name=definition.name, module=definition.module)


class PermissionGroupOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    group: str
    module: str
    permissions: list[dict]


class GrantOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    perm_code: str
    changed: bool


class BatchGrantOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    added: list[str]
    already_held: list[str]


class UserPermissionsOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    user_id: int
    permissions: list[str]


class HealthData(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
