"""
auth/service.py -- Credential verification and account lifecycle operations.

AuthService orchestrates the leaf components (UserStore, PasswordHasher,
TokenService, RevocationRegistry, PermissionResolver) for the operations
that change who is logged in or what an account is:

  login / register / logout      -- token issue and revocation
  change_password                -- self-service
  update_role / update_status    -- admin, validated against the closed enums
  delete_user                    -- admin or user:delete holder

Security:
  [C1] login() always runs bcrypt, even for unknown subjects, and returns the
       same BadCredentials error for "no such user" and "wrong password" so
       neither response text nor timing reveals which field was wrong.
  Status is checked immediately after the password matches, so a banned
  account with the right password deterministically gets the banned message.
  [M4] An admin cannot change their own status or delete themselves, and the
       last active admin cannot be demoted, deactivated or deleted.

All methods are synchronous and some are bcrypt-slow: call them from plain
`def` endpoints (thread pool), never directly on the event loop.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AccountBanned,
    AccountInactive,
    BadCredentials,
    Conflict,
    NotFound,
    ValidationError,
)
from auth.models import EffectivePermissions, Identity, Role, TokenClaims, User, UserStatus
from auth.passwords import PasswordHasher
from auth.permissions import PermissionResolver
from auth.revocation import RevocationRegistry
from auth.store import UserStore
from auth.tokens import TokenService

logger = logging.getLogger("permgate.auth.service")

USERNAME_RE = re.compile(r"^[A-Za-z0-9_]{3,20}$")
EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$")
# 6-20 characters with at least one letter and one digit.
PASSWORD_RE = re.compile(r"^(?=.*[A-Za-z])(?=.*\d).{6,20}$")


def check_registration_fields(username: str, email: str, password: str) -> None:
    """Raise ValidationError listing every field that fails its format rule."""
    errors: list[str] = []
    if not USERNAME_RE.match(username or ""):
        errors.append("Username must be 3-20 letters, digits or underscores.")
    if not EMAIL_RE.match(email or ""):
        errors.append("Please enter a valid email address.")
    if not PASSWORD_RE.match(password or ""):
        errors.append("Password must be 6-20 characters and contain letters and digits.")
    if errors:
        raise ValidationError(" ".join(errors))


@dataclass(frozen=True)
class LoginResult:
    token: str
    user: User
    permissions: EffectivePermissions
    expires_in: int


@dataclass(frozen=True)
class RegisterResult:
    token: str
    user: User
    expires_in: int


class AuthService:
    def __init__(
        self,
        user_store: UserStore,
        hasher: PasswordHasher,
        tokens: TokenService,
        revocations: RevocationRegistry,
        resolver: PermissionResolver,
        registration_status: UserStatus = UserStatus.active,
    ) -> None:
        self.user_store = user_store
        self.hasher = hasher
        self.tokens = tokens
        self.revocations = revocations
        self.resolver = resolver
        self.registration_status = UserStatus.parse(registration_status)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, username_or_email: str, password: str) -> LoginResult:
        """Verify credentials and issue a token plus the effective permissions."""
        user = self.user_store.find_by_username_or_email(username_or_email)
        if user is None:
            # Equalize timing -- do NOT return early before running bcrypt [C1]
            self.hasher.verify_dummy(password)
            raise BadCredentials()
        if not self.hasher.verify(password, user.password_hash):
            raise BadCredentials()
        if user.status is UserStatus.banned:
            raise AccountBanned()
        if user.status is UserStatus.inactive:
            raise AccountInactive()

        try:
            permissions = self.resolver.resolve(user.id, user.role)
        except SQLAlchemyError:
            logger.warning("Permission lookup failed at login for user %d", user.id, exc_info=True)
            permissions = EffectivePermissions()

        token = self.tokens.issue(TokenClaims(user_id=user.id, username=user.username, role=user.role))
        try:
            self.user_store.update_last_login(user.id)
        except SQLAlchemyError:
            logger.warning("Could not stamp last_login for user %d", user.id, exc_info=True)

        logger.info("User %s logged in", user.username)
        return LoginResult(token=token, user=user, permissions=permissions, expires_in=self.tokens.expire_seconds)

    def register(self, username: str, email: str, password: str, role: str | Role | None = None) -> RegisterResult:
        """Create an account and issue its first token.

        Self-registration may request visitor, user or author; admin accounts
        are created only through the operator CLI.
        """
        check_registration_fields(username, email, password)
        parsed_role = _parse_role(role) if role else Role.user
        if parsed_role is Role.admin:
            raise ValidationError("Self-registration cannot request the admin role.")

        clash = self.user_store.find_conflict(username, email)
        if clash == "username":
            raise Conflict("Username is already taken.")
        if clash == "email":
            raise Conflict("Email is already registered.")

        user = User(
            username=username,
            email=email,
            password_hash=self.hasher.hash(password),
            role=parsed_role,
            status=self.registration_status,
        )
        try:
            user.id = self.user_store.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same name.
            raise Conflict("Username or email is already registered.") from exc

        created = self.user_store.get_by_id(user.id) or user
        token = self.tokens.issue(TokenClaims(user_id=created.id, username=created.username, role=created.role))
        logger.info("Registered user %s (id=%d, role=%s)", created.username, created.id, created.role.value)
        return RegisterResult(token=token, user=created, expires_in=self.tokens.expire_seconds)

    def logout(self, identity: Identity) -> None:
        """Revoke the token the identity authenticated with."""
        self.revocations.revoke(identity.token, identity.token_expires_at)
        logger.info("User %s logged out", identity.username)

    # ------------------------------------------------------------------
    # Self-service
    # ------------------------------------------------------------------

    def change_password(self, user_id: int, old_password: str, new_password: str) -> None:
        user = self._get(user_id)
        if not self.hasher.verify(old_password, user.password_hash):
            raise ValidationError("Old password is incorrect.")
        if not PASSWORD_RE.match(new_password or ""):
            raise ValidationError("Password must be 6-20 characters and contain letters and digits.")
        self.user_store.update_password(user_id, self.hasher.hash(new_password))
        logger.info("User %s changed password", user.username)

    # ------------------------------------------------------------------
    # Administration
    # ------------------------------------------------------------------

    def update_role(self, actor: Identity, user_id: int, role: str | Role) -> User:
        new_role = _parse_role(role)
        target = self._get(user_id)
        if target.role is Role.admin and new_role is not Role.admin and self._is_last_active_admin(target):
            raise ValidationError("Cannot demote the last active admin account.")
        self.user_store.update_role(user_id, new_role)
        logger.info(
            "User %s changed role of %s: %s -> %s",
            actor.username,
            target.username,
            target.role.value,
            new_role.value,
        )
        return self._get(user_id)

    def update_status(self, actor: Identity, user_id: int, status: str | UserStatus) -> User:
        new_status = _parse_status(status)
        target = self._get(user_id)
        if target.id == actor.id:
            raise ValidationError("You cannot change your own account status.")
        if new_status is not UserStatus.active and target.role is Role.admin and self._is_last_active_admin(target):
            raise ValidationError("Cannot deactivate the last active admin account.")
        self.user_store.update_status(user_id, new_status)
        logger.info(
            "User %s changed status of %s: %s -> %s",
            actor.username,
            target.username,
            target.status.value,
            new_status.value,
        )
        return self._get(user_id)

    def delete_user(self, actor: Identity, user_id: int) -> None:
        target = self._get(user_id)
        if target.id == actor.id:
            raise ValidationError("You cannot delete your own account.")
        if target.role is Role.admin and self._is_last_active_admin(target):
            raise ValidationError("Cannot delete the last active admin account.")
        self.user_store.delete_user(user_id)
        logger.info("User %s deleted user %s (id=%d)", actor.username, target.username, target.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, user_id: int) -> User:
        user = self.user_store.get_by_id(user_id)
        if user is None:
            raise NotFound(f"User {user_id} does not exist.")
        return user

    def _is_last_active_admin(self, target: User) -> bool:
        return target.is_active and self.user_store.count_active_admins() <= 1


def _parse_role(value) -> Role:
    try:
        return Role.parse(value)
    except ValueError:
        raise ValidationError("Invalid role, expected one of: visitor/user/author/admin.") from None


def _parse_status(value) -> UserStatus:
    try:
        return UserStatus.parse(value)
    except ValueError:
        raise ValidationError("Invalid status, expected one of: active/inactive/banned.") from None
