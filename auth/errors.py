"""
auth/errors.py -- Domain exceptions for authentication and authorization.

Every failure the auth layer can produce is an AuthError subclass carrying
its HTTP status and a client-safe message. The API layer converts them to
the {code, msg, data: null} envelope in one exception handler; nothing in
auth/ builds HTTP responses itself.

Taxonomy:
  Unauthenticated   401  no/invalid/expired/revoked token, unknown subject
  AccountRestricted 403  banned or inactive account
  Forbidden         403  authenticated but lacking role/permission
  ValidationError   400  bad input shape, unknown permission, ungranted revoke
  Conflict          400  duplicate username/email at registration
  NotFound          404  referenced entity absent
  InternalError     500  hashing failure; generic message only

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    status_code: int = 500
    msg: str = "An unexpected error occurred."

    def __init__(self, msg: str | None = None) -> None:
        self.msg = msg or self.msg
        super().__init__(self.msg)


# ---------------------------------------------------------------------------
# 401
# ---------------------------------------------------------------------------


class Unauthenticated(AuthError):
    status_code = 401
    msg = "Authentication required."


class TokenMissing(Unauthenticated):
    msg = "Please log in first."


class TokenMalformed(Unauthenticated):
    msg = "Malformed token, please log in again."


class TokenRevoked(Unauthenticated):
    msg = "Session has been invalidated, please log in again."


class TokenExpired(Unauthenticated):
    msg = "Token has expired, please log in again."


class TokenInvalid(Unauthenticated):
    msg = "Token is invalid, please log in again."


class ClaimsIncomplete(Unauthenticated):
    msg = "Token credential data is incomplete."


class SubjectNotFound(Unauthenticated):
    msg = "User does not exist."


class BadCredentials(Unauthenticated):
    msg = "Username or password incorrect."


# ---------------------------------------------------------------------------
# 403
# ---------------------------------------------------------------------------


class AccountRestricted(AuthError):
    status_code = 403
    msg = "Account is restricted."


class AccountBanned(AccountRestricted):
    msg = "Account has been banned."


class AccountInactive(AccountRestricted):
    msg = "Account is not activated, please contact an administrator."


class Forbidden(AuthError):
    status_code = 403
    msg = "Forbidden."


class AdminRequired(Forbidden):
    def __init__(self, current_role: str) -> None:
        super().__init__(f"Admin role required (current role: {current_role}).")


class MissingPermission(Forbidden):
    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"missing permission: {code}")


# ---------------------------------------------------------------------------
# 400 / 404
# ---------------------------------------------------------------------------


class ValidationError(AuthError):
    status_code = 400
    msg = "Invalid request."


class UnknownPermission(ValidationError):
    def __init__(self, codes: str | list[str]) -> None:
        self.codes = [codes] if isinstance(codes, str) else list(codes)
        super().__init__(f"Unknown permission code(s): {', '.join(self.codes)}")


class NotGranted(ValidationError):
    def __init__(self, user_id: int, code: str) -> None:
        self.user_id = user_id
        self.code = code
        super().__init__(f"User {user_id} does not hold permission {code}.")


class Conflict(AuthError):
    status_code = 400
    msg = "Resource already exists."


class NotFound(AuthError):
    status_code = 404
    msg = "Resource not found."


# ---------------------------------------------------------------------------
# 500
# ---------------------------------------------------------------------------


class InternalError(AuthError):
    status_code = 500
    msg = "Internal server error."


class HashingError(InternalError):
    msg = "Encryption failed."
