"""
auth/gate.py -- Authentication gate: bearer header -> fully built Identity.

AuthenticationGate.authenticate() runs the per-request stages strictly in
order and either raises an AuthError or returns a complete, immutable
Identity. Nothing is attached to the request here: the caller assigns the
returned Identity in one step, so "attach, then proceed" holds by
construction.

Stages:
  1. NoToken            missing header / not "Bearer <token>"   -> 401
  2. Malformed          empty or whitespace token                -> 401
  3. Revoked            canonical token in the registry          -> 401
  4. Signature/expiry   TokenService.verify() fails              -> 401 (expired vs invalid)
  5. ClaimsIncomplete   id / username / role missing             -> 401
  6. SubjectLookup      user gone -> 401; status != active       -> 403
  7. Enrichment         resolver failure degrades to an empty set (warning)
  8. Authenticated      Identity returned

No stage retries. Infrastructure errors from the user store (stage 6)
propagate unchanged -- the API's catch-all turns them into a generic 500.

PublicPathAllowlist is evaluated by the caller BEFORE the gate runs at all.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.errors import (
    AccountBanned,
    AccountInactive,
    SubjectNotFound,
    TokenMalformed,
    TokenMissing,
    TokenRevoked,
    Unauthenticated,
)
from auth.models import EffectivePermissions, Identity, UserStatus
from auth.permissions import PermissionResolver
from auth.revocation import RevocationRegistry
from auth.store import UserStore
from auth.tokens import TokenService, canonical_token

logger = logging.getLogger("permgate.auth.gate")

_BEARER = "bearer"


class PublicPathAllowlist:
    """Paths exempt from authentication: exact matches and prefix matches."""

    def __init__(self, exact: Iterable[str] = (), prefixes: Iterable[str] = ()) -> None:
        self.exact = frozenset(exact)
        self.prefixes = tuple(p for p in prefixes if p)

    def matches(self, path: str) -> bool:
        # The router redirects "/x/" to "/x", so both spellings are public.
        exact = path[:-1] if len(path) > 1 and path.endswith("/") else path
        return exact in self.exact or path.startswith(self.prefixes)


def extract_bearer(authorization: str | None) -> str:
    """Return the raw token from an Authorization header.

    Raises TokenMissing when there is no "Bearer" credential at all and
    TokenMalformed when the scheme is right but the token is blank or
    contains whitespace.
    """
    if not authorization:
        raise TokenMissing()
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != _BEARER:
        raise TokenMissing()
    token = token.strip()
    if not token or any(ch.isspace() for ch in token):
        raise TokenMalformed()
    return token


class AuthenticationGate:
    def __init__(
        self,
        tokens: TokenService,
        revocations: RevocationRegistry,
        user_store: UserStore,
        resolver: PermissionResolver,
    ) -> None:
        self.tokens = tokens
        self.revocations = revocations
        self.user_store = user_store
        self.resolver = resolver

    def authenticate(self, authorization: str | None) -> Identity:
        token = canonical_token(extract_bearer(authorization))

        if self.revocations.is_revoked(token):
            raise TokenRevoked()

        try:
            claims = self.tokens.verify(token)
        except Unauthenticated:
            # Unverified claims are for the log line only.
            peeked = self.tokens.peek(token) or {}
            logger.info("Rejected token for subject %r", peeked.get("id"))
            raise

        user = self.user_store.get_by_id(claims.user_id)
        if user is None:
            logger.info("Token subject %d no longer exists", claims.user_id)
            raise SubjectNotFound()
        if user.status is UserStatus.banned:
            raise AccountBanned()
        if user.status is not UserStatus.active:
            raise AccountInactive()

        try:
            permissions = self.resolver.resolve(user.id, user.role)
        except Exception:
            logger.warning("Permission lookup failed for user %d; continuing with none", user.id, exc_info=True)
            permissions = EffectivePermissions()

        return Identity(
            id=user.id,
            username=user.username,
            role=user.role,
            status=user.status,
            permissions=permissions,
            email=user.email,
            avatar=user.avatar,
            token=token,
            token_expires_at=claims.expires_at,
        )
