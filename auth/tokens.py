"""
auth/tokens.py -- Signed bearer token issue / verify (python-jose, HS256).

Tokens carry {id, username, role, iat, exp} signed with the server-held
SECRET_KEY. verify() distinguishes expiry from every other failure so the
gate can tell the client "expired" versus "invalid":

  TokenExpired      -- signature fine, exp in the past
  TokenInvalid      -- bad signature, wrong algorithm, malformed JWT
  ClaimsIncomplete  -- verified, but id / username / role missing or unusable

peek() decodes claims WITHOUT verifying the signature. It exists for
diagnostic log lines only and must never feed a trust decision.

canonical_token() re-encodes each segment. The base64url decoder ignores
padding and the spare low bits of a segment's last character, so several
strings can carry one signed token. Revocation is keyed on the canonical form.

Layer rule: no imports from api/. Settings are injected by the caller.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import ExpiredSignatureError, JWTError, jwt
from jose.utils import base64url_decode, base64url_encode

from auth.errors import ClaimsIncomplete, TokenExpired, TokenInvalid
from auth.models import Role, TokenClaims

logger = logging.getLogger("permgate.auth.tokens")

ALGORITHM = "HS256"


class TokenService:
    """Issues and verifies bearer tokens.

    Usage:
        tokens = TokenService(secret_key, expire_seconds=8 * 3600)
        token = tokens.issue(TokenClaims(user_id=1, username="alice", role=Role.user))
        claims = tokens.verify(token)
    """

    def __init__(self, secret_key: str, expire_seconds: int = 8 * 3600, algorithm: str = ALGORITHM) -> None:
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self.algorithm = algorithm

    def issue(self, claims: TokenClaims, expire_seconds: int | None = None) -> str:
        """Encode and sign claims.

        Args:
            claims:         Subject id, username and role. Timestamps on the
                            input are ignored; iat/exp are set here.
            expire_seconds: Override the configured TTL. None uses the default.
        """
        duration = self.expire_seconds if expire_seconds is None else expire_seconds
        now = datetime.now(timezone.utc)
        payload = {
            "id": claims.user_id,
            "username": claims.username,
            "role": claims.role.value,
            "iat": now,
            "exp": now + timedelta(seconds=duration),
        }
        return jwt.encode(payload, self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> TokenClaims:
        """Verify signature and expiry, then return the typed claims."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise TokenExpired() from exc
        except JWTError as exc:
            logger.debug("Token rejected: %s", exc)
            raise TokenInvalid() from exc
        return _claims_from_payload(payload)

    @staticmethod
    def peek(token: str) -> dict | None:
        """Return unverified claims for diagnostics, or None if undecodable."""
        try:
            return jwt.get_unverified_claims(token)
        except JWTError:
            return None


def _claims_from_payload(payload: dict) -> TokenClaims:
    user_id = payload.get("id")
    username = payload.get("username")
    role = payload.get("role")
    # bool is an int subclass; a True id is not a subject id.
    if not isinstance(user_id, int) or isinstance(user_id, bool) or user_id <= 0:
        raise ClaimsIncomplete()
    if not isinstance(username, str) or not username:
        raise ClaimsIncomplete()
    try:
        parsed_role = Role.parse(role)
    except ValueError as exc:
        raise ClaimsIncomplete() from exc
    return TokenClaims(
        user_id=user_id,
        username=username,
        role=parsed_role,
        issued_at=_from_timestamp(payload.get("iat")),
        expires_at=_from_timestamp(payload.get("exp")),
    )


def _from_timestamp(value) -> datetime | None:
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc)
    return None


def canonical_token(token: str) -> str:
    """Return token with every segment in canonical base64url form.

    Strings that do not decode are returned unchanged; verify() rejects them.
    """
    try:
        segments = [base64url_encode(base64url_decode(s.encode("ascii"))) for s in token.split(".")]
    except ValueError:
        return token
    return b".".join(segments).decode("ascii")
