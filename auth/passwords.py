"""
auth/passwords.py -- One-way salted password hashing (bcrypt).

Using bcrypt directly rather than passlib[bcrypt] because passlib's internal
wrap-bug detection creates a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

Cost factor is fixed per process (Settings.bcrypt_rounds, default 10). The
salt is random per hash. Plaintext is never logged or returned.

hash() and verify() are CPU-bound and deliberately slow. Callers on the
event loop must not call them directly -- route handlers that hash are plain
`def` endpoints so FastAPI runs them in its worker thread pool.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging

import bcrypt

from auth.errors import HashingError

logger = logging.getLogger("permgate.auth.passwords")

DEFAULT_ROUNDS = 10


class PasswordHasher:
    def __init__(self, rounds: int = DEFAULT_ROUNDS) -> None:
        self.rounds = rounds
        # Timing equalization dummy [C1]. Verified against when the login
        # subject does not exist so response time does not reveal whether a
        # username is registered.
        self.dummy_hash: str = self.hash("permgate_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a bcrypt hash of plain. Raises HashingError on failure (not retried)."""
        try:
            return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (TypeError, ValueError) as exc:
            logger.error("Password hashing failed: %s", type(exc).__name__)
            raise HashingError() from exc

    def verify(self, plain: str, hashed: str | None) -> bool:
        """Return True if plain matches hashed. Any malformed hash is a non-match."""
        if not hashed:
            return False
        try:
            return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (TypeError, ValueError):
            return False

    def verify_dummy(self, plain: str) -> None:
        """Burn one bcrypt check so a missing user costs the same as a wrong password."""
        self.verify(plain, self.dummy_hash)
