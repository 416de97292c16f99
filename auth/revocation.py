"""
auth/revocation.py -- Process-wide registry of revoked (logged-out) tokens.

In-memory only: a server restart forgets every revocation, which implicitly
re-trusts tokens logged out before the restart until they expire naturally.

Each entry remembers the token's own expiry. Once a token has expired the
gate rejects it on signature/expiry grounds anyway, so purge_expired() can
drop the entry without weakening anything. The API lifespan runs the sweep
periodically, mirroring the cache purge loop; without it the set would grow
for the life of the process.

Thread safety: the gate runs in FastAPI's worker thread pool, so reads and
writes can interleave across threads. A single lock guards the dict.

Usage:
    registry = RevocationRegistry()
    registry.revoke(token, expires_at)
    registry.is_revoked(token)   # True
    registry.purge_expired()     # call periodically to trim dead entries
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone


class RevocationRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, datetime | None] = {}

    def revoke(self, token: str, expires_at: datetime | None = None) -> None:
        """Mark token as no longer trusted.

        expires_at None keeps the entry until process exit.
        """
        with self._lock:
            self._entries[token] = expires_at

    def is_revoked(self, token: str) -> bool:
        with self._lock:
            return token in self._entries

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete entries whose token has already expired. Returns rows removed."""
        cutoff = now or datetime.now(timezone.utc)
        with self._lock:
            dead = [t for t, exp in self._entries.items() if exp is not None and exp <= cutoff]
            for token in dead:
                del self._entries[token]
        return len(dead)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
