"""
tests/conftest.py -- Shared test fixtures for PermGate unit and integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users + permissions
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient plus seeded admin / regular / banned accounts
  - user_store, permission_store, resolver, hasher, tokens: unit-test fixtures
    backed by a per-test SQLite file

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
BCRYPT_ROUNDS is lowered to the bcrypt minimum to keep the suite fast.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")

import pytest
from fastapi.testclient import TestClient

from api.main import app, attach_auth_components
from auth.models import Role, TokenClaims, User, UserStatus
from auth.passwords import PasswordHasher
from auth.permissions import PermissionResolver
from auth.store import PermissionStore, UserStore
from auth.tokens import TokenService
from core.config import get_settings

TEST_SECRET = "test-secret-key-with-at-least-32-characters"

ADMIN_PASSWORD = "adminpass1"
USER_PASSWORD = "userpass1"
BANNED_PASSWORD = "bannedpass1"

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, PermissionStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Both stores point at the same named database so grant rows can reference
    users by foreign key, exactly as in production.

    Args:
        db_suffix: Unique string appended to the DB name so parallel test
                   modules don't share state (e.g. 'api', 'cli').
    """
    db_url = f"sqlite:///file:test_permgate_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=db_url), PermissionStore(db_url=db_url)


def _patch_lifespan(user_store: UserStore, permission_store: PermissionStore):
    """Return an async context manager that replaces the real lifespan.

    Runs the same attach_auth_components() wiring as production against the
    pre-created test stores, then seeds the permission dictionary.

    The purge_task is a long-sleeping coroutine that keeps asyncio happy
    (a real asyncio.Task is required; MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_auth_components(app, get_settings(), user_store, permission_store)
        app.state.resolver.seed_defaults()
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


def _create_account(
    store: UserStore,
    hasher: PasswordHasher,
    username: str,
    password: str,
    role: Role = Role.user,
    status: UserStatus = UserStatus.active,
) -> int:
    return store.create_user(
        User(
            username=username,
            email=f"{username}@example.com",
            password_hash=hasher.hash(password),
            role=role,
            status=status,
        )
    )


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[SimpleNamespace, None, None]:
    """Yield a namespace with the client and three seeded accounts.

    Attributes:
        client:        TestClient running the real app with a patched lifespan
        admin_id / admin_token:  active admin "testadmin"
        user_id / user_token:    active user "testuser" granted user:list
        banned_id / banned_token: banned user "banneduser" (token still valid)

    Tokens are signed with the app's own key so the gate accepts them. Tests
    that revoke or delete should create their own accounts rather than
    spending these.
    """
    user_store, permission_store = _make_test_stores("api")
    hasher = PasswordHasher(rounds=4)

    admin_id = _create_account(user_store, hasher, "testadmin", ADMIN_PASSWORD, role=Role.admin)
    user_id = _create_account(user_store, hasher, "testuser", USER_PASSWORD)
    banned_id = _create_account(user_store, hasher, "banneduser", BANNED_PASSWORD, status=UserStatus.banned)

    resolver = PermissionResolver(permission_store, user_store)
    resolver.seed_defaults()
    resolver.assign(user_id, "user:list")

    tokens = TokenService(get_settings().secret_key, expire_seconds=3600)

    def _token(uid: int, username: str, role: Role) -> str:
        return tokens.issue(TokenClaims(user_id=uid, username=username, role=role))

    app.router.lifespan_context = _patch_lifespan(user_store, permission_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield SimpleNamespace(
            client=client,
            admin_id=admin_id,
            admin_token=_token(admin_id, "testadmin", Role.admin),
            user_id=user_id,
            user_token=_token(user_id, "testuser", Role.user),
            banned_id=banned_id,
            banned_token=_token(banned_id, "banneduser", Role.user),
        )

    user_store.close()
    permission_store.close()


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh SQLite file per test
# ---------------------------------------------------------------------------


@pytest.fixture()
def db_url(tmp_path) -> str:
    return f"sqlite:///{tmp_path / 'permgate.db'}"


@pytest.fixture()
def user_store(db_url: str) -> Generator[UserStore, None, None]:
    store = UserStore(db_url)
    yield store
    store.close()


@pytest.fixture()
def permission_store(db_url: str) -> Generator[PermissionStore, None, None]:
    store = PermissionStore(db_url)
    yield store
    store.close()


@pytest.fixture()
def resolver(permission_store: PermissionStore, user_store: UserStore) -> PermissionResolver:
    """A resolver over a seeded dictionary."""
    r = PermissionResolver(permission_store, user_store)
    r.seed_defaults()
    return r


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4)


@pytest.fixture()
def tokens() -> TokenService:
    return TokenService(TEST_SECRET, expire_seconds=3600)


@pytest.fixture()
def make_user(user_store: UserStore, hasher: PasswordHasher):
    """Factory: make_user("alice", role=Role.admin) -> stored User."""

    def _make(
        username: str,
        password: str = "secret123",
        role: Role = Role.user,
        status: UserStatus = UserStatus.active,
    ) -> User:
        uid = _create_account(user_store, hasher, username, password, role=role, status=status)
        return user_store.get_by_id(uid)

    return _make
