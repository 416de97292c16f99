"""Unit tests for auth/store.py -- UserStore and PermissionStore.

Covers:
- create_user / get_by_id / find_by_username_or_email round trip
- duplicate username or email raises IntegrityError; find_conflict names the clash
- role / status / password / last_login updates and updated_at stamping
- count_active_admins ignores inactive admins and non-admins
- delete_user cascades the user's grant rows
- UNIQUE(user_id, permission_code): a second insert reports "already held"
- grants referencing an unknown code or user are rejected by foreign key
"""

import pytest
from sqlalchemy.exc import IntegrityError

from auth.models import PermissionDefinition, Role, User, UserStatus
from auth.store import PermissionStore, UserStore


class TestUserStore:
    def test_create_and_fetch(self, user_store: UserStore) -> None:
        uid = user_store.create_user(User(username="alice", email="alice@example.com", password_hash="h"))
        assert isinstance(uid, int) and uid > 0
        user = user_store.get_by_id(uid)
        assert user.username == "alice"
        assert user.role is Role.user
        assert user.status is UserStatus.active
        assert user.created_at is not None
        assert user.last_login is None

    def test_missing_user_is_none(self, user_store: UserStore) -> None:
        assert user_store.get_by_id(999) is None
        assert user_store.find_by_username_or_email("ghost") is None

    def test_lookup_by_username_or_email(self, user_store: UserStore) -> None:
        uid = user_store.create_user(User(username="bob", email="bob@example.com", password_hash="h"))
        assert user_store.find_by_username_or_email("bob").id == uid
        assert user_store.find_by_username_or_email("bob@example.com").id == uid
        # Exact match only.
        assert user_store.find_by_username_or_email("BOB") is None

    def test_duplicates_raise_integrity_error(self, user_store: UserStore) -> None:
        user_store.create_user(User(username="carol", email="carol@example.com", password_hash="h"))
        with pytest.raises(IntegrityError):
            user_store.create_user(User(username="carol", email="other@example.com", password_hash="h"))
        with pytest.raises(IntegrityError):
            user_store.create_user(User(username="carol2", email="carol@example.com", password_hash="h"))

    def test_find_conflict(self, user_store: UserStore) -> None:
        user_store.create_user(User(username="dave", email="dave@example.com", password_hash="h"))
        assert user_store.find_conflict("dave", "new@example.com") == "username"
        assert user_store.find_conflict("newname", "dave@example.com") == "email"
        assert user_store.find_conflict("dave", "dave@example.com") == "username"
        assert user_store.find_conflict("newname", "new@example.com") is None

    def test_updates(self, user_store: UserStore) -> None:
        uid = user_store.create_user(User(username="erin", email="erin@example.com", password_hash="h"))
        before = user_store.get_by_id(uid)

        assert user_store.update_role(uid, Role.author)
        assert user_store.update_status(uid, UserStatus.banned)
        assert user_store.update_password(uid, "h2")
        assert user_store.update_info(uid, email="erin2@example.com")
        user_store.update_last_login(uid)

        after = user_store.get_by_id(uid)
        assert after.role is Role.author
        assert after.status is UserStatus.banned
        assert after.password_hash == "h2"
        assert after.email == "erin2@example.com"
        assert after.last_login is not None
        assert after.updated_at >= before.updated_at

    def test_update_missing_user_returns_false(self, user_store: UserStore) -> None:
        assert user_store.update_role(404, Role.admin) is False
        assert user_store.update_info(404) is False

    def test_count_active_admins(self, user_store: UserStore) -> None:
        user_store.create_user(User(username="a1", email="a1@x.io", password_hash="h", role=Role.admin))
        user_store.create_user(
            User(username="a2", email="a2@x.io", password_hash="h", role=Role.admin, status=UserStatus.inactive)
        )
        user_store.create_user(User(username="u1", email="u1@x.io", password_hash="h"))
        assert user_store.count_active_admins() == 1

    def test_has_users(self, user_store: UserStore) -> None:
        assert user_store.has_users() is False
        user_store.create_user(User(username="first", email="first@x.io", password_hash="h"))
        assert user_store.has_users() is True


class TestPermissionStore:
    @pytest.fixture(autouse=True)
    def _dictionary(self, permission_store: PermissionStore) -> None:
        permission_store.add_definitions(
            [PermissionDefinition("user:list", "List users"), PermissionDefinition("article:create", "Create")]
        )

    def test_add_definitions_skips_existing(self, permission_store: PermissionStore) -> None:
        added = permission_store.add_definitions(
            [PermissionDefinition("user:list", "List users"), PermissionDefinition("log:view", "Logs")]
        )
        assert added == 1
        assert [d.code for d in permission_store.list_definitions()] == ["article:create", "log:view", "user:list"]

    def test_existing_codes(self, permission_store: PermissionStore) -> None:
        assert permission_store.existing_codes(["user:list", "nope:nope"]) == {"user:list"}
        assert permission_store.existing_codes([]) == set()

    def test_grant_is_unique_per_pair(self, user_store: UserStore, permission_store: PermissionStore) -> None:
        uid = user_store.create_user(User(username="gina", email="gina@x.io", password_hash="h"))
        assert permission_store.insert_grant(uid, "user:list") is True
        assert permission_store.insert_grant(uid, "user:list") is False
        assert permission_store.count_grants(uid) == 1
        assert permission_store.list_grants(uid) == ["user:list"]

    def test_grant_requires_known_code_and_user(
        self, user_store: UserStore, permission_store: PermissionStore
    ) -> None:
        uid = user_store.create_user(User(username="hank", email="hank@x.io", password_hash="h"))
        with pytest.raises(IntegrityError):
            permission_store.insert_grant(uid, "nope:nope")
        with pytest.raises(IntegrityError):
            permission_store.insert_grant(9999, "user:list")

    def test_delete_grant(self, user_store: UserStore, permission_store: PermissionStore) -> None:
        uid = user_store.create_user(User(username="ivy", email="ivy@x.io", password_hash="h"))
        permission_store.insert_grant(uid, "user:list")
        assert permission_store.delete_grant(uid, "user:list") is True
        assert permission_store.delete_grant(uid, "user:list") is False
        assert permission_store.has_grant(uid, "user:list") is False

    def test_delete_user_cascades_grants(self, user_store: UserStore, permission_store: PermissionStore) -> None:
        uid = user_store.create_user(User(username="jack", email="jack@x.io", password_hash="h"))
        permission_store.insert_grant(uid, "user:list")
        permission_store.insert_grant(uid, "article:create")
        assert user_store.delete_user(uid) is True
        assert permission_store.count_grants(uid) == 0
        assert user_store.delete_user(uid) is False
