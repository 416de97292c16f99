"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper.
UserStore and PermissionStore are the repositories; _row_to_user and
_row_to_definition are the mappers. Services and routes never touch SQL.

Security:
  All queries use bound parameters. No f-strings in SQL.

Schema:
  users             -- accounts (credentials, role, status)
  permissions       -- the permission dictionary (code, display name)
  user_permissions  -- grants; UNIQUE(user_id, permission_code) so a pair can
                       only exist once. Rows cascade away with their user.

Writes are single-row statements; no multi-row transactions are needed since
one (user, code) pair is independent of every other.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth.models import PermissionDefinition, Role, User, UserStatus

logger = logging.getLogger("permgate.auth.store")

_DEFAULT_DB_URL = "sqlite:///permgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(20), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("status", String(20), nullable=False, server_default="active"),
    Column("avatar", Text),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_login", String(32)),
)

_permissions = Table(
    "permissions",
    _metadata,
    Column("code", String(64), primary_key=True),
    Column("name", String(100), nullable=False),
)

_user_permissions = Table(
    "user_permissions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
    Column("permission_code", String(64), ForeignKey("permissions.code"), nullable=False),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("user_id", "permission_code", name="uq_user_permission"),
)


# ---------------------------------------------------------------------------
# Engine helpers
# ---------------------------------------------------------------------------


def _sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL and foreign keys per connection.

    SQLite PRAGMAs are not inherited by new connections from the pool, and
    foreign keys are off by default -- without them the grant cascade on
    user delete would never fire.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _make_engine(db_url: str) -> Engine:
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _sqlite_pragmas)
    _metadata.create_all(engine)
    return engine


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records (the credential store).

    Usage:
        store = UserStore("sqlite:///permgate.db")
        uid = store.create_user(User(username="alice", email="a@x.io", password_hash=h))
        user = store.get_by_id(uid)
        store.close()
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = _make_engine(db_url)

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if username or email already
        exists. The registration service pre-checks with find_conflict() and
        treats IntegrityError as a lost race on the same check.
        """
        now = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    password_hash=user.password_hash,
                    role=Role.parse(user.role).value,
                    status=UserStatus.parse(user.status).value,
                    avatar=user.avatar,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_username_or_email(self, value: str) -> User | None:
        """Look up a login subject by exact username or email (case-sensitive)."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.username == value, _users.c.email == value)).order_by(_users.c.id)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_conflict(self, username: str, email: str) -> str | None:
        """Return "username" or "email" if either is already taken, else None."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_users.c.username, _users.c.email).where(
                    or_(_users.c.username == username, _users.c.email == email)
                )
            ).fetchall()
        for row in rows:
            if row.username == username:
                return "username"
        return "email" if rows else None

    def update_role(self, user_id: int, role: Role) -> bool:
        """Returns True if a row was updated, False if user_id was not found."""
        return self._update(user_id, role=Role.parse(role).value)

    def update_status(self, user_id: int, status: UserStatus) -> bool:
        return self._update(user_id, status=UserStatus.parse(status).value)

    def update_info(self, user_id: int, username: str | None = None, email: str | None = None) -> bool:
        fields = {k: v for k, v in (("username", username), ("email", email)) if v is not None}
        if not fields:
            return False
        return self._update(user_id, **fields)

    def update_password(self, user_id: int, password_hash: str) -> bool:
        return self._update(user_id, password_hash=password_hash)

    def update_last_login(self, user_id: int) -> None:
        """Stamp the current UTC timestamp as last_login after a successful login."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=_now_iso()))
            conn.commit()

    def count_active_admins(self) -> int:
        """Return the number of active admin users (last-admin guard)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_users)
                .where((_users.c.role == Role.admin.value) & (_users.c.status == UserStatus.active.value))
            ).scalar()
        return result or 0

    def delete_user(self, user_id: int) -> bool:
        """Permanently delete a user. Grants cascade; issued tokens become orphans."""
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def _update(self, user_id: int, **fields) -> bool:
        fields["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Permission dictionary and grants
# ---------------------------------------------------------------------------


class PermissionStore:
    """Repository for the permission dictionary and user grants.

    The dictionary is the single authority for "what is grantable". Grant
    rows reference it by foreign key, so an unknown code can never be stored
    even if a caller skips the resolver's validation.
    """

    def __init__(self, db_url: str = _DEFAULT_DB_URL) -> None:
        self.engine: Engine = _make_engine(db_url)

    # ------------------------------------------------------------------
    # Dictionary
    # ------------------------------------------------------------------

    def list_definitions(self) -> list[PermissionDefinition]:
        with self.engine.connect() as conn:
            rows = conn.execute(_permissions.select().order_by(_permissions.c.code)).fetchall()
        return [_row_to_definition(r) for r in rows]

    def get_definition(self, code: str) -> PermissionDefinition | None:
        with self.engine.connect() as conn:
            row = conn.execute(_permissions.select().where(_permissions.c.code == code)).fetchone()
        return _row_to_definition(row) if row is not None else None

    def existing_codes(self, codes: Iterable[str]) -> set[str]:
        """Return the subset of codes present in the dictionary."""
        wanted = list(set(codes))
        if not wanted:
            return set()
        with self.engine.connect() as conn:
            rows = conn.execute(select(_permissions.c.code).where(_permissions.c.code.in_(wanted))).fetchall()
        return {r.code for r in rows}

    def add_definitions(self, definitions: Iterable[PermissionDefinition]) -> int:
        """Insert dictionary entries that are not present yet. Returns rows inserted."""
        definitions = list(definitions)
        present = self.existing_codes(d.code for d in definitions)
        missing = [d for d in definitions if d.code not in present]
        if not missing:
            return 0
        with self.engine.connect() as conn:
            conn.execute(_permissions.insert(), [{"code": d.code, "name": d.name} for d in missing])
            conn.commit()
        return len(missing)

    # ------------------------------------------------------------------
    # Grants
    # ------------------------------------------------------------------

    def list_grants(self, user_id: int) -> list[str]:
        """Return the literal permission codes granted to user_id, sorted."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_user_permissions.c.permission_code)
                .where(_user_permissions.c.user_id == user_id)
                .order_by(_user_permissions.c.permission_code)
            ).fetchall()
        return [r.permission_code for r in rows if r.permission_code]

    def has_grant(self, user_id: int, code: str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_user_permissions.c.id).where(
                    (_user_permissions.c.user_id == user_id) & (_user_permissions.c.permission_code == code)
                )
            ).fetchone()
        return row is not None

    def insert_grant(self, user_id: int, code: str) -> bool:
        """Insert one grant. Returns False if the pair already existed.

        A concurrent assignment of the same pair surfaces as an IntegrityError
        on the UNIQUE constraint; that is reported as "already held". Any other
        integrity failure (missing user or code) is re-raised.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(
                    _user_permissions.insert().values(user_id=user_id, permission_code=code, created_at=_now_iso())
                )
                conn.commit()
        except IntegrityError:
            if self.has_grant(user_id, code):
                return False
            raise
        return True

    def delete_grant(self, user_id: int, code: str) -> bool:
        """Delete one grant. Returns True if a row was removed."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _user_permissions.delete().where(
                    (_user_permissions.c.user_id == user_id) & (_user_permissions.c.permission_code == code)
                )
            )
            conn.commit()
        return result.rowcount > 0

    def count_grants(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_user_permissions).where(_user_permissions.c.user_id == user_id)
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        password_hash=row.password_hash,
        role=Role.parse(row.role),
        status=UserStatus.parse(row.status),
        avatar=row.avatar,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_login=row.last_login,
    )


def _row_to_definition(row) -> PermissionDefinition:
    return PermissionDefinition(code=row.code, name=row.name)
