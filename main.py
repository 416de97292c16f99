#!/usr/bin/env python3
"""
PermGate -- operator CLI for the account and permission database.

The HTTP API never lets anyone create an admin account or grant
permissions before an admin exists. This CLI covers that bootstrap step and
other one-off maintenance, working directly against the database.

Usage:
  python main.py seed-permissions
  python main.py create-user alice alice@example.com s3cretpw --role admin
  python main.py grant 2 user:list article:create
  python main.py --db-url sqlite:///other.db seed-permissions

Environment variables:
  DATABASE_URL   Database to operate on when --db-url is not given.
  SECRET_KEY / DEBUG are read through core.config like the API does, so the
  same .env file works for both.
"""

import argparse
import sys
from typing import Optional

from auth.errors import AuthError
from auth.models import Role, User, UserStatus
from auth.passwords import DEFAULT_ROUNDS, PasswordHasher
from auth.permissions import PermissionResolver
from auth.service import check_registration_fields
from auth.store import PermissionStore, UserStore
from core.config import get_settings


def _resolve_db(args: argparse.Namespace) -> tuple[str, int]:
    """Return (database URL, bcrypt rounds) from --db-url or the app settings."""
    if args.db_url:
        return args.db_url, DEFAULT_ROUNDS
    settings = get_settings()
    return settings.database_url, settings.bcrypt_rounds


def _cmd_seed_permissions(args: argparse.Namespace) -> int:
    db_url, _ = _resolve_db(args)
    store = PermissionStore(db_url)
    try:
        added = PermissionResolver(store).seed_defaults()
        total = len(store.list_definitions())
    finally:
        store.close()
    print(f"  {added} permission(s) added, {total} defined.")
    return 0


def _cmd_create_user(args: argparse.Namespace) -> int:
    db_url, rounds = _resolve_db(args)
    try:
        check_registration_fields(args.username, args.email, args.password)
        role = Role.parse(args.role)
        status = UserStatus.parse(args.status)
    except AuthError as exc:
        print(f"  [!] {exc.msg}")
        return 1
    except ValueError as exc:
        print(f"  [!] {exc}")
        return 1

    store = UserStore(db_url)
    try:
        clash = store.find_conflict(args.username, args.email)
        if clash is not None:
            print(f"  [!] A user with that {clash} already exists.")
            return 1
        user = User(
            username=args.username,
            email=args.email,
            password_hash=PasswordHasher(rounds=rounds).hash(args.password),
            role=role,
            status=status,
        )
        user_id = store.create_user(user)
    finally:
        store.close()
    print(f"  Created {role.value} '{args.username}' (id={user_id}).")
    return 0


def _cmd_grant(args: argparse.Namespace) -> int:
    db_url, _ = _resolve_db(args)
    user_store = UserStore(db_url)
    permission_store = PermissionStore(db_url)
    try:
        result = PermissionResolver(permission_store, user_store).batch_assign(args.user_id, args.codes)
    except AuthError as exc:
        print(f"  [!] {exc.msg}")
        return 1
    finally:
        user_store.close()
        permission_store.close()
    if result.added:
        print(f"  Granted to user {result.user_id}: {', '.join(result.added)}")
    if result.already_held:
        print(f"  Already held: {', '.join(result.already_held)}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="permgate",
        description="Operator tasks for the PermGate account and permission database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py seed-permissions
  python main.py create-user admin admin@example.com ChangeMe1 --role admin
  python main.py grant 2 user:list user:update
        """,
    )
    parser.add_argument(
        "--db-url",
        metavar="URL",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL from the environment)",
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    seed = sub.add_parser("seed-permissions", help="Insert the default permission dictionary")
    seed.set_defaults(func=_cmd_seed_permissions)

    create = sub.add_parser("create-user", help="Create an account (any role, including admin)")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument("password")
    create.add_argument(
        "--role",
        choices=[r.value for r in Role],
        default=Role.user.value,
        help="Account role (default: user)",
    )
    create.add_argument(
        "--status",
        choices=[s.value for s in UserStatus],
        default=UserStatus.active.value,
        help="Account status (default: active)",
    )
    create.set_defaults(func=_cmd_create_user)

    grant = sub.add_parser("grant", help="Grant one or more permission codes to a user")
    grant.add_argument("user_id", type=int, metavar="USER_ID")
    grant.add_argument("codes", nargs="+", metavar="CODE")
    grant.set_defaults(func=_cmd_grant)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
