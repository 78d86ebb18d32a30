#!/usr/bin/env python3
"""
Warden admin CLI -- bootstrap and maintain the permission catalog.

Usage:
  python main.py seed
  python main.py create-account admin@example.com
  python main.py grant-role admin@example.com admin
  python main.py grant-role ops@example.com manager --expires-days 30
  python main.py revoke-role ops@example.com manager
  python main.py permissions ops@example.com
  python main.py purge

Reads the same environment as the API (DATABASE_URL, BCRYPT_ROUNDS, ...)
through core.config.get_settings().
"""

import argparse
import getpass
import sys
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Account
from auth.passwords import PasswordHasher
from auth.store import AccountStore
from auth.token_store import TokenStore
from core.clock import SystemClock
from core.config import get_settings
from core.database import create_db_engine
from core.errors import WardenError
from rbac.seed import seed_catalog
from rbac.store import PermissionGraph


def _read_password() -> str:
    """Prompt twice without echo. Empty or mismatched input aborts."""
    password = getpass.getpass("Password: ")
    if not password or password != getpass.getpass("Repeat password: "):
        raise SystemExit("  [!] Passwords are empty or do not match.")
    return password


def cmd_seed(graph: PermissionGraph, args: argparse.Namespace) -> int:
    created = seed_catalog(graph)
    print(f"  Seeded {created['roles']} role(s), {created['permissions']} permission(s), {created['edges']} edge(s).")
    return 0


def cmd_create_account(accounts: AccountStore, args: argparse.Namespace, password: Optional[str] = None) -> int:
    settings = get_settings()
    hasher = PasswordHasher(settings.bcrypt_rounds)
    account = Account(
        email=args.email.strip().lower(),
        password_digest=hasher.hash(password or _read_password()),
        is_verified=True,
    )
    try:
        account_id = accounts.create_account(account)
    except IntegrityError:
        print(f"  [!] An account for '{account.email}' already exists.")
        return 1
    print(f"  Created account {account_id} ({account.email}).")
    return 0


def cmd_grant_role(accounts: AccountStore, graph: PermissionGraph, args: argparse.Namespace) -> int:
    account = accounts.get_by_email(args.email.strip().lower())
    role = graph.get_role_by_name(args.role)
    if account is None or role is None:
        print(f"  [!] Unknown account '{args.email}' or role '{args.role}'.")
        return 1
    expires_at = None
    if args.expires_days:
        expires_at = SystemClock().now() + timedelta(days=args.expires_days)
    graph.grant_role(account.id, role.id, granted_by=None, expires_at=expires_at)
    print(f"  Granted role '{role.name}' to {account.email}.")
    return 0


def cmd_revoke_role(accounts: AccountStore, graph: PermissionGraph, args: argparse.Namespace) -> int:
    account = accounts.get_by_email(args.email.strip().lower())
    role = graph.get_role_by_name(args.role)
    if account is None or role is None:
        print(f"  [!] Unknown account '{args.email}' or role '{args.role}'.")
        return 1
    if not graph.revoke_role(account.id, role.id):
        print(f"  {account.email} held no active grants for '{role.name}'.")
        return 0
    print(f"  Revoked role '{role.name}' from {account.email}.")
    return 0


def cmd_permissions(accounts: AccountStore, graph: PermissionGraph, args: argparse.Namespace) -> int:
    account = accounts.get_by_email(args.email.strip().lower())
    if account is None:
        print(f"  [!] Unknown account '{args.email}'.")
        return 1
    print(f"  Roles:       {', '.join(graph.account_roles(account.id)) or '-'}")
    print(f"  Permissions: {', '.join(graph.account_permissions(account.id)) or '-'}")
    return 0


def cmd_purge(tokens: TokenStore, graph: PermissionGraph, args: argparse.Namespace) -> int:
    removed = tokens.purge_expired()
    expired = graph.cleanup_expired_grants()
    print(f"  Purged {removed} expired token(s), deactivated {expired} expired grant(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Warden admin CLI -- seed the catalog and manage role grants.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("seed", help="Create the default roles, permissions, and edges (idempotent)")

    create = sub.add_parser("create-account", help="Create a verified account; prompts for the password")
    create.add_argument("email")

    grant = sub.add_parser("grant-role", help="Grant every permission of a role to an account")
    grant.add_argument("email")
    grant.add_argument("role")
    grant.add_argument("--expires-days", type=int, default=None, metavar="N", help="Grant expires after N days")

    revoke = sub.add_parser("revoke-role", help="Revoke a role's grants from an account")
    revoke.add_argument("email")
    revoke.add_argument("role")

    show = sub.add_parser("permissions", help="Show an account's effective roles and permissions")
    show.add_argument("email")

    sub.add_parser("purge", help="Delete expired tokens and deactivate expired grants")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 2

    settings = get_settings()
    engine = create_db_engine(settings.database_url, settings.store_timeout_seconds)
    accounts = AccountStore(engine)
    graph = PermissionGraph(engine)
    try:
        if args.command == "seed":
            return cmd_seed(graph, args)
        if args.command == "create-account":
            return cmd_create_account(accounts, args)
        if args.command == "grant-role":
            return cmd_grant_role(accounts, graph, args)
        if args.command == "revoke-role":
            return cmd_revoke_role(accounts, graph, args)
        if args.command == "permissions":
            return cmd_permissions(accounts, graph, args)
        return cmd_purge(TokenStore(engine), graph, args)
    except WardenError as exc:
        print(f"  [!] {exc}")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
