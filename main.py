#!/usr/bin/env python3
"""
Blog admin -- operator tooling for the back-office auth stores.

Runs against the same databases as the API server, using the same Settings
(environment variables and .env). Nothing here is reachable over HTTP.

Usage:
  python main.py bootstrap
  python main.py list-users
  python main.py create-user --as admin ed ed@example.com --role editor
  python main.py reset-password admin

Environment variables:
  SECRET_KEY                 Required unless DEBUG=true (same rules as the API server).
  USERS_DB_URL               Identity database (default: sqlite:///data/admin_users.db).
  CREDENTIALS_DB_URL         Credential database (default: sqlite:///data/admin_credentials.db).
  BOOTSTRAP_ADMIN_PASSWORD   Initial admin password. Generated and printed once if unset.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.context import AuthContext, build_auth_context
from core.config import get_settings
from core.errors import AuthError, ConfigError


def _read_password(supplied: Optional[str]) -> str:
    """Return the password from the command line, or prompt for it twice."""
    if supplied:
        return supplied
    first = getpass.getpass("  New password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        raise ValueError("Passwords do not match.")
    return first


def _resolve_user(auth: AuthContext, login: str):
    user = auth.directory.find_by_username_or_email(login)
    if user is None:
        raise ValueError(f"No user named {login!r}.")
    return user


def cmd_bootstrap(auth: AuthContext, args: argparse.Namespace) -> int:
    result = auth.users.bootstrap()
    if not result.created:
        print("  Stores already initialized. Nothing to do.")
        return 0
    print(f"  Default admin {auth.settings.bootstrap_admin_username!r} created.")
    if result.generated_password is not None:
        print(f"  Password (shown once): {result.generated_password}")
    print("  Log in and change the password immediately.")
    return 0


def cmd_list_users(auth: AuthContext, args: argparse.Namespace) -> int:
    users = auth.directory.list_all()
    if not users:
        print("  No users.")
        return 0
    print(f"  {'ID':<34}{'USERNAME':<20}{'ROLE':<8}{'LAST LOGIN':<34}EMAIL")
    for u in users:
        print(f"  {u.id:<34}{u.username:<20}{u.role:<8}{(u.last_login or '-'):<34}{u.email}")
    return 0


def cmd_create_user(auth: AuthContext, args: argparse.Namespace) -> int:
    # The acting admin must exist; the same role check as the API applies.
    actor = _resolve_user(auth, args.actor)
    password = _read_password(args.password)
    user = auth.users.create_user(actor, args.username, args.email, password, args.role)
    print(f"  Created {user.role} {user.username!r} ({user.id}).")
    return 0


def cmd_reset_password(auth: AuthContext, args: argparse.Namespace) -> int:
    user = _resolve_user(auth, args.login)
    password = _read_password(args.password)
    auth.users.reset_password(user.id, password)
    print(f"  Password for {user.username!r} reset.")
    return 0


_COMMANDS = {
    "bootstrap": cmd_bootstrap,
    "list-users": cmd_list_users,
    "create-user": cmd_create_user,
    "reset-password": cmd_reset_password,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="blog-admin",
        description="Operator tooling for blog admin accounts.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py bootstrap
  python main.py list-users
  python main.py create-user --as admin ed ed@example.com --role editor
  python main.py reset-password admin --password 'n3w-s3cret-pass'
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("bootstrap", help="Create the default admin if no credentials exist yet")
    sub.add_parser("list-users", help="List every admin and editor account")

    create = sub.add_parser("create-user", help="Create an account on behalf of an existing admin")
    create.add_argument("username")
    create.add_argument("email")
    create.add_argument(
        "--as",
        dest="actor",
        required=True,
        metavar="ADMIN",
        help="Username or email of the admin performing the action",
    )
    create.add_argument("--role", choices=["admin", "editor"], default="editor")
    create.add_argument("--password", help="Password for the new account (prompted if omitted)")

    reset = sub.add_parser("reset-password", help="Overwrite a user's password without the old one")
    reset.add_argument("login", metavar="USER", help="Username or email")
    reset.add_argument("--password", help="New password (prompted if omitted)")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    # Bootstrap and reset warnings go to stderr alongside the command output.
    logging.basicConfig(level=logging.WARNING, format="  %(levelname)s %(name)s %(message)s")
    if not args.command:
        parser.print_help()
        return 0

    try:
        auth = build_auth_context(get_settings())
    except ConfigError as e:
        print(f"  [!] {e.message}", file=sys.stderr)
        return 1
    except AuthError as e:
        print(f"  [!] Could not open the auth stores: {e.message}", file=sys.stderr)
        return 1

    try:
        return _COMMANDS[args.command](auth, args)
    except (AuthError, ValueError) as e:
        message = e.message if isinstance(e, AuthError) else str(e)
        print(f"  [!] {message}", file=sys.stderr)
        return 1
    finally:
        auth.close()


if __name__ == "__main__":
    sys.exit(main())
