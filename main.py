#!/usr/bin/env python3
"""
Rosin Tracker admin console -- account maintenance from the server shell.

Everything here runs with direct database access and no HTTP session, so it is
the recovery path when a user is locked out, has lost their 2FA device, or
needs a password reset token delivered by hand.

Usage:
  python main.py create-user --email you@example.com [--username you]
  python main.py issue-reset-token --email you@example.com
  python main.py reset-user --email you@example.com
  python main.py cleanup-sessions
  python main.py --db-url sqlite:////srv/rosin/auth.db reset-user --email you@example.com

Environment variables:
  DATABASE_URL   SQLAlchemy URL of the auth database (overridden by --db-url).
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.service import AuthService
from auth.store import UserStore
from core.config import get_settings

logger = logging.getLogger("rosintracker.cli")


def _read_password(provided: Optional[str]) -> Optional[str]:
    """Return --password if given, otherwise prompt twice without echo."""
    if provided:
        return provided
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def _create_user(service: AuthService, args: argparse.Namespace) -> int:
    password = _read_password(args.password)
    if password is None:
        return 1
    result = service.register_user(args.email, password, args.username)
    if not result.ok:
        print(f"  [!] {result.message}")
        return 1
    user = result.value
    print(f"  Created user {user.username} <{user.email}> (id {user.id}).")
    return 0


def _issue_reset_token(service: AuthService, args: argparse.Namespace) -> int:
    token = service.request_password_reset(args.email)
    if token is None:
        print(f"  [!] No account with email '{args.email}'.")
        return 1
    ttl = get_settings().reset_token_ttl_hours
    print(f"  Reset token (valid {ttl}h, single use):")
    print(f"  {token}")
    return 0


def _reset_user(service: AuthService, args: argparse.Namespace) -> int:
    report = service.recover_account(args.email)
    if report is None:
        print(f"  [!] No account with email '{args.email}'.")
        return 1
    print(f"  Recovered user id {report.user_id}:")
    print(f"    two-factor disabled : {'yes' if report.two_factor_disabled else 'was not enabled'}")
    print("    lockout cleared     : yes")
    print(f"    sessions revoked    : {report.sessions_revoked}")
    return 0


def _cleanup_sessions(service: AuthService, args: argparse.Namespace) -> int:
    removed = service.cleanup_expired_sessions()
    print(f"  Removed {removed} expired session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="rosin-admin",
        description="Rosin Tracker -- account administration console",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--db-url",
        default=None,
        help="SQLAlchemy database URL (default: DATABASE_URL or the bundled SQLite file)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    create = commands.add_parser("create-user", help="Create a login account")
    create.add_argument("--email", required=True)
    create.add_argument("--username", default=None, help="Defaults to the email address")
    create.add_argument("--password", default=None, help="Prompted for when omitted")
    create.set_defaults(handler=_create_user)

    issue = commands.add_parser("issue-reset-token", help="Print a password reset token for out-of-band delivery")
    issue.add_argument("--email", required=True)
    issue.set_defaults(handler=_issue_reset_token)

    reset = commands.add_parser(
        "reset-user",
        help="Emergency recovery: disable 2FA, clear lockout, revoke all sessions",
    )
    reset.add_argument("--email", required=True)
    reset.set_defaults(handler=_reset_user)

    cleanup = commands.add_parser("cleanup-sessions", help="Delete expired session rows")
    cleanup.set_defaults(handler=_cleanup_sessions)
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    args = build_parser().parse_args(argv)
    settings = get_settings()
    store = UserStore(args.db_url or settings.database_url)
    try:
        service = AuthService(store, settings)
        logger.info("Running %s", args.command)
        return args.handler(service, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
