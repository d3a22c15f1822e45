#!/usr/bin/env python3
"""
Angola Geo API -- administration CLI.

Self-registration is disabled, so the first OWNER account has to be created
from the command line; every later account goes through POST /auth/register.

Usage:
  python main.py create-user --name "Ana Silva" --email ana@example.ao
  python main.py create-user --name "Rui" --email rui@example.ao --role ADMIN
  python main.py flush-cache
  python main.py purge-cache
  python main.py serve --port 3000

Environment variables (see core/config.py):
  DATABASE_URL  Store location (default: angolageo.db next to this file).
  CACHE_URL     sqlite:///path, sqlite:///:memory: or redis://host:port/db.
  JWT_SECRET    Required unless DEBUG=true.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.models import ROLE_OWNER, ROLES, User
from auth.store import UserStore
from auth.tokens import hash_password
from cache.store import create_cache
from core.config import get_settings
from core.errors import Conflict

MIN_PASSWORD_LENGTH = 6


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the --password value or prompt twice for one."""
    if given:
        return given
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm:  ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def create_user(args: argparse.Namespace) -> int:
    settings = get_settings()
    password = _read_password(args.password)
    if password is None:
        return 1
    if len(password) < MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters.")
        return 1

    store = UserStore(settings.database_url)
    try:
        if not store.has_users() and args.role != ROLE_OWNER:
            print("  [!] No accounts exist yet. The first account should be an OWNER.")
        user = store.create_user(
            User(
                name=args.name.strip(),
                email=args.email.strip().lower(),
                role=args.role,
                hashed_password=hash_password(password),
            )
        )
    except Conflict:
        print(f"  [!] An account with email '{args.email}' already exists.")
        return 1
    finally:
        store.close()

    print(f"  Created {user.role} {user.email} (id {user.id})")
    return 0


def flush_cache(args: argparse.Namespace) -> int:
    """Remove every cached envelope and tag index."""
    cache = create_cache(get_settings().cache_url)
    try:
        cache.flush()
    finally:
        cache.close()
    print("  Cache flushed.")
    return 0


def purge_cache(args: argparse.Namespace) -> int:
    """Remove only expired entries (SQLite backend; Redis expires keys itself)."""
    cache = create_cache(get_settings().cache_url)
    try:
        removed = cache.purge_expired()
    finally:
        cache.close()
    print(f"  {removed} expired cache entr{'y' if removed == 1 else 'ies'} removed.")
    return 0


def serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=args.host, port=args.port or get_settings().port, reload=args.reload)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="angolageo",
        description="Administration commands for the Angola provinces and municipalities API.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --name "Ana Silva" --email ana@example.ao
  python main.py flush-cache
  DATABASE_URL=postgresql://user:pw@host/db python main.py serve
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_user = sub.add_parser("create-user", help="Create an account (use this to bootstrap the first OWNER)")
    p_user.add_argument("--name", required=True, help="Display name")
    p_user.add_argument("--email", required=True, help="Login email (stored lowercase)")
    p_user.add_argument(
        "--role",
        choices=ROLES,
        default=ROLE_OWNER,
        help="USER, ADMIN or OWNER (default: OWNER)",
    )
    p_user.add_argument(
        "--password",
        default=None,
        help="Password; prompted for when omitted (preferred, keeps it out of shell history)",
    )
    p_user.set_defaults(func=create_user)

    p_flush = sub.add_parser("flush-cache", help="Delete every cached response")
    p_flush.set_defaults(func=flush_cache)

    p_purge = sub.add_parser("purge-cache", help="Delete expired cached responses")
    p_purge.set_defaults(func=purge_cache)

    p_serve = sub.add_parser("serve", help="Run the API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=None, help="Default: PORT setting (3000)")
    p_serve.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    p_serve.set_defaults(func=serve)

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
