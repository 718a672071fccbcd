#!/usr/bin/env python3
"""
Authorization service -- operator command line.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py create-role admin --description "Administrators"
  python main.py set-enabled a@x.com --disable
  python main.py set-enabled a@x.com --enable
  python main.py purge-confirmations

Every command except serve accepts --db-url to point at a database other than
the configured DATABASE_URL.

Environment variables:
  SECRET_KEY    Signing secret (>= 32 chars). Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL of the account database.
"""

import argparse
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.confirmation import ConfirmAccountStore
from auth.models import Role
from auth.store import UserStore


def _db_url(args: argparse.Namespace) -> str:
    if args.db_url:
        return args.db_url
    from core.config import get_settings

    return get_settings().database_url


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_create_role(args: argparse.Namespace) -> int:
    store = UserStore(_db_url(args))
    try:
        role = store.create_role(Role(name=args.name, description=args.description))
    except IntegrityError:
        print(f"  [!] Role '{args.name}' already exists.")
        return 1
    finally:
        store.close()
    print(f"  Created role '{role.name}' (id={role.id})")
    return 0


def cmd_set_enabled(args: argparse.Namespace) -> int:
    store = UserStore(_db_url(args))
    try:
        user = store.get_by_email(args.email.lower())
        if user is None:
            print(f"  [!] No user with email '{args.email}'.")
            return 1
        store.update_user(user.id, enabled=args.enabled)
    finally:
        store.close()
    state = "enabled" if args.enabled else "disabled"
    print(f"  {args.email} is now {state}")
    return 0


def cmd_purge_confirmations(args: argparse.Namespace) -> int:
    store = ConfirmAccountStore(_db_url(args))
    try:
        removed = store.purge_expired()
    finally:
        store.close()
    print(f"  Removed {removed} expired confirmation token(s)")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Authorization service operator commands.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true")
    serve.set_defaults(func=cmd_serve)

    role = sub.add_parser("create-role", help="Create a role")
    role.add_argument("name")
    role.add_argument("--description", default=None)
    role.add_argument("--db-url", default=None)
    role.set_defaults(func=cmd_create_role)

    enabled = sub.add_parser("set-enabled", help="Enable or disable an account")
    enabled.add_argument("email")
    toggle = enabled.add_mutually_exclusive_group(required=True)
    toggle.add_argument("--enable", dest="enabled", action="store_true")
    toggle.add_argument("--disable", dest="enabled", action="store_false")
    enabled.add_argument("--db-url", default=None)
    enabled.set_defaults(func=cmd_set_enabled)

    purge = sub.add_parser("purge-confirmations", help="Delete expired confirmation tokens")
    purge.add_argument("--db-url", default=None)
    purge.set_defaults(func=cmd_purge_confirmations)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
