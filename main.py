#!/usr/bin/env python3
"""
MemberGate -- membership site with a members area and role administration.

Usage:
  python main.py serve
  python main.py serve --port 8080 --reload
  python main.py set-role ann@x.com admin
  python main.py set-role ann@x.com admin --database-url sqlite:///users.db

The web app has no screen for creating the first administrator: sign up
normally, then promote the account with set-role. Roles are stored verbatim,
exactly as the admin page does it.

Environment variables (see core/config.py for the full list):
  SECRET_KEY             Cookie signing key, at least 32 characters.
  DATABASE_URL           SQLAlchemy URL of the users database.
  SESSION_DATABASE_URL   SQLAlchemy URL of the sessions database.
  PORT                   Listening port (default 3000).
"""

import argparse
import sys
from typing import Optional

from core.config import get_settings


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = get_settings()
    uvicorn.run(
        "asgi:app",
        host=args.host or settings.host,
        port=args.port or settings.port,
        reload=args.reload,
    )
    return 0


def _set_role(args: argparse.Namespace) -> int:
    from auth.store import UserStore

    store = UserStore(args.database_url)
    try:
        matched = store.update_role(args.email, args.role)
    finally:
        store.close()
    if not matched:
        print(f"  [!] No user with email '{args.email}'.")
        return 1
    print(f"  {args.email} is now {args.role}.")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="membergate",
        description="Run the MemberGate web app or manage user roles.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the web server with uvicorn")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST setting)")
    serve.add_argument("--port", type=int, default=None, help="Listening port (default: PORT setting)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_serve)

    set_role = sub.add_parser("set-role", help="Overwrite the role of the user with EMAIL")
    set_role.add_argument("email")
    set_role.add_argument("role")
    set_role.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL of the users database (default: DATABASE_URL setting)",
    )
    set_role.set_defaults(func=_set_role)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
