#!/usr/bin/env python3
"""
Auth Gateway -- command-line entry point.

Usage:
  python main.py init-db            create any missing tables
  python main.py init-db --reset    drop and recreate every table (development only)
  python main.py serve              run the API with uvicorn
  python main.py serve --port 8080 --reload

Environment variables (see core/config.py for the full list):
  DATABASE_URL  SQLAlchemy URL. Defaults to auth_gateway.db next to this file.
  SECRET_KEY    Session cookie signing key, at least 32 characters.
  DEBUG         Set to true to auto-generate SECRET_KEY for local development.
"""

import argparse
import sys

import uvicorn

from auth.store import AuthStore
from core.config import get_settings


def _init_db(reset: bool) -> int:
    settings = get_settings()
    store = AuthStore(settings.database_url)
    try:
        if reset:
            store.reset_schema()
            print("  Database schema dropped and recreated.")
        else:
            print("  Database schema is up to date.")
    finally:
        store.close()
    return 0


def _serve(host: str | None, port: int | None, reload: bool) -> int:
    settings = get_settings()
    uvicorn.run(
        "asgi:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="main.py",
        description="Auth Gateway -- registration, login and profile API over an email/password auth engine.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    init_db = sub.add_parser("init-db", help="Create the database schema")
    init_db.add_argument("--reset", action="store_true", help="Drop all tables first (destroys data)")

    serve = sub.add_parser("serve", help="Run the HTTP server")
    serve.add_argument("--host", default=None, help="Bind address (default: HOST setting)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: PORT setting)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes")

    args = parser.parse_args(argv)
    try:
        if args.command == "init-db":
            return _init_db(args.reset)
        return _serve(args.host, args.port, args.reload)
    except ValueError as e:
        # Settings validation (e.g. missing SECRET_KEY) surfaces here.
        print(f"  [!] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
