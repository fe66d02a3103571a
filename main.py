#!/usr/bin/env python3
"""
TradeAuth -- Authentication core for the trade-data platform.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py hash-password 'Secret1!'
  python main.py purge-sessions
  DEV_ENDPOINTS=true python main.py reset-password a@x.com 'NewSecret1!'
  DEV_ENDPOINTS=true python main.py verify a@x.com 'Secret1!'

Environment variables (see core/config.py for the full list):
  DATABASE_URL     SQLAlchemy URL of the auth database (default: sqlite file)
  AUTH_DB_SCHEMA   Schema qualifier for the auth tables (e.g. "accounts")
  SECRET_KEY       HS256 signing key, 32+ characters. Required unless DEBUG=true.
  ALLOW_PLAINTEXT  Accept raw-stored legacy passwords. Requires DEBUG=true.
  DEV_ENDPOINTS    Enable reset-password and verify (and the /auth/dev/* routes).
"""

import argparse
import sys

from auth.errors import AuthError
from auth.models import AuthConfig
from auth.schema import create_auth_engine
from auth.service import AuthService
from core.config import get_settings


def _build_service() -> AuthService:
    settings = get_settings()
    engine = create_auth_engine(settings.database_url)
    return AuthService.build(engine, AuthConfig.from_settings(settings), schema=settings.auth_db_schema)


def _serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def _hash_password(args: argparse.Namespace) -> int:
    if not args.password.strip():
        print("  [!] Password must not be blank.")
        return 2
    print(_build_service().dev_hash(args.password))
    return 0


def _dev_service(command: str) -> AuthService | None:
    service = _build_service()
    if not service.config.dev_endpoints:
        print(f"  [!] {command} is a dev command. Set DEV_ENDPOINTS=true to enable it.")
        return None
    return service


def _reset_password(args: argparse.Namespace) -> int:
    service = _dev_service("reset-password")
    if service is None:
        return 2
    updated = service.dev_reset_password(args.email, args.password)
    if not updated:
        print(f"  [!] No writable password location for {args.email}.")
        return 1
    print(f"  Password reset for {args.email}.")
    return 0


def _verify(args: argparse.Namespace) -> int:
    service = _dev_service("verify")
    if service is None:
        return 2
    report = service.dev_verify(args.email, args.password)
    if report.not_found:
        print(f"  [!] No credentials found for {args.email}.")
        return 1
    print(f"  matched:   {'yes' if report.matched else 'no'}")
    print(f"  mode:      {report.mode}")
    print(f"  algorithm: {report.algorithm or '-'}")
    print(f"  hash:      {report.hash_prefix or '-'}... ({report.hash_length} chars)")
    return 0 if report.matched else 1


def _purge_sessions(args: argparse.Namespace) -> int:
    purged = _build_service().sessions.purge_expired()
    print(f"  Purged {purged} expired session(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tradeauth",
        description="Authentication core for the trade-data platform.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py hash-password 'Secret1!'
  DEV_ENDPOINTS=true python main.py reset-password a@x.com 'NewSecret1!'
  DEV_ENDPOINTS=true python main.py verify a@x.com 'Secret1!'
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=_serve)

    hash_cmd = sub.add_parser("hash-password", help="Print an Argon2id hash of PASSWORD")
    hash_cmd.add_argument("password", metavar="PASSWORD")
    hash_cmd.set_defaults(func=_hash_password)

    reset = sub.add_parser(
        "reset-password",
        help="Overwrite the stored password for EMAIL (creates a minimal user if unknown)",
    )
    reset.add_argument("email", metavar="EMAIL")
    reset.add_argument("password", metavar="PASSWORD")
    reset.set_defaults(func=_reset_password)

    verify = sub.add_parser("verify", help="Diagnose whether PASSWORD matches the stored credential for EMAIL")
    verify.add_argument("email", metavar="EMAIL")
    verify.add_argument("password", metavar="PASSWORD")
    verify.set_defaults(func=_verify)

    purge = sub.add_parser("purge-sessions", help="Delete expired refresh sessions")
    purge.set_defaults(func=_purge_sessions)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    try:
        return args.func(args)
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
