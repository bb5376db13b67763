#!/usr/bin/env python3
"""
Passport -- operator commands for the SSO authentication service.

Usage:
  python main.py serve [--host 127.0.0.1] [--port 8000] [--reload]
  python main.py create-user admin@example.com --admin
  python main.py create-user user@example.com --password 's3cret-pass'
  python main.py promote user@example.com
  python main.py demote user@example.com
  python main.py revoke-sessions user@example.com
  python main.py purge-sessions

Environment variables:
  SECRET_KEY_BASE  Shared signing secret (>= 32 chars). Required unless DEBUG=true.
  DATABASE_URL     SQLAlchemy URL (default: sqlite:///passport.db).
  See core/config.py for the full list.
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.errors import ValidationError
from auth.models import Role
from auth.service import AuthService, normalize_email
from auth.store import PasswordResetStore, SessionStore, UserStore
from auth.tokens import TokenService
from core.config import get_settings


def _build_service() -> AuthService:
    settings = get_settings()
    users = UserStore(settings.database_url)
    sessions = SessionStore(users.engine, ttl_seconds=settings.session_ttl_seconds)
    tokens = TokenService(
        settings.secret_key_base,
        issuer=settings.jwt_issuer,
        lifetime_seconds=settings.token_lifetime_seconds,
    )
    resets = PasswordResetStore(users.engine, ttl_seconds=settings.password_reset_ttl_seconds)
    return AuthService(users, sessions, tokens, min_password_length=settings.min_password_length, resets=resets)


def _read_password(given: Optional[str]) -> str:
    if given:
        return given
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Confirm password: "):
        raise ValidationError("Passwords do not match.")
    return first


def _cmd_create_user(service: AuthService, args: argparse.Namespace) -> int:
    role = Role.admin if args.admin else Role.user
    user = service.register(args.email, _read_password(args.password), role=role)
    print(f"  Created {user.role.value} {user.email} (id={user.id})")
    return 0


def _set_role(service: AuthService, email: str, role: Role) -> int:
    user = service.users.get_by_email(normalize_email(email))
    if user is None:
        print(f"  [!] No user with email '{email}'.", file=sys.stderr)
        return 1
    service.users.update_user(user.id, role=role)
    print(f"  {user.email} is now {role.value}")
    return 0


def _cmd_revoke_sessions(service: AuthService, args: argparse.Namespace) -> int:
    user = service.users.get_by_email(normalize_email(args.email))
    if user is None:
        print(f"  [!] No user with email '{args.email}'.", file=sys.stderr)
        return 1
    count = service.sign_out_everywhere(user.id)
    print(f"  Revoked {count} session(s) for {user.email}")
    return 0


def _cmd_purge_sessions(service: AuthService, args: argparse.Namespace) -> int:
    removed = service.sessions.delete_expired()
    print(f"  Removed {removed} expired session(s)")
    resets = service.resets.delete_expired()
    print(f"  Removed {resets} expired password reset token(s)")
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    # uvicorn rewrites the peer address from X-Forwarded-For only when the
    # connection comes from one of these hosts; the rate limiter keys on it.
    uvicorn.run(
        "asgi:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        proxy_headers=True,
        forwarded_allow_ips=get_settings().trusted_proxies,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="passport",
        description="Cross-domain SSO authentication service.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py serve --reload
  python main.py create-user admin@example.com --admin
  python main.py revoke-sessions user@example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    serve = sub.add_parser("serve", help="Run the HTTP server (uvicorn)")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")

    create = sub.add_parser("create-user", help="Create a user account")
    create.add_argument("email", metavar="EMAIL")
    create.add_argument("--admin", action="store_true", help="Create the account with the admin role")
    create.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Password (prompted when omitted; passing it here leaves it in shell history)",
    )

    promote = sub.add_parser("promote", help="Grant the admin role")
    promote.add_argument("email", metavar="EMAIL")

    demote = sub.add_parser("demote", help="Revoke the admin role")
    demote.add_argument("email", metavar="EMAIL")

    revoke = sub.add_parser("revoke-sessions", help="Delete every session of a user")
    revoke.add_argument("email", metavar="EMAIL")

    sub.add_parser("purge-sessions", help="Delete expired sessions and password reset tokens")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == "serve":
        return _cmd_serve(args)

    service = _build_service()
    try:
        if args.command == "create-user":
            return _cmd_create_user(service, args)
        if args.command == "promote":
            return _set_role(service, args.email, Role.admin)
        if args.command == "demote":
            return _set_role(service, args.email, Role.user)
        if args.command == "revoke-sessions":
            return _cmd_revoke_sessions(service, args)
        return _cmd_purge_sessions(service, args)
    except ValidationError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        service.users.close()


if __name__ == "__main__":
    sys.exit(main())
