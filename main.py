#!/usr/bin/env python3
"""
OTPGate -- operator command line.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 3000
  python main.py serve --reload
  python main.py create-admin admin@example.com
  python main.py set-role someone@example.com user

There is no HTTP path to the first admin account: create-admin creates a
verified admin (or promotes an existing account) directly in the database.
The admin then logs in through the normal OTP flow.

Environment variables:
  SECRET_KEY     Required unless DEBUG=true. At least 32 characters.
  DATABASE_URL   SQLAlchemy URL. Defaults to otpgate.db next to the code.
  SMTP_HOST ...  See core/config.py for the email settings.
"""

from __future__ import annotations

import argparse
import sys

from auth.models import ROLE_ADMIN, ROLES, User
from auth.otp import is_valid_email
from auth.store import UserStore
from core.config import get_settings
from core.errors import InvalidInput


def _open_store() -> UserStore:
    return UserStore(get_settings().database_url)


def cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)
    return 0


def cmd_create_admin(args: argparse.Namespace) -> int:
    if not is_valid_email(args.email):
        print(f"  [!] '{args.email}' is not a valid email address.")
        return 1
    store = _open_store()
    try:
        existing = store.get_by_email(args.email)
        if existing is None:
            store.create_user(User(email=args.email, role=ROLE_ADMIN, is_verified=True))
            print(f"  Created admin {args.email}")
        elif existing.role == ROLE_ADMIN:
            print(f"  {args.email} is already an admin")
        else:
            store.set_role(existing.id, ROLE_ADMIN)
            print(f"  Promoted {args.email} to admin")
    finally:
        store.close()
    return 0


def cmd_set_role(args: argparse.Namespace) -> int:
    store = _open_store()
    try:
        user = store.get_by_email(args.email)
        if user is None:
            print(f"  [!] No account for {args.email}")
            return 1
        try:
            store.set_role(user.id, args.role)
        except InvalidInput as exc:
            print(f"  [!] {exc.message}")
            return 1
        print(f"  {args.email} is now {args.role}")
    finally:
        store.close()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="otpgate",
        description="OTPGate -- email OTP login and user management API.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the API server with uvicorn")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)
    serve.add_argument("--reload", action="store_true", help="Reload on code changes (development)")
    serve.set_defaults(func=cmd_serve)

    create_admin = sub.add_parser("create-admin", help="Create or promote a verified admin account")
    create_admin.add_argument("email")
    create_admin.set_defaults(func=cmd_create_admin)

    set_role = sub.add_parser("set-role", help="Change the role of an existing account")
    set_role.add_argument("email")
    set_role.add_argument("role", choices=sorted(ROLES))
    set_role.set_defaults(func=cmd_set_role)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
