#!/usr/bin/env python3
"""
Account service -- operator command line.

Usage:
  python main.py register "jane doe" jane@example.com
  python main.py issue-reset jane@example.com
  python main.py issue-reset jane@example.com --send
  python main.py show jane@example.com

register prompts for the password; it is never taken from argv. Scripts
pipe it instead: printf "%s\n" "$PW" | python main.py register ... --password-stdin
issue-reset prints the reset link for support staff; --send also mails it.

Environment variables: see core/config.py (DATABASE_URL, BCRYPT_ROUNDS, ...).
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.credentials import CredentialManager
from auth.errors import AccountError
from auth.reset import ResetTokenManager
from auth.store import UserStore
from core.config import get_settings
from mail.mailer import get_mailer, reset_link, send_quietly


def _read_password(from_stdin: bool = False) -> str:
    if from_stdin:
        return sys.stdin.readline().rstrip("\n")
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        raise SystemExit("  [!] Passwords do not match.")
    return password


def _cmd_register(store: UserStore, args: argparse.Namespace) -> int:
    record = CredentialManager(store).register(args.name, args.email, _read_password(args.password_stdin))
    print(f"  Registered user {record.id} <{record.email}>")
    return 0


def _cmd_issue_reset(store: UserStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    record = store.find_by_email(args.email)
    if record is None:
        print(f"  [!] No account for {args.email}.")
        return 1
    record = ResetTokenManager(store).issue_token(record)
    print(f"  Reset link (valid {settings.reset_token_ttl_seconds}s):")
    print(f"  {reset_link(settings.public_base_url, record)}")
    if args.send and not send_quietly(get_mailer(settings), "password_reset", record):
        print("  [!] Mail delivery failed; see log.")
        return 1
    return 0


def _cmd_show(store: UserStore, args: argparse.Namespace) -> int:
    record = store.find_by_email(args.email)
    if record is None:
        print(f"  [!] No account for {args.email}.")
        return 1
    print(f"  id:         {record.id}")
    print(f"  name:       {record.name}")
    print(f"  email:      {record.email}")
    print(f"  created_at: {record.created_at.isoformat() if record.created_at else '-'}")
    if record.reset is None:
        print("  reset:      none")
    else:
        print(f"  reset:      issued {record.reset.issued_at.isoformat()}")
    return 0


def main(argv: Optional[list[str]] = None, store: Optional[UserStore] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="account-service",
        description="Operator commands for the account store.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    p_register = sub.add_parser("register", help="Create an account (password is prompted)")
    p_register.add_argument("name")
    p_register.add_argument("email")
    p_register.add_argument(
        "--password-stdin", action="store_true", help="Read the password from the first line of stdin"
    )
    p_register.set_defaults(func=_cmd_register)

    p_reset = sub.add_parser("issue-reset", help="Issue a reset token and print the link")
    p_reset.add_argument("email")
    p_reset.add_argument("--send", action="store_true", help="Also mail the link to the user")
    p_reset.set_defaults(func=_cmd_issue_reset)

    p_show = sub.add_parser("show", help="Show an account (no credential material)")
    p_show.add_argument("email")
    p_show.set_defaults(func=_cmd_show)

    args = parser.parse_args(argv)

    owns_store = store is None
    if store is None:
        settings = get_settings()
        store = UserStore(settings.database_url, timeout=settings.store_timeout_seconds)
    try:
        return args.func(store, args)
    except AccountError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        if owns_store:
            store.close()


if __name__ == "__main__":
    sys.exit(main())
