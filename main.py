#!/usr/bin/env python3
"""
utilhub admin CLI -- account maintenance without going through the web UI.

Usage:
  python main.py create-user alice
  python main.py create-user alice --admin
  python main.py revoke-sessions alice

The password for create-user is read interactively (never from argv, which
would leave it in shell history and the process list). It must pass the same
policy as web registration.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database (default: auth/utilhub_auth.db)
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import User
from auth.passwords import generate_user_id, hash_password, validate_password, validate_username
from auth.sessions import SessionManager
from auth.store import UserStore


def create_user(store: UserStore, username: str, password: str, admin: bool = False) -> int:
    if not validate_username(username):
        print(f"  [!] '{username}' is not a valid username (3-31 chars: a-z, 0-9, _ and -).")
        return 2
    if not validate_password(password):
        print("  [!] Password must be between 6 and 255 characters long.")
        return 2

    user = User(
        id=generate_user_id(),
        username=username,
        password_hash=hash_password(password),
        role="admin" if admin else "user",
    )
    try:
        store.create_user(user)
    except IntegrityError:
        print(f"  [!] Username '{username}' is already taken.")
        return 1
    print(f"  Created {user.role} '{username}' ({user.id}).")
    return 0


def revoke_sessions(store: UserStore, username: str) -> int:
    user = store.find_user_by_username(username)
    if user is None:
        print(f"  [!] No user named '{username}'.")
        return 1
    SessionManager(store).invalidate_user_sessions(user.id)
    print(f"  All sessions for '{username}' revoked.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="utilhub",
        description="Account maintenance for the utilhub auth database.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create a local account (prompts for the password)")
    create.add_argument("username")
    create.add_argument("--admin", action="store_true", help="Give the account the admin role")

    revoke = sub.add_parser("revoke-sessions", help="Sign a user out everywhere")
    revoke.add_argument("username")

    args = parser.parse_args(argv)

    store = UserStore()
    try:
        if args.command == "create-user":
            password = getpass.getpass("Password: ")
            if password != getpass.getpass("Confirm password: "):
                print("  [!] Passwords do not match.")
                return 2
            return create_user(store, args.username, password, admin=args.admin)
        return revoke_sessions(store, args.username)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
