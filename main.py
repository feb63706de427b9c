#!/usr/bin/env python3
"""
Admin auth -- command-line maintenance for the admin account store.

Usage:
  python main.py create-admin --name "Root" --email root@example.com
  python main.py create-admin --name "Root" --email root@example.com --password s3cret!
  python main.py purge-tokens

create-admin prompts for the password when --password is omitted. Both
commands use the same DATABASE_URL / SECRET_KEY settings as the API.
"""

import argparse
import getpass
import sys
from typing import Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError

from api.models import EMAIL_EXISTS_CONTEXT, EMAIL_TAKEN, RegisterRequest
from auth.models import Admin
from auth.store import AdminStore
from auth.tokens import hash_password
from core.config import get_settings


def create_admin(store: AdminStore, name: str, email: str, password: str) -> Optional[int]:
    """Validate and insert an admin. Returns the new id, or None on a validation failure.

    Validates through RegisterRequest, so the rules are the ones
    POST /api/v1/admin/register applies.
    """
    try:
        request = RegisterRequest.model_validate(
            {"name": name, "email": email, "password": password, "password_confirmation": password},
            context={EMAIL_EXISTS_CONTEXT: store.email_exists},
        )
    except ValidationError as exc:
        for err in exc.errors():
            field = ".".join(str(part) for part in err["loc"])
            print(f"  [!] {field}: {err['msg'].removeprefix('Value error, ')}")
        return None
    try:
        return store.create_admin(
            Admin(name=request.name, email=request.email, hashed_password=hash_password(request.password))
        )
    except IntegrityError:
        print(f"  [!] email: {EMAIL_TAKEN}")
        return None


def _read_password() -> str:
    password = getpass.getpass("Password: ")
    confirmation = getpass.getpass("Confirm password: ")
    if password != confirmation:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    return password


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Admin auth maintenance commands.")
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-admin", help="Create an administrator account.")
    create.add_argument("--name", required=True)
    create.add_argument("--email", required=True)
    create.add_argument("--password", help="Omit to be prompted (keeps it out of shell history).")

    sub.add_parser("purge-tokens", help="Delete blacklist entries whose refresh window has closed.")

    args = parser.parse_args(argv)
    store = AdminStore(get_settings().database_url)
    try:
        if args.command == "create-admin":
            password = args.password if args.password is not None else _read_password()
            admin_id = create_admin(store, args.name, args.email, password)
            if admin_id is None:
                return 1
            print(f"  Created admin {args.email} (id={admin_id})")
        elif args.command == "purge-tokens":
            removed = store.purge_expired_tokens()
            print(f"  Purged {removed} expired blacklist entr{'y' if removed == 1 else 'ies'}")
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
