#!/usr/bin/env python3
"""
Admin auth -- out-of-band account administration.

The HTTP API never creates accounts or changes roles. This CLI does, against
the same database the API uses (DATABASE_URL).

Usage:
  python main.py create-account admin@example.com --role superadmin --name "Ops Admin"
  python main.py list-accounts
  python main.py set-role editor@example.com admin
  python main.py deactivate former@example.com
  python main.py revoke-sessions lost-laptop@example.com

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the auth database.
  SECRET_KEY    Required unless DEBUG=true. Must match the API's key, since
                TOTP secrets are encrypted with a key derived from it.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.audit import SqlAuditLog, emit_event
from auth.ledger import RefreshTokenLedger
from auth.login import MIN_PASSWORD_LENGTH, password_acceptable
from auth.models import AdminAccount
from auth.rbac import Role
from auth.store import AccountStore, create_db_engine
from auth.tokens import MAX_PASSWORD_BYTES, hash_password
from core.config import get_settings

logger = logging.getLogger("adminauth.cli")

_ROLE_CHOICES = [r.label for r in Role]


def _read_password() -> Optional[str]:
    """Prompt twice without echo. Returns None if the entries differ or break the length policy."""
    password = getpass.getpass("  Password: ")
    if not password_acceptable(password):
        print(f"  [!] Password must be at least {MIN_PASSWORD_LENGTH} characters and at most {MAX_PASSWORD_BYTES} bytes.")
        return None
    if getpass.getpass("  Repeat password: ") != password:
        print("  [!] Passwords do not match.")
        return None
    return password


def _lookup(store: AccountStore, email: str) -> Optional[AdminAccount]:
    account = store.get_by_email(email)
    if account is None:
        print(f"  [!] No account with email '{email}'.")
    return account


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_create_account(args, store: AccountStore, ledger: RefreshTokenLedger, audit: SqlAuditLog) -> int:
    password = _read_password()
    if password is None:
        return 1
    account = AdminAccount(
        email=args.email,
        password_hash=hash_password(password),
        role=Role.parse(args.role),
        name=args.name or "",
    )
    try:
        account_id = store.create_account(account)
    except IntegrityError:
        print(f"  [!] An account with email '{args.email}' already exists.")
        return 1
    emit_event(audit, "account_created", account_id, role=account.role.label, source="cli")
    print(f"  Created {args.email.lower()} ({account.role.label}) id={account_id}")
    return 0


def cmd_list_accounts(args, store: AccountStore, ledger: RefreshTokenLedger, audit: SqlAuditLog) -> int:
    accounts = store.list_accounts()
    if not accounts:
        print("  No accounts.")
        return 0
    print(f"  {'EMAIL':<36} {'ROLE':<11} {'ACTIVE':<7} {'2FA':<4} SESSIONS")
    for a in accounts:
        print(
            f"  {a.email:<36} {a.role.label:<11} {('yes' if a.is_active else 'no'):<7} "
            f"{('on' if a.totp_enabled else 'off'):<4} {ledger.count_active(a.id)}"
        )
    return 0


def cmd_set_role(args, store: AccountStore, ledger: RefreshTokenLedger, audit: SqlAuditLog) -> int:
    account = _lookup(store, args.email)
    if account is None:
        return 1
    role = Role.parse(args.role)
    if not store.update_account(account.id, account.version, role=role):
        print("  [!] Account changed while updating. Try again.")
        return 1
    # Access tokens carry the role; force a re-login so the new one applies.
    revoked = ledger.revoke_all(account.id)
    emit_event(audit, "role_changed", account.id, old=account.role.label, new=role.label, source="cli")
    print(f"  {account.email}: {account.role.label} -> {role.label} ({revoked} sessions revoked)")
    return 0


def cmd_deactivate(args, store: AccountStore, ledger: RefreshTokenLedger, audit: SqlAuditLog) -> int:
    account = _lookup(store, args.email)
    if account is None:
        return 1
    if not account.is_active:
        print(f"  {account.email} is already inactive.")
        return 0
    if not store.update_account(account.id, account.version, is_active=False):
        print("  [!] Account changed while updating. Try again.")
        return 1
    revoked = ledger.revoke_all(account.id)
    emit_event(audit, "account_deactivated", account.id, revoked_sessions=revoked, source="cli")
    print(f"  Deactivated {account.email} ({revoked} sessions revoked)")
    return 0


def cmd_revoke_sessions(args, store: AccountStore, ledger: RefreshTokenLedger, audit: SqlAuditLog) -> int:
    account = _lookup(store, args.email)
    if account is None:
        return 1
    revoked = ledger.revoke_all(account.id)
    emit_event(audit, "all_refresh_tokens_revoked", account.id, reason="cli", count=revoked)
    print(f"  Revoked {revoked} sessions for {account.email}")
    return 0


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Admin auth -- account administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--database-url", metavar="URL", help="Override DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("create-account", help="Create an admin account (prompts for the password)")
    p.add_argument("email")
    p.add_argument("--role", choices=_ROLE_CHOICES, default=Role.VIEWER.label)
    p.add_argument("--name", default="")
    p.set_defaults(func=cmd_create_account)

    p = sub.add_parser("list-accounts", help="List accounts with role, status and live sessions")
    p.set_defaults(func=cmd_list_accounts)

    p = sub.add_parser("set-role", help="Change an account's role and end its sessions")
    p.add_argument("email")
    p.add_argument("role", choices=_ROLE_CHOICES)
    p.set_defaults(func=cmd_set_role)

    p = sub.add_parser("deactivate", help="Deactivate an account and end its sessions")
    p.add_argument("email")
    p.set_defaults(func=cmd_deactivate)

    p = sub.add_parser("revoke-sessions", help="Revoke every refresh session of an account")
    p.add_argument("email")
    p.set_defaults(func=cmd_revoke_sessions)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s %(message)s")

    engine = create_db_engine(args.database_url or get_settings().database_url)
    store = AccountStore(engine)
    try:
        return args.func(args, store, RefreshTokenLedger(engine), SqlAuditLog(engine))
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
