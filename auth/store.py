"""
auth/store.py -- SQLAlchemy Core schema and the account repository.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_backup_code are the mappers. Services never touch
SQL directly. The refresh-token ledger (auth/ledger.py) and the audit log
(auth/audit.py) are separate repositories over the same engine and metadata.

Security:
  All queries use bound parameters. No f-strings in SQL.

  TOTP secrets are encrypted by SecretCipher before they reach the table and
  decrypted in the row mapper. The active and pending secrets live in separate
  columns so an unfinished enrollment can never look like an enabled one.

Concurrency:
  Every account mutation is a single conditional UPDATE keyed on
  (id, version) that bumps version. A caller that read a stale account gets
  False back instead of silently overwriting a concurrent change.

  Backup codes are one row each. consume_backup_code() is a conditional
  UPDATE ... WHERE used = 0, so two racing uses of the same code produce
  exactly one rowcount == 1.

Timestamps are stored as ISO 8601 UTC strings with fixed microsecond
precision (see iso()), so string comparison in SQL is chronological.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Iterable, Optional

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    func,
    select,
)
from sqlalchemy.engine import Engine

from auth.models import AdminAccount, BackupCode
from auth.rbac import Role
from auth.totp import SecretCipher

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

accounts_table = Table(
    "admin_accounts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # stored lowercased
    Column("name", String(255), nullable=False, server_default=""),
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="editor"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("totp_secret", Text),  # Fernet ciphertext; NULL unless totp_enabled
    Column("totp_pending_secret", Text),  # Fernet ciphertext; enrollment in progress
    Column("totp_enabled", Integer, nullable=False, server_default="0"),
    Column("version", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

backup_codes_table = Table(
    "backup_codes",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("code_hash", String(64), nullable=False),  # HMAC-SHA256 hex
    Column("used", Integer, nullable=False, server_default="0"),
    Column("used_at", String(32)),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("account_id", "code_hash", name="uq_backup_codes_account_hash"),
)

refresh_tokens_table = Table(
    "refresh_tokens",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # HMAC-SHA256 hex
    Column("issued_at", String(32), nullable=False),
    Column("expires_at", String(32), nullable=False, index=True),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", String(32)),
    Column("replaced_by", String(36)),
    Column("client_ip", String(64)),
    Column("client_agent", String(512)),
)

audit_logs_table = Table(
    "audit_logs",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("account_id", String(36), index=True),
    Column("action", String(64), nullable=False, index=True),
    Column("status", String(16), nullable=False, server_default="success"),
    Column("client_ip", String(64)),
    Column("client_agent", String(512)),
    Column("details", Text),  # JSON object
    Column("created_at", String(32), nullable=False, index=True),
)


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers never block on the single writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool. In-memory databases ignore it.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def create_db_engine(db_url: str) -> Engine:
    """Create the engine and make sure every table exists."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        # TestClient and FastAPI's thread pool share pooled connections.
        # timeout: seconds a writer waits on the lock held by another writer.
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = 15
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    """Fixed-width ISO 8601 UTC string. isoformat() drops zero microseconds, which breaks ordering."""
    return dt.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%f+00:00")


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for AdminAccount and BackupCode entities.

    Usage:
        engine = create_db_engine("sqlite:///adminauth.db")
        store = AccountStore(engine)
        account_id = store.create_account(AdminAccount(email="a@example.com", password_hash=h, role=Role.ADMIN))
        account = store.get_by_email("A@Example.com")
    """

    # Fields update_account() accepts. 2FA columns go through the dedicated
    # enrollment methods so the secret/flag invariant cannot be broken here.
    _MUTABLE_FIELDS = {"name", "role", "is_active", "password_hash"}

    def __init__(self, engine: Engine, cipher: Optional[SecretCipher] = None) -> None:
        self.engine = engine
        self.cipher = cipher or SecretCipher.from_settings()

    # ------------------------------------------------------------------
    # Account queries
    # ------------------------------------------------------------------

    def create_account(self, account: AdminAccount) -> str:
        """Insert a new account and return its id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        2FA state is never copied from the argument: new accounts start without it.
        """
        account_id = account.id or new_id()
        now = iso(utcnow())
        with self.engine.begin() as conn:
            conn.execute(
                accounts_table.insert().values(
                    id=account_id,
                    email=account.email.strip().lower(),
                    name=account.name,
                    password_hash=account.password_hash,
                    role=account.role.label,
                    is_active=1 if account.is_active else 0,
                    totp_enabled=0,
                    version=0,
                    created_at=now,
                    updated_at=now,
                )
            )
        return account_id

    def get_by_email(self, email: str) -> AdminAccount | None:
        """Case-insensitive lookup. Emails are stored lowercased, so this is an index hit."""
        return self._get_one(accounts_table.c.email == email.strip().lower())

    def get_by_id(self, account_id: str) -> AdminAccount | None:
        return self._get_one(accounts_table.c.id == account_id)

    def list_accounts(self) -> list[AdminAccount]:
        with self.engine.connect() as conn:
            rows = conn.execute(accounts_table.select().order_by(accounts_table.c.email)).fetchall()
        return [self._row_to_account(r, []) for r in rows]

    def _get_one(self, clause) -> AdminAccount | None:
        with self.engine.connect() as conn:
            row = conn.execute(accounts_table.select().where(clause)).fetchone()
            if row is None:
                return None
            codes = conn.execute(
                backup_codes_table.select()
                .where(backup_codes_table.c.account_id == row.id)
                .order_by(backup_codes_table.c.id)
            ).fetchall()
        return self._row_to_account(row, codes)

    # ------------------------------------------------------------------
    # Version-conditioned mutations
    # ------------------------------------------------------------------

    def update_account(self, account_id: str, expected_version: int, **fields) -> bool:
        """Update profile/credential fields if the account is still at expected_version.

        Accepted fields: name, role (Role), is_active (bool), password_hash.
        Returns True if the row was updated, False if the account is missing or
        was modified since the caller read it.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown account fields: {unknown!r}")
        values = dict(fields)
        if "role" in values:
            values["role"] = Role(values["role"]).label
        if "is_active" in values:
            values["is_active"] = 1 if values["is_active"] else 0
        return self._conditional_update(account_id, expected_version, values)

    def set_pending_totp(self, account_id: str, expected_version: int, secret: Optional[str]) -> bool:
        """Store (or with None, discard) the enrollment-in-progress secret.

        Refused when 2FA is already enabled: re-enrollment requires disable first.
        """
        ciphertext = self.cipher.encrypt(secret) if secret is not None else None
        return self._conditional_update(
            account_id,
            expected_version,
            {"totp_pending_secret": ciphertext},
            accounts_table.c.totp_enabled == 0,
        )

    def enable_totp(self, account_id: str, expected_version: int, code_hashes: Iterable[str]) -> bool:
        """Promote the pending secret to authoritative and install fresh backup codes.

        One transaction: the conditional UPDATE runs first (taking the write
        lock), then old backup-code rows are replaced. If the account moved on,
        has no pending secret, or is already enabled, nothing is written.
        """
        now = iso(utcnow())
        with self.engine.begin() as conn:
            result = conn.execute(
                accounts_table.update()
                .where(
                    (accounts_table.c.id == account_id)
                    & (accounts_table.c.version == expected_version)
                    & (accounts_table.c.totp_enabled == 0)
                    & (accounts_table.c.totp_pending_secret.is_not(None))
                )
                .values(
                    totp_secret=accounts_table.c.totp_pending_secret,
                    totp_pending_secret=None,
                    totp_enabled=1,
                    version=accounts_table.c.version + 1,
                    updated_at=now,
                )
            )
            if result.rowcount != 1:
                return False
            conn.execute(backup_codes_table.delete().where(backup_codes_table.c.account_id == account_id))
            conn.execute(
                backup_codes_table.insert(),
                [{"account_id": account_id, "code_hash": h, "used": 0, "created_at": now} for h in code_hashes],
            )
        return True

    def disable_totp(self, account_id: str, expected_version: int) -> bool:
        """Clear the secret (active and pending), the flag, and every backup code."""
        with self.engine.begin() as conn:
            result = conn.execute(
                accounts_table.update()
                .where((accounts_table.c.id == account_id) & (accounts_table.c.version == expected_version))
                .values(
                    totp_secret=None,
                    totp_pending_secret=None,
                    totp_enabled=0,
                    version=accounts_table.c.version + 1,
                    updated_at=iso(utcnow()),
                )
            )
            if result.rowcount != 1:
                return False
            conn.execute(backup_codes_table.delete().where(backup_codes_table.c.account_id == account_id))
        return True

    def _conditional_update(self, account_id: str, expected_version: int, values: dict, *extra) -> bool:
        clause = (accounts_table.c.id == account_id) & (accounts_table.c.version == expected_version)
        for condition in extra:
            clause = clause & condition
        with self.engine.begin() as conn:
            result = conn.execute(
                accounts_table.update()
                .where(clause)
                .values(**values, version=accounts_table.c.version + 1, updated_at=iso(utcnow()))
            )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Backup codes
    # ------------------------------------------------------------------

    def consume_backup_code(self, account_id: str, code_hash: str) -> bool:
        """Atomically mark an unused code as used. True for exactly one caller per code."""
        with self.engine.begin() as conn:
            result = conn.execute(
                backup_codes_table.update()
                .where(
                    (backup_codes_table.c.account_id == account_id)
                    & (backup_codes_table.c.code_hash == code_hash)
                    & (backup_codes_table.c.used == 0)
                )
                .values(used=1, used_at=iso(utcnow()))
            )
        return result.rowcount == 1

    def backup_code_used(self, account_id: str, code_hash: str) -> bool:
        """True if code_hash exists and is already used. For audit detail only, never for the response."""
        with self.engine.connect() as conn:
            row = conn.execute(
                select(backup_codes_table.c.used).where(
                    (backup_codes_table.c.account_id == account_id) & (backup_codes_table.c.code_hash == code_hash)
                )
            ).fetchone()
        return row is not None and bool(row.used)

    def count_unused_backup_codes(self, account_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(backup_codes_table)
                .where((backup_codes_table.c.account_id == account_id) & (backup_codes_table.c.used == 0))
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Row mappers (Data Mapper pattern)
    # ------------------------------------------------------------------

    def _row_to_account(self, row, code_rows) -> AdminAccount:
        return AdminAccount(
            id=row.id,
            email=row.email,
            name=row.name,
            password_hash=row.password_hash,
            role=Role.parse(row.role),
            is_active=bool(row.is_active),
            totp_secret=self.cipher.decrypt(row.totp_secret) if row.totp_secret else None,
            totp_pending_secret=self.cipher.decrypt(row.totp_pending_secret) if row.totp_pending_secret else None,
            totp_enabled=bool(row.totp_enabled),
            backup_codes=[_row_to_backup_code(c) for c in code_rows],
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


def _row_to_backup_code(row) -> BackupCode:
    return BackupCode(id=row.id, code_hash=row.code_hash, used=bool(row.used), used_at=row.used_at)
