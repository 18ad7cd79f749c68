"""
auth/ledger.py -- Refresh token ledger: persistence and atomic rotation.

The ledger stores RefreshTokenRecord metadata keyed by the token's HMAC
digest. It never sees a raw token and cannot produce one.

Rotation is the security-critical path. rotate() runs inside one transaction
and starts with a conditional UPDATE:

    UPDATE refresh_tokens
       SET revoked = 1, revoked_at = :now, replaced_by = :successor_id
     WHERE token_hash = :hash AND revoked = 0 AND expires_at > :now

The UPDATE takes the write lock before anything is read, so two callers
presenting the same token serialize on it. The first gets rowcount == 1 and
goes on to insert the successor in the same transaction; the second waits,
then gets rowcount == 0 and returns None. The caller (TokenIssuer) treats
that None as a replay and revokes the account's whole lineage -- including
the successor the winner just committed.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.engine import Engine

from auth.models import ClientInfo, RefreshTokenRecord
from auth.store import iso, new_id, refresh_tokens_table, utcnow

_t = refresh_tokens_table


class RefreshTokenLedger:
    """Repository for RefreshTokenRecord entities.

    Usage:
        ledger = RefreshTokenLedger(engine)
        record = ledger.create(account_id, token_hash, expires_at, ClientInfo(ip="10.0.0.1"))
        rotated = ledger.rotate(token_hash, new_hash, new_expires_at, client)
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create(
        self,
        account_id: str,
        token_hash: str,
        expires_at: datetime,
        client: Optional[ClientInfo] = None,
        now: Optional[datetime] = None,
    ) -> RefreshTokenRecord:
        client = client or ClientInfo()
        record = RefreshTokenRecord(
            id=new_id(),
            account_id=account_id,
            token_hash=token_hash,
            issued_at=iso(now or utcnow()),
            expires_at=iso(expires_at),
            client_ip=client.ip,
            client_agent=_clip(client.user_agent),
        )
        with self.engine.begin() as conn:
            conn.execute(_t.insert().values(**_record_values(record)))
        return record

    def find_by_hash(self, token_hash: str) -> RefreshTokenRecord | None:
        """Return the record for token_hash in any state (live, revoked, expired)."""
        with self.engine.connect() as conn:
            row = conn.execute(_t.select().where(_t.c.token_hash == token_hash)).fetchone()
        return _row_to_record(row) if row is not None else None

    def rotate(
        self,
        token_hash: str,
        new_token_hash: str,
        new_expires_at: datetime,
        client: Optional[ClientInfo] = None,
        now: Optional[datetime] = None,
    ) -> tuple[RefreshTokenRecord, RefreshTokenRecord] | None:
        """Atomically revoke the live record for token_hash and chain a successor to it.

        Returns (revoked_record, successor) on success, or None if no live
        record matched -- missing, already revoked, or expired. The caller
        looks the hash up again to tell those apart.
        """
        client = client or ClientInfo()
        now_iso = iso(now or utcnow())
        successor_id = new_id()
        with self.engine.begin() as conn:
            result = conn.execute(
                _t.update()
                .where((_t.c.token_hash == token_hash) & (_t.c.revoked == 0) & (_t.c.expires_at > now_iso))
                .values(revoked=1, revoked_at=now_iso, replaced_by=successor_id)
            )
            if result.rowcount != 1:
                return None
            old = _row_to_record(conn.execute(_t.select().where(_t.c.token_hash == token_hash)).one())
            successor = RefreshTokenRecord(
                id=successor_id,
                account_id=old.account_id,
                token_hash=new_token_hash,
                issued_at=now_iso,
                expires_at=iso(new_expires_at),
                client_ip=client.ip,
                client_agent=_clip(client.user_agent),
            )
            conn.execute(_t.insert().values(**_record_values(successor)))
        return old, successor

    def revoke(self, token_hash: str) -> bool:
        """Revoke one record. Returns True if a live record was revoked; absent or already revoked is a no-op."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _t.update()
                .where((_t.c.token_hash == token_hash) & (_t.c.revoked == 0))
                .values(revoked=1, revoked_at=iso(utcnow()))
            )
        return result.rowcount > 0

    def revoke_all(self, account_id: str) -> int:
        """Revoke every unrevoked record for the account. Returns the number revoked."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _t.update()
                .where((_t.c.account_id == account_id) & (_t.c.revoked == 0))
                .values(revoked=1, revoked_at=iso(utcnow()))
            )
        return result.rowcount

    def list_active(self, account_id: str, now: Optional[datetime] = None) -> list[RefreshTokenRecord]:
        """Live sessions for the account, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _t.select()
                .where(
                    (_t.c.account_id == account_id) & (_t.c.revoked == 0) & (_t.c.expires_at > iso(now or utcnow()))
                )
                .order_by(_t.c.issued_at.desc())
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def count_active(self, account_id: str, now: Optional[datetime] = None) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_t)
                .where(
                    (_t.c.account_id == account_id) & (_t.c.revoked == 0) & (_t.c.expires_at > iso(now or utcnow()))
                )
            ).scalar()
        return result or 0


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _clip(user_agent: Optional[str]) -> Optional[str]:
    return user_agent[:512] if user_agent else user_agent


def _record_values(record: RefreshTokenRecord) -> dict:
    return {
        "id": record.id,
        "account_id": record.account_id,
        "token_hash": record.token_hash,
        "issued_at": record.issued_at,
        "expires_at": record.expires_at,
        "revoked": 1 if record.revoked else 0,
        "revoked_at": record.revoked_at,
        "replaced_by": record.replaced_by,
        "client_ip": record.client_ip,
        "client_agent": record.client_agent,
    }


def _row_to_record(row) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        id=row.id,
        account_id=row.account_id,
        token_hash=row.token_hash,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
        revoked_at=row.revoked_at,
        replaced_by=row.replaced_by,
        client_ip=row.client_ip,
        client_agent=row.client_agent,
    )
