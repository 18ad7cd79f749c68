"""
auth/audit.py -- Security audit sinks.

The auth services hand every security-relevant event (login success/failure,
2FA changes, refresh replay) to an AuditSink and move on. From the core's
point of view the sink is fire-and-forget: emit() must not raise, and a sink
outage must never turn a successful login into a failure.

Two implementations:
  LoggingAuditSink -- writes one line per event to the "adminauth.audit"
      logger. Useful on its own and as the fallback inside SqlAuditLog.
  SqlAuditLog -- persists events to the audit_logs table (and logs them), and
      answers the read queries behind GET /audit-logs.

Layer rule: no imports from api/.
"""

from __future__ import annotations

import json
import logging
from typing import Optional, Protocol

from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.models import AuditEvent, ClientInfo
from auth.store import audit_logs_table, iso, utcnow

logger = logging.getLogger("adminauth.audit")

_MAX_LIMIT = 100


class AuditSink(Protocol):
    def emit(self, event: AuditEvent) -> None: ...


class LoggingAuditSink:
    """Audit sink that only writes to the application log."""

    def emit(self, event: AuditEvent) -> None:
        level = logging.INFO if event.status == "success" else logging.WARNING
        logger.log(
            level,
            "%s status=%s account=%s ip=%s details=%s",
            event.action,
            event.status,
            event.account_id or "-",
            event.client.ip or "-",
            json.dumps(event.details, sort_keys=True, default=str),
        )


class SqlAuditLog(LoggingAuditSink):
    """Persistent audit sink plus the query side of the audit trail."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def emit(self, event: AuditEvent) -> None:
        super().emit(event)
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    audit_logs_table.insert().values(
                        account_id=event.account_id,
                        action=event.action,
                        status=event.status,
                        client_ip=event.client.ip,
                        client_agent=(event.client.user_agent or "")[:512] or None,
                        details=json.dumps(event.details, sort_keys=True, default=str),
                        created_at=event.created_at or iso(utcnow()),
                    )
                )
        except SQLAlchemyError:
            # The log line above already carries the event.
            logger.exception("Failed to persist audit event %s", event.action)

    def query(
        self,
        account_id: Optional[str] = None,
        action: Optional[str] = None,
        status: Optional[str] = None,
        limit: int = 50,
    ) -> list[AuditEvent]:
        """Return matching events, newest first. limit is clamped to 1..100."""
        t = audit_logs_table
        stmt = t.select()
        if account_id:
            stmt = stmt.where(t.c.account_id == account_id)
        if action:
            stmt = stmt.where(t.c.action == action)
        if status:
            stmt = stmt.where(t.c.status == status)
        stmt = stmt.order_by(t.c.created_at.desc(), t.c.id.desc()).limit(max(1, min(limit, _MAX_LIMIT)))
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_event(r) for r in rows]


def _row_to_event(row) -> AuditEvent:
    return AuditEvent(
        id=row.id,
        account_id=row.account_id,
        action=row.action,
        status=row.status,
        client=ClientInfo(ip=row.client_ip, user_agent=row.client_agent),
        details=json.loads(row.details) if row.details else {},
        created_at=row.created_at,
    )


def emit_event(
    sink: AuditSink,
    action: str,
    account_id: Optional[str] = None,
    client: Optional[ClientInfo] = None,
    status: str = "success",
    **details,
) -> None:
    """Build an AuditEvent stamped with the current time and hand it to sink."""
    sink.emit(
        AuditEvent(
            action=action,
            account_id=account_id,
            status=status,
            client=client or ClientInfo(),
            details=details,
            created_at=iso(utcnow()),
        )
    )
