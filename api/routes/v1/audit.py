"""
api/routes/v1/audit.py -- Read access to the security audit trail.

Routes:
  GET /api/v1/audit-logs     -- filtered query across all accounts (audit:read)
  GET /api/v1/audit-logs/me  -- the caller's own events (any authenticated role)

This is a read-only route module -- events are written by the auth services
through the AuditSink, never through HTTP.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import AuditLogResponse, AuditLogRow
from auth.audit import SqlAuditLog
from auth.dependencies import Principal, get_principal, require_permission
from auth.models import AuditEvent
from auth.rbac import Action, Resource

# Auth policy:
# - GET /audit-logs:    audit:read (superadmin, plus admin through the allow-set)
# - GET /audit-logs/me: requires auth (get_principal)
router = APIRouter()


@router.get("/audit-logs", response_model=AuditLogResponse)
def list_audit_logs(
    request: Request,
    account_id: Optional[str] = Query(default=None, alias="accountId", max_length=64),
    action: Optional[str] = Query(default=None, max_length=64),
    status: Optional[str] = Query(default=None, pattern="^(success|failure)$"),
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(require_permission(Resource.AUDIT, Action.READ)),
) -> AuditLogResponse:
    """Return audit events, newest first, filtered by account, action and status."""
    audit: SqlAuditLog = request.app.state.audit
    return _response(audit.query(account_id=account_id, action=action, status=status, limit=limit))


@router.get("/audit-logs/me", response_model=AuditLogResponse)
def my_audit_logs(
    request: Request,
    limit: int = Query(default=50, ge=1, le=100),
    principal: Principal = Depends(get_principal),
) -> AuditLogResponse:
    """Return the caller's own audit events, newest first."""
    audit: SqlAuditLog = request.app.state.audit
    return _response(audit.query(account_id=principal.account_id, limit=limit))


def _response(events: list[AuditEvent]) -> AuditLogResponse:
    rows = [
        AuditLogRow(
            id=e.id,
            account_id=e.account_id,
            action=e.action,
            status=e.status,
            client_ip=e.client.ip,
            client_agent=e.client.user_agent,
            details=e.details,
            created_at=e.created_at or "",
        )
        for e in events
    ]
    return AuditLogResponse(logs=rows, count=len(rows))
