"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and RBAC.

Access tokens arrive as "Authorization: Bearer <token>" and are verified
statelessly: signature, expiry and claim shape only, no store lookup. The
result is a Principal (account id + role) that route guards resolve against
the static permission table in auth/rbac.py.

try_get_principal() is the soft variant (returns None on failure).
get_principal() wraps it and raises HTTP 401 if unauthenticated.
require_permission(resource, action) builds a dependency that also raises
HTTP 403 when the role is not allowed to perform the action.

Layer rule: no imports from api/.
  auth/dependencies.py may import from fastapi (for HTTPException/Request)
  because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable

from fastapi import HTTPException, Request

from auth.models import ClientInfo
from auth.rbac import Action, Resource, Role, can
from auth.tokens import decode_access_token


@dataclass(frozen=True)
class Principal:
    """Caller identity proven by an access token."""

    account_id: str
    role: Role
    claims: dict


def bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        return auth_header[7:].strip() or None
    return None


def try_get_principal(request: Request) -> Principal | None:
    """Verify the Bearer token on the request.

    Returns None for a missing, malformed, expired or forged token, or one
    naming a role that no longer exists. Never raises.
    """
    token = bearer_token(request)
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    try:
        role = Role.parse(str(payload["role"]))
    except ValueError:
        return None
    return Principal(account_id=payload["sub"], role=role, claims=payload)


def get_principal(request: Request) -> Principal:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(principal: Principal = Depends(get_principal)): ...
    """
    principal = try_get_principal(request)
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
            headers={"WWW-Authenticate": "Bearer"},
        )
    return principal


def require_permission(resource: Resource, action: Action) -> Callable[[Request], Principal]:
    """Build a dependency that admits only roles allowed (resource, action).

    Use as a FastAPI dependency:
        @router.get("/audit-logs")
        def route(principal: Principal = Depends(require_permission(Resource.AUDIT, Action.READ))): ...
    """

    def _dependency(request: Request) -> Principal:
        principal = get_principal(request)
        if not can(principal.role, resource, action):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Insufficient permissions."},
            )
        return principal

    return _dependency


def client_info(request: Request) -> ClientInfo:
    """Network context for audit events."""
    return ClientInfo(
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("User-Agent"),
    )
