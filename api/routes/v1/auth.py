"""
api/routes/v1/auth.py -- Login, token and session REST endpoints.

Routes:
  POST /api/v1/auth/login        -- step one: email + password
  POST /api/v1/auth/verify-2fa   -- step two: TOTP or backup code; issues tokens
  POST /api/v1/auth/refresh      -- rotate the refresh token, new access token
  POST /api/v1/auth/logout       -- revoke the presented refresh token; idempotent
  POST /api/v1/auth/logout-all   -- revoke every session of the caller
  GET  /api/v1/auth/me           -- current account profile (requires auth)
  POST /api/v1/auth/verify       -- access-token validity check (requires auth)
  GET  /api/v1/auth/sessions     -- caller's live refresh sessions (requires auth)
  POST /api/v1/auth/password     -- change password, then revoke all sessions
  GET  /api/v1/auth/permissions  -- caller's role and resolved permissions

Security:
  [H2] login, verify-2fa and refresh are rate-limited per IP.
  [C1] LoginStateMachine runs bcrypt in every branch -- never short-circuit
       on an unknown email here.
  [M5] Cache-Control: no-store on every response that carries or rejects a token.
  The refresh token travels in an httpOnly, SameSite=strict cookie scoped to
  /api/v1/auth. The JSON body also carries it for non-browser clients, and
  /refresh and /logout accept it back in the body when no cookie is present.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, Response

from api.errors import NO_STORE, auth_failure
from api.limiter import limiter
from api.models import (
    AccountProfile,
    LoginRequest,
    LoginResponse,
    LogoutAllResponse,
    MeResponse,
    MessageResponse,
    PasswordChangeRequest,
    PermissionsResponse,
    RefreshRequest,
    SessionRow,
    SessionsResponse,
    TokenResponse,
    VerifyTokenResponse,
    VerifyTwoFactorRequest,
)
from auth.dependencies import Principal, client_info, get_principal
from auth.issuer import TokenIssuer
from auth.ledger import RefreshTokenLedger
from auth.login import LoginStateMachine
from auth.rbac import permissions_for
from auth.results import LoginOutcome
from auth.store import AccountStore
from auth.tokens import REFRESH_COOKIE, clear_refresh_cookie, set_refresh_cookie
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/login, /auth/verify-2fa:  public -- the login flow itself
# - POST /auth/refresh, /auth/logout:    refresh token (cookie or body), no access token
# - everything else:                     requires a valid access token (get_principal)
router = APIRouter()


# ---------------------------------------------------------------------------
# Login flow (public)
# ---------------------------------------------------------------------------


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse, response_model_exclude_none=True)
def login(request: Request, response: Response, body: LoginRequest) -> LoginResponse:
    """Verify email and password.

    2FA off: the response carries the token pair. 2FA on: requiresTwoFactor
    is true, no tokens are issued, and the client continues at /auth/verify-2fa
    with account.id.

    Unknown email, inactive account and wrong password share one 401.
    """
    response.headers.update(NO_STORE)
    machine: LoginStateMachine = request.app.state.login
    outcome = machine.login(body.email, body.password, client_info(request))
    if outcome.error is not None:
        auth_failure(outcome.error)
    return _login_response(response, outcome)


@limiter.limit(_settings.two_factor_rate_limit)  # [H2] bounds online guessing of 6-digit codes
@router.post("/auth/verify-2fa", response_model=LoginResponse, response_model_exclude_none=True)
def verify_two_factor(request: Request, response: Response, body: VerifyTwoFactorRequest) -> LoginResponse:
    """Complete a login that returned requiresTwoFactor with a TOTP or backup code."""
    response.headers.update(NO_STORE)
    machine: LoginStateMachine = request.app.state.login
    outcome = machine.verify_second_factor(body.account_id, body.code, body.use_backup_code, client_info(request))
    if outcome.error is not None:
        auth_failure(outcome.error)
    return _login_response(response, outcome)


@limiter.limit(_settings.refresh_rate_limit)
@router.post("/auth/refresh", response_model=TokenResponse)
def refresh(request: Request, response: Response, body: Optional[RefreshRequest] = None) -> TokenResponse:
    """Exchange a refresh token for a new access/refresh pair.

    The presented token is revoked in the same step. Presenting a token that
    was already rotated revokes every session of the account; the caller
    sees the same 401 as for an expired token.
    """
    response.headers.update(NO_STORE)
    issuer: TokenIssuer = request.app.state.issuer
    result = issuer.rotate(_presented_refresh_token(request, body), client_info(request))
    if not result.ok:
        auth_failure(result.error)
    pair = result.tokens
    set_refresh_cookie(response, pair.refresh_token)
    return TokenResponse(
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        expires_in=pair.access_expires_in,
    )


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, response: Response, body: Optional[RefreshRequest] = None) -> MessageResponse:
    """Revoke the presented refresh token and clear the cookie. Always 200."""
    issuer: TokenIssuer = request.app.state.issuer
    issuer.revoke(_presented_refresh_token(request, body), client_info(request))
    clear_refresh_cookie(response)
    return MessageResponse(message="Logged out.")


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/logout-all", response_model=LogoutAllResponse)
def logout_all(
    request: Request,
    response: Response,
    principal: Principal = Depends(get_principal),
) -> LogoutAllResponse:
    """Revoke every refresh session of the caller. Outstanding access tokens live until expiry."""
    issuer: TokenIssuer = request.app.state.issuer
    count = issuer.revoke_all(principal.account_id, reason="logout_all", client=client_info(request))
    clear_refresh_cookie(response)
    return LogoutAllResponse(revoked=count)


@router.get("/auth/me", response_model=MeResponse)
def me(request: Request, principal: Principal = Depends(get_principal)) -> MeResponse:
    """Return the profile of the account behind the access token."""
    accounts: AccountStore = request.app.state.accounts
    account = accounts.get_by_id(principal.account_id)
    if account is None or not account.is_active:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return MeResponse(account=AccountProfile(**account.profile()), two_factor_enabled=account.totp_enabled)


@router.post("/auth/verify", response_model=VerifyTokenResponse)
def verify_token(principal: Principal = Depends(get_principal)) -> VerifyTokenResponse:
    """Confirm the access token is valid and echo its claims. No store lookup."""
    return VerifyTokenResponse(
        account_id=principal.account_id,
        role=principal.role.label,
        issued_at=int(principal.claims.get("iat", 0)),
        expires_at=int(principal.claims.get("exp", 0)),
    )


@router.get("/auth/sessions", response_model=SessionsResponse)
def list_sessions(request: Request, principal: Principal = Depends(get_principal)) -> SessionsResponse:
    """List the caller's live refresh sessions, newest first. Token hashes are never returned."""
    ledger: RefreshTokenLedger = request.app.state.ledger
    return SessionsResponse(
        sessions=[
            SessionRow(
                id=r.id,
                issued_at=r.issued_at,
                expires_at=r.expires_at,
                client_ip=r.client_ip,
                client_agent=r.client_agent,
            )
            for r in ledger.list_active(principal.account_id)
        ]
    )


@router.post("/auth/password", response_model=MessageResponse)
def change_password(
    request: Request,
    response: Response,
    body: PasswordChangeRequest,
    principal: Principal = Depends(get_principal),
) -> MessageResponse:
    """Change the caller's password. Every refresh session is revoked afterwards."""
    response.headers.update(NO_STORE)
    machine: LoginStateMachine = request.app.state.login
    result = machine.change_password(
        principal.account_id, body.current_password, body.new_password, client_info(request)
    )
    if not result.ok:
        auth_failure(result.error)
    clear_refresh_cookie(response)
    return MessageResponse(message="Password changed. Sign in again on every device.")


@router.get("/auth/permissions", response_model=PermissionsResponse)
def permissions(principal: Principal = Depends(get_principal)) -> PermissionsResponse:
    """Return the caller's role and every "resource:action" it is granted."""
    return PermissionsResponse(
        role=principal.role.label,
        permissions=[f"{resource.value}:{action.value}" for resource, action in permissions_for(principal.role)],
    )


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _presented_refresh_token(request: Request, body: Optional[RefreshRequest]) -> Optional[str]:
    return request.cookies.get(REFRESH_COOKIE) or (body.refresh_token if body else None)


def _login_response(response: Response, outcome: LoginOutcome) -> LoginResponse:
    account = AccountProfile(**outcome.account)
    if outcome.requires_two_factor:
        return LoginResponse(requires_two_factor=True, account=account)
    pair = outcome.tokens
    set_refresh_cookie(response, pair.refresh_token)
    return LoginResponse(
        requires_two_factor=False,
        account=account,
        access_token=pair.access_token,
        refresh_token=pair.refresh_token,
        token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
        expires_in=pair.access_expires_in,
    )
