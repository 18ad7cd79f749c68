"""
api/routes/v1/two_factor.py -- TOTP enrollment and verification endpoints.

Routes:
  POST /api/v1/auth/2fa/setup    -- start enrollment; returns secret + otpauth URI
  POST /api/v1/auth/2fa/enable   -- confirm with a code; returns backup codes ONCE
  POST /api/v1/auth/2fa/disable  -- proof of possession; revokes every session
  POST /api/v1/auth/2fa/verify   -- standalone code check by email; issues no tokens
  GET  /api/v1/auth/2fa/status   -- enabled flag + remaining backup codes

A wrong code on /enable discards the pending secret; the client has to call
/setup again and re-scan. /verify is public and rate-limited like login.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request, Response

from api.errors import NO_STORE, auth_failure
from api.limiter import limiter
from api.models import (
    BackupCodesResponse,
    BackupVerifyRequest,
    CodeRequest,
    EnrollmentResponse,
    MessageResponse,
    TwoFactorStatusResponse,
    VerifiedResponse,
)
from auth.dependencies import Principal, client_info, get_principal
from auth.results import AuthError
from auth.tokens import clear_refresh_cookie
from auth.two_factor import TwoFactorService
from core.config import get_settings

_settings = get_settings()

# Auth policy:
# - POST /auth/2fa/verify: public -- rate-limited code check, no tokens issued
# - everything else:       requires a valid access token (get_principal)
router = APIRouter()


@router.post("/auth/2fa/setup", response_model=EnrollmentResponse)
def setup(request: Request, response: Response, principal: Principal = Depends(get_principal)) -> EnrollmentResponse:
    """Generate a pending TOTP secret. 2FA stays off until /2fa/enable succeeds."""
    response.headers.update(NO_STORE)
    service: TwoFactorService = request.app.state.two_factor
    start = service.begin_enrollment(principal.account_id, client_info(request))
    if start.error is not None:
        auth_failure(start.error)
    return EnrollmentResponse(secret=start.secret, provisioning_uri=start.provisioning_uri)


@limiter.limit(_settings.two_factor_rate_limit)
@router.post("/auth/2fa/enable", response_model=BackupCodesResponse)
def enable(
    request: Request,
    response: Response,
    body: CodeRequest,
    principal: Principal = Depends(get_principal),
) -> BackupCodesResponse:
    """Confirm enrollment with a code from the authenticator app.

    The backup codes in the response are never retrievable again.
    """
    response.headers.update(NO_STORE)
    service: TwoFactorService = request.app.state.two_factor
    result = service.confirm_enrollment(principal.account_id, body.code, client_info(request))
    if result.error is not None:
        # The caller is already authenticated; a bad code here is a bad request.
        status = 400 if result.error is AuthError.INVALID_TWO_FACTOR_CODE else None
        auth_failure(result.error, status)
    return BackupCodesResponse(backup_codes=result.backup_codes)


@limiter.limit(_settings.two_factor_rate_limit)
@router.post("/auth/2fa/disable", response_model=MessageResponse)
def disable(
    request: Request,
    response: Response,
    body: CodeRequest,
    principal: Principal = Depends(get_principal),
) -> MessageResponse:
    """Turn 2FA off with a TOTP or backup code. All refresh sessions are revoked."""
    response.headers.update(NO_STORE)
    service: TwoFactorService = request.app.state.two_factor
    result = service.disable(principal.account_id, body.code, client_info(request), body.use_backup_code)
    if not result.ok:
        auth_failure(result.error)
    clear_refresh_cookie(response)
    return MessageResponse(message="Two-factor authentication disabled.")


@limiter.limit(_settings.two_factor_rate_limit)
@router.post("/auth/2fa/verify", response_model=VerifiedResponse)
def verify(request: Request, response: Response, body: BackupVerifyRequest) -> VerifiedResponse:
    """Check a TOTP or backup code for an email. A backup code is consumed on success."""
    response.headers.update(NO_STORE)
    service: TwoFactorService = request.app.state.two_factor
    result = service.verify_for_email(body.email.strip().lower(), body.code, body.use_backup_code, client_info(request))
    if not result.ok:
        auth_failure(result.error)
    return VerifiedResponse()


@router.get("/auth/2fa/status", response_model=TwoFactorStatusResponse)
def status(request: Request, principal: Principal = Depends(get_principal)) -> TwoFactorStatusResponse:
    service: TwoFactorService = request.app.state.two_factor
    enabled, remaining = service.status(principal.account_id)
    return TwoFactorStatusResponse(enabled=enabled, backup_codes_remaining=remaining)
