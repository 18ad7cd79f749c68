"""
api/errors.py -- AuthError -> HTTP translation.

Route handlers receive typed AuthError values from the auth services and
raise them through auth_failure(). This is the only place that decides the
status code and the client-facing message for an auth failure. The message is
deliberately generic: it never says which part of a credential was wrong, and
the code is AuthError.public_code, which folds replay into expiry and used
backup codes into invalid ones.

The raised HTTPException carries a structured detail dict, which the
HTTPException handler in api/main.py wraps in the standard error envelope.
"""

from __future__ import annotations

from typing import NoReturn, Optional

from fastapi import HTTPException

from auth.results import AuthError

NO_STORE = {"Cache-Control": "no-store"}

# public code -> (default status, message)
_PUBLIC: dict[str, tuple[int, str]] = {
    "invalid_credentials": (401, "Invalid email or password."),
    "invalid_two_factor_code": (401, "Invalid verification code."),
    "refresh_token_invalid_or_expired": (401, "Refresh token is invalid or expired."),
    "permission_denied": (403, "Insufficient permissions."),
    "two_factor_already_enabled": (400, "Two-factor authentication is already enabled."),
    "two_factor_not_enabled": (400, "Two-factor authentication is not enabled."),
    "enrollment_not_started": (400, "Start two-factor setup before enabling it."),
    "concurrent_modification": (409, "The account was modified concurrently. Retry the request."),
    "weak_password": (400, "Password must be at least 8 characters and at most 72 bytes."),
}


def auth_failure(error: AuthError, status_code: Optional[int] = None) -> NoReturn:
    """Raise the HTTPException for error. status_code overrides the default status."""
    code = error.public_code
    default_status, message = _PUBLIC[code]
    raise HTTPException(
        status_code=status_code or default_status,
        detail={"code": code, "message": message},
        headers=NO_STORE,
    )
