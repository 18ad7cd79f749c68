"""
auth/results.py -- Typed outcomes returned by the auth services.

Every expected failure (bad password, wrong 2FA code, replayed refresh token)
comes back as an AuthError value inside a result object. Nothing here is
raised. Only infrastructure faults (the database is down) propagate as
exceptions, and the API layer turns those into a generic 503.

Several AuthError members are internally distinct but share one external
code -- see AuthError.public_code. Replay vs. plain expiry, used vs. unknown
backup code: the caller learns only that the credential did not work.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class AuthError(str, Enum):
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_INACTIVE = "account_inactive"
    INVALID_TWO_FACTOR_CODE = "invalid_two_factor_code"
    BACKUP_CODE_INVALID = "backup_code_invalid"
    BACKUP_CODE_ALREADY_USED = "backup_code_already_used"
    REFRESH_TOKEN_INVALID_OR_EXPIRED = "refresh_token_invalid_or_expired"
    REFRESH_TOKEN_REPLAY_DETECTED = "refresh_token_replay_detected"
    PERMISSION_DENIED = "permission_denied"
    TWO_FACTOR_ALREADY_ENABLED = "two_factor_already_enabled"
    TWO_FACTOR_NOT_ENABLED = "two_factor_not_enabled"
    ENROLLMENT_NOT_STARTED = "enrollment_not_started"
    CONCURRENT_MODIFICATION = "concurrent_modification"
    WEAK_PASSWORD = "weak_password"

    @property
    def public_code(self) -> str:
        """The code a client is allowed to see for this failure."""
        return _PUBLIC_CODES.get(self, self.value)


_PUBLIC_CODES = {
    AuthError.ACCOUNT_INACTIVE: AuthError.INVALID_CREDENTIALS.value,
    AuthError.BACKUP_CODE_INVALID: AuthError.INVALID_TWO_FACTOR_CODE.value,
    AuthError.BACKUP_CODE_ALREADY_USED: AuthError.INVALID_TWO_FACTOR_CODE.value,
    AuthError.REFRESH_TOKEN_REPLAY_DETECTED: AuthError.REFRESH_TOKEN_INVALID_OR_EXPIRED.value,
}


class LoginState(str, Enum):
    """Where a login attempt stands after a step.

    CredentialsVerified is transient inside LoginStateMachine.login() and is
    never returned to a caller.
    """

    AWAITING_CREDENTIALS = "awaiting_credentials"
    AWAITING_SECOND_FACTOR = "awaiting_second_factor"
    ISSUED_TOKENS = "issued_tokens"


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    access_expires_in: int  # seconds
    refresh_expires_at: str  # ISO 8601


@dataclass
class LoginOutcome:
    state: LoginState
    account: Optional[dict] = None  # AdminAccount.profile()
    tokens: Optional[TokenPair] = None
    error: Optional[AuthError] = None

    @property
    def requires_two_factor(self) -> bool:
        return self.state is LoginState.AWAITING_SECOND_FACTOR and self.error is None


@dataclass
class RotationResult:
    tokens: Optional[TokenPair] = None
    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class EnrollmentStart:
    secret: Optional[str] = None
    provisioning_uri: Optional[str] = None
    error: Optional[AuthError] = None


@dataclass
class EnrollmentResult:
    backup_codes: list[str] = field(default_factory=list)
    error: Optional[AuthError] = None


@dataclass(frozen=True)
class Ack:
    """Plain success/rejection for operations with no payload."""

    error: Optional[AuthError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


OK = Ack()
