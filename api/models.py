"""
API request and response models for the admin auth REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
auth/results.py, which own the internal representation. Route handlers map
between the two.

JSON keys are camelCase on the wire (accessToken, useBackupCode). Every model
derives from _ApiModel, whose alias generator produces the camelCase names;
populate_by_name lets tests and internal callers use the snake_case names too.
FastAPI serializes response_model output by alias, so responses come out
camelCase without any per-route work.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from auth.login import MIN_PASSWORD_LENGTH


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _ApiResponse(_ApiModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_ApiModel):
    """Request body for POST /api/v1/auth/login.

    Only length limits are enforced here. An empty or malformed email gets the
    same generic 401 as a wrong password, so field validation must not leak
    which part was wrong.
    """

    email: str = Field(max_length=255)
    password: str = Field(max_length=255)


class VerifyTwoFactorRequest(_ApiModel):
    """Request body for POST /api/v1/auth/verify-2fa (login step two)."""

    account_id: str = Field(min_length=1, max_length=64)
    code: str = Field(min_length=1, max_length=32)
    use_backup_code: bool = False


class RefreshRequest(_ApiModel):
    """Optional body for /auth/refresh and /auth/logout. The cookie wins when both are sent."""

    refresh_token: Optional[str] = Field(default=None, max_length=256)


class CodeRequest(_ApiModel):
    """Request body for POST /api/v1/auth/2fa/enable and /2fa/disable.

    use_backup_code=None lets the server decide by the shape of the code.
    """

    code: str = Field(min_length=1, max_length=32)
    use_backup_code: Optional[bool] = None


class BackupVerifyRequest(_ApiModel):
    """Request body for POST /api/v1/auth/2fa/verify."""

    email: str = Field(max_length=255)
    code: str = Field(min_length=1, max_length=32)
    use_backup_code: bool = False


class PasswordChangeRequest(_ApiModel):
    """Request body for POST /api/v1/auth/password."""

    current_password: str = Field(max_length=255)
    new_password: str = Field(min_length=MIN_PASSWORD_LENGTH, max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class AccountProfile(_ApiResponse):
    id: str
    email: str
    name: str
    role: str


class LoginResponse(_ApiResponse):
    """Response for POST /auth/login and /auth/verify-2fa.

    requires_two_factor=True: tokens are absent; the client must call
    /auth/verify-2fa with account.id and a code.
    """

    requires_two_factor: bool
    account: AccountProfile
    access_token: Optional[str] = None
    refresh_token: Optional[str] = None
    token_type: Optional[str] = None
    expires_in: Optional[int] = None


class TokenResponse(_ApiResponse):
    """Response for POST /auth/refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int


class MessageResponse(_ApiResponse):
    message: str


class MeResponse(_ApiResponse):
    account: AccountProfile
    two_factor_enabled: bool


class VerifyTokenResponse(_ApiResponse):
    """Response for POST /auth/verify -- the decoded access-token claims."""

    valid: bool = True
    account_id: str
    role: str
    issued_at: int
    expires_at: int


class SessionRow(_ApiResponse):
    """One active refresh session."""

    id: str
    issued_at: str
    expires_at: str
    client_ip: Optional[str] = None
    client_agent: Optional[str] = None


class SessionsResponse(_ApiResponse):
    sessions: list[SessionRow]


class LogoutAllResponse(_ApiResponse):
    revoked: int


class PermissionsResponse(_ApiResponse):
    """Response for GET /auth/permissions. Permissions are "resource:action" strings."""

    role: str
    permissions: list[str]


class EnrollmentResponse(_ApiResponse):
    """Response for POST /auth/2fa/setup."""

    secret: str
    provisioning_uri: str


class BackupCodesResponse(_ApiResponse):
    """Response for POST /auth/2fa/enable. Shown once; never retrievable again."""

    backup_codes: list[str]


class TwoFactorStatusResponse(_ApiResponse):
    enabled: bool
    backup_codes_remaining: int


class VerifiedResponse(_ApiResponse):
    verified: bool = True


class AuditLogRow(_ApiResponse):
    id: int
    account_id: Optional[str] = None
    action: str
    status: str
    client_ip: Optional[str] = None
    client_agent: Optional[str] = None
    details: dict = Field(default_factory=dict)
    created_at: str


class AuditLogResponse(_ApiResponse):
    logs: list[AuditLogRow]
    count: int


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(_ApiResponse):
    """Response for GET /api/v1/health."""

    status: str = "ok"
    version: str
    database: str = "ok"
