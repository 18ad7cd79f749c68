"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores own the SQL,
services own the rules; these classes only carry shape between them.

Secrets never appear here in raw form except where noted: password_hash is a
bcrypt hash, token_hash and BackupCode.code_hash are keyed HMAC digests.
totp_secret / totp_pending_secret are the DECRYPTED values -- the store
encrypts them on write and decrypts them in its row mapper, so nothing above
the store ever sees ciphertext.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Optional

from auth.rbac import Role


@dataclass
class BackupCode:
    """One single-use 2FA fallback credential. Only the hash is persisted."""

    code_hash: str
    used: bool = False
    id: Optional[int] = None
    used_at: Optional[str] = None


@dataclass
class AdminAccount:
    """An admin console identity with credential and 2FA state.

    totp_secret is set iff totp_enabled is True. totp_pending_secret holds an
    enrollment in progress and never counts as 2FA being enabled.

    version increments on every account mutation. Mutating store calls take
    the version the caller read and fail if it has moved (lost-update guard).
    """

    email: str
    password_hash: str
    role: Role
    name: str = ""
    id: Optional[str] = None
    is_active: bool = True
    totp_secret: Optional[str] = None
    totp_pending_secret: Optional[str] = None
    totp_enabled: bool = False
    backup_codes: list[BackupCode] = field(default_factory=list)
    version: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def profile(self) -> dict:
        """Non-sensitive fields safe to echo back to a client."""
        return {"id": self.id, "email": self.email, "name": self.name, "role": self.role.label}


@dataclass
class RefreshTokenRecord:
    """Metadata for one issued refresh token.

    The raw token is a bearer capability held only by the client; this record
    keeps its HMAC digest plus lifecycle flags, so the store alone can never
    mint a valid refresh token. Records are retained after revocation for audit.
    """

    account_id: str
    token_hash: str
    issued_at: str
    expires_at: str
    id: Optional[str] = None
    revoked: bool = False
    revoked_at: Optional[str] = None
    replaced_by: Optional[str] = None  # successor record id after rotation
    client_ip: Optional[str] = None
    client_agent: Optional[str] = None


@dataclass
class ClientInfo:
    """Request origin details recorded on refresh records and audit events."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass
class AuditEvent:
    """A structured security event handed to the audit sink.

    action is a snake_case event name ("login_failed",
    "refresh_token_replay_detected"). details must never contain secrets.
    """

    action: str
    account_id: Optional[str] = None
    status: str = "success"  # "success" or "failure"
    client: ClientInfo = field(default_factory=ClientInfo)
    details: dict = field(default_factory=dict)
    id: Optional[int] = None
    created_at: Optional[str] = None
