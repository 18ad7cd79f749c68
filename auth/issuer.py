"""
auth/issuer.py -- Token issuance, refresh rotation, and revocation.

TokenIssuer mints access/refresh pairs and owns the refresh lifecycle:

  issue_pair()  -- new access token + new refresh lineage (login).
  rotate()      -- exchange a refresh token for a new pair, revoking the old
                   one in the same atomic step (see auth/ledger.py).
  revoke()      -- logout of one session; idempotent.
  revoke_all()  -- logout everywhere (password change, 2FA disable,
                   deactivation, detected compromise).

Replay handling: a refresh token that resolves to a revoked or expired record
means someone is holding a token they should not be using any more. Either
the legitimate client or an attacker already rotated it. We cannot tell which,
so every live session of that account is revoked and a security event is
emitted. The caller only ever sees "invalid or expired".
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from auth.audit import AuditSink, emit_event
from auth.ledger import RefreshTokenLedger
from auth.models import AdminAccount, ClientInfo
from auth.results import AuthError, RotationResult, TokenPair
from auth.store import AccountStore, utcnow
from auth.tokens import create_access_token, generate_refresh_token, hash_secret_value
from core.config import Settings, get_settings

logger = logging.getLogger("adminauth.auth")


class TokenIssuer:
    def __init__(
        self,
        accounts: AccountStore,
        ledger: RefreshTokenLedger,
        audit: AuditSink,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.accounts = accounts
        self.ledger = ledger
        self.audit = audit
        self.settings = settings or get_settings()
        self._clock = clock

    def issue_pair(self, account: AdminAccount, client: Optional[ClientInfo] = None) -> TokenPair:
        """Mint a fresh access token and start a new refresh lineage for account."""
        now = self._clock()
        raw = generate_refresh_token()
        record = self.ledger.create(account.id, hash_secret_value(raw), self._refresh_expiry(now), client, now=now)
        return self._pair(account, raw, record.expires_at, now)

    def rotate(self, presented: Optional[str], client: Optional[ClientInfo] = None) -> RotationResult:
        """Exchange a refresh token for a new pair, or reject it.

        Concurrent calls with the same token: exactly one succeeds. The other
        finds the record already revoked and takes the replay path.
        """
        client = client or ClientInfo()
        if not presented:
            return RotationResult(error=AuthError.REFRESH_TOKEN_INVALID_OR_EXPIRED)

        now = self._clock()
        token_hash = hash_secret_value(presented)
        new_raw = generate_refresh_token()
        rotated = self.ledger.rotate(token_hash, hash_secret_value(new_raw), self._refresh_expiry(now), client, now=now)
        if rotated is None:
            return self._reject(token_hash, client)

        old, successor = rotated
        account = self.accounts.get_by_id(old.account_id)
        if account is None or not account.is_active:
            self.ledger.revoke_all(old.account_id)
            emit_event(self.audit, "refresh_rejected_inactive", old.account_id, client, "failure", token_id=old.id)
            return RotationResult(error=AuthError.ACCOUNT_INACTIVE)

        emit_event(self.audit, "token_refreshed", account.id, client, token_id=old.id, successor_id=successor.id)
        return RotationResult(tokens=self._pair(account, new_raw, successor.expires_at, now))

    def revoke(self, presented: Optional[str], client: Optional[ClientInfo] = None) -> None:
        """Revoke the session behind a refresh token. Unknown or already-revoked tokens are a no-op."""
        if not presented:
            return
        token_hash = hash_secret_value(presented)
        if self.ledger.revoke(token_hash):
            record = self.ledger.find_by_hash(token_hash)
            emit_event(self.audit, "refresh_token_revoked", record.account_id if record else None, client or ClientInfo())

    def revoke_all(self, account_id: str, reason: str, client: Optional[ClientInfo] = None) -> int:
        count = self.ledger.revoke_all(account_id)
        emit_event(self.audit, "all_refresh_tokens_revoked", account_id, client or ClientInfo(), reason=reason, count=count)
        return count

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _reject(self, token_hash: str, client: ClientInfo) -> RotationResult:
        record = self.ledger.find_by_hash(token_hash)
        if record is None:
            emit_event(self.audit, "refresh_token_invalid", None, client, "failure")
            return RotationResult(error=AuthError.REFRESH_TOKEN_INVALID_OR_EXPIRED)

        revoked = self.ledger.revoke_all(record.account_id)
        if record.revoked:
            logger.warning("Refresh token replay detected for account %s; revoked %d sessions", record.account_id, revoked)
            action, error = "refresh_token_replay_detected", AuthError.REFRESH_TOKEN_REPLAY_DETECTED
        else:
            action, error = "refresh_token_expired_presented", AuthError.REFRESH_TOKEN_INVALID_OR_EXPIRED
        emit_event(self.audit, action, record.account_id, client, "failure", token_id=record.id, revoked_sessions=revoked)
        return RotationResult(error=error)

    def _pair(self, account: AdminAccount, raw_refresh: str, refresh_expires_at: str, now: datetime) -> TokenPair:
        expires_in = self.settings.access_token_expire_seconds
        return TokenPair(
            access_token=create_access_token(account.id, account.role.label, expire_seconds=expires_in, now=now),
            refresh_token=raw_refresh,
            access_expires_in=expires_in,
            refresh_expires_at=refresh_expires_at,
        )

    def _refresh_expiry(self, now: datetime) -> datetime:
        return now + timedelta(days=self.settings.refresh_token_expire_days)
