"""
auth/two_factor.py -- TOTP enrollment, second-factor checks, and backup codes.

Enrollment is a two-phase commit:

  begin_enrollment()   -- new secret stored as PENDING; totp_enabled stays False.
  confirm_enrollment() -- the user proves the authenticator works by sending a
                          code for the pending secret. Only then does the secret
                          become authoritative and backup codes get issued.
                          A wrong code discards the pending secret.

An account that starts enrollment and walks away is left exactly as it was:
2FA off, login unaffected.

Backup codes are returned in plaintext exactly once, from confirm_enrollment().
After that only their HMAC digests exist. Consumption is a conditional UPDATE
per code row (AccountStore.consume_backup_code), so a code can never be used
twice, even by two simultaneous requests.
"""

from __future__ import annotations

from datetime import datetime
from typing import Callable, Optional

from auth.audit import AuditSink, emit_event
from auth.issuer import TokenIssuer
from auth.models import AdminAccount, ClientInfo
from auth.results import OK, Ack, AuthError, EnrollmentResult, EnrollmentStart
from auth.store import AccountStore, utcnow
from auth.totp import (
    generate_backup_codes,
    generate_totp_secret,
    hash_backup_code,
    is_totp_format,
    provisioning_uri,
    verify_totp,
)
from core.config import Settings, get_settings


class TwoFactorService:
    def __init__(
        self,
        accounts: AccountStore,
        issuer: TokenIssuer,
        audit: AuditSink,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.accounts = accounts
        self.issuer = issuer
        self.audit = audit
        self.settings = settings or get_settings()
        self._clock = clock

    # ------------------------------------------------------------------
    # Enrollment
    # ------------------------------------------------------------------

    def begin_enrollment(self, account_id: str, client: Optional[ClientInfo] = None) -> EnrollmentStart:
        """Generate a pending secret and its otpauth:// provisioning URI.

        Calling this again before confirming replaces the pending secret.
        """
        client = client or ClientInfo()
        account = self.accounts.get_by_id(account_id)
        if account is None or not account.is_active:
            return EnrollmentStart(error=AuthError.INVALID_CREDENTIALS)
        if account.totp_enabled:
            return EnrollmentStart(error=AuthError.TWO_FACTOR_ALREADY_ENABLED)

        secret = generate_totp_secret()
        if not self.accounts.set_pending_totp(account.id, account.version, secret):
            return EnrollmentStart(error=AuthError.CONCURRENT_MODIFICATION)

        emit_event(self.audit, "2fa_setup_initiated", account.id, client)
        return EnrollmentStart(
            secret=secret,
            provisioning_uri=provisioning_uri(secret, account.email, self.settings.totp_issuer),
        )

    def confirm_enrollment(self, account_id: str, code: str, client: Optional[ClientInfo] = None) -> EnrollmentResult:
        """Verify a code against the pending secret and turn 2FA on.

        Returns the plaintext backup codes on success. This is the only time
        they are ever available.
        """
        client = client or ClientInfo()
        account = self.accounts.get_by_id(account_id)
        if account is None or not account.is_active:
            return EnrollmentResult(error=AuthError.INVALID_CREDENTIALS)
        if account.totp_enabled:
            return EnrollmentResult(error=AuthError.TWO_FACTOR_ALREADY_ENABLED)
        if not account.totp_pending_secret:
            return EnrollmentResult(error=AuthError.ENROLLMENT_NOT_STARTED)

        if not verify_totp(account.totp_pending_secret, code, for_time=self._clock()):
            self.accounts.set_pending_totp(account.id, account.version, None)
            emit_event(self.audit, "2fa_enable_failed", account.id, client, "failure", reason="invalid_code")
            return EnrollmentResult(error=AuthError.INVALID_TWO_FACTOR_CODE)

        codes = generate_backup_codes(self.settings.backup_code_count)
        if not self.accounts.enable_totp(account.id, account.version, [hash_backup_code(c) for c in codes]):
            return EnrollmentResult(error=AuthError.CONCURRENT_MODIFICATION)

        emit_event(self.audit, "2fa_enabled", account.id, client, backup_codes=len(codes))
        return EnrollmentResult(backup_codes=codes)

    def disable(
        self,
        account_id: str,
        code: str,
        client: Optional[ClientInfo] = None,
        use_backup_code: Optional[bool] = None,
    ) -> Ack:
        """Turn 2FA off after proof of possession, then log out every session."""
        client = client or ClientInfo()
        account = self.accounts.get_by_id(account_id)
        if account is None or not account.is_active:
            return Ack(error=AuthError.INVALID_CREDENTIALS)
        if not account.totp_enabled:
            return Ack(error=AuthError.TWO_FACTOR_NOT_ENABLED)

        check = self.check_code(account, code, use_backup_code, client)
        if not check.ok:
            emit_event(self.audit, "2fa_disable_failed", account.id, client, "failure", reason=check.error.value)
            return check

        if not self.accounts.disable_totp(account.id, account.version):
            return Ack(error=AuthError.CONCURRENT_MODIFICATION)
        self.issuer.revoke_all(account.id, reason="two_factor_disabled", client=client)
        emit_event(self.audit, "2fa_disabled", account.id, client)
        return OK

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def check_code(
        self,
        account: AdminAccount,
        code: str,
        use_backup_code: Optional[bool] = None,
        client: Optional[ClientInfo] = None,
    ) -> Ack:
        """Check a TOTP or backup code for an account with 2FA enabled.

        use_backup_code=None picks by shape: six digits is a TOTP code,
        anything else a backup code. A matching backup code is consumed.
        """
        if not account.totp_enabled or not account.totp_secret:
            return Ack(error=AuthError.TWO_FACTOR_NOT_ENABLED)
        if use_backup_code is None:
            use_backup_code = not is_totp_format(code)
        if use_backup_code:
            return self.verify_backup_code(account.id, code, client)
        if verify_totp(account.totp_secret, code, for_time=self._clock()):
            return OK
        return Ack(error=AuthError.INVALID_TWO_FACTOR_CODE)

    def verify_backup_code(self, account_id: str, code: str, client: Optional[ClientInfo] = None) -> Ack:
        """Consume one backup code. Used and unknown codes fail the same way externally."""
        client = client or ClientInfo()
        code_hash = hash_backup_code(code)
        if self.accounts.consume_backup_code(account_id, code_hash):
            remaining = self.accounts.count_unused_backup_codes(account_id)
            emit_event(self.audit, "backup_code_used", account_id, client, remaining=remaining)
            return OK

        if self.accounts.backup_code_used(account_id, code_hash):
            error = AuthError.BACKUP_CODE_ALREADY_USED
        else:
            error = AuthError.BACKUP_CODE_INVALID
        emit_event(self.audit, "backup_code_rejected", account_id, client, "failure", reason=error.value)
        return Ack(error=error)

    def verify_for_email(
        self,
        email: str,
        code: str,
        use_backup_code: bool = False,
        client: Optional[ClientInfo] = None,
    ) -> Ack:
        """Standalone check behind POST /auth/2fa/verify. Issues no tokens.

        Unknown email, 2FA off, inactive account and a wrong code all come back
        as INVALID_TWO_FACTOR_CODE.
        """
        client = client or ClientInfo()
        account = self.accounts.get_by_email(email)
        if account is None or not account.is_active or not account.totp_enabled:
            return Ack(error=AuthError.INVALID_TWO_FACTOR_CODE)
        result = self.check_code(account, code, use_backup_code, client)
        if result.ok:
            emit_event(self.audit, "2fa_verification_success", account.id, client, backup_code=use_backup_code)
        else:
            emit_event(self.audit, "2fa_verification_failed", account.id, client, "failure")
        return result

    def status(self, account_id: str) -> tuple[bool, int]:
        """Return (enabled, unused backup codes remaining)."""
        account = self.accounts.get_by_id(account_id)
        if account is None or not account.totp_enabled:
            return False, 0
        return True, self.accounts.count_unused_backup_codes(account.id)
