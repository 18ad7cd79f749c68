"""
auth/login.py -- The two-step login protocol.

    AwaitingCredentials --login()--> CredentialsVerified --+--> IssuedTokens            (2FA off)
                                                           +--> AwaitingSecondFactor    (2FA on)
    AwaitingSecondFactor --verify_second_factor()--> IssuedTokens

Any failure in login() goes back to AwaitingCredentials with nothing
written except an audit event. A wrong second factor leaves the attempt in
AwaitingSecondFactor; repeated guessing is throttled by the external rate
limiter, not here.

Enumeration resistance: unknown email, inactive account and wrong password
all return INVALID_CREDENTIALS, and bcrypt runs in every branch
(verify_account_password) so timing does not separate them either. The
audit event keeps the real reason.
"""

from __future__ import annotations

import logging
from typing import Optional

from auth.audit import AuditSink, emit_event
from auth.issuer import TokenIssuer
from auth.models import ClientInfo
from auth.results import OK, Ack, AuthError, LoginOutcome, LoginState
from auth.store import AccountStore
from auth.tokens import hash_password, password_fits_bcrypt, verify_account_password
from auth.two_factor import TwoFactorService

logger = logging.getLogger("adminauth.auth")

MIN_PASSWORD_LENGTH = 8


def password_acceptable(password: Optional[str]) -> bool:
    """At least MIN_PASSWORD_LENGTH characters and short enough for bcrypt."""
    return len(password or "") >= MIN_PASSWORD_LENGTH and password_fits_bcrypt(password)


class LoginStateMachine:
    def __init__(
        self,
        accounts: AccountStore,
        issuer: TokenIssuer,
        two_factor: TwoFactorService,
        audit: AuditSink,
    ) -> None:
        self.accounts = accounts
        self.issuer = issuer
        self.two_factor = two_factor
        self.audit = audit

    def login(self, email: str, password: str, client: Optional[ClientInfo] = None) -> LoginOutcome:
        """Step one: verify email + password.

        2FA off: tokens are issued right away. 2FA on: the outcome carries the
        account id and profile and no tokens.
        """
        client = client or ClientInfo()
        email = (email or "").strip().lower()
        if not email or not password:
            return _failed(AuthError.INVALID_CREDENTIALS)

        account = self.accounts.get_by_email(email)
        password_ok = verify_account_password(account, password)
        if account is None or not password_ok or not account.is_active:
            if account is None:
                reason = "unknown_account"
            elif not password_ok:
                reason = "invalid_password"
            else:
                reason = "account_inactive"
            emit_event(self.audit, "login_failed", account.id if account else None, client, "failure", reason=reason)
            return _failed(AuthError.INVALID_CREDENTIALS)

        # CredentialsVerified
        if account.totp_enabled:
            emit_event(self.audit, "login_2fa_required", account.id, client)
            return LoginOutcome(state=LoginState.AWAITING_SECOND_FACTOR, account=account.profile())

        tokens = self.issuer.issue_pair(account, client)
        emit_event(self.audit, "login_success", account.id, client)
        return LoginOutcome(state=LoginState.ISSUED_TOKENS, account=account.profile(), tokens=tokens)

    def verify_second_factor(
        self,
        account_id: str,
        code: str,
        is_backup_code: bool = False,
        client: Optional[ClientInfo] = None,
    ) -> LoginOutcome:
        """Step two: a TOTP or backup code for an account awaiting its second factor."""
        client = client or ClientInfo()
        account = self.accounts.get_by_id(account_id) if account_id else None
        if account is None or not account.is_active or not account.totp_enabled:
            # Nothing to resume. Restart from credentials.
            emit_event(self.audit, "two_factor_failed", account_id or None, client, "failure", reason="no_pending_login")
            return _failed(AuthError.INVALID_TWO_FACTOR_CODE)

        check = self.two_factor.check_code(account, code, is_backup_code, client)
        if not check.ok:
            emit_event(self.audit, "two_factor_failed", account.id, client, "failure", reason=check.error.value)
            return LoginOutcome(
                state=LoginState.AWAITING_SECOND_FACTOR,
                account=account.profile(),
                error=check.error,
            )

        tokens = self.issuer.issue_pair(account, client)
        emit_event(self.audit, "two_factor_success", account.id, client, backup_code=is_backup_code)
        return LoginOutcome(state=LoginState.ISSUED_TOKENS, account=account.profile(), tokens=tokens)

    def change_password(
        self,
        account_id: str,
        current_password: str,
        new_password: str,
        client: Optional[ClientInfo] = None,
    ) -> Ack:
        """Replace the password after re-checking the current one, then revoke every session."""
        client = client or ClientInfo()
        if not password_acceptable(new_password):
            emit_event(self.audit, "password_change_failed", account_id, client, "failure", reason="weak_password")
            return Ack(error=AuthError.WEAK_PASSWORD)
        account = self.accounts.get_by_id(account_id)
        if not verify_account_password(account, current_password) or not account.is_active:
            emit_event(self.audit, "password_change_failed", account_id, client, "failure")
            return Ack(error=AuthError.INVALID_CREDENTIALS)

        if not self.accounts.update_account(account.id, account.version, password_hash=hash_password(new_password)):
            return Ack(error=AuthError.CONCURRENT_MODIFICATION)
        self.issuer.revoke_all(account.id, reason="password_changed", client=client)
        emit_event(self.audit, "password_changed", account.id, client)
        return OK


def _failed(error: AuthError) -> LoginOutcome:
    return LoginOutcome(state=LoginState.AWAITING_CREDENTIALS, error=error)
