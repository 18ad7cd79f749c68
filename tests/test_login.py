"""Unit tests for auth/login.py -- the two-step login protocol.

Covers:
- 2FA off + correct credentials -> IssuedTokens
- 2FA on -> AwaitingSecondFactor, never tokens from step one
- wrong second factor stays in AwaitingSecondFactor; right one issues tokens
- backup code as second factor, single use
- unknown email, wrong password, inactive account: one external error
- login audit trail
- change_password(): re-checks the current password, revokes sessions,
  rejects passwords outside 8 characters .. 72 bytes with WEAK_PASSWORD
- hash_password() refuses input bcrypt cannot hash
"""

import pytest

from auth.results import AuthError, LoginState
from auth.tokens import MAX_PASSWORD_BYTES, decode_access_token, hash_password, verify_password
from conftest import PASSWORD, enroll_totp, make_account, totp_now


@pytest.fixture
def plain(services):
    return make_account(services.accounts, "plain@example.com")


@pytest.fixture
def guarded(services):
    account = make_account(services.accounts, "guarded@example.com")
    secret, codes = enroll_totp(services.two_factor, account.id)
    return account, secret, codes


def _wrong(secret: str) -> str:
    return "000000" if totp_now(secret) != "000000" else "111111"


class TestStepOne:
    def test_without_two_factor_issues_tokens(self, services, plain):
        outcome = services.login.login("plain@example.com", PASSWORD)
        assert outcome.state is LoginState.ISSUED_TOKENS
        assert outcome.error is None
        assert outcome.account["id"] == plain.id
        assert decode_access_token(outcome.tokens.access_token)["sub"] == plain.id

    def test_email_is_case_insensitive(self, services, plain):
        assert services.login.login("  Plain@Example.COM ", PASSWORD).state is LoginState.ISSUED_TOKENS

    def test_with_two_factor_awaits_second_factor(self, services, guarded):
        account, _, _ = guarded
        outcome = services.login.login(account.email, PASSWORD)
        assert outcome.state is LoginState.AWAITING_SECOND_FACTOR
        assert outcome.requires_two_factor
        assert outcome.tokens is None
        assert outcome.account["id"] == account.id
        assert services.ledger.count_active(account.id) == 0

    @pytest.mark.parametrize(
        "email,password",
        [
            ("plain@example.com", "wrong-password"),
            ("nobody@example.com", PASSWORD),
            ("", PASSWORD),
            ("plain@example.com", ""),
        ],
    )
    def test_failures_share_one_error(self, services, plain, email, password):
        outcome = services.login.login(email, password)
        assert outcome.state is LoginState.AWAITING_CREDENTIALS
        assert outcome.error is AuthError.INVALID_CREDENTIALS
        assert outcome.tokens is None
        assert outcome.account is None

    def test_inactive_account_looks_like_bad_password(self, services):
        make_account(services.accounts, "inactive@example.com", is_active=False)
        outcome = services.login.login("inactive@example.com", PASSWORD)
        assert outcome.error is AuthError.INVALID_CREDENTIALS

    def test_failure_reason_is_audited(self, services, plain):
        services.login.login("plain@example.com", "wrong-password")
        events = services.audit.query(account_id=plain.id, action="login_failed")
        assert len(events) == 1
        assert events[0].status == "failure"
        assert events[0].details["reason"] == "invalid_password"

    def test_success_is_audited(self, services, plain):
        services.login.login("plain@example.com", PASSWORD)
        assert services.audit.query(account_id=plain.id, action="login_success")


class TestStepTwo:
    def test_wrong_code_stays_then_right_code_issues(self, services, guarded):
        account, secret, _ = guarded
        services.login.login(account.email, PASSWORD)

        failed = services.login.verify_second_factor(account.id, _wrong(secret))
        assert failed.state is LoginState.AWAITING_SECOND_FACTOR
        assert failed.error is AuthError.INVALID_TWO_FACTOR_CODE
        assert failed.tokens is None

        outcome = services.login.verify_second_factor(account.id, totp_now(secret))
        assert outcome.state is LoginState.ISSUED_TOKENS
        assert decode_access_token(outcome.tokens.access_token)["sub"] == account.id
        assert services.ledger.count_active(account.id) == 1

    def test_backup_code_as_second_factor(self, services, guarded):
        account, _, codes = guarded
        outcome = services.login.verify_second_factor(account.id, codes[0], is_backup_code=True)
        assert outcome.state is LoginState.ISSUED_TOKENS

        reused = services.login.verify_second_factor(account.id, codes[0], is_backup_code=True)
        assert reused.error is AuthError.BACKUP_CODE_ALREADY_USED
        assert reused.error.public_code == "invalid_two_factor_code"

    def test_backup_code_flag_false_does_not_consume(self, services, guarded):
        account, _, codes = guarded
        outcome = services.login.verify_second_factor(account.id, codes[0], is_backup_code=False)
        assert outcome.error is AuthError.INVALID_TWO_FACTOR_CODE
        assert services.two_factor.status(account.id)[1] == len(codes)

    def test_account_without_two_factor_has_nothing_to_resume(self, services, plain):
        outcome = services.login.verify_second_factor(plain.id, "123456")
        assert outcome.state is LoginState.AWAITING_CREDENTIALS
        assert outcome.error is AuthError.INVALID_TWO_FACTOR_CODE

    def test_unknown_account_id(self, services):
        outcome = services.login.verify_second_factor("no-such-id", "123456")
        assert outcome.state is LoginState.AWAITING_CREDENTIALS
        assert outcome.error is AuthError.INVALID_TWO_FACTOR_CODE


class TestChangePassword:
    def test_change_revokes_sessions_and_new_password_works(self, services, plain):
        refresh = services.login.login(plain.email, PASSWORD).tokens.refresh_token
        assert services.login.change_password(plain.id, PASSWORD, "a-new-long-password").ok

        assert not services.issuer.rotate(refresh).ok
        assert services.login.login(plain.email, PASSWORD).error is AuthError.INVALID_CREDENTIALS
        assert services.login.login(plain.email, "a-new-long-password").state is LoginState.ISSUED_TOKENS

    def test_wrong_current_password(self, services, plain):
        result = services.login.change_password(plain.id, "not-it", "a-new-long-password")
        assert result.error is AuthError.INVALID_CREDENTIALS

    @pytest.mark.parametrize(
        "new_password",
        [
            "short",
            "",
            "x" * 73,
            # 25 characters, 75 bytes.
            "€" * 25,
        ],
    )
    def test_password_outside_policy_is_typed_rejection(self, services, plain, new_password):
        """Too short, or too long for bcrypt: a typed result, and the old password still works."""
        result = services.login.change_password(plain.id, PASSWORD, new_password)
        assert result.error is AuthError.WEAK_PASSWORD
        assert services.login.login(plain.email, PASSWORD).state is LoginState.ISSUED_TOKENS

    def test_password_at_byte_limit_accepted(self, services, plain):
        assert services.login.change_password(plain.id, PASSWORD, "y" * 72).ok
        assert services.login.login(plain.email, "y" * 72).state is LoginState.ISSUED_TOKENS

    def test_overlong_password_at_login_is_plain_failure(self, services, plain):
        outcome = services.login.login(plain.email, "z" * 100)
        assert outcome.error is AuthError.INVALID_CREDENTIALS


class TestPasswordHashing:
    def test_hash_refuses_input_over_byte_limit(self):
        with pytest.raises(ValueError):
            hash_password("a" * (MAX_PASSWORD_BYTES + 1))

    def test_hash_at_byte_limit_round_trips(self):
        hashed = hash_password("a" * MAX_PASSWORD_BYTES)
        assert verify_password("a" * MAX_PASSWORD_BYTES, hashed)
        assert not verify_password("a" * (MAX_PASSWORD_BYTES + 1), hashed)
