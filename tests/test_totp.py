"""Unit tests for auth/totp.py -- TOTP verification, backup codes, secret encryption.

Covers:
- verify_totp() accepts the current step and one step either side
- verify_totp() rejects codes two or more steps away
- malformed codes are rejected before pyotp runs
- provisioning URI carries issuer and account
- backup code format, uniqueness and normalization
- SecretCipher round trip and wrong-key failure
"""

from datetime import datetime, timedelta, timezone

import pytest
from cryptography.fernet import Fernet

from auth.totp import (
    SecretCipher,
    current_totp,
    generate_backup_codes,
    generate_totp_secret,
    hash_backup_code,
    is_totp_format,
    normalize_backup_code,
    provisioning_uri,
    verify_totp,
)

# Mid-step, so +-30s offsets land cleanly in the neighbouring steps.
NOW = datetime(2026, 3, 1, 12, 0, 15, tzinfo=timezone.utc)


def _step(n: int) -> datetime:
    return NOW + timedelta(seconds=30 * n)


@pytest.fixture
def secret() -> str:
    return generate_totp_secret()


class TestVerifyTotp:
    def test_current_step_accepted(self, secret):
        assert verify_totp(secret, current_totp(secret, NOW), for_time=NOW)

    @pytest.mark.parametrize("offset", [-1, 1])
    def test_adjacent_steps_accepted(self, secret, offset):
        """Clock drift of one step in either direction is tolerated."""
        assert verify_totp(secret, current_totp(secret, _step(offset)), for_time=NOW, valid_window=1)

    @pytest.mark.parametrize("offset", [-3, -2, 2, 3])
    def test_steps_outside_window_rejected(self, secret, offset):
        code = current_totp(secret, _step(offset))
        if code == current_totp(secret, NOW):
            pytest.skip("code collision across steps")
        assert not verify_totp(secret, code, for_time=NOW, valid_window=1)

    def test_zero_window_rejects_adjacent(self, secret):
        assert not verify_totp(secret, current_totp(secret, _step(1)), for_time=NOW, valid_window=0)

    def test_code_for_other_secret_rejected(self, secret):
        other = generate_totp_secret()
        code = current_totp(other, NOW)
        if code == current_totp(secret, NOW):
            pytest.skip("code collision across secrets")
        assert not verify_totp(secret, code, for_time=NOW)

    @pytest.mark.parametrize("code", ["", "12345", "1234567", "abcdef", "12 456", None])
    def test_malformed_codes_rejected(self, secret, code):
        assert not verify_totp(secret, code, for_time=NOW)

    def test_surrounding_whitespace_tolerated(self, secret):
        assert verify_totp(secret, f" {current_totp(secret, NOW)} ", for_time=NOW)

    def test_empty_secret_rejected(self):
        assert not verify_totp("", "123456", for_time=NOW)


class TestFormat:
    def test_secret_is_base32(self, secret):
        assert len(secret) == 32
        assert set(secret) <= set("ABCDEFGHIJKLMNOPQRSTUVWXYZ234567")

    def test_is_totp_format(self):
        assert is_totp_format("012345")
        assert not is_totp_format("ABCD-EF01-2345")

    def test_provisioning_uri(self, secret):
        uri = provisioning_uri(secret, "ops@example.com", "Admin Console")
        assert uri.startswith("otpauth://totp/")
        assert f"secret={secret}" in uri
        assert "issuer=Admin%20Console" in uri
        assert "ops%40example.com" in uri


class TestBackupCodes:
    def test_generated_count_and_shape(self):
        codes = generate_backup_codes(10)
        assert len(codes) == 10
        for code in codes:
            groups = code.split("-")
            assert [len(g) for g in groups] == [4, 4, 4]
            assert code == code.upper()
            int("".join(groups), 16)

    def test_codes_are_unique(self):
        codes = generate_backup_codes(50)
        assert len(set(codes)) == 50

    @pytest.mark.parametrize("typed", ["ab12-cd34-ef56", "AB12CD34EF56", " ab12 cd34 ef56 ", "AB12-CD34-EF56"])
    def test_normalization_ignores_case_and_separators(self, typed):
        assert normalize_backup_code(typed) == "AB12CD34EF56"
        assert hash_backup_code(typed) == hash_backup_code("AB12-CD34-EF56")

    def test_hash_is_not_plaintext(self):
        assert "AB12" not in hash_backup_code("AB12-CD34-EF56")


class TestSecretCipher:
    def test_round_trip(self, secret):
        cipher = SecretCipher.from_settings()
        stored = cipher.encrypt(secret)
        assert stored != secret
        assert cipher.decrypt(stored) == secret

    def test_wrong_key_raises_value_error(self, secret):
        stored = SecretCipher(Fernet.generate_key()).encrypt(secret)
        with pytest.raises(ValueError):
            SecretCipher(Fernet.generate_key()).decrypt(stored)
