"""
auth/totp.py -- TOTP codes, backup codes, and at-rest encryption of TOTP secrets.

TOTP: pyotp implements RFC 6238 with the authenticator-app defaults (SHA-1,
6 digits, 30-second step). verify_totp() accepts the current step and
Settings.totp_valid_window steps on either side (default 1) to tolerate
clock drift between the server and the user's phone.

Backup codes: 12 uppercase hex characters grouped XXXX-XXXX-XXXX (48 bits).
Users type them by hand, so normalize_backup_code() strips separators,
whitespace and case before hashing. Only hash_secret_value(normalized) is
stored.

Secret encryption: TOTP secrets must be readable by the server (they are
shared secrets, not verifiers), so they are encrypted rather than hashed.
SecretCipher wraps cryptography's Fernet (AES-128-CBC + HMAC-SHA256). The key
comes from TOTP_ENCRYPTION_KEY or, if unset, from HKDF over SECRET_KEY.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import base64
import re
import secrets
from datetime import datetime
from typing import Optional

import pyotp
from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from auth.tokens import hash_secret_value
from core.config import Settings, get_settings

_SECRET_LENGTH = 32  # base32 characters -> 160 bits
_TOTP_CODE_RE = re.compile(r"^\d{6}$")
_BACKUP_SEPARATORS = re.compile(r"[\s-]+")

# ---------------------------------------------------------------------------
# TOTP
# ---------------------------------------------------------------------------


def generate_totp_secret() -> str:
    return pyotp.random_base32(length=_SECRET_LENGTH)


def provisioning_uri(secret: str, email: str, issuer: str = "") -> str:
    """Return the otpauth:// URI an authenticator app turns into an account entry."""
    return pyotp.TOTP(secret).provisioning_uri(name=email, issuer_name=issuer or get_settings().totp_issuer)


def current_totp(secret: str, for_time: Optional[datetime] = None) -> str:
    """Return the code for the step containing for_time (now by default).

    Used by tests and the CLI; the login path only ever verifies.
    """
    totp = pyotp.TOTP(secret)
    return totp.at(for_time) if for_time is not None else totp.now()


def is_totp_format(code: str) -> bool:
    """True for six digits. Anything else can only be a backup code."""
    return bool(_TOTP_CODE_RE.match((code or "").strip()))


def verify_totp(secret: str, code: str, for_time: Optional[datetime] = None, valid_window: Optional[int] = None) -> bool:
    """Return True if code matches the current step or an adjacent one.

    Anything that is not exactly six digits is rejected before pyotp runs.
    """
    code = (code or "").strip()
    if not secret or not is_totp_format(code):
        return False
    window = get_settings().totp_valid_window if valid_window is None else valid_window
    return pyotp.TOTP(secret).verify(code, for_time=for_time, valid_window=window)


# ---------------------------------------------------------------------------
# Backup codes
# ---------------------------------------------------------------------------


def generate_backup_codes(count: int) -> list[str]:
    """Return count fresh codes formatted XXXX-XXXX-XXXX."""
    codes: list[str] = []
    for _ in range(count):
        raw = secrets.token_hex(6).upper()
        codes.append(f"{raw[0:4]}-{raw[4:8]}-{raw[8:12]}")
    return codes


def normalize_backup_code(code: str) -> str:
    return _BACKUP_SEPARATORS.sub("", code or "").upper()


def hash_backup_code(code: str) -> str:
    return hash_secret_value(normalize_backup_code(code))


# ---------------------------------------------------------------------------
# At-rest encryption
# ---------------------------------------------------------------------------


def _derive_fernet_key(secret_key: str) -> bytes:
    hkdf = HKDF(algorithm=hashes.SHA256(), length=32, salt=None, info=b"adminauth-totp-secret")
    return base64.urlsafe_b64encode(hkdf.derive(secret_key.encode("utf-8")))


class SecretCipher:
    """Symmetric encryption for TOTP secrets stored in the account table.

    Usage:
        cipher = SecretCipher.from_settings()
        stored = cipher.encrypt("JBSWY3DPEHPK3PXP")
        cipher.decrypt(stored)  # -> "JBSWY3DPEHPK3PXP"
    """

    def __init__(self, key: bytes) -> None:
        self._fernet = Fernet(key)

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "SecretCipher":
        settings = settings or get_settings()
        if settings.totp_encryption_key:
            return cls(settings.totp_encryption_key.encode("utf-8"))
        return cls(_derive_fernet_key(settings.secret_key))

    def encrypt(self, plaintext: str) -> str:
        return self._fernet.encrypt(plaintext.encode("utf-8")).decode("ascii")

    def decrypt(self, ciphertext: str) -> str:
        """Decrypt a stored secret. Raises ValueError if the key does not match."""
        try:
            return self._fernet.decrypt(ciphertext.encode("ascii")).decode("utf-8")
        except InvalidToken as exc:
            raise ValueError("TOTP secret could not be decrypted with the configured key.") from exc
