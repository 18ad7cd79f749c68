"""
auth/tokens.py -- Password hashing, JWT access tokens, and refresh token utilities.

Security design decisions:
  JWT: python-jose with HS256. Access tokens are signed with SECRET_KEY and
       carry sub (account id), role, iat, exp, and typ="access". They are
       stateless: verification is signature + expiry only, no store lookup.
       Verification returns None on any failure -- the route layer turns that
       into a 401.

  Passwords: bcrypt used directly. Its cost factor makes brute-force of
       low-entropy secrets expensive. The _DUMMY_HASH constant enables timing
       equalization in verify_account_password() so response time does not
       reveal whether an email is registered [C1].

  Refresh tokens and backup codes: high-entropy random values, so a keyed
       HMAC-SHA256 (pepper = REFRESH_TOKEN_SECRET) is enough. The digest is
       deterministic, which lets the ledger find a record by hash in O(1)
       through a UNIQUE index. Without the pepper a leaked table cannot be
       used for offline guessing.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Optional

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import AdminAccount

logger = logging.getLogger("adminauth.auth")

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/api/v1/auth"

# bcrypt refuses longer input (bcrypt >= 5 raises instead of truncating).
MAX_PASSWORD_BYTES = 72

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Callers check password_fits_bcrypt() first; input over MAX_PASSWORD_BYTES
    raises ValueError.
    """
    if not password_fits_bcrypt(plain):
        raise ValueError(f"Password is longer than {MAX_PASSWORD_BYTES} bytes.")
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def password_fits_bcrypt(plain: str) -> bool:
    return len(plain.encode("utf-8")) <= MAX_PASSWORD_BYTES


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash.

    Input over MAX_PASSWORD_BYTES never matches, whichever bcrypt release
    truncates or raises on it.
    """
    if not password_fits_bcrypt(plain):
        return False
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("adminauth_timing_dummy")


def verify_account_password(account: Optional[AdminAccount], password: str) -> bool:
    """Check a password against an account with timing equalization [C1].

    Always runs bcrypt, whether or not the account exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as a real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Activity is NOT checked here; the login state machine decides what an
    inactive account means.
    """
    if account is None or not account.password_hash:
        verify_password(password, _DUMMY_HASH)
        return False
    return verify_password(password, account.password_hash)


# ---------------------------------------------------------------------------
# JWT access tokens
# ---------------------------------------------------------------------------


def create_access_token(account_id: str, role: str, expire_seconds: int = 0, now: Optional[datetime] = None) -> str:
    """Encode a signed access token.

    Args:
        account_id:     Opaque account id, stored as the sub claim.
        role:           Role label ("viewer" ... "superadmin").
        expire_seconds: Lifetime in seconds. 0 (default) uses
                        Settings.access_token_expire_seconds.
        now:            Issue time; defaults to the current UTC time.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    issued = now or datetime.now(timezone.utc)
    payload = {
        "sub": account_id,
        "role": role,
        "typ": _ACCESS_TYPE,
        "iat": int(issued.timestamp()),
        "exp": int((issued + timedelta(seconds=duration)).timestamp()),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify an access token. Returns the payload dict or None on any failure.

    Expiry is enforced by python-jose (the exp claim). A payload missing sub or
    role, or carrying a different typ, is rejected so that other HS256 tokens
    signed with the same key can never pass as access tokens.
    """
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if payload.get("typ") != _ACCESS_TYPE or "sub" not in payload or "role" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# Refresh tokens and backup codes
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a new opaque refresh token: 64 random bytes as 128 hex chars."""
    return secrets.token_hex(64)


def hash_secret_value(raw: str) -> str:
    """Return HMAC-SHA256(REFRESH_TOKEN_SECRET, raw) as a hex string.

    Used for refresh tokens and backup codes. Both are random enough that a
    fast keyed hash is the right tool; bcrypt would make O(1) lookup impossible.
    """
    return hmac.new(
        _settings.refresh_token_secret.encode(),
        raw.encode(),
        hashlib.sha256,
    ).hexdigest()


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_refresh_cookie(response, token: str) -> None:
    """Write the refresh token as an httpOnly cookie on the response.

    httponly=True: scripts cannot read the cookie (XSS exfiltration).
    samesite="strict": never sent on cross-site requests (CSRF).
    path: only sent to /api/v1/auth, never to other API routes.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the refresh record lifetime.
    """
    response.set_cookie(
        REFRESH_COOKIE,
        value=token,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
        path=REFRESH_COOKIE_PATH,
        max_age=_settings.refresh_token_expire_days * 24 * 3600,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(
        REFRESH_COOKIE,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        samesite="strict",
        secure=_settings.secure_cookies,
    )
