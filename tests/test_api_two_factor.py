"""
tests/test_api_two_factor.py -- Integration tests for the /auth/2fa routes.

Coverage:
  - setup -> enable round trip; backup codes returned once
  - wrong code on enable: 400, pending secret discarded
  - setup when already enabled: 400 two_factor_already_enabled
  - disable: needs a valid code, revokes refresh sessions
  - standalone verify by email: TOTP and single-use backup code
  - status counts remaining backup codes
  - every route except /verify requires a Bearer token
"""

from __future__ import annotations

import pytest

from conftest import ApiContext, bearer, enroll_totp, login_tokens, make_account, totp_now


def _wrong(secret: str) -> str:
    return "000000" if totp_now(secret) != "000000" else "111111"


class TestEnrollment:
    def test_setup_then_enable(self, api: ApiContext) -> None:
        account = make_account(api.services.accounts, "enroll@example.com")
        headers = bearer(login_tokens(api.client, account.email)["accessToken"])

        setup = api.client.post("/api/v1/auth/2fa/setup", headers=headers)
        assert setup.status_code == 200, setup.text
        assert setup.headers["cache-control"] == "no-store"
        secret = setup.json()["secret"]
        assert setup.json()["provisioningUri"].startswith("otpauth://totp/")

        # Not on yet: login still issues tokens in one step.
        assert login_tokens(api.client, account.email)["requiresTwoFactor"] is False

        enable = api.client.post("/api/v1/auth/2fa/enable", json={"code": totp_now(secret)}, headers=headers)
        assert enable.status_code == 200, enable.text
        codes = enable.json()["backupCodes"]
        assert len(codes) == api.services.two_factor.settings.backup_code_count

        step1 = api.client.post("/api/v1/auth/login", json={"email": account.email, "password": "correct-horse-battery"})
        assert step1.json()["requiresTwoFactor"] is True

    def test_backup_codes_never_returned_again(self, api: ApiContext) -> None:
        """A second enable is refused without codes; status reports only a count."""
        account = make_account(api.services.accounts, "onlyonce@example.com")
        headers = bearer(login_tokens(api.client, account.email)["accessToken"])
        secret = api.client.post("/api/v1/auth/2fa/setup", headers=headers).json()["secret"]
        codes = api.client.post("/api/v1/auth/2fa/enable", json={"code": totp_now(secret)}, headers=headers).json()[
            "backupCodes"
        ]

        again = api.client.post("/api/v1/auth/2fa/enable", json={"code": totp_now(secret)}, headers=headers)
        assert again.status_code == 400
        assert again.json()["error"]["code"] == "two_factor_already_enabled"
        assert "backupCodes" not in again.json()

        status = api.client.get("/api/v1/auth/2fa/status", headers=headers)
        assert status.json() == {"enabled": True, "backupCodesRemaining": len(codes)}
        assert not any(code in status.text for code in codes)

    def test_enable_with_wrong_code(self, api: ApiContext) -> None:
        account = make_account(api.services.accounts, "badenroll@example.com")
        headers = bearer(login_tokens(api.client, account.email)["accessToken"])
        secret = api.client.post("/api/v1/auth/2fa/setup", headers=headers).json()["secret"]

        resp = api.client.post("/api/v1/auth/2fa/enable", json={"code": _wrong(secret)}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_two_factor_code"

        # The pending secret is gone; a correct code now has nothing to confirm.
        retry = api.client.post("/api/v1/auth/2fa/enable", json={"code": totp_now(secret)}, headers=headers)
        assert retry.status_code == 400
        assert retry.json()["error"]["code"] == "enrollment_not_started"

    def test_setup_when_already_enabled(self, api: ApiContext) -> None:
        account = make_account(api.services.accounts, "twice@example.com")
        headers = bearer(login_tokens(api.client, account.email)["accessToken"])
        enroll_totp(api.services.two_factor, account.id)
        resp = api.client.post("/api/v1/auth/2fa/setup", headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "two_factor_already_enabled"


class TestDisable:
    def test_disable_revokes_sessions(self, api: ApiContext) -> None:
        account = make_account(api.services.accounts, "turnoff@example.com")
        tokens = login_tokens(api.client, account.email)
        secret, _ = enroll_totp(api.services.two_factor, account.id)
        api.client.cookies.clear()

        resp = api.client.post(
            "/api/v1/auth/2fa/disable", json={"code": totp_now(secret)}, headers=bearer(tokens["accessToken"])
        )
        assert resp.status_code == 200, resp.text
        assert api.client.post("/api/v1/auth/refresh", json={"refreshToken": tokens["refreshToken"]}).status_code == 401
        assert api.services.two_factor.status(account.id) == (False, 0)

    def test_disable_with_wrong_code(self, api: ApiContext) -> None:
        account = make_account(api.services.accounts, "keepon@example.com")
        headers = bearer(login_tokens(api.client, account.email)["accessToken"])
        secret, _ = enroll_totp(api.services.two_factor, account.id)
        resp = api.client.post(
            "/api/v1/auth/2fa/disable", json={"code": _wrong(secret), "useBackupCode": False}, headers=headers
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_two_factor_code"
        assert api.services.two_factor.status(account.id)[0] is True

    def test_disable_when_not_enabled(self, api: ApiContext) -> None:
        headers = bearer(login_tokens(api.client, "viewer@example.com")["accessToken"])
        resp = api.client.post("/api/v1/auth/2fa/disable", json={"code": "123456"}, headers=headers)
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "two_factor_not_enabled"


class TestVerifyAndStatus:
    def test_verify_by_email(self, api: ApiContext) -> None:
        account = make_account(api.services.accounts, "checkme@example.com")
        secret, codes = enroll_totp(api.services.two_factor, account.id)

        ok = api.client.post("/api/v1/auth/2fa/verify", json={"email": "CheckMe@example.com", "code": totp_now(secret)})
        assert ok.status_code == 200
        assert ok.json() == {"verified": True}

        body = {"email": account.email, "code": codes[0], "useBackupCode": True}
        assert api.client.post("/api/v1/auth/2fa/verify", json=body).status_code == 200
        assert api.client.post("/api/v1/auth/2fa/verify", json=body).status_code == 401

    def test_verify_unknown_email(self, api: ApiContext) -> None:
        resp = api.client.post("/api/v1/auth/2fa/verify", json={"email": "nobody@example.com", "code": "123456"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_two_factor_code"

    def test_status(self, api: ApiContext) -> None:
        account = make_account(api.services.accounts, "counting@example.com")
        headers = bearer(login_tokens(api.client, account.email)["accessToken"])
        assert api.client.get("/api/v1/auth/2fa/status", headers=headers).json() == {
            "enabled": False,
            "backupCodesRemaining": 0,
        }
        _, codes = enroll_totp(api.services.two_factor, account.id)
        api.services.two_factor.verify_backup_code(account.id, codes[0])
        data = api.client.get("/api/v1/auth/2fa/status", headers=headers).json()
        assert data == {"enabled": True, "backupCodesRemaining": len(codes) - 1}

    @pytest.mark.parametrize(
        "method,path",
        [
            ("post", "/api/v1/auth/2fa/setup"),
            ("post", "/api/v1/auth/2fa/enable"),
            ("post", "/api/v1/auth/2fa/disable"),
            ("get", "/api/v1/auth/2fa/status"),
        ],
    )
    def test_requires_authentication(self, api: ApiContext, method: str, path: str) -> None:
        resp = api.client.request(method.upper(), path, json={"code": "123456"})
        assert resp.status_code == 401
