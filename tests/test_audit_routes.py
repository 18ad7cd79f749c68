"""
tests/test_audit_routes.py -- Integration tests for GET /api/v1/audit-logs.

Covers:
  - superadmin and admin may read the full trail; editor and viewer get 403
  - filters: accountId, action, status; limit bounds
  - /audit-logs/me returns only the caller's events
  - events written by login flow are visible over HTTP
"""

from __future__ import annotations

import pytest

from auth.rbac import Role
from auth.tokens import create_access_token
from conftest import ApiContext, bearer, login_tokens, make_account


def _token_for(account) -> dict[str, str]:
    return bearer(create_access_token(account.id, account.role.label))


class TestAccess:
    def test_superadmin_reads_trail(self, api: ApiContext) -> None:
        login_tokens(api.client, "editor@example.com")
        resp = api.client.get("/api/v1/audit-logs", headers=_token_for(api.superadmin))
        assert resp.status_code == 200
        data = resp.json()
        assert data["count"] == len(data["logs"]) > 0

    def test_admin_reads_trail(self, api: ApiContext) -> None:
        admin = make_account(api.services.accounts, "auditor@example.com", Role.ADMIN)
        assert api.client.get("/api/v1/audit-logs", headers=_token_for(admin)).status_code == 200

    @pytest.mark.parametrize("email", ["editor@example.com", "viewer@example.com"])
    def test_lower_roles_forbidden(self, api: ApiContext, email: str) -> None:
        account = api.services.accounts.get_by_email(email)
        resp = api.client.get("/api/v1/audit-logs", headers=_token_for(account))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_anonymous_unauthorized(self, api: ApiContext) -> None:
        assert api.client.get("/api/v1/audit-logs").status_code == 401


class TestFilters:
    def test_filter_by_account_action_status(self, api: ApiContext) -> None:
        target = make_account(api.services.accounts, "filtered@example.com")
        api.client.post("/api/v1/auth/login", json={"email": target.email, "password": "wrong-password"})
        login_tokens(api.client, target.email)

        resp = api.client.get(
            "/api/v1/audit-logs",
            params={"accountId": target.id, "status": "failure"},
            headers=_token_for(api.superadmin),
        )
        logs = resp.json()["logs"]
        assert [row["action"] for row in logs] == ["login_failed"]
        assert logs[0]["accountId"] == target.id
        assert logs[0]["details"]["reason"] == "invalid_password"

        resp = api.client.get(
            "/api/v1/audit-logs",
            params={"accountId": target.id, "action": "login_success"},
            headers=_token_for(api.superadmin),
        )
        assert resp.json()["count"] == 1

    def test_limit(self, api: ApiContext) -> None:
        for _ in range(3):
            login_tokens(api.client, "viewer@example.com")
        resp = api.client.get("/api/v1/audit-logs", params={"limit": 2}, headers=_token_for(api.superadmin))
        assert resp.json()["count"] == 2

    @pytest.mark.parametrize("params", [{"limit": 0}, {"limit": 101}, {"status": "maybe"}])
    def test_invalid_params(self, api: ApiContext, params: dict) -> None:
        resp = api.client.get("/api/v1/audit-logs", params=params, headers=_token_for(api.superadmin))
        assert resp.status_code == 422


class TestOwnEvents:
    def test_me_returns_only_own_events(self, api: ApiContext) -> None:
        mine = make_account(api.services.accounts, "mine@example.com")
        token = login_tokens(api.client, mine.email)["accessToken"]
        login_tokens(api.client, "editor@example.com")

        resp = api.client.get("/api/v1/audit-logs/me", headers=bearer(token))
        assert resp.status_code == 200
        logs = resp.json()["logs"]
        assert logs
        assert {row["accountId"] for row in logs} == {mine.id}
