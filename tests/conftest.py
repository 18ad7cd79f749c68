"""
tests/conftest.py -- Shared test fixtures for the admin auth tests.

This module provides:
  - Services / build_services(): the full auth object graph over one engine
  - services: function-scoped graph on a file-backed SQLite DB in tmp_path
  - make_account(), enroll_totp(): account provisioning helpers
  - _patch_lifespan(): wires a test engine into app.state, bypassing real startup
  - api_client: TestClient on a named shared-memory DB, with seeded accounts

Design: API tests use named shared-memory SQLite URIs (not plain :memory:)
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Race tests need real concurrent writers, which shared-cache memory databases
serialize with table locks instead of the busy timeout. They use the
file-backed `services` fixture, where WAL and the 15s busy timeout apply just
as in production.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
import sqlite3
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.main import app, build_services as wire_app
from auth.audit import SqlAuditLog
from auth.issuer import TokenIssuer
from auth.ledger import RefreshTokenLedger
from auth.login import LoginStateMachine
from auth.models import AdminAccount
from auth.rbac import Role
from auth.store import AccountStore, create_db_engine
from auth.tokens import hash_password
from auth.totp import current_totp
from auth.two_factor import TwoFactorService

# Rate limits are exercised by the limiter itself, not by these tests. Left
# enabled, the 10/minute login limit would trip halfway through a module.
limiter.enabled = False

PASSWORD = "correct-horse-battery"


# ---------------------------------------------------------------------------
# Object graph helpers
# ---------------------------------------------------------------------------


@dataclass
class Services:
    engine: Engine
    accounts: AccountStore
    ledger: RefreshTokenLedger
    audit: SqlAuditLog
    issuer: TokenIssuer
    two_factor: TwoFactorService
    login: LoginStateMachine


def build_services(engine: Engine) -> Services:
    accounts = AccountStore(engine)
    ledger = RefreshTokenLedger(engine)
    audit = SqlAuditLog(engine)
    issuer = TokenIssuer(accounts, ledger, audit)
    two_factor = TwoFactorService(accounts, issuer, audit)
    return Services(
        engine=engine,
        accounts=accounts,
        ledger=ledger,
        audit=audit,
        issuer=issuer,
        two_factor=two_factor,
        login=LoginStateMachine(accounts, issuer, two_factor, audit),
    )


def make_account(
    accounts: AccountStore,
    email: str,
    role: Role = Role.EDITOR,
    password: str = PASSWORD,
    is_active: bool = True,
) -> AdminAccount:
    """Create an account and return it as stored."""
    account_id = accounts.create_account(
        AdminAccount(
            email=email,
            password_hash=hash_password(password),
            role=role,
            name=email.split("@")[0],
            is_active=is_active,
        )
    )
    return accounts.get_by_id(account_id)


def enroll_totp(two_factor: TwoFactorService, account_id: str) -> tuple[str, list[str]]:
    """Run both enrollment phases. Returns (secret, backup codes)."""
    start = two_factor.begin_enrollment(account_id)
    assert start.error is None, start.error
    result = two_factor.confirm_enrollment(account_id, current_totp(start.secret))
    assert result.error is None, result.error
    return start.secret, result.backup_codes


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh file-backed DB per test
# ---------------------------------------------------------------------------


@pytest.fixture
def services(tmp_path) -> Generator[Services, None, None]:
    """Full auth object graph on a WAL-mode SQLite file unique to the test."""
    engine = create_db_engine(f"sqlite:///{tmp_path / 'auth.db'}")
    yield build_services(engine)
    engine.dispose()


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine):
    """Return an async context manager that replaces the real lifespan.

    Wires the test engine into app.state through the same build_services()
    the real lifespan uses, so routes see exactly the production object graph
    over an isolated database.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_app(app, engine)
        yield

    return test_lifespan


@dataclass
class ApiContext:
    client: TestClient
    services: Services
    superadmin: AdminAccount
    editor: AdminAccount
    viewer: AdminAccount


@pytest.fixture(scope="module")
def api_client(request) -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    One shared-memory DB per test module (named after the module) with three
    seeded accounts, all using PASSWORD and 2FA off:
      root@example.com (superadmin), editor@example.com, viewer@example.com.
    Tests that change account state create their own accounts.
    """
    name = request.module.__name__.rsplit(".", 1)[-1]
    # A shared-memory DB vanishes when its last connection closes. The pool
    # recycles per-thread connections, so hold one open for the module.
    keepalive = sqlite3.connect(f"file:{name}?mode=memory&cache=shared", uri=True)
    engine = create_db_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")
    svc = build_services(engine)
    superadmin = make_account(svc.accounts, "root@example.com", Role.SUPERADMIN)
    editor = make_account(svc.accounts, "editor@example.com", Role.EDITOR)
    viewer = make_account(svc.accounts, "viewer@example.com", Role.VIEWER)

    app.router.lifespan_context = _patch_lifespan(engine)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, services=svc, superadmin=superadmin, editor=editor, viewer=viewer)

    engine.dispose()
    keepalive.close()


def login_tokens(client: TestClient, email: str, password: str = PASSWORD) -> dict:
    """POST /auth/login and return the JSON body, asserting success."""
    resp = client.post("/api/v1/auth/login", json={"email": email, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def totp_now(secret: str, offset_steps: int = 0) -> str:
    """Current TOTP code, or the one offset_steps 30-second steps away."""
    return current_totp(secret, datetime.now(timezone.utc) + timedelta(seconds=30 * offset_steps))


@pytest.fixture
def api(api_client: ApiContext) -> ApiContext:
    """api_client with an empty cookie jar.

    The refresh cookie is path-scoped to /api/v1/auth and takes precedence
    over a body token, so a cookie left behind by an earlier test would
    silently change which token the next test presents.
    """
    api_client.client.cookies.clear()
    return api_client
