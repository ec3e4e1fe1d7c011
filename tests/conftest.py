"""
tests/conftest.py -- Shared test fixtures for expertsman.

This module provides:
  - memory_url(): a fresh named shared-memory SQLite URL per call
  - engine / store / rate_limiter: isolated unit-test components
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client: TestClient plus the components behind it, one per test module
  - make_tenant / headers: fixtures for creating workspaces and signing principal headers

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The audit writer thread is NOT started for the API client: record() then
writes inline on the request thread, which keeps shared-cache SQLite free of
cross-thread table locks. The threaded path is covered in test_audit.py
against a file database.

Environment must be set before any expertsman import: get_settings() is
cached on first use and several modules read it at import time.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: set before any auth/core import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("MASTER_PASSWORD", "master-test-password")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("RETENTION_ENABLED", "false")
# Lockout buckets are isolated per test through X-Forwarded-For.
os.environ.setdefault("TRUST_PROXY_HEADERS", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app
from auth.models import expert_claims, master_claims, tenant_claims
from auth.passwords import hash_password
from auth.ratelimit import AuthRateLimiter
from auth.tokens import issue_token
from core.database import create_db_engine
from workspace.audit import AuditLog
from workspace.models import Tenant
from workspace.retention import RetentionSweeper
from workspace.store import WorkspaceStore

MASTER_PASSWORD = os.environ["MASTER_PASSWORD"]
DEFAULT_TENANT_PASSWORD = "0000"


def memory_url(name: str | None = None) -> str:
    return f"sqlite:///file:test_{name or uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Unit-level fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_db_engine(memory_url())
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine: Engine) -> WorkspaceStore:
    return WorkspaceStore(engine)


@pytest.fixture
def rate_limiter(engine: Engine) -> AuthRateLimiter:
    return AuthRateLimiter(engine)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_tenant(store: WorkspaceStore, slug: str, password: str = "tenant-pass", **fields) -> Tenant:
    tenant_id = store.create_tenant(Tenant(name=f"{slug} workspace", slug=slug, password=hash_password(password), **fields))
    return store.get_tenant(tenant_id)


class Headers:
    """Builders for the three principal headers, signed with the test SECRET_KEY."""

    @staticmethod
    def master() -> dict[str, str]:
        return {"X-Master-Token": issue_token(master_claims(), 1)}

    @staticmethod
    def tenant(tenant: Tenant) -> dict[str, str]:
        return {"X-Workspace-Token": issue_token(tenant_claims(tenant.id, tenant.slug), 1)}

    @staticmethod
    def expert(tenant: Tenant, expert_id: str) -> dict[str, str]:
        return {"X-Expert-Token": issue_token(expert_claims(tenant.id, tenant.slug, expert_id), 1)}


@pytest.fixture
def make_tenant():
    """make_tenant(store, slug, password="tenant-pass", **fields) -> Tenant"""
    return _make_tenant


@pytest.fixture
def headers() -> type[Headers]:
    return Headers


@pytest.fixture
def master_password() -> str:
    return MASTER_PASSWORD


# ---------------------------------------------------------------------------
# API client
# ---------------------------------------------------------------------------


@dataclass
class ApiContext:
    client: TestClient
    store: WorkspaceStore
    rate_limiter: AuthRateLimiter
    audit: AuditLog


def _patch_lifespan(engine: Engine, store: WorkspaceStore, rate_limiter: AuthRateLimiter, audit: AuditLog):
    """Return an async context manager that replaces the real lifespan.

    Mirrors the production startup (protected workspace seed included) but
    with test components and no retention schedule.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.store = store
        app.state.rate_limiter = rate_limiter
        app.state.audit = audit
        app.state.sweeper = RetentionSweeper(store, rate_limiter, 5)
        store.ensure_protected_tenant("default", "Default Workspace", hash_password(DEFAULT_TENANT_PASSWORD))
        app.state.retention_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.retention_task.cancel()

    return test_lifespan


@pytest.fixture(scope="module")
def api_client() -> Generator[ApiContext, None, None]:
    """Yield an ApiContext for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so tests
    hit real route handlers but use an isolated in-memory database.
    """
    eng = create_db_engine(memory_url())
    store = WorkspaceStore(eng)
    rate_limiter = AuthRateLimiter(eng)
    audit = AuditLog(eng)

    app.router.lifespan_context = _patch_lifespan(eng, store, rate_limiter, audit)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiContext(client=client, store=store, rate_limiter=rate_limiter, audit=audit)

    eng.dispose()
