"""Unit tests for workspace/retention.py -- periodic purge of old data.

Covers:
- cutoff is now minus retention_years * 365 days
- old requests, experts and tenants are removed; recent ones stay
- the protected tenant survives regardless of age
- a failure on one item is counted and the sweep continues
- stale rate-limit records are purged
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from sqlalchemy.exc import OperationalError

from auth.ratelimit import AuthRateLimiter, RateLimitPolicy
from workspace.models import Expert, Tenant, WorkspaceRequest
from workspace.retention import RetentionSweeper

NOW = datetime(2026, 10, 1, tzinfo=timezone.utc)
OLD = (NOW - timedelta(days=6 * 365)).isoformat()
RECENT = (NOW - timedelta(days=30)).isoformat()


def _sweeper(store, limiter=None, years=5):
    return RetentionSweeper(store, limiter, years, clock=lambda: NOW)


def _tenant(store, slug, created_at, **fields):
    return store.create_tenant(Tenant(name=slug, slug=slug, password="x", created_at=created_at, **fields))


def _expert(store, tenant_id, created_at):
    return store.create_expert(Expert(tenant_id=tenant_id, name="E", created_at=created_at))


def _request(store, slug, created_at):
    return store.create_request(
        WorkspaceRequest(
            name=slug,
            slug=slug,
            password="x",
            contact_name="c",
            contact_email="c@example.com",
            created_at=created_at,
        )
    )


def test_cutoff_uses_365_day_years(store):
    assert _sweeper(store, years=2).cutoff() == NOW - timedelta(days=730)


def test_summary_keys(store):
    summary = _sweeper(store).run()
    assert set(summary) == {
        "retention_years",
        "cutoff",
        "deleted_requests",
        "deleted_experts",
        "deleted_workspaces",
        "failed",
        "purged_rate_limits",
    }
    assert summary["retention_years"] == 5
    assert summary["failed"] == 0


def test_old_rows_removed_recent_rows_kept(store):
    old_tenant = _tenant(store, "old", OLD)
    new_tenant = _tenant(store, "new", RECENT)
    old_expert_in_new_tenant = _expert(store, new_tenant, OLD)
    new_expert = _expert(store, new_tenant, RECENT)
    _expert(store, old_tenant, RECENT)
    old_request = _request(store, "old-req", OLD)
    new_request = _request(store, "new-req", RECENT)

    summary = _sweeper(store).run()

    assert summary["deleted_requests"] == 1
    assert summary["deleted_experts"] == 1
    assert summary["deleted_workspaces"] == 1
    assert store.get_request(old_request) is None
    assert store.get_request(new_request) is not None
    assert store.get_tenant(old_tenant) is None
    assert store.get_tenant(new_tenant) is not None
    assert store.get_expert(new_tenant, old_expert_in_new_tenant) is None
    assert store.get_expert(new_tenant, new_expert) is not None
    # The recent expert of the old tenant went with its tenant.
    assert store.list_experts(old_tenant) == []


def test_protected_tenant_survives(store):
    store.create_tenant(Tenant(id="default", name="Default", slug="default", password="x", is_protected=True, created_at=OLD))
    _expert(store, "default", RECENT)

    summary = _sweeper(store).run()

    assert summary["deleted_workspaces"] == 0
    assert store.get_tenant("default") is not None
    assert len(store.list_experts("default")) == 1


def test_failure_on_one_tenant_does_not_stop_sweep(store):
    first = _tenant(store, "first", OLD)
    second = _tenant(store, "second", OLD)
    real_delete = store.delete_tenant

    def flaky_delete(tenant_id):
        if tenant_id == first:
            raise OperationalError("DELETE", {}, Exception("database is locked"))
        return real_delete(tenant_id)

    with patch.object(store, "delete_tenant", side_effect=flaky_delete):
        summary = _sweeper(store).run()

    assert summary["failed"] == 1
    assert summary["deleted_workspaces"] == 1
    assert store.get_tenant(first) is not None
    assert store.get_tenant(second) is None


def test_listing_failure_is_counted(store):
    _request(store, "old-req", OLD)
    with patch.object(
        store, "list_expert_ids_created_before", side_effect=OperationalError("SELECT", {}, Exception("boom"))
    ):
        summary = _sweeper(store).run()
    assert summary["failed"] == 1
    assert summary["deleted_requests"] == 1


def test_stale_rate_limits_purged(store, engine):
    clock_ms = [1_000_000]
    limiter = AuthRateLimiter(engine, clock=lambda: clock_ms[0])
    limiter.register_failure("tenant:acme:1.2.3.4", RateLimitPolicy(5, 60_000, 60_000))
    clock_ms[0] += 25 * 60 * 60 * 1000

    summary = _sweeper(store, limiter).run()

    assert summary["purged_rate_limits"] == 1
    assert limiter.attempts("tenant:acme:1.2.3.4") == 0
