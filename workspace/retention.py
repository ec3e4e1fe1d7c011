"""
workspace/retention.py -- Periodic purge of data older than the retention period.

Sweep order:
  1. workspace requests created before the cutoff (one statement)
  2. experts created before the cutoff, each with its slots, votes and voter
     passwords (one transaction per expert)
  3. non-protected tenants created before the cutoff, each with everything
     it owns (one transaction per tenant)
  4. expired auth rate-limit records

cutoff = now - retention_years * 365 days.

A failure on one item is logged, counted in "failed" and skipped. The sweep
never aborts on the first error, so one bad tenant cannot stall the purge of
all the others. The protected tenant is excluded at the query level and is
never touched regardless of age.

run() is synchronous and is used directly by the master maintenance route.
retention_loop() wraps it for the asyncio background task the application
lifespan starts.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from auth.ratelimit import AuthRateLimiter
from workspace.store import WorkspaceStore

logger = logging.getLogger("expertsman.retention")

# Rate-limit rows are transient: anything unblocked whose window opened more
# than a day ago is stale.
_RATE_LIMIT_TTL_MS = 24 * 60 * 60 * 1000


class RetentionSweeper:
    def __init__(
        self,
        store: WorkspaceStore,
        limiter: Optional[AuthRateLimiter],
        retention_years: int,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.retention_years = retention_years
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def cutoff(self) -> datetime:
        return self._clock() - timedelta(days=self.retention_years * 365)

    def run(self) -> dict:
        """Run one sweep and return its summary."""
        cutoff = self.cutoff()
        cutoff_iso = cutoff.isoformat()
        summary = {
            "retention_years": self.retention_years,
            "cutoff": cutoff_iso,
            "deleted_requests": 0,
            "deleted_experts": 0,
            "deleted_workspaces": 0,
            "failed": 0,
            "purged_rate_limits": 0,
        }

        try:
            summary["deleted_requests"] = self.store.delete_requests_created_before(cutoff_iso)
        except SQLAlchemyError:
            logger.exception("Retention: purging workspace requests failed")
            summary["failed"] += 1

        for expert_id in self._ids(self.store.list_expert_ids_created_before, cutoff_iso, summary):
            try:
                if self.store.delete_expert(expert_id):
                    summary["deleted_experts"] += 1
            except SQLAlchemyError:
                logger.exception("Retention: deleting expert %s failed", expert_id)
                summary["failed"] += 1

        for tenant_id in self._ids(self.store.list_tenant_ids_created_before, cutoff_iso, summary):
            try:
                if self.store.delete_tenant(tenant_id):
                    summary["deleted_workspaces"] += 1
            except SQLAlchemyError:
                logger.exception("Retention: deleting workspace %s failed", tenant_id)
                summary["failed"] += 1

        if self.limiter is not None:
            try:
                summary["purged_rate_limits"] = self.limiter.purge_expired(_RATE_LIMIT_TTL_MS)
            except SQLAlchemyError:
                logger.exception("Retention: purging rate-limit records failed")
                summary["failed"] += 1

        logger.info(
            "Retention sweep done: requests=%d experts=%d workspaces=%d failed=%d",
            summary["deleted_requests"],
            summary["deleted_experts"],
            summary["deleted_workspaces"],
            summary["failed"],
        )
        return summary

    @staticmethod
    def _ids(lister: Callable[[str], list[str]], cutoff_iso: str, summary: dict) -> list[str]:
        try:
            return lister(cutoff_iso)
        except SQLAlchemyError:
            logger.exception("Retention: listing candidates failed")
            summary["failed"] += 1
            return []


async def retention_loop(sweeper: RetentionSweeper, interval_seconds: int) -> None:
    """Run the sweep every interval_seconds until cancelled.

    The sweep itself is blocking database work, so it runs in a worker
    thread. CancelledError from task.cancel() on shutdown propagates out of
    asyncio.sleep and ends the loop.
    """
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            await asyncio.to_thread(sweeper.run)
        except Exception:  # keep the schedule alive; the next tick retries
            logger.exception("Retention sweep crashed")
