"""
auth/ratelimit.py -- Store-backed lockout for failed authentication attempts.

Model: a fixed window that opens on the first failure, plus a hard block.

  - The first failure for a key opens a window (attempt_count=1).
  - Further failures within window_ms of the window start increment the count.
  - Reaching max_attempts sets blocked_until = now + block_ms.
  - A window older than window_ms that never reached the cap is discarded;
    the next failure opens a fresh one.
  - clear() drops the record. Callers invoke it after a successful login so
    a legitimate user starts from a clean slate.

Callers MUST call check() before touching the password service. While a key
is blocked the request is rejected with a retry-after duration and no hash is
computed, so a lockout costs the server nothing and leaks no timing.

Keys are built by the caller (see auth.dependencies.rate_limit_key) and are
scoped to the identity under attack plus the client IP, so one user's
failures never lock out an unrelated identity.

Concurrency: check() and register_failure() are separate statements with no
lock between them. Two concurrent failures from the same key may let one
extra attempt through past the cap. That approximation is accepted; the
database row is the only shared state.

Timestamps are integer epoch milliseconds.

Layer rule: no imports from api/ or workspace/.
"""

from __future__ import annotations

import math
import time
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import BigInteger, Column, Integer, String, Table
from sqlalchemy.engine import Engine

from core.database import init_schema, metadata

_rate_limits = Table(
    "auth_rate_limits",
    metadata,
    Column("key", String(512), primary_key=True),
    Column("attempt_count", Integer, nullable=False, server_default="0"),
    Column("window_started_at", BigInteger, nullable=False),
    Column("blocked_until", BigInteger, nullable=False, server_default="0"),
)


def _now_ms() -> int:
    return int(time.time() * 1000)


def _seconds_until(deadline_ms: int, now_ms: int) -> int:
    return max(1, math.ceil((deadline_ms - now_ms) / 1000))


@dataclass(frozen=True)
class RateLimitPolicy:
    max_attempts: int
    window_ms: int
    block_ms: int

    @classmethod
    def from_seconds(cls, max_attempts: int, window_seconds: int, block_seconds: int) -> "RateLimitPolicy":
        return cls(max_attempts=max_attempts, window_ms=window_seconds * 1000, block_ms=block_seconds * 1000)


@dataclass(frozen=True)
class RateLimitDecision:
    """Result of check(). retry_after is in whole seconds, 0 when allowed."""

    allowed: bool
    retry_after: int = 0


@dataclass(frozen=True)
class FailureOutcome:
    """Result of register_failure(). blocked_now is True when this failure hit the cap."""

    blocked_now: bool
    retry_after: int = 0


class AuthRateLimiter:
    """Repository-style limiter over the auth_rate_limits table.

    Usage:
        limiter = AuthRateLimiter(engine)
        decision = limiter.check(key, policy)
        if not decision.allowed: -> 429 with decision.retry_after
        if bad_password: limiter.register_failure(key, policy)
        else: limiter.clear(key)
    """

    def __init__(self, engine: Engine, clock: Optional[Callable[[], int]] = None) -> None:
        self.engine = engine
        self._clock = clock or _now_ms
        init_schema(engine)

    def _get(self, conn, key: str):
        return conn.execute(_rate_limits.select().where(_rate_limits.c.key == key)).fetchone()

    def check(self, key: str, policy: RateLimitPolicy) -> RateLimitDecision:
        """Return whether an attempt for key may proceed right now."""
        now = self._clock()
        with self.engine.begin() as conn:
            row = self._get(conn, key)
            if row is None:
                return RateLimitDecision(allowed=True)
            if row.blocked_until > now:
                return RateLimitDecision(allowed=False, retry_after=_seconds_until(row.blocked_until, now))
            if now - row.window_started_at > policy.window_ms:
                conn.execute(_rate_limits.delete().where(_rate_limits.c.key == key))
        return RateLimitDecision(allowed=True)

    def register_failure(self, key: str, policy: RateLimitPolicy) -> FailureOutcome:
        """Count one failed attempt for key and block it if the cap is reached."""
        now = self._clock()
        with self.engine.begin() as conn:
            row = self._get(conn, key)
            if row is None or now - row.window_started_at > policy.window_ms:
                attempt_count = 1
                window_started_at = now
            else:
                attempt_count = row.attempt_count + 1
                window_started_at = row.window_started_at

            blocked_until = now + policy.block_ms if attempt_count >= policy.max_attempts else 0
            if row is not None:
                conn.execute(_rate_limits.delete().where(_rate_limits.c.key == key))
            conn.execute(
                _rate_limits.insert().values(
                    key=key,
                    attempt_count=attempt_count,
                    window_started_at=window_started_at,
                    blocked_until=blocked_until,
                )
            )

        if blocked_until > now:
            return FailureOutcome(blocked_now=True, retry_after=_seconds_until(blocked_until, now))
        return FailureOutcome(blocked_now=False)

    def clear(self, key: str) -> None:
        """Drop any record for key (called after a successful login)."""
        with self.engine.begin() as conn:
            conn.execute(_rate_limits.delete().where(_rate_limits.c.key == key))

    def attempts(self, key: str) -> int:
        """Return the current attempt count for key (0 when no record exists)."""
        with self.engine.connect() as conn:
            row = self._get(conn, key)
        return row.attempt_count if row is not None else 0

    def purge_expired(self, older_than_ms: int) -> int:
        """Delete records that are unblocked and whose window opened more than older_than_ms ago.

        Records are transient. The retention sweep calls this so abandoned keys
        do not accumulate. Returns the number of rows removed.
        """
        now = self._clock()
        with self.engine.begin() as conn:
            result = conn.execute(
                _rate_limits.delete().where(
                    (_rate_limits.c.blocked_until <= now) & (_rate_limits.c.window_started_at < now - older_than_ms)
                )
            )
        return result.rowcount
