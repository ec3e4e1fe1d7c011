"""
api/state.py -- Accessors for the components the lifespan puts on app.state.

Route handlers never construct stores themselves. The lifespan in
api/main.py (or the test conftest) builds one of each and attaches it:

  app.state.store         workspace.store.WorkspaceStore
  app.state.rate_limiter  auth.ratelimit.AuthRateLimiter
  app.state.audit         workspace.audit.AuditLog
  app.state.sweeper       workspace.retention.RetentionSweeper

audit_event() is the single call routes use to record privileged actions;
it fills in the request metadata and never raises.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

from auth.dependencies import request_context
from auth.ratelimit import AuthRateLimiter, RateLimitPolicy
from core.config import get_settings
from workspace.audit import AuditLog
from workspace.retention import RetentionSweeper
from workspace.store import WorkspaceStore

_settings = get_settings()

LOGIN_POLICY = RateLimitPolicy.from_seconds(
    _settings.login_max_attempts,
    _settings.login_window_seconds,
    _settings.login_block_seconds,
)

VOTER_POLICY = RateLimitPolicy.from_seconds(
    _settings.voter_max_attempts,
    _settings.voter_window_seconds,
    _settings.voter_block_seconds,
)


def get_store(request: Request) -> WorkspaceStore:
    return request.app.state.store


def get_rate_limiter(request: Request) -> AuthRateLimiter:
    return request.app.state.rate_limiter


def get_audit(request: Request) -> AuditLog:
    return request.app.state.audit


def get_sweeper(request: Request) -> RetentionSweeper:
    return request.app.state.sweeper


def audit_event(
    request: Request,
    *,
    actor_type: str,
    actor_id: str,
    action: str,
    result: str = "success",
    workspace_id: Optional[str] = None,
    target_type: Optional[str] = None,
    target_id: Optional[str] = None,
    status_code: Optional[int] = 200,
    reason: Optional[str] = None,
    metadata: Optional[dict] = None,
) -> None:
    get_audit(request).record(
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        result=result,
        workspace_id=workspace_id,
        target_type=target_type,
        target_id=target_id,
        status_code=status_code,
        reason=reason,
        metadata=metadata,
        **request_context(request),
    )
