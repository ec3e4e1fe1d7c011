"""
api/routes/v1/workspaces.py -- Workspace (tenant) login and settings routes.

Routes:
  GET  /workspaces/{slug}                  -- id, name, slug (public)
  GET  /workspaces/{slug}/public-settings  -- sender name (public)
  POST /workspaces/{slug}/auth             -- workspace password login (public)
  GET  /workspaces/{slug}/verify           -- token validity echo
  GET  /workspaces/{slug}/settings         -- contact metadata
  PUT  /workspaces/{slug}/settings         -- update metadata / change password

Every route resolves {slug} first (404 when unknown). The authenticated
routes then require an X-Workspace-Token bound to this same workspace; a
valid token for another workspace gets 403.

Login is keyed "tenant:<slug>:<ip>" in the store-backed lockout. A legacy
plaintext password is rewritten as a hash on the first successful login.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    PasswordLogin,
    PublicSettings,
    TokenResponse,
    VerifyResponse,
    WorkspacePublic,
    WorkspaceSettings,
    WorkspaceSettingsUpdate,
)
from api.state import LOGIN_POLICY, audit_event, get_rate_limiter, get_store
from auth.dependencies import authenticate_password, client_ip, rate_limit_key, require_tenant, resolve_tenant
from auth.models import tenant_claims
from auth.passwords import hash_password
from auth.tokens import issue_token
from core.config import get_settings
from core.errors import ServiceError, ValidationFailure
from workspace.models import Tenant

logger = logging.getLogger("expertsman.api")

_settings = get_settings()

router = APIRouter()


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------


@router.get("/workspaces/{slug}", response_model=WorkspacePublic)
def get_workspace(tenant: Tenant = Depends(resolve_tenant)) -> WorkspacePublic:
    return WorkspacePublic(id=tenant.id, name=tenant.name, slug=tenant.slug)


@router.get("/workspaces/{slug}/public-settings", response_model=PublicSettings)
def get_public_settings(tenant: Tenant = Depends(resolve_tenant)) -> PublicSettings:
    return PublicSettings(sender_name=tenant.sender_name)


@limiter.limit(LOGIN_LIMIT)
@router.post("/workspaces/{slug}/auth", response_model=TokenResponse)
def workspace_login(
    request: Request,
    body: PasswordLogin,
    tenant: Tenant = Depends(resolve_tenant),
) -> TokenResponse:
    """Exchange the workspace password for a tenant token."""
    store = get_store(request)
    try:
        migrate = authenticate_password(
            get_rate_limiter(request),
            rate_limit_key("tenant", tenant.slug, client_ip(request)),
            LOGIN_POLICY,
            body.password,
            tenant.password,
        )
    except ServiceError as exc:
        audit_event(
            request,
            actor_type="tenant",
            actor_id=tenant.slug,
            action="workspace.login",
            result="failure",
            workspace_id=tenant.id,
            status_code=exc.status_code,
            reason=exc.message,
        )
        raise

    if migrate:
        store.update_tenant(tenant.id, password=hash_password(body.password))
        logger.info("Migrated legacy password for workspace %s", tenant.slug)

    ttl = _settings.tenant_token_ttl_hours
    token = issue_token(tenant_claims(tenant.id, tenant.slug), ttl)
    audit_event(
        request,
        actor_type="tenant",
        actor_id=tenant.slug,
        action="workspace.login",
        workspace_id=tenant.id,
        metadata={"migrated": migrate},
    )
    return TokenResponse(token=token, expires_in_hours=ttl)


# ---------------------------------------------------------------------------
# Authenticated
# ---------------------------------------------------------------------------


@router.get("/workspaces/{slug}/verify", response_model=VerifyResponse)
def workspace_verify(tenant: Tenant = Depends(require_tenant)) -> VerifyResponse:
    return VerifyResponse(type="tenant", slug=tenant.slug, tenant_id=tenant.id)


@router.get("/workspaces/{slug}/settings", response_model=WorkspaceSettings)
def get_workspace_settings(tenant: Tenant = Depends(require_tenant)) -> WorkspaceSettings:
    return WorkspaceSettings.from_domain(tenant)


@router.put("/workspaces/{slug}/settings", response_model=WorkspaceSettings)
def update_workspace_settings(
    request: Request,
    body: WorkspaceSettingsUpdate,
    tenant: Tenant = Depends(require_tenant),
) -> WorkspaceSettings:
    """Update contact metadata and optionally change the workspace password."""
    store = get_store(request)
    fields = body.model_dump(exclude_unset=True, exclude={"new_password"})
    if fields.get("name", "") is None:
        raise ValidationFailure("Workspace name cannot be empty.")
    if body.new_password is not None:
        fields["password"] = hash_password(body.new_password)
    if not fields:
        raise ValidationFailure("Nothing to update.")
    store.update_tenant(tenant.id, **fields)

    audit_event(
        request,
        actor_type="tenant",
        actor_id=tenant.slug,
        action="workspace.settings_update",
        workspace_id=tenant.id,
        target_type="workspace",
        target_id=tenant.id,
        metadata={"fields": sorted(fields)},
    )
    return WorkspaceSettings.from_domain(store.get_tenant(tenant.id))
