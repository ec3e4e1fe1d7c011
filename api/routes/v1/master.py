"""
api/routes/v1/master.py -- Operator ("master") routes.

Routes:
  POST   /master/auth                                -- master password login (public)
  GET    /master/verify                              -- token validity echo
  GET    /master/workspaces                          -- tenants with expert counts
  POST   /master/workspaces                          -- create tenant
  PUT    /master/workspaces/{workspace_id}           -- rename / reset password
  DELETE /master/workspaces/{workspace_id}           -- cascade delete tenant
  GET    /master/workspace-requests                  -- applications, newest first
  POST   /master/workspace-requests/{id}/approve     -- pending -> approved + tenant
  POST   /master/workspace-requests/{id}/reject      -- pending -> rejected
  DELETE /master/workspace-requests/{id}
  POST   /master/maintenance/retention-run           -- run the retention sweep now
  GET    /master/audit-logs                          -- newest audit entries

Every route except /master/auth requires X-Master-Token. Every mutation and
every login attempt is audited.

Security:
  /master/auth goes through the store-backed lockout keyed by "master:<ip>"
  plus the coarse slowapi per-IP throttle.
  With MASTER_PASSWORD unset the login answers 500 and never compares
  anything, so an empty password can never unlock the operator account.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    ApproveResponse,
    AuditLogRow,
    OkResponse,
    PasswordLogin,
    RetentionSummary,
    TokenResponse,
    VerifyResponse,
    WorkspaceCreate,
    WorkspaceRequestResponse,
    WorkspaceSummary,
    WorkspaceUpdate,
)
from api.state import LOGIN_POLICY, audit_event, get_audit, get_rate_limiter, get_store, get_sweeper
from auth.dependencies import authenticate_password, client_ip, rate_limit_key, require_master
from auth.models import master_claims
from auth.passwords import hash_password, is_hashed
from auth.tokens import issue_token
from core.config import get_settings
from core.errors import Conflict, NotFound, ServiceError, ValidationFailure
from workspace.models import RequestStatus, Tenant

logger = logging.getLogger("expertsman.api")

_settings = get_settings()

_ACTOR = "master"

# Auth policy:
# - POST /master/auth: public -- the login endpoint itself
# - everything on `router`: requires a master token (require_master)
public_router = APIRouter()
router = APIRouter(dependencies=[Depends(require_master)])


def _fail(request: Request, action: str, exc: ServiceError, **fields) -> None:
    audit_event(
        request,
        actor_type=_ACTOR,
        actor_id=_ACTOR,
        action=action,
        result="failure",
        status_code=exc.status_code,
        reason=exc.message,
        **fields,
    )


# ---------------------------------------------------------------------------
# POST /master/auth
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)
@public_router.post("/master/auth", response_model=TokenResponse)
def master_login(request: Request, body: PasswordLogin) -> TokenResponse:
    """Exchange the operator password for a short-lived master token."""
    try:
        if not _settings.master_password:
            logger.error("MASTER_PASSWORD is not configured; master login disabled")
            raise ServiceError("Server auth configuration missing.")
        authenticate_password(
            get_rate_limiter(request),
            rate_limit_key("master", client_ip(request)),
            LOGIN_POLICY,
            body.password,
            _settings.master_password,
        )
    except ServiceError as exc:
        _fail(request, "master.login", exc)
        raise

    ttl = _settings.master_token_ttl_hours
    token = issue_token(master_claims(), ttl)
    audit_event(request, actor_type=_ACTOR, actor_id=_ACTOR, action="master.login")
    return TokenResponse(token=token, expires_in_hours=ttl)


@router.get("/master/verify", response_model=VerifyResponse)
def master_verify() -> VerifyResponse:
    return VerifyResponse(type="master")


# ---------------------------------------------------------------------------
# Workspaces
# ---------------------------------------------------------------------------


@router.get("/master/workspaces", response_model=list[WorkspaceSummary])
def list_workspaces(request: Request) -> list[WorkspaceSummary]:
    rows = get_store(request).list_tenants_with_counts()
    return [WorkspaceSummary.from_domain(tenant, count) for tenant, count in rows]


@router.post("/master/workspaces", response_model=WorkspaceSummary, status_code=201)
def create_workspace(request: Request, body: WorkspaceCreate) -> WorkspaceSummary:
    """Create a tenant directly. The slug must not be used by a tenant or a pending request."""
    store = get_store(request)
    try:
        if store.slug_taken(body.slug):
            raise Conflict("This workspace address is already in use.")
        tenant = Tenant(
            name=body.name,
            slug=body.slug,
            password=hash_password(body.password),
            organization=body.organization,
            sender_name=body.sender_name,
            contact_email=body.contact_email,
            contact_phone=body.contact_phone,
        )
        try:
            tenant_id = store.create_tenant(tenant)
        except IntegrityError:
            raise Conflict("This workspace address is already in use.")
    except ServiceError as exc:
        _fail(request, "workspace.create", exc, target_type="workspace", target_id=body.slug)
        raise

    audit_event(
        request,
        actor_type=_ACTOR,
        actor_id=_ACTOR,
        action="workspace.create",
        workspace_id=tenant_id,
        target_type="workspace",
        target_id=tenant_id,
        status_code=201,
        metadata={"slug": body.slug},
    )
    return WorkspaceSummary.from_domain(store.get_tenant(tenant_id), 0)


@router.put("/master/workspaces/{workspace_id}", response_model=WorkspaceSummary)
def update_workspace(request: Request, workspace_id: str, body: WorkspaceUpdate) -> WorkspaceSummary:
    """Rename a tenant and/or reset its password."""
    store = get_store(request)
    fields: dict = {}
    if body.name is not None:
        fields["name"] = body.name
    if body.password is not None:
        fields["password"] = hash_password(body.password)
    if not fields:
        raise ValidationFailure("Nothing to update.")
    if not store.update_tenant(workspace_id, **fields):
        raise NotFound("Workspace not found.")

    audit_event(
        request,
        actor_type=_ACTOR,
        actor_id=_ACTOR,
        action="workspace.update",
        workspace_id=workspace_id,
        target_type="workspace",
        target_id=workspace_id,
        metadata={"fields": sorted(fields), "credential_reset": "password" in fields},
    )
    return WorkspaceSummary.from_domain(store.get_tenant(workspace_id), store.count_experts(workspace_id))


@router.delete("/master/workspaces/{workspace_id}", response_model=OkResponse)
def delete_workspace(request: Request, workspace_id: str) -> OkResponse:
    """Delete a tenant with all its experts, slots, votes and voter passwords."""
    store = get_store(request)
    tenant = store.get_tenant(workspace_id)
    try:
        if tenant is None:
            raise NotFound("Workspace not found.")
        if tenant.is_protected:
            raise ValidationFailure("The default workspace cannot be deleted.")
        if not store.delete_tenant(workspace_id):
            raise NotFound("Workspace not found.")
    except ServiceError as exc:
        _fail(request, "workspace.delete", exc, target_type="workspace", target_id=workspace_id)
        raise

    audit_event(
        request,
        actor_type=_ACTOR,
        actor_id=_ACTOR,
        action="workspace.delete",
        workspace_id=workspace_id,
        target_type="workspace",
        target_id=workspace_id,
        metadata={"slug": tenant.slug},
    )
    return OkResponse()


# ---------------------------------------------------------------------------
# Workspace requests
# ---------------------------------------------------------------------------


@router.get("/master/workspace-requests", response_model=list[WorkspaceRequestResponse])
def list_workspace_requests(request: Request) -> list[WorkspaceRequestResponse]:
    return [WorkspaceRequestResponse.from_domain(r) for r in get_store(request).list_requests()]


@router.post("/master/workspace-requests/{request_id}/approve", response_model=ApproveResponse)
def approve_workspace_request(request: Request, request_id: str) -> ApproveResponse:
    """Turn a pending request into a tenant, atomically.

    The request password was hashed at submission; a legacy plaintext one is
    hashed here. A missing sender name defaults to organization + suffix.
    """
    store = get_store(request)
    req = store.get_request(request_id)
    try:
        if req is None:
            raise NotFound("Request not found.")
        if req.status != RequestStatus.pending:
            raise ValidationFailure(f"Only pending requests can be approved (status is '{req.status.value}').")

        sender_name = req.sender_name
        if not sender_name and req.organization:
            sender_name = f"{req.organization}{_settings.default_sender_suffix}"
        tenant = Tenant(
            name=req.name,
            slug=req.slug,
            password=req.password if is_hashed(req.password) else hash_password(req.password),
            contact_email=req.contact_email,
            contact_phone=req.contact_phone,
            organization=req.organization,
            sender_name=sender_name,
        )
        try:
            tenant_id = store.approve_request(request_id, tenant, processed_by=_ACTOR)
        except IntegrityError:
            raise Conflict("This workspace address is already in use.")
        if tenant_id is None:
            raise ValidationFailure("Only pending requests can be approved.")
    except ServiceError as exc:
        _fail(request, "workspace_request.approve", exc, target_type="workspace_request", target_id=request_id)
        raise

    audit_event(
        request,
        actor_type=_ACTOR,
        actor_id=_ACTOR,
        action="workspace_request.approve",
        workspace_id=tenant_id,
        target_type="workspace_request",
        target_id=request_id,
        metadata={"request_id": request_id, "workspace_id": tenant_id, "slug": req.slug},
    )
    return ApproveResponse(request_id=request_id, workspace_id=tenant_id, slug=req.slug)


@router.post("/master/workspace-requests/{request_id}/reject", response_model=WorkspaceRequestResponse)
def reject_workspace_request(request: Request, request_id: str) -> WorkspaceRequestResponse:
    store = get_store(request)
    req = store.get_request(request_id)
    if req is None:
        raise NotFound("Request not found.")
    if not store.reject_request(request_id, processed_by=_ACTOR):
        raise ValidationFailure(f"Only pending requests can be rejected (status is '{req.status.value}').")

    audit_event(
        request,
        actor_type=_ACTOR,
        actor_id=_ACTOR,
        action="workspace_request.reject",
        target_type="workspace_request",
        target_id=request_id,
        metadata={"slug": req.slug},
    )
    return WorkspaceRequestResponse.from_domain(store.get_request(request_id))


@router.delete("/master/workspace-requests/{request_id}", response_model=OkResponse)
def delete_workspace_request(request: Request, request_id: str) -> OkResponse:
    if not get_store(request).delete_request(request_id):
        raise NotFound("Request not found.")
    audit_event(
        request,
        actor_type=_ACTOR,
        actor_id=_ACTOR,
        action="workspace_request.delete",
        target_type="workspace_request",
        target_id=request_id,
    )
    return OkResponse()


# ---------------------------------------------------------------------------
# Maintenance and audit
# ---------------------------------------------------------------------------


@router.post("/master/maintenance/retention-run", response_model=RetentionSummary)
def run_retention(request: Request) -> RetentionSummary:
    """Run the retention sweep inline and return its summary."""
    try:
        summary = get_sweeper(request).run()
    except SQLAlchemyError as exc:
        logger.exception("Manual retention run failed")
        audit_event(
            request,
            actor_type=_ACTOR,
            actor_id=_ACTOR,
            action="maintenance.retention_run",
            result="failure",
            status_code=500,
            reason=type(exc).__name__,
        )
        raise

    audit_event(request, actor_type=_ACTOR, actor_id=_ACTOR, action="maintenance.retention_run", metadata=summary)
    return RetentionSummary(**summary)


@router.get("/master/audit-logs", response_model=list[AuditLogRow])
def list_audit_logs(request: Request, limit: int = Query(default=100, ge=1, le=500)) -> list[AuditLogRow]:
    audit = get_audit(request)
    audit.flush()
    return [AuditLogRow.from_domain(e) for e in audit.list_recent(limit)]
