"""
api/routes/v1/experts.py -- Experts, candidate slots, scheduling and voting.

Routes (prefix /workspaces/{slug}/experts):
  GET    ""                                -- full expert list            [tenant]
  POST   ""                                -- create expert               [tenant]
  GET    /{expert_id}                      -- public expert view          [public]
  PUT    /{expert_id}                      -- update profile              [tenant]
  DELETE /{expert_id}                      -- cascade delete              [tenant]
  POST   /{expert_id}/slots                -- add candidate slot          [tenant]
  DELETE /{expert_id}/slots/{slot_id}      -- remove candidate slot       [tenant]
  POST   /{expert_id}/start-polling        -- none -> polling             [tenant]
  POST   /{expert_id}/confirm              -- polling -> confirmed        [tenant]
  POST   /{expert_id}/reset-confirmation   -- back to polling             [tenant]
  POST   /{expert_id}/auth                 -- expert password login       [public]
  POST   /{expert_id}/select-slot          -- confirmed -> registered     [expert]
  POST   /{expert_id}/no-available-schedule -- confirmed -> unavailable  [expert]
  POST   /{expert_id}/verify-password      -- voter establish-or-verify   [public]
  POST   /{expert_id}/vote                 -- replace voter's responses   [public]

[tenant] = X-Workspace-Token for this workspace, [expert] = X-Expert-Token for
this workspace and this expert. Every route resolves {slug} first, and an
expert id from another workspace is a 404 here.

Status changes go through workspace/workflow.py only; these handlers never
write status or slot snapshot fields themselves.

Voters: the first verify-password or vote for a (expert, voter_name) pair
stores a hash of the given password; every later call must match it. Both
routes share the lockout key "voter:<slug>:<expert_id>:<voter_name>:<ip>".
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy.exc import IntegrityError

from api.limiter import LOGIN_LIMIT, limiter
from api.models import (
    ConfirmRequest,
    ExpertCreate,
    ExpertOut,
    ExpertPublic,
    ExpertUpdate,
    OkResponse,
    PasswordLogin,
    SelectSlotRequest,
    SlotCreate,
    SlotOut,
    TokenResponse,
    VoteRequest,
    VoterPasswordRequest,
    VoterStatusResponse,
)
from api.state import LOGIN_POLICY, VOTER_POLICY, audit_event, get_rate_limiter, get_store
from auth.dependencies import (
    authenticate_password,
    client_ip,
    rate_limit_key,
    require_expert,
    require_tenant,
    resolve_tenant,
)
from auth.models import expert_claims
from auth.passwords import hash_password
from auth.tokens import issue_token
from core.config import get_settings
from core.errors import NotFound, RateLimited, ServiceError, ValidationFailure
from workspace import workflow
from workspace.models import Expert, Tenant
from workspace.store import WorkspaceStore

logger = logging.getLogger("expertsman.api")

_settings = get_settings()

_PREFIX = "/workspaces/{slug}/experts"

router = APIRouter()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_expert(store: WorkspaceStore, tenant: Tenant, expert_id: str) -> Expert:
    expert = store.get_expert(tenant.id, expert_id)
    if expert is None:
        raise NotFound("Expert not found.")
    return expert


def _full_view(store: WorkspaceStore, expert: Expert) -> ExpertOut:
    return ExpertOut.from_domain(expert, store.list_slots(expert.id))


def _public_view(store: WorkspaceStore, expert: Expert) -> ExpertPublic:
    return ExpertPublic.from_domain(expert, store.list_slots(expert.id), workflow.voting_open(expert.status))


def _audit_tenant(request: Request, tenant: Tenant, action: str, expert_id: str, **fields) -> None:
    audit_event(
        request,
        actor_type="tenant",
        actor_id=tenant.slug,
        action=action,
        workspace_id=tenant.id,
        target_type="expert",
        target_id=expert_id,
        **fields,
    )


def _authenticate_voter(request: Request, tenant: Tenant, expert: Expert, voter_name: str, password: str) -> bool:
    """Establish or verify a voter's password. Returns True if it was just established."""
    store = get_store(request)
    limiter = get_rate_limiter(request)
    key = rate_limit_key("voter", tenant.slug, expert.id, voter_name, client_ip(request))

    stored = store.get_voter_password(expert.id, voter_name)
    if stored is None:
        decision = limiter.check(key, VOTER_POLICY)
        if not decision.allowed:
            raise RateLimited(decision.retry_after)
        try:
            store.create_voter_password(expert.id, voter_name, hash_password(password))
            return True
        except IntegrityError:
            # A concurrent first submission won; verify against it instead.
            stored = store.get_voter_password(expert.id, voter_name)

    if authenticate_password(limiter, key, VOTER_POLICY, password, stored):
        store.update_voter_password(expert.id, voter_name, hash_password(password))
    return False


# ---------------------------------------------------------------------------
# Expert CRUD (tenant)
# ---------------------------------------------------------------------------


@router.get(_PREFIX, response_model=list[ExpertOut])
def list_experts(request: Request, tenant: Tenant = Depends(require_tenant)) -> list[ExpertOut]:
    """Every expert of the workspace with slots, tallies, voters and snapshots."""
    store = get_store(request)
    experts = store.list_experts(tenant.id)
    slots = store.list_slots_for_experts([e.id for e in experts])
    return [ExpertOut.from_domain(e, slots.get(e.id, [])) for e in experts]


@router.post(_PREFIX, response_model=ExpertOut, status_code=201)
def create_expert(request: Request, body: ExpertCreate, tenant: Tenant = Depends(require_tenant)) -> ExpertOut:
    store = get_store(request)
    expert = Expert(
        tenant_id=tenant.id,
        name=body.name,
        organization=body.organization,
        position=body.position,
        email=body.email,
        phone=body.phone,
        fee=body.fee,
        password=hash_password(body.password) if body.password else None,
    )
    expert_id = store.create_expert(expert)
    _audit_tenant(request, tenant, "expert.create", expert_id, status_code=201)
    return _full_view(store, store.get_expert(tenant.id, expert_id))


@router.get(_PREFIX + "/{expert_id}", response_model=ExpertPublic)
def get_expert_public(request: Request, expert_id: str, tenant: Tenant = Depends(resolve_tenant)) -> ExpertPublic:
    """Public view for poll and expert pages. No voter names, contacts or credentials."""
    store = get_store(request)
    return _public_view(store, _load_expert(store, tenant, expert_id))


@router.put(_PREFIX + "/{expert_id}", response_model=ExpertOut)
def update_expert(
    request: Request,
    expert_id: str,
    body: ExpertUpdate,
    tenant: Tenant = Depends(require_tenant),
) -> ExpertOut:
    """Update profile fields. Sending password: null removes the expert login."""
    store = get_store(request)
    _load_expert(store, tenant, expert_id)
    fields = body.model_dump(exclude_unset=True)
    if "name" in fields and fields["name"] is None:
        raise ValidationFailure("Expert name cannot be empty.")
    if fields.get("password"):
        fields["password"] = hash_password(fields["password"])
    if not fields:
        raise ValidationFailure("Nothing to update.")
    store.update_expert_profile(tenant.id, expert_id, **fields)
    _audit_tenant(request, tenant, "expert.update", expert_id, metadata={"fields": sorted(fields)})
    return _full_view(store, store.get_expert(tenant.id, expert_id))


@router.delete(_PREFIX + "/{expert_id}", response_model=OkResponse)
def delete_expert(request: Request, expert_id: str, tenant: Tenant = Depends(require_tenant)) -> OkResponse:
    """Delete the expert with its slots, votes and voter passwords in one transaction."""
    if not get_store(request).delete_expert(expert_id, tenant_id=tenant.id):
        raise NotFound("Expert not found.")
    _audit_tenant(request, tenant, "expert.delete", expert_id)
    return OkResponse()


# ---------------------------------------------------------------------------
# Candidate slots (tenant)
# ---------------------------------------------------------------------------


@router.post(_PREFIX + "/{expert_id}/slots", response_model=SlotOut, status_code=201)
def add_slot(
    request: Request,
    expert_id: str,
    body: SlotCreate,
    tenant: Tenant = Depends(require_tenant),
) -> SlotOut:
    store = get_store(request)
    expert = _load_expert(store, tenant, expert_id)
    slot = workflow.add_slot(store, expert, body.date, body.time)
    return SlotOut.from_domain(slot)


@router.delete(_PREFIX + "/{expert_id}/slots/{slot_id}", response_model=OkResponse)
def delete_slot(
    request: Request,
    expert_id: str,
    slot_id: str,
    tenant: Tenant = Depends(require_tenant),
) -> OkResponse:
    store = get_store(request)
    expert = _load_expert(store, tenant, expert_id)
    workflow.remove_slot(store, expert, slot_id)
    return OkResponse()


# ---------------------------------------------------------------------------
# Scheduling transitions (tenant)
# ---------------------------------------------------------------------------


@router.post(_PREFIX + "/{expert_id}/start-polling", response_model=ExpertOut)
def start_polling(request: Request, expert_id: str, tenant: Tenant = Depends(require_tenant)) -> ExpertOut:
    store = get_store(request)
    expert = workflow.start_polling(store, _load_expert(store, tenant, expert_id))
    _audit_tenant(request, tenant, "expert.start_polling", expert_id)
    return _full_view(store, expert)


@router.post(_PREFIX + "/{expert_id}/confirm", response_model=ExpertOut)
def confirm_slots(
    request: Request,
    expert_id: str,
    body: ConfirmRequest,
    tenant: Tenant = Depends(require_tenant),
) -> ExpertOut:
    store = get_store(request)
    expert = workflow.confirm(store, _load_expert(store, tenant, expert_id), body.slot_ids)
    _audit_tenant(
        request,
        tenant,
        "expert.confirm",
        expert_id,
        metadata={"slot_ids": [s.id for s in expert.confirmed_slots]},
    )
    return _full_view(store, expert)


@router.post(_PREFIX + "/{expert_id}/reset-confirmation", response_model=ExpertOut)
def reset_confirmation(request: Request, expert_id: str, tenant: Tenant = Depends(require_tenant)) -> ExpertOut:
    store = get_store(request)
    expert = workflow.reset(store, _load_expert(store, tenant, expert_id))
    _audit_tenant(request, tenant, "expert.reset_confirmation", expert_id)
    return _full_view(store, expert)


# ---------------------------------------------------------------------------
# Expert side
# ---------------------------------------------------------------------------


@limiter.limit(LOGIN_LIMIT)
@router.post(_PREFIX + "/{expert_id}/auth", response_model=TokenResponse)
def expert_login(
    request: Request,
    expert_id: str,
    body: PasswordLogin,
    tenant: Tenant = Depends(resolve_tenant),
) -> TokenResponse:
    """Exchange the expert's password for an expert token bound to this workspace and expert.

    An expert without a stored password can never log in; the attempt is
    counted like any other failure.
    """
    store = get_store(request)
    expert = _load_expert(store, tenant, expert_id)
    try:
        migrate = authenticate_password(
            get_rate_limiter(request),
            rate_limit_key("expert", tenant.slug, expert.id, client_ip(request)),
            LOGIN_POLICY,
            body.password,
            expert.password,
        )
    except ServiceError as exc:
        audit_event(
            request,
            actor_type="expert",
            actor_id=expert.id,
            action="expert.login",
            result="failure",
            workspace_id=tenant.id,
            status_code=exc.status_code,
            reason=exc.message,
        )
        raise

    if migrate:
        store.update_expert_profile(tenant.id, expert.id, password=hash_password(body.password))
        logger.info("Migrated legacy password for expert %s", expert.id)

    ttl = _settings.expert_token_ttl_hours
    token = issue_token(expert_claims(tenant.id, tenant.slug, expert.id), ttl)
    audit_event(request, actor_type="expert", actor_id=expert.id, action="expert.login", workspace_id=tenant.id)
    return TokenResponse(token=token, expires_in_hours=ttl)


@router.post(
    _PREFIX + "/{expert_id}/select-slot", response_model=ExpertPublic, dependencies=[Depends(require_expert)]
)
def select_slot(
    request: Request,
    expert_id: str,
    body: SelectSlotRequest,
    tenant: Tenant = Depends(resolve_tenant),
) -> ExpertPublic:
    store = get_store(request)
    expert = workflow.select_slot(store, _load_expert(store, tenant, expert_id), body.slot_id)
    audit_event(
        request,
        actor_type="expert",
        actor_id=expert_id,
        action="expert.select_slot",
        workspace_id=tenant.id,
        target_type="slot",
        target_id=body.slot_id,
    )
    return _public_view(store, expert)


@router.post(
    _PREFIX + "/{expert_id}/no-available-schedule",
    response_model=ExpertPublic,
    dependencies=[Depends(require_expert)],
)
def no_available_schedule(
    request: Request,
    expert_id: str,
    tenant: Tenant = Depends(resolve_tenant),
) -> ExpertPublic:
    store = get_store(request)
    expert = workflow.decline(store, _load_expert(store, tenant, expert_id))
    audit_event(
        request,
        actor_type="expert",
        actor_id=expert_id,
        action="expert.decline",
        workspace_id=tenant.id,
        target_type="expert",
        target_id=expert_id,
    )
    return _public_view(store, expert)


# ---------------------------------------------------------------------------
# Voting (public)
# ---------------------------------------------------------------------------


@router.post(_PREFIX + "/{expert_id}/verify-password", response_model=VoterStatusResponse)
def verify_voter_password(
    request: Request,
    expert_id: str,
    body: VoterPasswordRequest,
    tenant: Tenant = Depends(resolve_tenant),
) -> VoterStatusResponse:
    """First call for a voter name sets its password; later calls must match it."""
    store = get_store(request)
    expert = _load_expert(store, tenant, expert_id)
    established = _authenticate_voter(request, tenant, expert, body.voter_name, body.password)
    return VoterStatusResponse(
        voter_name=body.voter_name,
        established=established,
        slot_ids=sorted(store.get_votes(expert.id, body.voter_name)),
    )


@router.post(_PREFIX + "/{expert_id}/vote", response_model=VoterStatusResponse)
def vote(
    request: Request,
    expert_id: str,
    body: VoteRequest,
    tenant: Tenant = Depends(resolve_tenant),
) -> VoterStatusResponse:
    """Replace everything this voter selected for the expert. 400 once voting has closed.

    The slot ids are checked before the voter password is touched, so a
    rejected first vote does not establish a password.
    """
    store = get_store(request)
    expert = _load_expert(store, tenant, expert_id)
    wanted = workflow.check_votes(store, expert, body.slot_ids)
    established = _authenticate_voter(request, tenant, expert, body.voter_name, body.password)
    recorded = workflow.submit_votes(store, expert, body.voter_name, wanted)
    return VoterStatusResponse(voter_name=body.voter_name, established=established, slot_ids=sorted(recorded))
