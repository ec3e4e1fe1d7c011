"""
API request and response models for expertsman REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in workspace/models.py,
which own the internal domain representation. Route handlers map between the
two with the from_domain() factories below.

Every request body is validated here before it reaches auth/ or workspace/.
Bodies that accept user-editable records use extra="forbid", so a client
cannot smuggle status or slot fields past the state machine.

Separation of concerns: workspace/ models = domain truth; api/ models = API contract.
Credentials never appear in a response model.
"""

from typing import Annotated, Optional

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationInfo, field_validator

from workspace.models import AuditLogEntry, Expert, PollingSlot, SlotSnapshot, Tenant, WorkspaceRequest

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

SLUG_PATTERN = r"^[a-z0-9][a-z0-9-]{1,62}$"


def _normalize_slug(value):
    return value.strip().lower() if isinstance(value, str) else value


# Normalized first, then checked against SLUG_PATTERN.
_Slug = Annotated[str, BeforeValidator(_normalize_slug), Field(pattern=SLUG_PATTERN)]

# Passed through exactly as typed, surrounding spaces included.
_CREDENTIAL_FIELDS = frozenset({"password", "new_password"})


# ---------------------------------------------------------------------------
# Shared
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class OkResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    ok: bool = True


class _TextBody(BaseModel):
    """Request body whose text fields are stripped of surrounding whitespace.

    Credential fields are left alone, so a password set here is the same
    string PasswordLogin later receives.
    """

    @field_validator("*", mode="before")
    @classmethod
    def _strip_text(cls, value, info: ValidationInfo):
        if info.field_name in _CREDENTIAL_FIELDS or not isinstance(value, str):
            return value
        return value.strip()


class PasswordLogin(BaseModel):
    """Request body for every password login (master, workspace, expert)."""

    password: str = Field(min_length=1, max_length=256)


class TokenResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    token: str
    expires_in_hours: float


class VerifyResponse(BaseModel):
    """Token validity echo for GET .../verify."""

    model_config = ConfigDict(frozen=True)

    valid: bool = True
    type: str
    slug: Optional[str] = None
    tenant_id: Optional[str] = None


# ---------------------------------------------------------------------------
# Workspaces (master side)
# ---------------------------------------------------------------------------


class WorkspaceCreate(_TextBody):
    """Request body for POST /api/v1/master/workspaces."""

    name: str = Field(min_length=1, max_length=255)
    slug: _Slug
    password: str = Field(min_length=1, max_length=256)
    organization: Optional[str] = Field(default=None, max_length=255)
    sender_name: Optional[str] = Field(default=None, max_length=255)
    contact_email: Optional[str] = Field(default=None, max_length=255)
    contact_phone: Optional[str] = Field(default=None, max_length=64)


class WorkspaceUpdate(_TextBody):
    """Request body for PUT /api/v1/master/workspaces/{id}. At least one field is required."""

    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    password: Optional[str] = Field(default=None, min_length=1, max_length=256)


class WorkspaceSummary(BaseModel):
    """One row of GET /api/v1/master/workspaces."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    organization: Optional[str]
    sender_name: Optional[str]
    is_protected: bool
    created_at: str
    expert_count: int

    @classmethod
    def from_domain(cls, tenant: Tenant, expert_count: int) -> "WorkspaceSummary":
        return cls(
            id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            organization=tenant.organization,
            sender_name=tenant.sender_name,
            is_protected=tenant.is_protected,
            created_at=tenant.created_at,
            expert_count=expert_count,
        )


# ---------------------------------------------------------------------------
# Workspace requests
# ---------------------------------------------------------------------------


class WorkspaceRequestCreate(_TextBody):
    """Request body for the public POST /api/v1/workspace-requests."""

    name: str = Field(min_length=1, max_length=255)
    slug: _Slug
    password: str = Field(min_length=4, max_length=256)
    contact_name: str = Field(min_length=1, max_length=255)
    contact_email: str = Field(min_length=3, max_length=255)
    contact_phone: Optional[str] = Field(default=None, max_length=64)
    organization: Optional[str] = Field(default=None, max_length=255)
    sender_name: Optional[str] = Field(default=None, max_length=255)
    message: Optional[str] = Field(default=None, max_length=2000)


class WorkspaceRequestResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    contact_name: str
    contact_email: str
    contact_phone: Optional[str]
    organization: Optional[str]
    sender_name: Optional[str]
    message: Optional[str]
    status: str
    created_at: str
    processed_at: Optional[str]
    processed_by: Optional[str]
    workspace_id: Optional[str]

    @classmethod
    def from_domain(cls, req: WorkspaceRequest) -> "WorkspaceRequestResponse":
        return cls(
            id=req.id,
            name=req.name,
            slug=req.slug,
            contact_name=req.contact_name,
            contact_email=req.contact_email,
            contact_phone=req.contact_phone,
            organization=req.organization,
            sender_name=req.sender_name,
            message=req.message,
            status=req.status.value,
            created_at=req.created_at,
            processed_at=req.processed_at,
            processed_by=req.processed_by,
            workspace_id=req.workspace_id,
        )


class ApproveResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    request_id: str
    workspace_id: str
    slug: str


# ---------------------------------------------------------------------------
# Maintenance and audit
# ---------------------------------------------------------------------------


class RetentionSummary(BaseModel):
    model_config = ConfigDict(frozen=True)

    retention_years: int
    cutoff: str
    deleted_requests: int
    deleted_experts: int
    deleted_workspaces: int
    failed: int
    purged_rate_limits: int


class AuditLogRow(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    created_at: str
    actor_type: str
    actor_id: str
    workspace_id: Optional[str]
    action: str
    target_type: Optional[str]
    target_id: Optional[str]
    result: str
    status_code: Optional[int]
    reason: Optional[str]
    ip: Optional[str]
    user_agent: Optional[str]
    origin: Optional[str]
    metadata: dict

    @classmethod
    def from_domain(cls, entry: AuditLogEntry) -> "AuditLogRow":
        return cls(
            id=entry.id,
            created_at=entry.created_at,
            actor_type=entry.actor_type,
            actor_id=entry.actor_id,
            workspace_id=entry.workspace_id,
            action=entry.action,
            target_type=entry.target_type,
            target_id=entry.target_id,
            result=entry.result,
            status_code=entry.status_code,
            reason=entry.reason,
            ip=entry.ip,
            user_agent=entry.user_agent,
            origin=entry.origin,
            metadata=entry.metadata,
        )


# ---------------------------------------------------------------------------
# Workspace (tenant side)
# ---------------------------------------------------------------------------


class WorkspacePublic(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str


class PublicSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    sender_name: Optional[str]


class WorkspaceSettings(BaseModel):
    """Response for GET/PUT /workspaces/{slug}/settings. The credential is never included."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    slug: str
    contact_email: Optional[str]
    contact_phone: Optional[str]
    organization: Optional[str]
    sender_name: Optional[str]

    @classmethod
    def from_domain(cls, tenant: Tenant) -> "WorkspaceSettings":
        return cls(
            id=tenant.id,
            name=tenant.name,
            slug=tenant.slug,
            contact_email=tenant.contact_email,
            contact_phone=tenant.contact_phone,
            organization=tenant.organization,
            sender_name=tenant.sender_name,
        )


class WorkspaceSettingsUpdate(_TextBody):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    contact_email: Optional[str] = Field(default=None, max_length=255)
    contact_phone: Optional[str] = Field(default=None, max_length=64)
    organization: Optional[str] = Field(default=None, max_length=255)
    sender_name: Optional[str] = Field(default=None, max_length=255)
    new_password: Optional[str] = Field(default=None, min_length=4, max_length=256)


# ---------------------------------------------------------------------------
# Experts and slots
# ---------------------------------------------------------------------------


class ExpertCreate(_TextBody):
    """Request body for POST /workspaces/{slug}/experts.

    status, selected_slot and confirmed_slots are not accepted; they only
    change through the scheduling transitions.
    """

    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=255)
    organization: Optional[str] = Field(default=None, max_length=255)
    position: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)
    fee: Optional[str] = Field(default=None, max_length=64)
    password: Optional[str] = Field(default=None, min_length=4, max_length=256)


class ExpertUpdate(_TextBody):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    organization: Optional[str] = Field(default=None, max_length=255)
    position: Optional[str] = Field(default=None, max_length=255)
    email: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=64)
    fee: Optional[str] = Field(default=None, max_length=64)
    password: Optional[str] = Field(default=None, min_length=4, max_length=256)


class SlotCreate(_TextBody):
    date: str = Field(min_length=1, max_length=32)
    time: str = Field(min_length=1, max_length=64)


class SnapshotOut(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    date: str
    time: str

    @classmethod
    def from_domain(cls, snap: SlotSnapshot) -> "SnapshotOut":
        return cls(id=snap.id, date=snap.date, time=snap.time)


class SlotOut(BaseModel):
    """A candidate slot with its tally. voters is omitted on public views."""

    model_config = ConfigDict(frozen=True)

    id: str
    date: str
    time: str
    votes: int
    voters: Optional[list[str]] = None

    @classmethod
    def from_domain(cls, slot: PollingSlot, include_voters: bool = True) -> "SlotOut":
        return cls(
            id=slot.id,
            date=slot.date,
            time=slot.time,
            votes=slot.votes,
            voters=list(slot.voters) if include_voters else None,
        )


class ExpertOut(BaseModel):
    """Full expert view for the owning workspace."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    organization: Optional[str]
    position: Optional[str]
    email: Optional[str]
    phone: Optional[str]
    fee: Optional[str]
    has_password: bool
    status: str
    selected_slot: Optional[SnapshotOut]
    confirmed_slots: list[SnapshotOut]
    slots: list[SlotOut]
    created_at: str

    @classmethod
    def from_domain(cls, expert: Expert, slots: list[PollingSlot]) -> "ExpertOut":
        return cls(
            id=expert.id,
            name=expert.name,
            organization=expert.organization,
            position=expert.position,
            email=expert.email,
            phone=expert.phone,
            fee=expert.fee,
            has_password=bool(expert.password),
            status=expert.status.value,
            selected_slot=SnapshotOut.from_domain(expert.selected_slot) if expert.selected_slot else None,
            confirmed_slots=[SnapshotOut.from_domain(s) for s in expert.confirmed_slots],
            slots=[SlotOut.from_domain(s) for s in slots],
            created_at=expert.created_at,
        )


class ExpertPublic(BaseModel):
    """Public expert view for poll and expert pages: no contact data, voters or credentials."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    organization: Optional[str]
    position: Optional[str]
    status: str
    voting_open: bool
    selected_slot: Optional[SnapshotOut]
    confirmed_slots: list[SnapshotOut]
    slots: list[SlotOut]

    @classmethod
    def from_domain(cls, expert: Expert, slots: list[PollingSlot], voting_open: bool) -> "ExpertPublic":
        return cls(
            id=expert.id,
            name=expert.name,
            organization=expert.organization,
            position=expert.position,
            status=expert.status.value,
            voting_open=voting_open,
            selected_slot=SnapshotOut.from_domain(expert.selected_slot) if expert.selected_slot else None,
            confirmed_slots=[SnapshotOut.from_domain(s) for s in expert.confirmed_slots],
            slots=[SlotOut.from_domain(s, include_voters=False) for s in slots],
        )


# ---------------------------------------------------------------------------
# Scheduling transitions and voting
# ---------------------------------------------------------------------------


class ConfirmRequest(BaseModel):
    """Request body for POST .../confirm. An empty list is rejected by the state machine."""

    slot_ids: list[str] = Field(default_factory=list, max_length=100)


class SelectSlotRequest(BaseModel):
    slot_id: str = Field(min_length=1, max_length=64)


class VoterPasswordRequest(_TextBody):
    """Request body for POST .../verify-password."""

    voter_name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=256)


class VoteRequest(_TextBody):
    """Request body for POST .../vote. slot_ids replaces the voter's whole response set."""

    voter_name: str = Field(min_length=1, max_length=100)
    password: str = Field(min_length=1, max_length=256)
    slot_ids: list[str] = Field(default_factory=list, max_length=100)


class VoterStatusResponse(BaseModel):
    """Outcome of a voter credential check plus the voter's current selection."""

    model_config = ConfigDict(frozen=True)

    voter_name: str
    established: bool
    slot_ids: list[str]
