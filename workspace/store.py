"""
workspace/store.py -- SQLAlchemy Core persistence for workspaces and scheduling.

Pattern: Repository + Data Mapper. WorkspaceStore is the repository (one clean
interface per entity). The _row_to_* functions are the mappers (raw DB rows ->
domain dataclasses in workspace/models.py). Route handlers never touch SQL.

Atomicity: every multi-statement mutation runs inside one engine.begin()
block, so it commits or rolls back as a unit. That covers cascade deletes,
replace-all votes, slot deletion with its votes, and request approval. A
crash or client disconnect mid-handler can never leave votes deleted but not
re-inserted. No in-process locks are used; the database transaction is the
only concurrency primitive, and concurrent vote submissions from one voter
resolve as last-committed-wins.

Status writes: save_expert_state() is the only method that changes an
expert's status, selected_slot or confirmed_slots. It is called from
workspace/workflow.py only, which enforces the legal transitions.

Security: all queries use bound parameters. Dynamic id lists go through
column.in_(...), which binds each element; there is no hand-built placeholder
string anywhere in this module.

Usage:
    engine = create_db_engine("sqlite:///expertsman.db")
    store = WorkspaceStore(engine)
    tenant_id = store.create_tenant(Tenant(name="Lab", slug="lab", password=hash_password("pw")))
    expert_id = store.create_expert(Expert(tenant_id=tenant_id, name="Dr. Kim"))
"""

from __future__ import annotations

import json
import uuid
from typing import Optional

from sqlalchemy import Column, ForeignKey, Integer, PrimaryKeyConstraint, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from core.database import init_schema, metadata, now_iso
from workspace.models import (
    Expert,
    ExpertStatus,
    PollingSlot,
    RequestStatus,
    SlotSnapshot,
    Tenant,
    WorkspaceRequest,
)

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_workspaces = Table(
    "workspaces",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(64), nullable=False, unique=True),
    Column("password", Text, nullable=False),
    Column("contact_email", String(255)),
    Column("contact_phone", String(64)),
    Column("organization", String(255)),
    Column("sender_name", String(255)),
    Column("is_protected", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_experts = Table(
    "experts",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("tenant_id", String(36), ForeignKey("workspaces.id"), nullable=False, index=True),
    Column("name", String(255), nullable=False),
    Column("organization", String(255)),
    Column("position", String(255)),
    Column("email", String(255)),
    Column("phone", String(64)),
    Column("fee", String(64)),
    Column("password", Text),
    Column("status", String(20), nullable=False, server_default="none"),
    Column("selected_slot", Text),  # JSON object
    Column("confirmed_slots", Text),  # JSON array
    Column("created_at", String(32), nullable=False),
)

_slots = Table(
    "polling_slots",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("expert_id", String(36), ForeignKey("experts.id"), nullable=False, index=True),
    Column("date", String(32), nullable=False),
    Column("time", String(64), nullable=False),
)

_responses = Table(
    "voter_responses",
    metadata,
    Column("expert_id", String(36), ForeignKey("experts.id"), nullable=False),
    Column("voter_name", String(100), nullable=False),
    Column("slot_id", String(36), ForeignKey("polling_slots.id"), nullable=False),
    PrimaryKeyConstraint("expert_id", "voter_name", "slot_id"),
)

_voter_passwords = Table(
    "voter_passwords",
    metadata,
    Column("expert_id", String(36), ForeignKey("experts.id"), nullable=False),
    Column("voter_name", String(100), nullable=False),
    Column("password", Text, nullable=False),
    PrimaryKeyConstraint("expert_id", "voter_name"),
)

_requests = Table(
    "workspace_requests",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("name", String(255), nullable=False),
    Column("slug", String(64), nullable=False),
    Column("password", Text, nullable=False),
    Column("contact_name", String(255), nullable=False),
    Column("contact_email", String(255), nullable=False),
    Column("contact_phone", String(64)),
    Column("organization", String(255)),
    Column("sender_name", String(255)),
    Column("message", Text),
    Column("status", String(20), nullable=False, server_default="pending"),
    Column("created_at", String(32), nullable=False),
    Column("processed_at", String(32)),
    Column("processed_by", String(64)),
    Column("workspace_id", String(36)),
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _new_id() -> str:
    return str(uuid.uuid4())


def _dump_snapshot(slot: Optional[SlotSnapshot]) -> Optional[str]:
    return json.dumps(slot.to_dict()) if slot is not None else None


def _dump_snapshots(slots: list[SlotSnapshot]) -> Optional[str]:
    return json.dumps([s.to_dict() for s in slots]) if slots else None


def _delete_expert_rows(conn, expert_ids: list[str]) -> None:
    """Delete every row owned by expert_ids, children first (foreign keys are on)."""
    if not expert_ids:
        return
    conn.execute(_responses.delete().where(_responses.c.expert_id.in_(expert_ids)))
    conn.execute(_voter_passwords.delete().where(_voter_passwords.c.expert_id.in_(expert_ids)))
    conn.execute(_slots.delete().where(_slots.c.expert_id.in_(expert_ids)))
    conn.execute(_experts.delete().where(_experts.c.id.in_(expert_ids)))


# Profile columns a tenant may edit through update_expert_profile().
_EXPERT_PROFILE_FIELDS = {"name", "organization", "position", "email", "phone", "fee", "password"}

# Tenant columns editable after creation. slug is deliberately absent: it is immutable.
_TENANT_MUTABLE_FIELDS = {"name", "password", "contact_email", "contact_phone", "organization", "sender_name"}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class WorkspaceStore:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        init_schema(engine)

    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def create_tenant(self, tenant: Tenant) -> str:
        """Insert a tenant and return its id.

        Raises sqlalchemy.exc.IntegrityError if the slug is already taken.
        """
        tenant_id = tenant.id or _new_id()
        with self.engine.begin() as conn:
            conn.execute(_workspaces.insert().values(**_tenant_values(tenant, tenant_id)))
        return tenant_id

    def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        with self.engine.connect() as conn:
            row = conn.execute(_workspaces.select().where(_workspaces.c.id == tenant_id)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def get_tenant_by_slug(self, slug: str) -> Optional[Tenant]:
        """Look up a tenant by exact slug. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_workspaces.select().where(_workspaces.c.slug == slug)).fetchone()
        return _row_to_tenant(row) if row is not None else None

    def slug_taken(self, slug: str) -> bool:
        """Return True if slug belongs to a tenant or to a pending request."""
        with self.engine.connect() as conn:
            tenant = conn.execute(select(_workspaces.c.id).where(_workspaces.c.slug == slug)).first()
            if tenant is not None:
                return True
            pending = conn.execute(
                select(_requests.c.id).where(
                    (_requests.c.slug == slug) & (_requests.c.status == RequestStatus.pending.value)
                )
            ).first()
        return pending is not None

    def list_tenants_with_counts(self) -> list[tuple[Tenant, int]]:
        """Return every tenant with its expert count, oldest first, in one query."""
        counts = (
            select(_experts.c.tenant_id, func.count(_experts.c.id).label("expert_count"))
            .group_by(_experts.c.tenant_id)
            .subquery()
        )
        stmt = (
            select(_workspaces, func.coalesce(counts.c.expert_count, 0).label("expert_count"))
            .select_from(_workspaces.outerjoin(counts, counts.c.tenant_id == _workspaces.c.id))
            .order_by(_workspaces.c.created_at)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [(_row_to_tenant(r), r.expert_count) for r in rows]

    def update_tenant(self, tenant_id: str, **fields) -> bool:
        """Update mutable tenant fields. Returns False if tenant_id was not found.

        Raises ValueError for unknown or immutable fields (slug included).
        """
        unknown = set(fields) - _TENANT_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update tenant fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_tenant(tenant_id) is not None
        with self.engine.begin() as conn:
            result = conn.execute(_workspaces.update().where(_workspaces.c.id == tenant_id).values(**fields))
        return result.rowcount > 0

    def delete_tenant(self, tenant_id: str) -> bool:
        """Delete a tenant and everything it owns in one transaction.

        Returns False if tenant_id was not found (nothing is deleted).
        """
        with self.engine.begin() as conn:
            expert_ids = list(conn.execute(select(_experts.c.id).where(_experts.c.tenant_id == tenant_id)).scalars())
            _delete_expert_rows(conn, expert_ids)
            result = conn.execute(_workspaces.delete().where(_workspaces.c.id == tenant_id))
        return result.rowcount > 0

    def ensure_protected_tenant(self, slug: str, name: str, password: str) -> Tenant:
        """Make sure the protected tenant exists and is the only one flagged.

        Creates it with the given stored password when missing. An existing
        tenant with this slug keeps its credential and is just flagged.
        """
        with self.engine.begin() as conn:
            row = conn.execute(_workspaces.select().where(_workspaces.c.slug == slug)).fetchone()
            if row is None:
                tenant = Tenant(name=name, slug=slug, password=password, id=slug, is_protected=True)
                conn.execute(_workspaces.insert().values(**_tenant_values(tenant, tenant.id)))
            conn.execute(_workspaces.update().where(_workspaces.c.slug != slug).values(is_protected=0))
            conn.execute(_workspaces.update().where(_workspaces.c.slug == slug).values(is_protected=1))
        return self.get_tenant_by_slug(slug)

    def list_tenant_ids_created_before(self, cutoff_iso: str) -> list[str]:
        """Return ids of non-protected tenants created before cutoff_iso."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_workspaces.c.id).where(
                    (_workspaces.c.created_at < cutoff_iso) & (_workspaces.c.is_protected == 0)
                )
            ).scalars()
            return list(rows)

    # ------------------------------------------------------------------
    # Experts
    # ------------------------------------------------------------------

    def create_expert(self, expert: Expert) -> str:
        """Insert an expert in status none and return its id."""
        expert_id = expert.id or _new_id()
        with self.engine.begin() as conn:
            conn.execute(
                _experts.insert().values(
                    id=expert_id,
                    tenant_id=expert.tenant_id,
                    name=expert.name,
                    organization=expert.organization,
                    position=expert.position,
                    email=expert.email,
                    phone=expert.phone,
                    fee=expert.fee,
                    password=expert.password,
                    status=ExpertStatus.none.value,
                    created_at=expert.created_at or now_iso(),
                )
            )
        return expert_id

    def get_expert(self, tenant_id: str, expert_id: str) -> Optional[Expert]:
        """Fetch an expert scoped to its tenant. An expert of another tenant is None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _experts.select().where((_experts.c.id == expert_id) & (_experts.c.tenant_id == tenant_id))
            ).fetchone()
        return _row_to_expert(row) if row is not None else None

    def list_experts(self, tenant_id: str) -> list[Expert]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _experts.select().where(_experts.c.tenant_id == tenant_id).order_by(_experts.c.created_at)
            ).fetchall()
        return [_row_to_expert(r) for r in rows]

    def count_experts(self, tenant_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).where(_experts.c.tenant_id == tenant_id)).scalar()
        return result or 0

    def update_expert_profile(self, tenant_id: str, expert_id: str, **fields) -> bool:
        """Update profile fields (and optionally the stored password).

        status, selected_slot and confirmed_slots are not accepted here; they
        only change through workspace.workflow. Raises ValueError otherwise.
        """
        unknown = set(fields) - _EXPERT_PROFILE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update expert fields: {sorted(unknown)!r}")
        if not fields:
            return self.get_expert(tenant_id, expert_id) is not None
        with self.engine.begin() as conn:
            result = conn.execute(
                _experts.update()
                .where((_experts.c.id == expert_id) & (_experts.c.tenant_id == tenant_id))
                .values(**fields)
            )
        return result.rowcount > 0

    def save_expert_state(
        self,
        expert_id: str,
        status: ExpertStatus,
        *,
        expected_status: ExpertStatus,
        confirmed_slots: list[SlotSnapshot],
        selected_slot: Optional[SlotSnapshot],
    ) -> bool:
        """Compare-and-set the scheduling fields of one expert.

        The row is only written if its status is still expected_status.
        Returns False when another request changed it first.
        """
        with self.engine.begin() as conn:
            result = conn.execute(
                _experts.update()
                .where((_experts.c.id == expert_id) & (_experts.c.status == expected_status.value))
                .values(
                    status=status.value,
                    confirmed_slots=_dump_snapshots(confirmed_slots),
                    selected_slot=_dump_snapshot(selected_slot),
                )
            )
        return result.rowcount > 0

    def delete_expert(self, expert_id: str, tenant_id: Optional[str] = None) -> bool:
        """Delete an expert with its slots, votes and voter passwords atomically.

        When tenant_id is given the expert must belong to it; otherwise nothing
        is deleted and False is returned. Other experts' rows are never touched.
        """
        with self.engine.begin() as conn:
            stmt = select(_experts.c.id).where(_experts.c.id == expert_id)
            if tenant_id is not None:
                stmt = stmt.where(_experts.c.tenant_id == tenant_id)
            if conn.execute(stmt).first() is None:
                return False
            _delete_expert_rows(conn, [expert_id])
        return True

    def list_expert_ids_created_before(self, cutoff_iso: str) -> list[str]:
        with self.engine.connect() as conn:
            return list(conn.execute(select(_experts.c.id).where(_experts.c.created_at < cutoff_iso)).scalars())

    # ------------------------------------------------------------------
    # Polling slots
    # ------------------------------------------------------------------

    def add_slot(self, slot: PollingSlot) -> str:
        slot_id = slot.id or _new_id()
        with self.engine.begin() as conn:
            conn.execute(_slots.insert().values(id=slot_id, expert_id=slot.expert_id, date=slot.date, time=slot.time))
        return slot_id

    def count_slots(self, expert_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).where(_slots.c.expert_id == expert_id)).scalar()
        return result or 0

    def list_slots(self, expert_id: str) -> list[PollingSlot]:
        """Return an expert's slots with voters tallied from voter_responses."""
        return self.list_slots_for_experts([expert_id]).get(expert_id, [])

    def list_slots_for_experts(self, expert_ids: list[str]) -> dict[str, list[PollingSlot]]:
        """Return {expert_id: [PollingSlot, ...]} for many experts in two queries.

        Replaces the per-slot voter lookups (N+1) with one IN query for slots
        and one for responses. Experts without slots are absent from the dict.
        """
        if not expert_ids:
            return {}
        with self.engine.connect() as conn:
            slot_rows = conn.execute(
                _slots.select()
                .where(_slots.c.expert_id.in_(expert_ids))
                .order_by(_slots.c.date, _slots.c.time, _slots.c.id)
            ).fetchall()
            vote_rows = conn.execute(
                select(_responses.c.slot_id, _responses.c.voter_name)
                .where(_responses.c.expert_id.in_(expert_ids))
                .order_by(_responses.c.voter_name)
            ).fetchall()

        voters_by_slot: dict[str, list[str]] = {}
        for row in vote_rows:
            voters_by_slot.setdefault(row.slot_id, []).append(row.voter_name)

        result: dict[str, list[PollingSlot]] = {}
        for row in slot_rows:
            result.setdefault(row.expert_id, []).append(
                PollingSlot(
                    id=row.id,
                    expert_id=row.expert_id,
                    date=row.date,
                    time=row.time,
                    voters=voters_by_slot.get(row.id, []),
                )
            )
        return result

    def get_slots_by_ids(self, expert_id: str, slot_ids: list[str]) -> list[PollingSlot]:
        """Return the slots among slot_ids that belong to expert_id, in date order."""
        if not slot_ids:
            return []
        with self.engine.connect() as conn:
            rows = conn.execute(
                _slots.select()
                .where((_slots.c.expert_id == expert_id) & (_slots.c.id.in_(slot_ids)))
                .order_by(_slots.c.date, _slots.c.time, _slots.c.id)
            ).fetchall()
        return [PollingSlot(id=r.id, expert_id=r.expert_id, date=r.date, time=r.time) for r in rows]

    def delete_slot(self, expert_id: str, slot_id: str) -> bool:
        """Delete one slot and every vote cast for it, atomically."""
        with self.engine.begin() as conn:
            found = conn.execute(
                select(_slots.c.id).where((_slots.c.id == slot_id) & (_slots.c.expert_id == expert_id))
            ).first()
            if found is None:
                return False
            conn.execute(_responses.delete().where(_responses.c.slot_id == slot_id))
            conn.execute(_slots.delete().where(_slots.c.id == slot_id))
        return True

    # ------------------------------------------------------------------
    # Voter responses
    # ------------------------------------------------------------------

    def replace_votes(
        self,
        expert_id: str,
        voter_name: str,
        slot_ids: list[str],
        *,
        open_statuses: Optional[frozenset[ExpertStatus]] = None,
    ) -> bool:
        """Replace a voter's full response set for an expert (delete-then-insert, one transaction).

        Callers validate that every slot id belongs to expert_id first.

        With open_statuses, the write only happens while the expert's status
        is still one of them. The check is a guarded no-op UPDATE on the
        expert row as the first statement of the transaction, so it holds the
        row's write lock until commit and a concurrent status change is
        ordered before or after the whole replacement. Returns False when the
        status had already moved on (nothing is written).
        """
        with self.engine.begin() as conn:
            if open_statuses is not None:
                guard = conn.execute(
                    _experts.update()
                    .where(
                        (_experts.c.id == expert_id)
                        & (_experts.c.status.in_([s.value for s in open_statuses]))
                    )
                    .values(status=_experts.c.status)
                )
                if guard.rowcount == 0:
                    return False
            conn.execute(
                _responses.delete().where((_responses.c.expert_id == expert_id) & (_responses.c.voter_name == voter_name))
            )
            if slot_ids:
                conn.execute(
                    _responses.insert(),
                    [{"expert_id": expert_id, "voter_name": voter_name, "slot_id": s} for s in slot_ids],
                )
        return True

    def get_votes(self, expert_id: str, voter_name: str) -> set[str]:
        """Return the slot ids a voter currently has recorded for an expert."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_responses.c.slot_id).where(
                    (_responses.c.expert_id == expert_id) & (_responses.c.voter_name == voter_name)
                )
            ).scalars()
            return set(rows)

    def count_votes(self, expert_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).where(_responses.c.expert_id == expert_id)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Voter passwords
    # ------------------------------------------------------------------

    def get_voter_password(self, expert_id: str, voter_name: str) -> Optional[str]:
        with self.engine.connect() as conn:
            return conn.execute(
                select(_voter_passwords.c.password).where(
                    (_voter_passwords.c.expert_id == expert_id) & (_voter_passwords.c.voter_name == voter_name)
                )
            ).scalar()

    def create_voter_password(self, expert_id: str, voter_name: str, password: str) -> None:
        """Establish a voter's password.

        Raises sqlalchemy.exc.IntegrityError if one already exists (a concurrent
        first submission won the race); the caller then verifies against it.
        """
        with self.engine.begin() as conn:
            conn.execute(_voter_passwords.insert().values(expert_id=expert_id, voter_name=voter_name, password=password))

    def update_voter_password(self, expert_id: str, voter_name: str, password: str) -> None:
        """Rewrite a stored voter credential (used for migrate-on-login)."""
        with self.engine.begin() as conn:
            conn.execute(
                _voter_passwords.update()
                .where((_voter_passwords.c.expert_id == expert_id) & (_voter_passwords.c.voter_name == voter_name))
                .values(password=password)
            )

    def count_voter_passwords(self, expert_id: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).where(_voter_passwords.c.expert_id == expert_id)).scalar()
        return result or 0

    # ------------------------------------------------------------------
    # Workspace requests
    # ------------------------------------------------------------------

    def create_request(self, req: WorkspaceRequest) -> str:
        request_id = req.id or _new_id()
        with self.engine.begin() as conn:
            conn.execute(
                _requests.insert().values(
                    id=request_id,
                    name=req.name,
                    slug=req.slug,
                    password=req.password,
                    contact_name=req.contact_name,
                    contact_email=req.contact_email,
                    contact_phone=req.contact_phone,
                    organization=req.organization,
                    sender_name=req.sender_name,
                    message=req.message,
                    status=RequestStatus.pending.value,
                    created_at=req.created_at or now_iso(),
                )
            )
        return request_id

    def get_request(self, request_id: str) -> Optional[WorkspaceRequest]:
        with self.engine.connect() as conn:
            row = conn.execute(_requests.select().where(_requests.c.id == request_id)).fetchone()
        return _row_to_request(row) if row is not None else None

    def list_requests(self) -> list[WorkspaceRequest]:
        """Return all requests, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_requests.select().order_by(_requests.c.created_at.desc())).fetchall()
        return [_row_to_request(r) for r in rows]

    def approve_request(self, request_id: str, tenant: Tenant, processed_by: str) -> Optional[str]:
        """Create the tenant and mark the request approved in one transaction.

        The request row is only updated while still pending. Returns the new
        tenant id, or None if the request was no longer pending (nothing is
        written). Raises sqlalchemy.exc.IntegrityError on a slug collision.
        """
        tenant_id = tenant.id or _new_id()
        with self.engine.begin() as conn:
            result = conn.execute(
                _requests.update()
                .where((_requests.c.id == request_id) & (_requests.c.status == RequestStatus.pending.value))
                .values(
                    status=RequestStatus.approved.value,
                    processed_at=now_iso(),
                    processed_by=processed_by,
                    workspace_id=tenant_id,
                )
            )
            if result.rowcount == 0:
                return None
            conn.execute(_workspaces.insert().values(**_tenant_values(tenant, tenant_id)))
        return tenant_id

    def reject_request(self, request_id: str, processed_by: str) -> bool:
        """Mark a pending request rejected. Returns False if it was not pending."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _requests.update()
                .where((_requests.c.id == request_id) & (_requests.c.status == RequestStatus.pending.value))
                .values(status=RequestStatus.rejected.value, processed_at=now_iso(), processed_by=processed_by)
            )
        return result.rowcount > 0

    def delete_request(self, request_id: str) -> bool:
        with self.engine.begin() as conn:
            result = conn.execute(_requests.delete().where(_requests.c.id == request_id))
        return result.rowcount > 0

    def delete_requests_created_before(self, cutoff_iso: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(_requests.delete().where(_requests.c.created_at < cutoff_iso))
        return result.rowcount

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        with self.engine.connect() as conn:
            conn.execute(select(1))
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern -- DB row -> domain dataclass)
# ---------------------------------------------------------------------------


def _tenant_values(tenant: Tenant, tenant_id: str) -> dict:
    return {
        "id": tenant_id,
        "name": tenant.name,
        "slug": tenant.slug,
        "password": tenant.password,
        "contact_email": tenant.contact_email,
        "contact_phone": tenant.contact_phone,
        "organization": tenant.organization,
        "sender_name": tenant.sender_name,
        "is_protected": 1 if tenant.is_protected else 0,
        "created_at": tenant.created_at or now_iso(),
    }


def _row_to_tenant(row) -> Tenant:
    return Tenant(
        id=row.id,
        name=row.name,
        slug=row.slug,
        password=row.password,
        contact_email=row.contact_email,
        contact_phone=row.contact_phone,
        organization=row.organization,
        sender_name=row.sender_name,
        is_protected=bool(row.is_protected),
        created_at=row.created_at,
    )


def _row_to_expert(row) -> Expert:
    selected = json.loads(row.selected_slot) if row.selected_slot else None
    confirmed = json.loads(row.confirmed_slots) if row.confirmed_slots else []
    return Expert(
        id=row.id,
        tenant_id=row.tenant_id,
        name=row.name,
        organization=row.organization,
        position=row.position,
        email=row.email,
        phone=row.phone,
        fee=row.fee,
        password=row.password,
        status=ExpertStatus(row.status),
        selected_slot=SlotSnapshot.from_dict(selected) if selected else None,
        confirmed_slots=[SlotSnapshot.from_dict(s) for s in confirmed],
        created_at=row.created_at,
    )


def _row_to_request(row) -> WorkspaceRequest:
    return WorkspaceRequest(
        id=row.id,
        name=row.name,
        slug=row.slug,
        password=row.password,
        contact_name=row.contact_name,
        contact_email=row.contact_email,
        contact_phone=row.contact_phone,
        organization=row.organization,
        sender_name=row.sender_name,
        message=row.message,
        status=RequestStatus(row.status),
        created_at=row.created_at,
        processed_at=row.processed_at,
        processed_by=row.processed_by,
        workspace_id=row.workspace_id,
    )
