"""
workspace/models.py -- Domain dataclasses for workspaces and expert scheduling.

These are pure data containers with zero logic. Status transitions live in
workspace/workflow.py; persistence lives in workspace/store.py.

id is None before a record is written to the database for the types whose
ids the store assigns.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional


class ExpertStatus(str, Enum):
    none = "none"
    polling = "polling"
    confirmed = "confirmed"
    registered = "registered"
    unavailable = "unavailable"


class RequestStatus(str, Enum):
    pending = "pending"
    approved = "approved"
    rejected = "rejected"


@dataclass
class Tenant:
    """A workspace. slug is globally unique and never changes after creation.

    password holds the stored credential form (pbkdf2$... or legacy plaintext).
    Exactly one tenant may be protected; retention never removes it.
    """

    name: str
    slug: str
    password: str
    id: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    organization: Optional[str] = None
    sender_name: Optional[str] = None
    is_protected: bool = False
    created_at: str = ""  # ISO 8601, set by store on insert


@dataclass(frozen=True)
class SlotSnapshot:
    """A candidate slot captured by value at confirmation time.

    Stored inside Expert.confirmed_slots / Expert.selected_slot as JSON, so it
    survives later edits or deletion of the live PollingSlot row.
    """

    id: str
    date: str
    time: str

    def to_dict(self) -> dict:
        return {"id": self.id, "date": self.date, "time": self.time}

    @classmethod
    def from_dict(cls, data: dict) -> "SlotSnapshot":
        return cls(id=str(data["id"]), date=str(data.get("date", "")), time=str(data.get("time", "")))


@dataclass
class Expert:
    """An external speaker owned by exactly one tenant for its lifetime."""

    tenant_id: str
    name: str
    id: Optional[str] = None
    organization: Optional[str] = None
    position: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    fee: Optional[str] = None
    password: Optional[str] = None  # stored credential form; None = no expert login
    status: ExpertStatus = ExpertStatus.none
    selected_slot: Optional[SlotSnapshot] = None
    confirmed_slots: list[SlotSnapshot] = field(default_factory=list)
    created_at: str = ""


@dataclass
class PollingSlot:
    """A candidate date/time range for an expert.

    voters is derived from voter_responses at read time; votes is len(voters).
    Neither is authoritative storage.
    """

    expert_id: str
    date: str
    time: str
    id: Optional[str] = None
    voters: list[str] = field(default_factory=list)

    @property
    def votes(self) -> int:
        return len(self.voters)

    def snapshot(self) -> SlotSnapshot:
        return SlotSnapshot(id=self.id or "", date=self.date, time=self.time)


@dataclass
class WorkspaceRequest:
    """A pending application to create a tenant."""

    name: str
    slug: str
    password: str  # stored credential form
    contact_name: str
    contact_email: str
    id: Optional[str] = None
    contact_phone: Optional[str] = None
    organization: Optional[str] = None
    sender_name: Optional[str] = None
    message: Optional[str] = None
    status: RequestStatus = RequestStatus.pending
    created_at: str = ""
    processed_at: Optional[str] = None
    processed_by: Optional[str] = None
    workspace_id: Optional[str] = None  # tenant created on approval


@dataclass
class AuditLogEntry:
    """Immutable record of a privileged action. Only inserted, never updated."""

    actor_type: str  # "master" | "tenant" | "expert" | "system" | "anonymous"
    actor_id: str
    action: str
    result: str  # "success" | "failure"
    id: Optional[str] = None
    workspace_id: Optional[str] = None
    target_type: Optional[str] = None
    target_id: Optional[str] = None
    status_code: Optional[int] = None
    reason: Optional[str] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    origin: Optional[str] = None
    metadata: dict = field(default_factory=dict)
    created_at: str = ""
