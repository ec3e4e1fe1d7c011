"""
auth/models.py -- Principal types and the claims carried by bearer tokens.

Pattern: Data class (pure data container, zero logic beyond (de)serialization).

Three principal types exist, each presented in its own request header:

  master  X-Master-Token     the operator; no scoping fields
  tenant  X-Workspace-Token  one workspace; tenant_id + slug
  expert  X-Expert-Token     one expert in one workspace; tenant_id + slug + expert_id

Voters are not principals. They are identified per request by display name
plus a per-expert password and never receive a token.

Layer rule: no imports from api/, workspace/, or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class PrincipalType(str, Enum):
    master = "master"
    tenant = "tenant"
    expert = "expert"


# Header name per principal type. A token found in one header is still
# type-checked after decoding; the header only says where to look.
TOKEN_HEADERS: dict[PrincipalType, str] = {
    PrincipalType.master: "X-Master-Token",
    PrincipalType.tenant: "X-Workspace-Token",
    PrincipalType.expert: "X-Expert-Token",
}


@dataclass(frozen=True)
class TokenClaims:
    """Verified (or to-be-signed) claims of a bearer token.

    tenant_id and slug are set for tenant and expert principals; expert_id
    only for expert principals. expires_at is a UTC epoch in seconds and is
    filled in by auth.tokens at issue time.
    """

    type: PrincipalType
    tenant_id: Optional[str] = None
    slug: Optional[str] = None
    expert_id: Optional[str] = None
    expires_at: Optional[int] = None

    def to_payload(self) -> dict:
        payload: dict = {"type": self.type.value}
        if self.tenant_id is not None:
            payload["tenant_id"] = self.tenant_id
        if self.slug is not None:
            payload["slug"] = self.slug
        if self.expert_id is not None:
            payload["expert_id"] = self.expert_id
        return payload

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenClaims":
        """Build claims from a decoded payload. Raises ValueError on an unknown type."""
        return cls(
            type=PrincipalType(payload["type"]),
            tenant_id=payload.get("tenant_id"),
            slug=payload.get("slug"),
            expert_id=payload.get("expert_id"),
            expires_at=payload.get("exp"),
        )

    def without_expiry(self) -> "TokenClaims":
        return TokenClaims(type=self.type, tenant_id=self.tenant_id, slug=self.slug, expert_id=self.expert_id)


def master_claims() -> TokenClaims:
    return TokenClaims(type=PrincipalType.master)


def tenant_claims(tenant_id: str, slug: str) -> TokenClaims:
    return TokenClaims(type=PrincipalType.tenant, tenant_id=tenant_id, slug=slug)


def expert_claims(tenant_id: str, slug: str, expert_id: str) -> TokenClaims:
    return TokenClaims(type=PrincipalType.expert, tenant_id=tenant_id, slug=slug, expert_id=expert_id)
