"""
api/routes/v1/requests.py -- Public workspace application endpoint.

Routes:
  POST /workspace-requests -- apply for a new workspace (public)

The request is stored as pending until the operator approves or rejects it
(see api/routes/v1/master.py). The password is hashed at submission, so the
plaintext never reaches the database.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from api.limiter import LOGIN_LIMIT, limiter
from api.models import WorkspaceRequestCreate, WorkspaceRequestResponse
from api.state import audit_event, get_store
from auth.passwords import hash_password
from core.errors import Conflict
from workspace.models import WorkspaceRequest

router = APIRouter()


@limiter.limit(LOGIN_LIMIT)
@router.post("/workspace-requests", response_model=WorkspaceRequestResponse, status_code=201)
def submit_workspace_request(request: Request, body: WorkspaceRequestCreate) -> WorkspaceRequestResponse:
    """Apply for a workspace. 400 if the slug is used by a tenant or a pending request."""
    store = get_store(request)
    if store.slug_taken(body.slug):
        raise Conflict("This workspace address is already in use.")

    request_id = store.create_request(
        WorkspaceRequest(
            name=body.name,
            slug=body.slug,
            password=hash_password(body.password),
            contact_name=body.contact_name,
            contact_email=body.contact_email,
            contact_phone=body.contact_phone,
            organization=body.organization,
            sender_name=body.sender_name,
            message=body.message,
        )
    )
    audit_event(
        request,
        actor_type="anonymous",
        actor_id=body.contact_email,
        action="workspace_request.submit",
        target_type="workspace_request",
        target_id=request_id,
        status_code=201,
        metadata={"slug": body.slug},
    )
    return WorkspaceRequestResponse.from_domain(store.get_request(request_id))
