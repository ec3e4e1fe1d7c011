"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication and authorization.

Two gates compose per route:

  1. Tenant resolution -- resolve_tenant() looks up the {slug} path segment.
     An unknown slug is a 404 before any credential is examined.
  2. Principal check -- require_master(), require_tenant(), require_expert()
     read the principal's own header, verify the token and then compare
     every scoping claim with the resolved resources:

        header missing / token invalid / wrong type  -> 401
        valid tenant token, other tenant             -> 403
        valid expert token, other tenant or expert   -> 403

Public endpoints (poll pages, login forms) skip step 2 but still go through
step 1. Those that take a password use authenticate_password(), which is the
only place the Password Service and the Rate Limiter are combined:

    check(key) -> blocked? 429, no hashing
    verify     -> mismatch? register_failure(key) -> 429 if that hit the cap, else 401
    success    -> clear(key), report whether the stored form needs migration

Failure messages are generic. A caller cannot tell a wrong password from a
missing expert credential, or a forged token from an expired one. Workspace
existence is public (GET /workspaces/{slug}), so an unknown slug is a plain 404.

Layer rule: auth/ may import from core/ and read stores off app.state. It
imports workspace/ for type hints only and never from api/.
"""

from __future__ import annotations

from fastapi import Depends, Request

from auth.models import TOKEN_HEADERS, PrincipalType, TokenClaims
from auth.passwords import needs_rehash, verify_password
from auth.ratelimit import AuthRateLimiter, RateLimitPolicy
from auth.tokens import verify_token
from core.config import get_settings
from core.errors import AuthenticationFailure, AuthorizationFailure, NotFound, RateLimited
from workspace.models import Tenant

# ---------------------------------------------------------------------------
# Request metadata
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> str:
    """Client address used for lockout keys and audit entries.

    The reverse-proxy headers are honoured only with TRUST_PROXY_HEADERS set;
    otherwise any caller could pick a fresh lockout bucket per request.
    """
    if not get_settings().trust_proxy_headers:
        return request.client.host if request.client else "unknown"
    cf_ip = request.headers.get("cf-connecting-ip")
    if cf_ip:
        return cf_ip.strip()
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return request.client.host if request.client else "unknown"


def request_context(request: Request) -> dict:
    """Audit fields describing where a request came from."""
    return {
        "ip": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
        "origin": request.headers.get("origin"),
    }


def rate_limit_key(scope: str, *parts: str) -> str:
    """Build a limiter key such as "tenant:acme:203.0.113.7"."""
    return ":".join((scope, *parts))


# ---------------------------------------------------------------------------
# Password + rate limiter
# ---------------------------------------------------------------------------


def authenticate_password(
    limiter: AuthRateLimiter,
    key: str,
    policy: RateLimitPolicy,
    plain: str,
    stored: str | None,
) -> bool:
    """Verify plain against stored under the rate limiter for key.

    Returns True when the stored credential is legacy plaintext and the
    caller must rewrite it with hash_password(). Raises RateLimited or
    AuthenticationFailure otherwise.
    """
    decision = limiter.check(key, policy)
    if not decision.allowed:
        raise RateLimited(decision.retry_after)

    if not verify_password(plain, stored):
        outcome = limiter.register_failure(key, policy)
        if outcome.blocked_now:
            raise RateLimited(outcome.retry_after)
        raise AuthenticationFailure("Invalid credentials.")

    limiter.clear(key)
    return needs_rehash(stored)


# ---------------------------------------------------------------------------
# Gate 1: tenant resolution
# ---------------------------------------------------------------------------


def resolve_tenant(slug: str, request: Request) -> Tenant:
    """Resolve the {slug} path segment to a Tenant. Raises 404 if absent.

    Use as a FastAPI dependency on every /workspaces/{slug}/... route.
    """
    tenant = request.app.state.store.get_tenant_by_slug(slug)
    if tenant is None:
        raise NotFound("Workspace not found.")
    return tenant


# ---------------------------------------------------------------------------
# Gate 2: principal checks
# ---------------------------------------------------------------------------


def _claims_for(request: Request, principal: PrincipalType) -> TokenClaims:
    token = request.headers.get(TOKEN_HEADERS[principal])
    claims = verify_token(token)
    if claims is None or claims.type != principal:
        raise AuthenticationFailure("Authentication required.")
    return claims


def require_master(request: Request) -> TokenClaims:
    """Require a valid master token in X-Master-Token.

    Use as a FastAPI dependency:
        @router.get("/master/workspaces")
        def route(claims: TokenClaims = Depends(require_master)): ...
    """
    return _claims_for(request, PrincipalType.master)


def require_tenant(request: Request, tenant: Tenant = Depends(resolve_tenant)) -> Tenant:
    """Require a tenant token bound to the workspace named in the path.

    A cryptographically valid token for another workspace is a 403. Both the
    slug and the tenant id must match, so a token minted for a deleted and
    re-created workspace with the same slug is refused as well.
    """
    claims = _claims_for(request, PrincipalType.tenant)
    if claims.slug != tenant.slug or claims.tenant_id != tenant.id:
        raise AuthorizationFailure("No access to this workspace.")
    return tenant


def require_expert(expert_id: str, request: Request, tenant: Tenant = Depends(resolve_tenant)) -> TokenClaims:
    """Require an expert token bound to this workspace and this expert."""
    claims = _claims_for(request, PrincipalType.expert)
    if claims.slug != tenant.slug or claims.tenant_id != tenant.id or claims.expert_id != expert_id:
        raise AuthorizationFailure("No access to this expert.")
    return claims
