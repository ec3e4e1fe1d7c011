"""
auth/tokens.py -- Issue and verify signed, short-lived bearer tokens.

Security design decisions:
  Format: python-jose JWT with HS256. The claims (principal type plus scoping
       fields) and the expiry are serialized as JSON, base64url-encoded, and
       signed with HMAC-SHA256 over the encoded header and payload using
       SECRET_KEY. Verification recomputes the MAC with a constant-time
       comparison and then checks the expiry.

  Failure: verify_token() returns None for a malformed token, a MAC mismatch,
       an expired token, or a payload without a known principal type. The
       caller cannot tell which, and must not try to -- the route layer turns
       every None into the same 401.

  TTL: chosen by the caller per principal type (Settings.*_token_ttl_hours).
       This module only embeds the resulting expiry.

  SECRET_KEY: sourced from core.config.get_settings(), validated at startup
       (length >= 32, mandatory outside DEBUG).

Layer rule: no imports from api/ or workspace/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from auth.models import TokenClaims
from core.config import get_settings

logger = logging.getLogger("expertsman.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"


def issue_token(claims: TokenClaims, ttl_hours: float) -> str:
    """Return a signed token carrying claims, valid for ttl_hours from now."""
    expire = datetime.now(timezone.utc) + timedelta(hours=ttl_hours)
    payload = claims.to_payload()
    payload["exp"] = int(expire.timestamp())
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def verify_token(token: str | None) -> TokenClaims | None:
    """Decode and verify a token. Returns its claims, or None on any failure."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
        return TokenClaims.from_payload(payload)
    except JWTError:
        return None
    except (KeyError, ValueError, TypeError):
        # Signed by us but not a shape we issue.
        logger.warning("Rejected signed token with an unrecognised payload")
        return None
