"""
auth/passwords.py -- Salted PBKDF2 password hashing with legacy plaintext support.

Stored form:

    pbkdf2$<iterations>$<base64 salt>$<base64 derived key>

  - PBKDF2-HMAC-SHA256, 210,000 iterations, 32-byte derived key.
  - A fresh 16-byte random salt per hash_password() call, so two hashes of the
    same password never match textually.
  - The iteration count is stored per record. Raising _ITERATIONS later does
    not invalidate existing hashes; they keep verifying with their own count.

Legacy rows: workspaces, experts and voter passwords written before hashing
was introduced hold the bare plaintext. verify_password() accepts those by
direct comparison so existing users can still log in. Callers that
authenticate against such a row must rewrite it with hash_password()
immediately (migrate on login). This module never writes anything.

Failure policy: a malformed stored value (wrong field count, bad iteration
count, bad base64) verifies as False. It never raises into the caller, so
login handlers always reach their rate-limit and audit bookkeeping.

Layer rule: stdlib only. No imports from api/, workspace/, or core/.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging
import secrets

logger = logging.getLogger("expertsman.auth")

_PREFIX = "pbkdf2"
_ITERATIONS = 210_000
_KEY_BYTES = 32
_SALT_BYTES = 16
_DIGEST = "sha256"


def _derive(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac(_DIGEST, password.encode("utf-8"), salt, iterations, dklen=_KEY_BYTES)


def is_hashed(stored: str | None) -> bool:
    """Return True if stored is in the structured pbkdf2$... form."""
    return isinstance(stored, str) and stored.startswith(f"{_PREFIX}$")


def hash_password(plain: str) -> str:
    """Return the pbkdf2 stored form of plain with a new random salt."""
    salt = secrets.token_bytes(_SALT_BYTES)
    derived = _derive(plain, salt, _ITERATIONS)
    return "$".join(
        (
            _PREFIX,
            str(_ITERATIONS),
            base64.b64encode(salt).decode("ascii"),
            base64.b64encode(derived).decode("ascii"),
        )
    )


def verify_password(plain: str, stored: str | None) -> bool:
    """Return True if plain matches stored (hashed or legacy plaintext form)."""
    if not stored:
        return False
    if not is_hashed(stored):
        # Legacy plaintext row. compare_digest needs equal-type operands.
        return hmac.compare_digest(plain.encode("utf-8"), stored.encode("utf-8"))

    parts = stored.split("$")
    if len(parts) != 4:
        return False
    _, iter_text, salt_b64, hash_b64 = parts
    try:
        iterations = int(iter_text)
        salt = base64.b64decode(salt_b64, validate=True)
        expected = base64.b64decode(hash_b64, validate=True)
    except (ValueError, binascii.Error):
        logger.warning("Unparseable password hash encountered; treating as mismatch")
        return False
    if iterations <= 0 or not salt or not expected:
        return False
    return hmac.compare_digest(_derive(plain, salt, iterations), expected)


def needs_rehash(stored: str | None) -> bool:
    """Return True if a successfully verified credential should be rewritten.

    Only legacy plaintext qualifies today.
    """
    return bool(stored) and not is_hashed(stored)
