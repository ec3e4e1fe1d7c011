"""
core/errors.py -- The single error family raised by services and dependencies.

Every failure a handler can surface is one of these classes. Each carries its
HTTP status and a stable machine-readable code, so api/main.py maps them with
one exception handler instead of string-matching messages.

  AuthenticationFailure  401  unauthorized        bad or missing credential
  AuthorizationFailure   403  forbidden           valid credential, wrong scope
  RateLimited            429  rate_limited        includes retry_after seconds
  NotFound               404  not_found           unknown tenant/expert/slot
  InvalidTransition      400  invalid_transition  state machine precondition
  ValidationFailure      400  validation_error    missing/invalid input
  Conflict               400  conflict            slug already taken
  StorageFailure         500  storage_error       unexpected backend error

Layer rule: no imports from api/, auth/, or workspace/.
"""

from __future__ import annotations

from typing import Optional


class ServiceError(Exception):
    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: str, *, detail: Optional[str] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail


class AuthenticationFailure(ServiceError):
    status_code = 401
    code = "unauthorized"


class AuthorizationFailure(ServiceError):
    status_code = 403
    code = "forbidden"


class RateLimited(ServiceError):
    """Too many failed attempts for one key; the caller must wait retry_after seconds."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, retry_after: int) -> None:
        super().__init__(f"Too many attempts. Try again in {retry_after} seconds.")
        self.retry_after = retry_after


class NotFound(ServiceError):
    status_code = 404
    code = "not_found"


class InvalidTransition(ServiceError):
    status_code = 400
    code = "invalid_transition"


class ValidationFailure(ServiceError):
    status_code = 400
    code = "validation_error"


class Conflict(ServiceError):
    status_code = 400
    code = "conflict"


class StorageFailure(ServiceError):
    status_code = 500
    code = "storage_error"
