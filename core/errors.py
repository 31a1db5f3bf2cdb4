"""
core/errors.py -- Error taxonomy shared by every layer.

Every failure the access core can report is a PortalError tagged with an
ErrorKind. The kind alone decides the HTTP status (see _STATUS_BY_KIND), so
route handlers never pick status codes by hand and the api/ exception handler
renders every error through one code path.

Two kinds never reach a client:
  AUDIT_WRITE_FAILURE -- logged by audit/ledger.py and swallowed there.
  STORE_FAILURE       -- rendered as a generic 500; the underlying exception
                         text is only exposed when DEBUG is on.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, or tracker/.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional


class ErrorKind(str, Enum):
    # Token service
    TOKEN_MISSING = "token_missing"
    TOKEN_EXPIRED = "token_expired"
    TOKEN_INVALID = "token_invalid"
    # Authentication
    UNAUTHENTICATED = "unauthenticated"
    INVALID_CREDENTIALS = "invalid_credentials"
    ACCOUNT_NOT_FOUND = "account_not_found"
    ACCOUNT_BLOCKED = "account_blocked"
    # Authorization
    INSUFFICIENT_ROLE = "insufficient_role"
    NOT_OWNER = "not_owner"
    NOT_FOUND = "not_found"
    PROTECTED_ACCOUNT = "protected_account"
    NO_STATE_CHANGE = "no_state_change"
    # Boundary
    VALIDATION_FAILED = "validation_failed"
    RATE_LIMITED = "rate_limited"
    # Internal
    AUDIT_WRITE_FAILURE = "audit_write_failure"
    STORE_FAILURE = "store_failure"


_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.TOKEN_MISSING: 401,
    ErrorKind.TOKEN_EXPIRED: 401,
    ErrorKind.TOKEN_INVALID: 401,
    ErrorKind.UNAUTHENTICATED: 401,
    ErrorKind.INVALID_CREDENTIALS: 401,
    ErrorKind.ACCOUNT_NOT_FOUND: 401,
    ErrorKind.ACCOUNT_BLOCKED: 403,
    ErrorKind.INSUFFICIENT_ROLE: 403,
    ErrorKind.NOT_OWNER: 403,
    ErrorKind.PROTECTED_ACCOUNT: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.NO_STATE_CHANGE: 400,
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.AUDIT_WRITE_FAILURE: 500,
    ErrorKind.STORE_FAILURE: 500,
}


def status_for(kind: ErrorKind) -> int:
    return _STATUS_BY_KIND.get(kind, 500)


class PortalError(Exception):
    """A classified failure of the access core.

    Args:
        kind:    ErrorKind tag; decides the HTTP status.
        message: Human-readable text shown to the caller.
        details: Optional list of structured hints (validation errors,
                 required vs. actual role). Rendered as "details".
        reason:  Optional underlying kind. UNAUTHENTICATED keeps the token
                 failure (TOKEN_EXPIRED, ...) here so audit records can tell
                 them apart without changing the caller-visible kind.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        details: Optional[list[Any]] = None,
        reason: Optional[ErrorKind] = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.details = details
        self.reason = reason

    @property
    def status_code(self) -> int:
        return status_for(self.kind)

    def audit_tag(self) -> str:
        """Return the most specific kind value, for audit detail payloads."""
        return (self.reason or self.kind).value

    def __repr__(self) -> str:
        return f"PortalError({self.kind.value!r}, {self.message!r})"
