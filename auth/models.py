"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in tracker/models.py and audit/models.py -- dataclasses own domain shape;
stores and the evaluator do the work.

Layer rule: no imports from api/, audit/, or tracker/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = frozenset({ROLE_USER, ROLE_ADMIN})

STATUS_ACTIVE = "active"
STATUS_BLOCKED = "blocked"
STATUSES = frozenset({STATUS_ACTIVE, STATUS_BLOCKED})


@dataclass
class User:
    """A stored identity as held by the credential store.

    email is stored lower-cased; lookups are case-insensitive. password_hash
    is a bcrypt hash and never leaves the auth package in a response.

    id is None before the record is written to the database.
    """

    email: str
    password_hash: str
    role: str = ROLE_USER  # "user" | "admin"
    status: str = STATUS_ACTIVE  # "active" | "blocked"
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass(frozen=True)
class Identity:
    """The authenticated caller handed to downstream handlers.

    Always built from the credential store's current row, never from token
    claims: role and status in an outstanding token may be stale.
    """

    id: int
    email: str
    role: str
    status: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @classmethod
    def from_user(cls, user: User) -> "Identity":
        return cls(id=user.id, email=user.email, role=user.role, status=user.status)


@dataclass(frozen=True)
class TokenClaims:
    """Verified contents of a session token."""

    id: int
    email: str
    role: str
    status: str
    issued_at: datetime
    expires_at: datetime
    issuer: str
    audience: str


@dataclass(frozen=True)
class ClientInfo:
    """Where a request came from. Recorded on every audit event."""

    ip: str | None = None
    user_agent: str | None = None
