"""
auth/access.py -- Access Control Evaluator.

Pure decision functions. Each one either returns normally (the check passed)
or raises a PortalError naming the reason it failed. None of them writes an
audit record; auth/pipeline.py decides what gets recorded.

Per request the checks run in this order, and the first failure wins:

  1. authenticate()        token -> live Identity, re-read from the store
  2. require_role()        role check, needs no resource lookup
  3. authorize_ownership() resource exists, then owner == caller (admins skip)

Ownership is resolved through a closed table keyed by ResourceKind. Adding
an owned resource type means adding a member to ResourceKind and a row to
_OWNER_LOOKUPS; there is no plugin mechanism.

Layer rule: no imports from api/ or tracker/. The project/task store is
reached only through the OwnershipResolver protocol.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol

from auth.models import STATUS_ACTIVE, STATUS_BLOCKED, Identity, TokenClaims, User
from auth.store import UserStore
from auth.tokens import verify_token
from core.errors import ErrorKind, PortalError

logger = logging.getLogger("portal.auth")

# ---------------------------------------------------------------------------
# Owned resources
# ---------------------------------------------------------------------------


class ResourceKind(str, Enum):
    PROJECT = "project"
    TASK = "task"


@dataclass(frozen=True)
class ResourceRef:
    """A specific owned record. parent_id is the project id for a task."""

    kind: ResourceKind
    id: int
    parent_id: Optional[int] = None


class OwnershipResolver(Protocol):
    """Owner lookups the evaluator needs. Return None for a missing record."""

    def project_owner(self, project_id: int) -> Optional[int]: ...

    def task_owner(self, task_id: int, project_id: Optional[int] = None) -> Optional[int]: ...


_OWNER_LOOKUPS: dict[ResourceKind, Callable[[OwnershipResolver, ResourceRef], Optional[int]]] = {
    ResourceKind.PROJECT: lambda owners, ref: owners.project_owner(ref.id),
    ResourceKind.TASK: lambda owners, ref: owners.task_owner(ref.id, ref.parent_id),
}

_NOT_FOUND_MESSAGES = {
    ResourceKind.PROJECT: "Project not found",
    ResourceKind.TASK: "Task not found",
}


def resolve_owner(owners: OwnershipResolver, ref: ResourceRef) -> Optional[int]:
    """Return the owning identity id of ref, or None if the record does not exist."""
    return _OWNER_LOOKUPS[ref.kind](owners, ref)


# ---------------------------------------------------------------------------
# Step 1: authenticate
# ---------------------------------------------------------------------------


def verify_claims(token: Optional[str]) -> TokenClaims:
    """Verify the presented token, folding every token failure into UNAUTHENTICATED.

    The specific token kind (missing / expired / invalid) is kept as the
    error's reason for the audit trail.
    """
    try:
        return verify_token(token)
    except PortalError as exc:
        raise PortalError(ErrorKind.UNAUTHENTICATED, exc.message, reason=exc.kind) from exc


def resolve_identity(store: UserStore, claims: TokenClaims) -> Identity:
    """Re-read the token's subject from the credential store.

    The store row is authoritative. The role and status embedded in the token
    are ignored, so a block takes effect on the very next request.
    """
    user = store.find_by_id(claims.id)
    if user is None:
        raise PortalError(ErrorKind.ACCOUNT_NOT_FOUND, "User not found")
    if not user.is_active:
        raise PortalError(ErrorKind.ACCOUNT_BLOCKED, "Account is blocked")
    return Identity.from_user(user)


def authenticate(store: UserStore, token: Optional[str]) -> Identity:
    return resolve_identity(store, verify_claims(token))


# ---------------------------------------------------------------------------
# Step 2: role
# ---------------------------------------------------------------------------


def require_role(identity: Identity, roles: Iterable[str]) -> None:
    allowed = frozenset(roles)
    if identity.role not in allowed:
        raise PortalError(
            ErrorKind.INSUFFICIENT_ROLE,
            "Insufficient permissions",
            details=[{"required": sorted(allowed), "current": identity.role}],
        )


# ---------------------------------------------------------------------------
# Step 3: ownership
# ---------------------------------------------------------------------------


def authorize_ownership(identity: Identity, owners: OwnershipResolver, ref: ResourceRef) -> None:
    """Require that identity owns ref.

    Admins skip the check entirely, including the lookup. For everyone else
    existence is checked first, so a caller cannot learn who owns a record
    that does not exist.
    """
    if identity.is_admin:
        return
    owner_id = resolve_owner(owners, ref)
    if owner_id is None:
        raise PortalError(ErrorKind.NOT_FOUND, _NOT_FOUND_MESSAGES[ref.kind])
    if owner_id != identity.id:
        logger.info("Ownership denied: user=%s %s=%s owner=%s", identity.id, ref.kind.value, ref.id, owner_id)
        raise PortalError(ErrorKind.NOT_OWNER, "Access denied")


# ---------------------------------------------------------------------------
# Admin status transitions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class StatusChange:
    user: User  # row after the change
    previous_status: str


def change_status(store: UserStore, target_id: int, new_status: str) -> StatusChange:
    """Move a non-admin identity between active and blocked.

    Raises:
        PortalError(NOT_FOUND):         no such identity.
        PortalError(PROTECTED_ACCOUNT): the target is an admin, whoever asks.
        PortalError(NO_STATE_CHANGE):   the target already has new_status.
        PortalError(STORE_FAILURE):     the store reported no affected row.
    """
    if new_status not in (STATUS_ACTIVE, STATUS_BLOCKED):
        raise ValueError(f"Unknown status: {new_status!r}")

    target = store.find_by_id(target_id)
    if target is None:
        raise PortalError(ErrorKind.NOT_FOUND, "User not found")
    if target.is_admin:
        raise PortalError(ErrorKind.PROTECTED_ACCOUNT, "Cannot change the status of admin users")
    if target.status == new_status:
        raise PortalError(ErrorKind.NO_STATE_CHANGE, f"User is already {new_status}")

    if store.set_status(target_id, new_status) == 0:
        raise PortalError(ErrorKind.STORE_FAILURE, "User status was not updated")
    return StatusChange(user=replace(target, status=new_status), previous_status=target.status)
