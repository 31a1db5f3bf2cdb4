"""
auth/pipeline.py -- Request Authorization Pipeline.

Sequencing for every guarded request:

    authenticate -> require role -> [ownership] -> execute -> audit

Each stage either passes or raises a PortalError. Every failure is written
to the audit ledger before it propagates, tagged with the stage it came from,
so the trail shows denied attempts as well as completed actions. A denied
request never reaches the execute stage: the delegated callable is only
invoked after all checks passed.

The audit capability travels in an explicit RequestContext built by
authenticate(); nothing here reads request-global state.

Login is orchestrated here too (login()), because it shares the rule that
every attempt yields exactly one audit event.

Layer rule: no imports from api/ or tracker/.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from audit.context import AuditContext
from audit.ledger import AuditLedger
from audit.models import RESULT_FAIL, RESULT_SUCCESS
from auth import access
from auth.access import OwnershipResolver, ResourceRef
from auth.models import ClientInfo, Identity, User
from auth.operations import Operation
from auth.store import UserStore
from auth.tokens import LoginRejected, authenticate_user, issue_token
from core.errors import ErrorKind, PortalError

logger = logging.getLogger("portal.auth")

_STORE_FAILURE_MESSAGE = "An unexpected error occurred."


@dataclass(frozen=True)
class RequestContext:
    """What downstream handlers get once a request is authenticated."""

    identity: Identity
    client: ClientInfo
    audit: AuditContext


@dataclass
class Outcome:
    """Optional return wrapper for delegated operations.

    Lets an operation report the entity id and detail payload to audit when
    they are only known after it ran (a freshly created id, the status a user
    had before being blocked).
    """

    value: Any
    entity_id: Optional[int] = None
    details: Optional[dict[str, Any]] = None


class AuthorizationPipeline:
    def __init__(self, users: UserStore, ledger: AuditLedger, owners: OwnershipResolver) -> None:
        self.users = users
        self.ledger = ledger
        self.owners = owners

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def authenticate(self, token: Optional[str], client: ClientInfo, op: Operation) -> RequestContext:
        audit = AuditContext(self.ledger, None, client.ip, client.user_agent)
        actor_id: Optional[int] = None
        try:
            claims = access.verify_claims(token)
            actor_id = claims.id
            identity = access.resolve_identity(self.users, claims)
        except PortalError as exc:
            # actor_id is the token's subject when the token itself was good.
            _record_failure(audit.bind(actor_id), op, exc, "authenticate")
            raise
        return RequestContext(identity=identity, client=client, audit=audit.bind(identity.id))

    def authorize_role(self, ctx: RequestContext, op: Operation) -> None:
        try:
            access.require_role(ctx.identity, op.roles)
        except PortalError as exc:
            logger.info("Role denied: user=%s role=%s action=%s", ctx.identity.id, ctx.identity.role, op.action)
            _record_failure(ctx.audit, op, exc, "authorize")
            raise

    def authorize_resource(self, ctx: RequestContext, op: Operation, resource: ResourceRef) -> None:
        try:
            access.authorize_ownership(ctx.identity, self.owners, resource)
        except PortalError as exc:
            _record_failure(ctx.audit, op, exc, "authorize", entity_id=resource.id)
            raise

    def execute(
        self,
        ctx: RequestContext,
        op: Operation,
        fn: Callable[[], Any],
        entity_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Run the delegated operation and record its outcome.

        PortalErrors raised by fn propagate unchanged. Storage errors become
        STORE_FAILURE; the original exception stays chained as __cause__.
        """
        try:
            result = fn()
        except PortalError as exc:
            _record_failure(ctx.audit, op, exc, "execute", entity_id=entity_id, details=details)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Store failure during %s", op.action)
            failure = PortalError(ErrorKind.STORE_FAILURE, _STORE_FAILURE_MESSAGE)
            _record_failure(ctx.audit, op, failure, "execute", entity_id=entity_id, details=details)
            raise failure from exc

        value = result
        if isinstance(result, Outcome):
            value = result.value
            entity_id = result.entity_id if result.entity_id is not None else entity_id
            if result.details:
                details = {**(details or {}), **result.details}
        if op.audited:
            ctx.audit.record(op.action, op.entity_type, entity_id, RESULT_SUCCESS, details)
        return value

    # ------------------------------------------------------------------
    # Composition
    # ------------------------------------------------------------------

    def perform(
        self,
        ctx: RequestContext,
        op: Operation,
        fn: Callable[[], Any],
        resource: Optional[ResourceRef] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Ownership check (when a resource is named), then execute."""
        if resource is not None:
            self.authorize_resource(ctx, op, resource)
            if entity_id is None:
                entity_id = resource.id
        return self.execute(ctx, op, fn, entity_id=entity_id, details=details)

    def handle(
        self,
        token: Optional[str],
        client: ClientInfo,
        op: Operation,
        fn: Callable[[], Any],
        resource: Optional[ResourceRef] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> Any:
        """Run every stage for one request."""
        ctx = self.authenticate(token, client, op)
        self.authorize_role(ctx, op)
        return self.perform(ctx, op, fn, resource=resource, entity_id=entity_id, details=details)

    # ------------------------------------------------------------------
    # Login
    # ------------------------------------------------------------------

    def login(self, email: str, password: str, client: ClientInfo) -> tuple[User, str]:
        """Check credentials and issue a token. Exactly one audit event per call."""
        audit = AuditContext(self.ledger, None, client.ip, client.user_agent)
        try:
            user = authenticate_user(self.users, email, password)
        except LoginRejected as exc:
            logger.info("Login failed for %s: %s", email, exc.cause)
            audit.record_login(email, success=False, user_id=exc.user_id, error=exc.cause)
            raise
        except SQLAlchemyError as exc:
            logger.exception("Store failure during login for %s", email)
            audit.record_login(email, success=False, error="Store failure")
            raise PortalError(ErrorKind.STORE_FAILURE, _STORE_FAILURE_MESSAGE) from exc
        token = issue_token(user)
        audit.record_login(email, success=True, user_id=user.id)
        return user, token

    def reject_login(self, email: Optional[str], client: ClientInfo, error: str) -> None:
        """Record a login attempt that failed before the credential check (bad input)."""
        AuditContext(self.ledger, None, client.ip, client.user_agent).record_login(email, success=False, error=error)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _record_failure(
    audit: AuditContext,
    op: Operation,
    exc: PortalError,
    stage: str,
    entity_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
) -> None:
    payload = {**(details or {}), "error": exc.audit_tag(), "stage": stage}
    audit.record(op.action, op.entity_type, entity_id, RESULT_FAIL, payload)
