"""
audit/context.py -- Request-scoped audit capability.

An AuditContext binds the ledger to one request's actor and client details,
so code deep in the pipeline can say ``audit.record(action, ...)`` without
threading ip/user-agent/actor through every call. It is built once per
request and passed explicitly; there is no module-level "current request".

Layer rule: no imports from api/, auth/, or tracker/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from audit.ledger import AuditLedger
from audit.models import RESULT_FAIL, RESULT_SUCCESS, AuditAction, AuditEvent


@dataclass
class AuditContext:
    ledger: AuditLedger
    actor_user_id: Optional[int] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    def bind(self, actor_user_id: Optional[int]) -> "AuditContext":
        """Return a copy attributed to a (newly identified) actor."""
        return AuditContext(self.ledger, actor_user_id, self.ip, self.user_agent)

    def record(
        self,
        action: str,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        result: str = RESULT_SUCCESS,
        details: Optional[dict[str, Any]] = None,
    ) -> Optional[int]:
        """Append one event for this request. Never raises."""
        return self.ledger.record(
            AuditEvent(
                action=action,
                result=result,
                actor_user_id=self.actor_user_id,
                entity_type=entity_type,
                entity_id=entity_id,
                ip=self.ip,
                user_agent=self.user_agent,
                details=details,
            )
        )

    def record_login(
        self,
        email: Optional[str],
        success: bool,
        user_id: Optional[int] = None,
        error: Optional[str] = None,
    ) -> Optional[int]:
        """Record one login attempt.

        The attempted email is always kept in details, including for unknown
        accounts, so guessing and enumeration attempts stay visible.
        """
        details: dict[str, Any] = {"email": email}
        if not success:
            details["error"] = error
        return self.bind(user_id).record(
            AuditAction.LOGIN_SUCCESS if success else AuditAction.LOGIN_FAIL,
            entity_type="user",
            entity_id=user_id,
            result=RESULT_SUCCESS if success else RESULT_FAIL,
            details=details,
        )
