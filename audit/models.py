"""
audit/models.py -- Domain dataclasses for the audit trail.

AuditEvent is write-once: the ledger inserts it and never updates or deletes
it. details is an opaque key/value payload; the ledger serializes it to JSON
and does not interpret it.

Layer rule: no imports from api/, auth/, or tracker/.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

RESULT_SUCCESS = "success"
RESULT_FAIL = "fail"


class AuditAction:
    """Closed set of action tags written to audit_logs.action."""

    LOGIN_SUCCESS = "login.success"
    LOGIN_FAIL = "login.fail"
    PROJECT_LIST = "project.list"
    PROJECT_VIEW = "project.view"
    PROJECT_CREATE = "project.create"
    PROJECT_UPDATE = "project.update"
    PROJECT_DELETE = "project.delete"
    TASK_LIST = "task.list"
    TASK_VIEW = "task.view"
    TASK_CREATE = "task.create"
    TASK_UPDATE = "task.update"
    TASK_DELETE = "task.delete"
    PROFILE_VIEW = "auth.profile"
    TOKEN_VERIFY = "auth.verify"
    LOGOUT = "auth.logout"
    ADMIN_USER_BLOCK = "admin.user.block"
    ADMIN_USER_UNBLOCK = "admin.user.unblock"
    ADMIN_USERS_VIEW = "admin.users.view"
    ADMIN_USER_VIEW = "admin.user.view"
    ADMIN_LOGS_VIEW = "admin.logs.view"
    ADMIN_STATS_VIEW = "admin.stats.view"
    ADMIN_PROJECTS_VIEW = "admin.projects.view"


@dataclass
class AuditEvent:
    """One append-only audit record.

    actor_user_id is None when the caller could not be identified (failed
    login for an unknown email, missing or forged token).

    id and ts are None before the record is written; the ledger stamps ts.
    """

    action: str
    result: str = RESULT_SUCCESS  # "success" | "fail"
    actor_user_id: Optional[int] = None
    entity_type: Optional[str] = None
    entity_id: Optional[int] = None
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    details: Optional[dict[str, Any]] = None
    id: Optional[int] = None
    ts: Optional[str] = None  # ISO 8601 UTC


@dataclass
class AuditFilter:
    """Query filters for the admin log view. Unset fields do not filter."""

    action: Optional[str] = None  # substring match
    user_id: Optional[int] = None
    entity_type: Optional[str] = None
    result: Optional[str] = None
    date_from: Optional[str] = None  # UTC ISO 8601 (core.database.to_utc_iso), inclusive
    date_to: Optional[str] = None  # UTC ISO 8601, inclusive


@dataclass
class LoginSummary:
    login_count: int = 0
    last_login: Optional[str] = None


@dataclass
class ActivityStats:
    total_logs: int = 0
    successful_logins: int = 0
    failed_logins: int = 0
    last_24h_activity: int = 0
