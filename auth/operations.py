"""
auth/operations.py -- Catalogue of guarded operations.

Every route that needs an authenticated caller names one Operation from this
module. The Operation fixes the audit action tag, the entity type written to
audit_logs, and the roles allowed to call it, so those three facts cannot
drift apart between routes.

audited=False marks plain reads whose successes are not written to the
ledger (listing your own projects, checking your own token). Failures of
every operation are always recorded.
"""

from dataclasses import dataclass
from typing import Optional

from audit.models import AuditAction
from auth.models import ROLE_ADMIN, ROLE_USER

ANY_ROLE = frozenset({ROLE_USER, ROLE_ADMIN})
ADMIN_ONLY = frozenset({ROLE_ADMIN})


@dataclass(frozen=True)
class Operation:
    action: str
    entity_type: Optional[str]
    roles: frozenset = ANY_ROLE
    audited: bool = True


# Session
PROFILE_VIEW = Operation(AuditAction.PROFILE_VIEW, "user", audited=False)
TOKEN_VERIFY = Operation(AuditAction.TOKEN_VERIFY, "user", audited=False)
LOGOUT = Operation(AuditAction.LOGOUT, "user")

# Projects
PROJECT_LIST = Operation(AuditAction.PROJECT_LIST, "project", audited=False)
PROJECT_VIEW = Operation(AuditAction.PROJECT_VIEW, "project")
PROJECT_CREATE = Operation(AuditAction.PROJECT_CREATE, "project")
PROJECT_UPDATE = Operation(AuditAction.PROJECT_UPDATE, "project")
PROJECT_DELETE = Operation(AuditAction.PROJECT_DELETE, "project")

# Tasks
TASK_LIST = Operation(AuditAction.TASK_LIST, "task", audited=False)
TASK_VIEW = Operation(AuditAction.TASK_VIEW, "task")
TASK_CREATE = Operation(AuditAction.TASK_CREATE, "task")
TASK_UPDATE = Operation(AuditAction.TASK_UPDATE, "task")
TASK_DELETE = Operation(AuditAction.TASK_DELETE, "task")

# Administration
ADMIN_USERS_VIEW = Operation(AuditAction.ADMIN_USERS_VIEW, "user", ADMIN_ONLY)
ADMIN_USER_VIEW = Operation(AuditAction.ADMIN_USER_VIEW, "user", ADMIN_ONLY)
ADMIN_USER_BLOCK = Operation(AuditAction.ADMIN_USER_BLOCK, "user", ADMIN_ONLY)
ADMIN_USER_UNBLOCK = Operation(AuditAction.ADMIN_USER_UNBLOCK, "user", ADMIN_ONLY)
ADMIN_LOGS_VIEW = Operation(AuditAction.ADMIN_LOGS_VIEW, "audit_log", ADMIN_ONLY)
ADMIN_STATS_VIEW = Operation(AuditAction.ADMIN_STATS_VIEW, "system", ADMIN_ONLY)
ADMIN_PROJECTS_VIEW = Operation(AuditAction.ADMIN_PROJECTS_VIEW, "project", ADMIN_ONLY)
