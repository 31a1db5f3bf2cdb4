"""
api/routes/v1/admin.py -- Administration endpoints (admin role only).

Routes:
  GET /admin/users                    -- paginated users, search by email/role
  GET /admin/users/{user_id}          -- user detail with activity aggregates
  PUT /admin/users/{user_id}/block    -- block a non-admin account
  PUT /admin/users/{user_id}/unblock  -- unblock a non-admin account
  GET /admin/logs                     -- filtered, paginated audit trail
  GET /admin/stats                    -- system-wide counters
  GET /admin/projects                 -- all projects, search by name/owner email

Every route here is an ADMIN_ONLY Operation, so a non-admin caller is
refused (and audited) by the require() dependency before any handler runs.
Admin accounts can never be blocked or unblocked here, not even by another
admin; see auth.access.change_status().

Cross-store aggregates (users x projects x audit events) are composed here
from each store's own queries. No store reads another store's tables.
"""

from __future__ import annotations

from dataclasses import asdict
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    AdminProjectListResponse,
    AdminProjectRow,
    AuditLogListResponse,
    AuditLogRow,
    Pagination,
    ProjectResponse,
    StatsResponse,
    StatusChangeResponse,
    TopUserRow,
    UserDetailResponse,
    UserInfo,
    UserListResponse,
    UserRow,
)
from audit.models import AuditEvent, AuditFilter
from auth import access, operations
from auth.dependencies import get_pipeline, require
from auth.models import STATUS_ACTIVE, STATUS_BLOCKED, User
from auth.operations import Operation
from auth.pipeline import Outcome, RequestContext
from core.database import to_utc_iso
from core.errors import ErrorKind, PortalError

router = APIRouter(prefix="/admin")

_TOP_USERS = 5
_RECENT_PROJECTS = 5
_RECENT_ACTIVITY = 10


def _log_rows(events: list[AuditEvent], actors: dict[int, User]) -> list[AuditLogRow]:
    rows = []
    for e in events:
        actor = actors.get(e.actor_user_id) if e.actor_user_id is not None else None
        rows.append(
            AuditLogRow(
                id=e.id,
                ts=e.ts,
                actor_user_id=e.actor_user_id,
                actor_email=actor.email if actor else None,
                actor_role=actor.role if actor else None,
                action=e.action,
                entity_type=e.entity_type,
                entity_id=e.entity_id,
                result=e.result,
                ip=e.ip,
                user_agent=e.user_agent,
                details=e.details,
            )
        )
    return rows


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/users", response_model=UserListResponse)
def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = Query("", max_length=255),
    ctx: RequestContext = Depends(require(operations.ADMIN_USERS_VIEW)),
) -> UserListResponse:
    state = request.app.state

    def _list() -> UserListResponse:
        users, total = state.user_store.list_users(page=page, limit=limit, search=search.strip())
        ids = [u.id for u in users]
        project_counts = state.tracker.project_counts_by_owner(ids)
        last_logins = state.ledger.last_logins(ids)
        rows = [
            UserRow(
                id=u.id,
                email=u.email,
                role=u.role,
                status=u.status,
                created_at=u.created_at,
                project_count=project_counts.get(u.id, 0),
                last_login=last_logins.get(u.id),
            )
            for u in users
        ]
        return UserListResponse(users=rows, pagination=Pagination.build(page, limit, total))

    return get_pipeline(request).perform(
        ctx, operations.ADMIN_USERS_VIEW, _list, details={"page": page, "search": search or None}
    )


@router.get("/users/{user_id}", response_model=UserDetailResponse)
def get_user(
    request: Request, user_id: int, ctx: RequestContext = Depends(require(operations.ADMIN_USER_VIEW))
) -> UserDetailResponse:
    state = request.app.state

    def _detail() -> UserDetailResponse:
        user = state.user_store.find_by_id(user_id)
        if user is None:
            raise PortalError(ErrorKind.NOT_FOUND, "User not found")
        logins = state.ledger.login_summary(user_id)
        recent = state.tracker.recent_projects(user_id, limit=_RECENT_PROJECTS)
        activity = state.ledger.recent_for_actor(user_id, limit=_RECENT_ACTIVITY)
        return UserDetailResponse(
            id=user.id,
            email=user.email,
            role=user.role,
            status=user.status,
            created_at=user.created_at,
            project_count=state.tracker.project_counts_by_owner([user_id]).get(user_id, 0),
            task_count=state.tracker.task_count_for_owner(user_id),
            login_count=logins.login_count,
            last_login=logins.last_login,
            recent_projects=[
                ProjectResponse(
                    id=p.id,
                    name=p.name,
                    description=p.description,
                    owner_id=p.owner_id,
                    created_at=p.created_at,
                    updated_at=p.updated_at,
                )
                for p in recent
            ],
            recent_activity=_log_rows(activity, {user.id: user}),
        )

    return get_pipeline(request).perform(ctx, operations.ADMIN_USER_VIEW, _detail, entity_id=user_id)


def _change_status(request: Request, ctx: RequestContext, op: Operation, user_id: int, new_status: str):
    users = request.app.state.user_store

    def _apply() -> Outcome:
        change = access.change_status(users, user_id, new_status)
        return Outcome(
            change,
            entity_id=user_id,
            details={"target_email": change.user.email, "previous_status": change.previous_status},
        )

    return get_pipeline(request).perform(ctx, op, _apply, entity_id=user_id)


@router.put("/users/{user_id}/block", response_model=StatusChangeResponse)
def block_user(
    request: Request, user_id: int, ctx: RequestContext = Depends(require(operations.ADMIN_USER_BLOCK))
) -> StatusChangeResponse:
    """Block an account. Outstanding tokens stop working on their next request."""
    change = _change_status(request, ctx, operations.ADMIN_USER_BLOCK, user_id, STATUS_BLOCKED)
    u = change.user
    return StatusChangeResponse(
        message="User blocked successfully",
        user=UserInfo(id=u.id, email=u.email, role=u.role, status=u.status),
        previous_status=change.previous_status,
    )


@router.put("/users/{user_id}/unblock", response_model=StatusChangeResponse)
def unblock_user(
    request: Request, user_id: int, ctx: RequestContext = Depends(require(operations.ADMIN_USER_UNBLOCK))
) -> StatusChangeResponse:
    change = _change_status(request, ctx, operations.ADMIN_USER_UNBLOCK, user_id, STATUS_ACTIVE)
    u = change.user
    return StatusChangeResponse(
        message="User unblocked successfully",
        user=UserInfo(id=u.id, email=u.email, role=u.role, status=u.status),
        previous_status=change.previous_status,
    )


# ---------------------------------------------------------------------------
# Audit trail
# ---------------------------------------------------------------------------


@router.get("/logs", response_model=AuditLogListResponse)
def list_logs(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    action: Optional[str] = Query(None, max_length=100),
    user_id: Optional[int] = Query(None),
    entity_type: Optional[str] = Query(None, max_length=50),
    result: Optional[str] = Query(None, pattern="^(success|fail)$"),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    ctx: RequestContext = Depends(require(operations.ADMIN_LOGS_VIEW)),
) -> AuditLogListResponse:
    """Return audit events newest first. The view itself is audited afterwards.

    date_from and date_to are ISO 8601 instants; offsets are honoured and naive
    values are read as UTC.
    """
    state = request.app.state
    filters = AuditFilter(
        action=action,
        user_id=user_id,
        entity_type=entity_type,
        result=result,
        date_from=to_utc_iso(date_from) if date_from else None,
        date_to=to_utc_iso(date_to) if date_to else None,
    )

    def _list() -> AuditLogListResponse:
        events, total = state.ledger.list_events(filters, page=page, limit=limit)
        actors = state.user_store.find_by_ids(e.actor_user_id for e in events)
        return AuditLogListResponse(logs=_log_rows(events, actors), pagination=Pagination.build(page, limit, total))

    applied = {k: v for k, v in asdict(filters).items() if v is not None}
    return get_pipeline(request).perform(
        ctx, operations.ADMIN_LOGS_VIEW, _list, details={"page": page, "filters": applied}
    )


# ---------------------------------------------------------------------------
# Statistics and overview
# ---------------------------------------------------------------------------


@router.get("/stats", response_model=StatsResponse)
def stats(request: Request, ctx: RequestContext = Depends(require(operations.ADMIN_STATS_VIEW))) -> StatsResponse:
    state = request.app.state

    def _stats() -> StatsResponse:
        week_ago = (datetime.now(timezone.utc) - timedelta(days=7)).isoformat()
        by_owner = state.tracker.project_counts_by_owner()
        top = sorted(by_owner.items(), key=lambda item: (-item[1], item[0]))[:_TOP_USERS]
        owners = state.user_store.find_by_ids(owner_id for owner_id, _count in top)
        return StatsResponse(
            users=state.user_store.get_user_counts(),
            projects={"total_projects": state.tracker.count_projects()},
            tasks=state.tracker.get_task_counts(),
            activity=asdict(state.ledger.activity_stats()),
            recent_registrations=state.user_store.count_created_since(week_ago),
            top_users=[
                TopUserRow(id=owner_id, email=owners[owner_id].email, project_count=count)
                for owner_id, count in top
                if owner_id in owners
            ],
        )

    return get_pipeline(request).perform(ctx, operations.ADMIN_STATS_VIEW, _stats)


@router.get("/projects", response_model=AdminProjectListResponse)
def list_all_projects(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    search: str = Query("", max_length=255),
    ctx: RequestContext = Depends(require(operations.ADMIN_PROJECTS_VIEW)),
) -> AdminProjectListResponse:
    """All projects across owners. search matches the name or the owner's email."""
    state = request.app.state
    term = search.strip()

    def _list() -> AdminProjectListResponse:
        owner_ids = state.user_store.ids_matching_email(term) if term else None
        projects, total = state.tracker.page_projects(page=page, limit=limit, name_search=term, owner_ids=owner_ids)
        owners = state.user_store.find_by_ids(p.owner_id for p in projects)
        rows = [
            AdminProjectRow(
                id=p.id,
                name=p.name,
                description=p.description,
                owner_id=p.owner_id,
                owner_email=owners[p.owner_id].email if p.owner_id in owners else None,
                created_at=p.created_at,
                updated_at=p.updated_at,
                task_count=p.task_count,
                completed_tasks=p.completed_tasks,
            )
            for p in projects
        ]
        return AdminProjectListResponse(projects=rows, pagination=Pagination.build(page, limit, total))

    return get_pipeline(request).perform(
        ctx, operations.ADMIN_PROJECTS_VIEW, _list, details={"page": page, "search": term or None}
    )
