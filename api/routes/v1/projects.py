"""
api/routes/v1/projects.py -- Ownership-scoped project and task routes.

Routes (tasks are always addressed through their parent project):
  GET    /projects                              -- own projects (admin: all)
  POST   /projects                              -- create; owner = caller
  GET    /projects/{project_id}                 -- detail
  PATCH  /projects/{project_id}                 -- update name/description
  DELETE /projects/{project_id}                 -- delete project and its tasks
  GET    /projects/{project_id}/tasks           -- list tasks
  POST   /projects/{project_id}/tasks           -- create task
  GET    /projects/{project_id}/tasks/{task_id} -- task detail
  PATCH  /projects/{project_id}/tasks/{task_id} -- update task
  DELETE /projects/{project_id}/tasks/{task_id} -- delete task

Every route names its Operation; every route that addresses a specific
project or task passes a ResourceRef so the pipeline checks ownership
before the store is touched. Admins skip the ownership lookup, so the
handlers themselves still answer NOT_FOUND for missing records.

Bodies are read through api.body.json_body and validated inside the execute
stage, so the caller is authenticated first and rejected input is audited
like any other failed operation.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from api.body import json_body, validate_body
from api.models import (
    MessageResponse,
    ProjectCreate,
    ProjectResponse,
    ProjectUpdate,
    TaskCreate,
    TaskResponse,
    TaskUpdate,
)
from auth import operations
from auth.access import ResourceKind, ResourceRef
from auth.dependencies import get_pipeline, require
from auth.pipeline import Outcome, RequestContext
from core.errors import ErrorKind, PortalError
from tracker.models import Project, Task
from tracker.store import TrackerStore

router = APIRouter()


def _tracker(request: Request) -> TrackerStore:
    return request.app.state.tracker


def _project_or_404(tracker: TrackerStore, project_id: int) -> Project:
    project = tracker.get_project(project_id)
    if project is None:
        raise PortalError(ErrorKind.NOT_FOUND, "Project not found")
    return project


def _task_or_404(tracker: TrackerStore, task_id: int, project_id: int) -> Task:
    task = tracker.get_task(task_id, project_id)
    if task is None:
        raise PortalError(ErrorKind.NOT_FOUND, "Task not found")
    return task


def _project_response(project: Project) -> ProjectResponse:
    return ProjectResponse(
        id=project.id,
        name=project.name,
        description=project.description,
        owner_id=project.owner_id,
        created_at=project.created_at,
        updated_at=project.updated_at,
        task_count=project.task_count,
        completed_tasks=project.completed_tasks,
    )


def _task_response(task: Task) -> TaskResponse:
    return TaskResponse(
        id=task.id,
        project_id=task.project_id,
        title=task.title,
        description=task.description,
        status=task.status,
        created_at=task.created_at,
        updated_at=task.updated_at,
    )


def _changes(body: ProjectUpdate | TaskUpdate, required: tuple[str, ...]) -> dict:
    """Fields the client actually sent. A null for a required column is ignored."""
    fields = body.model_dump(exclude_unset=True, mode="json")
    return {k: v for k, v in fields.items() if v is not None or k not in required}


# ---------------------------------------------------------------------------
# Projects
# ---------------------------------------------------------------------------


@router.get("/projects", response_model=list[ProjectResponse])
def list_projects(
    request: Request, ctx: RequestContext = Depends(require(operations.PROJECT_LIST))
) -> list[ProjectResponse]:
    """Return the caller's projects, or every project for an admin."""
    tracker = _tracker(request)
    owner_id = None if ctx.identity.is_admin else ctx.identity.id
    projects = get_pipeline(request).perform(
        ctx, operations.PROJECT_LIST, lambda: tracker.list_projects(owner_id=owner_id)
    )
    return [_project_response(p) for p in projects]


@router.post("/projects", response_model=ProjectResponse, status_code=201)
def create_project(
    request: Request,
    ctx: RequestContext = Depends(require(operations.PROJECT_CREATE)),
    payload: Any = Depends(json_body),
) -> ProjectResponse:
    tracker = _tracker(request)

    def _create() -> Outcome:
        body = validate_body(ProjectCreate, payload)
        project_id = tracker.create_project(
            Project(name=body.name, description=body.description, owner_id=ctx.identity.id)
        )
        return Outcome(tracker.get_project(project_id), entity_id=project_id, details={"name": body.name})

    project = get_pipeline(request).perform(ctx, operations.PROJECT_CREATE, _create)
    return _project_response(project)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
def get_project(
    request: Request, project_id: int, ctx: RequestContext = Depends(require(operations.PROJECT_VIEW))
) -> ProjectResponse:
    tracker = _tracker(request)
    project = get_pipeline(request).perform(
        ctx,
        operations.PROJECT_VIEW,
        lambda: _project_or_404(tracker, project_id),
        resource=ResourceRef(ResourceKind.PROJECT, project_id),
    )
    return _project_response(project)


@router.patch("/projects/{project_id}", response_model=ProjectResponse)
def update_project(
    request: Request,
    project_id: int,
    ctx: RequestContext = Depends(require(operations.PROJECT_UPDATE)),
    payload: Any = Depends(json_body),
) -> ProjectResponse:
    tracker = _tracker(request)

    def _update() -> Outcome:
        changes = _changes(validate_body(ProjectUpdate, payload), required=("name",))
        _project_or_404(tracker, project_id)
        if changes:
            tracker.update_project(project_id, **changes)
        return Outcome(tracker.get_project(project_id), details={"changes": sorted(changes)})

    project = get_pipeline(request).perform(
        ctx,
        operations.PROJECT_UPDATE,
        _update,
        resource=ResourceRef(ResourceKind.PROJECT, project_id),
    )
    return _project_response(project)


@router.delete("/projects/{project_id}", response_model=MessageResponse)
def delete_project(
    request: Request, project_id: int, ctx: RequestContext = Depends(require(operations.PROJECT_DELETE))
) -> MessageResponse:
    tracker = _tracker(request)

    def _delete() -> Outcome:
        project = _project_or_404(tracker, project_id)
        tracker.delete_project(project_id)
        return Outcome(None, details={"name": project.name, "owner_id": project.owner_id})

    get_pipeline(request).perform(
        ctx,
        operations.PROJECT_DELETE,
        _delete,
        resource=ResourceRef(ResourceKind.PROJECT, project_id),
    )
    return MessageResponse(message="Project deleted successfully")


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@router.get("/projects/{project_id}/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request, project_id: int, ctx: RequestContext = Depends(require(operations.TASK_LIST))
) -> list[TaskResponse]:
    tracker = _tracker(request)

    def _list() -> list[Task]:
        _project_or_404(tracker, project_id)
        return tracker.list_tasks(project_id)

    tasks = get_pipeline(request).perform(
        ctx,
        operations.TASK_LIST,
        _list,
        resource=ResourceRef(ResourceKind.PROJECT, project_id),
    )
    return [_task_response(t) for t in tasks]


@router.post("/projects/{project_id}/tasks", response_model=TaskResponse, status_code=201)
def create_task(
    request: Request,
    project_id: int,
    ctx: RequestContext = Depends(require(operations.TASK_CREATE)),
    payload: Any = Depends(json_body),
) -> TaskResponse:
    """Create a task. Ownership is checked against the parent project."""
    tracker = _tracker(request)

    def _create() -> Outcome:
        body = validate_body(TaskCreate, payload)
        _project_or_404(tracker, project_id)
        task_id = tracker.create_task(
            Task(project_id=project_id, title=body.title, description=body.description, status=body.status.value)
        )
        return Outcome(tracker.get_task(task_id, project_id), entity_id=task_id, details={"title": body.title})

    task = get_pipeline(request).perform(
        ctx,
        operations.TASK_CREATE,
        _create,
        resource=ResourceRef(ResourceKind.PROJECT, project_id),
        details={"project_id": project_id},
    )
    return _task_response(task)


@router.get("/projects/{project_id}/tasks/{task_id}", response_model=TaskResponse)
def get_task(
    request: Request,
    project_id: int,
    task_id: int,
    ctx: RequestContext = Depends(require(operations.TASK_VIEW)),
) -> TaskResponse:
    tracker = _tracker(request)
    task = get_pipeline(request).perform(
        ctx,
        operations.TASK_VIEW,
        lambda: _task_or_404(tracker, task_id, project_id),
        resource=ResourceRef(ResourceKind.TASK, task_id, parent_id=project_id),
        details={"project_id": project_id},
    )
    return _task_response(task)


@router.patch("/projects/{project_id}/tasks/{task_id}", response_model=TaskResponse)
def update_task(
    request: Request,
    project_id: int,
    task_id: int,
    ctx: RequestContext = Depends(require(operations.TASK_UPDATE)),
    payload: Any = Depends(json_body),
) -> TaskResponse:
    tracker = _tracker(request)

    def _update() -> Outcome:
        changes = _changes(validate_body(TaskUpdate, payload), required=("title", "status"))
        _task_or_404(tracker, task_id, project_id)
        if changes:
            tracker.update_task(task_id, project_id, **changes)
        return Outcome(tracker.get_task(task_id, project_id), details={"changes": sorted(changes)})

    task = get_pipeline(request).perform(
        ctx,
        operations.TASK_UPDATE,
        _update,
        resource=ResourceRef(ResourceKind.TASK, task_id, parent_id=project_id),
        details={"project_id": project_id},
    )
    return _task_response(task)


@router.delete("/projects/{project_id}/tasks/{task_id}", response_model=MessageResponse)
def delete_task(
    request: Request,
    project_id: int,
    task_id: int,
    ctx: RequestContext = Depends(require(operations.TASK_DELETE)),
) -> MessageResponse:
    tracker = _tracker(request)

    def _delete() -> None:
        _task_or_404(tracker, task_id, project_id)
        tracker.delete_task(task_id, project_id)

    get_pipeline(request).perform(
        ctx,
        operations.TASK_DELETE,
        _delete,
        resource=ResourceRef(ResourceKind.TASK, task_id, parent_id=project_id),
        details={"project_id": project_id},
    )
    return MessageResponse(message="Task deleted successfully")
