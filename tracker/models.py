"""
tracker/models.py -- Domain dataclasses for projects and tasks.

These are pure data containers with zero logic. Persistence lives in
tracker/store.py; who may touch which record is decided by auth/access.py.

Ownership: a Project carries owner_id. A Task has no owner of its own -- it
is owned transitively through its parent project.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass
class Project:
    """A project owned by one identity.

    id is None before the record is written to the database.
    """

    name: str
    owner_id: int
    description: Optional[str] = None
    id: Optional[int] = None
    created_at: str = ""  # ISO 8601, set by store on insert
    updated_at: str = ""
    # Read-side enrichment, filled by list/get queries only
    task_count: int = 0
    completed_tasks: int = 0


@dataclass
class Task:
    """A unit of work inside a project.

    id is None before the record is written to the database.
    """

    project_id: int
    title: str
    description: Optional[str] = None
    status: str = "new"  # "new" | "in_progress" | "done"
    id: Optional[int] = None
    created_at: str = ""
    updated_at: str = ""
