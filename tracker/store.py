"""
tracker/store.py -- SQLAlchemy-backed persistence for projects and tasks.

Uses SQLAlchemy Core (not ORM) so the dataclasses in tracker/models.py remain
the authoritative domain representation.

Pattern: Repository + Data Mapper. TrackerStore is the repository; the
_row_to_* functions are the mappers. Route handlers never touch SQL directly.

This store knows nothing about roles. It answers two kinds of questions:
  - plain row reads/writes for the project and task routes, and
  - ownership lookups (project_owner / task_owner), which satisfy the
    OwnershipResolver protocol that auth/access.py consumes.
Callers only reach the write methods after auth/pipeline.py has authorized
the request.

Security: all queries use bound parameters. No f-strings in SQL.

Usage:
    store = TrackerStore()
    project_id = store.create_project(Project(name="Site", owner_id=7))
    store.project_owner(project_id)   # -> 7
    store.close()
"""

from typing import Iterable, Optional

from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table, Text, case, func, or_, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.database import make_engine, now_iso
from tracker.models import Project, Task

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_projects = Table(
    "projects",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("description", Text),
    Column("owner_id", Integer, nullable=False, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_tasks = Table(
    "tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("project_id", Integer, ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("description", Text),
    Column("status", String(20), nullable=False, server_default="new"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


def _count_where(condition):
    return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)


def _project_summary_query():
    """Projects LEFT JOIN tasks with per-project task_count / completed_tasks."""
    return (
        select(
            _projects,
            func.count(_tasks.c.id).label("task_count"),
            _count_where(_tasks.c.status == "done").label("completed_tasks"),
        )
        .select_from(_projects.outerjoin(_tasks, _tasks.c.project_id == _projects.c.id))
        .group_by(*_projects.c)
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class TrackerStore:
    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Ownership lookups (OwnershipResolver protocol)
    # ------------------------------------------------------------------

    def project_owner(self, project_id: int) -> Optional[int]:
        """Return the owner id of a project, or None if it does not exist."""
        with self.engine.connect() as conn:
            return conn.execute(select(_projects.c.owner_id).where(_projects.c.id == project_id)).scalar()

    def task_owner(self, task_id: int, project_id: Optional[int] = None) -> Optional[int]:
        """Return the owner id of a task via its parent project, or None.

        When project_id is given the task must belong to that project; a task
        addressed through the wrong project does not exist as far as the
        caller is concerned.
        """
        query = (
            select(_projects.c.owner_id)
            .select_from(_tasks.join(_projects, _tasks.c.project_id == _projects.c.id))
            .where(_tasks.c.id == task_id)
        )
        if project_id is not None:
            query = query.where(_tasks.c.project_id == project_id)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar()

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    def create_project(self, project: Project) -> int:
        """Insert a new project and return its assigned database ID.

        An explicit project.id is honoured (fixtures and seed scripts use it).
        """
        now = now_iso()
        values = {
            "name": project.name,
            "description": project.description,
            "owner_id": project.owner_id,
            "created_at": project.created_at or now,
            "updated_at": now,
        }
        if project.id is not None:
            values["id"] = project.id
        with self.engine.connect() as conn:
            result = conn.execute(_projects.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    def get_project(self, project_id: int) -> Optional[Project]:
        """Fetch a single project with task counters. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_project_summary_query().where(_projects.c.id == project_id)).fetchone()
        return _row_to_project(row) if row is not None else None

    def list_projects(self, owner_id: Optional[int] = None) -> list[Project]:
        """Return projects newest first; only those of owner_id when given."""
        query = _project_summary_query().order_by(_projects.c.created_at.desc(), _projects.c.id.desc())
        if owner_id is not None:
            query = query.where(_projects.c.owner_id == owner_id)
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return [_row_to_project(r) for r in rows]

    def page_projects(
        self,
        page: int = 1,
        limit: int = 20,
        name_search: str = "",
        owner_ids: Optional[Iterable[int]] = None,
    ) -> tuple[list[Project], int]:
        """Admin overview: one page of all projects plus the total match count.

        A project matches when its name contains name_search OR its owner is
        in owner_ids (the caller resolves owner-email matches to ids).
        """
        where = None
        if name_search:
            clauses = [_projects.c.name.contains(name_search, autoescape=True)]
            ids = list(owner_ids or [])
            if ids:
                clauses.append(_projects.c.owner_id.in_(ids))
            where = or_(*clauses)

        count_q = select(func.count()).select_from(_projects)
        rows_q = _project_summary_query().order_by(_projects.c.created_at.desc(), _projects.c.id.desc())
        if where is not None:
            count_q = count_q.where(where)
            rows_q = rows_q.where(where)
        rows_q = rows_q.limit(limit).offset((page - 1) * limit)

        with self.engine.connect() as conn:
            total = conn.execute(count_q).scalar() or 0
            rows = conn.execute(rows_q).fetchall()
        return [_row_to_project(r) for r in rows], total

    def update_project(self, project_id: int, **fields) -> bool:
        """Update name and/or description. Returns True if a row was updated."""
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_projects.update().where(_projects.c.id == project_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_project(self, project_id: int) -> bool:
        """Delete a project and its tasks. Returns True if the project existed."""
        with self.engine.connect() as conn:
            conn.execute(_tasks.delete().where(_tasks.c.project_id == project_id))
            result = conn.execute(_projects.delete().where(_projects.c.id == project_id))
            conn.commit()
        return result.rowcount > 0

    def recent_projects(self, owner_id: int, limit: int = 5) -> list[Project]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _projects.select()
                .where(_projects.c.owner_id == owner_id)
                .order_by(_projects.c.created_at.desc(), _projects.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_project(r) for r in rows]

    # ------------------------------------------------------------------
    # Tasks (always addressed through their parent project)
    # ------------------------------------------------------------------

    def create_task(self, task: Task) -> int:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.insert().values(
                    project_id=task.project_id,
                    title=task.title,
                    description=task.description,
                    status=task.status,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_task(self, task_id: int, project_id: int) -> Optional[Task]:
        with self.engine.connect() as conn:
            row = conn.execute(
                _tasks.select().where((_tasks.c.id == task_id) & (_tasks.c.project_id == project_id))
            ).fetchone()
        return _row_to_task(row) if row is not None else None

    def list_tasks(self, project_id: int) -> list[Task]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _tasks.select()
                .where(_tasks.c.project_id == project_id)
                .order_by(_tasks.c.created_at.desc(), _tasks.c.id.desc())
            ).fetchall()
        return [_row_to_task(r) for r in rows]

    def update_task(self, task_id: int, project_id: int, **fields) -> bool:
        """Update title/description/status. Returns True if a row was updated."""
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.update()
                .where((_tasks.c.id == task_id) & (_tasks.c.project_id == project_id))
                .values(**fields)
            )
            conn.commit()
        return result.rowcount > 0

    def delete_task(self, task_id: int, project_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _tasks.delete().where((_tasks.c.id == task_id) & (_tasks.c.project_id == project_id))
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Aggregates (admin user detail and stats)
    # ------------------------------------------------------------------

    def count_projects(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_projects)).scalar() or 0

    def get_task_counts(self) -> dict[str, int]:
        """Return task totals overall and per status."""
        query = select(
            func.count().label("total_tasks"),
            _count_where(_tasks.c.status == "new").label("new_tasks"),
            _count_where(_tasks.c.status == "in_progress").label("in_progress_tasks"),
            _count_where(_tasks.c.status == "done").label("completed_tasks"),
        ).select_from(_tasks)
        with self.engine.connect() as conn:
            row = conn.execute(query).one()
        return {key: int(value or 0) for key, value in row._mapping.items()}

    def project_counts_by_owner(self, owner_ids: Optional[Iterable[int]] = None) -> dict[int, int]:
        """Map owner id -> number of projects. Owners with none are absent."""
        query = select(_projects.c.owner_id, func.count()).group_by(_projects.c.owner_id)
        if owner_ids is not None:
            query = query.where(_projects.c.owner_id.in_(list(owner_ids)))
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return {owner: count for owner, count in rows}

    def task_count_for_owner(self, owner_id: int) -> int:
        query = (
            select(func.count())
            .select_from(_tasks.join(_projects, _tasks.c.project_id == _projects.c.id))
            .where(_projects.c.owner_id == owner_id)
        )
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_project(row) -> Project:
    # task_count / completed_tasks only exist on summary-query rows.
    return Project(
        id=row.id,
        name=row.name,
        description=row.description,
        owner_id=row.owner_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
        task_count=int(getattr(row, "task_count", 0) or 0),
        completed_tasks=int(getattr(row, "completed_tasks", 0) or 0),
    )


def _row_to_task(row) -> Task:
    return Task(
        id=row.id,
        project_id=row.project_id,
        title=row.title,
        description=row.description,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
