"""
auth/store.py -- SQLAlchemy Core persistence layer for identities (the credential store).

Pattern: Repository + Data Mapper (same as tracker/store.py and audit/ledger.py).
UserStore is the repository; _row_to_user is the mapper. Route, pipeline and
evaluator code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Emails are lower-cased on write and on lookup, so the UNIQUE index on
  users.email gives case-insensitive uniqueness without a functional index.

  The store never deletes users. Status transitions go through set_status(),
  which access.change_status() calls on behalf of an admin action.

Layer rule: no imports from api/, audit/, or tracker/.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import ROLE_ADMIN, ROLE_USER, STATUS_ACTIVE, STATUS_BLOCKED, User
from core.config import get_settings
from core.database import make_engine, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("email", String(255), nullable=False, unique=True),  # always lower-case
    Column("password_hash", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default=ROLE_USER),
    Column("status", String(20), nullable=False, server_default=STATUS_ACTIVE),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore()
        store.create_user(User(email="admin@portal.com", role="admin", password_hash=hash_password("secret")))
        user = store.find_by_email("Admin@Portal.com")
        store.close()
    """

    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups (the interface the access core consumes)
    # ------------------------------------------------------------------

    def find_by_email(self, email: str) -> User | None:
        """Look up a user by email, case-insensitively. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == normalize_email(email))).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_ids(self, user_ids: Iterable[int]) -> dict[int, User]:
        """Batch lookup keyed by id. Unknown ids are simply absent from the result."""
        ids = {i for i in user_ids if i is not None}
        if not ids:
            return {}
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().where(_users.c.id.in_(ids))).fetchall()
        return {row.id: _row_to_user(row) for row in rows}

    def set_status(self, user_id: int, status: str) -> int:
        """Set a user's status. Returns the number of rows affected (0 or 1)."""
        if status not in (STATUS_ACTIVE, STATUS_BLOCKED):
            raise ValueError(f"Unknown status: {status!r}")
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(status=status, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        An explicit user.id is honoured (fixtures and seed scripts use it).
        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        """
        now = now_iso()
        values = {
            "email": normalize_email(user.email),
            "password_hash": user.password_hash,
            "role": user.role,
            "status": user.status,
            "created_at": user.created_at or now,
            "updated_at": now,
        }
        if user.id is not None:
            values["id"] = user.id
        with self.engine.connect() as conn:
            result = conn.execute(_users.insert().values(**values))
            conn.commit()
            return result.inserted_primary_key[0]

    # ------------------------------------------------------------------
    # Admin queries
    # ------------------------------------------------------------------

    def list_users(self, page: int = 1, limit: int = 20, search: str = "") -> tuple[list[User], int]:
        """Return one page of users (newest first) and the total match count.

        search matches a substring of the email or the role.
        """
        where = None
        if search:
            term = search.lower()
            where = or_(
                _users.c.email.contains(term, autoescape=True),
                _users.c.role.contains(term, autoescape=True),
            )

        count_q = select(func.count()).select_from(_users)
        rows_q = _users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())
        if where is not None:
            count_q = count_q.where(where)
            rows_q = rows_q.where(where)
        rows_q = rows_q.limit(limit).offset((page - 1) * limit)

        with self.engine.connect() as conn:
            total = conn.execute(count_q).scalar() or 0
            rows = conn.execute(rows_q).fetchall()
        return [_row_to_user(r) for r in rows], total

    def get_user_counts(self) -> dict[str, int]:
        """Return totals by status and by role for the stats endpoint."""

        def _count_where(condition, label: str):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0).label(label)

        query = select(
            func.count().label("total_users"),
            _count_where(_users.c.status == STATUS_ACTIVE, "active_users"),
            _count_where(_users.c.status == STATUS_BLOCKED, "blocked_users"),
            _count_where(_users.c.role == ROLE_ADMIN, "admin_users"),
            _count_where(_users.c.role == ROLE_USER, "regular_users"),
        ).select_from(_users)
        with self.engine.connect() as conn:
            row = conn.execute(query).one()
        return {key: int(value or 0) for key, value in row._mapping.items()}

    def ids_matching_email(self, fragment: str) -> list[int]:
        """Ids of users whose email contains fragment (admin project search)."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                select(_users.c.id).where(_users.c.email.contains(fragment.lower(), autoescape=True))
            ).fetchall()
        return [row.id for row in rows]

    def count_created_since(self, since_iso: str) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count()).select_from(_users).where(_users.c.created_at >= since_iso)
            ).scalar()
        return result or 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        status=row.status,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
