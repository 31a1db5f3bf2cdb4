"""
audit/ledger.py -- Append-only audit ledger backed by SQLAlchemy Core.

Pattern: Repository + Data Mapper (same as auth/store.py). AuditLedger is the
repository; _row_to_event is the mapper.

Write side:
  record() is fire-and-forget. Any failure to persist an event (database
  down, unserializable detail payload, closed engine) is logged on the
  "portal.audit" logger with kind audit_write_failure and then dropped. It
  is never raised to the caller and never rolls back the operation being
  audited. No retries, no buffering: delivery is at-most-once.

  There is no update or delete method. Rows are write-once.

Read side:
  Filtered, paginated listing for the admin log view plus the small
  aggregates the admin user detail and stats endpoints need.

Layer rule: no imports from api/, auth/, or tracker/. core/ is allowed.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, case, func, select
from sqlalchemy.engine import Engine

from audit.models import RESULT_SUCCESS, ActivityStats, AuditAction, AuditEvent, AuditFilter, LoginSummary
from core.config import get_settings
from core.database import make_engine, now_iso
from core.errors import ErrorKind

logger = logging.getLogger("portal.audit")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("ts", String(32), nullable=False, index=True),
    Column("actor_user_id", Integer, index=True),
    Column("action", String(100), nullable=False, index=True),
    Column("entity_type", String(50)),
    Column("entity_id", Integer),
    Column("result", String(10), nullable=False, server_default=RESULT_SUCCESS),
    Column("ip", String(45)),
    Column("user_agent", Text),
    Column("details", Text),  # JSON object serialized as text
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditLedger:
    """Repository for AuditEvent records.

    Usage:
        ledger = AuditLedger()
        ledger.record(AuditEvent(action=AuditAction.LOGIN_SUCCESS, actor_user_id=1))
        events, total = ledger.list_events(AuditFilter(user_id=1))
        ledger.close()
    """

    def __init__(self, db_url: Optional[str] = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Write side
    # ------------------------------------------------------------------

    def record(self, audit_event: AuditEvent) -> Optional[int]:
        """Persist one event. Returns its id, or None if the write was dropped."""
        try:
            details = json.dumps(audit_event.details, default=str) if audit_event.details else None
            with self.engine.connect() as conn:
                result = conn.execute(
                    _audit_logs.insert().values(
                        ts=audit_event.ts or now_iso(),
                        actor_user_id=audit_event.actor_user_id,
                        action=audit_event.action,
                        entity_type=audit_event.entity_type,
                        entity_id=audit_event.entity_id,
                        result=audit_event.result,
                        ip=audit_event.ip,
                        user_agent=audit_event.user_agent,
                        details=details,
                    )
                )
                conn.commit()
                return result.inserted_primary_key[0]
        except Exception:  # noqa: BLE001 -- audit writes must never break the caller
            logger.exception(
                "%s: dropped audit event action=%s actor=%s entity=%s/%s result=%s",
                ErrorKind.AUDIT_WRITE_FAILURE.value,
                audit_event.action,
                audit_event.actor_user_id,
                audit_event.entity_type,
                audit_event.entity_id,
                audit_event.result,
            )
            return None

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def list_events(
        self, filters: Optional[AuditFilter] = None, page: int = 1, limit: int = 50
    ) -> tuple[list[AuditEvent], int]:
        """Return one page of events (newest first) and the total match count."""
        conditions = _filter_conditions(filters or AuditFilter())
        count_q = select(func.count()).select_from(_audit_logs)
        rows_q = _audit_logs.select().order_by(_audit_logs.c.ts.desc(), _audit_logs.c.id.desc())
        if conditions:
            count_q = count_q.where(*conditions)
            rows_q = rows_q.where(*conditions)
        rows_q = rows_q.limit(limit).offset((page - 1) * limit)

        with self.engine.connect() as conn:
            total = conn.execute(count_q).scalar() or 0
            rows = conn.execute(rows_q).fetchall()
        return [_row_to_event(r) for r in rows], total

    def recent_for_actor(self, user_id: int, limit: int = 10) -> list[AuditEvent]:
        events, _total = self.list_events(AuditFilter(user_id=user_id), page=1, limit=limit)
        return events

    def login_summary(self, user_id: int) -> LoginSummary:
        """Return how many successful logins a user has and when the last one was."""
        query = select(func.count(), func.max(_audit_logs.c.ts)).where(
            _audit_logs.c.actor_user_id == user_id,
            _audit_logs.c.action == AuditAction.LOGIN_SUCCESS,
        )
        with self.engine.connect() as conn:
            count, last = conn.execute(query).one()
        return LoginSummary(login_count=count or 0, last_login=last)

    def last_logins(self, user_ids: Iterable[int]) -> dict[int, str]:
        """Map user id -> timestamp of last successful login. Users without one are absent."""
        ids = {i for i in user_ids if i is not None}
        if not ids:
            return {}
        query = (
            select(_audit_logs.c.actor_user_id, func.max(_audit_logs.c.ts))
            .where(
                _audit_logs.c.actor_user_id.in_(ids),
                _audit_logs.c.action == AuditAction.LOGIN_SUCCESS,
            )
            .group_by(_audit_logs.c.actor_user_id)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(query).fetchall()
        return {actor: last for actor, last in rows}

    def activity_stats(self, now: Optional[datetime] = None) -> ActivityStats:
        """Aggregate counters for the admin stats endpoint."""
        since = ((now or datetime.now(timezone.utc)) - timedelta(hours=24)).isoformat()

        def _count_where(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        query = select(
            func.count(),
            _count_where(_audit_logs.c.action == AuditAction.LOGIN_SUCCESS),
            _count_where(_audit_logs.c.action == AuditAction.LOGIN_FAIL),
            _count_where(_audit_logs.c.ts >= since),
        ).select_from(_audit_logs)
        with self.engine.connect() as conn:
            total, ok, failed, recent = conn.execute(query).one()
        return ActivityStats(
            total_logs=int(total or 0),
            successful_logins=int(ok or 0),
            failed_logins=int(failed or 0),
            last_24h_activity=int(recent or 0),
        )

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Query helpers
# ---------------------------------------------------------------------------


def _filter_conditions(filters: AuditFilter) -> list:
    conditions = []
    if filters.action:
        conditions.append(_audit_logs.c.action.contains(filters.action, autoescape=True))
    if filters.user_id is not None:
        conditions.append(_audit_logs.c.actor_user_id == filters.user_id)
    if filters.entity_type:
        conditions.append(_audit_logs.c.entity_type == filters.entity_type)
    if filters.result:
        conditions.append(_audit_logs.c.result == filters.result)
    if filters.date_from:
        conditions.append(_audit_logs.c.ts >= filters.date_from)
    if filters.date_to:
        conditions.append(_audit_logs.c.ts <= filters.date_to)
    return conditions


def _row_to_event(row) -> AuditEvent:
    details = None
    if row.details:
        try:
            details = json.loads(row.details)
        except ValueError:
            # Stored by an older writer as plain text; surface it unparsed.
            details = {"raw": row.details}
    return AuditEvent(
        id=row.id,
        ts=row.ts,
        actor_user_id=row.actor_user_id,
        action=row.action,
        entity_type=row.entity_type,
        entity_id=row.entity_id,
        result=row.result,
        ip=row.ip,
        user_agent=row.user_agent,
        details=details,
    )
