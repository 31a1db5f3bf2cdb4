"""
core/database.py -- Engine construction shared by every store.

auth/store.py, audit/ledger.py and tracker/store.py each own their tables and
mappers, but they all connect through make_engine() so SQLite gets the same
per-connection settings everywhere.

Layer rule: core/ is the kernel. No imports from api/, auth/, audit/, or tracker/.
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign keys on each new SQLite connection.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")
    dbapi_conn.execute("PRAGMA foreign_keys=ON")


def make_engine(db_url: str) -> Engine:
    """Create an engine with the SQLite connection tweaks every store needs.

    check_same_thread=False: FastAPI runs sync handlers in a thread pool, so
    a pooled connection may be used from a thread other than its creator.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def now_iso() -> str:
    """Current UTC time as ISO 8601. All stored timestamps use this format."""
    return datetime.now(timezone.utc).isoformat()


def to_utc_iso(value: datetime) -> str:
    """Normalize a datetime to the stored format so string comparison orders instants.

    Naive values are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()
