"""
core/database.py -- Engine factory and the shared schema registry.

The engine built here is the one store handle for the whole process. The
application lifespan constructs it, passes it to every repository's
constructor, and disposes it on shutdown. Nothing holds a module-level
connection.

Every table is declared on the shared `metadata` below (by workspace/store.py,
auth/ratelimit.py and workspace/audit.py), so init_schema() can create them
all in one call regardless of which component is constructed first.

Layer rule: no imports from api/, auth/, or workspace/.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import MetaData, create_engine, event
from sqlalchemy.engine import Engine

metadata = MetaData()


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def create_db_engine(db_url: str) -> Engine:
    """Build the process-wide engine for db_url.

    SQLite requires check_same_thread=False because FastAPI runs sync route
    handlers in a thread pool and the audit writer uses its own thread.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_sqlite_pragmas)
    return engine


def init_schema(engine: Engine) -> None:
    """Create any missing tables. Idempotent; safe on every startup."""
    metadata.create_all(engine)


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
