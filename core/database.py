"""
core/database.py -- Engine construction shared by every SQLAlchemy Core store.

Each repository (UserStore, ConsentLedger, AuditStore, ProfileStore) owns its
own tables and engine, but they all need the same SQLite treatment, so it lives
here once.

Usage:
    engine = make_engine("sqlite:///healthportal.db")
    engine = make_engine("postgresql://user:pw@host/db")
"""

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    WAL (Write-Ahead Logging) allows readers to proceed without blocking
    during writes. Set per-connection because SQLite PRAGMAs are not
    inherited by new connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str) -> Engine:
    """Create an engine; SQLite URLs get cross-thread access and WAL mode.

    check_same_thread=False is required because FastAPI runs sync route
    handlers and background tasks in a thread pool.
    """
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite"):
        event.listen(engine, "connect", _set_wal_mode)
    return engine


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
