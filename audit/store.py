"""
audit/store.py -- Append-only SQLAlchemy Core persistence for audit entries.

The repository deliberately exposes no update or delete operation. Queries
cover the two questions a compliance review asks: what did this user do, and
who touched this record.

details is a free-form dict serialized to JSON text.
"""

from __future__ import annotations

import json
from datetime import datetime

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from audit.models import PHI_ACTIONS, AuditAction, AuditEntry
from core.config import get_settings
from core.database import make_engine, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_audit_log = Table(
    "audit_log",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),
    Column("user_email", String(254)),
    Column("user_role", String(20)),
    Column("action", String(40), nullable=False),
    Column("resource_type", String(40)),
    Column("resource_id", Integer),
    Column("method", String(10)),
    Column("endpoint", Text),
    Column("ip_address", String(45)),
    Column("user_agent", Text),
    Column("details", Text),  # JSON object serialized as text
    Column("success", Integer, nullable=False, server_default="1"),
    Column("error_message", Text),
    Column("timestamp", String(32), nullable=False),
    Index("ix_audit_user_time", "user_id", "timestamp"),
    Index("ix_audit_action_time", "action", "timestamp"),
    Index("ix_audit_resource_time", "resource_type", "resource_id", "timestamp"),
)


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AuditStore:
    """Append-only repository for AuditEntry records.

    Usage:
        store = AuditStore()
        store.append(AuditEntry(action="LOGIN", user_id=1))
        store.user_activity(1, start, end)
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def append(self, entry: AuditEntry) -> int:
        """Insert one entry and return its ID. Raises on persistence failure."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _audit_log.insert().values(
                    user_id=entry.user_id,
                    user_email=entry.user_email,
                    user_role=entry.user_role,
                    action=_value(entry.action),
                    resource_type=_value(entry.resource_type) if entry.resource_type else None,
                    resource_id=entry.resource_id,
                    method=entry.method,
                    endpoint=entry.endpoint,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    details=json.dumps(entry.details, default=str) if entry.details is not None else None,
                    success=1 if entry.success else 0,
                    error_message=entry.error_message,
                    timestamp=now_iso(),
                )
            )
            return result.inserted_primary_key[0]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_audit_log)).scalar() or 0

    def recent(self, limit: int = 50) -> list[AuditEntry]:
        """Return the newest entries first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_audit_log.select().order_by(_audit_log.c.id.desc()).limit(limit)).fetchall()
        return [_row_to_entry(r) for r in rows]

    def user_activity(self, user_id: int, start: datetime, end: datetime) -> list[AuditEntry]:
        """Everything one user did between start and end, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_log.select()
                .where(
                    (_audit_log.c.user_id == user_id)
                    & (_audit_log.c.timestamp >= start.isoformat())
                    & (_audit_log.c.timestamp <= end.isoformat())
                )
                .order_by(_audit_log.c.timestamp.desc(), _audit_log.c.id.desc())
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def phi_access(self, resource_id: int, start: datetime, end: datetime) -> list[AuditEntry]:
        """PHI reads and writes against one resource between start and end, newest first."""
        actions = sorted(a.value for a in PHI_ACTIONS)
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_log.select()
                .where(
                    (_audit_log.c.resource_id == resource_id)
                    & (_audit_log.c.action.in_(actions))
                    & (_audit_log.c.timestamp >= start.isoformat())
                    & (_audit_log.c.timestamp <= end.isoformat())
                )
                .order_by(_audit_log.c.timestamp.desc(), _audit_log.c.id.desc())
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def by_action(self, action: AuditAction | str, limit: int = 100) -> list[AuditEntry]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _audit_log.select()
                .where(_audit_log.c.action == _value(action))
                .order_by(_audit_log.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_entry(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _value(member) -> str:
    return member.value if hasattr(member, "value") else str(member)


def _row_to_entry(row) -> AuditEntry:
    return AuditEntry(
        id=row.id,
        user_id=row.user_id,
        user_email=row.user_email,
        user_role=row.user_role,
        action=row.action,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        method=row.method,
        endpoint=row.endpoint,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        details=json.loads(row.details) if row.details else None,
        success=bool(row.success),
        error_message=row.error_message,
        timestamp=row.timestamp,
    )
