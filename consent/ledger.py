"""
consent/ledger.py -- SQLAlchemy Core persistence for consent records.

Rule: at most one active record (granted=1, revoked_at IS NULL) per
(user_id, consent_type). grant() closes any active record of the same type
before inserting the new one, inside a single transaction, so a reader never
sees two active records or none in between.

Pattern: Repository + Data Mapper, same as auth/store.py.
"""

from __future__ import annotations

import logging

from sqlalchemy import Column, Index, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Connection, Engine

from consent.models import REGISTRATION_CONSENTS, ConsentMethod, ConsentRecord, ConsentType
from core.config import get_settings
from core.database import make_engine, now_iso

logger = logging.getLogger("healthportal.consent")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_consents = Table(
    "consents",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False),
    Column("consent_type", String(40), nullable=False),
    Column("version", String(20), nullable=False),
    Column("granted", Integer, nullable=False),
    Column("granted_at", String(32)),
    Column("revoked_at", String(32)),
    Column("method", String(20), nullable=False, server_default="registration"),
    Column("ip_address", String(45)),
    Column("notes", String(500)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", Text),
    Index("ix_consents_user_type", "user_id", "consent_type"),
)


def _active_clause(user_id: int, consent_type: str):
    return (
        (_consents.c.user_id == user_id)
        & (_consents.c.consent_type == consent_type)
        & (_consents.c.granted == 1)
        & (_consents.c.revoked_at.is_(None))
    )


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ConsentLedger:
    """Append-and-supersede store of consent records.

    Usage:
        ledger = ConsentLedger()
        ledger.grant(uid, ConsentType.MARKETING, "1.0", method=ConsentMethod.SETTINGS)
        ledger.has_active(uid, ConsentType.MARKETING)   # True
        ledger.revoke(uid, ConsentType.MARKETING)        # 1
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def grant(
        self,
        user_id: int,
        consent_type: ConsentType | str,
        version: str,
        method: ConsentMethod | str = ConsentMethod.API,
        ip_address: str | None = None,
        notes: str | None = None,
    ) -> ConsentRecord:
        """Supersede any active record of this type and insert a new active one."""
        with self.engine.begin() as conn:
            return self._grant(conn, user_id, _value(consent_type), version, _value(method), ip_address, notes)

    def _grant(
        self,
        conn: Connection,
        user_id: int,
        consent_type: str,
        version: str,
        method: str,
        ip_address: str | None,
        notes: str | None,
    ) -> ConsentRecord:
        stamp = now_iso()
        superseded = conn.execute(
            _consents.update().where(_active_clause(user_id, consent_type)).values(revoked_at=stamp, updated_at=stamp)
        ).rowcount
        if superseded:
            logger.info("Superseded %d %s consent(s) for user %s", superseded, consent_type, user_id)
        result = conn.execute(
            _consents.insert().values(
                user_id=user_id,
                consent_type=consent_type,
                version=version,
                granted=1,
                granted_at=stamp,
                method=method,
                ip_address=ip_address,
                notes=notes,
                created_at=stamp,
            )
        )
        return ConsentRecord(
            id=result.inserted_primary_key[0],
            user_id=user_id,
            consent_type=consent_type,
            version=version,
            granted=True,
            granted_at=stamp,
            method=method,
            ip_address=ip_address,
            notes=notes,
        )

    def revoke(self, user_id: int, consent_type: ConsentType | str) -> int:
        """Close every active record of this type. Returns how many were closed.

        Normally exactly one; zero when nothing was active.
        """
        stamp = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _consents.update()
                .where(_active_clause(user_id, _value(consent_type)))
                .values(granted=0, revoked_at=stamp, updated_at=stamp)
            )
        return result.rowcount

    def has_active(self, user_id: int, consent_type: ConsentType | str) -> bool:
        with self.engine.connect() as conn:
            row = conn.execute(_consents.select().where(_active_clause(user_id, _value(consent_type)))).first()
        return row is not None

    def active_for_user(self, user_id: int) -> list[ConsentRecord]:
        """Return the user's active records, ordered by consent type."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _consents.select()
                .where((_consents.c.user_id == user_id) & (_consents.c.granted == 1) & (_consents.c.revoked_at.is_(None)))
                .order_by(_consents.c.consent_type)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def history(self, user_id: int, consent_type: ConsentType | str) -> list[ConsentRecord]:
        """Return every record of one type for the user, oldest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _consents.select()
                .where((_consents.c.user_id == user_id) & (_consents.c.consent_type == _value(consent_type)))
                .order_by(_consents.c.id)
            ).fetchall()
        return [_row_to_record(r) for r in rows]

    def record_registration_consents(
        self, user_id: int, version: str, ip_address: str | None = None
    ) -> list[ConsentRecord]:
        """Grant the registration bundle in one transaction."""
        with self.engine.begin() as conn:
            return [
                self._grant(conn, user_id, ctype.value, version, ConsentMethod.REGISTRATION.value, ip_address, None)
                for ctype in REGISTRATION_CONSENTS
            ]

    def discard_for_user(self, user_id: int) -> int:
        """Delete every record of the user. Only used to undo a failed registration."""
        with self.engine.begin() as conn:
            return conn.execute(_consents.delete().where(_consents.c.user_id == user_id)).rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _value(member) -> str:
    return member.value if hasattr(member, "value") else str(member)


def _row_to_record(row) -> ConsentRecord:
    return ConsentRecord(
        id=row.id,
        user_id=row.user_id,
        consent_type=row.consent_type,
        version=row.version,
        granted=bool(row.granted),
        granted_at=row.granted_at,
        revoked_at=row.revoked_at,
        method=row.method,
        ip_address=row.ip_address,
        notes=row.notes,
    )
