"""
patients/store.py -- SQLAlchemy Core persistence for patient and provider profiles.

Pattern: Repository + Data Mapper, same as auth/store.py. allergies and
medications are short string lists serialized as JSON text.

Provider assignment is computed, not stored on the provider: the number of
patients a provider has is a COUNT over patient_profiles.assigned_provider_id.
"""

from __future__ import annotations

import json

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from core.config import get_settings
from core.database import make_engine, now_iso
from patients.models import PatientProfile, ProviderProfile

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_providers = Table(
    "provider_profiles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, unique=True),
    Column("name", String(200), nullable=False),
    Column("specialty", String(200)),
    Column("created_at", String(32), nullable=False),
)

_patients = Table(
    "patient_profiles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, unique=True),
    Column("name", String(200), nullable=False, server_default=""),
    Column("age", Integer),
    Column("allergies", Text),  # JSON array of strings
    Column("medications", Text),  # JSON array of strings
    Column("assigned_provider_id", Integer, index=True),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Fields a patient may change about themselves.
_UPDATABLE = ("name", "age", "allergies", "medications")


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class ProfileStore:
    """Repository for PatientProfile and ProviderProfile records.

    Usage:
        store = ProfileStore()
        provider = store.least_loaded_provider()
        store.create_patient(PatientProfile(user_id=uid, assigned_provider_id=provider.id))
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def create_provider(self, profile: ProviderProfile) -> ProviderProfile:
        stamp = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _providers.insert().values(
                    user_id=profile.user_id,
                    name=profile.name,
                    specialty=profile.specialty,
                    created_at=stamp,
                )
            )
        profile.id = result.inserted_primary_key[0]
        profile.created_at = stamp
        return profile

    def get_provider(self, provider_id: int) -> ProviderProfile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_provider_query().where(_providers.c.id == provider_id)).fetchone()
        return _row_to_provider(row) if row else None

    def get_provider_by_user(self, user_id: int) -> ProviderProfile | None:
        """Return the provider profile with its current patient count."""
        with self.engine.connect() as conn:
            row = conn.execute(_provider_query().where(_providers.c.user_id == user_id)).fetchone()
        return _row_to_provider(row) if row else None

    def least_loaded_provider(self) -> ProviderProfile | None:
        """Return the provider with the fewest assigned patients (oldest wins ties), or None."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _provider_query().order_by(func.count(_patients.c.id), _providers.c.id).limit(1)
            ).fetchone()
        return _row_to_provider(row) if row else None

    def count_patients(self, provider_id: int) -> int:
        with self.engine.connect() as conn:
            return (
                conn.execute(
                    select(func.count()).select_from(_patients).where(_patients.c.assigned_provider_id == provider_id)
                ).scalar()
                or 0
            )

    # ------------------------------------------------------------------
    # Patients
    # ------------------------------------------------------------------

    def create_patient(self, profile: PatientProfile) -> PatientProfile:
        stamp = now_iso()
        with self.engine.begin() as conn:
            result = conn.execute(
                _patients.insert().values(
                    user_id=profile.user_id,
                    name=profile.name or "",
                    age=profile.age,
                    allergies=json.dumps(profile.allergies),
                    medications=json.dumps(profile.medications),
                    assigned_provider_id=profile.assigned_provider_id,
                    created_at=stamp,
                    updated_at=stamp,
                )
            )
        profile.id = result.inserted_primary_key[0]
        profile.created_at = stamp
        profile.updated_at = stamp
        return profile

    def get_patient(self, patient_id: int) -> PatientProfile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_patients.select().where(_patients.c.id == patient_id)).fetchone()
        return _row_to_patient(row) if row else None

    def get_patient_by_user(self, user_id: int) -> PatientProfile | None:
        with self.engine.connect() as conn:
            row = conn.execute(_patients.select().where(_patients.c.user_id == user_id)).fetchone()
        return _row_to_patient(row) if row else None

    def update_patient(self, user_id: int, **changes) -> PatientProfile | None:
        """Apply the given field changes to the user's profile. Unknown fields are ignored.

        Returns the updated profile, or None if the user has none.
        """
        values = {k: v for k, v in changes.items() if k in _UPDATABLE}
        for key in ("allergies", "medications"):
            if key in values:
                values[key] = json.dumps(values[key] or [])
        values["updated_at"] = now_iso()
        with self.engine.begin() as conn:
            conn.execute(_patients.update().where(_patients.c.user_id == user_id).values(**values))
        return self.get_patient_by_user(user_id)

    def list_patients_for_provider(self, provider_id: int) -> list[PatientProfile]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _patients.select()
                .where(_patients.c.assigned_provider_id == provider_id)
                .order_by(_patients.c.name, _patients.c.id)
            ).fetchall()
        return [_row_to_patient(r) for r in rows]

    def delete_patient_by_user(self, user_id: int) -> int:
        """Remove the user's profile. Only used to undo a failed registration."""
        with self.engine.begin() as conn:
            return conn.execute(_patients.delete().where(_patients.c.user_id == user_id)).rowcount

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _provider_query():
    return (
        select(
            _providers.c.id,
            _providers.c.user_id,
            _providers.c.name,
            _providers.c.specialty,
            _providers.c.created_at,
            func.count(_patients.c.id).label("patient_count"),
        )
        .select_from(_providers.outerjoin(_patients, _patients.c.assigned_provider_id == _providers.c.id))
        .group_by(_providers.c.id)
    )


def _row_to_provider(row) -> ProviderProfile:
    return ProviderProfile(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        specialty=row.specialty,
        created_at=row.created_at,
        patient_count=row.patient_count,
    )


def _row_to_patient(row) -> PatientProfile:
    return PatientProfile(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        age=row.age,
        allergies=json.loads(row.allergies) if row.allergies else [],
        medications=json.loads(row.medications) if row.medications else [],
        assigned_provider_id=row.assigned_provider_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
