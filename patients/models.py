"""
patients/models.py -- Domain dataclasses for patient and provider profiles.

A profile is the role-specific half of an account: User holds credentials,
the profile holds what the portal shows. Each user has at most one.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class ProviderProfile:
    user_id: int
    name: str
    specialty: str | None = None
    id: int | None = None
    created_at: str | None = None
    patient_count: int = 0  # filled in by queries that join patients


@dataclass
class PatientProfile:
    user_id: int
    name: str = ""
    age: int | None = None
    allergies: list[str] = field(default_factory=list)
    medications: list[str] = field(default_factory=list)
    assigned_provider_id: int | None = None
    id: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
