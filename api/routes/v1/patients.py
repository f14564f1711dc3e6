"""
api/routes/v1/patients.py -- The calling patient's own profile.

Routes:
  GET /api/v1/patients/me  -- profile with assigned provider (patient role)
  PUT /api/v1/patients/me  -- update name, age, allergies, medications (patient role)

Both routes are PHI access and are recorded by audit/middleware.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import PatientProfileResponse, PatientProfileUpdate
from auth.dependencies import require_patient
from auth.models import User
from core.exceptions import NotFoundError, ValidationError
from patients.models import PatientProfile
from patients.store import ProfileStore

router = APIRouter()


@router.get("/patients/me", response_model=PatientProfileResponse)
def get_my_profile(request: Request, current_user: User = Depends(require_patient)) -> PatientProfileResponse:
    store: ProfileStore = request.app.state.profile_store
    return _to_response(store, _own_profile(store, current_user))


@router.put("/patients/me", response_model=PatientProfileResponse)
def update_my_profile(
    request: Request,
    body: PatientProfileUpdate,
    current_user: User = Depends(require_patient),
) -> PatientProfileResponse:
    """Apply the fields present in the body; omitted fields keep their value."""
    store: ProfileStore = request.app.state.profile_store
    _own_profile(store, current_user)
    changes = body.model_dump(exclude_unset=True, exclude_none=True)
    if not changes:
        raise ValidationError("No fields to update.")
    if "name" in changes:
        changes["name"] = changes["name"].strip()
    updated = store.update_patient(current_user.id, **changes)
    return _to_response(store, updated)


def _own_profile(store: ProfileStore, user: User) -> PatientProfile:
    profile = store.get_patient_by_user(user.id)
    if profile is None:
        raise NotFoundError("Patient profile not found.")
    return profile


def _to_response(store: ProfileStore, profile: PatientProfile) -> PatientProfileResponse:
    provider = store.get_provider(profile.assigned_provider_id) if profile.assigned_provider_id else None
    return PatientProfileResponse.from_profile(profile, provider)
