"""
api/routes/v1/providers.py -- Provider views of their own profile and assigned patients.

Routes:
  GET /api/v1/providers/me             -- provider profile with patient count
  GET /api/v1/providers/patients       -- patients assigned to the caller
  GET /api/v1/providers/patients/{id}  -- one assigned patient

All routes require the provider role. A patient who exists but is assigned to
someone else is reported as 404, the same as one that does not exist.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import PatientProfileResponse, ProviderProfileResponse
from auth.dependencies import require_provider
from auth.models import User
from core.exceptions import NotFoundError
from patients.models import ProviderProfile
from patients.store import ProfileStore

router = APIRouter()


@router.get("/providers/me", response_model=ProviderProfileResponse)
def get_my_provider_profile(
    request: Request, current_user: User = Depends(require_provider)
) -> ProviderProfileResponse:
    provider = _own_provider(request.app.state.profile_store, current_user)
    return ProviderProfileResponse(
        id=provider.id,
        user_id=current_user.id,
        email=current_user.email,
        name=provider.name,
        specialty=provider.specialty,
        patient_count=provider.patient_count,
    )


@router.get("/providers/patients", response_model=list[PatientProfileResponse])
def list_my_patients(request: Request, current_user: User = Depends(require_provider)) -> list[PatientProfileResponse]:
    store: ProfileStore = request.app.state.profile_store
    provider = _own_provider(store, current_user)
    return [PatientProfileResponse.from_profile(p, provider) for p in store.list_patients_for_provider(provider.id)]


@router.get("/providers/patients/{patient_id}", response_model=PatientProfileResponse)
def get_my_patient(
    request: Request,
    patient_id: int,
    current_user: User = Depends(require_provider),
) -> PatientProfileResponse:
    store: ProfileStore = request.app.state.profile_store
    provider = _own_provider(store, current_user)
    patient = store.get_patient(patient_id)
    if patient is None or patient.assigned_provider_id != provider.id:
        raise NotFoundError("Patient not found.")
    return PatientProfileResponse.from_profile(patient, provider)


def _own_provider(store: ProfileStore, user: User) -> ProviderProfile:
    provider = store.get_provider_by_user(user.id)
    if provider is None:
        raise NotFoundError("Provider profile not found.")
    return provider
