"""
API request and response models for the health portal REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/, consent/ and
patients/, which own the internal domain representation. Route handlers map
between the two.

JSON field names are camelCase on the wire (accessToken, refreshToken,
consentType). Request bodies also accept the snake_case names.

Request models are lenient about missing fields: presence and consent rules
are enforced by AuthService so every entry point reports them the same way.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from consent.models import ConsentRecord, ConsentType
from patients.models import PatientProfile, ProviderProfile


class _ApiModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _ResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Auth -- request models
# ---------------------------------------------------------------------------


class RegisterRequest(_ApiModel):
    """Request body for POST /api/v1/auth/register."""

    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=72)  # characters; bytes are checked at hashing
    consent: Optional[bool] = None
    name: Optional[str] = Field(default=None, max_length=100)
    age: Optional[int] = Field(default=None, ge=0, le=150)
    allergies: list[str] = Field(default_factory=list, max_length=50)
    medications: list[str] = Field(default_factory=list, max_length=50)


class LoginRequest(_ApiModel):
    """Request body for POST /api/v1/auth/login."""

    email: Optional[str] = Field(default=None, max_length=254)
    password: Optional[str] = Field(default=None, max_length=72)


class RefreshRequest(_ApiModel):
    """Request body for POST /api/v1/auth/refresh and /auth/logout."""

    refresh_token: Optional[str] = None


# ---------------------------------------------------------------------------
# Auth -- response models
# ---------------------------------------------------------------------------


class UserSummary(_ResponseModel):
    id: int
    email: str
    role: str


class AuthResponse(_ResponseModel):
    """Response for register, login and refresh."""

    user: UserSummary
    access_token: str
    refresh_token: str


class MessageResponse(_ResponseModel):
    message: str


# ---------------------------------------------------------------------------
# Profiles
# ---------------------------------------------------------------------------


class ProviderSummary(_ResponseModel):
    id: int
    name: str
    specialty: Optional[str] = None


class PatientProfileResponse(_ResponseModel):
    id: int
    user_id: int
    name: str
    age: Optional[int]
    allergies: list[str]
    medications: list[str]
    assigned_provider: Optional[ProviderSummary] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_profile(
        cls, profile: PatientProfile, provider: Optional[ProviderProfile] = None
    ) -> "PatientProfileResponse":
        return cls(
            id=profile.id,
            user_id=profile.user_id,
            name=profile.name,
            age=profile.age,
            allergies=profile.allergies,
            medications=profile.medications,
            assigned_provider=(
                ProviderSummary(id=provider.id, name=provider.name, specialty=provider.specialty)
                if provider
                else None
            ),
            created_at=profile.created_at,
            updated_at=profile.updated_at,
        )


class PatientProfileUpdate(_ApiModel):
    """Request body for PUT /api/v1/patients/me. Omitted fields are left unchanged."""

    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    age: Optional[int] = Field(default=None, ge=0, le=150)
    allergies: Optional[list[str]] = Field(default=None, max_length=50)
    medications: Optional[list[str]] = Field(default=None, max_length=50)


class ProviderProfileResponse(_ResponseModel):
    id: int
    user_id: int
    email: str
    name: str
    specialty: Optional[str]
    patient_count: int


# ---------------------------------------------------------------------------
# Consents
# ---------------------------------------------------------------------------


class ConsentGrantRequest(_ApiModel):
    """Request body for POST /api/v1/consents. version defaults to the current policy version."""

    consent_type: Optional[ConsentType] = None
    version: Optional[str] = Field(default=None, max_length=20)


class ConsentResponse(_ResponseModel):
    id: int
    consent_type: str
    version: str
    method: str
    granted_at: Optional[str]

    @classmethod
    def from_record(cls, record: ConsentRecord) -> "ConsentResponse":
        return cls(
            id=record.id,
            consent_type=record.consent_type,
            version=record.version,
            method=record.method,
            granted_at=record.granted_at,
        )


class ConsentRevokeResponse(_ResponseModel):
    consent_type: str
    revoked: int


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
