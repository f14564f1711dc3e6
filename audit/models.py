"""
audit/models.py -- Domain dataclasses for the PHI access trail.

AuditEntry is append-only: once written it is never updated or deleted. Every
identity field is optional because unauthenticated and failed requests are
recorded too (a failed login has an email and an IP but no user id).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class AuditAction(str, Enum):
    LOGIN = "LOGIN"
    LOGOUT = "LOGOUT"
    LOGIN_FAILED = "LOGIN_FAILED"
    REGISTER = "REGISTER"
    PASSWORD_CHANGE = "PASSWORD_CHANGE"
    PROFILE_VIEW = "PROFILE_VIEW"
    PROFILE_UPDATE = "PROFILE_UPDATE"
    PHI_ACCESS = "PHI_ACCESS"
    PHI_UPDATE = "PHI_UPDATE"
    PATIENT_VIEW = "PATIENT_VIEW"
    WELLNESS_LOG = "WELLNESS_LOG"
    APPOINTMENT_CREATE = "APPOINTMENT_CREATE"
    APPOINTMENT_UPDATE = "APPOINTMENT_UPDATE"
    APPOINTMENT_CANCEL = "APPOINTMENT_CANCEL"
    COMPLIANCE_UPDATE = "COMPLIANCE_UPDATE"
    CONSENT_GIVEN = "CONSENT_GIVEN"
    CONSENT_REVOKED = "CONSENT_REVOKED"
    DATA_EXPORT = "DATA_EXPORT"
    TOKEN_REFRESH = "TOKEN_REFRESH"
    UNAUTHORIZED_ACCESS = "UNAUTHORIZED_ACCESS"


class ResourceType(str, Enum):
    USER = "User"
    PATIENT_PROFILE = "PatientProfile"
    PROVIDER = "Provider"
    APPOINTMENT = "Appointment"
    WELLNESS_LOG = "WellnessLog"
    CONSENT = "Consent"
    SYSTEM = "System"


# Actions that count as reading or changing protected health information.
PHI_ACTIONS: frozenset[AuditAction] = frozenset(
    {AuditAction.PHI_ACCESS, AuditAction.PHI_UPDATE, AuditAction.PATIENT_VIEW}
)


@dataclass
class AuditEntry:
    action: str
    user_id: int | None = None
    user_email: str | None = None
    user_role: str | None = None
    resource_type: str | None = None
    resource_id: int | None = None
    method: str | None = None
    endpoint: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    details: dict[str, Any] | None = field(default=None)
    success: bool = True
    error_message: str | None = None
    id: int | None = None
    timestamp: str | None = None  # ISO 8601, set by the store on insert
