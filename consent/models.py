"""
consent/models.py -- Domain dataclasses for the consent ledger.

A ConsentRecord is one versioned acknowledgment of a data-use policy. Records
are never deleted: granting again closes the previous active record by
stamping revoked_at, and revoking flips granted to False as well.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ConsentType(str, Enum):
    TERMS_OF_SERVICE = "terms_of_service"
    PRIVACY_POLICY = "privacy_policy"
    DATA_PROCESSING = "data_processing"
    HEALTH_DATA_SHARING = "health_data_sharing"
    PROVIDER_ACCESS = "provider_access"
    EMAIL_NOTIFICATIONS = "email_notifications"
    SMS_NOTIFICATIONS = "sms_notifications"
    MARKETING = "marketing"
    RESEARCH_PARTICIPATION = "research_participation"


class ConsentMethod(str, Enum):
    REGISTRATION = "registration"
    SETTINGS = "settings"
    API = "api"
    MANUAL = "manual"


# Accepted as a bundle by the registration form's single consent checkbox.
REGISTRATION_CONSENTS: tuple[ConsentType, ...] = (
    ConsentType.TERMS_OF_SERVICE,
    ConsentType.PRIVACY_POLICY,
    ConsentType.DATA_PROCESSING,
    ConsentType.HEALTH_DATA_SHARING,
)


@dataclass
class ConsentRecord:
    """Active when granted is True and revoked_at is None."""

    user_id: int
    consent_type: str
    version: str
    granted: bool
    method: str = ConsentMethod.API.value
    id: int | None = None
    granted_at: str | None = None
    revoked_at: str | None = None
    ip_address: str | None = None
    notes: str | None = None

    @property
    def active(self) -> bool:
        return self.granted and self.revoked_at is None
