"""
api/routes/v1/consents.py -- The caller's consent records.

Routes:
  GET    /api/v1/consents                -- active consents
  POST   /api/v1/consents                -- grant (supersedes an active record of the same type)
  DELETE /api/v1/consents/{consentType}  -- revoke

Grants and revocations are recorded by audit/middleware.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import ConsentGrantRequest, ConsentResponse, ConsentRevokeResponse
from audit.log import client_ip
from auth.dependencies import get_current_user
from auth.models import User
from consent.ledger import ConsentLedger
from consent.models import ConsentMethod, ConsentType
from core.config import get_settings
from core.exceptions import ValidationError

router = APIRouter()


@router.get("/consents", response_model=list[ConsentResponse])
def list_consents(request: Request, current_user: User = Depends(get_current_user)) -> list[ConsentResponse]:
    ledger: ConsentLedger = request.app.state.consent_ledger
    return [ConsentResponse.from_record(r) for r in ledger.active_for_user(current_user.id)]


@router.post("/consents", response_model=ConsentResponse, status_code=201)
def grant_consent(
    request: Request,
    body: ConsentGrantRequest,
    current_user: User = Depends(get_current_user),
) -> ConsentResponse:
    """Grant a consent from account settings. version defaults to the current policy version."""
    if body.consent_type is None:
        raise ValidationError("consentType is required.")
    ledger: ConsentLedger = request.app.state.consent_ledger
    record = ledger.grant(
        current_user.id,
        body.consent_type,
        body.version or get_settings().consent_version,
        method=ConsentMethod.SETTINGS,
        ip_address=client_ip(request),
    )
    return ConsentResponse.from_record(record)


@router.delete("/consents/{consent_type}", response_model=ConsentRevokeResponse)
def revoke_consent(
    request: Request,
    consent_type: ConsentType,
    current_user: User = Depends(get_current_user),
) -> ConsentRevokeResponse:
    """Revoke the active consent of this type. Revoking one that is not active closes nothing."""
    ledger: ConsentLedger = request.app.state.consent_ledger
    revoked = ledger.revoke(current_user.id, consent_type)
    return ConsentRevokeResponse(consent_type=consent_type.value, revoked=revoked)
