"""
api/routes/v1/auth.py -- Registration, login, token refresh and logout.

Routes:
  POST /api/v1/auth/register  -- create a patient account; 201 + token pair
  POST /api/v1/auth/login     -- password login; 200 + token pair
  POST /api/v1/auth/refresh   -- redeem a refresh token; 200 + new pair
  POST /api/v1/auth/logout    -- end one session (refreshToken) or all (bearer only)

Security:
  register, login and refresh are rate-limited per client IP (AUTH_RATE_LIMIT).
  Token responses carry Cache-Control: no-store.
  Failed logins and failed refreshes are audited with the attempted identity.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request, Response

from api.limiter import limiter
from api.models import (
    AuthResponse,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    UserSummary,
)
from audit.log import build_entry, client_ip, defer
from audit.models import AuditAction, ResourceType
from auth.dependencies import try_get_current_user
from auth.models import AuthResult
from auth.service import AuthService
from auth.tokens import decode_refresh_token, subject_id
from core.config import get_settings
from core.exceptions import AppError, InvalidTokenError, ValidationError

# Auth policy:
# - POST /api/v1/auth/register: public
# - POST /api/v1/auth/login:    public
# - POST /api/v1/auth/refresh:  public -- the refresh token is the credential
# - POST /api/v1/auth/logout:   bearer optional; needs a bearer or a refresh token
router = APIRouter()

_settings = get_settings()


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(_settings.auth_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, response: Response, body: RegisterRequest) -> AuthResponse:
    """Create a patient account with its profile and registration consents."""
    service: AuthService = request.app.state.auth_service
    result = service.register(
        body.email,
        body.password,
        body.consent,
        name=body.name,
        age=body.age,
        allergies=body.allergies,
        medications=body.medications,
        client_ip=client_ip(request),
    )
    defer(request, build_entry(request, AuditAction.REGISTER, user=result.user, **_user_resource(result)))
    response.headers["Cache-Control"] = "no-store"
    return _auth_response(result)


@limiter.limit(_settings.auth_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, response: Response, body: LoginRequest) -> AuthResponse:
    """Authenticate with email and password; returns a new token pair.

    The error for an unknown email and for a wrong password is identical.
    """
    service: AuthService = request.app.state.auth_service
    try:
        result = service.login(body.email, body.password)
    except AppError as exc:
        defer(
            request,
            build_entry(
                request,
                AuditAction.LOGIN_FAILED,
                email=body.email,
                resource_type=ResourceType.USER,
                success=False,
                error_message=exc.message,
            ),
        )
        raise
    defer(request, build_entry(request, AuditAction.LOGIN, user=result.user, **_user_resource(result)))
    response.headers["Cache-Control"] = "no-store"
    return _auth_response(result)


@limiter.limit(_settings.auth_rate_limit)
@router.post("/auth/refresh", response_model=AuthResponse)
def refresh(request: Request, response: Response, body: Optional[RefreshRequest] = None) -> AuthResponse:
    """Exchange a live refresh token for a new pair. The presented token stops working."""
    service: AuthService = request.app.state.auth_service
    try:
        result = service.refresh(body.refresh_token if body else None)
    except AppError as exc:
        defer(
            request,
            build_entry(
                request,
                AuditAction.TOKEN_REFRESH,
                resource_type=ResourceType.USER,
                success=False,
                error_message=exc.message,
            ),
        )
        raise
    defer(request, build_entry(request, AuditAction.TOKEN_REFRESH, user=result.user, **_user_resource(result)))
    response.headers["Cache-Control"] = "no-store"
    return _auth_response(result)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request, body: Optional[RefreshRequest] = None) -> MessageResponse:
    """Revoke one session or all of them.

    With a refreshToken in the body only that session ends. With a bearer
    token and no refreshToken every session for the caller ends. The user is
    taken from the bearer token if valid, else from the refresh token.
    """
    service: AuthService = request.app.state.auth_service
    refresh_token = body.refresh_token if body else None

    user = try_get_current_user(request)
    user_id = user.id if user else None
    if user_id is None and refresh_token:
        try:
            user_id = subject_id(decode_refresh_token(refresh_token))
        except InvalidTokenError:
            user_id = None
    if user_id is None:
        if not refresh_token:
            raise ValidationError("Provide refreshToken or be authenticated to logout.")
        raise ValidationError("Unable to determine user from provided token.")

    revoked = service.revoke(user_id, refresh_token)
    defer(
        request,
        build_entry(
            request,
            AuditAction.LOGOUT,
            user=user or service.users.get_by_id(user_id),
            resource_type=ResourceType.USER,
            resource_id=user_id,
            details={"scope": "session" if refresh_token else "all", "revoked": revoked},
        ),
    )
    return MessageResponse(message="Logged out (tokens revoked).")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _user_resource(result: AuthResult) -> dict:
    return {"resource_type": ResourceType.USER, "resource_id": result.user.id}


def _auth_response(result: AuthResult) -> AuthResponse:
    return AuthResponse(
        user=UserSummary(**result.user.summary()),
        access_token=result.access_token,
        refresh_token=result.refresh_token,
    )
