"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Requests authenticate with an access token in the Authorization header:

    Authorization: Bearer <accessToken>

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises AuthenticationError (missing or malformed header,
unknown user) or InvalidTokenError (bad signature, expired), both 401.
require_role() wraps get_current_user() and raises ForbiddenError (403).

The authenticated User is also stored on request.state.user so the audit
middleware can attribute the request after the handler returns.

Layer rule: no imports from api/, audit/, consent/ or patients/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from auth.models import Role, User
from auth.tokens import decode_access_token, subject_id
from core.exceptions import AppError, AuthenticationError, ForbiddenError


def _bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise AuthenticationError("Missing Authorization header.")
    scheme, _, token = auth_header.partition(" ")
    if scheme != "Bearer" or not token or " " in token:
        raise AuthenticationError("Invalid Authorization format.")
    return token


def get_current_user(request: Request) -> User:
    """Require authentication.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    payload = decode_access_token(_bearer_token(request))
    user = request.app.state.user_store.get_by_id(subject_id(payload))
    if user is None:
        raise AuthenticationError("User no longer exists.")
    request.state.user = user
    return user


def try_get_current_user(request: Request) -> User | None:
    """Return the authenticated User, or None if the request is not authenticated.

    Never raises for authentication failures.
    """
    try:
        return get_current_user(request)
    except AppError:
        return None


def require_role(role: Role) -> Callable[[Request], User]:
    """Build a dependency that admits only users with the given role.

    Use as a FastAPI dependency:
        @router.get("/patients/me")
        async def route(user: User = Depends(require_role(Role.PATIENT))): ...
    """

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if user.role != role.value:
            raise ForbiddenError(f"{role.value.capitalize()} access required.")
        return user

    return dependency


require_patient = require_role(Role.PATIENT)
require_provider = require_role(Role.PROVIDER)
