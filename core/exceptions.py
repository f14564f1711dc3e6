"""
core/exceptions.py -- Typed error taxonomy shared by every layer.

Services raise these; only the API boundary (api/main.py) turns them into
HTTP responses. Each class carries the status code and machine-readable code
used in the error envelope, plus a message that is safe to show a client.
"""

from __future__ import annotations


class AppError(Exception):
    """Base class for expected, client-attributable failures."""

    status_code: int = 500
    code: str = "internal_error"
    default_message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AppError):
    """Caller input is missing or malformed."""

    status_code = 400
    code = "validation_error"
    default_message = "Request validation failed."


class AuthenticationError(AppError):
    """Bad credentials, or an unknown, replayed or revoked session token."""

    status_code = 401
    code = "unauthorized"
    default_message = "Authentication required."


class InvalidTokenError(AppError):
    """Signature, format or expiry check failed.

    The message never says which check failed.
    """

    status_code = 401
    code = "invalid_token"
    default_message = "Invalid token."


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"
    default_message = "You do not have access to this resource."


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"
    default_message = "Resource not found."


class ConflictError(AppError):
    status_code = 409
    code = "conflict"
    default_message = "Resource already exists."
