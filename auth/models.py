"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and services do
the work; these only own the shape.

Layer rule: no imports from api/, audit/, consent/ or patients/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    PATIENT = "patient"
    PROVIDER = "provider"


@dataclass
class User:
    """An account that can log in.

    email is stored lower-cased so lookups are case-insensitive.

    refresh_tokens holds the digests of the refresh tokens that are currently
    live for this user, oldest first. One entry per active session/device.
    The raw token strings are never persisted.
    """

    email: str
    role: str  # "patient" | "provider"
    id: int | None = None
    password_hash: str | None = None
    refresh_tokens: list[str] = field(default_factory=list)
    created_at: str | None = None

    def summary(self) -> dict:
        return {"id": self.id, "email": self.email, "role": self.role}


@dataclass
class AuthResult:
    """What register, login and refresh hand back to the caller."""

    user: User
    access_token: str
    refresh_token: str
