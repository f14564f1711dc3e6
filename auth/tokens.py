"""
auth/tokens.py -- JWT issuance/verification and password hashing.

Security design decisions:
  JWT: python-jose with HS256. Access and refresh tokens are signed with two
       different keys (JWT_SECRET / JWT_REFRESH_SECRET) and carry a "type"
       claim, so neither kind can be replayed as the other. Every token gets a
       random jti, which keeps two tokens issued in the same second distinct.
       Verification raises InvalidTokenError on any failure without saying
       which check failed.

  Passwords: bcrypt with a per-password random salt. The cost factor comes
       from Settings.bcrypt_rounds. The _DUMMY_HASH constant enables timing
       equalization in AuthService.login() so response time does not reveal
       whether an email is registered.

  Refresh token digests: HMAC-SHA256(JWT_REFRESH_SECRET, token). The store
       keeps only digests, so a database dump cannot be replayed.

Layer rule: no imports from api/, audit/, consent/ or patients/. Import from
core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
from jose import JWTError, jwt

from auth.models import User
from core.config import get_settings
from core.exceptions import InvalidTokenError, ValidationError

_settings = get_settings()

_ALGORITHM = "HS256"
_ACCESS = "access"
_REFRESH = "refresh"

# bcrypt input limit. Counted in UTF-8 bytes, not characters.
MAX_PASSWORD_BYTES = 72


# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a salted bcrypt hash of the given plaintext password.

    Raises ValidationError when the password is longer than bcrypt accepts
    (72 UTF-8 bytes). A 72-character password with multibyte characters can
    exceed that.
    """
    encoded = plain.encode("utf-8")
    if len(encoded) > MAX_PASSWORD_BYTES:
        raise ValidationError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes.")
    salt = bcrypt.gensalt(rounds=_settings.bcrypt_rounds)
    return bcrypt.hashpw(encoded, salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Computed once at module load so the first failed login is not measurably
# slower than later ones. Checked against when the email is unknown.
_DUMMY_HASH: str = hash_password("healthportal_timing_dummy")


def burn_password_check(plain: str) -> None:
    """Run a bcrypt comparison whose result is discarded (timing equalization)."""
    verify_password(plain, _DUMMY_HASH)


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def _encode(claims: dict, secret: str, token_type: str, expire_seconds: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        **claims,
        "type": token_type,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + timedelta(seconds=expire_seconds),
    }
    return jwt.encode(payload, secret, algorithm=_ALGORITHM)


def _decode(token: str, secret: str, token_type: str) -> dict:
    try:
        payload = jwt.decode(token, secret, algorithms=[_ALGORITHM])
    except JWTError as exc:
        raise InvalidTokenError() from exc
    if payload.get("type") != token_type or not payload.get("sub"):
        raise InvalidTokenError()
    return payload


def create_access_token(user: User, expire_seconds: int = 0) -> str:
    """Issue a short-lived access token embedding subject id, role and email.

    expire_seconds overrides Settings.access_token_expire_seconds when > 0.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.access_token_expire_seconds
    claims = {"sub": str(user.id), "role": user.role, "email": user.email}
    return _encode(claims, _settings.jwt_secret, _ACCESS, duration)


def create_refresh_token(user: User, expire_seconds: int = 0) -> str:
    """Issue a longer-lived refresh token embedding subject id and role."""
    duration = expire_seconds if expire_seconds > 0 else _settings.refresh_token_expire_seconds
    claims = {"sub": str(user.id), "role": user.role}
    return _encode(claims, _settings.jwt_refresh_secret, _REFRESH, duration)


def decode_access_token(token: str) -> dict:
    """Verify an access token and return its payload.

    Raises InvalidTokenError for a bad signature, a malformed token, an
    expired token, or a refresh token presented in its place.
    """
    return _decode(token, _settings.jwt_secret, _ACCESS)


def decode_refresh_token(token: str) -> dict:
    """Verify a refresh token and return its payload. Raises InvalidTokenError."""
    return _decode(token, _settings.jwt_refresh_secret, _REFRESH)


def subject_id(payload: dict) -> int:
    """Return the numeric user id carried in a verified payload's sub claim."""
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError) as exc:
        raise InvalidTokenError() from exc


def token_digest(token: str) -> str:
    """Return HMAC-SHA256(JWT_REFRESH_SECRET, token) as a hex string.

    Deterministic, so the store can look a presented token up by digest.
    """
    return hmac.new(
        _settings.jwt_refresh_secret.encode(),
        token.encode(),
        hashlib.sha256,
    ).hexdigest()
