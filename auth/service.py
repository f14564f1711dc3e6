"""
auth/service.py -- Registration, login, refresh-token rotation and revocation.

AuthService owns the session state machine. Each user has a set of live
refresh-token digests (one per device); the operations here are the only
transitions:

  register / login   add one digest
  refresh            swap the presented digest for a new one (single use)
  revoke(token)      remove one digest
  revoke()           remove all digests

Every failure is one of the core.exceptions types. Route handlers never catch
them; the exception handlers in api/main.py render the HTTP response.

Security:
  login() runs a bcrypt comparison whether or not the email exists, and the
  error is the same "Invalid credentials." in both cases.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.models import AuthResult, Role, User
from auth.store import UserStore, normalize_email
from auth.tokens import (
    burn_password_check,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    subject_id,
    token_digest,
    verify_password,
)
from consent.ledger import ConsentLedger
from core.config import get_settings
from core.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from patients.models import PatientProfile, ProviderProfile
from patients.store import ProfileStore

logger = logging.getLogger("healthportal.auth")

_INVALID_CREDENTIALS = "Invalid credentials."


class AuthService:
    """Orchestrates the credential store, token service, consent ledger and profiles.

    Usage:
        service = AuthService(UserStore(), ConsentLedger(), ProfileStore())
        result = service.register("a@example.com", "Passw0rd1", consent=True)
        result = service.refresh(result.refresh_token)
        service.revoke(result.user.id)
    """

    def __init__(
        self,
        users: UserStore,
        consents: ConsentLedger,
        profiles: ProfileStore,
        consent_version: str | None = None,
    ) -> None:
        self.users = users
        self.consents = consents
        self.profiles = profiles
        self.consent_version = consent_version or get_settings().consent_version

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register(
        self,
        email: str | None,
        password: str | None,
        consent: bool | None,
        name: str | None = None,
        age: int | None = None,
        allergies: list[str] | None = None,
        medications: list[str] | None = None,
        client_ip: str | None = None,
    ) -> AuthResult:
        """Create a patient account, its profile and its registration consents.

        Raises ValidationError for missing credentials or consent not given,
        ConflictError when the email is already registered (any case). If a
        later step fails, the rows already written are removed before the
        error propagates, so the email can be registered again.
        """
        if not email or not email.strip() or not password:
            raise ValidationError("Email and password required.")
        if not consent:
            raise ValidationError("You must accept the terms and privacy policy to register.")
        if self.users.email_exists(email):
            raise ConflictError("Email already registered.")

        user = User(email=normalize_email(email), role=Role.PATIENT.value, password_hash=hash_password(password))
        try:
            user.id = self.users.create_user(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same email.
            raise ConflictError("Email already registered.") from exc

        provider = self.profiles.least_loaded_provider()
        try:
            self.profiles.create_patient(
                PatientProfile(
                    user_id=user.id,
                    name=(name or "").strip(),
                    age=age,
                    allergies=list(allergies or []),
                    medications=list(medications or []),
                    assigned_provider_id=provider.id if provider else None,
                )
            )
            self.consents.record_registration_consents(user.id, self.consent_version, ip_address=client_ip)
            result = self._open_session(user)
        except Exception:
            logger.warning("Registration of user %s failed; removing partial records", user.id)
            self._discard_registration(user.id)
            raise
        logger.info("Registered user %s (provider=%s)", user.id, provider.id if provider else None)
        return result

    def create_provider(self, email: str, password: str, name: str, specialty: str | None = None) -> User:
        """Create a provider account and profile. Raises ConflictError on a duplicate email."""
        if not email or not password:
            raise ValidationError("Email and password required.")
        user = User(email=normalize_email(email), role=Role.PROVIDER.value, password_hash=hash_password(password))
        try:
            user.id = self.users.create_user(user)
        except IntegrityError as exc:
            raise ConflictError("Email already registered.") from exc
        try:
            self.profiles.create_provider(ProviderProfile(user_id=user.id, name=name, specialty=specialty))
        except Exception:
            logger.warning("Provider setup for user %s failed; removing the account", user.id)
            self.users.delete_user(user.id)
            raise
        logger.info("Created provider user %s", user.id)
        return user

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, email: str | None, password: str | None) -> AuthResult:
        """Open a new session. Existing sessions for the user stay live.

        Raises AuthenticationError with the same message whether the email is
        unknown or the password is wrong.
        """
        if not email or not password:
            raise ValidationError("Email and password required.")
        user = self.users.get_by_email(email)
        if user is None:
            burn_password_check(password)
            logger.warning("Login failed: unknown email")
            raise AuthenticationError(_INVALID_CREDENTIALS)
        if not verify_password(password, user.password_hash or ""):
            logger.warning("Login failed: bad password for user %s", user.id)
            raise AuthenticationError(_INVALID_CREDENTIALS)

        result = self._open_session(user)
        logger.info("User %s logged in", user.id)
        return result

    def refresh(self, refresh_token: str | None) -> AuthResult:
        """Redeem a refresh token for a new pair. The presented token is spent.

        Raises ValidationError if no token is given, InvalidTokenError if it
        fails verification, AuthenticationError if its user is gone or it is
        not live (already rotated, revoked, or lost a concurrent rotation).
        """
        if not refresh_token:
            raise ValidationError("Refresh token required.")
        user_id = subject_id(decode_refresh_token(refresh_token))

        user = self.users.get_by_id(user_id)
        if user is None:
            logger.warning("Refresh rejected: user %s no longer exists", user_id)
            raise AuthenticationError("User not found for refresh token.")

        access_token = create_access_token(user)
        new_refresh = create_refresh_token(user)
        old_digest, new_digest = token_digest(refresh_token), token_digest(new_refresh)
        if not self.users.rotate_refresh_token(user.id, old_digest, new_digest):
            logger.warning("Refresh rejected: token not live for user %s", user.id)
            raise AuthenticationError("Refresh token not recognized.")
        user.refresh_tokens = [d for d in user.refresh_tokens if d != old_digest] + [new_digest]

        logger.info("Rotated refresh token for user %s", user.id)
        return AuthResult(user=user, access_token=access_token, refresh_token=new_refresh)

    def revoke(self, user_id: int, refresh_token: str | None = None) -> int:
        """End one session (token given) or every session (no token).

        Idempotent: revoking a token that is not live removes nothing and is
        not an error. Raises NotFoundError if the user does not exist.
        Returns the number of sessions ended.
        """
        if self.users.get_by_id(user_id) is None:
            raise NotFoundError("User not found.")
        if refresh_token:
            removed = self.users.remove_refresh_token(user_id, token_digest(refresh_token))
        else:
            removed = self.users.clear_refresh_tokens(user_id)
        logger.info("Revoked %d session(s) for user %s", removed, user_id)
        return removed

    def _discard_registration(self, user_id: int) -> None:
        """Undo the writes of a registration that failed part way.

        The stores commit separately, so each step is deleted on its own. A
        cleanup failure is logged; the caller re-raises the original error.
        """
        try:
            self.consents.discard_for_user(user_id)
            self.profiles.delete_patient_by_user(user_id)
            self.users.delete_user(user_id)
        except SQLAlchemyError:
            logger.exception("Could not remove partial registration of user %s", user_id)

    def _open_session(self, user: User) -> AuthResult:
        access_token = create_access_token(user)
        refresh_token = create_refresh_token(user)
        digest = token_digest(refresh_token)
        self.users.add_refresh_token(user.id, digest)
        user.refresh_tokens.append(digest)
        return AuthResult(user=user, access_token=access_token, refresh_token=refresh_token)
