"""
tests/test_audit.py -- Unit tests for the audit package.

Covers:
  - AuditStore appends and answers user-activity and PHI-access queries
  - AuditStore exposes no update or delete operation
  - AuditLog.record() swallows persistence failures and logs them
  - Route table: exact and prefix matches, unmapped routes ignored
  - Resource type and id inference from the path
  - Client IP precedence: X-Forwarded-For, X-Real-IP, socket peer
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from sqlalchemy.exc import OperationalError
from starlette.requests import Request

from audit.log import AuditLog, build_entry, client_ip
from audit.middleware import resolve_action, resource_id_for, resource_type_for
from audit.models import AuditAction, AuditEntry, ResourceType
from audit.store import AuditStore
from auth.models import User


def _window() -> tuple[datetime, datetime]:
    now = datetime.now(timezone.utc)
    return now - timedelta(hours=1), now + timedelta(hours=1)


def _request(headers: dict[str, str] | None = None, client: tuple[str, int] | None = ("192.0.2.10", 5000)) -> Request:
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/v1/patients/me",
        "query_string": b"",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": client,
    }
    return Request(scope)


class TestAuditStore:
    def test_append_and_read_back(self, stores) -> None:
        entry_id = stores.audit.append(
            AuditEntry(
                action=AuditAction.LOGIN_FAILED.value,
                user_email="alice@example.com",
                ip_address="203.0.113.5",
                details={"status_code": 401},
                success=False,
                error_message="Invalid credentials.",
            )
        )
        (stored,) = stores.audit.recent()
        assert stored.id == entry_id
        assert stored.user_id is None
        assert stored.user_email == "alice@example.com"
        assert stored.details == {"status_code": 401}
        assert stored.success is False
        assert stored.timestamp

    def test_user_activity_newest_first(self, stores) -> None:
        for action in (AuditAction.LOGIN, AuditAction.PROFILE_VIEW, AuditAction.LOGOUT):
            stores.audit.append(AuditEntry(action=action.value, user_id=3))
        stores.audit.append(AuditEntry(action=AuditAction.LOGIN.value, user_id=4))

        start, end = _window()
        actions = [e.action for e in stores.audit.user_activity(3, start, end)]
        assert actions == ["LOGOUT", "PROFILE_VIEW", "LOGIN"]

    def test_user_activity_respects_window(self, stores) -> None:
        stores.audit.append(AuditEntry(action=AuditAction.LOGIN.value, user_id=3))
        past = datetime.now(timezone.utc) - timedelta(days=10)
        assert stores.audit.user_activity(3, past - timedelta(days=1), past) == []

    def test_phi_access_only_counts_phi_actions(self, stores) -> None:
        stores.audit.append(AuditEntry(action=AuditAction.PATIENT_VIEW.value, user_id=1, resource_id=9))
        stores.audit.append(AuditEntry(action=AuditAction.PHI_UPDATE.value, user_id=1, resource_id=9))
        stores.audit.append(AuditEntry(action=AuditAction.LOGIN.value, user_id=1, resource_id=9))
        stores.audit.append(AuditEntry(action=AuditAction.PATIENT_VIEW.value, user_id=1, resource_id=10))

        start, end = _window()
        actions = sorted(e.action for e in stores.audit.phi_access(9, start, end))
        assert actions == ["PATIENT_VIEW", "PHI_UPDATE"]

    def test_store_is_append_only(self) -> None:
        public = {name for name in dir(AuditStore) if not name.startswith("_")}
        assert not {n for n in public if n.startswith(("update", "delete", "remove", "purge"))}


class TestAuditLog:
    def test_record_returns_id(self, stores) -> None:
        log = AuditLog(stores.audit)
        assert log.record(AuditEntry(action=AuditAction.LOGIN.value, user_id=1)) is not None
        assert stores.audit.count() == 1

    def test_record_swallows_store_failure(self, caplog) -> None:
        store = MagicMock()
        store.append.side_effect = OperationalError("INSERT", {}, Exception("disk I/O error"))
        log = AuditLog(store)

        with caplog.at_level(logging.ERROR, logger="healthportal.audit"):
            assert log.record(AuditEntry(action=AuditAction.PATIENT_VIEW.value)) is None

        assert "Audit write failed" in caplog.text


class TestRouteMapping:
    def test_exact_matches(self) -> None:
        assert resolve_action("GET", "/api/v1/patients/me") is AuditAction.PROFILE_VIEW
        assert resolve_action("put", "/api/v1/patients/me") is AuditAction.PROFILE_UPDATE
        assert resolve_action("GET", "/api/v1/providers/patients") is AuditAction.PATIENT_VIEW
        assert resolve_action("POST", "/api/v1/consents") is AuditAction.CONSENT_GIVEN

    def test_prefix_matches(self) -> None:
        assert resolve_action("GET", "/api/v1/providers/patients/42") is AuditAction.PATIENT_VIEW
        assert resolve_action("DELETE", "/api/v1/consents/marketing") is AuditAction.CONSENT_REVOKED

    def test_unmapped_routes_ignored(self) -> None:
        assert resolve_action("GET", "/api/v1/health") is None
        assert resolve_action("DELETE", "/api/v1/patients/me") is None
        assert resolve_action("GET", "/api/v1/providers/me") is None

    def test_resource_type_inference(self) -> None:
        assert resource_type_for("/api/v1/providers/patients/3") is ResourceType.PATIENT_PROFILE
        assert resource_type_for("/api/v1/providers/me") is ResourceType.PROVIDER
        assert resource_type_for("/api/v1/consents/marketing") is ResourceType.CONSENT
        assert resource_type_for("/api/v1/auth/login") is ResourceType.USER
        assert resource_type_for("/api/v1/health") is ResourceType.SYSTEM

    def test_resource_id_is_first_numeric_segment(self) -> None:
        assert resource_id_for("/api/v1/providers/patients/42") == 42
        assert resource_id_for("/api/v1/things/7/children/8") == 7
        assert resource_id_for("/api/v1/patients/me") is None
        assert resource_id_for("/api/v1/patients/12abc") is None


class TestRequestContext:
    def test_forwarded_for_first_hop_wins(self) -> None:
        request = _request({"X-Forwarded-For": "203.0.113.7, 10.0.0.1", "X-Real-IP": "10.0.0.2"})
        assert client_ip(request) == "203.0.113.7"

    def test_real_ip_next(self) -> None:
        assert client_ip(_request({"X-Real-IP": "10.0.0.2"})) == "10.0.0.2"

    def test_socket_peer_then_unknown(self) -> None:
        assert client_ip(_request()) == "192.0.2.10"
        assert client_ip(_request(client=None)) == "unknown"

    def test_entry_without_identity_has_null_user_fields(self) -> None:
        entry = build_entry(_request({"User-Agent": "pytest"}), AuditAction.PROFILE_VIEW, email="x@example.com")
        assert entry.user_id is None
        assert entry.user_role is None
        assert entry.user_email == "x@example.com"
        assert entry.user_agent == "pytest"
        assert entry.endpoint == "/api/v1/patients/me"

    def test_entry_uses_authenticated_user(self) -> None:
        request = _request()
        request.state.user = User(email="alice@example.com", role="patient", id=11)
        entry = build_entry(request, AuditAction.PROFILE_VIEW, resource_type=ResourceType.PATIENT_PROFILE)
        assert (entry.user_id, entry.user_email, entry.user_role) == (11, "alice@example.com", "patient")
        assert entry.resource_type == "PatientProfile"
