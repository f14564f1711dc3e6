"""
tests/test_cli.py -- Tests for the operator CLI in main.py.

The CLI opens and closes its own stores. A fixture store stays open on the
same named in-memory database so the data outlives each CLI invocation.
"""

from __future__ import annotations

import json
import uuid

import pytest

from audit.models import AuditAction, AuditEntry
from main import audit_trail, main, seed_providers


@pytest.fixture()
def db_url() -> str:
    return f"sqlite:///file:test_cli_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


class TestSeedProviders:
    def test_seed_is_idempotent(self, service, stores, capsys) -> None:
        assert seed_providers(service) == ["doc1@example.com", "doc2@example.com"]
        assert seed_providers(service) == []
        assert "already exists" in capsys.readouterr().out

        doc1 = stores.users.get_by_email("doc1@example.com")
        assert doc1.role == "provider"
        assert stores.profiles.get_provider_by_user(doc1.id).specialty == "Family Medicine"

    def test_seeded_provider_can_log_in(self, service) -> None:
        seed_providers(service, password="Seeded123")
        assert service.login("doc2@example.com", "Seeded123").user.role == "provider"


class TestAuditTrail:
    def test_requires_a_target(self, stores) -> None:
        with pytest.raises(ValueError):
            audit_trail(stores.audit)

    def test_user_and_resource_queries(self, stores) -> None:
        stores.audit.append(AuditEntry(action=AuditAction.PATIENT_VIEW.value, user_id=2, resource_id=5))
        stores.audit.append(AuditEntry(action=AuditAction.LOGIN.value, user_id=2))
        assert len(audit_trail(stores.audit, user_id=2)) == 2
        assert [e.action for e in audit_trail(stores.audit, resource_id=5)] == ["PATIENT_VIEW"]


class TestMain:
    def test_create_provider_then_duplicate(self, db_url: str, capsys) -> None:
        from auth.store import UserStore

        keeper = UserStore(db_url)
        try:
            args = ["--database-url", db_url, "create-provider", "--email", "doc3@example.com",
                    "--password", "Provider123", "--name", "Dr. Carol"]
            assert main(args) == 0
            assert "Created provider doc3@example.com" in capsys.readouterr().out
            assert keeper.get_by_email("doc3@example.com").role == "provider"

            assert main(args) == 1
            assert "already registered" in capsys.readouterr().err
        finally:
            keeper.close()

    def test_audit_trail_prints_json_lines(self, db_url: str, capsys) -> None:
        from audit.store import AuditStore

        keeper = AuditStore(db_url)
        try:
            keeper.append(AuditEntry(action=AuditAction.LOGIN.value, user_id=8, ip_address="192.0.2.1"))
            assert main(["--database-url", db_url, "audit-trail", "--user-id", "8", "--days", "1"]) == 0
            lines = capsys.readouterr().out.strip().splitlines()
            assert len(lines) == 1
            record = json.loads(lines[0])
            assert record["action"] == "LOGIN"
            assert record["ip_address"] == "192.0.2.1"
        finally:
            keeper.close()
