"""
tests/test_profile_routes.py -- Integration tests for patient and provider routes.

Coverage:
  - Patient reads and updates their own profile; assigned provider is shown
  - Provider sees their profile, patient count and assigned patients
  - A patient not assigned to the provider is 404
  - Role checks: patient on provider routes and provider on patient routes are 403
  - PHI reads and writes produce audit entries attributed to the caller
  - A handler that crashes still leaves a failed audit entry

Fixtures used (from conftest.py):
  - api_client: (client, stores, provider_token); the provider exists before
    any patient registers, so every patient in this module is assigned to it.
"""

from __future__ import annotations

import pytest
from sqlalchemy import text


def _bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _register_patient(client, email: str, **extra) -> dict:
    resp = client.post(
        "/api/v1/auth/register", json={"email": email, "password": "Passw0rd1", "consent": True, **extra}
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestPatientProfile:
    def test_get_own_profile(self, api_client) -> None:
        client, _, _ = api_client
        tokens = _register_patient(client, "pat1@example.com", name="Pat One", age=40, allergies=["penicillin"])
        resp = client.get("/api/v1/patients/me", headers=_bearer(tokens["accessToken"]))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["userId"] == tokens["user"]["id"]
        assert data["name"] == "Pat One"
        assert data["age"] == 40
        assert data["allergies"] == ["penicillin"]
        assert data["medications"] == []
        assert data["assignedProvider"]["name"] == "Dr. Test"

    def test_update_own_profile(self, api_client) -> None:
        client, _, _ = api_client
        tokens = _register_patient(client, "pat2@example.com", name="Pat Two")
        headers = _bearer(tokens["accessToken"])
        resp = client.put("/api/v1/patients/me", json={"age": 52, "medications": ["metformin"]}, headers=headers)
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["name"] == "Pat Two"
        assert data["age"] == 52
        assert data["medications"] == ["metformin"]

    def test_empty_update_rejected(self, api_client) -> None:
        client, _, _ = api_client
        tokens = _register_patient(client, "pat3@example.com")
        resp = client.put("/api/v1/patients/me", json={}, headers=_bearer(tokens["accessToken"]))
        assert resp.status_code == 400

    def test_out_of_range_age_rejected(self, api_client) -> None:
        client, _, _ = api_client
        tokens = _register_patient(client, "pat4@example.com")
        resp = client.put("/api/v1/patients/me", json={"age": 200}, headers=_bearer(tokens["accessToken"]))
        assert resp.status_code == 400

    def test_provider_cannot_use_patient_routes(self, api_client) -> None:
        client, _, provider_token = api_client
        resp = client.get("/api/v1/patients/me", headers=_bearer(provider_token))
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "forbidden"

    def test_requires_authentication(self, api_client) -> None:
        client, _, _ = api_client
        assert client.get("/api/v1/patients/me").status_code == 401


class TestProviderViews:
    def test_provider_profile_with_count(self, api_client) -> None:
        client, stores, provider_token = api_client
        _register_patient(client, "count@example.com")
        resp = client.get("/api/v1/providers/me", headers=_bearer(provider_token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["name"] == "Dr. Test"
        assert data["specialty"] == "Family Medicine"
        assert data["patientCount"] == stores.profiles.count_patients(data["id"])
        assert data["patientCount"] >= 1

    def test_list_and_fetch_assigned_patient(self, api_client) -> None:
        client, stores, provider_token = api_client
        tokens = _register_patient(client, "listed@example.com", name="Listed Patient")
        profile = stores.profiles.get_patient_by_user(tokens["user"]["id"])

        listing = client.get("/api/v1/providers/patients", headers=_bearer(provider_token))
        assert listing.status_code == 200
        assert profile.id in {p["id"] for p in listing.json()}

        detail = client.get(f"/api/v1/providers/patients/{profile.id}", headers=_bearer(provider_token))
        assert detail.status_code == 200
        assert detail.json()["name"] == "Listed Patient"

    def test_unassigned_patient_is_404(self, api_client) -> None:
        client, stores, provider_token = api_client
        tokens = _register_patient(client, "elsewhere@example.com")
        profile = stores.profiles.get_patient_by_user(tokens["user"]["id"])
        with stores.profiles.engine.begin() as conn:
            conn.execute(
                text("UPDATE patient_profiles SET assigned_provider_id = NULL WHERE id = :id"), {"id": profile.id}
            )

        resp = client.get(f"/api/v1/providers/patients/{profile.id}", headers=_bearer(provider_token))
        assert resp.status_code == 404
        assert client.get("/api/v1/providers/patients/999999", headers=_bearer(provider_token)).status_code == 404

    def test_patient_cannot_use_provider_routes(self, api_client) -> None:
        client, _, _ = api_client
        tokens = _register_patient(client, "nosy@example.com")
        assert client.get("/api/v1/providers/patients", headers=_bearer(tokens["accessToken"])).status_code == 403


class TestPhiAudit:
    def test_profile_view_and_update_recorded(self, api_client) -> None:
        client, stores, _ = api_client
        tokens = _register_patient(client, "audited@example.com")
        headers = _bearer(tokens["accessToken"])
        client.get("/api/v1/patients/me", headers=headers)
        client.put("/api/v1/patients/me", json={"name": "Audited"}, headers=headers)

        uid = tokens["user"]["id"]
        (view,) = [e for e in stores.audit.by_action("PROFILE_VIEW") if e.user_id == uid]
        assert view.user_role == "patient"
        assert view.resource_type == "PatientProfile"
        assert view.endpoint == "/api/v1/patients/me"
        assert view.details["status_code"] == 200
        assert view.success is True
        assert [e for e in stores.audit.by_action("PROFILE_UPDATE") if e.user_id == uid]

    def test_provider_patient_view_records_resource_id(self, api_client) -> None:
        client, stores, provider_token = api_client
        tokens = _register_patient(client, "viewed@example.com")
        profile = stores.profiles.get_patient_by_user(tokens["user"]["id"])
        client.get(f"/api/v1/providers/patients/{profile.id}", headers=_bearer(provider_token))

        entries = [e for e in stores.audit.by_action("PATIENT_VIEW") if e.resource_id == profile.id]
        assert len(entries) == 1
        assert entries[0].user_role == "provider"

    def test_denied_access_recorded_as_failure(self, api_client) -> None:
        client, stores, provider_token = api_client
        before = len(stores.audit.by_action("PROFILE_VIEW"))
        client.get("/api/v1/patients/me", headers=_bearer(provider_token))
        latest = stores.audit.by_action("PROFILE_VIEW")
        assert len(latest) == before + 1
        assert latest[0].success is False
        assert latest[0].error_message == "HTTP 403"

    def test_unhandled_error_still_recorded(self, api_client, monkeypatch) -> None:
        client, stores, _ = api_client
        tokens = _register_patient(client, "crash@example.com")

        def fail(user_id):
            raise RuntimeError("profile store down")

        monkeypatch.setattr(stores.profiles, "get_patient_by_user", fail)
        with pytest.raises(RuntimeError):
            client.get("/api/v1/patients/me", headers=_bearer(tokens["accessToken"]))

        uid = tokens["user"]["id"]
        (entry,) = [e for e in stores.audit.by_action("PROFILE_VIEW") if e.user_id == uid]
        assert entry.success is False
        assert entry.error_message == "HTTP 500"
        assert entry.details["status_code"] == 500

    def test_unmapped_route_not_recorded(self, api_client) -> None:
        client, stores, provider_token = api_client
        before = stores.audit.count()
        client.get("/api/v1/providers/me", headers=_bearer(provider_token))
        client.get("/api/v1/health")
        assert stores.audit.count() == before
