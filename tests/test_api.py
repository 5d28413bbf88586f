"""
API tests through FastAPI's TestClient.

Background follow-ups (projection, notifications) run inside the
TestClient request cycle, so their effects are visible right after the call.
"""

import pytest
from fastapi.testclient import TestClient

from enrollment.config import Settings
from enrollment.main import create_app
from tests.conftest import voter_payload

ADMIN = {"X-Actor-Id": "1", "X-Actor-Role": "admin"}
REFS = {
    "references": [
        {"reference_name": "Ravi Kumar", "reference_contact": "9000000001"},
        {"reference_name": "Meena Joshi", "reference_contact": "9000000002"},
    ]
}


@pytest.fixture
def client(services):
    return TestClient(create_app(services=services))


@pytest.fixture
def voter_id(client):
    r = client.post("/api/users/enroll", json=voter_payload())
    assert r.status_code == 201
    return r.json()["data"]["voter"]["id"]


class TestMeta:
    def test_health(self, client):
        r = client.get("/health")
        assert r.status_code == 200
        assert r.json()["ok"] is True

    def test_unknown_route_uses_envelope(self, client):
        r = client.get("/api/nope")
        assert r.status_code == 404
        assert r.json()["success"] is False
        assert r.json()["error"]["code"] == "NOT_FOUND"

    def test_docs_hidden_in_production(self, client, services):
        assert client.get("/docs").status_code == 200

        prod = TestClient(create_app(services=services, settings=Settings(APP_ENV="production")))

        assert prod.get("/docs").status_code == 404


class TestEnrollment:
    """Public enrollment endpoints."""

    def test_enroll(self, client, index):
        r = client.post("/api/users/enroll", json=voter_payload())

        assert r.status_code == 201
        body = r.json()
        assert body["success"] is True
        assert body["data"]["voter"]["identity_number"] == "1234****9012"
        assert index.get(str(body["data"]["voter"]["id"])) is not None

    def test_duplicate_identity(self, client, voter_id):
        r = client.post("/api/users/enroll", json=voter_payload(contact="9000000009"))

        assert r.status_code == 409
        error = r.json()["error"]
        assert error["code"] == "IDENTITY_ALREADY_EXISTS"
        assert error["request_id"]
        assert error["timestamp"]

    def test_validation_errors(self, client):
        r = client.post("/api/users/enroll", json=voter_payload(identity_number="12", contact="555"))

        assert r.status_code == 400
        error = r.json()["error"]
        assert error["code"] == "VALIDATION_ERROR"
        assert {d["field"] for d in error["details"]} >= {"identity_number", "contact"}

    def test_non_object_body(self, client):
        r = client.post("/api/users/enroll", json=["not", "an", "object"])

        assert r.status_code == 400
        assert r.json()["error"]["code"] == "VALIDATION_ERROR"

    def test_identity_check(self, client, voter_id):
        r = client.post("/api/users/identity/check", json={"identity_number": "1234-5678-9012"})
        assert r.json()["data"] == {"identity_number": "1234****9012", "exists": True}

        r = client.post("/api/users/identity/check", json={"identity_number": "999999999999"})
        assert r.json()["data"]["exists"] is False

    def test_identity_check_bad_format(self, client):
        r = client.post("/api/users/identity/check", json={"identity_number": "12ab"})
        assert r.status_code == 400


class TestReferences:
    """Public reference endpoints."""

    def test_add_and_list(self, client, voter_id):
        r = client.post(f"/api/references/{voter_id}", json=REFS)
        assert r.status_code == 201
        assert r.json()["data"]["count"] == 2

        r = client.get(f"/api/references/{voter_id}")
        refs = r.json()["data"]["references"]
        assert [ref["reference_contact"] for ref in refs] == ["9000****01", "9000****02"]
        assert all(ref["status"] == "PENDING" for ref in refs)

    def test_duplicate_reference(self, client, voter_id):
        client.post(f"/api/references/{voter_id}", json=REFS)

        r = client.post(f"/api/references/{voter_id}", json=REFS)

        assert r.status_code == 409
        assert r.json()["error"]["code"] == "REFERENCE_ALREADY_EXISTS"

    def test_too_many_references(self, client, voter_id):
        refs = [{"reference_name": "Ref Person", "reference_contact": f"90000000{i:02d}"} for i in range(11)]

        r = client.post(f"/api/references/{voter_id}", json={"references": refs})

        assert r.status_code == 400

    def test_unknown_voter(self, client):
        r = client.get("/api/references/999")
        assert r.status_code == 404
        assert r.json()["error"]["code"] == "VOTER_NOT_FOUND"


class TestAdminAuth:
    def test_requires_identity(self, client):
        assert client.get("/api/admin/stats").status_code == 401

    def test_requires_admin_role(self, client):
        r = client.get("/api/admin/stats", headers={"X-Actor-Id": "7", "X-Actor-Role": "voter"})
        assert r.status_code == 403
        assert r.json()["error"]["code"] == "FORBIDDEN"

    def test_manager_allowed(self, client):
        r = client.get("/api/admin/stats", headers={"X-Actor-Id": "7", "X-Actor-Role": "manager"})
        assert r.status_code == 200


class TestAdmin:
    """Admin endpoints."""

    def test_verification_toggle(self, client, voter_id, index):
        r = client.put(f"/api/admin/voters/{voter_id}/verification", json={"verified": True}, headers=ADMIN)
        data = r.json()["data"]
        assert data["changed"] is True
        assert data["voter"]["verification_status"] == "VERIFIED"
        assert index.get(str(voter_id))["verification_status"] == "VERIFIED"

        r = client.put(f"/api/admin/voters/{voter_id}/verification", json={"verified": True}, headers=ADMIN)
        data = r.json()["data"]
        assert r.status_code == 200
        assert data["already_in_state"] is True

    def test_patch_voter(self, client, voter_id, index):
        r = client.patch(f"/api/admin/voters/{voter_id}", json={"occupation": "Engineer"}, headers=ADMIN)

        assert r.status_code == 200
        assert r.json()["data"]["occupation"] == "Engineer"
        assert index.get(str(voter_id))["occupation"] == "Engineer"

    def test_patch_identity_rejected(self, client, voter_id):
        r = client.patch(f"/api/admin/voters/{voter_id}", json={"identity_number": "111122223333"}, headers=ADMIN)
        assert r.status_code == 400

    def test_voter_detail(self, client, voter_id):
        client.post(f"/api/references/{voter_id}", json=REFS)

        r = client.get(f"/api/admin/voters/{voter_id}", headers=ADMIN)

        data = r.json()["data"]
        assert data["identity_number"] == "123456789012"
        assert len(data["references"]) == 2
        assert data["verified_by_admin"] is None

    def test_list_voters(self, client, voter_id):
        r = client.get("/api/admin/voters", params={"q": "asha"}, headers=ADMIN)

        data = r.json()["data"]
        assert data["pagination"]["total"] == 1
        assert data["items"][0]["id"] == voter_id

    def test_reference_status_notifies(self, client, voter_id, channel, services):
        client.post(f"/api/references/{voter_id}", json=REFS)
        ref_id = services.store.list_references(voter_id)[0].id

        r = client.put(f"/api/admin/references/{ref_id}/status", json={"status": "CONTACTED"}, headers=ADMIN)

        assert r.json()["data"]["notification_queued"] is True
        assert len(channel.sent) == 1
        assert services.store.get_reference(ref_id).notification_sent is True

    def test_unknown_status_rejected(self, client, voter_id, services):
        client.post(f"/api/references/{voter_id}", json=REFS)
        ref_id = services.store.list_references(voter_id)[0].id

        r = client.put(f"/api/admin/references/{ref_id}/status", json={"status": "DONE"}, headers=ADMIN)

        assert r.status_code == 409
        assert r.json()["error"]["code"] == "INVALID_TRANSITION"

    def test_bulk_status_best_effort(self, client, voter_id, services, channel):
        client.post(f"/api/references/{voter_id}", json=REFS)
        a, b = [r.id for r in services.store.list_references(voter_id)]

        r = client.put(
            "/api/admin/references/status",
            json={
                "items": [
                    {"reference_id": a, "status": "CONTACTED"},
                    {"reference_id": 999, "status": "CONTACTED"},
                    {"reference_id": b, "status": "APPLIED"},
                ]
            },
            headers=ADMIN,
        )

        data = r.json()["data"]
        assert data["succeeded"] == 2
        assert data["failed"] == 1
        assert data["results"][1]["error"]["code"] == "REFERENCE_NOT_FOUND"
        assert len(channel.sent) == 1

    def test_search(self, client, voter_id):
        r = client.get("/api/admin/search/voters", params={"q": "asha"}, headers=ADMIN)

        data = r.json()["data"]
        assert data["total"] == 1
        assert data["items"][0]["voter_id"] == voter_id

    def test_delete_voter(self, client, voter_id, index):
        r = client.delete(f"/api/admin/voters/{voter_id}", headers=ADMIN)

        assert r.status_code == 200
        assert index.get(str(voter_id)) is None
        assert client.get(f"/api/admin/voters/{voter_id}", headers=ADMIN).status_code == 404

    def test_audit_log(self, client, voter_id):
        client.put(f"/api/admin/voters/{voter_id}/verification", json={"verified": True}, headers=ADMIN)

        r = client.get("/api/admin/audit", params={"entity_type": "VOTER", "entity_id": str(voter_id)}, headers=ADMIN)

        actions = [e["action"] for e in r.json()["data"]["items"]]
        assert actions == ["VERIFY", "CREATE"]

    def test_reindex_and_reconcile(self, client, voter_id, index):
        index.delete(str(voter_id))

        r = client.post("/api/admin/search/reconcile", headers=ADMIN)
        assert r.json()["data"]["repaired"] == 1

        r = client.post("/api/admin/search/reindex", headers=ADMIN)
        assert r.json()["data"]["batches"] >= 1

    def test_search_outage_returns_503(self, client, voter_id, index):
        index.down = True

        r = client.post("/api/admin/search/reindex", headers=ADMIN)

        assert r.status_code == 503
        assert r.json()["error"]["code"] == "INDEX_UNAVAILABLE"

    def test_name_suggestions(self, client, voter_id):
        r = client.get("/api/admin/search/suggestions", params={"q": "ash"}, headers=ADMIN)

        assert r.status_code == 200
        assert r.json()["data"]["suggestions"] == ["Asha Patil"]
