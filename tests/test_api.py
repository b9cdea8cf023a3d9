from dataclasses import dataclass

import pytest
from fastapi.testclient import TestClient

from conftest import IMAGE_B64, REPORTED, FakeClassifier, FakeStorage
from greensnap import main
from greensnap.config import settings
from greensnap.models.user import Role, User


@dataclass
class Api:
    client: TestClient
    classifier: FakeClassifier
    storage: FakeStorage
    users: dict

    def headers(self, name):
        return {"X-User-Id": self.users[name].id}

    def create_report(self, **overrides):
        body = {
            "title": "Dumped rubble",
            "image": IMAGE_B64,
            "details": "Construction waste on the footpath",
            "address": "Canal Road, Lahore",
            "latitude": REPORTED.latitude,
            "longitude": REPORTED.longitude,
        }
        body.update(overrides)
        return self.client.post("/api/reports", json=body, headers=self.headers("citizen"))


@pytest.fixture
def api(tmp_path, monkeypatch):
    monkeypatch.setattr(main.db, "path", str(tmp_path / "api.db"))
    classifier = FakeClassifier()
    storage = FakeStorage()
    main.app.dependency_overrides[main.get_classifier] = lambda: classifier
    main.app.dependency_overrides[main.get_storage] = lambda: storage

    users = {
        "citizen": User(username="citizen", email="citizen@example.com"),
        "supervisor": User(username="sup", email="sup@example.com", role=Role.SUPERVISOR),
        "admin": User(username="admin", email="admin@example.com", role=Role.ADMIN),
    }
    with TestClient(main.app) as client:
        for user in users.values():
            client.portal.call(main.db.create_user, user)
        yield Api(client, classifier, storage, users)
    main.app.dependency_overrides.clear()


def test_health(api):
    assert api.client.get("/health").json() == {"status": "ok"}


def test_create_report(api):
    resp = api.create_report(reportType="hazardous", photoTimestamp="2026-10-01T08:30:00+00:00")
    assert resp.status_code == 201
    data = resp.json()
    assert data["pointsEarned"] == 20
    assert data["report"]["status"] == "pending"
    assert data["report"]["location"] == {"type": "Point", "coordinates": [74.3, 31.5]}
    assert data["report"]["photoTimestamp"].startswith("2026-10-01T08:30:00")
    assert data["classification"]["isWaste"] is True

    mine = api.client.get("/api/reports/mine", headers=api.headers("citizen")).json()
    assert [r["id"] for r in mine["reports"]] == [data["report"]["id"]]


def test_missing_fields_are_listed(api):
    resp = api.client.post(
        "/api/reports", json={"title": "Bin"}, headers=api.headers("citizen")
    )
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "VALIDATION_ERROR"
    assert data["missingFields"] == ["image", "details", "address", "latitude", "longitude"]


def test_non_numeric_coordinate_is_a_400(api):
    resp = api.create_report(latitude="north")
    assert resp.status_code == 400
    assert "latitude" in resp.json()["invalidFields"]


def test_bad_coordinate_does_not_hide_missing_fields(api):
    resp = api.client.post(
        "/api/reports", json={"latitude": "north", "longitude": 74.3}, headers=api.headers("citizen")
    )
    assert resp.status_code == 400
    data = resp.json()
    assert data["missingFields"] == ["title", "image", "details", "address"]
    assert list(data["invalidFields"]) == ["latitude"]


def test_resolve_collects_every_problem(api):
    report_id = api.create_report().json()["report"]["id"]
    sup = api.headers("supervisor")
    api.client.put(
        f"/api/supervisor/reports/{report_id}/status", json={"status": "in-progress"}, headers=sup
    )
    resp = api.client.put(
        f"/api/supervisor/reports/{report_id}/resolve",
        json={"latitude": 31.5, "longitude": "east"},
        headers=sup,
    )
    assert resp.status_code == 400
    data = resp.json()
    assert data["missingFields"] == ["image", "address"]
    assert list(data["invalidFields"]) == ["longitude"]


def test_not_waste_carries_classification(api):
    api.classifier.label = "Non-Waste"
    api.classifier.confidence = 0.92
    resp = api.create_report()
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "NOT_WASTE"
    assert data["classification"]["confidence"] == 0.92
    assert api.storage.uploads == []


def test_image_too_large(api, monkeypatch):
    monkeypatch.setattr(settings, "max_image_bytes", 16)
    resp = api.create_report()
    assert resp.status_code == 413
    assert resp.json()["code"] == "IMAGE_TOO_LARGE"


def test_authentication_and_roles(api):
    assert api.client.get("/api/reports/mine").status_code == 401
    assert api.client.get("/api/reports/mine", headers={"X-User-Id": "ghost"}).status_code == 401
    assert api.client.get("/api/admin/stats", headers=api.headers("citizen")).status_code == 403
    assert (
        api.client.get("/api/supervisor/reports", headers=api.headers("admin")).status_code == 403
    )


def test_supervisor_and_admin_flow(api):
    report_id = api.create_report().json()["report"]["id"]
    sup = api.headers("supervisor")
    admin = api.headers("admin")

    resp = api.client.put(
        f"/api/supervisor/reports/{report_id}/status",
        json={"status": "in-progress", "assignedMsg": "Truck dispatched"},
        headers=sup,
    )
    assert resp.status_code == 200
    assert resp.json()["report"]["assignedTo"] == api.users["supervisor"].id

    resp = api.client.patch(f"/api/admin/reports/{report_id}/permanent-resolved", headers=admin)
    assert resp.status_code == 400
    assert resp.json()["code"] == "PRECONDITION_FAILED"

    resp = api.client.put(
        f"/api/supervisor/reports/{report_id}/resolve",
        json={
            "image": IMAGE_B64,
            "latitude": REPORTED.latitude + 0.00014,
            "longitude": REPORTED.longitude,
            "address": "Canal Road",
        },
        headers=sup,
    )
    assert resp.status_code == 200
    assert resp.json()["report"]["status"] == "resolved"

    resp = api.client.patch(f"/api/admin/reports/{report_id}/permanent-resolved", headers=admin)
    assert resp.status_code == 400
    data = resp.json()
    assert data["code"] == "TOO_FAR_APART"
    assert data["distance"] == pytest.approx(15.57, abs=0.05)

    resp = api.client.post(
        f"/api/admin/reports/{report_id}/reject", json={"reason": "Resolved elsewhere"}, headers=admin
    )
    assert resp.status_code == 200
    assert resp.json()["report"]["status"] == "rejected"

    detail = api.client.get(f"/api/admin/reports/{report_id}", headers=admin).json()
    assert detail["report"]["rejectionReason"] == "Resolved elsewhere"


def test_permanent_resolution_within_geofence(api):
    report_id = api.create_report().json()["report"]["id"]
    sup = api.headers("supervisor")
    api.client.put(
        f"/api/supervisor/reports/{report_id}/status", json={"status": "in-progress"}, headers=sup
    )
    api.client.put(
        f"/api/supervisor/reports/{report_id}/resolve",
        json={
            "image": IMAGE_B64,
            "latitude": REPORTED.latitude + 0.00004,
            "longitude": REPORTED.longitude,
            "address": "Canal Road",
        },
        headers=sup,
    )
    resp = api.client.patch(
        f"/api/admin/reports/{report_id}/permanent-resolved", headers=api.headers("admin")
    )
    assert resp.status_code == 200
    assert resp.json()["distance"] == pytest.approx(4.45, abs=0.05)
    assert resp.json()["report"]["status"] == "permanent-resolved"


def test_status_endpoint_refuses_unsupported_targets(api):
    report_id = api.create_report().json()["report"]["id"]
    sup = api.headers("supervisor")
    url = f"/api/supervisor/reports/{report_id}/status"

    resp = api.client.put(url, json={"status": "resolved"}, headers=sup)
    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"

    resp = api.client.put(url, json={"status": "pending"}, headers=sup)
    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_TRANSITION"
    assert resp.json()["allowedStatuses"] == ["in-progress", "out-of-scope"]

    resp = api.client.put(url, json={"status": "permanent-resolved"}, headers=sup)
    assert resp.status_code == 403

    resp = api.client.put(url, json={"status": "archived"}, headers=sup)
    assert resp.status_code == 400


def test_out_of_scope_endpoint(api):
    report_id = api.create_report().json()["report"]["id"]
    url = f"/api/supervisor/reports/{report_id}/out-of-scope"

    resp = api.client.put(url, json={}, headers=api.headers("supervisor"))
    assert resp.status_code == 400

    resp = api.client.put(url, json={"reason": "Cantonment area"}, headers=api.headers("supervisor"))
    assert resp.status_code == 200
    assert resp.json()["report"]["outOfScopeReason"] == "Cantonment area"

    listed = api.client.get(
        "/api/supervisor/reports", params={"status": "out-of-scope"}, headers=api.headers("supervisor")
    ).json()
    assert listed["total"] == 1


def test_bulk_assignment(api):
    first = api.create_report().json()["report"]["id"]
    second = api.create_report().json()["report"]["id"]
    api.client.put(
        f"/api/supervisor/reports/{second}/status",
        json={"status": "in-progress"},
        headers=api.headers("supervisor"),
    )

    resp = api.client.post(
        "/api/admin/reports/assign-to-supervisor",
        json={
            "supervisorId": api.users["supervisor"].id,
            "reportIds": [first, second, "missing"],
        },
        headers=api.headers("admin"),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["assigned"] == 1
    assert data["results"] == [
        {"reportId": first, "success": True},
        {"reportId": second, "success": False, "reason": "NotPending"},
        {"reportId": "missing", "success": False, "reason": "NotFound"},
    ]

    resp = api.client.post(
        "/api/admin/reports/assign-to-supervisor",
        json={"supervisorId": api.users["citizen"].id, "reportIds": [first]},
        headers=api.headers("admin"),
    )
    assert resp.status_code == 400


def test_delete_report(api):
    report_id = api.create_report(reportType="large").json()["report"]["id"]

    resp = api.client.delete(f"/api/reports/{report_id}", headers=api.headers("supervisor"))
    assert resp.status_code == 403

    resp = api.client.delete(f"/api/reports/{report_id}", headers=api.headers("citizen"))
    assert resp.status_code == 200

    resp = api.client.delete(f"/api/reports/{report_id}", headers=api.headers("citizen"))
    assert resp.status_code == 404
    assert resp.json()["code"] == "NOT_FOUND"

    citizen = api.client.portal.call(main.db.find_user_by_id, api.users["citizen"].id)
    assert (citizen.report_count, citizen.points) == (0, 0)


def test_admin_dashboard(api):
    api.create_report()
    api.create_report(reportType="hazardous")
    admin = api.headers("admin")

    counts = api.client.get("/api/admin/reports/status-counts", headers=admin).json()["counts"]
    assert counts["pending"] == 2
    assert counts["total"] == 2

    stats = api.client.get("/api/admin/stats", headers=admin).json()["stats"]
    assert stats["totalReports"] == 2
    assert stats["resolutionRate"] == 0
    assert stats["totalSupervisors"] == 1

    listed = api.client.get(
        "/api/admin/reports", params={"reportType": "hazardous"}, headers=admin
    ).json()
    assert listed["total"] == 1
    assert listed["reports"][0]["reportType"] == "hazardous"


def test_classify_endpoint(api):
    resp = api.client.post(
        "/api/classify", json={"image": IMAGE_B64}, headers=api.headers("citizen")
    )
    assert resp.status_code == 200
    assert resp.json()["label"] == "Waste"

    resp = api.client.post("/api/classify", json={}, headers=api.headers("citizen"))
    assert resp.status_code == 400
