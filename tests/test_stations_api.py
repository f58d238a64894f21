"""HTTP tests for station management and readiness reports."""

import pytest

from jwt_auth import create_access_token
from models import FireStation, StationReadiness


@pytest.fixture
def officer_headers(admin_user):
    def _headers(station_id):
        token = create_access_token(
            user_id=admin_user.user_id, role="station_admin", assigned_station_id=station_id,
        )
        return {"Authorization": f"Bearer {token}"}
    return _headers


class TestStationAdmin:
    def test_create(self, client, auth_headers, db):
        resp = client.post("/api/firestations", json={
            "stationName": "Pasig Substation",
            "city": "Pasig",
            "latitude": 14.5764,
            "longitude": 121.0851,
            "stationType": "substation",
        }, headers=auth_headers)

        assert resp.status_code == 201
        station = db.get(FireStation, resp.json()["stationId"])
        assert station.station_name == "Pasig Substation"
        assert station.station_type == "substation"
        assert not station.is_ready

    def test_create_missing_fields(self, client, auth_headers):
        resp = client.post("/api/firestations", json={"stationName": "No Coords"}, headers=auth_headers)
        assert resp.status_code == 400

    def test_requires_admin_role(self, client, officer_headers):
        resp = client.post("/api/firestations", json={
            "stationName": "X", "latitude": 1, "longitude": 1, "stationType": "main",
        }, headers=officer_headers(1))
        assert resp.status_code == 403

    def test_requires_token(self, client):
        assert client.delete("/api/firestations/1").status_code == 401

    def test_update(self, client, auth_headers, stations, db):
        resp = client.put("/api/firestations/1", json={"contactNumber": "02-8527-3627"}, headers=auth_headers)

        assert resp.status_code == 200
        db.expire_all()
        station = db.get(FireStation, 1)
        assert station.contact_number == "02-8527-3627"
        assert station.station_name == "Manila Central"

    def test_update_needs_both_coordinates(self, client, auth_headers, stations):
        resp = client.put("/api/firestations/1", json={"latitude": 14.7}, headers=auth_headers)
        assert resp.status_code == 400

    def test_update_unknown(self, client, auth_headers):
        resp = client.put("/api/firestations/99", json={"city": "Pasay"}, headers=auth_headers)
        assert resp.status_code == 404

    def test_delete(self, client, auth_headers, stations, db):
        assert client.delete("/api/firestations/3", headers=auth_headers).status_code == 200
        assert client.get("/api/firestations/3").status_code == 404
        assert client.delete("/api/firestations/3", headers=auth_headers).status_code == 404


class TestReadiness:
    def test_ready_report_makes_station_dispatchable(self, client, officer_headers, stations, db):
        resp = client.post("/api/station-readiness", json={
            "status": "READY",
            "readinessPercentage": 95,
            "equipmentChecklist": {"hose": True, "scba": True},
        }, headers=officer_headers(3))

        assert resp.status_code == 201
        assert resp.json()["stationId"] == 3
        db.expire_all()
        assert db.get(FireStation, 3).is_ready
        assert db.get(FireStation, 3).last_status_update is not None

        ready = client.get("/api/firestations", params={"ready_only": True}).json()["stations"]
        assert [s["station_id"] for s in ready] == [1, 2, 3]

        alarm = client.post("/api/enduser/create-alarm", json={
            "phoneNumber": "09178889999", "latitude": 14.55, "longitude": 121.02, "forceStationId": 3,
        })
        assert alarm.status_code == 201

    def test_not_ready_report_removes_station(self, client, officer_headers, stations, db):
        client.post("/api/station-readiness", json={
            "status": "NOT_READY", "readinessPercentage": 40,
        }, headers=officer_headers(1))

        db.expire_all()
        assert not db.get(FireStation, 1).is_ready

    def test_latest_report(self, client, officer_headers, auth_headers, stations):
        headers = officer_headers(2)
        client.post("/api/station-readiness", json={"status": "NOT_READY", "readinessPercentage": 50}, headers=headers)
        client.post("/api/station-readiness", json={"status": "READY", "readinessPercentage": 100}, headers=headers)

        body = client.get("/api/station-readiness/2", headers=auth_headers).json()

        assert body["status"] == "READY"
        assert body["readinessPercentage"] == 100
        assert body["stationName"] == "Quezon City"
        assert body["submittedBy"] == "Maria Santos"

    def test_no_report_yet(self, client, auth_headers, stations):
        assert client.get("/api/station-readiness/1", headers=auth_headers).status_code == 404

    def test_overview(self, client, officer_headers, auth_headers, stations):
        client.post("/api/station-readiness", json={"status": "READY", "readinessPercentage": 90}, headers=officer_headers(3))

        overview = client.get("/api/stations-readiness-overview", headers=auth_headers).json()["overview"]

        by_id = {o["stationId"]: o for o in overview}
        assert by_id[3]["readinessStatus"] == "READY"
        assert by_id[3]["isReady"] is True
        assert by_id[1]["readinessStatus"] == "UNKNOWN"
        assert by_id[1]["lastSubmittedBy"] == "N/A"

    def test_unassigned_officer(self, client, auth_headers, stations, db):
        resp = client.post("/api/station-readiness", json={"status": "READY", "readinessPercentage": 90}, headers=auth_headers)
        assert resp.status_code == 403
        assert db.query(StationReadiness).count() == 0

    def test_missing_fields(self, client, officer_headers, stations):
        resp = client.post("/api/station-readiness", json={"status": "READY"}, headers=officer_headers(1))
        assert resp.status_code == 400
