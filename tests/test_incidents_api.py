"""HTTP tests for the incidents router."""

from unittest.mock import AsyncMock

import pytest

from errors import PersistenceError
from incident_store import IncidentStore
from models import Alarm, AlarmResponseLog, User


def _report(**overrides):
    body = {
        "firstName": "Juan",
        "lastName": "Dela Cruz",
        "phoneNumber": "09171234567",
        "location": "Tondo, Manila",
        "incidentType": "Residential Fire",
        "alarmLevel": "1st Alarm",
        "narrative": "Smoke from second floor",
        "latitude": 14.6,
        "longitude": 120.9,
    }
    body.update(overrides)
    return body


@pytest.fixture
def publish(hub, monkeypatch):
    mock = AsyncMock(return_value=0)
    monkeypatch.setattr(hub, "publish", mock)
    return mock


class TestCreateIncident:
    def test_new_caller(self, client, auth_headers, db, admin_user, publish):
        resp = client.post("/api/create-incident", json=_report(), headers=auth_headers)

        assert resp.status_code == 201
        body = resp.json()
        assert body["message"] == "Incident created successfully"
        assert body["status"] == "Pending Dispatch"
        assert body["coordinates"] == {"latitude": 14.6, "longitude": 120.9}

        callers = db.query(User).filter(User.role == "end_user").all()
        assert len(callers) == 1
        assert body["callerId"] == callers[0].user_id
        assert db.query(Alarm).count() == 1
        log = db.query(AlarmResponseLog).one()
        assert log.action_type == "Initial Dispatch"
        assert log.performed_by_user_id == admin_user.user_id

        publish.assert_awaited_once()
        event_name, event = publish.await_args.args
        assert event_name == "new-incident"
        assert event["alarmId"] == body["alarmId"]
        assert event["alarmLevel"] == "1st Alarm"
        assert event["coordinates"] == {"latitude": 14.6, "longitude": 120.9}

    def test_existing_caller_is_reused(self, client, auth_headers, db, publish):
        first = client.post("/api/create-incident", json=_report(), headers=auth_headers).json()
        second = client.post(
            "/api/create-incident",
            json=_report(firstName="Other", alarmLevel="2nd Alarm"),
            headers=auth_headers,
        ).json()

        assert second["callerId"] == first["callerId"]
        assert db.query(User).filter(User.role == "end_user").count() == 1
        assert db.query(Alarm).count() == 2
        assert publish.await_count == 2

    def test_alarm_level_is_normalized(self, client, auth_headers, db, publish):
        resp = client.post("/api/create-incident", json=_report(alarmLevel="2nd Alarm"), headers=auth_headers)
        alarm = db.get(Alarm, resp.json()["alarmId"])
        assert alarm.current_alarm_level == "Alarm 2"

    def test_general_alarm_collapses(self, client, auth_headers, db, publish):
        resp = client.post("/api/create-incident", json=_report(alarmLevel="General Alarm"), headers=auth_headers)
        alarm = db.get(Alarm, resp.json()["alarmId"])
        assert alarm.initial_alarm_level == "Alarm 1"

    @pytest.mark.parametrize("missing", ["phoneNumber", "latitude", "longitude", "alarmLevel"])
    def test_missing_required_field(self, client, auth_headers, db, publish, missing):
        body = _report()
        del body[missing]

        resp = client.post("/api/create-incident", json=body, headers=auth_headers)

        assert resp.status_code == 400
        assert "required" in resp.json()["message"]
        assert db.query(User).filter(User.role == "end_user").count() == 0
        assert db.query(Alarm).count() == 0
        publish.assert_not_awaited()

    def test_optional_fields_absent(self, client, auth_headers, db, publish):
        resp = client.post(
            "/api/create-incident",
            json={"phoneNumber": "09170000000", "latitude": 14.6, "longitude": 120.9, "alarmLevel": "1st Alarm"},
            headers=auth_headers,
        )
        assert resp.status_code == 201
        caller = db.get(User, resp.json()["callerId"])
        assert caller.full_name == "Unknown Caller"
        event = publish.await_args.args[1]
        assert event["narrative"] is None

    def test_requires_token(self, client, publish):
        resp = client.post("/api/create-incident", json=_report())
        assert resp.status_code == 401
        assert resp.json()["message"] == "Access token is missing"

    def test_rejects_bad_token(self, client, publish):
        resp = client.post("/api/create-incident", json=_report(), headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 403

    def test_persistence_failure(self, client, auth_headers, monkeypatch, publish):
        def broken(self, *args, **kwargs):
            raise PersistenceError("Persistence failure", error="connection reset")

        monkeypatch.setattr(IncidentStore, "create_incident", broken)

        resp = client.post("/api/create-incident", json=_report(), headers=auth_headers)

        assert resp.status_code == 500
        assert resp.json() == {"message": "Persistence failure", "error": "connection reset"}
        publish.assert_not_awaited()


class TestAlarmLevel:
    def _create(self, client, auth_headers):
        return client.post("/api/create-incident", json=_report(), headers=auth_headers).json()["alarmId"]

    def test_update(self, client, auth_headers, db, publish):
        alarm_id = self._create(client, auth_headers)

        resp = client.patch(
            f"/api/incidents/{alarm_id}/update-alarm-level",
            json={"newAlarmLevel": "Alarm 3"},
            headers=auth_headers,
        )

        assert resp.status_code == 200
        assert resp.json() == {"message": "Alarm level updated", "alarmId": alarm_id, "newAlarmLevel": "Alarm 3"}
        db.expire_all()
        assert db.get(Alarm, alarm_id).current_alarm_level == "Alarm 3"
        actions = [e.action_type for e in db.query(AlarmResponseLog).order_by(AlarmResponseLog.log_id)]
        assert actions == ["Initial Dispatch", "Alarm Level Change"]

    def test_missing_level(self, client, auth_headers, publish):
        alarm_id = self._create(client, auth_headers)
        resp = client.patch(f"/api/incidents/{alarm_id}/update-alarm-level", json={}, headers=auth_headers)
        assert resp.status_code == 400

    def test_unknown_alarm(self, client, auth_headers):
        resp = client.patch("/api/incidents/404/update-alarm-level", json={"newAlarmLevel": "Alarm 2"}, headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["message"] == "Incident not found"


class TestReads:
    def test_list_and_detail(self, client, auth_headers, publish):
        alarm_id = client.post("/api/create-incident", json=_report(), headers=auth_headers).json()["alarmId"]

        listing = client.get("/api/incidents", headers=auth_headers).json()
        assert listing["total"] == 1
        assert listing["incidents"][0]["phone_number"] == "09171234567"

        detail = client.get(f"/api/incidents/{alarm_id}", headers=auth_headers).json()
        assert detail["incident"]["alarm_id"] == alarm_id
        assert detail["timeline"][0]["action_type"] == "Initial Dispatch"

    def test_detail_not_found(self, client, auth_headers):
        assert client.get("/api/incidents/999", headers=auth_headers).status_code == 404


class TestEndUserAlarm:
    def test_dispatches_to_nearest_ready_station(self, client, hub, stations, db, monkeypatch):
        route = AsyncMock(return_value=1)
        monkeypatch.setattr(hub, "route_to_station", route)

        resp = client.post("/api/enduser/create-alarm", json={
            "phoneNumber": "09178889999",
            "latitude": 14.67,
            "longitude": 121.04,
            "incidentType": "Kitchen Fire",
            "alarmLevel": "2nd Alarm",
        })

        assert resp.status_code == 201
        body = resp.json()
        assert body["dispatchedStationId"] == 2
        assert body["withinRadius"] is True
        assert body["maxRadiusKm"] == 50
        assert len(body["distances"]) == 2

        station_id, event_name, payload = route.await_args.args
        assert station_id == 2
        assert event_name == "incoming-incident"
        assert payload["alarmLevel"] == "Alarm 2"
        assert db.get(Alarm, body["alarmId"]).dispatched_station_id == 2

    def test_forced_station_must_be_ready(self, client, stations):
        resp = client.post("/api/enduser/create-alarm", json={
            "phoneNumber": "09178889999", "latitude": 14.6, "longitude": 120.9, "forceStationId": 3,
        })
        assert resp.status_code == 400

    def test_no_ready_stations(self, client):
        resp = client.post("/api/enduser/create-alarm", json={
            "phoneNumber": "09178889999", "latitude": 14.6, "longitude": 120.9,
        })
        assert resp.status_code == 503

    def test_coordinates_required(self, client, stations):
        resp = client.post("/api/enduser/create-alarm", json={"phoneNumber": "09178889999"})
        assert resp.status_code == 400
