"""Tests for token issue/validation and the login endpoint."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from errors import AuthError
from jwt_auth import (
    JWT_ALGORITHM,
    JWT_SECRET,
    create_access_token,
    decode_access_token,
    validate_access_token,
)


class TestTokens:
    def test_round_trip(self):
        token = create_access_token(user_id=5, role="station_admin", id_number="BFP-005", assigned_station_id=2)
        claims = decode_access_token(token)
        assert claims.user_id == 5
        assert claims.role == "station_admin"
        assert claims.assigned_station_id == 2
        assert not claims.is_admin

    def test_expired(self):
        past = datetime.now(timezone.utc) - timedelta(hours=1)
        token = jwt.encode({"id": 1, "exp": past}, JWT_SECRET, algorithm=JWT_ALGORITHM)
        with pytest.raises(AuthError) as exc:
            decode_access_token(token)
        assert exc.value.status_code == 401

    def test_bad_signature(self):
        token = jwt.encode({"id": 1}, "some-other-secret-that-is-long-enough", algorithm=JWT_ALGORITHM)
        with pytest.raises(AuthError) as exc:
            decode_access_token(token)
        assert exc.value.status_code == 403

    def test_missing_id_claim(self):
        token = jwt.encode({"role": "admin"}, JWT_SECRET, algorithm=JWT_ALGORITHM)
        with pytest.raises(AuthError):
            decode_access_token(token)

    def test_validate_returns_none(self):
        assert validate_access_token("garbage") is None


class TestLogin:
    def test_success(self, client, admin_user):
        resp = client.post("/api/login", json={"idNumber": "BFP-001", "password": "station-pass"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["user"]["id"] == admin_user.user_id
        assert body["user"]["role"] == "admin"
        assert decode_access_token(body["token"]).user_id == admin_user.user_id

    def test_login_by_email(self, client, admin_user):
        resp = client.post("/api/login", json={"idNumber": "maria.santos@bfp.gov", "password": "station-pass"})
        assert resp.status_code == 200

    def test_wrong_password(self, client, admin_user):
        resp = client.post("/api/login", json={"idNumber": "BFP-001", "password": "nope"})
        assert resp.status_code == 401
        assert resp.json()["message"] == "Invalid ID Number or password"

    def test_missing_fields(self, client):
        assert client.post("/api/login", json={"idNumber": "BFP-001"}).status_code == 400

    def test_me(self, client, auth_headers, admin_user):
        resp = client.get("/api/me", headers=auth_headers)
        assert resp.json()["id"] == admin_user.user_id


class TestStationsEndpoints:
    def test_list_and_filter(self, client, stations):
        assert len(client.get("/api/firestations").json()["stations"]) == 3
        ready = client.get("/api/firestations", params={"ready_only": True}).json()["stations"]
        assert [s["station_id"] for s in ready] == [1, 2]

    def test_unknown_station(self, client):
        assert client.get("/api/firestations/99").status_code == 404


def test_health(client):
    assert client.get("/api/health").json()["status"] == "OK"
