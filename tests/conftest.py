"""Shared pytest fixtures."""

import json
import os

os.environ.setdefault("BFP_JWT_SECRET", "bfp-dispatch-test-signing-key-0123456789abcdef")
os.environ.setdefault("CREATE_TABLES", "0")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models  # noqa: F401  (registers tables on Base)
from broadcast_hub import BroadcastHub
from database import Base, get_db
from incident_store import IncidentStore
from jwt_auth import create_access_token, hash_password
from models import FireStation, User


class FakeWebSocket:
    """Records frames sent by the hub; optionally fails every send."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.frames = []

    async def send_text(self, text: str):
        if self.fail:
            raise RuntimeError("socket closed")
        self.frames.append(json.loads(text))

    def types(self):
        return [f["type"] for f in self.frames]


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def store(db):
    return IncidentStore(db)


@pytest.fixture
def hub():
    return BroadcastHub()


@pytest.fixture
def make_socket():
    return FakeWebSocket


@pytest.fixture
def admin_user(db):
    user = User(
        id_number="BFP-001",
        first_name="Maria",
        last_name="Santos",
        full_name="Maria Santos",
        email="maria.santos@bfp.gov",
        password_hash=hash_password("station-pass"),
        role="admin",
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def stations(db):
    """Two ready stations in Metro Manila plus one that is not ready."""
    rows = [
        FireStation(station_id=1, station_name="Manila Central", latitude=14.5995, longitude=120.9842, is_ready=True),
        FireStation(station_id=2, station_name="Quezon City", latitude=14.6760, longitude=121.0437, is_ready=True),
        FireStation(station_id=3, station_name="Makati", latitude=14.5547, longitude=121.0244, is_ready=False),
    ]
    db.add_all(rows)
    db.commit()
    return rows


@pytest.fixture
def auth_headers(admin_user):
    token = create_access_token(user_id=admin_user.user_id, role="admin", id_number="BFP-001")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(session_factory, hub):
    from main import app

    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.state.hub = hub
    app.state.session_factory = session_factory
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c
