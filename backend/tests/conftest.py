"""Pytest fixtures: throwaway SQLite database for fast, isolated tests."""
import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

from labcal.database import Base, get_db
from labcal.main import app
from labcal.schemas.user import CurrentUser
from labcal.services import notification_service

# Import all models so they register with Base.metadata
from labcal.models.event import Event                                   # noqa: F401
from labcal.models.time_slot import TimeSlot, SlotHistoryEntry           # noqa: F401
from labcal.models.modification import EventModification, StateChange   # noqa: F401

SQLITE_URL = "sqlite:///./test.db"

OWNER = CurrentUser(id="owner-1", email="owner@lab.test", role="TEACHER")
PROPOSER = CurrentUser(id="teacher-2", email="teacher2@lab.test", role="TEACHER")
OTHER = CurrentUser(id="teacher-3", email="teacher3@lab.test", role="TEACHER")
VALIDATOR = CurrentUser(id="staff-1", email="staff@lab.test", role="LABORANTIN")


@pytest.fixture(scope="function")
def db_engine():
    """Create a fresh SQLite engine for each test."""
    engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})

    # Enable WAL mode for better concurrency
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture(scope="function")
def db(session_factory):
    """Yield a database session, closed after the test."""
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(session_factory):
    """FastAPI TestClient with the database dependency overridden to use SQLite."""

    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _reset_notifiers():
    notification_service.clear_notifiers()
    yield
    notification_service.clear_notifiers()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------
def auth_headers(user: CurrentUser) -> dict:
    """Identity headers as forwarded by the gateway."""
    headers = {"X-User-Id": user.id}
    if user.email:
        headers["X-User-Email"] = user.email
    if user.role:
        headers["X-User-Role"] = user.role
    return headers


def slot(day: str, start: str, end: str) -> dict:
    """Wall-clock candidate in the laboratory zone."""
    return {"date": day, "start_time": start, "end_time": end}


def create_test_event(db, owner: CurrentUser = OWNER, title: str = "TP Chimie", slots=None):
    """Helper: create an event through the service layer and return it."""
    from labcal.services.event_store import create_event

    event, _ = create_event(
        db,
        owner=owner,
        title=title,
        discipline="chimie",
        time_slots=slots or [slot("2030-03-04", "09:00", "11:00")],
    )
    return event


def create_event_via_api(client: TestClient, owner: CurrentUser = OWNER, title: str = "TP Chimie", slots=None) -> dict:
    """Helper: POST /api/events and return the event JSON."""
    resp = client.post(
        "/api/events/",
        json={
            "title": title,
            "discipline": "chimie",
            "time_slots": slots or [slot("2030-03-04", "09:00", "11:00")],
        },
        headers=auth_headers(owner),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["event"]
