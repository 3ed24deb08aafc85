from __future__ import annotations

import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app import audit, events
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.leads.http import ActorUser, get_current_user as leads_get_current_user
from app.leads.models import Agent, AssignmentEvent
from app.main import app


ALL_PERMISSIONS = {
    "leads.intake",
    "leads.read",
    "leads.write",
    "leads.policy.write",
    "leads.dnd.write",
    "leads.sweeps.run",
}


@pytest.fixture()
def db_session() -> Generator[Session, None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def clear_stubs() -> Generator[None, None, None]:
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def client(db_session: Session) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    def override_get_current_user(request: Request) -> ActorUser:
        return ActorUser(
            user_id="user-1",
            permissions=ALL_PERMISSIONS,
            correlation_id=getattr(request.state, "correlation_id", None),
        )

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[leads_get_current_user] = override_get_current_user
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


def test_generated_correlation_id_returned_in_header_and_error_envelope(client: TestClient) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}")
    assert response.status_code == 404
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    body = response.json()
    assert body["correlation_id"] == header_value


def test_correlation_id_respected_when_provided(client: TestClient) -> None:
    response = client.get(f"/api/leads/{uuid.uuid4()}", headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404
    assert response.headers.get("x-correlation-id") == "abc-123"
    assert response.json()["correlation_id"] == "abc-123"


def test_malformed_correlation_id_is_replaced(client: TestClient) -> None:
    response = client.get("/api/health", headers={"X-Correlation-Id": "bad id with spaces"})
    assert response.status_code == 200
    header_value = response.headers.get("x-correlation-id")
    assert header_value
    assert header_value != "bad id with spaces"
    assert str(uuid.UUID(header_value)) == header_value


def test_audit_and_events_use_request_correlation_id(client: TestClient) -> None:
    response = client.post(
        "/api/leads",
        json={"source": "web", "name": "Corr Lead"},
        headers={"X-Correlation-Id": "corr-intake-1"},
    )
    assert response.status_code == 201

    lead_audits = [entry for entry in audit.audit_entries if entry.get("entity_type") == "lead"]
    assert lead_audits
    assert lead_audits[-1]["correlation_id"] == "corr-intake-1"

    queued = [item for item in events.published_events if item.get("event_type") == "leads.lead.queued"]
    assert queued
    assert queued[-1].get("correlation_id") == "corr-intake-1"

    dnd = client.post(
        "/api/leads/dnd",
        json={"phone_number": "+1 555 0100"},
        headers={"X-Correlation-Id": "corr-dnd-1"},
    )
    assert dnd.status_code == 201
    dnd_audits = [entry for entry in audit.audit_entries if entry.get("entity_type") == "dnd_entry"]
    assert dnd_audits[-1]["correlation_id"] == "corr-dnd-1"


def test_assignment_history_records_request_correlation_id(client: TestClient, db_session: Session) -> None:
    assert client.post("/api/leads/seeds").status_code == 200
    db_session.add(Agent(id=1, name="Agent One"))
    db_session.commit()

    response = client.post(
        "/api/leads",
        json={"source": "web"},
        headers={"X-Correlation-Id": "corr-assign-1"},
    )
    assert response.status_code == 201
    lead_id = uuid.UUID(response.json()["lead"]["id"])

    event = db_session.scalar(select(AssignmentEvent).where(AssignmentEvent.lead_id == lead_id))
    assert event is not None
    assert event.correlation_id == "corr-assign-1"

    notifications = [
        item for item in events.published_events if item.get("event_type") == "leads.notification.requested"
    ]
    assert notifications
    assert notifications[-1].get("correlation_id") == "corr-assign-1"


def test_sweep_run_uses_its_own_correlation_id(client: TestClient) -> None:
    response = client.post("/api/leads/sweeps/dnd/run", headers={"X-Correlation-Id": "corr-sweep-1"})

    assert response.status_code == 200
    assert response.headers.get("x-correlation-id") == "corr-sweep-1"
    assert response.json()["correlation_id"].startswith("sweep:dnd:")
