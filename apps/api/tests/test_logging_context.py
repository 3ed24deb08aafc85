from __future__ import annotations

import json
import logging
import uuid
from collections.abc import Generator

import pytest
from fastapi import Request
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.context import reset_correlation_id, reset_sweep_name, set_correlation_id, set_sweep_name
from app.core.config import get_settings
from app.core.database import Base, get_db
from app.leads.http import ActorUser, get_current_user as leads_get_current_user
from app.leads.models import Agent
from app.logging import JsonLogFormatter
from app.main import app


ALL_PERMISSIONS = {
    "leads.intake",
    "leads.read",
    "leads.policy.write",
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
def setup_env() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
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


def test_logs_include_correlation_id_for_http(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    path = f"/api/leads/{uuid.uuid4()}"
    response = client.get(path, headers={"X-Correlation-Id": "abc-123"})
    assert response.status_code == 404

    records = [record for record in caplog.records if record.name == "app.request" and record.getMessage() == "http.request"]
    assert records
    assert any(
        getattr(record, "correlation_id", None) == "abc-123"
        and getattr(record, "method", None) == "GET"
        and getattr(record, "path", None) == "/api/leads/{id}"
        and getattr(record, "status_code", None) == 404
        and isinstance(getattr(record, "duration_ms", None), float)
        for record in records
    )


def test_health_probes_are_not_logged(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    assert client.get("/api/health").status_code == 200

    assert not [
        record
        for record in caplog.records
        if record.name == "app.request" and getattr(record, "path", None) == "/api/health"
    ]


def test_assignment_logs_carry_request_correlation_id(
    client: TestClient,
    db_session: Session,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.INFO)
    assert client.post("/api/leads/seeds").status_code == 200
    db_session.add(Agent(id=1, name="Agent One"))
    db_session.commit()

    response = client.post("/api/leads", json={"source": "web"}, headers={"X-Correlation-Id": "abc-456"})
    assert response.status_code == 201
    lead_id = response.json()["lead"]["id"]

    assignment_records = [record for record in caplog.records if record.name == "app.leads.assignment"]
    assert any(
        record.getMessage() == "assignment.created"
        and getattr(record, "lead_id", None) == lead_id
        and getattr(record, "agent_id", None) == 1
        and getattr(record, "correlation_id", None) == "abc-456"
        for record in assignment_records
    )


def test_logs_include_sweep_context(client: TestClient, caplog: pytest.LogCaptureFixture) -> None:
    caplog.set_level(logging.INFO)

    response = client.post("/api/leads/sweeps/dnd/run", headers={"X-Correlation-Id": "abc-789"})
    assert response.status_code == 200
    sweep_correlation = response.json()["correlation_id"]

    sweep_records = [record for record in caplog.records if record.name == "app.leads.scheduler"]
    assert sweep_records
    assert {record.getMessage() for record in sweep_records} >= {"sweep.started", "sweep.finished"}
    assert all(getattr(record, "sweep", None) == "dnd" for record in sweep_records)
    assert all(getattr(record, "correlation_id", None) == sweep_correlation for record in sweep_records)

    request_records = [
        record
        for record in caplog.records
        if record.name == "app.request" and getattr(record, "path", None) == "/api/leads/sweeps/dnd/run"
    ]
    assert request_records
    assert getattr(request_records[-1], "correlation_id", None) == "abc-789"
    assert getattr(request_records[-1], "sweep", None) is None


def test_json_formatter_emits_known_fields_only() -> None:
    logger = logging.getLogger("app.leads.scheduler")
    correlation_token = set_correlation_id("sweep:no_activity:1")
    sweep_token = set_sweep_name("no_activity")
    try:
        record = logging.getLogRecordFactory()(
            logger.name,
            logging.INFO,
            __file__,
            1,
            "sweep.finished",
            None,
            None,
        )
    finally:
        reset_sweep_name(sweep_token)
        reset_correlation_id(correlation_token)
    record.reassigned = 3
    record.error = "x" * 600
    record.password = "hunter2"

    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["msg"] == "sweep.finished"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "app.leads.scheduler"
    assert payload["correlation_id"] == "sweep:no_activity:1"
    assert payload["fields"]["sweep"] == "no_activity"
    assert payload["fields"]["reassigned"] == 3
    assert len(payload["fields"]["error"]) == 500
    assert "password" not in payload["fields"]
