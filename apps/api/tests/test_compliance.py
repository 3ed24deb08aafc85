from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app import audit
from app.core.database import Base
from app.leads.compliance.service import ComplianceFilter, normalize_phone
from app.leads.models import Agent, Lead
from app.leads.repository import LeadRepository

NOW = datetime(2026, 3, 4, 10, 0, tzinfo=timezone.utc)


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
    yield
    audit.audit_entries.clear()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("+971 (50) 111-2222", "971501112222"),
        ("0501112222", "0501112222"),
        ("call me", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_phone(raw: str | None, expected: str | None) -> None:
    assert normalize_phone(raw) == expected


def test_registry_changes_apply_immediately(db_session: Session) -> None:
    registry = ComplianceFilter()

    assert registry.is_blocked(db_session, "+971 50 111 2222") is False
    registry.add(db_session, "+971-50-111-2222", reason="customer request", added_by="agent-7", now=NOW)
    assert registry.is_blocked(db_session, "971501112222") is True
    assert registry.is_blocked(db_session, None) is False

    assert registry.remove(db_session, "971 50 111 2222", removed_by="admin-1") is True
    assert registry.is_blocked(db_session, "+971 50 111 2222") is False
    assert registry.remove(db_session, "971501112222") is False

    actions = [entry["action"] for entry in audit.entries_for("dnd_entry", "971501112222")]
    assert actions == ["add", "remove"]


def test_add_is_idempotent_and_keeps_first_entry(db_session: Session) -> None:
    registry = ComplianceFilter()

    first = registry.add(db_session, "+1 555 0100", reason="first", now=NOW)
    second = registry.add(db_session, "15550100", reason="second", now=NOW + timedelta(hours=1))

    assert second.phone_number == first.phone_number
    assert second.reason == "first"
    assert len(registry.list_entries(db_session)) == 1


def test_add_rejects_numbers_without_digits(db_session: Session) -> None:
    with pytest.raises(ValueError):
        ComplianceFilter().add(db_session, "unknown")


def test_list_entries_filters_by_added_since(db_session: Session) -> None:
    registry = ComplianceFilter()
    registry.add(db_session, "111", now=NOW - timedelta(days=2))
    registry.add(db_session, "222", now=NOW)

    recent = registry.list_entries(db_session, added_since=NOW - timedelta(hours=1))

    assert [entry.phone_number for entry in recent] == ["222"]


def test_remove_restores_contactability(db_session: Session) -> None:
    registry = ComplianceFilter()
    registry.add(db_session, "+971 50 111 2222", now=NOW)
    blocked = Lead(source="web", phone="+971 50 111 2222", phone_normalized="971501112222", is_contactable=False)
    other = Lead(source="web", phone="+1 555 0100", phone_normalized="15550100", is_contactable=False)
    db_session.add_all([blocked, other, Agent(id=1, name="Agent One")])
    db_session.commit()
    LeadRepository().create_assignment(
        db_session,
        lead_id=blocked.id,
        agent_id=1,
        kind="round_robin",
        attempt_number=1,
        now=NOW,
        contact_blocked=True,
    )
    db_session.commit()

    assert registry.remove(db_session, "971-50-111-2222") is True

    restored = db_session.get(Lead, blocked.id, populate_existing=True)
    untouched = db_session.get(Lead, other.id, populate_existing=True)
    assert restored is not None and untouched is not None
    assert restored.is_contactable is True
    assert restored.row_version == 2
    assert untouched.is_contactable is False
    active = LeadRepository().get_active_assignment(db_session, blocked.id)
    assert active is not None
    assert active.contact_blocked is False
