from __future__ import annotations

import uuid
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app import audit
from app.core.database import Base
from app.leads.commission.seed import seed_commission_slabs
from app.leads.errors import DuplicateActiveAssignment, InvalidPolicyValue, LeadNotFound
from app.leads.models import Agent, AgentSource, Lead
from app.leads.policy.seed import seed_policies
from app.leads.repository import AgentFilter, AssignmentFilter, LeadRepository
from app.leads.taxonomy import LeadStatus

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


def _lead(session: Session, **values: object) -> Lead:
    lead = Lead(source="web", **values)
    session.add(lead)
    session.commit()
    return lead


def test_get_lead_raises_for_unknown_id(db_session: Session) -> None:
    with pytest.raises(LeadNotFound):
        LeadRepository().get_lead(db_session, uuid.uuid4())


def test_update_lead_is_compare_and_swap(db_session: Session) -> None:
    repo = LeadRepository()
    lead = _lead(db_session)

    assert repo.update_lead(db_session, lead.id, 1, {"sub_status": "first"}, now=NOW) is True
    assert repo.update_lead(db_session, lead.id, 1, {"sub_status": "stale"}, now=NOW) is False
    db_session.commit()

    stored = repo.get_lead(db_session, lead.id)
    assert stored.row_version == 2
    assert stored.sub_status == "first"


def test_second_active_assignment_is_rejected(db_session: Session) -> None:
    repo = LeadRepository()
    lead = _lead(db_session)
    db_session.add(Agent(id=1, name="Agent One"))
    db_session.commit()

    first = repo.create_assignment(db_session, lead_id=lead.id, agent_id=1, kind="auto", attempt_number=1, now=NOW)
    db_session.commit()
    with pytest.raises(DuplicateActiveAssignment):
        repo.create_assignment(db_session, lead_id=lead.id, agent_id=1, kind="auto", attempt_number=2, now=NOW)
    db_session.rollback()

    assert repo.end_assignment(db_session, first.id, now=NOW, reason="rotated") is True
    assert repo.end_assignment(db_session, first.id, now=NOW, reason="rotated") is False
    repo.create_assignment(db_session, lead_id=lead.id, agent_id=1, kind="rotation", attempt_number=2, now=NOW)
    db_session.commit()

    active = repo.list_active_assignments(db_session, AssignmentFilter(lead_id=lead.id))
    assert [item.attempt_number for item in active] == [2]
    assert len(repo.list_assignments(db_session, lead.id)) == 2


def test_list_leads_by_status_skips_halted_leads(db_session: Session) -> None:
    repo = LeadRepository()
    stale = _lead(db_session, status=LeadStatus.NO_ANSWER.value, status_changed_at=NOW - timedelta(days=3))
    _lead(db_session, status=LeadStatus.NO_ANSWER.value, status_changed_at=NOW)
    _lead(
        db_session,
        status=LeadStatus.NO_ANSWER.value,
        status_changed_at=NOW - timedelta(days=3),
        rotation_halted=True,
    )

    found = repo.list_leads_by_status(db_session, LeadStatus.NO_ANSWER, changed_before=NOW - timedelta(days=1))

    assert [lead.id for lead in found] == [stale.id]


def test_list_agents_excludes_unavailable_and_filters_source(db_session: Session) -> None:
    repo = LeadRepository()
    db_session.add_all(
        [
            Agent(id=1, name="Agent One"),
            Agent(id=2, name="Agent Two", on_leave=True),
            Agent(id=3, name="Agent Three", is_active=False),
            Agent(id=4, name="Agent Four"),
        ]
    )
    db_session.add(AgentSource(agent_id=4, source="portal"))
    db_session.commit()

    assert [agent.id for agent in repo.list_agents(db_session)] == [1, 4]
    assert [agent.id for agent in repo.list_agents(db_session, AgentFilter(source="portal"))] == [4]
    assert len(repo.list_agents(db_session, AgentFilter(include_unavailable=True))) == 4


def test_cursor_advance_rejects_stale_version(db_session: Session) -> None:
    repo = LeadRepository()

    assert repo.advance_cursor(db_session, "territory:DXB", expected_version=None, agent_id=1) is True
    db_session.commit()
    cursor = repo.get_cursor(db_session, "territory:DXB")
    assert cursor is not None and cursor.version == 1

    assert repo.advance_cursor(db_session, "territory:DXB", expected_version=1, agent_id=2) is True
    assert repo.advance_cursor(db_session, "territory:DXB", expected_version=1, agent_id=3) is False
    db_session.commit()

    cursor = repo.get_cursor(db_session, "territory:DXB")
    assert cursor is not None
    assert (cursor.last_agent_id, cursor.version) == (2, 2)


def test_settings_lookup_returns_typed_value_or_default(db_session: Session) -> None:
    repo = LeadRepository()

    assert repo.get_setting(db_session, "maxLeadsPerAgent") is None
    seed_policies(db_session)
    db_session.commit()

    assert repo.get_setting(db_session, "maxLeadsPerAgent") == 50
    assert repo.get_setting(db_session, "autoLeadDistribution") is True
    with pytest.raises(InvalidPolicyValue):
        repo.get_setting(db_session, "noSuchSetting")


def test_dnd_and_slab_lookups(db_session: Session) -> None:
    repo = LeadRepository()
    repo.compliance.add(db_session, "+971 50 111 2222", reason="customer request", now=NOW)
    seed_commission_slabs(db_session)

    assert repo.is_in_dnd(db_session, "971501112222") is True
    assert repo.is_in_dnd(db_session, "+1 555 0100") is False
    assert repo.is_in_dnd(db_session, None) is False

    slabs = repo.list_commission_slabs(db_session, 1)
    assert [slab.commission_percentage for slab in slabs] == [
        Decimal("0.8"),
        Decimal("1.2"),
        Decimal("1.5"),
        Decimal("2.0"),
    ]
    assert slabs[-1].slab_to is None
    assert len(repo.list_commission_slabs(db_session, None)) == 4
