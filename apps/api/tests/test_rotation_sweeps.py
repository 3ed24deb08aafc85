from __future__ import annotations

from collections.abc import Generator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app import audit, events
from app.core.config import get_settings
from app.core.database import Base
from app.leads.assignment.engine import AssignmentEngine, AssignmentOutcome
from app.leads.compliance.service import ComplianceFilter
from app.leads.models import Agent, AssignmentEvent, Lead, LeadAssignment
from app.leads.policy.service import StatusRule, snapshot_from_values
from app.leads.queue.service import LeadQueue
from app.leads.repository import LeadRepository
from app.leads.rotation.sweeps import (
    DistributionSweep,
    DndSweep,
    DumpToColdCallSweep,
    FreshLeadSweep,
    NoActivitySweep,
    StatusRotationSweep,
    Sweep,
    SweepResult,
)
from app.leads.service import LeadService
from app.leads.taxonomy import LeadStatus, QueueState

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
    events.published_events.clear()
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    events.published_events.clear()
    get_settings.cache_clear()


@pytest.fixture()
def engine() -> AssignmentEngine:
    return AssignmentEngine()


def _snapshot(**overrides):  # type: ignore[no-untyped-def]
    return snapshot_from_values({"autoLeadDistribution": True, **overrides})


def _add_agents(session: Session, *agent_ids: int) -> None:
    for agent_id in agent_ids:
        session.add(Agent(id=agent_id, name=f"Agent {agent_id}"))
    session.commit()


def _enqueue(session: Session, **fields) -> Lead:  # type: ignore[no-untyped-def]
    return LeadQueue().enqueue(session, source="web", now=fields.pop("now", NOW), **fields)


def _lead(session: Session, lead: Lead) -> Lead:
    refreshed = session.get(Lead, lead.id, populate_existing=True)
    assert refreshed is not None
    return refreshed


def _active(session: Session, lead: Lead) -> list[LeadAssignment]:
    return list(
        session.scalars(
            select(LeadAssignment).where(LeadAssignment.lead_id == lead.id, LeadAssignment.is_active.is_(True))
        )
    )


def test_distribution_sweep_drains_queue_up_to_capacity(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1, 2)
    leads = [_enqueue(db_session, now=NOW - timedelta(minutes=3 - index)) for index in range(3)]

    result = DistributionSweep(engine=engine).run(db_session, now=NOW, snapshot=_snapshot(maxLeadsPerAgent=1))

    assert result == SweepResult(reassigned=2, skipped=1)
    assert [_lead(db_session, lead).current_agent_id for lead in leads] == [1, 2, None]


def test_no_activity_sweep_moves_lead_to_next_agent(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1, 2, 3)
    snapshot = _snapshot(noActivityTimeDuration=30)
    lead = _enqueue(db_session)
    first = engine.assign_lead(db_session, lead.id, now=NOW, snapshot=snapshot)
    sweep = NoActivitySweep(engine=engine)
    later = NOW + timedelta(minutes=31)

    result = sweep.run(db_session, now=later, snapshot=snapshot)

    assert result == SweepResult(reassigned=1, skipped=0)
    assert [item.agent_id for item in _active(db_session, lead)] == [2]
    previous = db_session.get(LeadAssignment, first.assignment_id, populate_existing=True)
    assert previous is not None
    assert previous.is_active is False
    assert previous.activity_check is True
    assert previous.end_reason == "no_activity"

    assert sweep.run(db_session, now=later, snapshot=snapshot) == SweepResult()


def test_no_activity_sweep_leaves_active_owner_alone(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1, 2)
    snapshot = _snapshot(noActivityTimeDuration=30)
    lead = _enqueue(db_session)
    engine.assign_lead(db_session, lead.id, now=NOW, snapshot=snapshot)
    engine.record_activity(db_session, lead.id, now=NOW + timedelta(minutes=20), agent_id=1)

    result = NoActivitySweep(engine=engine).run(db_session, now=NOW + timedelta(minutes=31), snapshot=snapshot)

    assert result == SweepResult()
    assert [item.agent_id for item in _active(db_session, lead)] == [1]


def test_no_activity_sweep_requeues_when_nobody_else_is_free(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1)
    snapshot = _snapshot(noActivityTimeDuration=30)
    lead = _enqueue(db_session)
    engine.assign_lead(db_session, lead.id, now=NOW, snapshot=snapshot)

    result = NoActivitySweep(engine=engine).run(db_session, now=NOW + timedelta(minutes=31), snapshot=snapshot)

    assert result == SweepResult(reassigned=0, skipped=1)
    assert _active(db_session, lead) == []
    refreshed = _lead(db_session, lead)
    assert refreshed.queue_state == QueueState.QUEUED.value
    assert refreshed.current_agent_id is None


def test_no_activity_sweep_rechecks_activity_at_write_time(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1, 2)
    snapshot = _snapshot(noActivityTimeDuration=30)
    lead = _enqueue(db_session)
    engine.assign_lead(db_session, lead.id, now=NOW, snapshot=snapshot)

    class ActivityAfterListing(LeadRepository):
        def list_active_assignments(self, session, flt=None):  # type: ignore[no-untyped-def]
            found = super().list_active_assignments(session, flt)
            engine.record_activity(session, lead.id, now=NOW + timedelta(minutes=30), agent_id=1)
            return found

    sweep = NoActivitySweep(engine=engine, repository=ActivityAfterListing())
    result = sweep.run(db_session, now=NOW + timedelta(minutes=31), snapshot=snapshot)

    assert result == SweepResult(skipped=1)
    assert [item.agent_id for item in _active(db_session, lead)] == [1]
    assert _lead(db_session, lead).current_agent_id == 1


def test_idle_reassignment_is_discarded_when_owner_became_active(
    db_session: Session,
    engine: AssignmentEngine,
) -> None:
    _add_agents(db_session, 1, 2)
    snapshot = _snapshot()
    lead = _enqueue(db_session)
    engine.assign_lead(db_session, lead.id, now=NOW, snapshot=snapshot)
    engine.record_activity(db_session, lead.id, now=NOW + timedelta(minutes=20), agent_id=1)

    kept = engine.assign_lead(
        db_session,
        lead.id,
        now=NOW + timedelta(minutes=31),
        snapshot=snapshot,
        exclude_agent_ids=(1,),
        reason="no_activity",
        idle_before=NOW + timedelta(minutes=1),
    )
    assert kept.outcome is AssignmentOutcome.DISCARDED
    assert [item.agent_id for item in _active(db_session, lead)] == [1]

    moved = engine.assign_lead(
        db_session,
        lead.id,
        now=NOW + timedelta(minutes=51),
        snapshot=snapshot,
        exclude_agent_ids=(1,),
        reason="no_activity",
        idle_before=NOW + timedelta(minutes=21),
    )
    assert moved.outcome is AssignmentOutcome.ASSIGNED
    assert [item.agent_id for item in _active(db_session, lead)] == [2]


def test_status_rotation_reassigns_after_dwell(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1, 2, 3)
    snapshot = _snapshot()
    start = NOW - timedelta(hours=5)
    lead = _enqueue(db_session, now=start)
    engine.assign_lead(db_session, lead.id, now=start, snapshot=snapshot)
    LeadService().change_status(db_session, lead.id, LeadStatus.NO_ANSWER.value, now=start)
    sweep = StatusRotationSweep(
        rule=StatusRule(status=LeadStatus.NO_ANSWER, enabled=True, interval_minutes=240, max_age_days=2),
        engine=engine,
    )

    assert sweep.name == "status_rotation:NO_ANSWER"
    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult(reassigned=1, skipped=0)
    assert [item.agent_id for item in _active(db_session, lead)] == [2]

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult()


def test_status_rotation_ignores_leads_past_max_age(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1, 2)
    snapshot = _snapshot()
    start = NOW - timedelta(days=3)
    lead = _enqueue(db_session, now=start)
    engine.assign_lead(db_session, lead.id, now=start, snapshot=snapshot)
    LeadService().change_status(db_session, lead.id, LeadStatus.NO_ANSWER.value, now=start)
    sweep = StatusRotationSweep(
        rule=StatusRule(status=LeadStatus.NO_ANSWER, enabled=True, interval_minutes=240, max_age_days=2),
        engine=engine,
    )

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult()
    assert [item.agent_id for item in _active(db_session, lead)] == [1]


def test_status_rotation_parks_lead_at_assignment_cap(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1, 2, 3)
    snapshot = _snapshot()
    start = NOW - timedelta(hours=5)
    lead = _enqueue(db_session, now=start)
    for _ in range(3):
        engine.assign_lead(db_session, lead.id, now=start, snapshot=snapshot)
    LeadService().change_status(db_session, lead.id, LeadStatus.NOT_INTERESTED.value, "WRONG_TIMING", now=start)
    sweep = StatusRotationSweep(
        rule=StatusRule(status=LeadStatus.NOT_INTERESTED, enabled=True, interval_minutes=240, max_assignments=3),
        engine=engine,
    )

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult(reassigned=0, skipped=1)

    refreshed = _lead(db_session, lead)
    assert refreshed.queue_state == QueueState.MANUAL_REVIEW.value
    assert refreshed.rotation_halted is True
    assert [item.agent_id for item in _active(db_session, lead)] == [3]
    review_events = db_session.scalars(
        select(AssignmentEvent).where(AssignmentEvent.lead_id == lead.id, AssignmentEvent.outcome == "manual_review")
    ).all()
    assert len(review_events) == 1

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult()


def test_dump_sweep_returns_old_dump_leads_to_cold_call(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1)
    snapshot = _snapshot(dumpToColdCallDays=30)
    start = NOW - timedelta(days=40)
    lead = _enqueue(db_session, now=start)
    engine.assign_lead(db_session, lead.id, now=start, snapshot=snapshot)
    LeadService().change_status(db_session, lead.id, LeadStatus.DUMP.value, now=start)
    recent = _enqueue(db_session)
    LeadService().change_status(db_session, recent.id, LeadStatus.DUMP.value, now=NOW - timedelta(days=2))
    sweep = DumpToColdCallSweep()

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult(updated=1)

    converted = _lead(db_session, lead)
    assert converted.status == LeadStatus.COLD_CALL.value
    assert converted.assignment_attempts == 0
    assert converted.is_fresh is True
    assert converted.queue_state == QueueState.QUEUED.value
    assert converted.current_agent_id is None
    assert _active(db_session, lead) == []
    assert _lead(db_session, recent).status == LeadStatus.DUMP.value

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult()


def test_fresh_lead_sweep_realigns_flags(db_session: Session) -> None:
    worked = _enqueue(db_session)
    untouched = _enqueue(db_session)
    stored = _lead(db_session, worked)
    stored.assignment_attempts = 3
    db_session.commit()
    sweep = FreshLeadSweep()
    snapshot = _snapshot(freshLeadAssignmentLimit=2)

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult(updated=1)

    refreshed = _lead(db_session, worked)
    assert (refreshed.is_fresh, refreshed.is_priority) == (False, True)
    still_fresh = _lead(db_session, untouched)
    assert (still_fresh.is_fresh, still_fresh.is_priority) == (True, False)

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult()


def test_dnd_sweep_flags_leads_added_since_last_run(db_session: Session, engine: AssignmentEngine) -> None:
    _add_agents(db_session, 1)
    snapshot = _snapshot()
    owned = _enqueue(db_session, phone="+971 50 111 2222")
    duplicate = _enqueue(db_session, phone="971501112222")
    other = _enqueue(db_session, phone="+971 50 999 0000")
    engine.assign_lead(db_session, owned.id, now=NOW, snapshot=snapshot)
    compliance = ComplianceFilter()
    compliance.add(db_session, "+971 50 999 0000", now=NOW - timedelta(days=1))
    compliance.add(db_session, "971 50 111 2222", now=NOW)
    sweep = DndSweep()

    result = sweep.run(db_session, now=NOW, snapshot=snapshot, last_succeeded_at=NOW - timedelta(minutes=1))

    assert result == SweepResult(updated=2)
    assert _lead(db_session, owned).is_contactable is False
    assert _lead(db_session, duplicate).is_contactable is False
    assert _lead(db_session, other).is_contactable is True
    assert [item.contact_blocked for item in _active(db_session, owned)] == [True]

    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult(updated=1)
    assert _lead(db_session, other).is_contactable is False
    assert sweep.run(db_session, now=NOW, snapshot=snapshot) == SweepResult()


def test_sweep_base_needs_a_run_implementation() -> None:
    with pytest.raises(TypeError):
        Sweep()  # type: ignore[abstract]

    with pytest.raises(ValueError):
        StatusRotationSweep()

    rule = StatusRule(status=LeadStatus.NO_ANSWER, enabled=True, interval_minutes=240, max_age_days=2)
    sweep = StatusRotationSweep(rule=rule)
    assert sweep.name == rule.sweep_name
    assert sweep.interval_minutes(_snapshot()) == 240
