from __future__ import annotations

import logging
from collections.abc import Generator
from datetime import datetime, time, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

import app.models  # noqa: F401
from app import audit
from app.core.config import get_settings
from app.core.database import Base
from app.leads.errors import InvalidPolicyValue
from app.leads.policy.keys import POLICY_DEFINITIONS, get_definition
from app.leads.policy.models import PolicySetting, StatusRotationRule
from app.leads.policy.seed import seed_policies
from app.leads.policy.service import PolicyStore, snapshot_from_values
from app.leads.taxonomy import LeadStatus


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
    get_settings.cache_clear()
    yield
    audit.audit_entries.clear()
    get_settings.cache_clear()


@pytest.fixture()
def store() -> PolicyStore:
    return PolicyStore()


def test_missing_rows_fall_back_to_defaults(db_session: Session, store: PolicyStore) -> None:
    snapshot = store.load_snapshot(db_session)

    assert snapshot.auto_distribution is False
    assert snapshot.strategy == "round_robin"
    assert snapshot.max_leads_per_agent is None
    assert snapshot.fresh_lead_limit == 2
    assert snapshot.get("noActivityTimeDuration") == 30
    assert snapshot.status_rules == ()


def test_malformed_value_falls_back_and_warns(
    db_session: Session,
    store: PolicyStore,
    caplog: pytest.LogCaptureFixture,
) -> None:
    caplog.set_level(logging.WARNING)
    definition = get_definition("noActivityTimeDuration")
    db_session.add(
        PolicySetting(
            key=definition.key,
            value="-5",
            value_type=definition.value_type.value,
            category=definition.category,
        )
    )
    db_session.add(
        PolicySetting(
            key="autoLeadDistribution",
            value="maybe",
            value_type="boolean",
            category="distribution",
        )
    )
    db_session.commit()

    snapshot = store.load_snapshot(db_session)

    assert snapshot.get("noActivityTimeDuration") == 30
    assert snapshot.auto_distribution is False
    warned = {
        getattr(record, "policy_key", None)
        for record in caplog.records
        if record.getMessage() == "policy.invalid_value"
    }
    assert {"noActivityTimeDuration", "autoLeadDistribution"} <= warned


def test_set_value_validates_before_writing(db_session: Session, store: PolicyStore) -> None:
    with pytest.raises(InvalidPolicyValue) as negative:
        store.set_value(db_session, "noActivityRotationInterval", -5)
    assert negative.value.key == "noActivityRotationInterval"

    with pytest.raises(InvalidPolicyValue):
        store.set_value(db_session, "lead_assignment_strategy", "random")
    with pytest.raises(InvalidPolicyValue):
        store.set_value(db_session, "systemTimezone", "Mars/Olympus")
    with pytest.raises(InvalidPolicyValue):
        store.set_value(db_session, "noSuchPolicy", 1)
    assert db_session.get(PolicySetting, "noActivityRotationInterval") is None

    store.set_value(db_session, "maxLeadsPerAgent", 25, actor_user_id="admin-1")
    store.set_value(db_session, "maxLeadsPerAgent", None, actor_user_id="admin-1")

    assert store.get_setting(db_session, "maxLeadsPerAgent") is None
    updates = [entry for entry in audit.audit_entries if entry["entity_id"] == "maxLeadsPerAgent"]
    assert [entry["after"]["value"] for entry in updates] == ["25", ""]


def test_list_settings_reports_every_key(db_session: Session, store: PolicyStore) -> None:
    store.set_value(db_session, "workingDays", [5, 1, 3])

    settings = {item["key"]: item for item in store.list_settings(db_session)}

    assert set(settings) == set(POLICY_DEFINITIONS)
    assert settings["workingDays"]["value"] == "1,3,5"
    assert settings["autoLeadDistribution"]["raw_value"] is None


def test_working_time_respects_timezone_and_days() -> None:
    snapshot = snapshot_from_values(
        {
            "standardWorkingFromTime": time(9, 0),
            "standardWorkingToTime": time(18, 0),
            "workingDays": (1, 2, 3, 4, 5),
            "systemTimezone": "Asia/Dubai",
        }
    )

    assert snapshot.is_working_time(datetime(2026, 3, 4, 6, 0, tzinfo=timezone.utc)) is True
    assert snapshot.is_working_time(datetime(2026, 3, 4, 15, 0, tzinfo=timezone.utc)) is False
    assert snapshot.is_working_time(datetime(2026, 3, 8, 6, 0, tzinfo=timezone.utc)) is False


def test_overnight_window_wraps_midnight() -> None:
    snapshot = snapshot_from_values(
        {
            "standardWorkingFromTime": time(22, 0),
            "standardWorkingToTime": time(6, 0),
            "workingDays": (0, 1, 2, 3, 4, 5, 6),
        }
    )

    assert snapshot.is_working_time(datetime(2026, 3, 4, 23, 30, tzinfo=timezone.utc)) is True
    assert snapshot.is_working_time(datetime(2026, 3, 4, 3, 0, tzinfo=timezone.utc)) is True
    assert snapshot.is_working_time(datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)) is False


def test_unset_working_hours_never_block() -> None:
    assert snapshot_from_values({}).is_working_time(datetime(2026, 3, 8, 3, 0, tzinfo=timezone.utc)) is True


def test_status_rules_are_validated(db_session: Session, store: PolicyStore) -> None:
    with pytest.raises(InvalidPolicyValue):
        store.upsert_rule(db_session, "SNOOZED", enabled=True, interval_minutes=60)
    with pytest.raises(InvalidPolicyValue):
        store.upsert_rule(db_session, "NO_ANSWER", enabled=True, interval_minutes=0)

    store.upsert_rule(db_session, "NO_ANSWER", enabled=True, interval_minutes=240, max_age_days=2)
    db_session.add(StatusRotationRule(status="SNOOZED", enabled=True, interval_minutes=60))
    db_session.commit()

    snapshot = store.load_snapshot(db_session)

    assert [rule.status for rule in snapshot.status_rules] == [LeadStatus.NO_ANSWER]
    rule = snapshot.status_rule(LeadStatus.NO_ANSWER)
    assert rule is not None
    assert (rule.interval_minutes, rule.max_age_days, rule.max_assignments) == (240, 2, None)
    assert store.check_rule_statuses(db_session) == ["SNOOZED"]


def test_seed_policies_is_idempotent(db_session: Session, store: PolicyStore) -> None:
    created = seed_policies(db_session)

    assert created > 0
    assert seed_policies(db_session) == 0
    snapshot = store.load_snapshot(db_session)
    assert snapshot.auto_distribution is True
    assert snapshot.fallback_admin_id is None
    assert snapshot.max_assignment_attempts == 6
    assert {rule.status for rule in snapshot.status_rules} == {LeadStatus.NO_ANSWER, LeadStatus.NOT_INTERESTED}
