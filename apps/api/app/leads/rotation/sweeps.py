"""Periodic rotation sweeps.

Every sweep re-reads its predicate against the clock it is handed, so running the
same sweep twice back to back changes nothing the second time. Sweeps never hold
a transaction across leads; each lead is planned, written and committed on its own.
"""

from __future__ import annotations

import logging
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.orm import Session

from app import audit
from app.core.config import get_settings
from app.leads.assignment.engine import AssignmentEngine, AssignmentOutcome
from app.leads.compliance.service import ComplianceFilter
from app.leads.models import as_utc
from app.leads.policy.service import PolicySnapshot, StatusRule
from app.leads.repository import AssignmentFilter, LeadRepository
from app.leads.taxonomy import LeadStatus, QueueState

logger = logging.getLogger("app.leads.rotation")


@dataclass(frozen=True, slots=True)
class SweepResult:
    reassigned: int = 0
    skipped: int = 0
    updated: int = 0
    notified: int = 0


@dataclass
class Sweep(ABC):
    name: str = ""
    enabled_key: str | None = None
    interval_key: str | None = None
    office_hours_only: bool = False

    def is_enabled(self, snapshot: PolicySnapshot) -> bool:
        return self.enabled_key is not None and snapshot.enabled(self.enabled_key)

    def interval_minutes(self, snapshot: PolicySnapshot) -> int:
        if self.interval_key is None:
            raise ValueError(f"sweep '{self.name}' has no interval policy key")
        return int(snapshot.get(self.interval_key))

    @abstractmethod
    def run(
        self,
        session: Session,
        *,
        now: datetime,
        snapshot: PolicySnapshot,
        last_succeeded_at: datetime | None = None,
    ) -> SweepResult:
        """Run one tick. ``last_succeeded_at`` is the start of the previous successful run."""


def _tally(outcomes: list[AssignmentOutcome]) -> SweepResult:
    reassigned = sum(1 for outcome in outcomes if outcome in (AssignmentOutcome.ASSIGNED, AssignmentOutcome.ESCALATED))
    return SweepResult(reassigned=reassigned, skipped=len(outcomes) - reassigned)


@dataclass
class DistributionSweep(Sweep):
    name: str = "distribution"
    enabled_key: str | None = "autoLeadDistribution"
    interval_key: str | None = "autoLeadDistributionInterval"
    office_hours_only: bool = True
    engine: AssignmentEngine = field(default_factory=AssignmentEngine)
    repository: LeadRepository = field(default_factory=LeadRepository)

    def run(self, session, *, now, snapshot, last_succeeded_at=None):  # type: ignore[no-untyped-def]
        batch = get_settings().distribution_batch_size
        lead_ids = [lead.id for lead in self.repository.list_queued_leads(session, limit=batch)]
        outcomes = [
            self.engine.assign_lead(session, lead_id, now=now, snapshot=snapshot, reason=self.name).outcome
            for lead_id in lead_ids
        ]
        return _tally(outcomes)


@dataclass
class NoActivitySweep(Sweep):
    name: str = "no_activity"
    enabled_key: str | None = "noActivityOnLeadRotation"
    interval_key: str | None = "noActivityRotationInterval"
    office_hours_only: bool = True
    engine: AssignmentEngine = field(default_factory=AssignmentEngine)
    repository: LeadRepository = field(default_factory=LeadRepository)

    def run(self, session, *, now, snapshot, last_succeeded_at=None):  # type: ignore[no-untyped-def]
        cutoff = now - timedelta(minutes=int(snapshot.get("noActivityTimeDuration")))
        stale = self.repository.list_active_assignments(
            session,
            AssignmentFilter(
                last_activity_before=cutoff,
                rotatable_only=True,
                limit=get_settings().sweep_batch_size,
            ),
        )
        targets = [(assignment.id, assignment.lead_id, assignment.agent_id) for assignment in stale]

        outcomes: list[AssignmentOutcome] = []
        for assignment_id, lead_id, agent_id in targets:
            flagged = self.repository.update_assignment(
                session, assignment_id, {"activity_check": True}, last_activity_before=cutoff
            )
            if not flagged:
                session.rollback()
                outcomes.append(AssignmentOutcome.SKIPPED)
                continue
            session.commit()
            result = self.engine.assign_lead(
                session,
                lead_id,
                now=now,
                snapshot=snapshot,
                exclude_agent_ids=(agent_id,),
                reason=self.name,
                idle_before=cutoff,
            )
            outcomes.append(result.outcome)
        return _tally(outcomes)


@dataclass
class FreshLeadSweep(Sweep):
    name: str = "fresh_lead"
    enabled_key: str | None = "freshLeadCheckEnabled"
    interval_key: str | None = "freshLeadCheckInterval"
    repository: LeadRepository = field(default_factory=LeadRepository)

    def run(self, session, *, now, snapshot, last_succeeded_at=None):  # type: ignore[no-untyped-def]
        updated = self.repository.refresh_fresh_flags(session, snapshot.fresh_lead_limit, now=now)
        session.commit()
        return SweepResult(updated=updated)


@dataclass
class StatusRotationSweep(Sweep):
    """Rotates leads parked in one status, driven by a ``status_rotation_rule`` row."""

    rule: StatusRule | None = None
    engine: AssignmentEngine = field(default_factory=AssignmentEngine)
    repository: LeadRepository = field(default_factory=LeadRepository)

    def __post_init__(self) -> None:
        self.name = self._rule().sweep_name

    def _rule(self) -> StatusRule:
        if self.rule is None:
            raise ValueError("status rotation sweep needs a rule")
        return self.rule

    def is_enabled(self, snapshot: PolicySnapshot) -> bool:
        return self._rule().enabled

    def interval_minutes(self, snapshot: PolicySnapshot) -> int:
        return self._rule().interval_minutes

    def run(self, session, *, now, snapshot, last_succeeded_at=None):  # type: ignore[no-untyped-def]
        rule = self._rule()
        interval = timedelta(minutes=rule.interval_minutes)
        leads = self.repository.list_leads_by_status(
            session,
            rule.status,
            changed_before=now - interval,
            limit=get_settings().sweep_batch_size,
        )
        candidates = [
            (lead.id, lead.row_version, as_utc(lead.status_changed_at), lead.assignment_attempts, lead.queue_state)
            for lead in leads
        ]

        reassigned = 0
        skipped = 0
        for lead_id, version, status_changed_at, attempts, queue_state in candidates:
            if status_changed_at is None:
                continue
            if rule.max_age_days is not None and now - status_changed_at > timedelta(days=rule.max_age_days):
                continue

            active = self.repository.get_active_assignment(session, lead_id)
            anchor = status_changed_at
            if active is not None:
                assigned_at = as_utc(active.assigned_at)
                if assigned_at is not None and assigned_at > anchor:
                    anchor = assigned_at
            if now - anchor < interval:
                continue

            if rule.max_assignments is not None and attempts >= rule.max_assignments:
                skipped += 1
                self._park_for_review(session, lead_id, version, queue_state, now=now)
                continue

            result = self.engine.assign_lead(
                session,
                lead_id,
                now=now,
                snapshot=snapshot,
                exclude_agent_ids=(active.agent_id,) if active is not None else (),
                reason=self.name,
            )
            if result.assigned:
                reassigned += 1
            else:
                skipped += 1
        return SweepResult(reassigned=reassigned, skipped=skipped)

    def _park_for_review(
        self,
        session: Session,
        lead_id: uuid.UUID,
        version: int,
        queue_state: str,
        *,
        now: datetime,
    ) -> None:
        if queue_state == QueueState.MANUAL_REVIEW.value:
            return
        patch = {"queue_state": QueueState.MANUAL_REVIEW.value, "rotation_halted": True}
        if self.repository.update_lead(session, lead_id, version, patch, now=now):
            self.repository.record_event(
                session,
                lead_id=lead_id,
                reason=self.name,
                outcome=AssignmentOutcome.MANUAL_REVIEW.value,
                now=now,
            )
            session.commit()
            logger.info("lead.manual_review", extra={"lead_id": str(lead_id), "reason": self.name})
        else:
            session.rollback()


@dataclass
class DumpToColdCallSweep(Sweep):
    name: str = "dump_to_cold_call"
    enabled_key: str | None = "dumpToColdCallEnabled"
    interval_key: str | None = "dumpToColdCallInterval"
    repository: LeadRepository = field(default_factory=LeadRepository)

    def run(self, session, *, now, snapshot, last_succeeded_at=None):  # type: ignore[no-untyped-def]
        cutoff = now - timedelta(days=int(snapshot.get("dumpToColdCallDays")))
        leads = self.repository.list_leads_by_status(
            session,
            LeadStatus.DUMP,
            changed_before=cutoff,
            include_halted=True,
            limit=get_settings().sweep_batch_size,
        )
        candidates = [(lead.id, lead.row_version, lead.current_agent_id) for lead in leads]

        updated = 0
        skipped = 0
        for lead_id, version, agent_id in candidates:
            patch = {
                "status": LeadStatus.COLD_CALL.value,
                "sub_status": None,
                "status_changed_at": now,
                "assignment_attempts": 0,
                "is_fresh": True,
                "is_priority": False,
                "rotation_halted": False,
                "queue_state": QueueState.QUEUED.value,
                "queued_at": now,
                "current_agent_id": None,
            }
            if not self.repository.update_lead(session, lead_id, version, patch, now=now):
                session.rollback()
                skipped += 1
                continue
            active = self.repository.get_active_assignment(session, lead_id)
            if active is not None:
                self.repository.end_assignment(session, active.id, now=now, reason=self.name)
            self.repository.record_event(
                session,
                lead_id=lead_id,
                reason=self.name,
                outcome=AssignmentOutcome.QUEUED.value,
                now=now,
                from_agent_id=agent_id,
            )
            session.commit()
            audit.record(
                actor_user_id="system",
                entity_type="lead",
                entity_id=str(lead_id),
                action="change_status",
                before={"status": LeadStatus.DUMP.value},
                after={"status": LeadStatus.COLD_CALL.value},
            )
            updated += 1
        return SweepResult(updated=updated, skipped=skipped)


@dataclass
class DndSweep(Sweep):
    name: str = "dnd"
    enabled_key: str | None = "dndCheckEnabled"
    interval_key: str | None = "dndCheckInterval"
    compliance: ComplianceFilter = field(default_factory=ComplianceFilter)
    repository: LeadRepository = field(default_factory=LeadRepository)

    def run(self, session, *, now, snapshot, last_succeeded_at=None):  # type: ignore[no-untyped-def]
        entries = self.compliance.list_entries(session, added_since=last_succeeded_at)
        phones = {entry.phone_number for entry in entries}
        lead_ids = [lead.id for phone in sorted(phones) for lead in self.repository.list_leads_by_phone(session, phone)]
        updated = self.repository.mark_leads_not_contactable(session, lead_ids, now=now)
        session.commit()
        return SweepResult(updated=updated)
