from __future__ import annotations

import logging
import uuid
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from opentelemetry import trace
from sqlalchemy.orm import Session

from app import audit, events
from app.core.config import get_settings
from app.leads.commission.service import CommissionResolver
from app.leads.compliance.service import ComplianceFilter
from app.leads.errors import (
    AgentNotFound,
    AssignmentClosed,
    AssignmentNotFound,
    DuplicateActiveAssignment,
    LeadEngineError,
    LeadVersionConflict,
    NoEligibleAgent,
)
from app.leads.models import AssignmentEvent, Lead, LeadAssignment
from app.leads.notifications import NotificationDispatcher, default_dispatcher
from app.leads.policy.service import PolicySnapshot
from app.leads.repository import AgentFilter, LeadRepository
from app.leads.taxonomy import LeadStatus, QueueState, is_terminal
from app.metrics import observe_assignment, observe_cursor_conflict
from app.otel import set_span_attributes

logger = logging.getLogger("app.leads.assignment")
tracer = trace.get_tracer("app.leads.assignment")


class AssignmentOutcome(str, Enum):
    ASSIGNED = "assigned"
    QUEUED = "queued"
    DISABLED = "disabled"
    ESCALATED = "escalated"
    MANUAL_REVIEW = "manual_review"
    DISCARDED = "discarded"
    SKIPPED = "skipped"


class AssignmentKind(str, Enum):
    ROUND_ROBIN = "round_robin"
    TERRITORY = "territory"
    MANUAL = "manual"
    ESCALATION = "escalation"


@dataclass(frozen=True, slots=True)
class AssignmentResult:
    lead_id: uuid.UUID
    outcome: AssignmentOutcome
    agent_id: int | None = None
    assignment_id: uuid.UUID | None = None
    kind: AssignmentKind | None = None
    contact_blocked: bool = False
    reason: str | None = None

    @property
    def assigned(self) -> bool:
        return self.outcome in (AssignmentOutcome.ASSIGNED, AssignmentOutcome.ESCALATED)


@dataclass(frozen=True, slots=True)
class ContactDecision:
    allowed: bool
    reason: str | None = None


@dataclass(frozen=True, slots=True)
class AssignmentPlan:
    """Decision taken from a read of the lead. Applied later against ``lead_version``."""

    lead_id: uuid.UUID
    lead_version: int
    outcome: AssignmentOutcome
    reason: str
    queue_state: str
    attempts: int
    agent_id: int | None = None
    kind: AssignmentKind | None = None
    pool_key: str | None = None
    cursor_version: int | None = None
    previous_assignment_id: uuid.UUID | None = None
    previous_agent_id: int | None = None
    contact_blocked: bool = False
    previous_idle_before: datetime | None = None
    lead_patch: dict[str, Any] = field(default_factory=dict)


class _CursorConflict(LeadEngineError):
    def __init__(self, pool_key: str) -> None:
        self.pool_key = pool_key
        super().__init__(f"Cursor '{pool_key}' advanced concurrently")


def pick_next_agent(agent_ids: Sequence[int], last_agent_id: int | None) -> int | None:
    """First agent after ``last_agent_id`` in id order, wrapping to the start."""
    if not agent_ids:
        return None
    ordered = sorted(agent_ids)
    if last_agent_id is not None:
        for agent_id in ordered:
            if agent_id > last_agent_id:
                return agent_id
    return ordered[0]


@dataclass(slots=True)
class AssignmentEngine:
    repository: LeadRepository = field(default_factory=LeadRepository)
    compliance: ComplianceFilter = field(default_factory=ComplianceFilter)
    commission: CommissionResolver = field(default_factory=CommissionResolver)
    dispatcher: NotificationDispatcher = default_dispatcher
    cursor_retries: int | None = None

    def assign_lead(
        self,
        session: Session,
        lead_id: uuid.UUID,
        *,
        now: datetime,
        snapshot: PolicySnapshot,
        exclude_agent_ids: Collection[int] = (),
        reason: str = "distribution",
        idle_before: datetime | None = None,
    ) -> AssignmentResult:
        """Plan and apply one assignment for ``lead_id``.

        ``idle_before`` makes ending the current assignment conditional on it still having
        no activity since that instant; otherwise the attempt is discarded.
        """
        retries = self.cursor_retries if self.cursor_retries is not None else get_settings().assignment_cursor_retries
        with tracer.start_as_current_span("leads.assignment.assign") as span:
            set_span_attributes(span, lead_id=str(lead_id), reason=reason)
            expected_version: int | None = None
            for _ in range(max(1, retries)):
                plan = self.plan(
                    session,
                    lead_id,
                    now=now,
                    snapshot=snapshot,
                    exclude_agent_ids=exclude_agent_ids,
                    reason=reason,
                )
                plan = replace(plan, previous_idle_before=idle_before)
                if expected_version is not None and plan.lead_version != expected_version:
                    # The lead moved on while we were retrying the cursor.
                    return self._finish(self._discard(session, plan, "lead_changed"), span)
                expected_version = plan.lead_version
                try:
                    result = self.apply(session, plan, now=now)
                except _CursorConflict as exc:
                    observe_cursor_conflict(exc.pool_key)
                    logger.info(
                        "assignment.cursor_conflict",
                        extra={"lead_id": str(lead_id), "pool_key": exc.pool_key},
                    )
                    continue
                return self._finish(result, span)
            return self._finish(self._discard(session, plan, "cursor_retries_exhausted"), span)

    def plan(
        self,
        session: Session,
        lead_id: uuid.UUID,
        *,
        now: datetime,
        snapshot: PolicySnapshot,
        exclude_agent_ids: Collection[int] = (),
        reason: str = "distribution",
    ) -> AssignmentPlan:
        lead = self.repository.get_lead(session, lead_id)
        active = self.repository.get_active_assignment(session, lead.id)
        base = AssignmentPlan(
            lead_id=lead.id,
            lead_version=lead.row_version,
            outcome=AssignmentOutcome.SKIPPED,
            reason=reason,
            queue_state=lead.queue_state,
            attempts=lead.assignment_attempts,
            previous_assignment_id=active.id if active is not None else None,
            previous_agent_id=active.agent_id if active is not None else None,
        )

        if not snapshot.auto_distribution:
            return replace(base, outcome=AssignmentOutcome.DISABLED)
        if is_terminal(lead.status) or lead.rotation_halted:
            return base

        contact_blocked = self.compliance.is_blocked(session, lead.phone)
        next_attempt = lead.assignment_attempts + 1
        lead_patch: dict[str, Any] = {
            "assignment_attempts": next_attempt,
            "is_contactable": not contact_blocked,
            "queued_at": None,
        }
        if next_attempt >= snapshot.fresh_lead_limit:
            lead_patch["is_fresh"] = False
            lead_patch["is_priority"] = True

        max_attempts = snapshot.max_assignment_attempts
        if (
            max_attempts is not None
            and lead.assignment_attempts >= max_attempts
            and not self.repository.has_accepted_assignment(session, lead.id)
        ):
            admin_id = snapshot.fallback_admin_id
            if admin_id is None:
                return replace(
                    base,
                    outcome=AssignmentOutcome.MANUAL_REVIEW,
                    lead_patch={"queue_state": QueueState.MANUAL_REVIEW.value, "rotation_halted": True},
                )
            return replace(
                base,
                outcome=AssignmentOutcome.ESCALATED,
                agent_id=admin_id,
                kind=AssignmentKind.ESCALATION,
                contact_blocked=contact_blocked,
                lead_patch={
                    **lead_patch,
                    "queue_state": QueueState.ESCALATED.value,
                    "rotation_halted": True,
                    "current_agent_id": admin_id,
                },
            )

        try:
            pool_key, kind, candidates = self._eligible_agents(session, lead, snapshot, exclude_agent_ids)
        except NoEligibleAgent as exc:
            logger.info("assignment.no_eligible_agent", extra={"lead_id": str(lead.id), "pool_key": exc.pool_key})
            return replace(
                base,
                outcome=AssignmentOutcome.QUEUED,
                pool_key=exc.pool_key,
                lead_patch={
                    "queue_state": QueueState.QUEUED.value,
                    "current_agent_id": None,
                    "queued_at": now,
                },
            )
        cursor = self.repository.get_cursor(session, pool_key)
        agent_id = pick_next_agent(candidates, cursor.last_agent_id if cursor is not None else None)
        return replace(
            base,
            outcome=AssignmentOutcome.ASSIGNED,
            agent_id=agent_id,
            kind=kind,
            pool_key=pool_key,
            cursor_version=cursor.version if cursor is not None else None,
            contact_blocked=contact_blocked,
            lead_patch={**lead_patch, "queue_state": QueueState.ASSIGNED.value, "current_agent_id": agent_id},
        )

    def apply(self, session: Session, plan: AssignmentPlan, *, now: datetime) -> AssignmentResult:
        if plan.outcome in (AssignmentOutcome.DISABLED, AssignmentOutcome.SKIPPED):
            return AssignmentResult(lead_id=plan.lead_id, outcome=plan.outcome, reason=plan.reason)

        if plan.outcome is AssignmentOutcome.QUEUED and plan.previous_assignment_id is None:
            if plan.queue_state == QueueState.QUEUED.value:
                return AssignmentResult(lead_id=plan.lead_id, outcome=plan.outcome, reason=plan.reason)

        if not self.repository.update_lead(session, plan.lead_id, plan.lead_version, plan.lead_patch, now=now):
            return self._discard(session, plan, "lead_version_conflict")

        if plan.outcome in (AssignmentOutcome.QUEUED, AssignmentOutcome.MANUAL_REVIEW):
            if plan.outcome is AssignmentOutcome.QUEUED and plan.previous_assignment_id is not None:
                if not self._end_previous(session, plan, now=now):
                    return self._discard(session, plan, "previous_assignment_active")
            self.repository.record_event(
                session,
                lead_id=plan.lead_id,
                reason=plan.reason,
                outcome=plan.outcome.value,
                now=now,
                from_agent_id=plan.previous_agent_id,
                to_agent_id=plan.previous_agent_id if plan.outcome is AssignmentOutcome.MANUAL_REVIEW else None,
                attempt_number=plan.attempts,
            )
            session.commit()
            return AssignmentResult(
                lead_id=plan.lead_id,
                outcome=plan.outcome,
                agent_id=plan.previous_agent_id if plan.outcome is AssignmentOutcome.MANUAL_REVIEW else None,
                reason=plan.reason,
            )

        if plan.agent_id is None or plan.kind is None:
            session.rollback()
            raise LeadEngineError(f"Assignment plan for lead '{plan.lead_id}' has no target agent")
        if plan.previous_assignment_id is not None and not self._end_previous(session, plan, now=now):
            return self._discard(session, plan, "previous_assignment_active")
        try:
            assignment = self.repository.create_assignment(
                session,
                lead_id=plan.lead_id,
                agent_id=plan.agent_id,
                kind=plan.kind.value,
                attempt_number=plan.attempts + 1,
                now=now,
                contact_blocked=plan.contact_blocked,
            )
        except DuplicateActiveAssignment:
            return self._discard(session, plan, "duplicate_active_assignment")

        if plan.pool_key is not None and plan.outcome is AssignmentOutcome.ASSIGNED:
            advanced = self.repository.advance_cursor(
                session,
                plan.pool_key,
                expected_version=plan.cursor_version,
                agent_id=plan.agent_id,
            )
            if not advanced:
                session.rollback()
                raise _CursorConflict(plan.pool_key)

        self.repository.record_event(
            session,
            lead_id=plan.lead_id,
            assignment_id=assignment.id,
            reason=plan.reason,
            outcome=plan.outcome.value,
            now=now,
            from_agent_id=plan.previous_agent_id,
            to_agent_id=plan.agent_id,
            attempt_number=plan.attempts + 1,
        )
        assignment_id = assignment.id
        session.commit()

        result = AssignmentResult(
            lead_id=plan.lead_id,
            outcome=plan.outcome,
            agent_id=plan.agent_id,
            assignment_id=assignment_id,
            kind=plan.kind,
            contact_blocked=plan.contact_blocked,
            reason=plan.reason,
        )
        self._notify_assignment(result)
        return result

    def assign_manually(
        self,
        session: Session,
        lead_id: uuid.UUID,
        agent_id: int,
        *,
        now: datetime,
        actor_user_id: str = "system",
    ) -> AssignmentResult:
        agent = self.repository.get_agent(session, agent_id)
        if agent is None or not agent.is_active:
            raise AgentNotFound(agent_id)

        lead = self.repository.get_lead(session, lead_id)
        active = self.repository.get_active_assignment(session, lead.id)
        contact_blocked = self.compliance.is_blocked(session, lead.phone)
        next_attempt = lead.assignment_attempts + 1
        patch: dict[str, Any] = {
            "assignment_attempts": next_attempt,
            "current_agent_id": agent_id,
            "queue_state": QueueState.ASSIGNED.value,
            "queued_at": None,
            "rotation_halted": False,
            "is_contactable": not contact_blocked,
        }
        if not self.repository.update_lead(session, lead.id, lead.row_version, patch, now=now):
            session.rollback()
            raise LeadVersionConflict(lead.id)
        if active is not None:
            self.repository.end_assignment(session, active.id, now=now, reason="manual")
        try:
            assignment = self.repository.create_assignment(
                session,
                lead_id=lead.id,
                agent_id=agent_id,
                kind=AssignmentKind.MANUAL.value,
                attempt_number=next_attempt,
                now=now,
                contact_blocked=contact_blocked,
            )
        except DuplicateActiveAssignment:
            session.rollback()
            raise
        self.repository.record_event(
            session,
            lead_id=lead.id,
            assignment_id=assignment.id,
            reason="manual",
            outcome=AssignmentOutcome.ASSIGNED.value,
            now=now,
            from_agent_id=active.agent_id if active is not None else None,
            to_agent_id=agent_id,
            attempt_number=next_attempt,
        )
        assignment_id = assignment.id
        session.commit()

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="lead",
            entity_id=str(lead_id),
            action="assign_manually",
            before={"agent_id": active.agent_id if active is not None else None},
            after={"agent_id": agent_id},
        )
        result = AssignmentResult(
            lead_id=lead_id,
            outcome=AssignmentOutcome.ASSIGNED,
            agent_id=agent_id,
            assignment_id=assignment_id,
            kind=AssignmentKind.MANUAL,
            contact_blocked=contact_blocked,
            reason="manual",
        )
        self._finish(result, None)
        self._notify_assignment(result)
        return result

    def accept_assignment(
        self,
        session: Session,
        assignment_id: uuid.UUID,
        *,
        now: datetime,
        agent_id: int | None = None,
    ) -> LeadAssignment:
        assignment = self._get_assignment(session, assignment_id, agent_id)
        if assignment.is_accepted:
            return assignment
        assignment.is_accepted = True
        assignment.accepted_at = now
        assignment.last_activity_at = now
        assignment.activity_check = False
        lead = self.repository.get_lead(session, assignment.lead_id)
        lead.last_activity_at = now
        lead.row_version = lead.row_version + 1
        self.repository.record_event(
            session,
            lead_id=lead.id,
            assignment_id=assignment.id,
            reason="accepted",
            outcome="accepted",
            now=now,
            from_agent_id=assignment.agent_id,
            to_agent_id=assignment.agent_id,
            attempt_number=assignment.attempt_number,
        )
        session.commit()
        session.refresh(assignment)
        logger.info(
            "assignment.accepted",
            extra={"lead_id": str(lead.id), "agent_id": assignment.agent_id},
        )
        return assignment

    def reject_assignment(
        self,
        session: Session,
        assignment_id: uuid.UUID,
        *,
        now: datetime,
        agent_id: int | None = None,
    ) -> Lead:
        assignment = self._get_assignment(session, assignment_id, agent_id)
        lead = self.repository.get_lead(session, assignment.lead_id)
        patch = {
            "queue_state": QueueState.QUEUED.value,
            "current_agent_id": None,
            "queued_at": now,
        }
        if not self.repository.update_lead(session, lead.id, lead.row_version, patch, now=now):
            session.rollback()
            raise AssignmentClosed(assignment_id)
        if not self.repository.end_assignment(session, assignment.id, now=now, reason="rejected"):
            session.rollback()
            raise AssignmentClosed(assignment_id)
        self.repository.record_event(
            session,
            lead_id=lead.id,
            assignment_id=assignment.id,
            reason="rejected",
            outcome=AssignmentOutcome.QUEUED.value,
            now=now,
            from_agent_id=assignment.agent_id,
            attempt_number=assignment.attempt_number,
        )
        session.commit()
        logger.info(
            "assignment.rejected",
            extra={"lead_id": str(lead.id), "agent_id": assignment.agent_id},
        )
        return self.repository.get_lead(session, lead.id)

    def record_activity(
        self,
        session: Session,
        lead_id: uuid.UUID,
        *,
        now: datetime,
        agent_id: int | None = None,
    ) -> Lead:
        lead = self.repository.get_lead(session, lead_id)
        active = self.repository.get_active_assignment(session, lead.id)
        if active is not None and (agent_id is None or active.agent_id == agent_id):
            self.repository.update_assignment(
                session,
                active.id,
                {"last_activity_at": now, "activity_check": False},
            )
        lead.last_activity_at = now
        lead.row_version = lead.row_version + 1
        session.commit()
        session.refresh(lead)
        return lead

    def contact_lead(
        self,
        session: Session,
        lead_id: uuid.UUID,
        *,
        now: datetime,
        agent_id: int | None = None,
    ) -> ContactDecision:
        lead = self.repository.get_lead(session, lead_id)
        if self.compliance.is_blocked(session, lead.phone):
            changed = self.repository.mark_leads_not_contactable(session, [lead.id], now=now)
            session.commit()
            if changed:
                logger.info("contact.blocked", extra={"lead_id": str(lead.id), "reason": "dnd"})
            return ContactDecision(allowed=False, reason="dnd")
        if agent_id is not None and lead.current_agent_id != agent_id:
            return ContactDecision(allowed=False, reason="not_owner")
        return ContactDecision(allowed=True)

    def close_won(
        self,
        session: Session,
        lead_id: uuid.UUID,
        deal_value: Decimal,
        *,
        now: datetime,
        actor_user_id: str = "system",
    ) -> Lead:
        lead = self.repository.get_lead(session, lead_id)
        tier: int | None = None
        if lead.current_agent_id is not None:
            agent = self.repository.get_agent(session, lead.current_agent_id)
            tier = agent.designation_tier if agent is not None else None
        percentage = self.commission.resolve(session, deal_value, tier)

        before = {"status": lead.status, "deal_value": None if lead.deal_value is None else str(lead.deal_value)}
        patch = {
            "status": LeadStatus.CLOSED_WON.value,
            "sub_status": None,
            "status_changed_at": now,
            "closed_at": now,
            "deal_value": Decimal(deal_value),
            "commission_percentage": percentage,
            "rotation_halted": True,
        }
        if not self.repository.update_lead(session, lead.id, lead.row_version, patch, now=now):
            session.rollback()
            raise LeadVersionConflict(lead.id)
        active = self.repository.get_active_assignment(session, lead.id)
        if active is not None:
            self.repository.end_assignment(session, active.id, now=now, reason="closed_won")
        session.commit()

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="lead",
            entity_id=str(lead.id),
            action="close_won",
            before=before,
            after={"status": LeadStatus.CLOSED_WON.value, "deal_value": str(deal_value), "commission": str(percentage)},
        )
        events.publish(
            events.build_envelope(
                "leads.deal.closed_won",
                {
                    "lead_id": str(lead.id),
                    "agent_id": lead.current_agent_id,
                    "deal_value": str(deal_value),
                    "commission_percentage": str(percentage),
                },
                actor_user_id=actor_user_id,
            )
        )
        return self.repository.get_lead(session, lead.id)

    def assignment_history(self, session: Session, lead_id: uuid.UUID) -> list[AssignmentEvent]:
        self.repository.get_lead(session, lead_id)
        return self.repository.list_events(session, lead_id)

    def _eligible_agents(
        self,
        session: Session,
        lead: Lead,
        snapshot: PolicySnapshot,
        exclude_agent_ids: Collection[int],
    ) -> tuple[str, AssignmentKind, list[int]]:
        if snapshot.strategy == AssignmentKind.TERRITORY.value:
            kind = AssignmentKind.TERRITORY
            if lead.territory_code:
                pool_key = f"territory:{lead.territory_code}"
                agents = self.repository.list_agents(session, AgentFilter(territory_code=lead.territory_code))
            else:
                pool_key = f"source:{lead.source}"
                agents = self.repository.list_agents(session, AgentFilter(source=lead.source))
        else:
            kind = AssignmentKind.ROUND_ROBIN
            pool_key = "round_robin"
            agents = self.repository.list_agents(session)

        excluded = set(exclude_agent_ids)
        candidates = [agent.id for agent in agents if agent.id not in excluded]
        cap = snapshot.max_leads_per_agent
        if cap is not None and candidates:
            loads = self.repository.count_active_assignments(session, candidates)
            candidates = [agent_id for agent_id in candidates if loads.get(agent_id, 0) < cap]
        if not candidates:
            raise NoEligibleAgent(lead.id, pool_key)
        return pool_key, kind, candidates

    def _get_assignment(self, session: Session, assignment_id: uuid.UUID, agent_id: int | None) -> LeadAssignment:
        assignment = session.get(LeadAssignment, assignment_id, populate_existing=True)
        if assignment is None or (agent_id is not None and assignment.agent_id != agent_id):
            raise AssignmentNotFound(assignment_id)
        if not assignment.is_active:
            raise AssignmentClosed(assignment_id)
        return assignment

    def _end_previous(self, session: Session, plan: AssignmentPlan, *, now: datetime) -> bool:
        if plan.previous_assignment_id is None:
            return True
        return self.repository.end_assignment(
            session,
            plan.previous_assignment_id,
            now=now,
            reason=plan.reason,
            last_activity_before=plan.previous_idle_before,
        )

    def _discard(self, session: Session, plan: AssignmentPlan, why: str) -> AssignmentResult:
        session.rollback()
        logger.info(
            "assignment.discarded",
            extra={"lead_id": str(plan.lead_id), "agent_id": plan.agent_id, "reason": why},
        )
        return AssignmentResult(lead_id=plan.lead_id, outcome=AssignmentOutcome.DISCARDED, reason=why)

    def _finish(self, result: AssignmentResult, span: Any) -> AssignmentResult:
        observe_assignment(result.outcome.value)
        set_span_attributes(span, outcome=result.outcome.value, agent_id=result.agent_id)
        if result.assigned:
            logger.info(
                "assignment.created",
                extra={
                    "lead_id": str(result.lead_id),
                    "agent_id": result.agent_id,
                    "outcome": result.outcome.value,
                    "kind": result.kind.value if result.kind is not None else None,
                    "reason": result.reason,
                },
            )
        return result

    def _notify_assignment(self, result: AssignmentResult) -> None:
        if result.agent_id is None:
            return
        payload = {
            "type": "lead_assigned",
            "lead_id": str(result.lead_id),
            "assignment_id": str(result.assignment_id),
            "kind": result.kind.value if result.kind is not None else None,
            "contact_blocked": result.contact_blocked,
        }
        try:
            self.dispatcher.dispatch("in_app", str(result.agent_id), payload)
        except Exception:
            logger.exception(
                "notification.failed",
                extra={"lead_id": str(result.lead_id), "agent_id": result.agent_id},
            )


assignment_engine = AssignmentEngine()
