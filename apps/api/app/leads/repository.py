"""Data-access boundary for the assignment engine and the sweeps.

Writes that race with other workers are conditional: ``update_lead`` is a
compare-and-swap on ``row_version``, ``advance_cursor`` on the cursor ``version``
and ``create_assignment`` leans on the partial unique index over active rows.
None of them commit; the caller owns the transaction.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import exists, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.context import get_correlation_id
from app.leads.commission.models import CommissionSlab
from app.leads.commission.service import CommissionResolver
from app.leads.compliance.service import ComplianceFilter
from app.leads.errors import DuplicateActiveAssignment, LeadNotFound
from app.leads.models import (
    Agent,
    AgentSource,
    AssignmentCursor,
    AssignmentEvent,
    Lead,
    LeadAssignment,
)
from app.leads.policy.service import PolicyStore
from app.leads.taxonomy import LeadStatus, QueueState


@dataclass(frozen=True, slots=True)
class AssignmentFilter:
    lead_id: uuid.UUID | None = None
    agent_id: int | None = None
    last_activity_before: datetime | None = None
    rotatable_only: bool = False
    limit: int | None = None


@dataclass(frozen=True, slots=True)
class AgentFilter:
    territory_code: str | None = None
    source: str | None = None
    include_unavailable: bool = False


@dataclass(slots=True)
class LeadRepository:
    policy_store: PolicyStore = field(default_factory=PolicyStore)
    compliance: ComplianceFilter = field(default_factory=ComplianceFilter)
    commission: CommissionResolver = field(default_factory=CommissionResolver)

    def get_lead(self, session: Session, lead_id: uuid.UUID) -> Lead:
        lead = session.get(Lead, lead_id, populate_existing=True)
        if lead is None:
            raise LeadNotFound(lead_id)
        return lead

    def list_leads_by_status(
        self,
        session: Session,
        status: LeadStatus,
        *,
        changed_before: datetime | None = None,
        include_halted: bool = False,
        limit: int | None = None,
    ) -> list[Lead]:
        stmt = select(Lead).where(Lead.status == status.value).order_by(Lead.status_changed_at, Lead.id)
        if changed_before is not None:
            stmt = stmt.where(Lead.status_changed_at <= changed_before)
        if not include_halted:
            stmt = stmt.where(Lead.rotation_halted.is_(False))
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt))

    def list_queued_leads(self, session: Session, *, limit: int | None = None) -> list[Lead]:
        stmt = (
            select(Lead)
            .where(Lead.queue_state == QueueState.QUEUED.value, Lead.rotation_halted.is_(False))
            .order_by(Lead.queued_at, Lead.created_at, Lead.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(session.scalars(stmt))

    def list_leads_by_phone(self, session: Session, phone_normalized: str) -> list[Lead]:
        return list(session.scalars(select(Lead).where(Lead.phone_normalized == phone_normalized).order_by(Lead.id)))

    def list_active_assignments(self, session: Session, flt: AssignmentFilter | None = None) -> list[LeadAssignment]:
        flt = flt or AssignmentFilter()
        stmt = select(LeadAssignment).where(LeadAssignment.is_active.is_(True))
        if flt.lead_id is not None:
            stmt = stmt.where(LeadAssignment.lead_id == flt.lead_id)
        if flt.agent_id is not None:
            stmt = stmt.where(LeadAssignment.agent_id == flt.agent_id)
        if flt.last_activity_before is not None:
            stmt = stmt.where(LeadAssignment.last_activity_at < flt.last_activity_before)
        if flt.rotatable_only:
            terminal = [LeadStatus.CLOSED_WON.value, LeadStatus.CLOSED_LOST.value, LeadStatus.ARCHIVED.value]
            stmt = stmt.join(Lead, Lead.id == LeadAssignment.lead_id).where(
                Lead.rotation_halted.is_(False),
                Lead.status.not_in(terminal),
            )
        stmt = stmt.order_by(LeadAssignment.last_activity_at, LeadAssignment.id)
        if flt.limit is not None:
            stmt = stmt.limit(flt.limit)
        return list(session.scalars(stmt))

    def get_active_assignment(self, session: Session, lead_id: uuid.UUID) -> LeadAssignment | None:
        assignments = self.list_active_assignments(session, AssignmentFilter(lead_id=lead_id))
        return assignments[0] if assignments else None

    def count_active_assignments(self, session: Session, agent_ids: Sequence[int]) -> dict[int, int]:
        if not agent_ids:
            return {}
        rows = session.execute(
            select(LeadAssignment.agent_id, func.count())
            .where(LeadAssignment.is_active.is_(True), LeadAssignment.agent_id.in_(list(agent_ids)))
            .group_by(LeadAssignment.agent_id)
        )
        return {agent_id: count for agent_id, count in rows}

    def has_accepted_assignment(self, session: Session, lead_id: uuid.UUID) -> bool:
        return bool(
            session.scalar(
                select(
                    exists().where(LeadAssignment.lead_id == lead_id, LeadAssignment.is_accepted.is_(True))
                )
            )
        )

    def create_assignment(
        self,
        session: Session,
        *,
        lead_id: uuid.UUID,
        agent_id: int,
        kind: str,
        attempt_number: int,
        now: datetime,
        contact_blocked: bool = False,
    ) -> LeadAssignment:
        assignment = LeadAssignment(
            lead_id=lead_id,
            agent_id=agent_id,
            assignment_kind=kind,
            attempt_number=attempt_number,
            is_accepted=False,
            assigned_at=now,
            last_activity_at=now,
            contact_blocked=contact_blocked,
            is_active=True,
        )
        session.add(assignment)
        try:
            session.flush()
        except IntegrityError as exc:
            raise DuplicateActiveAssignment(lead_id) from exc
        return assignment

    def end_assignment(
        self,
        session: Session,
        assignment_id: uuid.UUID,
        *,
        now: datetime,
        reason: str,
        last_activity_before: datetime | None = None,
    ) -> bool:
        stmt = update(LeadAssignment).where(LeadAssignment.id == assignment_id, LeadAssignment.is_active.is_(True))
        if last_activity_before is not None:
            stmt = stmt.where(LeadAssignment.last_activity_at < last_activity_before)
        result = session.execute(
            stmt.values(is_active=False, ended_at=now, end_reason=reason).execution_options(
                synchronize_session="fetch"
            )
        )
        return bool(result.rowcount)

    def update_assignment(
        self,
        session: Session,
        assignment_id: uuid.UUID,
        patch: dict[str, Any],
        *,
        last_activity_before: datetime | None = None,
    ) -> bool:
        stmt = update(LeadAssignment).where(LeadAssignment.id == assignment_id, LeadAssignment.is_active.is_(True))
        if last_activity_before is not None:
            stmt = stmt.where(LeadAssignment.last_activity_at < last_activity_before)
        result = session.execute(stmt.values(**patch).execution_options(synchronize_session="fetch"))
        return bool(result.rowcount)

    def update_lead(
        self,
        session: Session,
        lead_id: uuid.UUID,
        expected_version: int,
        patch: dict[str, Any],
        *,
        now: datetime,
    ) -> bool:
        result = session.execute(
            update(Lead)
            .where(Lead.id == lead_id, Lead.row_version == expected_version)
            .values(**patch, row_version=Lead.row_version + 1, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return bool(result.rowcount)

    def list_agents(self, session: Session, flt: AgentFilter | None = None) -> list[Agent]:
        flt = flt or AgentFilter()
        stmt = select(Agent).order_by(Agent.id)
        if not flt.include_unavailable:
            stmt = stmt.where(Agent.is_active.is_(True), Agent.on_leave.is_(False))
        if flt.territory_code is not None:
            stmt = stmt.where(Agent.territory_code == flt.territory_code)
        if flt.source is not None:
            stmt = stmt.where(
                Agent.id.in_(select(AgentSource.agent_id).where(AgentSource.source == flt.source))
            )
        return list(session.scalars(stmt))

    def get_agent(self, session: Session, agent_id: int) -> Agent | None:
        return session.get(Agent, agent_id)

    def get_setting(self, session: Session, key: str) -> Any:
        return self.policy_store.get_setting(session, key)

    def is_in_dnd(self, session: Session, phone_number: str | None) -> bool:
        return self.compliance.is_blocked(session, phone_number)

    def list_commission_slabs(self, session: Session, tier: int | None) -> list[CommissionSlab]:
        return self.commission.list_slabs(session, tier)

    def get_cursor(self, session: Session, pool_key: str) -> AssignmentCursor | None:
        return session.get(AssignmentCursor, pool_key, populate_existing=True)

    def advance_cursor(
        self,
        session: Session,
        pool_key: str,
        *,
        expected_version: int | None,
        agent_id: int,
    ) -> bool:
        if expected_version is None:
            session.add(AssignmentCursor(pool_key=pool_key, last_agent_id=agent_id, version=1))
            try:
                session.flush()
            except IntegrityError:
                return False
            return True

        result = session.execute(
            update(AssignmentCursor)
            .where(AssignmentCursor.pool_key == pool_key, AssignmentCursor.version == expected_version)
            .values(last_agent_id=agent_id, version=AssignmentCursor.version + 1)
            .execution_options(synchronize_session="fetch")
        )
        return bool(result.rowcount)

    def record_event(
        self,
        session: Session,
        *,
        lead_id: uuid.UUID,
        reason: str,
        outcome: str,
        now: datetime,
        assignment_id: uuid.UUID | None = None,
        from_agent_id: int | None = None,
        to_agent_id: int | None = None,
        attempt_number: int = 0,
    ) -> AssignmentEvent:
        event = AssignmentEvent(
            lead_id=lead_id,
            assignment_id=assignment_id,
            from_agent_id=from_agent_id,
            to_agent_id=to_agent_id,
            reason=reason,
            outcome=outcome,
            attempt_number=attempt_number,
            correlation_id=get_correlation_id(),
            occurred_at=now,
        )
        session.add(event)
        return event

    def list_events(self, session: Session, lead_id: uuid.UUID) -> list[AssignmentEvent]:
        return list(
            session.scalars(
                select(AssignmentEvent)
                .where(AssignmentEvent.lead_id == lead_id)
                .order_by(AssignmentEvent.occurred_at, AssignmentEvent.id)
            )
        )

    def list_assignments(self, session: Session, lead_id: uuid.UUID) -> list[LeadAssignment]:
        return list(
            session.scalars(
                select(LeadAssignment)
                .where(LeadAssignment.lead_id == lead_id)
                .order_by(LeadAssignment.assigned_at, LeadAssignment.attempt_number)
            )
        )

    def mark_leads_not_contactable(self, session: Session, lead_ids: Iterable[uuid.UUID], *, now: datetime) -> int:
        ids = list(lead_ids)
        if not ids:
            return 0
        result = session.execute(
            update(Lead)
            .where(Lead.id.in_(ids), Lead.is_contactable.is_(True))
            .values(is_contactable=False, row_version=Lead.row_version + 1, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        session.execute(
            update(LeadAssignment)
            .where(
                LeadAssignment.lead_id.in_(ids),
                LeadAssignment.is_active.is_(True),
                LeadAssignment.contact_blocked.is_(False),
            )
            .values(contact_blocked=True)
            .execution_options(synchronize_session="fetch")
        )
        return int(result.rowcount or 0)

    def refresh_fresh_flags(self, session: Session, fresh_limit: int, *, now: datetime) -> int:
        """Bring ``is_fresh`` and ``is_priority`` in line with the attempt count. Returns rows changed."""
        terminal = [LeadStatus.CLOSED_WON.value, LeadStatus.CLOSED_LOST.value, LeadStatus.ARCHIVED.value]
        demoted = session.execute(
            update(Lead)
            .where(
                Lead.status.not_in(terminal),
                Lead.assignment_attempts >= fresh_limit,
                or_(Lead.is_fresh.is_(True), Lead.is_priority.is_(False)),
            )
            .values(is_fresh=False, is_priority=True, row_version=Lead.row_version + 1, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        restored = session.execute(
            update(Lead)
            .where(
                Lead.status.not_in(terminal),
                Lead.assignment_attempts < fresh_limit,
                or_(Lead.is_fresh.is_(False), Lead.is_priority.is_(True)),
            )
            .values(is_fresh=True, is_priority=False, row_version=Lead.row_version + 1, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return int(demoted.rowcount or 0) + int(restored.rowcount or 0)
