from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime

from sqlalchemy.orm import Session

from app import audit, events
from app.leads.compliance.service import ComplianceFilter, normalize_phone
from app.leads.models import Lead
from app.leads.repository import LeadRepository
from app.leads.taxonomy import LeadStatus, QueueState, validate_status_pair

logger = logging.getLogger("app.leads.queue")


@dataclass(slots=True)
class LeadQueue:
    """Intake side of the lead queue. New leads always enter ``queued`` in FIFO order."""

    repository: LeadRepository = field(default_factory=LeadRepository)
    compliance: ComplianceFilter = field(default_factory=ComplianceFilter)

    def enqueue(
        self,
        session: Session,
        *,
        source: str,
        now: datetime,
        status: str = LeadStatus.NEW.value,
        sub_status: str | None = None,
        sub_source: str | None = None,
        territory_code: str | None = None,
        name: str | None = None,
        email: str | None = None,
        phone: str | None = None,
        actor_user_id: str = "system",
    ) -> Lead:
        parsed = validate_status_pair(status, sub_status)
        lead = Lead(
            status=parsed.value,
            sub_status=sub_status,
            source=source,
            sub_source=sub_source,
            territory_code=territory_code,
            name=name,
            email=email,
            phone=phone,
            phone_normalized=normalize_phone(phone),
            assignment_attempts=0,
            is_fresh=True,
            is_priority=False,
            is_contactable=not self.compliance.is_blocked(session, phone),
            queue_state=QueueState.QUEUED.value,
            rotation_halted=False,
            queued_at=now,
            status_changed_at=now,
            created_at=now,
            updated_at=now,
        )
        session.add(lead)
        session.commit()
        session.refresh(lead)

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="lead",
            entity_id=str(lead.id),
            action="create",
            before=None,
            after={"status": lead.status, "source": lead.source, "territory_code": lead.territory_code},
        )
        events.publish(
            events.build_envelope(
                "leads.lead.queued",
                {"lead_id": str(lead.id), "source": lead.source, "territory_code": lead.territory_code},
                actor_user_id=actor_user_id,
            )
        )
        logger.info("lead.queued", extra={"lead_id": str(lead.id)})
        return lead

    def list_queued(self, session: Session, *, limit: int | None = None) -> list[Lead]:
        return self.repository.list_queued_leads(session, limit=limit)


lead_queue = LeadQueue()
