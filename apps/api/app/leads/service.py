from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from app import audit, events
from app.leads.errors import LeadVersionConflict
from app.leads.models import Lead
from app.leads.repository import LeadRepository
from app.leads.taxonomy import LeadStatus, validate_status_pair

logger = logging.getLogger("app.leads.service")


@dataclass(slots=True)
class LeadService:
    repository: LeadRepository = field(default_factory=LeadRepository)

    def get_lead(self, session: Session, lead_id: uuid.UUID) -> Lead:
        return self.repository.get_lead(session, lead_id)

    def change_status(
        self,
        session: Session,
        lead_id: uuid.UUID,
        status: str,
        sub_status: str | None = None,
        *,
        now: datetime,
        actor_user_id: str = "system",
    ) -> Lead:
        parsed = validate_status_pair(status, sub_status)
        lead = self.repository.get_lead(session, lead_id)
        before = {"status": lead.status, "sub_status": lead.sub_status}

        patch: dict[str, Any] = {"status": parsed.value, "sub_status": sub_status}
        if parsed.value != lead.status:
            patch["status_changed_at"] = now
        if parsed is LeadStatus.ARCHIVED:
            patch["archived_at"] = now
        if parsed is LeadStatus.CLOSED_LOST:
            patch["closed_at"] = now

        if not self.repository.update_lead(session, lead.id, lead.row_version, patch, now=now):
            session.rollback()
            raise LeadVersionConflict(lead.id)
        if parsed is LeadStatus.ARCHIVED:
            active = self.repository.get_active_assignment(session, lead.id)
            if active is not None:
                self.repository.end_assignment(session, active.id, now=now, reason="archived")
        session.commit()

        after = {"status": parsed.value, "sub_status": sub_status}
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="lead",
            entity_id=str(lead_id),
            action="change_status",
            before=before,
            after=after,
        )
        if before["status"] != parsed.value:
            logger.info("lead.status_changed", extra={"lead_id": str(lead_id), "status": parsed.value})
            events.publish(
                events.build_envelope(
                    "leads.lead.status_changed",
                    {"lead_id": str(lead_id), "from": before["status"], "to": parsed.value},
                    actor_user_id=actor_user_id,
                )
            )
        return self.repository.get_lead(session, lead_id)


lead_service = LeadService()
