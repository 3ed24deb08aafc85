from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete, select, update
from sqlalchemy.orm import Session

from app import audit
from app.leads.compliance.models import DndEntry
from app.leads.models import Lead, LeadAssignment, utcnow

logger = logging.getLogger("app.leads.compliance")

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str | None) -> str | None:
    if not phone:
        return None
    digits = _NON_DIGITS.sub("", phone)
    return digits or None


@dataclass(slots=True)
class ComplianceFilter:
    """DND registry lookups. Every check reads the table so additions and removals apply at once."""

    def is_blocked(self, session: Session, phone: str | None) -> bool:
        normalized = normalize_phone(phone)
        if normalized is None:
            return False
        found = session.scalar(select(DndEntry.phone_number).where(DndEntry.phone_number == normalized))
        return found is not None

    def add(
        self,
        session: Session,
        phone: str,
        *,
        reason: str | None = None,
        added_by: str = "system",
        now: datetime | None = None,
    ) -> DndEntry:
        normalized = normalize_phone(phone)
        if normalized is None:
            raise ValueError("phone number has no digits")

        entry = session.get(DndEntry, normalized)
        if entry is None:
            entry = DndEntry(phone_number=normalized, reason=reason, added_by=added_by, added_at=now or utcnow())
            session.add(entry)
            session.commit()
            session.refresh(entry)
            audit.record(
                actor_user_id=added_by,
                entity_type="dnd_entry",
                entity_id=normalized,
                action="add",
                before=None,
                after={"reason": reason},
            )
            logger.info("dnd.added", extra={"phone_number": normalized})
        return entry

    def remove(self, session: Session, phone: str, *, removed_by: str = "system") -> bool:
        normalized = normalize_phone(phone)
        if normalized is None:
            return False
        result = session.execute(delete(DndEntry).where(DndEntry.phone_number == normalized))
        removed = bool(result.rowcount)
        if removed:
            self._restore_contact(session, normalized)
        session.commit()
        if removed:
            audit.record(
                actor_user_id=removed_by,
                entity_type="dnd_entry",
                entity_id=normalized,
                action="remove",
                before={"phone_number": normalized},
                after=None,
            )
            logger.info("dnd.removed", extra={"phone_number": normalized})
        return removed

    def _restore_contact(self, session: Session, normalized: str) -> None:
        session.execute(
            update(Lead)
            .where(Lead.phone_normalized == normalized, Lead.is_contactable.is_(False))
            .values(is_contactable=True, row_version=Lead.row_version + 1, updated_at=utcnow())
            .execution_options(synchronize_session="fetch")
        )
        session.execute(
            update(LeadAssignment)
            .where(
                LeadAssignment.lead_id.in_(select(Lead.id).where(Lead.phone_normalized == normalized)),
                LeadAssignment.is_active.is_(True),
                LeadAssignment.contact_blocked.is_(True),
            )
            .values(contact_blocked=False)
            .execution_options(synchronize_session="fetch")
        )

    def list_entries(self, session: Session, *, added_since: datetime | None = None) -> list[DndEntry]:
        stmt = select(DndEntry).order_by(DndEntry.added_at, DndEntry.phone_number)
        if added_since is not None:
            stmt = stmt.where(DndEntry.added_at >= added_since)
        return list(session.scalars(stmt))


compliance_filter = ComplianceFilter()
