from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.leads.taxonomy import LeadStatus, QueueState


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes even for timezone-aware columns.
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Lead(Base):
    __tablename__ = "lead_record"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=LeadStatus.NEW.value, server_default=LeadStatus.NEW.value
    )
    sub_status: Mapped[str | None] = mapped_column(String(64), nullable=True)
    source: Mapped[str] = mapped_column(String(64), nullable=False)
    sub_source: Mapped[str | None] = mapped_column(String(64), nullable=True)
    territory_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    phone_normalized: Mapped[str | None] = mapped_column(String(32), nullable=True)
    assignment_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    is_fresh: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    is_priority: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_contactable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    queue_state: Mapped[str] = mapped_column(
        String(32), nullable=False, default=QueueState.QUEUED.value, server_default=QueueState.QUEUED.value
    )
    rotation_halted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    current_agent_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    deal_value: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    commission_percentage: Mapped[Decimal | None] = mapped_column(Numeric(6, 3), nullable=True)
    queued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    status_changed_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_activity_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    closed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    archived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    row_version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")


class Agent(Base):
    __tablename__ = "lead_agent"

    # Ids mirror the user-management service and are never generated here.
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=False)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)
    designation_tier: Mapped[int | None] = mapped_column(Integer, nullable=True)
    territory_code: Mapped[str | None] = mapped_column(String(32), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    on_leave: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


class AgentSource(Base):
    __tablename__ = "lead_agent_source"

    agent_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("lead_agent.id", ondelete="CASCADE"), primary_key=True
    )
    source: Mapped[str] = mapped_column(String(64), primary_key=True)


class LeadAssignment(Base):
    __tablename__ = "lead_assignment"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("lead_record.id", ondelete="CASCADE"), nullable=False
    )
    agent_id: Mapped[int] = mapped_column(Integer, nullable=False)
    assignment_kind: Mapped[str] = mapped_column(String(32), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_accepted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    accepted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    last_activity_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    activity_check: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    contact_blocked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default="true")
    ended_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)


class AssignmentCursor(Base):
    __tablename__ = "lead_assignment_cursor"

    pool_key: Mapped[str] = mapped_column(String(128), primary_key=True)
    last_agent_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )


class AssignmentEvent(Base):
    __tablename__ = "lead_assignment_event"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    lead_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("lead_record.id", ondelete="CASCADE"), nullable=False, index=True
    )
    assignment_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    from_agent_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    to_agent_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    reason: Mapped[str] = mapped_column(String(64), nullable=False)
    outcome: Mapped[str] = mapped_column(String(32), nullable=False)
    attempt_number: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    correlation_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_lead_record_queue_state_queued_at", Lead.queue_state, Lead.queued_at)
Index("ix_lead_record_status_changed_at", Lead.status, Lead.status_changed_at)
Index("ix_lead_record_phone_normalized", Lead.phone_normalized)
Index("ix_lead_assignment_agent_active", LeadAssignment.agent_id, LeadAssignment.is_active)
Index("ix_lead_assignment_lead_assigned_at", LeadAssignment.lead_id, LeadAssignment.assigned_at)
Index(
    "uq_lead_assignment_active_lead",
    LeadAssignment.lead_id,
    unique=True,
    postgresql_where=LeadAssignment.is_active.is_(True),
    sqlite_where=LeadAssignment.is_active.is_(True),
)
