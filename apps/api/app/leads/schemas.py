from __future__ import annotations

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class LeadCreate(BaseModel):
    source: str = Field(min_length=1, max_length=64)
    status: str = "NEW"
    sub_status: str | None = None
    sub_source: str | None = None
    territory_code: str | None = None
    name: str | None = None
    email: str | None = None
    phone: str | None = None


class LeadRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    status: str
    sub_status: str | None
    source: str
    sub_source: str | None
    territory_code: str | None
    name: str | None
    email: str | None
    phone: str | None
    assignment_attempts: int
    is_fresh: bool
    is_priority: bool
    is_contactable: bool
    queue_state: str
    rotation_halted: bool
    current_agent_id: int | None
    deal_value: Decimal | None
    commission_percentage: Decimal | None
    queued_at: datetime | None
    status_changed_at: datetime
    last_activity_at: datetime | None
    closed_at: datetime | None
    archived_at: datetime | None
    created_at: datetime
    row_version: int


class LeadIntakeRead(BaseModel):
    lead: LeadRead
    assignment: AssignmentResultRead | None = None


class LeadStatusUpdate(BaseModel):
    status: str
    sub_status: str | None = None


class AssignmentResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    lead_id: uuid.UUID
    outcome: str
    agent_id: int | None
    assignment_id: uuid.UUID | None
    kind: str | None
    contact_blocked: bool
    reason: str | None


class ManualAssignRequest(BaseModel):
    agent_id: int


class AssignmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    lead_id: uuid.UUID
    agent_id: int
    assignment_kind: str
    attempt_number: int
    is_accepted: bool
    accepted_at: datetime | None
    assigned_at: datetime
    last_activity_at: datetime
    activity_check: bool
    contact_blocked: bool
    is_active: bool
    ended_at: datetime | None
    end_reason: str | None


class AgentActionRequest(BaseModel):
    agent_id: int | None = None


class ContactDecisionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    allowed: bool
    reason: str | None


class CloseWonRequest(BaseModel):
    deal_value: Decimal = Field(ge=0)


class AssignmentEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    lead_id: uuid.UUID
    assignment_id: uuid.UUID | None
    from_agent_id: int | None
    to_agent_id: int | None
    reason: str
    outcome: str
    attempt_number: int
    correlation_id: str | None
    occurred_at: datetime


LeadIntakeRead.model_rebuild()
