from __future__ import annotations

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict

from app.leads.reminders.service import ReminderKind


class ScheduledActivityCreate(BaseModel):
    lead_id: uuid.UUID
    agent_id: int
    kind: ReminderKind
    scheduled_at: datetime
    title: str | None = None


class ScheduledActivityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    lead_id: uuid.UUID
    agent_id: int
    kind: str
    scheduled_at: datetime
    title: str | None
    cancelled: bool
    created_at: datetime
