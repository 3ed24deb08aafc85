from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class DndEntryCreate(BaseModel):
    phone_number: str = Field(min_length=1)
    reason: str | None = None


class DndEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    phone_number: str
    reason: str | None
    added_by: str | None
    added_at: datetime


class DndCheckRead(BaseModel):
    phone_number: str
    blocked: bool
