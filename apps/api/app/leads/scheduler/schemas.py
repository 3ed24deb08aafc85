from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class SweepStatusRead(BaseModel):
    name: str
    enabled: bool
    interval_minutes: int
    office_hours_only: bool
    locked_until: datetime | None
    last_started_at: datetime | None
    last_finished_at: datetime | None
    last_succeeded_at: datetime | None
    last_status: str | None
    last_error: str | None
    last_reassigned: int
    last_skipped: int


class SweepRunRead(BaseModel):
    sweep: str
    status: str
    correlation_id: str
    reassigned: int
    skipped: int
    updated: int
    notified: int
    error: str | None
