from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict


class PolicySettingRead(BaseModel):
    key: str
    value_type: str
    category: str
    description: str | None
    raw_value: str | None
    value: str
    updated_at: datetime | None


class PolicyValueUpdate(BaseModel):
    value: bool | int | str | list[int] | None


class StatusRotationRuleRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    enabled: bool
    interval_minutes: int
    max_age_days: int | None
    max_assignments: int | None
    updated_at: datetime


class StatusRotationRuleUpsert(BaseModel):
    enabled: bool = True
    interval_minutes: int
    max_age_days: int | None = None
    max_assignments: int | None = None


class PolicySeedRead(BaseModel):
    policies: int
    commission_slabs: int
