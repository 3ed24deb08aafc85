from __future__ import annotations

from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field


class CommissionSlabWrite(BaseModel):
    slab_from: Decimal = Field(ge=0)
    slab_to: Decimal | None = None
    commission_percentage: Decimal = Field(ge=0)


class CommissionSlabReplace(BaseModel):
    slabs: list[CommissionSlabWrite] = Field(min_length=1)


class CommissionSlabRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    designation_tier: int | None
    slab_from: Decimal
    slab_to: Decimal | None
    commission_percentage: Decimal


class CommissionResolveRead(BaseModel):
    deal_value: Decimal
    designation_tier: int | None
    commission_percentage: Decimal
