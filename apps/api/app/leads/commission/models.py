from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import DateTime, Index, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column

from app.core.database import Base
from app.leads.models import utcnow


class CommissionSlab(Base):
    __tablename__ = "commission_slab"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # NULL tier is the designation-agnostic default set.
    designation_tier: Mapped[int | None] = mapped_column(Integer, nullable=True)
    slab_from: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    slab_to: Mapped[Decimal | None] = mapped_column(Numeric(18, 2), nullable=True)
    commission_percentage: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)


Index("ix_commission_slab_tier_from", CommissionSlab.designation_tier, CommissionSlab.slab_from)
