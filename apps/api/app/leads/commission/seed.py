from __future__ import annotations

from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.leads.commission.models import CommissionSlab
from app.leads.commission.service import CommissionResolver, SlabRange

_BREAKPOINTS: tuple[tuple[Decimal, Decimal | None], ...] = (
    (Decimal("0"), Decimal("1000000")),
    (Decimal("1000000"), Decimal("5000000")),
    (Decimal("5000000"), Decimal("10000000")),
    (Decimal("10000000"), None),
)

# Tier 2 is the senior-agent designation.
DEFAULT_SLAB_PERCENTAGES: dict[int | None, tuple[str, str, str, str]] = {
    None: ("1.0", "1.5", "2.0", "2.5"),
    1: ("0.8", "1.2", "1.5", "2.0"),
    2: ("1.0", "1.5", "2.0", "2.5"),
    3: ("1.5", "2.0", "2.5", "3.0"),
    4: ("2.0", "2.5", "3.0", "3.5"),
}


def seed_commission_slabs(session: Session, resolver: CommissionResolver | None = None) -> int:
    """Seed the default and per-tier slab tables for tiers that have none yet."""
    resolver = resolver or CommissionResolver()
    seeded_tiers = set(session.scalars(select(CommissionSlab.designation_tier).distinct()))
    created = 0
    for tier, percentages in DEFAULT_SLAB_PERCENTAGES.items():
        if tier in seeded_tiers:
            continue
        slabs = [
            SlabRange(slab_from=lower, slab_to=upper, commission_percentage=Decimal(percentage))
            for (lower, upper), percentage in zip(_BREAKPOINTS, percentages)
        ]
        resolver.replace_slabs(session, tier, slabs, actor_user_id="seed")
        created += len(slabs)
    return created
