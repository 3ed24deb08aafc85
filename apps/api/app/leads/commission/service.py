from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import delete, select
from sqlalchemy.orm import Session

from app import audit
from app.leads.commission.models import CommissionSlab
from app.leads.errors import InvalidSlabTable, NoSlabMatch

logger = logging.getLogger("app.leads.commission")


@dataclass(frozen=True, slots=True)
class SlabRange:
    slab_from: Decimal
    slab_to: Decimal | None
    commission_percentage: Decimal

    def covers(self, value: Decimal) -> bool:
        if value < self.slab_from:
            return False
        return self.slab_to is None or value < self.slab_to


def validate_coverage(tier: int | None, slabs: Sequence[SlabRange]) -> list[SlabRange]:
    """Return the slabs ordered by lower bound, or raise if they do not tile [0, +inf) exactly."""
    if not slabs:
        raise InvalidSlabTable(tier, "at least one slab is required")
    ordered = sorted(slabs, key=lambda slab: slab.slab_from)
    expected_from = Decimal("0")
    for index, slab in enumerate(ordered):
        if slab.commission_percentage < 0:
            raise InvalidSlabTable(tier, "commission_percentage must be >= 0")
        if slab.slab_from != expected_from:
            raise InvalidSlabTable(tier, f"gap or overlap at {slab.slab_from}, expected {expected_from}")
        is_last = index == len(ordered) - 1
        if slab.slab_to is None:
            if not is_last:
                raise InvalidSlabTable(tier, "only the last slab may be open-ended")
            break
        if slab.slab_to <= slab.slab_from:
            raise InvalidSlabTable(tier, f"slab_to must exceed slab_from at {slab.slab_from}")
        if is_last:
            raise InvalidSlabTable(tier, "the last slab must be open-ended")
        expected_from = slab.slab_to
    return ordered


@dataclass(slots=True)
class CommissionResolver:
    def list_slabs(self, session: Session, tier: int | None) -> list[CommissionSlab]:
        stmt = select(CommissionSlab).order_by(CommissionSlab.slab_from)
        if tier is None:
            stmt = stmt.where(CommissionSlab.designation_tier.is_(None))
        else:
            stmt = stmt.where(CommissionSlab.designation_tier == tier)
        return list(session.scalars(stmt))

    def resolve(self, session: Session, deal_value: Decimal | int | float | str, tier: int | None) -> Decimal:
        value = Decimal(str(deal_value))
        candidates: list[int | None] = [tier, None] if tier is not None else [None]
        for candidate in candidates:
            for slab in self.list_slabs(session, candidate):
                slab_range = SlabRange(slab.slab_from, slab.slab_to, slab.commission_percentage)
                if slab_range.covers(value):
                    return Decimal(slab.commission_percentage)
        logger.error("commission.no_slab_match", extra={"tier": tier, "error": f"deal value {value} not covered"})
        raise NoSlabMatch(value, tier)

    def replace_slabs(
        self,
        session: Session,
        tier: int | None,
        slabs: Sequence[SlabRange],
        *,
        actor_user_id: str = "system",
    ) -> list[CommissionSlab]:
        ordered = validate_coverage(tier, slabs)
        before = [self._as_dict(slab) for slab in self.list_slabs(session, tier)]

        if tier is None:
            session.execute(delete(CommissionSlab).where(CommissionSlab.designation_tier.is_(None)))
        else:
            session.execute(delete(CommissionSlab).where(CommissionSlab.designation_tier == tier))
        for slab in ordered:
            session.add(
                CommissionSlab(
                    designation_tier=tier,
                    slab_from=slab.slab_from,
                    slab_to=slab.slab_to,
                    commission_percentage=slab.commission_percentage,
                )
            )
        session.commit()

        replaced = self.list_slabs(session, tier)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="commission_slab",
            entity_id="default" if tier is None else str(tier),
            action="replace",
            before={"slabs": before},
            after={"slabs": [self._as_dict(slab) for slab in replaced]},
        )
        return replaced

    @staticmethod
    def _as_dict(slab: CommissionSlab) -> dict[str, str | None]:
        return {
            "slab_from": str(slab.slab_from),
            "slab_to": None if slab.slab_to is None else str(slab.slab_to),
            "commission_percentage": str(slab.commission_percentage),
        }


commission_resolver = CommissionResolver()
