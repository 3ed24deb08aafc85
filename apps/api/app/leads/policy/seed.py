from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.leads.policy.keys import POLICY_DEFINITIONS
from app.leads.policy.models import PolicySetting, StatusRotationRule
from app.leads.taxonomy import LeadStatus

logger = logging.getLogger("app.leads.policy")

DEFAULT_STATUS_RULES: tuple[dict[str, object], ...] = (
    {"status": LeadStatus.NO_ANSWER.value, "interval_minutes": 240, "max_age_days": 2, "max_assignments": None},
    {"status": LeadStatus.NOT_INTERESTED.value, "interval_minutes": 240, "max_age_days": None, "max_assignments": 3},
)


def seed_policies(session: Session) -> int:
    """Insert any missing policy rows and default status rules. Existing rows are left untouched."""
    existing = set(session.scalars(select(PolicySetting.key)))
    created = 0
    for key, definition in POLICY_DEFINITIONS.items():
        if key in existing or definition.seed is None:
            continue
        session.add(
            PolicySetting(
                key=key,
                value=definition.seed,
                value_type=definition.value_type.value,
                category=definition.category,
                description=definition.description,
                updated_by="seed",
            )
        )
        created += 1

    existing_rules = set(session.scalars(select(StatusRotationRule.status)))
    for rule in DEFAULT_STATUS_RULES:
        if rule["status"] in existing_rules:
            continue
        session.add(StatusRotationRule(enabled=True, **rule))
        created += 1

    session.commit()
    logger.info("policy.seeded", extra={"count": created})
    return created
