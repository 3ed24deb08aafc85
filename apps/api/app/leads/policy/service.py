from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, time
from types import MappingProxyType
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy import select
from sqlalchemy.orm import Session

from app import audit
from app.leads.errors import InvalidPolicyValue
from app.leads.models import utcnow
from app.leads.policy.keys import POLICY_DEFINITIONS, PolicyDefinition, get_definition, to_raw
from app.leads.policy.models import PolicySetting, StatusRotationRule
from app.leads.taxonomy import LeadStatus, unknown_statuses
from app.metrics import observe_policy_invalid_value

logger = logging.getLogger("app.leads.policy")


@dataclass(frozen=True, slots=True)
class StatusRule:
    status: LeadStatus
    enabled: bool
    interval_minutes: int
    max_age_days: int | None = None
    max_assignments: int | None = None

    @property
    def sweep_name(self) -> str:
        return f"status_rotation:{self.status.value}"


@dataclass(frozen=True, slots=True)
class PolicySnapshot:
    """Immutable view of every policy value, loaded once per sweep run."""

    values: Mapping[str, Any]
    status_rules: tuple[StatusRule, ...] = ()
    loaded_at: datetime = field(default_factory=utcnow)

    def get(self, key: str) -> Any:
        if key in self.values:
            return self.values[key]
        return get_definition(key).default

    def enabled(self, key: str) -> bool:
        return bool(self.get(key))

    @property
    def auto_distribution(self) -> bool:
        return self.enabled("autoLeadDistribution")

    @property
    def strategy(self) -> str:
        return self.get("lead_assignment_strategy")

    @property
    def max_leads_per_agent(self) -> int | None:
        return self.get("maxLeadsPerAgent")

    @property
    def fresh_lead_limit(self) -> int:
        return self.get("freshLeadAssignmentLimit")

    @property
    def max_assignment_attempts(self) -> int | None:
        return self.get("max_assignment_attempts")

    @property
    def fallback_admin_id(self) -> int | None:
        return self.get("fallback_admin_id")

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.get("systemTimezone"))

    def status_rule(self, status: LeadStatus) -> StatusRule | None:
        for rule in self.status_rules:
            if rule.status is status:
                return rule
        return None

    def is_working_time(self, now: datetime) -> bool:
        start: time | None = self.get("standardWorkingFromTime")
        end: time | None = self.get("standardWorkingToTime")
        days: tuple[int, ...] | None = self.get("workingDays")
        if start is None or end is None or days is None:
            return True

        local = now.astimezone(self.timezone)
        # 0 is Sunday, matching the stored workingDays convention.
        if local.isoweekday() % 7 not in days:
            return False
        current = local.time().replace(tzinfo=None)
        if start <= end:
            return start <= current < end
        return current >= start or current < end


def snapshot_from_values(values: Mapping[str, Any], status_rules: tuple[StatusRule, ...] = ()) -> PolicySnapshot:
    merged = {key: definition.default for key, definition in POLICY_DEFINITIONS.items()}
    for key, value in values.items():
        get_definition(key)
        merged[key] = value
    return PolicySnapshot(values=MappingProxyType(merged), status_rules=status_rules)


@dataclass(slots=True)
class PolicyStore:
    def load_snapshot(self, session: Session) -> PolicySnapshot:
        rows = {row.key: row for row in session.scalars(select(PolicySetting))}
        values: dict[str, Any] = {}
        for key, definition in POLICY_DEFINITIONS.items():
            row = rows.get(key)
            values[key] = self._parse_or_default(definition, row.value if row is not None else None)
        return PolicySnapshot(values=MappingProxyType(values), status_rules=self._load_status_rules(session))

    def get_setting(self, session: Session, key: str) -> Any:
        definition = get_definition(key)
        row = session.get(PolicySetting, key)
        return self._parse_or_default(definition, row.value if row is not None else None)

    def list_settings(self, session: Session) -> list[dict[str, Any]]:
        rows = {row.key: row for row in session.scalars(select(PolicySetting))}
        settings: list[dict[str, Any]] = []
        for key, definition in POLICY_DEFINITIONS.items():
            row = rows.get(key)
            raw = row.value if row is not None else None
            settings.append(
                {
                    "key": key,
                    "value_type": definition.value_type.value,
                    "category": definition.category,
                    "description": definition.description,
                    "raw_value": raw,
                    "value": to_raw(self._parse_or_default(definition, raw)),
                    "updated_at": row.updated_at if row is not None else None,
                }
            )
        return settings

    def set_value(self, session: Session, key: str, value: Any, *, actor_user_id: str = "system") -> PolicySetting:
        definition = get_definition(key)
        raw = to_raw(value)
        definition.parse(raw)

        row = session.get(PolicySetting, key)
        before = {"value": row.value} if row is not None else None
        if row is None:
            row = PolicySetting(
                key=key,
                value=raw,
                value_type=definition.value_type.value,
                category=definition.category,
                description=definition.description,
                updated_by=actor_user_id,
            )
            session.add(row)
        else:
            row.value = raw
            row.updated_by = actor_user_id
        session.commit()
        session.refresh(row)

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="policy_setting",
            entity_id=key,
            action="update",
            before=before,
            after={"value": raw},
        )
        logger.info("policy.updated", extra={"policy_key": key})
        return row

    def list_rules(self, session: Session) -> list[StatusRotationRule]:
        return list(session.scalars(select(StatusRotationRule).order_by(StatusRotationRule.status)))

    def upsert_rule(
        self,
        session: Session,
        status: str,
        *,
        enabled: bool,
        interval_minutes: int,
        max_age_days: int | None = None,
        max_assignments: int | None = None,
        actor_user_id: str = "system",
    ) -> StatusRotationRule:
        rule_key = f"status_rotation:{status}"
        if unknown_statuses([status]):
            raise InvalidPolicyValue(rule_key, status, "unknown lead status")
        if interval_minutes < 1:
            raise InvalidPolicyValue(rule_key, interval_minutes, "interval_minutes must be >= 1")
        if max_age_days is not None and max_age_days < 1:
            raise InvalidPolicyValue(rule_key, max_age_days, "max_age_days must be >= 1")
        if max_assignments is not None and max_assignments < 1:
            raise InvalidPolicyValue(rule_key, max_assignments, "max_assignments must be >= 1")

        rule = session.get(StatusRotationRule, status)
        before = None
        if rule is None:
            rule = StatusRotationRule(status=status, interval_minutes=interval_minutes)
            session.add(rule)
        else:
            before = {
                "enabled": rule.enabled,
                "interval_minutes": rule.interval_minutes,
                "max_age_days": rule.max_age_days,
                "max_assignments": rule.max_assignments,
            }
        rule.enabled = enabled
        rule.interval_minutes = interval_minutes
        rule.max_age_days = max_age_days
        rule.max_assignments = max_assignments
        session.commit()
        session.refresh(rule)

        audit.record(
            actor_user_id=actor_user_id,
            entity_type="status_rotation_rule",
            entity_id=status,
            action="upsert",
            before=before,
            after={
                "enabled": enabled,
                "interval_minutes": interval_minutes,
                "max_age_days": max_age_days,
                "max_assignments": max_assignments,
            },
        )
        return rule

    def check_rule_statuses(self, session: Session) -> list[str]:
        unknown = unknown_statuses(rule.status for rule in self.list_rules(session))
        for status in unknown:
            logger.warning(
                "policy.invalid_value",
                extra={"policy_key": f"status_rotation:{status}", "reason": "unknown lead status"},
            )
        return unknown

    def _parse_or_default(self, definition: PolicyDefinition, raw: str | None) -> Any:
        try:
            return definition.parse(raw)
        except InvalidPolicyValue as exc:
            observe_policy_invalid_value(definition.key)
            logger.warning("policy.invalid_value", extra={"policy_key": definition.key, "reason": exc.reason})
            return definition.default

    def _load_status_rules(self, session: Session) -> tuple[StatusRule, ...]:
        rules: list[StatusRule] = []
        for row in self.list_rules(session):
            try:
                status = LeadStatus(row.status)
            except ValueError:
                observe_policy_invalid_value(f"status_rotation:{row.status}")
                logger.warning(
                    "policy.invalid_value",
                    extra={"policy_key": f"status_rotation:{row.status}", "reason": "unknown lead status"},
                )
                continue
            if row.interval_minutes < 1:
                logger.warning(
                    "policy.invalid_value",
                    extra={"policy_key": f"status_rotation:{row.status}", "reason": "interval_minutes must be >= 1"},
                )
                continue
            rules.append(
                StatusRule(
                    status=status,
                    enabled=row.enabled,
                    interval_minutes=row.interval_minutes,
                    max_age_days=row.max_age_days,
                    max_assignments=row.max_assignments,
                )
            )
        return tuple(rules)


policy_store = PolicyStore()
