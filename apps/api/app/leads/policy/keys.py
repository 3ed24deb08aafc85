"""Registry of every named policy key the engine reads.

Values live as text in ``policy_setting``; each definition knows how to parse and
range-check its raw value and what to fall back to when the row is missing or
malformed. Enable flags fall back to ``False`` so a broken row turns the feature
off rather than failing the tick.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import time
from enum import Enum
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from app.leads.errors import InvalidPolicyValue


class PolicyValueType(str, Enum):
    BOOLEAN = "boolean"
    INTEGER = "integer"
    TIME = "time"
    STRING = "string"
    CSV = "csv"


_TRUE_VALUES = {"true", "1", "yes", "on"}
_FALSE_VALUES = {"false", "0", "no", "off"}


@dataclass(frozen=True, slots=True)
class PolicyDefinition:
    key: str
    value_type: PolicyValueType
    default: Any
    category: str
    description: str
    seed: str | None = None
    minimum: int | None = None
    maximum: int | None = None
    choices: tuple[str, ...] | None = None
    nullable: bool = False

    def parse(self, raw: str | None) -> Any:
        if raw is None:
            return self.default
        value = raw.strip()
        if value == "":
            if self.nullable:
                return None
            raise InvalidPolicyValue(self.key, raw, "value is required")

        if self.value_type is PolicyValueType.BOOLEAN:
            lowered = value.lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise InvalidPolicyValue(self.key, raw, "expected a boolean")

        if self.value_type is PolicyValueType.INTEGER:
            try:
                number = int(value)
            except ValueError as exc:
                raise InvalidPolicyValue(self.key, raw, "expected an integer") from exc
            self._check_range(number, raw)
            return number

        if self.value_type is PolicyValueType.TIME:
            try:
                hours, minutes = value.split(":")
                return time(hour=int(hours), minute=int(minutes))
            except ValueError as exc:
                raise InvalidPolicyValue(self.key, raw, "expected HH:MM") from exc

        if self.value_type is PolicyValueType.CSV:
            items: list[int] = []
            for part in value.split(","):
                part = part.strip()
                if not part:
                    continue
                try:
                    number = int(part)
                except ValueError as exc:
                    raise InvalidPolicyValue(self.key, raw, "expected comma separated integers") from exc
                self._check_range(number, raw)
                items.append(number)
            return tuple(sorted(set(items)))

        if self.choices is not None and value not in self.choices:
            raise InvalidPolicyValue(self.key, raw, f"expected one of {', '.join(self.choices)}")
        if self.key == "systemTimezone":
            try:
                ZoneInfo(value)
            except (ZoneInfoNotFoundError, ValueError) as exc:
                raise InvalidPolicyValue(self.key, raw, "unknown timezone") from exc
        return value

    def _check_range(self, number: int, raw: str) -> None:
        if self.minimum is not None and number < self.minimum:
            raise InvalidPolicyValue(self.key, raw, f"must be >= {self.minimum}")
        if self.maximum is not None and number > self.maximum:
            raise InvalidPolicyValue(self.key, raw, f"must be <= {self.maximum}")


def _flag(key: str, category: str, description: str, seed: str = "true") -> PolicyDefinition:
    return PolicyDefinition(key, PolicyValueType.BOOLEAN, False, category, description, seed=seed)


def _minutes(key: str, category: str, description: str, seed: str) -> PolicyDefinition:
    return PolicyDefinition(key, PolicyValueType.INTEGER, int(seed), category, description, seed=seed, minimum=1)


POLICY_DEFINITIONS: dict[str, PolicyDefinition] = {
    definition.key: definition
    for definition in (
        _flag("autoLeadDistribution", "distribution", "Automatically assign queued leads to agents"),
        _minutes("autoLeadDistributionInterval", "distribution", "Minutes between distribution sweeps", "15"),
        PolicyDefinition(
            "lead_assignment_strategy",
            PolicyValueType.STRING,
            "round_robin",
            "distribution",
            "Agent selection strategy",
            seed="round_robin",
            choices=("round_robin", "territory"),
        ),
        PolicyDefinition(
            "maxLeadsPerAgent",
            PolicyValueType.INTEGER,
            None,
            "distribution",
            "Maximum active leads per agent, empty for no cap",
            seed="50",
            minimum=1,
            nullable=True,
        ),
        PolicyDefinition(
            "freshLeadAssignmentLimit",
            PolicyValueType.INTEGER,
            2,
            "fresh_lead",
            "Assignments after which a lead stops being fresh",
            seed="2",
            minimum=1,
        ),
        _flag("freshLeadCheckEnabled", "fresh_lead", "Re-evaluate fresh and priority flags daily"),
        _minutes("freshLeadCheckInterval", "fresh_lead", "Minutes between fresh lead checks", "1440"),
        PolicyDefinition(
            "max_assignment_attempts",
            PolicyValueType.INTEGER,
            None,
            "escalation",
            "Unaccepted assignments before escalation, empty to never escalate",
            seed="6",
            minimum=1,
            nullable=True,
        ),
        PolicyDefinition(
            "fallback_admin_id",
            PolicyValueType.INTEGER,
            None,
            "escalation",
            "Agent id that receives escalated leads",
            seed="",
            minimum=1,
            nullable=True,
        ),
        _flag("noActivityOnLeadRotation", "no_activity", "Rotate leads whose owner shows no activity"),
        _minutes("noActivityTimeDuration", "no_activity", "Minutes without activity before rotation", "30"),
        _minutes("noActivityRotationInterval", "no_activity", "Minutes between no-activity sweeps", "30"),
        _flag("dumpToColdCallEnabled", "dump", "Convert idle dump leads back to cold calls"),
        _minutes("dumpToColdCallInterval", "dump", "Minutes between dump conversion sweeps", "1440"),
        PolicyDefinition(
            "dumpToColdCallDays",
            PolicyValueType.INTEGER,
            30,
            "dump",
            "Days a lead stays in dump before conversion",
            seed="30",
            minimum=1,
        ),
        _flag("dndCheckEnabled", "dnd", "Mark leads with DND numbers as non-contactable"),
        _minutes("dndCheckInterval", "dnd", "Minutes between DND sweeps", "1440"),
        _flag("callReminderEnabled", "reminders", "Send call reminders"),
        _minutes("callReminderInterval", "reminders", "Minutes between call reminder sweeps", "5"),
        PolicyDefinition(
            "callReminderMinutes",
            PolicyValueType.INTEGER,
            5,
            "reminders",
            "Minutes before a call to remind",
            seed="5",
            minimum=0,
        ),
        _flag("meetingReminderEnabled", "reminders", "Send meeting reminders"),
        _minutes("meetingReminderInterval", "reminders", "Minutes between meeting reminder sweeps", "5"),
        PolicyDefinition(
            "meetingReminderMinutes",
            PolicyValueType.INTEGER,
            30,
            "reminders",
            "Minutes before a meeting to remind",
            seed="30",
            minimum=0,
        ),
        PolicyDefinition(
            "standardWorkingFromTime",
            PolicyValueType.TIME,
            None,
            "working_hours",
            "Start of the working day",
            seed="09:00",
        ),
        PolicyDefinition(
            "standardWorkingToTime",
            PolicyValueType.TIME,
            None,
            "working_hours",
            "End of the working day",
            seed="18:00",
        ),
        PolicyDefinition(
            "workingDays",
            PolicyValueType.CSV,
            None,
            "working_hours",
            "Working days, 0 is Sunday",
            seed="1,2,3,4,5",
            minimum=0,
            maximum=6,
        ),
        PolicyDefinition(
            "systemTimezone",
            PolicyValueType.STRING,
            "UTC",
            "working_hours",
            "Timezone used for working hours",
            seed="Asia/Dubai",
        ),
    )
}


def get_definition(key: str) -> PolicyDefinition:
    definition = POLICY_DEFINITIONS.get(key)
    if definition is None:
        raise InvalidPolicyValue(key, None, "unknown policy key")
    return definition


def to_raw(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    if isinstance(value, time):
        return value.strftime("%H:%M")
    return str(value)
