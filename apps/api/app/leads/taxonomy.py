"""Closed lead status taxonomy.

Statuses are stored by value on ``lead_record.status``. Each status lists the
sub-statuses that are legal beneath it; any other pairing is rejected on write.
"""

from __future__ import annotations

from collections.abc import Iterable
from enum import Enum

from app.leads.errors import InvalidLeadStatus


class LeadStatus(str, Enum):
    NEW = "NEW"
    CONTACTED = "CONTACTED"
    QUALIFIED = "QUALIFIED"
    PROPOSAL = "PROPOSAL"
    NEGOTIATION = "NEGOTIATION"
    CLOSED_WON = "CLOSED_WON"
    CLOSED_LOST = "CLOSED_LOST"
    NOT_INTERESTED = "NOT_INTERESTED"
    NO_ANSWER = "NO_ANSWER"
    DUMP = "DUMP"
    COLD_CALL = "COLD_CALL"
    ARCHIVED = "ARCHIVED"


class QueueState(str, Enum):
    QUEUED = "queued"
    ASSIGNED = "assigned"
    ESCALATED = "escalated"
    MANUAL_REVIEW = "manual_review"


SUB_STATUSES: dict[LeadStatus, frozenset[str]] = {
    LeadStatus.CONTACTED: frozenset({"CALL_MADE", "EMAIL_SENT", "WHATSAPP_SENT"}),
    LeadStatus.QUALIFIED: frozenset({"BUDGET_CONFIRMED", "TIMELINE_CONFIRMED", "DECISION_MAKER_IDENTIFIED"}),
    LeadStatus.NOT_INTERESTED: frozenset({"BUDGET_ISSUES", "WRONG_TIMING", "NO_RESPONSE"}),
}


# Leads in these statuses are never picked up by automatic assignment or rotation.
TERMINAL_STATUSES: frozenset[LeadStatus] = frozenset(
    {LeadStatus.CLOSED_WON, LeadStatus.CLOSED_LOST, LeadStatus.ARCHIVED}
)


def parse_status(value: str | LeadStatus) -> LeadStatus:
    if isinstance(value, LeadStatus):
        return value
    try:
        return LeadStatus(value)
    except ValueError as exc:
        raise InvalidLeadStatus(str(value)) from exc


def validate_status_pair(status: str | LeadStatus, sub_status: str | None) -> LeadStatus:
    parsed = parse_status(status)
    if sub_status is None:
        return parsed
    if sub_status not in SUB_STATUSES.get(parsed, frozenset()):
        raise InvalidLeadStatus(parsed.value, sub_status)
    return parsed


def is_terminal(status: str | LeadStatus) -> bool:
    return parse_status(status) in TERMINAL_STATUSES


def unknown_statuses(values: Iterable[str]) -> list[str]:
    known = {status.value for status in LeadStatus}
    return sorted({value for value in values if value not in known})
