from __future__ import annotations

import uuid


class LeadEngineError(Exception):
    """Base error for lead assignment and rotation failures."""


class LeadNotFound(LeadEngineError):
    def __init__(self, lead_id: uuid.UUID) -> None:
        self.lead_id = lead_id
        super().__init__(f"Lead '{lead_id}' not found")


class AssignmentNotFound(LeadEngineError):
    def __init__(self, assignment_id: uuid.UUID) -> None:
        self.assignment_id = assignment_id
        super().__init__(f"Assignment '{assignment_id}' not found")


class NoEligibleAgent(LeadEngineError):
    """Raised when a lead has no agent it can be handed to; the lead stays queued."""

    def __init__(self, lead_id: uuid.UUID, pool_key: str | None = None) -> None:
        self.lead_id = lead_id
        self.pool_key = pool_key
        super().__init__(f"No eligible agent for lead '{lead_id}'")


class DuplicateActiveAssignment(LeadEngineError):
    """Raised when a second active assignment would be created for the same lead."""

    def __init__(self, lead_id: uuid.UUID) -> None:
        self.lead_id = lead_id
        super().__init__(f"Lead '{lead_id}' already has an active assignment")


class NoSlabMatch(LeadEngineError):
    """No commission slab covers the deal value. Treated as a data-integrity error."""

    def __init__(self, deal_value: object, tier: int | None) -> None:
        self.deal_value = deal_value
        self.tier = tier
        super().__init__(f"No commission slab covers deal value {deal_value} for tier {tier}")


class InvalidPolicyValue(LeadEngineError):
    def __init__(self, key: str, value: object, reason: str) -> None:
        self.key = key
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid value for policy '{key}': {reason}")


class InvalidLeadStatus(LeadEngineError):
    def __init__(self, status: str, sub_status: str | None = None) -> None:
        self.status = status
        self.sub_status = sub_status
        if sub_status is None:
            message = f"Unknown lead status '{status}'"
        else:
            message = f"Sub-status '{sub_status}' is not valid under status '{status}'"
        super().__init__(message)


class InvalidSlabTable(LeadEngineError):
    def __init__(self, tier: int | None, reason: str) -> None:
        self.tier = tier
        self.reason = reason
        super().__init__(f"Invalid commission slabs for tier {tier}: {reason}")


class AgentNotFound(LeadEngineError):
    def __init__(self, agent_id: int) -> None:
        self.agent_id = agent_id
        super().__init__(f"Agent '{agent_id}' not found")


class AssignmentClosed(LeadEngineError):
    def __init__(self, assignment_id: uuid.UUID) -> None:
        self.assignment_id = assignment_id
        super().__init__(f"Assignment '{assignment_id}' is no longer active")


class UnknownSweep(LeadEngineError):
    def __init__(self, sweep_name: str) -> None:
        self.sweep_name = sweep_name
        super().__init__(f"Unknown sweep '{sweep_name}'")


class LeadVersionConflict(LeadEngineError):
    """The lead changed between read and write; the caller should reload and retry."""

    def __init__(self, lead_id: uuid.UUID) -> None:
        self.lead_id = lead_id
        super().__init__(f"Lead '{lead_id}' was modified concurrently")


class ActivityNotFound(LeadEngineError):
    def __init__(self, activity_id: uuid.UUID) -> None:
        self.activity_id = activity_id
        super().__init__(f"Scheduled activity '{activity_id}' not found")
