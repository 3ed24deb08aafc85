from app.leads.assignment.engine import (
    AssignmentEngine,
    AssignmentKind,
    AssignmentOutcome,
    AssignmentPlan,
    AssignmentResult,
    ContactDecision,
    assignment_engine,
    pick_next_agent,
)

__all__ = [
    "AssignmentEngine",
    "AssignmentKind",
    "AssignmentOutcome",
    "AssignmentPlan",
    "AssignmentResult",
    "ContactDecision",
    "assignment_engine",
    "pick_next_agent",
]
