from app.leads.commission.models import CommissionSlab
from app.leads.compliance.models import DndEntry
from app.leads.models import Agent, AgentSource, AssignmentCursor, AssignmentEvent, Lead, LeadAssignment
from app.leads.policy.models import PolicySetting, StatusRotationRule
from app.leads.reminders.models import ReminderDelivery, ScheduledActivity
from app.leads.scheduler.models import SweepLease

__all__ = [
	"Agent",
	"AgentSource",
	"AssignmentCursor",
	"AssignmentEvent",
	"CommissionSlab",
	"DndEntry",
	"Lead",
	"LeadAssignment",
	"PolicySetting",
	"ReminderDelivery",
	"ScheduledActivity",
	"StatusRotationRule",
	"SweepLease",
]
