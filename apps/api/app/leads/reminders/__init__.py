from app.leads.reminders.models import ReminderDelivery, ScheduledActivity
from app.leads.reminders.service import ReminderKind, ReminderScheduler, ReminderSweep, reminder_scheduler

__all__ = [
    "ReminderDelivery",
    "ScheduledActivity",
    "ReminderKind",
    "ReminderScheduler",
    "ReminderSweep",
    "reminder_scheduler",
]
