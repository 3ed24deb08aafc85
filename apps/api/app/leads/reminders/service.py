from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app import audit
from app.leads.errors import ActivityNotFound
from app.leads.models import as_utc
from app.leads.notifications import NotificationDispatcher, default_dispatcher
from app.leads.policy.service import PolicySnapshot
from app.leads.reminders.models import ReminderDelivery, ScheduledActivity
from app.leads.repository import LeadRepository
from app.leads.rotation.sweeps import Sweep, SweepResult
from app.metrics import observe_reminder_sent

logger = logging.getLogger("app.leads.reminders")


class ReminderKind(str, Enum):
    CALL = "call"
    MEETING = "meeting"


# enabled flag, sweep interval, minutes of notice
_POLICY_KEYS: dict[ReminderKind, tuple[str, str, str]] = {
    ReminderKind.CALL: ("callReminderEnabled", "callReminderInterval", "callReminderMinutes"),
    ReminderKind.MEETING: ("meetingReminderEnabled", "meetingReminderInterval", "meetingReminderMinutes"),
}


def reminder_window(
    kind: ReminderKind,
    now: datetime,
    snapshot: PolicySnapshot,
    since: datetime | None = None,
) -> tuple[datetime, datetime]:
    """Scheduled-time range a run at ``now`` reminds for.

    The range starts at the notice point of the previous successful run, so events
    that fall between two late ticks are still covered; the delivery claim absorbs
    the overlap. Without a previous run it reaches back one interval, and it never
    starts before ``now``.
    """
    _, interval_key, lead_key = _POLICY_KEYS[kind]
    notice = timedelta(minutes=int(snapshot.get(lead_key)))
    interval = timedelta(minutes=int(snapshot.get(interval_key)))
    anchor = since if since is not None else now - interval
    start = max(anchor + notice, now)
    return start, now + notice + interval


@dataclass(slots=True)
class ReminderScheduler:
    """Sends each call or meeting reminder at most once.

    A reminder is claimed by inserting its ``lead_reminder_delivery`` row and committing
    before anything is dispatched. A worker that loses the insert skips the activity, and
    a dispatch that fails is marked ``failed`` rather than retried.
    """

    dispatcher: NotificationDispatcher = default_dispatcher
    repository: LeadRepository = field(default_factory=LeadRepository)

    def schedule(
        self,
        session: Session,
        *,
        lead_id: uuid.UUID,
        agent_id: int,
        kind: ReminderKind,
        scheduled_at: datetime,
        title: str | None = None,
        actor_user_id: str = "system",
    ) -> ScheduledActivity:
        self.repository.get_lead(session, lead_id)
        activity = ScheduledActivity(
            lead_id=lead_id,
            agent_id=agent_id,
            kind=ReminderKind(kind).value,
            scheduled_at=as_utc(scheduled_at),
            title=title,
            cancelled=False,
            created_by=actor_user_id,
        )
        session.add(activity)
        session.commit()
        session.refresh(activity)
        audit.record(
            actor_user_id=actor_user_id,
            entity_type="scheduled_activity",
            entity_id=str(activity.id),
            action="create",
            before=None,
            after={"kind": activity.kind, "lead_id": str(lead_id), "agent_id": agent_id},
        )
        return activity

    def cancel(self, session: Session, activity_id: uuid.UUID, *, actor_user_id: str = "system") -> ScheduledActivity:
        activity = session.get(ScheduledActivity, activity_id)
        if activity is None:
            raise ActivityNotFound(activity_id)
        if not activity.cancelled:
            activity.cancelled = True
            session.commit()
            session.refresh(activity)
            audit.record(
                actor_user_id=actor_user_id,
                entity_type="scheduled_activity",
                entity_id=str(activity_id),
                action="cancel",
                before={"cancelled": False},
                after={"cancelled": True},
            )
        return activity

    def list_activities(
        self,
        session: Session,
        *,
        lead_id: uuid.UUID | None = None,
        include_cancelled: bool = False,
    ) -> list[ScheduledActivity]:
        stmt = select(ScheduledActivity).order_by(ScheduledActivity.scheduled_at, ScheduledActivity.id)
        if lead_id is not None:
            stmt = stmt.where(ScheduledActivity.lead_id == lead_id)
        if not include_cancelled:
            stmt = stmt.where(ScheduledActivity.cancelled.is_(False))
        return list(session.scalars(stmt))

    def get_delivery(self, session: Session, activity_id: uuid.UUID) -> ReminderDelivery | None:
        return session.scalar(select(ReminderDelivery).where(ReminderDelivery.activity_id == activity_id))

    def run(
        self,
        session: Session,
        *,
        kind: ReminderKind,
        now: datetime,
        snapshot: PolicySnapshot,
        dispatcher: NotificationDispatcher | None = None,
        since: datetime | None = None,
    ) -> SweepResult:
        dispatcher = dispatcher or self.dispatcher
        start, end = reminder_window(kind, now, snapshot, since)
        delivered = select(ReminderDelivery.activity_id)
        due = session.scalars(
            select(ScheduledActivity)
            .where(
                ScheduledActivity.kind == kind.value,
                ScheduledActivity.cancelled.is_(False),
                ScheduledActivity.scheduled_at >= start,
                ScheduledActivity.scheduled_at < end,
                ScheduledActivity.id.not_in(delivered),
            )
            .order_by(ScheduledActivity.scheduled_at, ScheduledActivity.id)
        )
        targets = [
            (activity.id, activity.lead_id, activity.agent_id, as_utc(activity.scheduled_at), activity.title)
            for activity in due
        ]

        notified = 0
        skipped = 0
        for activity_id, lead_id, agent_id, scheduled_at, title in targets:
            delivery = self._claim(session, activity_id, kind, now=now)
            if delivery is None:
                skipped += 1
                continue
            payload = {
                "type": f"{kind.value}_reminder",
                "activity_id": str(activity_id),
                "lead_id": str(lead_id),
                "scheduled_at": scheduled_at.isoformat() if scheduled_at is not None else None,
                "title": title,
            }
            try:
                dispatcher.dispatch("in_app", str(agent_id), payload)
            except Exception as exc:
                delivery.status = "failed"
                delivery.error = str(exc)
                session.commit()
                logger.exception(
                    "reminder.failed",
                    extra={"activity_id": str(activity_id), "kind": kind.value, "agent_id": agent_id},
                )
                skipped += 1
                continue
            delivery.status = "sent"
            delivery.sent_at = now
            session.commit()
            notified += 1
            observe_reminder_sent(kind.value)
            logger.info(
                "reminder.sent",
                extra={"activity_id": str(activity_id), "kind": kind.value, "agent_id": agent_id},
            )
        return SweepResult(notified=notified, skipped=skipped)

    def _claim(
        self,
        session: Session,
        activity_id: uuid.UUID,
        kind: ReminderKind,
        *,
        now: datetime,
    ) -> ReminderDelivery | None:
        delivery = ReminderDelivery(activity_id=activity_id, kind=kind.value, status="claimed", claimed_at=now)
        session.add(delivery)
        try:
            session.commit()
        except IntegrityError:
            session.rollback()
            return None
        return delivery


@dataclass
class ReminderSweep(Sweep):
    kind: ReminderKind = ReminderKind.CALL
    scheduler: ReminderScheduler = field(default_factory=ReminderScheduler)

    def __post_init__(self) -> None:
        enabled_key, interval_key, _ = _POLICY_KEYS[self.kind]
        self.name = f"{self.kind.value}_reminder"
        self.enabled_key = enabled_key
        self.interval_key = interval_key

    def run(self, session, *, now, snapshot, last_succeeded_at=None):  # type: ignore[no-untyped-def]
        return self.scheduler.run(
            session, kind=self.kind, now=now, snapshot=snapshot, since=last_succeeded_at
        )


reminder_scheduler = ReminderScheduler()
