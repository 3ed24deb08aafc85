from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.leads.errors import LeadEngineError
from app.leads.http import ActorUser, get_current_user, handle_error, require_permission
from app.leads.reminders.schemas import ScheduledActivityCreate, ScheduledActivityRead
from app.leads.reminders.service import reminder_scheduler

router = APIRouter(prefix="/api/leads/activities", tags=["leads.reminders"])


@router.post("", response_model=ScheduledActivityRead, status_code=status.HTTP_201_CREATED)
def schedule_activity(
    request: Request,
    dto: ScheduledActivityCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ScheduledActivityRead | JSONResponse:
    try:
        require_permission(user, "leads.work")
        activity = reminder_scheduler.schedule(
            db,
            lead_id=dto.lead_id,
            agent_id=dto.agent_id,
            kind=dto.kind,
            scheduled_at=dto.scheduled_at,
            title=dto.title,
            actor_user_id=user.user_id,
        )
        return ScheduledActivityRead.model_validate(activity)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_activity_schedule_failed")


@router.get("", response_model=list[ScheduledActivityRead])
def list_activities(
    request: Request,
    lead_id: uuid.UUID | None = None,
    include_cancelled: bool = False,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[ScheduledActivityRead] | JSONResponse:
    try:
        require_permission(user, "leads.read")
        activities = reminder_scheduler.list_activities(db, lead_id=lead_id, include_cancelled=include_cancelled)
        return [ScheduledActivityRead.model_validate(item) for item in activities]
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_activity_list_failed")


@router.post("/{activity_id}/cancel", response_model=ScheduledActivityRead)
def cancel_activity(
    request: Request,
    activity_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ScheduledActivityRead | JSONResponse:
    try:
        require_permission(user, "leads.work")
        activity = reminder_scheduler.cancel(db, activity_id, actor_user_id=user.user_id)
        return ScheduledActivityRead.model_validate(activity)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_activity_cancel_failed")
