from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.database import get_db
from app.leads.assignment.engine import AssignmentResult, assignment_engine
from app.leads.errors import LeadEngineError
from app.leads.http import ActorUser, get_current_user, handle_error, require_permission
from app.leads.models import utcnow
from app.leads.policy.service import policy_store
from app.leads.queue.service import lead_queue
from app.leads.repository import LeadRepository
from app.leads.schemas import (
    AgentActionRequest,
    AssignmentEventRead,
    AssignmentRead,
    AssignmentResultRead,
    CloseWonRequest,
    ContactDecisionRead,
    LeadCreate,
    LeadIntakeRead,
    LeadRead,
    LeadStatusUpdate,
    ManualAssignRequest,
)
from app.leads.service import lead_service

router = APIRouter(prefix="/api/leads", tags=["leads"])

_repository = LeadRepository()


def _result_read(result: AssignmentResult) -> AssignmentResultRead:
    return AssignmentResultRead(
        lead_id=result.lead_id,
        outcome=result.outcome.value,
        agent_id=result.agent_id,
        assignment_id=result.assignment_id,
        kind=result.kind.value if result.kind is not None else None,
        contact_blocked=result.contact_blocked,
        reason=result.reason,
    )


def _acting_agent(user: ActorUser, dto: AgentActionRequest) -> int | None:
    return dto.agent_id if dto.agent_id is not None else user.agent_id


@router.post("", response_model=LeadIntakeRead, status_code=status.HTTP_201_CREATED)
def create_lead(
    request: Request,
    dto: LeadCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadIntakeRead | JSONResponse:
    try:
        require_permission(user, "leads.intake")
        now = utcnow()
        lead = lead_queue.enqueue(db, now=now, actor_user_id=user.user_id, **dto.model_dump())
        assignment = None
        if get_settings().assign_on_intake:
            snapshot = policy_store.load_snapshot(db)
            result = assignment_engine.assign_lead(db, lead.id, now=now, snapshot=snapshot, reason="intake")
            assignment = _result_read(result)
            lead = lead_service.get_lead(db, lead.id)
        return LeadIntakeRead(lead=LeadRead.model_validate(lead), assignment=assignment)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_intake_failed")


@router.get("/queue", response_model=list[LeadRead])
def list_queue(
    request: Request,
    limit: int = 100,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[LeadRead] | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return [LeadRead.model_validate(lead) for lead in lead_queue.list_queued(db, limit=limit)]
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_queue_list_failed")


@router.post("/assignments/{assignment_id}/accept", response_model=AssignmentRead)
def accept_assignment(
    request: Request,
    assignment_id: uuid.UUID,
    dto: AgentActionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AssignmentRead | JSONResponse:
    try:
        require_permission(user, "leads.work")
        assignment = assignment_engine.accept_assignment(
            db,
            assignment_id,
            now=utcnow(),
            agent_id=_acting_agent(user, dto),
        )
        return AssignmentRead.model_validate(assignment)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_assignment_accept_failed")


@router.post("/assignments/{assignment_id}/reject", response_model=LeadRead)
def reject_assignment(
    request: Request,
    assignment_id: uuid.UUID,
    dto: AgentActionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.work")
        lead = assignment_engine.reject_assignment(
            db,
            assignment_id,
            now=utcnow(),
            agent_id=_acting_agent(user, dto),
        )
        return LeadRead.model_validate(lead)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_assignment_reject_failed")


@router.get("/{lead_id}", response_model=LeadRead)
def get_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.read")
        return LeadRead.model_validate(lead_service.get_lead(db, lead_id))
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_get_failed")


@router.patch("/{lead_id}/status", response_model=LeadRead)
def change_status(
    request: Request,
    lead_id: uuid.UUID,
    dto: LeadStatusUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.write")
        lead = lead_service.change_status(
            db,
            lead_id,
            dto.status,
            dto.sub_status,
            now=utcnow(),
            actor_user_id=user.user_id,
        )
        return LeadRead.model_validate(lead)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_status_update_failed")


@router.post("/{lead_id}/assign", response_model=AssignmentResultRead)
def assign_lead(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AssignmentResultRead | JSONResponse:
    try:
        require_permission(user, "leads.assign")
        snapshot = policy_store.load_snapshot(db)
        result = assignment_engine.assign_lead(db, lead_id, now=utcnow(), snapshot=snapshot, reason="requested")
        return _result_read(result)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_assign_failed")


@router.post("/{lead_id}/assign-manual", response_model=AssignmentResultRead)
def assign_manually(
    request: Request,
    lead_id: uuid.UUID,
    dto: ManualAssignRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> AssignmentResultRead | JSONResponse:
    try:
        require_permission(user, "leads.assign")
        result = assignment_engine.assign_manually(
            db,
            lead_id,
            dto.agent_id,
            now=utcnow(),
            actor_user_id=user.user_id,
        )
        return _result_read(result)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_assign_manual_failed")


@router.post("/{lead_id}/activity", response_model=LeadRead)
def record_activity(
    request: Request,
    lead_id: uuid.UUID,
    dto: AgentActionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.work")
        lead = assignment_engine.record_activity(db, lead_id, now=utcnow(), agent_id=_acting_agent(user, dto))
        return LeadRead.model_validate(lead)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_activity_failed")


@router.post("/{lead_id}/contact", response_model=ContactDecisionRead)
def contact_lead(
    request: Request,
    lead_id: uuid.UUID,
    dto: AgentActionRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> ContactDecisionRead | JSONResponse:
    try:
        require_permission(user, "leads.work")
        decision = assignment_engine.contact_lead(db, lead_id, now=utcnow(), agent_id=_acting_agent(user, dto))
        return ContactDecisionRead.model_validate(decision)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_contact_failed")


@router.post("/{lead_id}/close-won", response_model=LeadRead)
def close_won(
    request: Request,
    lead_id: uuid.UUID,
    dto: CloseWonRequest,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> LeadRead | JSONResponse:
    try:
        require_permission(user, "leads.write")
        lead = assignment_engine.close_won(db, lead_id, dto.deal_value, now=utcnow(), actor_user_id=user.user_id)
        return LeadRead.model_validate(lead)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_close_won_failed")


@router.get("/{lead_id}/history", response_model=list[AssignmentEventRead])
def assignment_history(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AssignmentEventRead] | JSONResponse:
    try:
        require_permission(user, "leads.read")
        events = assignment_engine.assignment_history(db, lead_id)
        return [AssignmentEventRead.model_validate(event) for event in events]
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_history_failed")


@router.get("/{lead_id}/assignments", response_model=list[AssignmentRead])
def list_assignments(
    request: Request,
    lead_id: uuid.UUID,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[AssignmentRead] | JSONResponse:
    try:
        require_permission(user, "leads.read")
        lead_service.get_lead(db, lead_id)
        return [AssignmentRead.model_validate(item) for item in _repository.list_assignments(db, lead_id)]
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_assignments_list_failed")
