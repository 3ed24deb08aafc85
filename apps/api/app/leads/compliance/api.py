from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.leads.compliance.schemas import DndCheckRead, DndEntryCreate, DndEntryRead
from app.leads.compliance.service import compliance_filter, normalize_phone
from app.leads.http import ActorUser, get_current_user, handle_error, require_permission

router = APIRouter(prefix="/api/leads/dnd", tags=["leads.compliance"])


@router.post("", response_model=DndEntryRead, status_code=status.HTTP_201_CREATED)
def add_dnd_entry(
    request: Request,
    dto: DndEntryCreate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DndEntryRead | JSONResponse:
    try:
        require_permission(user, "leads.dnd.write")
        if normalize_phone(dto.phone_number) is None:
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="phone number has no digits")
        entry = compliance_filter.add(db, dto.phone_number, reason=dto.reason, added_by=user.user_id)
        return DndEntryRead.model_validate(entry)
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_dnd_add_failed")


@router.get("", response_model=list[DndEntryRead])
def list_dnd_entries(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[DndEntryRead] | JSONResponse:
    try:
        require_permission(user, "leads.dnd.read")
        return [DndEntryRead.model_validate(entry) for entry in compliance_filter.list_entries(db)]
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_dnd_list_failed")


@router.get("/check", response_model=DndCheckRead)
def check_dnd(
    request: Request,
    phone_number: str = Query(min_length=1),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> DndCheckRead | JSONResponse:
    try:
        require_permission(user, "leads.dnd.read")
        return DndCheckRead(phone_number=phone_number, blocked=compliance_filter.is_blocked(db, phone_number))
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_dnd_check_failed")


@router.delete("/{phone_number}", status_code=status.HTTP_204_NO_CONTENT)
def remove_dnd_entry(
    request: Request,
    phone_number: str,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> Response:
    try:
        require_permission(user, "leads.dnd.write")
        if not compliance_filter.remove(db, phone_number, removed_by=user.user_id):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="dnd entry not found")
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_dnd_remove_failed")
