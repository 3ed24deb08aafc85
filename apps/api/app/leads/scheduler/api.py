from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.leads.errors import LeadEngineError
from app.leads.http import ActorUser, get_current_user, handle_error, require_permission
from app.leads.scheduler.runner import sweep_runner
from app.leads.scheduler.schemas import SweepRunRead, SweepStatusRead

router = APIRouter(prefix="/api/leads/sweeps", tags=["leads.sweeps"])


@router.get("", response_model=list[SweepStatusRead])
def list_sweeps(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[SweepStatusRead] | JSONResponse:
    try:
        require_permission(user, "leads.sweeps.read")
        return [SweepStatusRead.model_validate(row) for row in sweep_runner.list_sweeps(db)]
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_sweeps_list_failed")


@router.post("/{name}/run", response_model=SweepRunRead)
def run_sweep(
    request: Request,
    name: str,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> SweepRunRead | JSONResponse:
    try:
        require_permission(user, "leads.sweeps.run")
        return SweepRunRead.model_validate(sweep_runner.run_sweep(db, name).as_dict())
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_sweep_run_failed")
