from __future__ import annotations

from decimal import Decimal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.leads.commission.schemas import CommissionResolveRead, CommissionSlabRead, CommissionSlabReplace
from app.leads.commission.service import SlabRange, commission_resolver
from app.leads.errors import LeadEngineError
from app.leads.http import ActorUser, get_current_user, handle_error, require_permission

router = APIRouter(prefix="/api/leads/commission", tags=["leads.commission"])


def _tier_param(tier: str) -> int | None:
    if tier == "default":
        return None
    try:
        return int(tier)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="tier must be an integer or 'default'") from exc


@router.get("/slabs/{tier}", response_model=list[CommissionSlabRead])
def list_slabs(
    request: Request,
    tier: str,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[CommissionSlabRead] | JSONResponse:
    try:
        require_permission(user, "leads.commission.read")
        return [CommissionSlabRead.model_validate(slab) for slab in commission_resolver.list_slabs(db, _tier_param(tier))]
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_commission_list_failed")


@router.put("/slabs/{tier}", response_model=list[CommissionSlabRead])
def replace_slabs(
    request: Request,
    tier: str,
    dto: CommissionSlabReplace,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[CommissionSlabRead] | JSONResponse:
    try:
        require_permission(user, "leads.commission.write")
        slabs = [
            SlabRange(
                slab_from=item.slab_from,
                slab_to=item.slab_to,
                commission_percentage=item.commission_percentage,
            )
            for item in dto.slabs
        ]
        replaced = commission_resolver.replace_slabs(db, _tier_param(tier), slabs, actor_user_id=user.user_id)
        return [CommissionSlabRead.model_validate(slab) for slab in replaced]
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_commission_replace_failed")


@router.get("/resolve", response_model=CommissionResolveRead)
def resolve_commission(
    request: Request,
    deal_value: Decimal = Query(ge=0),
    tier: int | None = Query(default=None),
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> CommissionResolveRead | JSONResponse:
    try:
        require_permission(user, "leads.commission.read")
        percentage = commission_resolver.resolve(db, deal_value, tier)
        return CommissionResolveRead(deal_value=deal_value, designation_tier=tier, commission_percentage=percentage)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_commission_resolve_failed")
