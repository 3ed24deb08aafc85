from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.core.database import get_db
from app.leads.commission.seed import seed_commission_slabs
from app.leads.errors import LeadEngineError
from app.leads.http import ActorUser, get_current_user, handle_error, require_permission
from app.leads.policy.schemas import (
    PolicySeedRead,
    PolicySettingRead,
    PolicyValueUpdate,
    StatusRotationRuleRead,
    StatusRotationRuleUpsert,
)
from app.leads.policy.seed import seed_policies
from app.leads.policy.service import policy_store

router = APIRouter(prefix="/api/leads", tags=["leads.policy"])


@router.get("/policies", response_model=list[PolicySettingRead])
def list_policies(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[PolicySettingRead] | JSONResponse:
    try:
        require_permission(user, "leads.policy.read")
        return [PolicySettingRead.model_validate(item) for item in policy_store.list_settings(db)]
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_policy_list_failed")


@router.put("/policies/{key}", response_model=PolicySettingRead)
def update_policy(
    request: Request,
    key: str,
    dto: PolicyValueUpdate,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PolicySettingRead | JSONResponse:
    try:
        require_permission(user, "leads.policy.write")
        policy_store.set_value(db, key, dto.value, actor_user_id=user.user_id)
        current = next(item for item in policy_store.list_settings(db) if item["key"] == key)
        return PolicySettingRead.model_validate(current)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_policy_update_failed")


@router.get("/status-rules", response_model=list[StatusRotationRuleRead])
def list_status_rules(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> list[StatusRotationRuleRead] | JSONResponse:
    try:
        require_permission(user, "leads.policy.read")
        return [StatusRotationRuleRead.model_validate(rule) for rule in policy_store.list_rules(db)]
    except HTTPException as exc:
        return handle_error(request, exc, code="leads_status_rules_list_failed")


@router.put("/status-rules/{status}", response_model=StatusRotationRuleRead)
def upsert_status_rule(
    request: Request,
    status: str,
    dto: StatusRotationRuleUpsert,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> StatusRotationRuleRead | JSONResponse:
    try:
        require_permission(user, "leads.policy.write")
        rule = policy_store.upsert_rule(
            db,
            status,
            enabled=dto.enabled,
            interval_minutes=dto.interval_minutes,
            max_age_days=dto.max_age_days,
            max_assignments=dto.max_assignments,
            actor_user_id=user.user_id,
        )
        return StatusRotationRuleRead.model_validate(rule)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_status_rule_update_failed")


@router.post("/seeds", response_model=PolicySeedRead)
def seed_defaults(
    request: Request,
    db: Session = Depends(get_db),
    user: ActorUser = Depends(get_current_user),
) -> PolicySeedRead | JSONResponse:
    try:
        require_permission(user, "leads.policy.write")
        policies = seed_policies(db)
        slabs = seed_commission_slabs(db)
        return PolicySeedRead(policies=policies, commission_slabs=slabs)
    except (HTTPException, LeadEngineError) as exc:
        return handle_error(request, exc, code="leads_seed_failed")
